"""SQLAlchemy ORM models for the trade submission journal."""

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# TradeSubmission.status values
SUBMITTED = "submitted"
CONFIRMED = "confirmed"
REVERTED = "reverted"
PENDING = "pending"  # outcome unknown: confirmation timed out or was abandoned


class TradeSubmission(Base):
    """One broadcast settlement transaction."""

    __tablename__ = "trade_submissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(String(64), nullable=False, index=True)
    signer = Column(String(42), nullable=False, index=True)
    asset_id = Column(Integer, nullable=False)
    direction = Column(String(4), nullable=False)  # "buy" or "sell"
    settlement_contract = Column(String(42), nullable=False)
    nonce = Column(Integer, nullable=False)
    tx_hash = Column(String(66), unique=True, nullable=False, index=True)
    issuer = Column(String(32), nullable=False)  # backend_issued | locally_signed
    external_ref = Column(String(128), nullable=True)  # signing-service transaction id
    status = Column(String(16), nullable=False, default=SUBMITTED, index=True)
    block_number = Column(Integer, nullable=True)
    revert_reason = Column(Text, nullable=True)
    reconciled = Column(Boolean, nullable=False, default=False)  # service notified of tx_hash
    submitted_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<TradeSubmission(tx_hash={self.tx_hash}, nonce={self.nonce}, "
            f"status={self.status})>"
        )
