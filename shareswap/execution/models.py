"""Shared data structures for trade authorization and execution."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from shareswap.exceptions import ErrorKind


class Direction(str, Enum):
    BUY = "buy"
    SELL = "sell"


class Issuer(str, Enum):
    BACKEND_ISSUED = "backend_issued"
    LOCALLY_SIGNED = "locally_signed"


class Phase(str, Enum):
    IDLE = "idle"
    APPROVING_ALLOWANCE = "approving_allowance"
    AWAITING_SIGNATURE = "awaiting_signature"
    SUBMITTING_TRADE = "submitting_trade"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RECONCILING = "reconciling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.SUCCEEDED, Phase.FAILED)


@dataclass(frozen=True, slots=True)
class TradeIntent:
    """What the holder asked for. Never mutated after creation."""

    asset_id: int
    direction: Direction
    input_amount: Decimal  # currency for BUY, asset for SELL (display units)
    slippage_bps: int
    deadline: int  # unix seconds

    @classmethod
    def create(
        cls,
        asset_id: int,
        direction: Direction | str,
        input_amount: Decimal,
        slippage_bps: int,
        deadline_seconds: int = 300,
        now: Optional[float] = None,
    ) -> "TradeIntent":
        ts = time.time() if now is None else now
        return cls(
            asset_id=int(asset_id),
            direction=Direction(direction),
            input_amount=input_amount,
            slippage_bps=int(slippage_bps),
            deadline=int(ts) + int(deadline_seconds),
        )


@dataclass(frozen=True, slots=True)
class Reserves:
    """Raw pool reserves in base units."""

    currency_reserve: int
    asset_reserve: int


@dataclass(frozen=True, slots=True)
class PoolQuote:
    """Derived, ephemeral quote. All amounts in base units."""

    currency_reserve: int
    asset_reserve: int
    unit_price: Decimal  # currency base units per asset base unit
    input_amount: Decimal
    expected_output: Decimal
    bound: Decimal  # max spend (BUY) or min receive (SELL)
    price_impact_bps: Decimal
    high_impact: bool = False


@dataclass(frozen=True, slots=True)
class OnChainTerms:
    """Integer arguments of the authorized call, derived from intent + quote."""

    asset_ids: tuple[int, ...]
    amounts: tuple[int, ...]
    bound: int
    deadline: int


@dataclass(frozen=True, slots=True)
class SignedAuthorization:
    """One signature over one nonce. Single-use."""

    payload: dict[str, Any]
    signature: str
    nonce: int
    issuer: Issuer
    signer: str
    settlement_contract: str
    terms: OnChainTerms
    external_ref: Optional[str] = None


@dataclass(frozen=True, slots=True)
class TradeWarning:
    kind: ErrorKind
    message: str


@dataclass(slots=True)
class TradeExecution:
    """State of one trade attempt. Only the executor mutates ``phase``."""

    intent: TradeIntent
    signer: str
    execution_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    quote: Optional[PoolQuote] = None
    authorization: Optional[SignedAuthorization] = None
    phase: Phase = Phase.IDLE
    tx_hash: Optional[str] = None
    error: Optional[ErrorKind] = None
    error_reason: Optional[str] = None
    quote_nonce: Optional[int] = None
    degraded_nonce_source: bool = False
    warnings: list[TradeWarning] = field(default_factory=list)
    history: list[Phase] = field(default_factory=lambda: [Phase.IDLE])
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class ExecutionStatus:
    """One entry of the status stream handed to the UI layer."""

    execution_id: str
    phase: Phase
    message: str
    tx_hash: Optional[str] = None
    error: Optional[ErrorKind] = None
    reason: Optional[str] = None
    warning: Optional[TradeWarning] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase.is_terminal
