"""Custom exceptions for the ShareSwap trade pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """User-visible failure taxonomy carried by every pipeline error."""

    NO_LIQUIDITY = "no_liquidity"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_SLIPPAGE = "invalid_slippage"
    INVALID_DEADLINE = "invalid_deadline"
    HIGH_PRICE_IMPACT = "high_price_impact"
    NONCE_RACE = "nonce_race"
    DEGRADED_NONCE_SOURCE = "degraded_nonce_source"
    SIGNATURE_SERVICE_UNAVAILABLE = "signature_service_unavailable"
    INVALID_SIGNATURE_SHAPE = "invalid_signature_shape"
    USER_REJECTED = "user_rejected"
    INSUFFICIENT_ALLOWANCE = "insufficient_allowance"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    SUBMISSION_ERROR = "submission_error"
    ON_CHAIN_REVERT = "on_chain_revert"
    TIMEOUT = "timeout"
    RECONCILIATION_FAILED = "reconciliation_failed"
    CANCELLED = "cancelled"
    READ_ERROR = "read_error"
    CONFIG = "config"
    INTERNAL = "internal"


class ShareSwapError(Exception):
    """Base exception for all ShareSwap errors."""

    kind: ErrorKind = ErrorKind.INTERNAL


class ConfigError(ShareSwapError):
    """Missing or invalid configuration."""

    kind = ErrorKind.CONFIG


class ChainReadError(ShareSwapError):
    """Transport or decoding failure while reading chain state."""

    kind = ErrorKind.READ_ERROR


class NoLiquidityError(ShareSwapError):
    """Pool has a zero reserve; no price can be derived."""

    kind = ErrorKind.NO_LIQUIDITY


class InvalidAmountError(ShareSwapError):
    """Trade amount is zero, negative or not representable."""

    kind = ErrorKind.INVALID_AMOUNT


class InvalidSlippageError(ShareSwapError):
    """Slippage tolerance outside the accepted range."""

    kind = ErrorKind.INVALID_SLIPPAGE


class InvalidDeadlineError(ShareSwapError):
    """Authorization deadline already passed or too far in the future."""

    kind = ErrorKind.INVALID_DEADLINE


class NonceRaceError(ShareSwapError):
    """A nonce could not be drawn without colliding with an issued one."""

    kind = ErrorKind.NONCE_RACE


class SignatureServiceUnavailable(ShareSwapError):
    """Trusted signing service unreachable, unauthenticated or malformed."""

    kind = ErrorKind.SIGNATURE_SERVICE_UNAVAILABLE


class InvalidSignatureShape(ShareSwapError):
    """Signature is empty, not hex, or not 65 bytes long."""

    kind = ErrorKind.INVALID_SIGNATURE_SHAPE


class UserRejectedError(ShareSwapError):
    """The wallet holder declined a signature or transaction prompt."""

    kind = ErrorKind.USER_REJECTED


class InsufficientAllowanceError(ShareSwapError):
    """Settlement contract allowance is below the spend bound."""

    kind = ErrorKind.INSUFFICIENT_ALLOWANCE


class InsufficientBalanceError(ShareSwapError):
    """Signer does not hold enough currency or asset for the trade."""

    kind = ErrorKind.INSUFFICIENT_BALANCE


class SubmissionError(ShareSwapError):
    """RPC rejected or failed to broadcast a transaction."""

    kind = ErrorKind.SUBMISSION_ERROR


class OnChainRevertError(ShareSwapError):
    """Transaction was mined but reverted."""

    kind = ErrorKind.ON_CHAIN_REVERT

    def __init__(self, reason: Optional[str] = None, tx_hash: str = "") -> None:
        self.reason = reason
        self.tx_hash = tx_hash
        super().__init__(reason or "transaction reverted")


class TradeTimeoutError(ShareSwapError):
    """A bounded wait elapsed before the transaction was mined."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str = "timed out", tx_hash: str = "") -> None:
        self.tx_hash = tx_hash
        super().__init__(message)


class ReconciliationError(ShareSwapError):
    """External ledger could not be notified of a confirmed trade."""

    kind = ErrorKind.RECONCILIATION_FAILED


class InvalidTransitionError(ShareSwapError):
    """A state machine transition outside the allowed table was attempted."""

    kind = ErrorKind.INTERNAL


class PersistenceError(ShareSwapError):
    """Database persistence failure."""

    kind = ErrorKind.INTERNAL


class UnacknowledgedWarning(ShareSwapError):
    """A pre-signing warning was raised and nobody acknowledged it."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        self.kind = kind
        super().__init__(message)
