from shareswap.execution.models import (
    Direction,
    ExecutionStatus,
    Issuer,
    OnChainTerms,
    Phase,
    PoolQuote,
    Reserves,
    SignedAuthorization,
    TradeExecution,
    TradeIntent,
    TradeWarning,
)
from shareswap.execution.state import CANCELLABLE, TRANSITIONS, advance, can_transition, fail

__all__ = [
    "CANCELLABLE",
    "Direction",
    "ExecutionStatus",
    "Issuer",
    "OnChainTerms",
    "Phase",
    "PoolQuote",
    "Reserves",
    "SignedAuthorization",
    "TRANSITIONS",
    "TradeExecution",
    "TradeIntent",
    "TradeWarning",
    "advance",
    "can_transition",
    "fail",
]
