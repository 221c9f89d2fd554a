"""Allowed phase transitions for a single trade attempt."""

from __future__ import annotations

from typing import Optional

import structlog

from shareswap.exceptions import ErrorKind, InvalidTransitionError
from shareswap.execution.models import Phase, TradeExecution

logger = structlog.get_logger()

TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.IDLE: frozenset({
        Phase.APPROVING_ALLOWANCE,
        Phase.AWAITING_SIGNATURE,
        Phase.FAILED,
    }),
    Phase.APPROVING_ALLOWANCE: frozenset({Phase.AWAITING_SIGNATURE, Phase.FAILED}),
    Phase.AWAITING_SIGNATURE: frozenset({Phase.SUBMITTING_TRADE, Phase.FAILED}),
    # SUBMITTING_TRADE -> AWAITING_SIGNATURE is the explicit retry edge.
    Phase.SUBMITTING_TRADE: frozenset({
        Phase.AWAITING_CONFIRMATION,
        Phase.AWAITING_SIGNATURE,
        Phase.FAILED,
    }),
    Phase.AWAITING_CONFIRMATION: frozenset({
        Phase.RECONCILING,
        Phase.SUCCEEDED,
        Phase.FAILED,
    }),
    Phase.RECONCILING: frozenset({Phase.SUCCEEDED}),
    Phase.SUCCEEDED: frozenset(),
    Phase.FAILED: frozenset(),
}

# Phases in which a cancel request aborts the attempt outright.
CANCELLABLE = frozenset({
    Phase.IDLE,
    Phase.APPROVING_ALLOWANCE,
    Phase.AWAITING_SIGNATURE,
})


def can_transition(current: Phase, target: Phase) -> bool:
    return target in TRANSITIONS[current]


def advance(execution: TradeExecution, target: Phase) -> None:
    """Move ``execution`` to ``target`` or raise InvalidTransitionError."""
    current = execution.phase
    if not can_transition(current, target):
        raise InvalidTransitionError(f"{current.value} -> {target.value}")
    execution.phase = target
    execution.history.append(target)
    logger.debug(
        "phase_transition",
        execution_id=execution.execution_id,
        src=current.value,
        dst=target.value,
    )


def fail(
    execution: TradeExecution,
    kind: ErrorKind,
    reason: Optional[str] = None,
) -> None:
    """Record the failure and move to FAILED (no-op if already terminal)."""
    if execution.phase.is_terminal:
        return
    execution.error = kind
    execution.error_reason = reason
    advance(execution, Phase.FAILED)
