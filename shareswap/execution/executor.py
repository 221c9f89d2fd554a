"""Trade executor: sequences quote, approval, signing, submission and confirmation.

Orchestrates one ``TradeExecution`` per call to ``execute``. Attempts are
serialized per signer. Status updates are pushed to an ``ExecutionStream``
the UI layer iterates.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Union

import structlog

from shareswap.chain.abi import encode_approve, encode_buy_tokens, encode_sell_tokens
from shareswap.db.models import CONFIRMED, PENDING, REVERTED
from shareswap.exceptions import (
    ErrorKind,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    OnChainRevertError,
    PersistenceError,
    ShareSwapError,
    SubmissionError,
    TradeTimeoutError,
    UnacknowledgedWarning,
    UserRejectedError,
)
from shareswap.execution.models import (
    Direction,
    ExecutionStatus,
    OnChainTerms,
    Phase,
    PoolQuote,
    SignedAuthorization,
    TradeExecution,
    TradeIntent,
    TradeWarning,
)
from shareswap.execution.state import CANCELLABLE, advance, fail
from shareswap.pricing.guard import PriceGuard
from shareswap.pricing.reserves import ReserveReader
from shareswap.signing.authority import SignatureAuthority
from shareswap.signing.nonce import NonceResolver
from shareswap.utils.units import format_units

if TYPE_CHECKING:
    from shareswap.chain.client import ChainClient
    from shareswap.db.submissions import SubmissionJournal
    from shareswap.signing.service import SessionCredential, SigningServiceClient

logger = structlog.get_logger()

ConfirmCallback = Callable[[TradeWarning], Union[bool, Awaitable[bool]]]


class ExecutionStream:
    """Async iterator over the statuses of one execution; ends after a terminal one."""

    def __init__(
        self,
        execution: TradeExecution,
        queue: "asyncio.Queue[ExecutionStatus]",
    ) -> None:
        self.execution = execution
        self._queue = queue
        self._done = False
        self.task: Optional[asyncio.Task] = None

    @property
    def execution_id(self) -> str:
        return self.execution.execution_id

    def __aiter__(self) -> "ExecutionStream":
        return self

    async def __anext__(self) -> ExecutionStatus:
        if self._done:
            raise StopAsyncIteration
        status = await self._queue.get()
        if status.is_terminal:
            self._done = True
        return status

    async def collect(self) -> list[ExecutionStatus]:
        """Drain the stream to its terminal status."""
        return [status async for status in self]


class TradeExecutor:
    """Owns every ``TradeExecution`` and the only code that moves its phase."""

    def __init__(
        self,
        *,
        chain: "ChainClient",
        reserves: ReserveReader,
        guard: PriceGuard,
        resolver: NonceResolver,
        authority: SignatureAuthority,
        signer: str,
        currency_token: str,
        service: Optional["SigningServiceClient"] = None,
        credential: Optional[Callable[[], Optional["SessionCredential"]]] = None,
        journal: Optional["SubmissionJournal"] = None,
        approval_timeout: float = 90.0,
        confirmation_timeout: float = 120.0,
        max_submission_retries: int = 0,
    ) -> None:
        self.chain = chain
        self.reserves = reserves
        self.guard = guard
        self.resolver = resolver
        self.authority = authority
        self.signer = signer
        self.currency_token = currency_token
        self.service = service
        self._credential = credential
        self.journal = journal
        self.approval_timeout = approval_timeout
        self.confirmation_timeout = confirmation_timeout
        self.max_submission_retries = max_submission_retries

        self._locks: dict[str, asyncio.Lock] = {}
        self._active: dict[str, tuple[TradeExecution, asyncio.Task]] = {}
        self._cancel_requested: set[str] = set()
        self._queues: dict[str, asyncio.Queue] = {}

    # --- public API ---

    async def quote(self, intent: TradeIntent) -> PoolQuote:
        """Quote ``intent`` against current reserves. Raises on rejection."""
        reserves = await self.reserves.get_reserves(intent.asset_id)
        return self.guard.quote(intent, reserves)

    def execute(
        self,
        intent: TradeIntent,
        confirm: Optional[ConfirmCallback] = None,
        signer: Optional[str] = None,
    ) -> ExecutionStream:
        """Start one trade attempt and return its status stream."""
        execution = TradeExecution(intent=intent, signer=signer or self.signer)
        queue: asyncio.Queue[ExecutionStatus] = asyncio.Queue()
        stream = ExecutionStream(execution, queue)
        self._queues[execution.execution_id] = queue

        self._emit(execution, "trade requested")
        task = asyncio.create_task(self._run(execution, confirm))
        task.add_done_callback(lambda t: self._on_task_done(execution, t))
        stream.task = task
        self._active[execution.execution_id] = (execution, task)
        logger.info(
            "execution_started",
            execution_id=execution.execution_id,
            signer=execution.signer,
            asset_id=intent.asset_id,
            direction=intent.direction.value,
            amount=str(intent.input_amount),
            slippage_bps=intent.slippage_bps,
        )
        return stream

    def cancel(self, execution_id: str) -> bool:
        """Cancel before submission, or abandon a confirmation wait.

        Refused (False) while the trade transaction is being submitted and
        for unknown or finished executions.
        """
        entry = self._active.get(execution_id)
        if entry is None:
            return False
        execution, task = entry
        if task.done() or execution.phase.is_terminal:
            return False
        if execution.phase is Phase.SUBMITTING_TRADE:
            logger.info("cancel_refused", execution_id=execution_id, phase=execution.phase.value)
            return False
        if execution.phase not in CANCELLABLE and execution.phase is not Phase.AWAITING_CONFIRMATION:
            return False
        self._cancel_requested.add(execution_id)
        task.cancel()
        logger.info("cancel_requested", execution_id=execution_id, phase=execution.phase.value)
        return True

    def get(self, execution_id: str) -> Optional[TradeExecution]:
        entry = self._active.get(execution_id)
        return entry[0] if entry else None

    # --- internals ---

    def _lock_for(self, signer: str) -> asyncio.Lock:
        key = signer.lower()
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _emit(
        self,
        execution: TradeExecution,
        message: str,
        warning: Optional[TradeWarning] = None,
    ) -> None:
        queue = self._queues.get(execution.execution_id)
        if queue is None:
            return
        queue.put_nowait(
            ExecutionStatus(
                execution_id=execution.execution_id,
                phase=execution.phase,
                message=message,
                tx_hash=execution.tx_hash,
                error=execution.error,
                reason=execution.error_reason,
                warning=warning,
            )
        )

    def _to(self, execution: TradeExecution, phase: Phase, message: str) -> None:
        advance(execution, phase)
        self._emit(execution, message)

    def _fail(self, execution: TradeExecution, kind: ErrorKind, reason: Optional[str]) -> None:
        if execution.phase.is_terminal:
            return
        fail(execution, kind, reason)
        logger.warning(
            "execution_failed",
            execution_id=execution.execution_id,
            kind=kind.value,
            reason=reason,
            tx_hash=execution.tx_hash,
        )
        self._emit(execution, f"failed: {kind.value}")

    async def _run(self, execution: TradeExecution, confirm: Optional[ConfirmCallback]) -> None:
        eid = execution.execution_id
        try:
            async with self._lock_for(execution.signer):
                await self._drive(execution, confirm)
        except asyncio.CancelledError:
            requested = eid in self._cancel_requested
            await self._on_cancelled(execution)
            if not requested:
                raise
        except OnChainRevertError as exc:
            self._fail(execution, exc.kind, exc.reason)
        except ShareSwapError as exc:
            self._release_unbroadcast(execution, exc.kind.value)
            self._fail(execution, exc.kind, str(exc) or None)
        except Exception as exc:
            logger.exception("execution_crashed", execution_id=eid, error=str(exc))
            self._release_unbroadcast(execution, "internal")
            self._fail(execution, ErrorKind.INTERNAL, str(exc))

    def _on_task_done(self, execution: TradeExecution, task: asyncio.Task) -> None:
        # A task cancelled before its first step never enters _run.
        if task.cancelled() and not execution.phase.is_terminal:
            self._release_unbroadcast(execution, "cancelled")
            self._fail(execution, ErrorKind.CANCELLED, "cancelled before submission")
        eid = execution.execution_id
        self._active.pop(eid, None)
        self._cancel_requested.discard(eid)
        self._queues.pop(eid, None)

    async def _on_cancelled(self, execution: TradeExecution) -> None:
        if execution.phase is Phase.AWAITING_CONFIRMATION and execution.tx_hash:
            await self._journal_update(execution.tx_hash, PENDING)
            self._fail(
                execution,
                ErrorKind.CANCELLED,
                "stopped waiting for confirmation; the transaction may still be mined",
            )
            return
        self._release_unbroadcast(execution, "cancelled")
        self._fail(execution, ErrorKind.CANCELLED, "cancelled before submission")

    def _release_unbroadcast(self, execution: TradeExecution, reason: str) -> None:
        auth = execution.authorization
        if auth is not None and execution.tx_hash is None:
            self.authority.release(auth, reason=reason)

    async def _drive(self, execution: TradeExecution, confirm: Optional[ConfirmCallback]) -> None:
        intent = execution.intent
        signer = execution.signer
        contract = self.authority.settlement_contract(intent.direction)

        quote = await self.quote(intent)
        execution.quote = quote
        terms = self.guard.on_chain_terms(intent, quote)
        self._emit(execution, self._describe_quote(intent, quote))

        # Quote-time nonce, for the UI only; re-read before signing.
        early = await self.resolver.resolve_next_nonce(signer, contract)
        execution.quote_nonce = early.value
        execution.degraded_nonce_source = early.degraded

        if quote.high_impact:
            await self._acknowledge(
                execution,
                TradeWarning(
                    kind=ErrorKind.HIGH_PRICE_IMPACT,
                    message=f"price impact {quote.price_impact_bps:.0f} bps exceeds "
                            f"{self.guard.high_impact_bps} bps",
                ),
                confirm,
            )
        if early.degraded:
            await self._acknowledge(execution, self._degraded_warning(early.value), confirm)

        await self._check_balance(execution, terms)
        if intent.direction is Direction.BUY:
            allowance = await self.chain.read_allowance(signer, contract)
            if allowance < terms.bound:
                self._to(execution, Phase.APPROVING_ALLOWANCE, "approving currency allowance")
                await self._approve(execution, contract, terms.bound)

        retries = 0
        while True:
            self._to(execution, Phase.AWAITING_SIGNATURE, "requesting signature")
            fresh = await self.resolver.resolve_for_signing(
                signer, contract, earlier=execution.quote_nonce
            )
            if fresh.degraded and not execution.degraded_nonce_source:
                execution.degraded_nonce_source = True
                await self._acknowledge(execution, self._degraded_warning(fresh.value), confirm)

            auth = await self.authority.authorize(intent, quote, fresh, signer)
            execution.authorization = auth

            self._to(execution, Phase.SUBMITTING_TRADE, "submitting trade")
            try:
                tx_hash = await self.chain.submit_transaction(
                    auth.settlement_contract, self._encode_trade(intent, auth)
                )
            except SubmissionError as exc:
                self.authority.release(auth, reason="submission_error")
                execution.authorization = None
                if retries >= self.max_submission_retries:
                    raise
                retries += 1
                execution.quote_nonce = None
                logger.warning(
                    "submission_retry",
                    execution_id=execution.execution_id,
                    attempt=retries,
                    error=str(exc),
                )
                continue
            break

        execution.tx_hash = tx_hash
        await self._journal_record(execution, auth, tx_hash)
        self._to(execution, Phase.AWAITING_CONFIRMATION, "waiting for confirmation")

        try:
            receipt = await self.chain.wait_for_receipt(tx_hash, self.confirmation_timeout)
        except TradeTimeoutError:
            await self._journal_update(tx_hash, PENDING)
            raise
        if not receipt.status:
            await self._journal_update(
                tx_hash, REVERTED, block_number=receipt.block_number,
                revert_reason=receipt.revert_reason,
            )
            raise OnChainRevertError(receipt.revert_reason, tx_hash=tx_hash)

        logger.info(
            "trade_confirmed",
            execution_id=execution.execution_id,
            tx_hash=tx_hash,
            block=receipt.block_number,
            nonce=auth.nonce,
            issuer=auth.issuer.value,
        )
        reconciled = False
        if auth.external_ref:
            self._to(execution, Phase.RECONCILING, "notifying ledger")
            reconciled = await self._reconcile(auth, tx_hash)
        await self._journal_update(
            tx_hash, CONFIRMED, block_number=receipt.block_number, reconciled=reconciled
        )
        self._to(execution, Phase.SUCCEEDED, f"confirmed in block {receipt.block_number}")

    async def _acknowledge(
        self,
        execution: TradeExecution,
        warning: TradeWarning,
        confirm: Optional[ConfirmCallback],
    ) -> None:
        execution.warnings.append(warning)
        self._emit(execution, warning.message, warning=warning)
        if confirm is None:
            raise UnacknowledgedWarning(warning.kind, warning.message)
        answer = confirm(warning)
        if inspect.isawaitable(answer):
            answer = await answer
        if not answer:
            raise UserRejectedError(f"declined warning: {warning.kind.value}")
        logger.info(
            "warning_acknowledged",
            execution_id=execution.execution_id,
            kind=warning.kind.value,
        )

    def _degraded_warning(self, value: int) -> TradeWarning:
        return TradeWarning(
            kind=ErrorKind.DEGRADED_NONCE_SOURCE,
            message=f"nonce could not be read from the contract; using {value}, "
                    "the trade may revert",
        )

    async def _check_balance(self, execution: TradeExecution, terms: OnChainTerms) -> None:
        intent = execution.intent
        if intent.direction is Direction.BUY:
            balance = await self.chain.read_currency_balance(execution.signer)
            needed = terms.bound
        else:
            balance = await self.chain.read_asset_balance(execution.signer, intent.asset_id)
            needed = terms.amounts[0]
        if balance < needed:
            decimals = self.guard.input_decimals(intent.direction)
            raise InsufficientBalanceError(
                f"balance {format_units(balance, decimals)} below "
                f"required {format_units(needed, decimals)}"
            )

    async def _approve(self, execution: TradeExecution, spender: str, amount: int) -> None:
        tx_hash = await self.chain.submit_transaction(
            self.currency_token, encode_approve(spender, amount)
        )
        logger.info(
            "approval_submitted",
            execution_id=execution.execution_id,
            tx_hash=tx_hash,
            amount=amount,
        )
        receipt = await self.chain.wait_for_receipt(tx_hash, self.approval_timeout)
        if not receipt.status:
            raise OnChainRevertError(receipt.revert_reason or "approval reverted", tx_hash=tx_hash)
        allowance = await self.chain.read_allowance(execution.signer, spender)
        if allowance < amount:
            raise InsufficientAllowanceError(f"allowance {allowance} below {amount} after approval")

    def _encode_trade(self, intent: TradeIntent, auth: SignedAuthorization) -> str:
        terms = auth.terms
        if intent.direction is Direction.BUY:
            return encode_buy_tokens(
                terms.asset_ids,
                terms.amounts,
                terms.bound,
                terms.deadline,
                auth.signer,
                auth.signature,
                auth.nonce,
            )
        return encode_sell_tokens(
            terms.asset_ids,
            terms.amounts,
            terms.bound,
            terms.deadline,
            auth.signature,
            auth.nonce,
        )

    async def _reconcile(self, auth: SignedAuthorization, tx_hash: str) -> bool:
        """Best-effort ledger notification; failures never fail the trade."""
        credential = self._credential() if self._credential else None
        if self.service is None or credential is None:
            logger.warning(
                "reconciliation_failed",
                external_ref=auth.external_ref,
                tx_hash=tx_hash,
                error="no signing service credential",
            )
            return False
        try:
            await self.service.confirm(credential, auth.external_ref, tx_hash)
        except ShareSwapError as exc:
            logger.warning(
                "reconciliation_failed",
                external_ref=auth.external_ref,
                tx_hash=tx_hash,
                kind=exc.kind.value,
                error=str(exc),
            )
            return False
        logger.info("trade_reconciled", external_ref=auth.external_ref, tx_hash=tx_hash)
        return True

    async def _journal_record(
        self, execution: TradeExecution, auth: SignedAuthorization, tx_hash: str
    ) -> None:
        if self.journal is None:
            return
        try:
            await self.journal.record(
                execution_id=execution.execution_id,
                signer=execution.signer,
                asset_id=execution.intent.asset_id,
                direction=execution.intent.direction.value,
                settlement_contract=auth.settlement_contract,
                nonce=auth.nonce,
                tx_hash=tx_hash,
                issuer=auth.issuer.value,
                external_ref=auth.external_ref,
            )
        except PersistenceError as exc:
            logger.warning("journal_write_failed", tx_hash=tx_hash, error=str(exc))

    async def _journal_update(self, tx_hash: str, status: str, **kwargs) -> None:
        if self.journal is None:
            return
        try:
            await self.journal.update(tx_hash, status, **kwargs)
        except PersistenceError as exc:
            logger.warning("journal_write_failed", tx_hash=tx_hash, status=status, error=str(exc))

    def _describe_quote(self, intent: TradeIntent, quote: PoolQuote) -> str:
        cur, asset = self.guard.currency_decimals, self.guard.asset_decimals
        if intent.direction is Direction.BUY:
            return (
                f"quote: ~{format_units(int(quote.expected_output), asset)} shares, "
                f"max spend {format_units(int(quote.bound), cur)}"
            )
        return (
            f"quote: ~{format_units(int(quote.expected_output), cur)} currency, "
            f"min receive {format_units(int(quote.bound), cur)}"
        )
