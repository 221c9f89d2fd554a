"""Async CRUD for TradeSubmission, plus the journal wrapper the executor uses."""

from __future__ import annotations

import time
from typing import Optional, Sequence

import structlog
from sqlalchemy import or_, select, update

from shareswap.db.database import DEFAULT_ASYNC_DATABASE_URL, get_session, init_db_async
from shareswap.db.models import CONFIRMED, PENDING, SUBMITTED, TradeSubmission
from shareswap.exceptions import PersistenceError

logger = structlog.get_logger()


async def save_submission(
    *,
    db_url: str = DEFAULT_ASYNC_DATABASE_URL,
    execution_id: str,
    signer: str,
    asset_id: int,
    direction: str,
    settlement_contract: str,
    nonce: int,
    tx_hash: str,
    issuer: str,
    external_ref: Optional[str] = None,
    status: str = SUBMITTED,
    submitted_at: Optional[float] = None,
) -> None:
    """Insert a new submission row."""
    async with get_session(db_url) as s:
        s.add(
            TradeSubmission(
                execution_id=execution_id,
                signer=signer,
                asset_id=asset_id,
                direction=direction,
                settlement_contract=settlement_contract,
                nonce=nonce,
                tx_hash=tx_hash,
                issuer=issuer,
                external_ref=external_ref,
                status=status,
                submitted_at=submitted_at if submitted_at is not None else time.time(),
            )
        )


async def get_submission(
    *, db_url: str = DEFAULT_ASYNC_DATABASE_URL, tx_hash: str
) -> Optional[TradeSubmission]:
    async with get_session(db_url) as s:
        result = await s.execute(
            select(TradeSubmission).where(TradeSubmission.tx_hash == tx_hash)
        )
        return result.scalar_one_or_none()


async def load_submissions(
    *,
    db_url: str = DEFAULT_ASYNC_DATABASE_URL,
    statuses: Optional[Sequence[str]] = None,
    signer: Optional[str] = None,
) -> list[TradeSubmission]:
    """Load submissions, optionally filtered by status and signer."""
    async with get_session(db_url) as s:
        q = select(TradeSubmission).order_by(TradeSubmission.submitted_at)
        if statuses:
            q = q.where(TradeSubmission.status.in_(list(statuses)))
        if signer:
            q = q.where(TradeSubmission.signer == signer)
        result = await s.execute(q)
        return list(result.scalars().all())


async def load_unresolved(
    *,
    db_url: str = DEFAULT_ASYNC_DATABASE_URL,
    stale_after: float = 600.0,
    now: Optional[float] = None,
) -> list[TradeSubmission]:
    """Rows whose follow-up is still open.

    Pending rows, submitted rows nobody has followed up on in ``stale_after``,
    and confirmed backend-issued rows the signing service was never told about.
    """
    cutoff = (time.time() if now is None else now) - stale_after
    async with get_session(db_url) as s:
        result = await s.execute(
            select(TradeSubmission)
            .where(
                or_(
                    TradeSubmission.status == PENDING,
                    (TradeSubmission.status == SUBMITTED)
                    & (TradeSubmission.submitted_at < cutoff),
                    (TradeSubmission.status == CONFIRMED)
                    & TradeSubmission.reconciled.is_(False)
                    & TradeSubmission.external_ref.is_not(None),
                )
            )
            .order_by(TradeSubmission.submitted_at)
        )
        return list(result.scalars().all())


async def mark_status(
    *,
    db_url: str = DEFAULT_ASYNC_DATABASE_URL,
    tx_hash: str,
    status: str,
    block_number: Optional[int] = None,
    revert_reason: Optional[str] = None,
) -> bool:
    """Update a row's status. Returns True if a row matched."""
    values: dict = {"status": status, "updated_at": time.time()}
    if block_number is not None:
        values["block_number"] = block_number
    if revert_reason is not None:
        values["revert_reason"] = revert_reason
    async with get_session(db_url) as s:
        result = await s.execute(
            update(TradeSubmission).where(TradeSubmission.tx_hash == tx_hash).values(**values)
        )
        return result.rowcount > 0


async def mark_reconciled(*, db_url: str = DEFAULT_ASYNC_DATABASE_URL, tx_hash: str) -> None:
    async with get_session(db_url) as s:
        await s.execute(
            update(TradeSubmission)
            .where(TradeSubmission.tx_hash == tx_hash)
            .values(reconciled=True, updated_at=time.time())
        )


class SubmissionJournal:
    """Executor-facing journal. Writes raise ``PersistenceError``."""

    def __init__(self, db_url: str = DEFAULT_ASYNC_DATABASE_URL) -> None:
        self.db_url = db_url
        self._ready = False

    async def bootstrap(self) -> None:
        """Create tables once per journal."""
        if self._ready:
            return
        try:
            await init_db_async(self.db_url)
        except Exception as exc:
            raise PersistenceError(str(exc)) from exc
        self._ready = True

    async def record(
        self,
        *,
        execution_id: str,
        signer: str,
        asset_id: int,
        direction: str,
        settlement_contract: str,
        nonce: int,
        tx_hash: str,
        issuer: str,
        external_ref: Optional[str] = None,
    ) -> None:
        await self.bootstrap()
        try:
            await save_submission(
                db_url=self.db_url,
                execution_id=execution_id,
                signer=signer,
                asset_id=asset_id,
                direction=direction,
                settlement_contract=settlement_contract,
                nonce=nonce,
                tx_hash=tx_hash,
                issuer=issuer,
                external_ref=external_ref,
            )
        except Exception as exc:
            raise PersistenceError(str(exc)) from exc

    async def update(
        self,
        tx_hash: str,
        status: str,
        *,
        block_number: Optional[int] = None,
        revert_reason: Optional[str] = None,
        reconciled: bool = False,
    ) -> None:
        await self.bootstrap()
        try:
            await mark_status(
                db_url=self.db_url,
                tx_hash=tx_hash,
                status=status,
                block_number=block_number,
                revert_reason=revert_reason,
            )
            if reconciled:
                await mark_reconciled(db_url=self.db_url, tx_hash=tx_hash)
        except Exception as exc:
            raise PersistenceError(str(exc)) from exc

    async def unresolved(self, stale_after: float = 600.0) -> list[TradeSubmission]:
        await self.bootstrap()
        try:
            return await load_unresolved(db_url=self.db_url, stale_after=stale_after)
        except Exception as exc:
            raise PersistenceError(str(exc)) from exc
