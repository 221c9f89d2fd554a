"""Follow-up pass over submissions whose outcome was never observed.

Only re-reads receipts. A transaction is never resubmitted from here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

import structlog

from shareswap.db.models import CONFIRMED, REVERTED
from shareswap.exceptions import ChainReadError, PersistenceError, ShareSwapError

if TYPE_CHECKING:
    from shareswap.chain.client import ChainClient
    from shareswap.db.submissions import SubmissionJournal
    from shareswap.signing.service import SessionCredential, SigningServiceClient

logger = structlog.get_logger()


@dataclass(slots=True)
class ReconcileReport:
    checked: int = 0
    confirmed: int = 0
    reverted: int = 0
    still_pending: int = 0
    notified: int = 0
    errors: int = 0


class Reconciler:
    def __init__(
        self,
        chain: "ChainClient",
        journal: "SubmissionJournal",
        service: Optional["SigningServiceClient"] = None,
        credential: Optional[Callable[[], Optional["SessionCredential"]]] = None,
        stale_after: float = 600.0,
    ) -> None:
        self.chain = chain
        self.journal = journal
        self.service = service
        self._credential = credential
        self.stale_after = stale_after

    async def run_pass(self) -> ReconcileReport:
        report = ReconcileReport()
        try:
            rows = await self.journal.unresolved(self.stale_after)
        except PersistenceError as exc:
            logger.error("reconcile_load_failed", error=str(exc))
            report.errors += 1
            return report

        for row in rows:
            report.checked += 1
            if row.status == CONFIRMED:
                # Outcome already known; only the ledger notification is owed.
                if await self._notify(row.external_ref, row.tx_hash):
                    report.notified += 1
                    await self._update(report, row.tx_hash, CONFIRMED, reconciled=True)
                continue
            try:
                receipt = await self.chain.get_receipt(row.tx_hash)
            except ChainReadError as exc:
                logger.warning("reconcile_receipt_failed", tx_hash=row.tx_hash, error=str(exc))
                report.errors += 1
                continue

            if receipt is None:
                report.still_pending += 1
                continue

            if not receipt.status:
                report.reverted += 1
                await self._update(
                    report, row.tx_hash, REVERTED,
                    block_number=receipt.block_number,
                    revert_reason=receipt.revert_reason,
                )
                logger.info(
                    "submission_reverted",
                    tx_hash=row.tx_hash,
                    nonce=row.nonce,
                    reason=receipt.revert_reason,
                )
                continue

            report.confirmed += 1
            notified = False
            if row.external_ref and not row.reconciled:
                notified = await self._notify(row.external_ref, row.tx_hash)
                if notified:
                    report.notified += 1
            await self._update(
                report, row.tx_hash, CONFIRMED,
                block_number=receipt.block_number, reconciled=notified,
            )
            logger.info("submission_confirmed", tx_hash=row.tx_hash, nonce=row.nonce)

        logger.info(
            "reconcile_pass_done",
            checked=report.checked,
            confirmed=report.confirmed,
            reverted=report.reverted,
            pending=report.still_pending,
            errors=report.errors,
        )
        return report

    async def _notify(self, external_ref: str, tx_hash: str) -> bool:
        credential = self._credential() if self._credential else None
        if self.service is None or credential is None:
            return False
        try:
            await self.service.confirm(credential, external_ref, tx_hash)
        except ShareSwapError as exc:
            logger.warning(
                "reconciliation_failed", external_ref=external_ref, tx_hash=tx_hash, error=str(exc)
            )
            return False
        return True

    async def _update(self, report: ReconcileReport, tx_hash: str, status: str, **kwargs) -> None:
        try:
            await self.journal.update(tx_hash, status, **kwargs)
        except PersistenceError as exc:
            logger.warning("journal_write_failed", tx_hash=tx_hash, status=status, error=str(exc))
            report.errors += 1
