# tests/execution/test_executor.py
import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import decode
from eth_account import Account

from shareswap.chain.client import Receipt
from shareswap.chain.wallet import LocalAccountWallet
from shareswap.db.models import CONFIRMED, PENDING, REVERTED
from shareswap.exceptions import (
    ChainReadError,
    ErrorKind,
    ReconciliationError,
    SignatureServiceUnavailable,
    SubmissionError,
    TradeTimeoutError,
)
from shareswap.execution.executor import TradeExecutor
from shareswap.execution.models import Direction, Phase, Reserves, TradeIntent
from shareswap.pricing.guard import PriceGuard
from shareswap.pricing.reserves import ReserveReader
from shareswap.signing.authority import SignatureAuthority
from shareswap.signing.nonce import NonceResolver
from shareswap.signing.service import PreparedSignature, SessionCredential
from shareswap.signing.strategies import (
    BackendSigningStrategy,
    LocalWalletSigningStrategy,
    SigningPolicy,
)
from shareswap.signing.typed_data import SettlementDomain

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
SIGNER = Account.from_key(PRIVATE_KEY).address
PAIR = "0xa160b769d12a0f3b932113bb4f181544af5ee68d"
ASSET = "0x5555555555555555555555555555555555555555"
CURRENCY = "0x6666666666666666666666666666666666666666"
NOW = 1_700_000_000.0
SERVICE_SIG = "0x" + "33" * 65

BUY_TYPES = ["uint256[]", "uint256[]", "uint256", "uint256", "address", "bytes", "uint256"]


class FakeChain:
    """In-memory chain: nonces advance when a trade is mined."""

    def __init__(self):
        self.reserves = Reserves(currency_reserve=1_000_000_000, asset_reserve=500 * 10**18)
        self.next_nonce = 5
        self.nonce_error = None
        self.allowance = 2**256 - 1
        self.approve_grants = True
        self.currency_balance = 10**12
        self.asset_balance = 10**21
        self.submitted = []
        self.submit_errors = []
        self.submit_gate = None
        self.receipt_gate = None
        self.wait_error = None
        self.revert = {}

    async def read_reserves(self, asset_id):
        return self.reserves

    async def read_next_nonce(self, contract, signer):
        if self.nonce_error:
            raise self.nonce_error
        return self.next_nonce

    async def read_used_nonce(self, contract, signer):
        if self.nonce_error:
            raise self.nonce_error
        return self.next_nonce - 1

    async def read_allowance(self, owner, spender):
        return self.allowance

    async def read_currency_balance(self, owner):
        return self.currency_balance

    async def read_asset_balance(self, owner, asset_id):
        return self.asset_balance

    async def submit_transaction(self, to, calldata):
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        self.submitted.append((to, calldata))
        if to.lower() == CURRENCY and self.approve_grants:
            self.allowance = 2**256 - 1
        return f"0x{len(self.submitted):064x}"

    async def wait_for_receipt(self, tx_hash, timeout):
        if self.receipt_gate is not None:
            await self.receipt_gate.wait()
        if self.wait_error:
            raise self.wait_error
        if tx_hash in self.revert:
            return Receipt(tx_hash, False, 100, revert_reason=self.revert[tx_hash])
        to, _ = self.submitted[int(tx_hash, 16) - 1]
        if to.lower() != CURRENCY:
            self.next_nonce += 1
        return Receipt(tx_hash, True, 100)

    async def get_receipt(self, tx_hash):
        return None


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def guard():
    return PriceGuard(clock=lambda: NOW)


@pytest.fixture
def wallet():
    return LocalAccountWallet(PRIVATE_KEY, MagicMock(), chain_id=10143)


@pytest.fixture
def journal():
    mock = MagicMock()
    mock.record = AsyncMock()
    mock.update = AsyncMock()
    return mock


@pytest.fixture
def service():
    mock = MagicMock()
    mock.prepare_signature = AsyncMock(
        return_value=PreparedSignature(
            signature=SERVICE_SIG, nonce=42, external_ref="tx-9", tx_data={"nonce": 42}
        )
    )
    mock.confirm = AsyncMock(return_value={"status": "confirmed"})
    return mock


def build_executor(chain, guard, wallet, journal=None, service=None, **kwargs):
    credential = SessionCredential(token="tok") if service is not None else None
    strategies = [LocalWalletSigningStrategy(wallet)]
    if service is not None:
        strategies.insert(0, BackendSigningStrategy(service, lambda: credential))
    resolver = NonceResolver(chain)
    authority = SignatureAuthority(
        SigningPolicy(strategies),
        resolver,
        guard,
        {
            Direction.BUY: SettlementDomain("FDF Pair", "1", 10143, PAIR),
            Direction.SELL: SettlementDomain("FDF Player", "1", 10143, ASSET),
        },
    )
    return TradeExecutor(
        chain=chain,
        reserves=ReserveReader(chain),
        guard=guard,
        resolver=resolver,
        authority=authority,
        signer=SIGNER,
        currency_token=CURRENCY,
        service=service,
        credential=(lambda: credential) if service is not None else None,
        journal=journal,
        **kwargs,
    )


def make_intent(direction=Direction.BUY, amount="10", slippage_bps=50):
    return TradeIntent.create(
        asset_id=7,
        direction=direction,
        input_amount=Decimal(amount),
        slippage_bps=slippage_bps,
        deadline_seconds=300,
        now=NOW,
    )


def trade_calls(chain):
    return [(to, data) for to, data in chain.submitted if to.lower() != CURRENCY]


# --- happy paths ---

@pytest.mark.asyncio
async def test_buy_succeeds_without_reconciliation(chain, guard, wallet, journal):
    executor = build_executor(chain, guard, wallet, journal)

    stream = executor.execute(make_intent())
    statuses = await stream.collect()

    execution = stream.execution
    assert execution.history == [
        Phase.IDLE,
        Phase.AWAITING_SIGNATURE,
        Phase.SUBMITTING_TRADE,
        Phase.AWAITING_CONFIRMATION,
        Phase.SUCCEEDED,
    ]
    assert statuses[0].message == "trade requested"
    assert statuses[-1].phase is Phase.SUCCEEDED
    assert statuses[-1].tx_hash == execution.tx_hash
    assert execution.authorization.nonce == 5

    ((to, calldata),) = trade_calls(chain)
    assert to.lower() == PAIR
    ids, amounts, bound, deadline, recipient, _, nonce = decode(
        BUY_TYPES, bytes.fromhex(calldata[10:])
    )
    assert ids == (7,)
    assert amounts == (5 * 10**18,)
    assert bound == 10_050_000
    assert recipient.lower() == SIGNER.lower()
    assert nonce == 5

    journal.record.assert_awaited_once()
    assert journal.record.await_args.kwargs["nonce"] == 5
    assert journal.update.await_args.args == (execution.tx_hash, CONFIRMED)


@pytest.mark.asyncio
async def test_sell_submits_to_asset_contract(chain, guard, wallet):
    executor = build_executor(chain, guard, wallet)

    stream = executor.execute(make_intent(Direction.SELL, amount="2"))
    await stream.collect()

    assert stream.execution.phase is Phase.SUCCEEDED
    ((to, _),) = trade_calls(chain)
    assert to.lower() == ASSET


@pytest.mark.asyncio
async def test_quote_passthrough(chain, guard, wallet):
    executor = build_executor(chain, guard, wallet)

    quote = await executor.quote(make_intent())

    assert quote.expected_output == Decimal(5 * 10**18)


# --- Scenario B ---

@pytest.mark.asyncio
async def test_empty_pool_fails_before_any_signing(chain, guard, wallet):
    chain.reserves = Reserves(currency_reserve=0, asset_reserve=500 * 10**18)
    executor = build_executor(chain, guard, wallet)

    stream = executor.execute(make_intent())
    statuses = await stream.collect()

    assert stream.execution.history == [Phase.IDLE, Phase.FAILED]
    assert statuses[-1].error is ErrorKind.NO_LIQUIDITY
    assert chain.submitted == []


# --- backend issuance and reconciliation ---

@pytest.mark.asyncio
async def test_backend_signature_is_reconciled(chain, guard, wallet, journal, service):
    executor = build_executor(chain, guard, wallet, journal, service)

    stream = executor.execute(make_intent())
    await stream.collect()

    execution = stream.execution
    assert execution.history[-2:] == [Phase.RECONCILING, Phase.SUCCEEDED]
    assert execution.authorization.nonce == 42
    service.confirm.assert_awaited_once()
    _, external_ref, tx_hash = service.confirm.await_args.args
    assert external_ref == "tx-9"
    assert tx_hash == execution.tx_hash
    assert journal.update.await_args.kwargs["reconciled"] is True


@pytest.mark.asyncio
async def test_reconciliation_failure_still_succeeds(chain, guard, wallet, journal, service):
    service.confirm = AsyncMock(side_effect=ReconciliationError("ledger down"))
    executor = build_executor(chain, guard, wallet, journal, service)

    stream = executor.execute(make_intent())
    await stream.collect()

    assert stream.execution.phase is Phase.SUCCEEDED
    assert stream.execution.error is None
    assert journal.update.await_args.kwargs["reconciled"] is False


@pytest.mark.asyncio
async def test_scenario_c_fallback_skips_reconciling(chain, guard, wallet, service):
    service.prepare_signature = AsyncMock(side_effect=SignatureServiceUnavailable("refused"))
    executor = build_executor(chain, guard, wallet, service=service)

    stream = executor.execute(make_intent())
    await stream.collect()

    assert stream.execution.phase is Phase.SUCCEEDED
    assert Phase.RECONCILING not in stream.execution.history
    assert stream.execution.authorization.nonce == 5
    service.confirm.assert_not_called()


# --- warnings ---

@pytest.mark.asyncio
async def test_high_impact_without_confirm_fails(chain, guard, wallet):
    executor = build_executor(chain, guard, wallet)

    stream = executor.execute(make_intent(amount="100"))
    statuses = await stream.collect()

    assert stream.execution.error is ErrorKind.HIGH_PRICE_IMPACT
    assert any(
        s.warning is not None and s.warning.kind is ErrorKind.HIGH_PRICE_IMPACT
        for s in statuses
    )
    assert chain.submitted == []


@pytest.mark.asyncio
async def test_high_impact_acknowledged_proceeds(chain, guard, wallet):
    executor = build_executor(chain, guard, wallet)
    seen = []

    def confirm(warning):
        seen.append(warning.kind)
        return True

    stream = executor.execute(make_intent(amount="100"), confirm=confirm)
    await stream.collect()

    assert seen == [ErrorKind.HIGH_PRICE_IMPACT]
    assert stream.execution.phase is Phase.SUCCEEDED


@pytest.mark.asyncio
async def test_declined_warning_is_user_rejection(chain, guard, wallet):
    executor = build_executor(chain, guard, wallet)

    async def confirm(warning):
        return False

    stream = executor.execute(make_intent(amount="100"), confirm=confirm)
    await stream.collect()

    assert stream.execution.error is ErrorKind.USER_REJECTED


@pytest.mark.asyncio
async def test_degraded_nonce_is_flagged_once(chain, guard, wallet):
    chain.nonce_error = ChainReadError("execution reverted")
    executor = build_executor(chain, guard, wallet)
    seen = []

    stream = executor.execute(make_intent(), confirm=lambda w: seen.append(w.kind) or True)
    await stream.collect()

    assert seen == [ErrorKind.DEGRADED_NONCE_SOURCE]
    assert stream.execution.degraded_nonce_source
    assert stream.execution.authorization.nonce == 1


@pytest.mark.asyncio
async def test_degraded_nonce_without_confirm_fails(chain, guard, wallet):
    chain.nonce_error = ChainReadError("execution reverted")
    executor = build_executor(chain, guard, wallet)

    stream = executor.execute(make_intent())
    await stream.collect()

    assert stream.execution.error is ErrorKind.DEGRADED_NONCE_SOURCE
    assert chain.submitted == []


# --- allowance and balance ---

@pytest.mark.asyncio
async def test_low_allowance_is_approved_first(chain, guard, wallet):
    chain.allowance = 0
    executor = build_executor(chain, guard, wallet)

    stream = executor.execute(make_intent())
    await stream.collect()

    assert stream.execution.history[:3] == [
        Phase.IDLE, Phase.APPROVING_ALLOWANCE, Phase.AWAITING_SIGNATURE,
    ]
    assert stream.execution.phase is Phase.SUCCEEDED
    approve_to, approve_data = chain.submitted[0]
    assert approve_to.lower() == CURRENCY
    spender, amount = decode(["address", "uint256"], bytes.fromhex(approve_data[10:]))
    assert spender.lower() == PAIR
    assert amount == 10_050_000


@pytest.mark.asyncio
async def test_allowance_still_short_after_approval(chain, guard, wallet):
    chain.allowance = 0
    chain.approve_grants = False
    executor = build_executor(chain, guard, wallet)

    stream = executor.execute(make_intent())
    await stream.collect()

    assert stream.execution.error is ErrorKind.INSUFFICIENT_ALLOWANCE
    assert trade_calls(chain) == []


@pytest.mark.asyncio
async def test_buy_balance_checked_against_max_spend(chain, guard, wallet):
    chain.currency_balance = 10_000_000  # covers the input but not the slippage bound
    executor = build_executor(chain, guard, wallet)

    stream = executor.execute(make_intent())
    await stream.collect()

    assert stream.execution.error is ErrorKind.INSUFFICIENT_BALANCE
    assert chain.submitted == []


@pytest.mark.asyncio
async def test_sell_balance_checked_against_asset_amount(chain, guard, wallet):
    chain.asset_balance = 10**18
    executor = build_executor(chain, guard, wallet)

    stream = executor.execute(make_intent(Direction.SELL, amount="2"))
    await stream.collect()

    assert stream.execution.error is ErrorKind.INSUFFICIENT_BALANCE


# --- submission and confirmation failures ---

@pytest.mark.asyncio
async def test_submission_error_releases_nonce(chain, guard, wallet):
    chain.submit_errors = [SubmissionError("nonce too low")]
    executor = build_executor(chain, guard, wallet)

    stream = executor.execute(make_intent())
    await stream.collect()

    assert stream.execution.error is ErrorKind.SUBMISSION_ERROR
    assert stream.execution.tx_hash is None
    assert not executor.authority.is_issued(SIGNER, PAIR, 5)


@pytest.mark.asyncio
async def test_submission_retry_re_signs(chain, guard, wallet):
    chain.submit_errors = [SubmissionError("replacement underpriced")]
    executor = build_executor(chain, guard, wallet, max_submission_retries=1)

    stream = executor.execute(make_intent())
    await stream.collect()

    assert stream.execution.history == [
        Phase.IDLE,
        Phase.AWAITING_SIGNATURE,
        Phase.SUBMITTING_TRADE,
        Phase.AWAITING_SIGNATURE,
        Phase.SUBMITTING_TRADE,
        Phase.AWAITING_CONFIRMATION,
        Phase.SUCCEEDED,
    ]


@pytest.mark.asyncio
async def test_revert_reason_is_surfaced(chain, guard, wallet, journal):
    chain.revert[f"0x{1:064x}"] = "Slippage exceeded"
    executor = build_executor(chain, guard, wallet, journal)

    stream = executor.execute(make_intent())
    statuses = await stream.collect()

    assert stream.execution.error is ErrorKind.ON_CHAIN_REVERT
    assert statuses[-1].reason == "Slippage exceeded"
    assert journal.update.await_args.args[1] == REVERTED


@pytest.mark.asyncio
async def test_confirmation_timeout_is_journaled_pending(chain, guard, wallet, journal):
    chain.wait_error = TradeTimeoutError("no receipt", tx_hash=f"0x{1:064x}")
    executor = build_executor(chain, guard, wallet, journal)

    stream = executor.execute(make_intent())
    await stream.collect()

    execution = stream.execution
    assert execution.error is ErrorKind.TIMEOUT
    assert execution.tx_hash == f"0x{1:064x}"
    assert journal.update.await_args.args == (execution.tx_hash, PENDING)
    # The transaction is out there; its nonce must stay spent.
    assert executor.authority.is_issued(SIGNER, PAIR, 5)


# --- cancellation ---

@pytest.mark.asyncio
async def test_cancel_before_start(chain, guard, wallet):
    executor = build_executor(chain, guard, wallet)

    stream = executor.execute(make_intent())
    assert executor.cancel(stream.execution_id) is True
    statuses = await stream.collect()

    assert statuses[-1].error is ErrorKind.CANCELLED
    assert chain.submitted == []


@pytest.mark.asyncio
async def test_cancel_while_wallet_is_signing(chain, guard, wallet):
    signing = asyncio.Event()
    release = asyncio.Event()
    sign = wallet.sign_typed_data

    async def slow_sign(payload):
        signing.set()
        await release.wait()
        return await sign(payload)

    wallet.sign_typed_data = slow_sign
    executor = build_executor(chain, guard, wallet)
    stream = executor.execute(make_intent())

    await signing.wait()
    assert stream.execution.phase is Phase.AWAITING_SIGNATURE
    assert executor.cancel(stream.execution_id) is True
    statuses = await stream.collect()

    assert statuses[-1].phase is Phase.FAILED
    assert statuses[-1].error is ErrorKind.CANCELLED
    assert chain.submitted == []
    assert not executor.authority.is_issued(SIGNER, PAIR, 5)


@pytest.mark.asyncio
async def test_cancel_while_approval_is_pending(chain, guard, wallet):
    chain.allowance = 0
    chain.receipt_gate = asyncio.Event()
    executor = build_executor(chain, guard, wallet)
    stream = executor.execute(make_intent())

    async for status in stream:
        if status.phase is Phase.APPROVING_ALLOWANCE:
            break
    # Let the approval reach its receipt wait.
    while not chain.submitted:
        await asyncio.sleep(0)
    assert executor.cancel(stream.execution_id) is True
    statuses = await stream.collect()

    assert statuses[-1].phase is Phase.FAILED
    assert statuses[-1].error is ErrorKind.CANCELLED
    assert trade_calls(chain) == []
    assert not executor.authority.is_issued(SIGNER, PAIR, 5)


@pytest.mark.asyncio
async def test_cancel_refused_while_submitting(chain, guard, wallet):
    chain.submit_gate = asyncio.Event()
    executor = build_executor(chain, guard, wallet)
    stream = executor.execute(make_intent())

    async for status in stream:
        if status.phase is Phase.SUBMITTING_TRADE:
            break
    assert executor.cancel(stream.execution_id) is False
    chain.submit_gate.set()
    await stream.collect()

    assert stream.execution.phase is Phase.SUCCEEDED


@pytest.mark.asyncio
async def test_cancel_while_awaiting_confirmation(chain, guard, wallet, journal):
    chain.receipt_gate = asyncio.Event()
    executor = build_executor(chain, guard, wallet, journal)
    stream = executor.execute(make_intent())

    async for status in stream:
        if status.phase is Phase.AWAITING_CONFIRMATION:
            break
    assert executor.cancel(stream.execution_id) is True
    statuses = await stream.collect()

    execution = stream.execution
    assert statuses[-1].error is ErrorKind.CANCELLED
    assert execution.tx_hash is not None
    assert journal.update.await_args.args == (execution.tx_hash, PENDING)
    assert executor.authority.is_issued(SIGNER, PAIR, 5)


@pytest.mark.asyncio
async def test_cancel_unknown_or_finished(chain, guard, wallet):
    executor = build_executor(chain, guard, wallet)
    assert executor.cancel("nope") is False

    stream = executor.execute(make_intent())
    await stream.collect()
    assert executor.cancel(stream.execution_id) is False


# --- concurrency ---

@pytest.mark.asyncio
async def test_attempts_for_one_signer_are_serialized(chain, guard, wallet):
    executor = build_executor(chain, guard, wallet)

    first = executor.execute(make_intent())
    second = executor.execute(make_intent())
    await asyncio.gather(first.collect(), second.collect())

    assert first.execution.phase is Phase.SUCCEEDED
    assert second.execution.phase is Phase.SUCCEEDED
    assert {first.execution.authorization.nonce, second.execution.authorization.nonce} == {5, 6}
