# tests/chain/test_client.py
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from shareswap.chain.client import Web3ChainClient
from shareswap.exceptions import ChainReadError, SubmissionError, TradeTimeoutError
from shareswap.execution.models import Reserves

PAIR = "0xa160b769d12a0f3b932113bb4f181544af5ee68d"
ASSET = "0x5555555555555555555555555555555555555555"
CURRENCY = "0x6666666666666666666666666666666666666666"
SIGNER = "0x2c7536e3605d9c16a7a3d7b1898e529396a65c23"
TX = "0x" + "ab" * 32


@pytest.fixture
def contract():
    return MagicMock()


@pytest.fixture
def w3(contract):
    mock = MagicMock()
    mock.eth.contract.return_value = contract
    return mock


@pytest.fixture
def wallet():
    mock = MagicMock()
    mock.send_transaction = AsyncMock(return_value=TX)
    return mock


@pytest.fixture
def client(w3, wallet):
    return Web3ChainClient(
        w3, wallet, PAIR, ASSET, CURRENCY, retry_attempts=2, retry_base_delay=0
    )


@pytest.mark.asyncio
async def test_read_reserves(client, contract):
    contract.functions.getPoolInfo.return_value.call = AsyncMock(
        return_value=([1_000_000_000], [500 * 10**18])
    )

    reserves = await client.read_reserves(7)

    assert reserves == Reserves(1_000_000_000, 500 * 10**18)
    contract.functions.getPoolInfo.assert_called_with([7])


@pytest.mark.asyncio
async def test_read_reserves_empty_result_is_read_error(client, contract):
    contract.functions.getPoolInfo.return_value.call = AsyncMock(return_value=([], []))

    with pytest.raises(ChainReadError):
        await client.read_reserves(7)


@pytest.mark.asyncio
async def test_transport_error_is_retried(client, contract):
    contract.functions.getCurrentNonce.return_value.call = AsyncMock(
        side_effect=[ConnectionResetError("reset"), 9]
    )

    assert await client.read_next_nonce(PAIR, SIGNER) == 9


@pytest.mark.asyncio
async def test_contract_error_is_read_error_without_retry(client, contract):
    call = AsyncMock(side_effect=ContractLogicError("execution reverted"))
    contract.functions.getCurrentNonce.return_value.call = call

    with pytest.raises(ChainReadError):
        await client.read_next_nonce(PAIR, SIGNER)
    assert call.await_count == 1


@pytest.mark.asyncio
async def test_balances_and_allowance(client, contract):
    contract.functions.allowance.return_value.call = AsyncMock(return_value=100)
    contract.functions.balanceOf.return_value.call = AsyncMock(return_value=250)

    assert await client.read_allowance(SIGNER, PAIR) == 100
    assert await client.read_currency_balance(SIGNER) == 250
    assert await client.read_asset_balance(SIGNER, 7) == 250


@pytest.mark.asyncio
async def test_submit_goes_through_wallet(client, wallet):
    assert await client.submit_transaction(PAIR, "0x00") == TX
    wallet.send_transaction.assert_awaited_once_with(PAIR, "0x00")


@pytest.mark.asyncio
async def test_submit_maps_provider_errors(client, wallet):
    wallet.send_transaction = AsyncMock(side_effect=ValueError("nonce too low"))

    with pytest.raises(SubmissionError):
        await client.submit_transaction(PAIR, "0x00")


@pytest.mark.asyncio
async def test_wait_for_receipt_success(client, w3):
    w3.eth.wait_for_transaction_receipt = AsyncMock(
        return_value={"status": 1, "blockNumber": 12, "gasUsed": 21000}
    )

    receipt = await client.wait_for_receipt(TX, timeout=30)

    assert receipt.status is True
    assert receipt.block_number == 12
    assert receipt.revert_reason is None


@pytest.mark.asyncio
async def test_wait_for_receipt_timeout(client, w3):
    w3.eth.wait_for_transaction_receipt = AsyncMock(side_effect=TimeExhausted("slow"))

    with pytest.raises(TradeTimeoutError) as exc_info:
        await client.wait_for_receipt(TX, timeout=30)
    assert exc_info.value.tx_hash == TX


@pytest.mark.asyncio
async def test_reverted_receipt_carries_reason(client, w3):
    w3.eth.wait_for_transaction_receipt = AsyncMock(
        return_value={"status": 0, "blockNumber": 12, "gasUsed": 50000}
    )
    w3.eth.get_transaction = AsyncMock(
        return_value={"from": SIGNER, "to": PAIR, "input": b"\x01\x02", "value": 0}
    )
    w3.eth.call = AsyncMock(side_effect=ContractLogicError("execution reverted: Slippage"))

    receipt = await client.wait_for_receipt(TX, timeout=30)

    assert receipt.status is False
    assert "Slippage" in receipt.revert_reason


@pytest.mark.asyncio
async def test_get_receipt_unknown_tx(client, w3):
    w3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("missing"))

    assert await client.get_receipt(TX) is None
