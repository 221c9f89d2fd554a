"""Blockchain read/write client.

Reads are raw (uncached) and retried on transport errors; callers that want
caching wrap them with ``ReadThroughCache``. Writes go through the wallet.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

import structlog
from eth_utils import to_checksum_address, to_hex
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from shareswap.chain.abi import ASSET_ABI, ERC20_ABI, PAIR_ABI
from shareswap.chain.wallet import Wallet, map_wallet_error
from shareswap.exceptions import ChainReadError, ShareSwapError, TradeTimeoutError
from shareswap.execution.models import Reserves
from shareswap.utils.resilience import with_retry

logger = structlog.get_logger()
T = TypeVar("T")

# aiohttp connector errors subclass OSError.
TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (OSError, asyncio.TimeoutError)


@dataclass(frozen=True, slots=True)
class Receipt:
    tx_hash: str
    status: bool
    block_number: int
    gas_used: int = 0
    revert_reason: Optional[str] = None


class ChainClient(Protocol):
    """Read/write primitives the pipeline consumes from the chain."""

    async def read_reserves(self, asset_id: int) -> Reserves: ...

    async def read_next_nonce(self, contract: str, signer: str) -> int: ...

    async def read_used_nonce(self, contract: str, signer: str) -> int: ...

    async def read_allowance(self, owner: str, spender: str) -> int: ...

    async def read_currency_balance(self, owner: str) -> int: ...

    async def read_asset_balance(self, owner: str, asset_id: int) -> int: ...

    async def submit_transaction(self, to: str, calldata: str) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Receipt: ...

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]: ...


class Web3ChainClient:
    """``ChainClient`` over web3.py's AsyncWeb3."""

    def __init__(
        self,
        w3: AsyncWeb3,
        wallet: Wallet,
        pair_address: str,
        asset_address: str,
        currency_address: str,
        *,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.5,
        poll_interval: float = 1.5,
    ) -> None:
        self.w3 = w3
        self.wallet = wallet
        self.pair_address = to_checksum_address(pair_address)
        self.asset_address = to_checksum_address(asset_address)
        self.currency_address = to_checksum_address(currency_address)
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay
        self._poll_interval = poll_interval

        self._pair = w3.eth.contract(address=self.pair_address, abi=PAIR_ABI)
        self._asset = w3.eth.contract(address=self.asset_address, abi=ASSET_ABI)
        self._currency = w3.eth.contract(address=self.currency_address, abi=ERC20_ABI)

    @classmethod
    def from_url(cls, rpc_url: str, wallet: Wallet, **kwargs: Any) -> "Web3ChainClient":
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        return cls(w3, wallet, **kwargs)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _read(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await with_retry(
                call,
                max_attempts=self._retry_attempts,
                base_delay=self._retry_base_delay,
                retry_on=TRANSPORT_ERRORS,
                operation=operation,
            )
        except ShareSwapError:
            raise
        except Exception as exc:
            raise ChainReadError(f"{operation} failed: {exc}") from exc

    def _nonce_contract(self, contract: str):
        address = to_checksum_address(contract)
        if address == self.pair_address:
            return self._pair
        if address == self.asset_address:
            return self._asset
        return self.w3.eth.contract(address=address, abi=ASSET_ABI)

    async def read_reserves(self, asset_id: int) -> Reserves:
        currency, assets = await self._read(
            "getPoolInfo",
            lambda: self._pair.functions.getPoolInfo([asset_id]).call(),
        )
        if not currency or not assets:
            raise ChainReadError(f"getPoolInfo returned no entry for asset {asset_id}")
        return Reserves(currency_reserve=int(currency[0]), asset_reserve=int(assets[0]))

    async def read_next_nonce(self, contract: str, signer: str) -> int:
        fn = self._nonce_contract(contract).functions.getCurrentNonce
        value = await self._read(
            "getCurrentNonce",
            lambda: fn(to_checksum_address(signer)).call(),
        )
        return int(value)

    async def read_used_nonce(self, contract: str, signer: str) -> int:
        fn = self._nonce_contract(contract).functions.usedNonces
        value = await self._read(
            "usedNonces",
            lambda: fn(to_checksum_address(signer)).call(),
        )
        return int(value)

    async def read_allowance(self, owner: str, spender: str) -> int:
        value = await self._read(
            "allowance",
            lambda: self._currency.functions.allowance(
                to_checksum_address(owner), to_checksum_address(spender)
            ).call(),
        )
        return int(value)

    async def read_currency_balance(self, owner: str) -> int:
        value = await self._read(
            "balanceOf",
            lambda: self._currency.functions.balanceOf(to_checksum_address(owner)).call(),
        )
        return int(value)

    async def read_asset_balance(self, owner: str, asset_id: int) -> int:
        value = await self._read(
            "balanceOf1155",
            lambda: self._asset.functions.balanceOf(
                to_checksum_address(owner), asset_id
            ).call(),
        )
        return int(value)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def submit_transaction(self, to: str, calldata: str) -> str:
        try:
            return await self.wallet.send_transaction(to, calldata)
        except ShareSwapError:
            raise
        except Exception as exc:
            raise map_wallet_error(exc) from exc

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Receipt:
        try:
            raw = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout, poll_latency=self._poll_interval
            )
        except (TimeExhausted, asyncio.TimeoutError) as exc:
            raise TradeTimeoutError(
                f"no receipt after {timeout:.0f}s", tx_hash=tx_hash
            ) from exc
        return await self._to_receipt(tx_hash, raw)

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        try:
            raw = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as exc:
            raise ChainReadError(f"receipt lookup failed: {exc}") from exc
        if raw is None:
            return None
        return await self._to_receipt(tx_hash, raw)

    async def _to_receipt(self, tx_hash: str, raw: Any) -> Receipt:
        status = int(raw["status"]) == 1
        block_number = int(raw["blockNumber"])
        reason = None
        if not status:
            reason = await self._revert_reason(tx_hash, block_number)
        return Receipt(
            tx_hash=tx_hash,
            status=status,
            block_number=block_number,
            gas_used=int(raw.get("gasUsed", 0)),
            revert_reason=reason,
        )

    async def _revert_reason(self, tx_hash: str, block_number: int) -> Optional[str]:
        """Replay the reverted call at its block to recover the reason string."""
        try:
            tx = await self.w3.eth.get_transaction(tx_hash)
            await self.w3.eth.call(
                {
                    "from": tx["from"],
                    "to": tx["to"],
                    "data": to_hex(tx["input"]),
                    "value": tx.get("value", 0),
                },
                block_number,
            )
        except ContractLogicError as exc:
            return exc.message or str(exc)
        except Exception as exc:
            logger.debug("revert_reason_unavailable", tx_hash=tx_hash, error=str(exc))
        return None
