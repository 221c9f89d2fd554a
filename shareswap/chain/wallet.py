"""Wallet signing capability.

Embedded (delegated) wallets sign and send silently; external wallets prompt
the holder, who may decline. Both surface declines as ``UserRejectedError``.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import structlog
from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from eth_utils import to_checksum_address, to_hex
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError

from shareswap.exceptions import (
    InsufficientBalanceError,
    ShareSwapError,
    SubmissionError,
    UserRejectedError,
)

logger = structlog.get_logger()

USER_REJECTED_CODE = 4001  # EIP-1193


@runtime_checkable
class Wallet(Protocol):
    """Interface every signer backend must satisfy."""

    @property
    def address(self) -> str: ...

    @property
    def is_embedded(self) -> bool: ...

    async def sign_typed_data(self, typed_data: dict[str, Any]) -> str: ...

    async def sign_message(self, message: str) -> str: ...

    async def send_transaction(self, to: str, data: str, value: int = 0) -> str: ...


def map_wallet_error(exc: Exception) -> ShareSwapError:
    """Translate a provider error into the pipeline taxonomy."""
    if isinstance(exc, ShareSwapError):
        return exc
    code = getattr(exc, "code", None)
    message = str(exc)
    lowered = message.lower()
    if code == USER_REJECTED_CODE or "user rejected" in lowered or "user denied" in lowered:
        return UserRejectedError("request was rejected in the wallet")
    if "insufficient funds" in lowered:
        return InsufficientBalanceError("insufficient funds for this transaction")
    return SubmissionError(message or exc.__class__.__name__)


class LocalAccountWallet:
    """Private-key wallet: signs locally, broadcasts through an AsyncWeb3 node."""

    def __init__(
        self,
        private_key: str,
        w3: AsyncWeb3,
        chain_id: int,
        *,
        embedded: bool = True,
        gas_multiplier: float = 1.2,
    ) -> None:
        self._account = Account.from_key(private_key)
        self._w3 = w3
        self._chain_id = chain_id
        self._embedded = embedded
        self._gas_multiplier = gas_multiplier

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def is_embedded(self) -> bool:
        return self._embedded

    async def sign_typed_data(self, typed_data: dict[str, Any]) -> str:
        signable = encode_typed_data(full_message=typed_data)
        signed = self._account.sign_message(signable)
        return to_hex(signed.signature)

    async def sign_message(self, message: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=message))
        return to_hex(signed.signature)

    async def send_transaction(self, to: str, data: str, value: int = 0) -> str:
        tx: dict[str, Any] = {
            "from": self.address,
            "to": to_checksum_address(to),
            "data": data,
            "value": value,
            "chainId": self._chain_id,
        }
        try:
            tx["nonce"] = await self._w3.eth.get_transaction_count(self.address, "pending")
            estimate = await self._w3.eth.estimate_gas(tx)
            tx["gas"] = int(estimate * self._gas_multiplier)
            latest = await self._w3.eth.get_block("latest")
            priority = await self._w3.eth.max_priority_fee
            tx["maxPriorityFeePerGas"] = priority
            tx["maxFeePerGas"] = int(latest["baseFeePerGas"]) * 2 + priority
        except ContractLogicError as exc:
            raise SubmissionError(f"transaction would revert: {exc.message or exc}") from exc
        except Exception as exc:
            raise map_wallet_error(exc) from exc

        signed = self._account.sign_transaction(tx)
        try:
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            raise map_wallet_error(exc) from exc

        hex_hash = to_hex(tx_hash)
        logger.info(
            "transaction_sent",
            wallet=self.address,
            to=tx["to"],
            tx_hash=hex_hash,
            embedded=self._embedded,
        )
        return hex_hash
