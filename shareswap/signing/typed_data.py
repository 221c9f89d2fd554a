"""EIP-712 payloads for BuyTokens / SellTokens authorizations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from eth_utils import is_address, to_checksum_address

from shareswap.exceptions import InvalidAmountError, InvalidDeadlineError
from shareswap.execution.models import Direction, OnChainTerms

EIP712_DOMAIN = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

BUY_TOKENS_TYPE = [
    {"name": "buyer", "type": "address"},
    {"name": "playerTokenIds", "type": "uint256[]"},
    {"name": "amounts", "type": "uint256[]"},
    {"name": "maxCurrencySpend", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
]

SELL_TOKENS_TYPE = [
    {"name": "seller", "type": "address"},
    {"name": "playerTokenIds", "type": "uint256[]"},
    {"name": "amounts", "type": "uint256[]"},
    {"name": "minCurrencyToReceive", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
]


@dataclass(frozen=True, slots=True)
class SettlementDomain:
    """EIP-712 domain of one settlement contract."""

    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": to_checksum_address(self.verifying_contract),
        }


def _is_uint(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def validate_trade_params(terms: OnChainTerms, nonce: int) -> None:
    """Reject terms a settlement contract could never accept."""
    if not terms.asset_ids:
        raise InvalidAmountError("at least one asset id is required")
    if len(terms.asset_ids) != len(terms.amounts):
        raise InvalidAmountError(
            f"{len(terms.asset_ids)} asset ids but {len(terms.amounts)} amounts"
        )
    if not all(_is_uint(v) for v in terms.asset_ids):
        raise InvalidAmountError("asset ids must be non-negative integers")
    if not all(_is_uint(v) and v > 0 for v in terms.amounts):
        raise InvalidAmountError("amounts must be positive integers")
    if not _is_uint(terms.bound):
        raise InvalidAmountError("bound must be a non-negative integer")
    if not _is_uint(terms.deadline) or terms.deadline == 0:
        raise InvalidDeadlineError("deadline must be a positive unix timestamp")
    if not _is_uint(nonce):
        raise InvalidAmountError(f"nonce must be a non-negative integer, got {nonce!r}")


def build_typed_data(
    direction: Direction,
    domain: SettlementDomain,
    signer: str,
    terms: OnChainTerms,
    nonce: int,
) -> dict[str, Any]:
    """Full EIP-712 message, ready for ``encode_typed_data(full_message=...)``."""
    validate_trade_params(terms, nonce)
    if not is_address(signer):
        raise InvalidAmountError(f"signer {signer!r} is not an address")

    common = {
        "playerTokenIds": list(terms.asset_ids),
        "amounts": list(terms.amounts),
        "deadline": terms.deadline,
        "nonce": nonce,
    }
    if direction is Direction.BUY:
        primary = "BuyTokens"
        fields = BUY_TOKENS_TYPE
        message = {"buyer": to_checksum_address(signer), **common,
                   "maxCurrencySpend": terms.bound}
    else:
        primary = "SellTokens"
        fields = SELL_TOKENS_TYPE
        message = {"seller": to_checksum_address(signer), **common,
                   "minCurrencyToReceive": terms.bound}

    return {
        "types": {"EIP712Domain": EIP712_DOMAIN, primary: fields},
        "primaryType": primary,
        "domain": domain.as_dict(),
        "message": message,
    }
