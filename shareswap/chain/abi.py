"""Contract ABI fragments and calldata encoders."""

from __future__ import annotations

from typing import Any, Sequence

from eth_abi import encode as abi_encode
from eth_utils import function_signature_to_4byte_selector, to_bytes

PAIR_ABI: list[dict[str, Any]] = [
    {
        "name": "getPoolInfo",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "playerTokenIds", "type": "uint256[]"}],
        "outputs": [
            {"name": "currencyReserves", "type": "uint256[]"},
            {"name": "playerTokenReserves", "type": "uint256[]"},
        ],
    },
    {
        "name": "getCurrentNonce",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "usedNonces",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "currencyToken",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
]

# Nonce accessors on the asset contract share the pair's shape.
ASSET_ABI: list[dict[str, Any]] = [
    entry for entry in PAIR_ABI if entry["name"] in ("getCurrentNonce", "usedNonces")
] + [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "account", "type": "address"},
            {"name": "id", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

ERC20_ABI: list[dict[str, Any]] = [
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

APPROVE_SIG = "approve(address,uint256)"
BUY_TOKENS_SIG = "buyTokens(uint256[],uint256[],uint256,uint256,address,bytes,uint256)"
SELL_TOKENS_SIG = "sellTokens(uint256[],uint256[],uint256,uint256,bytes,uint256)"


def encode_function_call(signature: str, arg_types: list[str], args: list[Any]) -> str:
    """Encode ``selector || abi.encode(args)`` as 0x-prefixed hex."""
    selector = function_signature_to_4byte_selector(signature)
    return "0x" + (selector + abi_encode(arg_types, args)).hex()


def encode_approve(spender: str, amount: int) -> str:
    return encode_function_call(APPROVE_SIG, ["address", "uint256"], [spender, amount])


def encode_buy_tokens(
    asset_ids: Sequence[int],
    amounts: Sequence[int],
    max_currency_spend: int,
    deadline: int,
    recipient: str,
    signature: str,
    nonce: int,
) -> str:
    return encode_function_call(
        BUY_TOKENS_SIG,
        ["uint256[]", "uint256[]", "uint256", "uint256", "address", "bytes", "uint256"],
        [
            list(asset_ids),
            list(amounts),
            max_currency_spend,
            deadline,
            recipient,
            to_bytes(hexstr=signature),
            nonce,
        ],
    )


def encode_sell_tokens(
    asset_ids: Sequence[int],
    amounts: Sequence[int],
    min_currency_to_receive: int,
    deadline: int,
    signature: str,
    nonce: int,
) -> str:
    return encode_function_call(
        SELL_TOKENS_SIG,
        ["uint256[]", "uint256[]", "uint256", "uint256", "bytes", "uint256"],
        [
            list(asset_ids),
            list(amounts),
            min_currency_to_receive,
            deadline,
            to_bytes(hexstr=signature),
            nonce,
        ],
    )
