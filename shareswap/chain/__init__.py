"""Chain access: cached reads, calldata encoding, wallet and client."""

from shareswap.chain.cache import ReadThroughCache
from shareswap.chain.client import ChainClient, Receipt, Web3ChainClient
from shareswap.chain.wallet import LocalAccountWallet, Wallet

__all__ = [
    "ChainClient",
    "LocalAccountWallet",
    "ReadThroughCache",
    "Receipt",
    "Wallet",
    "Web3ChainClient",
]
