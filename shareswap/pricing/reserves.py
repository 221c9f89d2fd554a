"""Pool reserve reads through the shared read-through cache."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import structlog

from shareswap.chain.cache import ReadThroughCache
from shareswap.exceptions import NoLiquidityError
from shareswap.execution.models import Reserves

if TYPE_CHECKING:
    from shareswap.chain.client import ChainClient

logger = structlog.get_logger()


class ReserveReader:
    """Side-effect-free reserve lookup.

    Transport failures surface as ``ChainReadError``; an empty pool surfaces as
    ``NoLiquidityError`` so callers can word the two differently.
    """

    def __init__(
        self,
        chain: "ChainClient",
        cache: Optional[ReadThroughCache] = None,
        ttl: float = 10.0,
    ) -> None:
        self.chain = chain
        self.cache = cache if cache is not None else ReadThroughCache(default_ttl=ttl)
        self.ttl = ttl

    @staticmethod
    def cache_key(asset_id: int) -> tuple[str, int]:
        return ("reserves", asset_id)

    async def get_reserves(self, asset_id: int, *, fresh: bool = False) -> Reserves:
        key = self.cache_key(asset_id)
        if fresh:
            self.cache.invalidate(key)
        reserves: Reserves = await self.cache.get(
            key, lambda: self.chain.read_reserves(asset_id), self.ttl
        )
        if reserves.currency_reserve <= 0 or reserves.asset_reserve <= 0:
            logger.info(
                "pool_empty",
                asset_id=asset_id,
                currency_reserve=reserves.currency_reserve,
                asset_reserve=reserves.asset_reserve,
            )
            raise NoLiquidityError(f"asset {asset_id} has no liquidity")
        return reserves

    def cached(self, asset_id: int) -> Optional[tuple[Reserves, float]]:
        """Cached reserves with their ``valid_until`` stamp, if still live."""
        return self.cache.lookup(self.cache_key(asset_id))
