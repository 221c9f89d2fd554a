"""Authorization nonce resolution.

The settlement contract is the source of truth. It is probed in a fixed
order: the "next nonce" accessor, then the "highest used nonce" accessor
(``used + 1``), then a flagged default that callers must surface to the user.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

import structlog

from shareswap.chain.cache import ReadThroughCache
from shareswap.exceptions import ChainReadError

if TYPE_CHECKING:
    from shareswap.chain.client import ChainClient

logger = structlog.get_logger()

DEFAULT_NONCE = 1


class NonceSource(str, Enum):
    NEXT_ACCESSOR = "next_accessor"
    USED_ACCESSOR = "used_accessor"
    DEGRADED_DEFAULT = "degraded_default"


@dataclass(frozen=True, slots=True)
class NonceResolution:
    value: int
    source: NonceSource

    @property
    def degraded(self) -> bool:
        return self.source is NonceSource.DEGRADED_DEFAULT


class NonceResolver:
    """Resolves the next usable nonce for ``(signer, contract)``.

    Keeps a per-signer high-water mark so two sequential resolutions never go
    backwards, even when a lagging node or stale cache answers the second one.
    """

    def __init__(
        self,
        chain: "ChainClient",
        cache: Optional[ReadThroughCache] = None,
        ttl: float = 30.0,
        default_nonce: int = DEFAULT_NONCE,
    ) -> None:
        self.chain = chain
        self.cache = cache if cache is not None else ReadThroughCache(default_ttl=ttl)
        self.ttl = ttl
        self.default_nonce = default_nonce
        self._high_water: dict[tuple[str, str], int] = {}

    @staticmethod
    def _scope(signer: str, contract: str) -> tuple[str, str]:
        return (contract.lower(), signer.lower())

    async def resolve_next_nonce(
        self,
        signer: str,
        contract: str,
        *,
        fresh: bool = False,
    ) -> NonceResolution:
        """Resolve the next nonce; ``fresh=True`` bypasses the shared cache."""
        scope = self._scope(signer, contract)
        key = ("nonce",) + scope

        if fresh:
            resolution = await self._probe(signer, contract)
            if not resolution.degraded:
                self.cache.store(key, resolution, self.ttl)
        else:
            resolution = await self.cache.get(
                key, lambda: self._probe(signer, contract), self.ttl
            )
            if resolution.degraded:
                self.cache.invalidate(key)

        high = self._high_water.get(scope)
        if high is not None and resolution.value < high:
            logger.warning(
                "nonce_regression",
                signer=signer,
                contract=contract,
                read=resolution.value,
                high_water=high,
            )
            resolution = NonceResolution(value=high, source=resolution.source)
        self._high_water[scope] = resolution.value

        logger.debug(
            "nonce_resolved",
            signer=signer,
            contract=contract,
            nonce=resolution.value,
            source=resolution.source.value,
            fresh=fresh,
        )
        return resolution

    async def resolve_for_signing(
        self,
        signer: str,
        contract: str,
        earlier: Optional[int] = None,
    ) -> NonceResolution:
        """Uncached pre-sign read. A disagreeing earlier value is discarded."""
        resolution = await self.resolve_next_nonce(signer, contract, fresh=True)
        if earlier is not None and earlier != resolution.value:
            logger.info(
                "nonce_race",
                signer=signer,
                contract=contract,
                quoted=earlier,
                fresh=resolution.value,
            )
        return resolution

    async def _probe(self, signer: str, contract: str) -> NonceResolution:
        try:
            value = await self.chain.read_next_nonce(contract, signer)
            return NonceResolution(value=value, source=NonceSource.NEXT_ACCESSOR)
        except ChainReadError as exc:
            logger.debug("next_nonce_unavailable", contract=contract, error=str(exc))

        try:
            used = await self.chain.read_used_nonce(contract, signer)
            return NonceResolution(value=used + 1, source=NonceSource.USED_ACCESSOR)
        except ChainReadError as exc:
            logger.warning(
                "nonce_source_degraded",
                signer=signer,
                contract=contract,
                default=self.default_nonce,
                error=str(exc),
            )
        return NonceResolution(value=self.default_nonce, source=NonceSource.DEGRADED_DEFAULT)
