"""Read-through cache for chain reads.

Entries expose ``(value, valid_until)`` so callers can reason about staleness.
Concurrent loads for one key share a single in-flight request.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Hashable, Optional

import structlog

logger = structlog.get_logger()


@dataclass(slots=True)
class CacheEntry:
    value: Any
    valid_until: float


class ReadThroughCache:
    """In-process TTL cache keyed by read descriptor."""

    def __init__(
        self,
        default_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry] = {}
        self._inflight: dict[Hashable, asyncio.Future] = {}

    def lookup(self, key: Hashable) -> Optional[tuple[Any, float]]:
        """Return ``(value, valid_until)`` for a live entry, else None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.valid_until:
            del self._entries[key]
            return None
        return entry.value, entry.valid_until

    def store(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> float:
        valid_until = self._clock() + (self.default_ttl if ttl is None else ttl)
        self._entries[key] = CacheEntry(value=value, valid_until=valid_until)
        return valid_until

    async def get(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        hit = self.lookup(key)
        if hit is not None:
            logger.debug("cache_hit", key=str(key))
            return hit[0]

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await loader()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Retrieve so a waiter-less failure doesn't warn on GC.
            future.exception()
            raise
        else:
            self.store(key, value, ttl)
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
