from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import httpx
import structlog

logger = structlog.get_logger()
T = TypeVar("T")

RETRYABLE: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.ConnectError,
    asyncio.TimeoutError,
    ConnectionError,
)


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE,
    operation: str = "",
) -> T:
    """Retry an async RPC/REST call with exponential backoff."""
    last_exc: BaseException = RuntimeError("no attempts")
    for attempt in range(max_attempts):
        try:
            return await coro_factory()
        except retry_on as e:
            last_exc = e
            if attempt == max_attempts - 1:
                logger.error("call_failed", op=operation, error=str(e),
                             attempts=attempt + 1)
                raise
            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning("call_retry", op=operation, attempt=attempt + 1,
                           delay=delay, error=str(e))
            await asyncio.sleep(delay)
    raise last_exc
