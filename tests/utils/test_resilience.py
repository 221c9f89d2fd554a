# tests/utils/test_resilience.py
"""Tests for the with_retry backoff helper."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from shareswap.utils.resilience import with_retry


@pytest.mark.asyncio
async def test_returns_first_success():
    call = AsyncMock(return_value=3)

    assert await with_retry(call, operation="read") == 3
    call.assert_awaited_once()


@pytest.mark.asyncio
async def test_retries_transport_errors_with_backoff():
    call = AsyncMock(side_effect=[httpx.ConnectError("refused"), httpx.ReadTimeout("slow"), "ok"])

    with patch("shareswap.utils.resilience.asyncio.sleep", new=AsyncMock()) as sleep:
        result = await with_retry(call, max_attempts=3, base_delay=1.0, operation="read")

    assert result == "ok"
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_delay_is_capped():
    call = AsyncMock(side_effect=[ConnectionError()] * 3 + ["ok"])

    with patch("shareswap.utils.resilience.asyncio.sleep", new=AsyncMock()) as sleep:
        await with_retry(call, max_attempts=4, base_delay=10.0, max_delay=15.0)

    assert [c.args[0] for c in sleep.await_args_list] == [10.0, 15.0, 15.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    call = AsyncMock(side_effect=httpx.ConnectError("refused"))

    with patch("shareswap.utils.resilience.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(httpx.ConnectError):
            await with_retry(call, max_attempts=2)

    assert call.await_count == 2


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately():
    call = AsyncMock(side_effect=ValueError("bad payload"))

    with pytest.raises(ValueError):
        await with_retry(call, max_attempts=5)
    assert call.await_count == 1


@pytest.mark.asyncio
async def test_custom_retry_on():
    class Flaky(Exception):
        pass

    call = AsyncMock(side_effect=[Flaky(), "ok"])

    with patch("shareswap.utils.resilience.asyncio.sleep", new=AsyncMock()):
        assert await with_retry(call, retry_on=(Flaky,)) == "ok"
