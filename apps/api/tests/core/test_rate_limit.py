"""
Tests for the rate limiter.

These tests verify:
- The in-memory sliding window used when Redis is unavailable
- Fallback from Redis to memory on Redis errors
- enforce_rate_limit raises a 429
- Connecting and disconnecting the Redis backend
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from intake.core import rate_limit
from intake.core.rate_limit import RateLimitExceeded, check_rate_limit, enforce_rate_limit


@pytest.fixture(autouse=True)
def clear_memory_store():
    rate_limit._memory_store.clear()
    yield
    rate_limit._memory_store.clear()


@pytest.fixture
def mock_redis():
    """Redis client whose pipeline reports ``count`` hits already in the window."""

    def _make(count):
        client = MagicMock()
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[0, count, 1, True])
        client.pipeline.return_value = pipe
        return client

    return _make


class TestMemoryFallback:
    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self):
        with patch("intake.core.rate_limit.get_redis", return_value=None):
            results = [await check_rate_limit("k", 3, 60) for _ in range(4)]

        assert results == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_window_expires(self):
        with (
            patch("intake.core.rate_limit.get_redis", return_value=None),
            patch("intake.core.rate_limit.time") as mock_time,
        ):
            mock_time.time.side_effect = [1000.0, 1000.5, 1100.0]
            assert await check_rate_limit("k", 1, 60) is True
            assert await check_rate_limit("k", 1, 60) is False
            assert await check_rate_limit("k", 1, 60) is True


class TestRedisBackend:
    @pytest.mark.asyncio
    async def test_under_limit(self, mock_redis):
        with patch("intake.core.rate_limit.get_redis", return_value=mock_redis(2)):
            assert await check_rate_limit("k", 3, 60) is True

    @pytest.mark.asyncio
    async def test_over_limit(self, mock_redis):
        with patch("intake.core.rate_limit.get_redis", return_value=mock_redis(3)):
            assert await check_rate_limit("k", 3, 60) is False

    @pytest.mark.asyncio
    async def test_redis_error_falls_back_to_memory(self, mock_redis):
        client = mock_redis(0)
        client.pipeline.return_value.execute.side_effect = RedisConnectionError("down")

        with patch("intake.core.rate_limit.get_redis", return_value=client):
            assert await check_rate_limit("k", 1, 60) is True

        assert "k" in rate_limit._memory_store


class TestEnforceRateLimit:
    @pytest.mark.asyncio
    async def test_raises_429(self):
        with patch("intake.core.rate_limit.check_rate_limit", AsyncMock(return_value=False)):
            with pytest.raises(RateLimitExceeded) as exc_info:
                await enforce_rate_limit("k", 3, 900)

        assert exc_info.value.status_code == 429
        assert exc_info.value.headers["Retry-After"] == "900"


class TestBackendConnection:
    @pytest.mark.asyncio
    async def test_connect_then_disconnect(self):
        client = AsyncMock()
        with patch("intake.core.rate_limit.from_url", return_value=client):
            await rate_limit.connect_backend("redis://localhost:6379/0")

        assert rate_limit.get_redis() is client

        await rate_limit.disconnect_backend()

        client.aclose.assert_awaited_once()
        assert rate_limit.get_redis() is None

    @pytest.mark.asyncio
    async def test_failed_ping_leaves_memory_backend(self):
        client = AsyncMock()
        client.ping.side_effect = RedisConnectionError("refused")

        with patch("intake.core.rate_limit.from_url", return_value=client):
            with pytest.raises(RedisConnectionError):
                await rate_limit.connect_backend("redis://localhost:6379/0")

        assert rate_limit.get_redis() is None
        client.aclose.assert_awaited_once()
