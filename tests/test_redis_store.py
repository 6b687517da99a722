"""Unit tests for the Redis-backed window store."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from app.adapters.rate_limit.redis_store import RedisWindowStore
from app.core.errors import RateLimitStoreError


class SlowRedis:
    async def get(self, name):
        await asyncio.sleep(1)
        return None


@pytest.mark.asyncio
async def test_first_request_sets_counter_with_expiry(fake_redis, clock) -> None:
    store = RedisWindowStore(fake_redis, clock=clock)

    result = await store.check("1.2.3.4", limit=3, window_ms=60_000)

    assert result.allowed is True
    assert result.remaining == 2
    assert result.reset_time_ms == clock() + 60_000
    assert fake_redis.data["ratelimit:1.2.3.4"] == "1"
    assert fake_redis.expires_at["ratelimit:1.2.3.4"] == clock() + 60_000


@pytest.mark.asyncio
async def test_subsequent_requests_increment_and_use_ttl(fake_redis, clock) -> None:
    store = RedisWindowStore(fake_redis, clock=clock)
    start = clock.return_value

    await store.check("k", limit=3, window_ms=60_000)
    clock.return_value = start + 10_000
    result = await store.check("k", limit=3, window_ms=60_000)

    assert result.allowed is True
    assert result.remaining == 1
    assert result.reset_time_ms == start + 60_000
    assert fake_redis.data["ratelimit:k"] == "2"


@pytest.mark.asyncio
async def test_rejects_at_limit_without_incrementing(fake_redis, clock) -> None:
    store = RedisWindowStore(fake_redis, clock=clock)

    for _ in range(2):
        assert (await store.check("k", limit=2, window_ms=60_000)).allowed is True

    for _ in range(3):
        blocked = await store.check("k", limit=2, window_ms=60_000)
        assert blocked.allowed is False
        assert blocked.remaining == 0

    assert fake_redis.data["ratelimit:k"] == "2"


@pytest.mark.asyncio
async def test_new_window_after_key_expires(fake_redis, clock) -> None:
    store = RedisWindowStore(fake_redis, clock=clock)
    start = clock.return_value

    await store.check("k", limit=1, window_ms=1000)
    assert (await store.check("k", limit=1, window_ms=1000)).allowed is False

    clock.return_value = start + 1100
    result = await store.check("k", limit=1, window_ms=1000)

    assert result.allowed is True
    assert result.reset_time_ms == start + 1100 + 1000


@pytest.mark.asyncio
async def test_missing_ttl_falls_back_to_window_length(fake_redis, clock) -> None:
    fake_redis.data["ratelimit:k"] = "1"  # key without expiry: PTTL returns -1
    store = RedisWindowStore(fake_redis, clock=clock)

    result = await store.check("k", limit=5, window_ms=30_000)

    assert result.reset_time_ms == clock() + 30_000


@pytest.mark.asyncio
async def test_custom_key_prefix(fake_redis, clock) -> None:
    store = RedisWindowStore(fake_redis, key_prefix="rl:", clock=clock)

    await store.check("k", limit=5, window_ms=1000)

    assert "rl:k" in fake_redis.data


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [RedisConnectionError("connection refused"), ResponseError("WRONGTYPE"), OSError("reset")],
)
async def test_backend_errors_become_store_errors(error: Exception) -> None:
    client = AsyncMock()
    client.get.side_effect = error
    store = RedisWindowStore(client)

    with pytest.raises(RateLimitStoreError) as exc_info:
        await store.check("k", limit=5, window_ms=1000)

    assert exc_info.value.code == "rate_limit_store_unavailable"
    assert exc_info.value.__cause__ is error


@pytest.mark.asyncio
async def test_timeout_becomes_store_error() -> None:
    store = RedisWindowStore(SlowRedis(), timeout_seconds=0.01)

    with pytest.raises(RateLimitStoreError) as exc_info:
        await store.check("k", limit=5, window_ms=1000)

    assert exc_info.value.code == "rate_limit_store_timeout"


@pytest.mark.asyncio
async def test_malformed_counter_becomes_store_error(fake_redis) -> None:
    fake_redis.data["ratelimit:k"] = "not-a-number"
    store = RedisWindowStore(fake_redis)

    with pytest.raises(RateLimitStoreError) as exc_info:
        await store.check("k", limit=5, window_ms=1000)

    assert exc_info.value.code == "rate_limit_store_malformed"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [RuntimeError("boom"), ValueError("bad reply"), AttributeError("no attribute 'get'")],
)
async def test_unexpected_client_errors_become_store_errors(error: Exception) -> None:
    client = AsyncMock()
    client.get.side_effect = error
    store = RedisWindowStore(client)

    with pytest.raises(RateLimitStoreError) as exc_info:
        await store.check("k", limit=5, window_ms=1000)

    assert exc_info.value.code == "rate_limit_store_unavailable"
    assert exc_info.value.__cause__ is error


@pytest.mark.asyncio
async def test_non_numeric_ttl_becomes_store_error() -> None:
    client = AsyncMock()
    client.get.return_value = "1"
    client.pttl.return_value = "soon"
    store = RedisWindowStore(client)

    with pytest.raises(RateLimitStoreError) as exc_info:
        await store.check("k", limit=5, window_ms=1000)

    assert exc_info.value.details["error_type"] == "TypeError"


def test_invalid_timeout() -> None:
    with pytest.raises(ValueError):
        RedisWindowStore(AsyncMock(), timeout_seconds=0)
