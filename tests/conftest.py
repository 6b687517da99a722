"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set here before any import loads settings.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")

# Tests never talk to a real Redis; the remote store is faked per test.
os.environ.pop("REDIS_URL", None)
os.environ.setdefault("APP_ADMIN_ROUTES_ENABLED", "true")
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402

from app.adapters.rate_limit.in_memory import InMemoryWindowStore  # noqa: E402
from app.services.rate_limit_config import RateLimitConfig, RateLimitConfigHolder  # noqa: E402
from app.services.rate_limiter import RateLimiter  # noqa: E402


class FakeRedis:
    """Minimal async stand-in for redis.asyncio.Redis (get/set/incr/pttl)."""

    def __init__(self, clock) -> None:
        self._clock = clock
        self.data: dict[str, str] = {}
        self.expires_at: dict[str, int] = {}
        self.calls: list[str] = []

    def _expire(self, name: str) -> None:
        deadline = self.expires_at.get(name)
        if deadline is not None and self._clock() >= deadline:
            self.data.pop(name, None)
            self.expires_at.pop(name, None)

    async def get(self, name: str) -> str | None:
        self.calls.append("get")
        self._expire(name)
        return self.data.get(name)

    async def set(self, name: str, value, px: int | None = None) -> bool:
        self.calls.append("set")
        self.data[name] = str(value)
        if px is not None:
            self.expires_at[name] = self._clock() + px
        return True

    async def incr(self, name: str) -> int:
        self.calls.append("incr")
        self._expire(name)
        value = int(self.data.get(name, "0")) + 1
        self.data[name] = str(value)
        return value

    async def pttl(self, name: str) -> int:
        self.calls.append("pttl")
        self._expire(name)
        if name not in self.data:
            return -2
        if name not in self.expires_at:
            return -1
        return self.expires_at[name] - self._clock()


@pytest.fixture
def clock() -> Mock:
    """Millisecond clock frozen at a fixed epoch; tests move it explicitly."""
    return Mock(return_value=1_700_000_000_000)


@pytest.fixture
def fake_redis(clock: Mock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def make_limiter(clock: Mock):
    """Build a RateLimiter with a small window sharing the test clock."""

    def _make(*, window_ms: int = 1000, max_requests: int = 2, **kwargs) -> RateLimiter:
        config = RateLimitConfigHolder(
            RateLimitConfig(window_ms=window_ms, max_requests=max_requests)
        )
        return RateLimiter(
            config=config,
            local_store=InMemoryWindowStore(clock=clock),
            clock=clock,
            **kwargs,
        )

    return _make
