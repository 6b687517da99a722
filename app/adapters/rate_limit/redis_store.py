"""Redis-backed fixed-window store.

Shares the window contract of the in-memory store but lives in Redis, so the
limit is enforced across every worker that talks to the same instance.

Every failure of the client, expected or not, is raised as
RateLimitStoreError so the limiter can fail over to the local store.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from redis.exceptions import RedisError

from app.adapters.rate_limit.base import RemoteStoreClient, WindowCheck, epoch_ms
from app.core.errors import RateLimitStoreError


class RedisWindowStore:
    """Fixed-window counter stored in Redis.

    The counter key expires with the window (``SET ... PX window_ms``), so
    Redis itself drops stale windows. Once a client reaches the limit the
    counter is no longer incremented.
    """

    def __init__(
        self,
        client: RemoteStoreClient,
        *,
        timeout_seconds: float = 0.5,
        key_prefix: str = "ratelimit:",
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        """Initialize the Redis store.

        Args:
            client: Async Redis client (or compatible object).
            timeout_seconds: Upper bound for one check, all round-trips included.
            key_prefix: Prefix applied to every key.
            clock: Time source returning UNIX time in milliseconds.

        Raises:
            ValueError: If timeout_seconds is not positive.
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self._client = client
        self._timeout = timeout_seconds
        self._key_prefix = key_prefix
        self._clock = clock

    @property
    def client(self) -> RemoteStoreClient:
        return self._client

    def key_for(self, identifier: str) -> str:
        return f"{self._key_prefix}{identifier}"

    async def check(self, identifier: str, *, limit: int, window_ms: int) -> WindowCheck:
        """Count one request for ``identifier`` in Redis.

        Args:
            identifier: Client identifier (e.g., IP address).
            limit: Maximum number of allowed requests per window.
            window_ms: Window length in milliseconds.

        Returns:
            WindowCheck with the allowance decision and metadata.

        Raises:
            RateLimitStoreError: If Redis fails, times out or returns garbage.
        """
        try:
            return await asyncio.wait_for(
                self._check(identifier, limit=limit, window_ms=window_ms),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RateLimitStoreError(
                code="rate_limit_store_timeout",
                message=f"Rate limit store did not answer within {self._timeout}s",
                details={"backend": "redis", "error_type": type(exc).__name__},
            ) from exc
        except RateLimitStoreError:
            raise
        except (RedisError, OSError) as exc:
            raise RateLimitStoreError(
                code="rate_limit_store_unavailable",
                message=f"Rate limit store error: {exc}",
                details={"backend": "redis", "error_type": type(exc).__name__},
            ) from exc
        except Exception as exc:
            # Any registered client may misbehave; none of it may reach the request.
            raise RateLimitStoreError(
                code="rate_limit_store_unavailable",
                message=f"Rate limit store client failed: {exc}",
                details={"backend": "redis", "error_type": type(exc).__name__},
            ) from exc

    async def _check(self, identifier: str, *, limit: int, window_ms: int) -> WindowCheck:
        key = self.key_for(identifier)
        now = self._clock()

        raw_count = await self._client.get(key)
        if raw_count is None:
            await self._client.set(key, 1, px=window_ms)
            return WindowCheck(
                allowed=True,
                remaining=limit - 1,
                reset_time_ms=now + window_ms,
            )

        count = _parse_count(raw_count)

        ttl_ms = await self._client.pttl(key)
        reset_time_ms = now + (ttl_ms if ttl_ms is not None and ttl_ms > 0 else window_ms)

        if count >= limit:
            return WindowCheck(allowed=False, remaining=0, reset_time_ms=reset_time_ms)

        await self._client.incr(key)
        return WindowCheck(
            allowed=True,
            remaining=limit - count - 1,
            reset_time_ms=reset_time_ms,
        )


def _parse_count(raw: bytes | str | int) -> int:
    """Parse a counter value read back from Redis.

    Raises:
        RateLimitStoreError: If the stored value is not an integer.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise RateLimitStoreError(
            code="rate_limit_store_malformed",
            message=f"Rate limit counter is not an integer: {raw!r}",
            details={"backend": "redis", "error_type": type(exc).__name__},
        ) from exc
