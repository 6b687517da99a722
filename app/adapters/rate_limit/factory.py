"""Factory for the remote window store client."""

from __future__ import annotations

import redis.asyncio as redis

from app.core.config import RedisSettings, settings
from app.core.errors import ValidationAppError


def create_redis_client(redis_settings: RedisSettings | None = None) -> redis.Redis:
    """Build an async Redis client from settings.

    Socket timeouts mirror the store timeout so a dead server is detected
    within one rate limit check.

    Args:
        redis_settings: Optional settings; defaults to global settings.

    Returns:
        redis.asyncio.Redis: Client (connections are opened lazily).

    Raises:
        ValidationAppError: If no Redis URL is configured.
    """
    cfg = redis_settings or settings.redis

    if not cfg.url:
        raise ValidationAppError(
            code="redis_url_not_configured",
            message="Remote rate limit store requires REDIS_URL",
        )

    return redis.from_url(
        cfg.url,
        decode_responses=True,
        socket_timeout=cfg.timeout_seconds,
        socket_connect_timeout=cfg.timeout_seconds,
    )
