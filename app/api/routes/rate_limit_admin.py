"""Administrative endpoints for the rate limiter.

Mounted only when ``APP_ADMIN_ROUTES_ENABLED`` is true.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, status

from app.core.config import settings
from app.core.rate_limit import connect_remote_store, get_rate_limiter
from app.schemas.rate_limit import (
    RateLimitConfigResponse,
    RateLimitConfigUpdate,
    RateLimitStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/rate-limit", tags=["Rate Limit"])


def _status(request: Request) -> RateLimitStatusResponse:
    stats = get_rate_limiter(request).stats()
    return RateLimitStatusResponse(
        backend=stats["backend"],
        remote_registered=stats["remote_registered"],
        redis_configured=bool(settings.redis.url),
        local_store=stats["local_store"],
    )


@router.get("/config", response_model=RateLimitConfigResponse)
def get_config(request: Request) -> RateLimitConfigResponse:
    """Return the configuration currently applied to every request."""

    return RateLimitConfigResponse.from_config(get_rate_limiter(request).get_config())


@router.patch("/config", response_model=RateLimitConfigResponse)
def update_config(payload: RateLimitConfigUpdate, request: Request) -> RateLimitConfigResponse:
    """Apply a partial configuration update.

    Fields left out of the payload keep their value. Non-positive numbers and
    blank messages are ignored.
    """

    config = get_rate_limiter(request).update_config(**payload.model_dump(exclude_none=True))
    return RateLimitConfigResponse.from_config(config)


@router.get("/status", response_model=RateLimitStatusResponse)
def get_status(request: Request) -> RateLimitStatusResponse:
    return _status(request)


@router.post("/fallback", response_model=RateLimitStatusResponse)
def force_fallback(request: Request) -> RateLimitStatusResponse:
    """Stop using Redis and count requests in process memory."""

    get_rate_limiter(request).force_fallback_to_local()
    return _status(request)


@router.post("/remote", response_model=RateLimitStatusResponse)
def retry_remote(request: Request) -> RateLimitStatusResponse:
    """Register the configured Redis store again (e.g., after a failover).

    Raises:
        HTTPException: 409 when no Redis URL is configured.
    """

    if not settings.redis.url:
        logger.warning("rate_limit.remote_retry_rejected", extra={"reason": "redis_not_configured"})
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No remote rate limit store is configured (REDIS_URL).",
        )

    connect_remote_store(request.app)
    return _status(request)
