"""Rate limiting wiring for the HTTP layer.

This module connects the limiter to FastAPI.

Design goals:
- Every non-exempt request is counted once, before routing.
- X-RateLimit-* headers are sent on every limited response, allowed or not.
- Throttled requests get a 429 JSON body and never reach the route.
- The limiter lives on ``app.state`` so tests can inject their own.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from app.adapters.rate_limit.factory import create_redis_client
from app.core.client_identity import client_identifier_from_request
from app.core.config import RedisSettings, settings
from app.services.rate_limiter import RateLimitDecision, RateLimiter

logger = logging.getLogger(__name__)


def parse_exempt_paths(paths_string: str | None) -> set[str]:
    """Parse comma-separated request paths into a set.

    Examples:
        >>> sorted(parse_exempt_paths("/health, /metrics"))
        ['/health', '/metrics']
        >>> parse_exempt_paths("")
        set()
    """
    if not paths_string:
        return set()
    return {path.strip() for path in paths_string.split(",") if path.strip()}


def get_rate_limiter(request: Request) -> RateLimiter:
    """Return the limiter attached to the running application."""
    return request.app.state.rate_limiter


def build_rejection_response(decision: RateLimitDecision) -> JSONResponse:
    """Build the 429 response for a throttled request."""
    retry_after = decision.retry_after_seconds or 0
    headers = decision.headers()
    headers["Retry-After"] = str(retry_after)

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"message": decision.message, "retryAfter": retry_after},
        headers=headers,
    )


async def rate_limit_middleware(request: Request, call_next) -> Response:
    """HTTP middleware enforcing the per-client rate limit.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: 429 response when throttled, otherwise the downstream
            response with X-RateLimit-* headers added.
    """

    if not settings.app.rate_limit_enabled:
        return await call_next(request)
    if request.url.path in request.app.state.rate_limit_exempt_paths:
        return await call_next(request)

    limiter = get_rate_limiter(request)
    decision = await limiter.evaluate(client_identifier_from_request(request))

    if not decision.allowed:
        return build_rejection_response(decision)

    response: Response = await call_next(request)
    response.headers.update(decision.headers())
    return response


def connect_remote_store(
    app: FastAPI,
    redis_settings: RedisSettings | None = None,
) -> None:
    """Register the configured Redis client as the limiter's primary store.

    Reuses the client already stored on ``app.state`` so repeated calls
    (e.g., retrying Redis after a failover) share one connection pool.

    Raises:
        ValidationAppError: If no Redis URL is configured.
    """
    client = getattr(app.state, "redis_client", None)
    if client is None:
        client = create_redis_client(redis_settings)
        app.state.redis_client = client
        logger.info("rate_limit.remote_client_created")

    app.state.rate_limiter.register_remote_store(client)


async def close_remote_store(app: FastAPI) -> None:
    client = getattr(app.state, "redis_client", None)
    if client is None:
        return
    app.state.redis_client = None
    await client.aclose()
