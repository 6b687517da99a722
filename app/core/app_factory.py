from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers,
rate limiter lifecycle) to improve testability.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api.routes import health_router, rate_limit_admin_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import (
    close_remote_store,
    connect_remote_store,
    parse_exempt_paths,
    rate_limit_middleware,
)
from app.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the limiter's sweeper and attach Redis when configured."""
    limiter: RateLimiter = app.state.rate_limiter
    limiter.start()
    if settings.redis.url:
        connect_remote_store(app)
    logger.info("rate_limit.started", extra={"backend": limiter.backend})
    try:
        yield
    finally:
        limiter.stop()
        await close_remote_store(app)


def create_app(limiter: RateLimiter | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        limiter: Rate limiter to use; built from settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Admission Control API",
        description=(
            "HTTP service fronted by a per-client fixed-window rate limiter. "
            "Counts are kept in Redis when available and in process memory "
            "otherwise; every limited response carries X-RateLimit-* headers."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )
    app.state.rate_limiter = limiter or RateLimiter.from_settings(settings)
    app.state.redis_client = None
    app.state.rate_limit_exempt_paths = frozenset(
        parse_exempt_paths(settings.app.rate_limit_exempt_paths)
    )

    # Middleware: the last registered runs first, so request ids are set
    # before the limiter logs anything.
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router)
    if settings.app.admin_routes_enabled:
        app.include_router(rate_limit_admin_router)

    apply_openapi_customizations(app)

    return app
