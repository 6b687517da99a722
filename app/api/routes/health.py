from __future__ import annotations

from fastapi import APIRouter, Request

from app.core.rate_limit import get_rate_limiter

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring systems to determine service health.
    Also reports which rate limit store is active, since a failover to the
    local store is the first sign of Redis trouble.

    Returns:
        dict: ``status`` ("ok") and ``rate_limit_backend`` ("remote" or "local").
    """

    return {"status": "ok", "rate_limit_backend": get_rate_limiter(request).backend}
