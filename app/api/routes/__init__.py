from __future__ import annotations

from app.api.routes.health import router as health_router
from app.api.routes.rate_limit_admin import router as rate_limit_admin_router

__all__ = ["health_router", "rate_limit_admin_router"]
