"""Schemas for the rate limit admin endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field

from app.services.rate_limit_config import RateLimitConfig


class RateLimitConfigResponse(BaseModel):
    """Current limiter configuration."""

    window_ms: int = Field(..., description="Window length in milliseconds")
    max_requests: int = Field(..., description="Allowed requests per window per client")
    message: str = Field(..., description="Message returned to throttled clients")

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> "RateLimitConfigResponse":
        return cls(
            window_ms=config.window_ms,
            max_requests=config.max_requests,
            message=config.message,
        )


class RateLimitConfigUpdate(BaseModel):
    """Partial configuration update.

    Omitted fields keep their value. Zero or negative numbers and blank
    messages are ignored.
    """

    window_ms: int | None = Field(None, description="New window length in milliseconds")
    max_requests: int | None = Field(None, description="New request cap per window")
    message: str | None = Field(None, description="New rejection message")


class LocalStoreStats(BaseModel):
    entries: int
    stripes: int
    sweep_interval_seconds: float
    sweeper_running: bool


class RateLimitStatusResponse(BaseModel):
    """Backend selection and local store metrics."""

    backend: str = Field(..., description="Active store: 'remote' or 'local'")
    remote_registered: bool
    redis_configured: bool
    local_store: LocalStoreStats
