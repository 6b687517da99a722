"""Runtime-mutable rate limit configuration.

The holder is created once at startup from settings, read by every limiter
invocation and updated by administrative calls. Readers get an immutable
snapshot; updates replace the snapshot atomically.

Updates are partial: omitted fields keep their value. Zero or negative
numbers and empty messages are ignored for that field (with a warning), so a
bad admin call can never disable limiting by setting the cap to 0.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, replace

from app.core.config import AppSettings

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MS = 15 * 60 * 1000
DEFAULT_MAX_REQUESTS = 100
DEFAULT_MESSAGE = "Too many requests, please try again later."


@dataclass(frozen=True)
class RateLimitConfig:
    """Snapshot of the limiter configuration.

    Attributes:
        window_ms: Length of each counting window in milliseconds.
        max_requests: Admissible requests per window per identifier.
        message: Message returned to rejected callers.
    """

    window_ms: int = DEFAULT_WINDOW_MS
    max_requests: int = DEFAULT_MAX_REQUESTS
    message: str = DEFAULT_MESSAGE

    @classmethod
    def from_settings(cls, app_settings: AppSettings) -> "RateLimitConfig":
        return cls(
            window_ms=app_settings.rate_limit_window_ms,
            max_requests=app_settings.rate_limit_max_requests,
            message=app_settings.rate_limit_message,
        )

    def to_dict(self) -> dict[str, int | str]:
        return asdict(self)


class RateLimitConfigHolder:
    """Process-wide holder for the current RateLimitConfig."""

    def __init__(self, initial: RateLimitConfig | None = None) -> None:
        self._config = initial or RateLimitConfig()
        self._lock = threading.Lock()

    def get(self) -> RateLimitConfig:
        return self._config

    def update(
        self,
        *,
        window_ms: int | None = None,
        max_requests: int | None = None,
        message: str | None = None,
    ) -> RateLimitConfig:
        """Apply a partial update and return the new snapshot.

        Args:
            window_ms: New window length in milliseconds.
            max_requests: New request cap per window.
            message: New rejection message.

        Returns:
            The configuration in effect after the update.
        """
        changes: dict[str, int | str] = {}
        ignored: list[str] = []

        for name, value in (("window_ms", window_ms), ("max_requests", max_requests)):
            if value is None:
                continue
            if value > 0:
                changes[name] = value
            else:
                ignored.append(name)

        if message is not None:
            if message.strip():
                changes["message"] = message
            else:
                ignored.append("message")

        if ignored:
            logger.warning(
                "rate_limit.config_ignored",
                extra={"fields": ignored},
            )

        with self._lock:
            if changes:
                self._config = replace(self._config, **changes)
                logger.info(
                    "rate_limit.config_updated",
                    extra={
                        "changed": sorted(changes),
                        "window_ms": self._config.window_ms,
                        "max_requests": self._config.max_requests,
                    },
                )
            return self._config
