"""Rate limiter core: backend selection, failover and admission decisions.

The limiter prefers the Redis store once one is registered and falls back to
the in-process store on the first Redis failure. Falling back is sticky: the
limiter keeps counting locally until a Redis client is registered again, so a
sick Redis costs one failed call instead of one per request.

State lives on the instance (config holder, backend selection, local store),
which keeps tests isolated and lets the app inject its own limiter.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Callable, ClassVar

from app.adapters.rate_limit.base import RemoteStoreClient, WindowCheck, epoch_ms
from app.adapters.rate_limit.in_memory import InMemoryWindowStore
from app.adapters.rate_limit.redis_store import RedisWindowStore
from app.core.client_identity import hash_identifier
from app.core.config import Settings
from app.core.errors import RateLimitStoreError
from app.services.rate_limit_config import RateLimitConfig, RateLimitConfigHolder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalBackend:
    """Count requests in process memory."""

    name: ClassVar[str] = "local"


@dataclass(frozen=True)
class RemoteBackend:
    """Count requests in Redis through ``store``."""

    store: RedisWindowStore
    name: ClassVar[str] = "remote"


BackendSelection = LocalBackend | RemoteBackend


@dataclass(frozen=True)
class RateLimitDecision:
    """Admission verdict plus the metadata sent back to the client.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window.
        remaining: Requests left in the current window (0 when blocked).
        reset_time_ms: Epoch milliseconds when the current window resets.
        retry_after_seconds: Seconds to wait before retrying (None when allowed).
        backend: Store that produced the verdict ("local" or "remote").
        message: Rejection message (None when allowed).
    """

    allowed: bool
    limit: int
    remaining: int
    reset_time_ms: int
    retry_after_seconds: int | None
    backend: str
    message: str | None = None

    @property
    def reset_epoch_seconds(self) -> int:
        return math.ceil(self.reset_time_ms / 1000)

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* headers describing this decision."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_epoch_seconds),
        }


class RateLimiter:
    """Fixed-window rate limiter with Redis-to-memory failover."""

    def __init__(
        self,
        *,
        config: RateLimitConfigHolder | None = None,
        local_store: InMemoryWindowStore | None = None,
        remote_timeout_seconds: float = 0.5,
        remote_key_prefix: str = "ratelimit:",
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        """Initialize the limiter in local mode.

        Args:
            config: Configuration holder (defaults to built-in defaults).
            local_store: In-process store (built from the config when omitted).
            remote_timeout_seconds: Timeout applied to each Redis check.
            remote_key_prefix: Key prefix for the Redis store.
            clock: Time source returning UNIX time in milliseconds.
        """
        self._config = config or RateLimitConfigHolder()
        self._clock = clock
        self._local = local_store or InMemoryWindowStore(
            sweep_interval_seconds=self._config.get().window_ms / 3000,
            clock=clock,
        )
        self._remote_timeout = remote_timeout_seconds
        self._remote_key_prefix = remote_key_prefix
        self._selection: BackendSelection = LocalBackend()
        self._selection_lock = threading.Lock()

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "RateLimiter":
        """Build a limiter from application settings."""
        config = RateLimitConfigHolder(RateLimitConfig.from_settings(app_settings.app))
        sweep_interval = (
            app_settings.app.rate_limit_sweep_interval_seconds
            or config.get().window_ms / 3000
        )
        return cls(
            config=config,
            local_store=InMemoryWindowStore(sweep_interval_seconds=sweep_interval),
            remote_timeout_seconds=app_settings.redis.timeout_seconds,
            remote_key_prefix=app_settings.redis.key_prefix,
        )

    @property
    def backend(self) -> str:
        """Name of the currently selected backend."""
        return self._selection.name

    @property
    def local_store(self) -> InMemoryWindowStore:
        return self._local

    @property
    def remote_client(self) -> RemoteStoreClient | None:
        selection = self._selection
        if isinstance(selection, RemoteBackend):
            return selection.store.client
        return None

    def get_config(self) -> RateLimitConfig:
        return self._config.get()

    def update_config(
        self,
        *,
        window_ms: int | None = None,
        max_requests: int | None = None,
        message: str | None = None,
    ) -> RateLimitConfig:
        return self._config.update(
            window_ms=window_ms,
            max_requests=max_requests,
            message=message,
        )

    def register_remote_store(self, client: RemoteStoreClient) -> None:
        """Use ``client`` as the primary store from now on.

        Also the way back to Redis after a failover.
        """
        store = RedisWindowStore(
            client,
            timeout_seconds=self._remote_timeout,
            key_prefix=self._remote_key_prefix,
            clock=self._clock,
        )
        with self._selection_lock:
            self._selection = RemoteBackend(store=store)
        logger.info("rate_limit.backend_selected", extra={"backend": RemoteBackend.name})

    def force_fallback_to_local(self) -> None:
        """Switch to the in-process store until a remote store is registered again."""
        with self._selection_lock:
            self._selection = LocalBackend()
        logger.info("rate_limit.backend_selected", extra={"backend": LocalBackend.name})

    def start(self) -> None:
        """Start background maintenance (local store sweeper)."""
        self._local.start()

    def stop(self) -> None:
        self._local.stop()

    def stats(self) -> dict[str, object]:
        """Return backend and local store metrics for operability."""
        return {
            "backend": self.backend,
            "remote_registered": isinstance(self._selection, RemoteBackend),
            "local_store": self._local.stats(),
        }

    async def evaluate(self, identifier: str) -> RateLimitDecision:
        """Count one request for ``identifier`` and decide whether it may proceed.

        Redis errors never escape: the limiter falls back to the local store
        and answers the same request from there.

        Args:
            identifier: Client identifier (see app.core.client_identity).

        Returns:
            RateLimitDecision for this request.
        """
        config = self._config.get()
        selection = self._selection
        check: WindowCheck | None = None
        backend = LocalBackend.name

        if isinstance(selection, RemoteBackend):
            try:
                check = await selection.store.check(
                    identifier,
                    limit=config.max_requests,
                    window_ms=config.window_ms,
                )
                backend = RemoteBackend.name
            except RateLimitStoreError as exc:
                self._fail_over(selection, exc)

        if check is None:
            check = self._local.check(
                identifier,
                limit=config.max_requests,
                window_ms=config.window_ms,
            )

        decision = self._build_decision(check, config=config, backend=backend)

        if decision.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "key_hash": hash_identifier(identifier),
                    "backend": backend,
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                },
            )
        else:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "key_hash": hash_identifier(identifier),
                    "backend": backend,
                    "limit": decision.limit,
                    "retry_after_s": decision.retry_after_seconds,
                },
            )
        return decision

    def _fail_over(self, failed: RemoteBackend, exc: RateLimitStoreError) -> None:
        with self._selection_lock:
            # A concurrent re-registration wins over a failure of the old client.
            if self._selection is failed:
                self._selection = LocalBackend()
        logger.error(
            "rate_limit.remote_store_failed",
            extra={
                "error_code": exc.code,
                "error_msg": exc.message,
                "backend": LocalBackend.name,
            },
        )

    def _build_decision(
        self,
        check: WindowCheck,
        *,
        config: RateLimitConfig,
        backend: str,
    ) -> RateLimitDecision:
        if check.allowed:
            return RateLimitDecision(
                allowed=True,
                limit=config.max_requests,
                remaining=check.remaining,
                reset_time_ms=check.reset_time_ms,
                retry_after_seconds=None,
                backend=backend,
            )

        retry_after = max(0, math.ceil((check.reset_time_ms - self._clock()) / 1000))
        return RateLimitDecision(
            allowed=False,
            limit=config.max_requests,
            remaining=0,
            reset_time_ms=check.reset_time_ms,
            retry_after_seconds=retry_after,
            backend=backend,
            message=config.message,
        )
