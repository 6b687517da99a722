"""In-memory fixed-window store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: records are sharded across lock stripes so unrelated clients
  rarely contend, while updates to one client are serialized.
- Expired windows are dropped lazily on access and by a background sweeper.
"""

from __future__ import annotations

import logging
import threading
import zlib
from dataclasses import dataclass, field
from typing import Callable

from app.adapters.rate_limit.base import (
    AbstractWindowStore,
    WindowCheck,
    WindowRecord,
    epoch_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_STRIPES = 16


@dataclass
class _Stripe:
    lock: threading.Lock = field(default_factory=threading.Lock)
    records: dict[str, WindowRecord] = field(default_factory=dict)


class InMemoryWindowStore(AbstractWindowStore):
    """Window store keeping one fixed window per identifier in process memory.

    A window starts with the first request from an identifier and lasts
    ``window_ms``. Requests over the limit are still counted, so a client
    that keeps hammering does not reset its own window.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        sweep_interval_seconds: float = 300.0,
        clock: Callable[[], int] = epoch_ms,
        stripes: int = DEFAULT_STRIPES,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            sweep_interval_seconds: Delay between background sweeps.
            clock: Time source returning UNIX time in milliseconds.
            stripes: Number of lock stripes the records are sharded across.

        Raises:
            ValueError: If sweep_interval_seconds or stripes are invalid.
        """
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")
        if stripes < 1:
            raise ValueError("stripes must be >= 1")

        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._stripes = [_Stripe() for _ in range(stripes)]
        self._sweeper: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._lifecycle_lock = threading.Lock()

    def __len__(self) -> int:
        return sum(len(stripe.records) for stripe in self._stripes)

    @property
    def sweep_interval_seconds(self) -> float:
        return self._sweep_interval

    @property
    def running(self) -> bool:
        """Whether the background sweeper is active."""
        return self._sweeper is not None and self._sweeper.is_alive()

    def _stripe_for(self, identifier: str) -> _Stripe:
        index = zlib.crc32(identifier.encode()) % len(self._stripes)
        return self._stripes[index]

    def check(self, identifier: str, *, limit: int, window_ms: int) -> WindowCheck:
        """Count one request for ``identifier`` in its current window.

        Args:
            identifier: Client identifier (e.g., IP address).
            limit: Maximum number of allowed requests per window.
            window_ms: Window length in milliseconds.

        Returns:
            WindowCheck with the allowance decision and metadata.
        """
        stripe = self._stripe_for(identifier)

        with stripe.lock:
            now = self._clock()
            record = stripe.records.get(identifier)

            if record is None or now > record.reset_time_ms:
                record = WindowRecord(count=1, reset_time_ms=now + window_ms)
                stripe.records[identifier] = record
                return WindowCheck(
                    allowed=True,
                    remaining=limit - 1,
                    reset_time_ms=record.reset_time_ms,
                )

            record.count += 1
            return WindowCheck(
                allowed=record.count <= limit,
                remaining=max(0, limit - record.count),
                reset_time_ms=record.reset_time_ms,
            )

    def get(self, identifier: str) -> WindowRecord | None:
        """Return a copy of the live record for ``identifier``, if any."""
        stripe = self._stripe_for(identifier)
        with stripe.lock:
            record = stripe.records.get(identifier)
            if record is None or self._clock() > record.reset_time_ms:
                return None
            return WindowRecord(count=record.count, reset_time_ms=record.reset_time_ms)

    def reset(self, identifier: str) -> None:
        """Forget the window of a single identifier."""
        stripe = self._stripe_for(identifier)
        with stripe.lock:
            stripe.records.pop(identifier, None)

    def clear(self) -> None:
        """Remove every tracked window."""
        for stripe in self._stripes:
            with stripe.lock:
                stripe.records.clear()

    def sweep(self) -> int:
        """Evict every window whose reset time has passed.

        Locks one stripe at a time so request-path checks on other stripes
        keep running.

        Returns:
            Number of evicted windows.
        """
        evicted = 0
        for stripe in self._stripes:
            with stripe.lock:
                now = self._clock()
                expired = [
                    key for key, record in stripe.records.items()
                    if now > record.reset_time_ms
                ]
                for key in expired:
                    del stripe.records[key]
                evicted += len(expired)

        if evicted:
            logger.debug(
                "rate_limit.sweep",
                extra={"evicted": evicted, "tracked": len(self)},
            )
        return evicted

    def start(self) -> None:
        """Start the background sweeper thread (idempotent)."""
        with self._lifecycle_lock:
            if self.running:
                return
            self._stop_event.clear()
            self._sweeper = threading.Thread(
                target=self._run_sweeper,
                name="rate-limit-sweeper",
                daemon=True,
            )
            self._sweeper.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the background sweeper and wait for it to exit."""
        with self._lifecycle_lock:
            sweeper = self._sweeper
            if sweeper is None:
                return
            self._stop_event.set()
            sweeper.join(timeout)
            self._sweeper = None

    def stats(self) -> dict[str, int | float | bool]:
        """Return lightweight store metrics without exposing identifiers."""
        return {
            "entries": len(self),
            "stripes": len(self._stripes),
            "sweep_interval_seconds": self._sweep_interval,
            "sweeper_running": self.running,
        }

    def _run_sweeper(self) -> None:
        while not self._stop_event.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("rate_limit.sweep_failed")
