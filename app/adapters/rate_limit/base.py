"""Window store interfaces.

The limiter depends on these abstractions rather than a concrete store, so
the in-process store and the Redis-backed store are interchangeable.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Protocol


def epoch_ms() -> int:
    """Current UNIX time in milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass
class WindowRecord:
    """One client's current counting window.

    Attributes:
        count: Requests observed in the current window (>= 1).
        reset_time_ms: Epoch milliseconds when the window expires. Fixed at
            window creation.
    """

    count: int
    reset_time_ms: int


@dataclass(frozen=True)
class WindowCheck:
    """Outcome of counting one request against a window store.

    Attributes:
        allowed: Whether the request is within the limit.
        remaining: Requests left in the current window (0 when blocked).
        reset_time_ms: Epoch milliseconds when the current window resets.
    """

    allowed: bool
    remaining: int
    reset_time_ms: int


class AbstractWindowStore(ABC):
    """Interface for synchronous, infallible window stores."""

    @abstractmethod
    def check(self, identifier: str, *, limit: int, window_ms: int) -> WindowCheck:
        """Count one request for ``identifier`` and return the verdict.

        Args:
            identifier: Client identifier (e.g., IP address).
            limit: Max requests per window.
            window_ms: Window length in milliseconds.

        Returns:
            WindowCheck describing whether it was allowed.
        """
        raise NotImplementedError


class RemoteStoreClient(Protocol):
    """Subset of the ``redis.asyncio.Redis`` API the remote store relies on."""

    def get(self, name: str) -> Awaitable[bytes | str | None]:
        ...

    def set(self, name: str, value: int, px: int | None = None) -> Awaitable[object]:
        ...

    def incr(self, name: str) -> Awaitable[int]:
        ...

    def pttl(self, name: str) -> Awaitable[int | None]:
        ...
