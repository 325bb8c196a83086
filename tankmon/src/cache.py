"""
TTL cache slot used by the telemetry client.

Each slot holds at most one :class:`CacheEntry` (value plus fetch time).
Writes carry the time the producing request *started*; a write is rejected
when a newer entry has already been stored, or the slot was cleared, after
that request began.  This keeps a slow in-flight fetch from overwriting the
result of a later one.

CHANGELOG:
- 2026-10-05: Reject writes from requests older than the last clear (STORY-005)
- 2026-10-03: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from tankmon.src.models import CacheStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value and the wall-clock time it was stored.

    Attributes:
        value: The cached payload.
        fetched_at: Epoch seconds at which the value was written.
    """

    value: T
    fetched_at: float


class CacheSlot(Generic[T]):
    """Single-entry cache with a TTL and a freshness-guarded write.

    Args:
        name: Slot name used in log messages.
        ttl_s: Seconds an entry stays fresh.
        clock: Epoch-seconds clock, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        ttl_s: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.ttl_s = ttl_s
        self._clock = clock
        self._entry: CacheEntry[T] | None = None
        self._cleared_at: float = float("-inf")

    @property
    def entry(self) -> CacheEntry[T] | None:
        return self._entry

    def is_fresh(self) -> bool:
        """True when an entry exists and is younger than the TTL."""
        if self._entry is None:
            return False
        return self._clock() - self._entry.fetched_at < self.ttl_s

    def get_fresh(self) -> T | None:
        """Return the cached value if fresh, else ``None``."""
        return self._entry.value if self.is_fresh() else None  # type: ignore[union-attr]

    def get_any(self) -> T | None:
        """Return the cached value regardless of age (last known good)."""
        return self._entry.value if self._entry is not None else None

    def put(self, value: T, *, requested_at: float) -> bool:
        """Store *value* unless a newer write or a clear happened meanwhile.

        Args:
            value: Value to cache.
            requested_at: Clock time at which the producing request began.

        Returns:
            True if the value was stored, False if it was discarded as stale.
        """
        if requested_at < self._cleared_at:
            logger.debug("Cache '%s': discarding result from before last clear", self.name)
            return False
        if self._entry is not None and self._entry.fetched_at > requested_at:
            logger.debug("Cache '%s': discarding stale in-flight result", self.name)
            return False
        self._entry = CacheEntry(value=value, fetched_at=self._clock())
        return True

    def clear(self) -> None:
        """Drop the entry and reject writes from requests already in flight."""
        self._entry = None
        self._cleared_at = self._clock()

    def status(self) -> CacheStatus:
        if self._entry is None:
            return "empty"
        return "fresh" if self.is_fresh() else "stale"
