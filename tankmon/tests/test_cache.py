"""
Unit tests for the telemetry cache slot (tankmon.src.cache).

Tests verify:
- Entries are fresh within the TTL and stale after it.
- Stale entries stay available as last known good.
- Writes from requests older than the current entry or the last clear
  are discarded.
- status() reports empty / fresh / stale.

CHANGELOG:
- 2026-10-05: Add in-flight guard tests (STORY-005)
- 2026-10-03: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

from tankmon.src.cache import CacheSlot


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestCacheSlotFreshness:
    def test_empty_slot(self) -> None:
        slot: CacheSlot[str] = CacheSlot("latest", ttl_s=30, clock=FakeClock())

        assert slot.get_fresh() is None
        assert slot.get_any() is None
        assert slot.status() == "empty"

    def test_fresh_within_ttl(self) -> None:
        clock = FakeClock()
        slot: CacheSlot[str] = CacheSlot("latest", ttl_s=30, clock=clock)

        assert slot.put("a", requested_at=clock()) is True
        clock.advance(29)

        assert slot.get_fresh() == "a"
        assert slot.status() == "fresh"

    def test_stale_after_ttl_but_still_available(self) -> None:
        clock = FakeClock()
        slot: CacheSlot[str] = CacheSlot("latest", ttl_s=30, clock=clock)
        slot.put("a", requested_at=clock())

        clock.advance(30)

        assert slot.get_fresh() is None
        assert slot.get_any() == "a"
        assert slot.status() == "stale"


class TestCacheSlotWriteGuard:
    """Slow in-flight results never overwrite newer data."""

    def test_older_request_discarded(self) -> None:
        clock = FakeClock()
        slot: CacheSlot[str] = CacheSlot("latest", ttl_s=30, clock=clock)
        slow_started = clock()
        clock.advance(1)
        slot.put("newer", requested_at=clock())
        clock.advance(1)

        assert slot.put("older", requested_at=slow_started) is False
        assert slot.get_any() == "newer"

    def test_request_before_clear_discarded(self) -> None:
        clock = FakeClock()
        slot: CacheSlot[str] = CacheSlot("latest", ttl_s=30, clock=clock)
        started = clock()
        clock.advance(1)
        slot.clear()
        clock.advance(1)

        assert slot.put("pre-clear", requested_at=started) is False
        assert slot.get_any() is None

    def test_request_after_clear_accepted(self) -> None:
        clock = FakeClock()
        slot: CacheSlot[str] = CacheSlot("latest", ttl_s=30, clock=clock)
        slot.put("a", requested_at=clock())
        clock.advance(1)
        slot.clear()
        clock.advance(1)

        assert slot.put("b", requested_at=clock()) is True
        assert slot.entry is not None
        assert slot.entry.value == "b"
        assert slot.entry.fetched_at == clock()
