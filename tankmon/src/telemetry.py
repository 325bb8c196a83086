"""
ThingSpeak telemetry client with transport fallback and tiered caching.

Reads the tank sensor channel through the ordered transports in
transports.py and keeps two cache slots: the latest reading (30 s TTL) and
the chart history series (5 min TTL).  Designed to be robust:

- Never raises to callers: transport failures degrade to the last good
  cached reading, empty or malformed feeds degrade to a sentinel reading
  marked "Connection Error".
- Concurrent callers for the same cache key share one in-flight request, so
  a manual refresh racing the periodic tick issues a single network call
  and yields the same Reading object.
- Cache writes are freshness-guarded: a slow request that resolves after a
  newer result (or a cache invalidation) does not overwrite it.

Operations:
- fetch_latest(): latest Reading, cached for 30 s.
- fetch_history(hours): chronological, downsampled level series.
- test_connection(): probe the channel metadata endpoint.
- get_channel_info(): channel metadata dict, or None.
- invalidate_cache(): drop both cache slots.
- system_status() / connection_status(reading): freshness signals.

CHANGELOG:
- 2026-10-18: Treat non-list feeds and non-object entries as empty (STORY-014)
- 2026-10-08: Add system_status and connection_status (STORY-010)
- 2026-10-05: Coalesce concurrent fetches per cache key (STORY-005)
- 2026-10-03: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from tankmon.src.cache import CacheSlot
from tankmon.src.errors import TransportError, ValidationError
from tankmon.src.models import ConnectionStatus, HistoryPoint, Reading, SystemStatus
from tankmon.src.normalizer import (
    DEFAULT_TANK_CAPACITY_L,
    NEVER_LABEL,
    downsample,
    normalize_entry,
    normalize_history,
    recency_label,
    sentinel_reading,
)
from tankmon.src.transports import REQUEST_TIMEOUT_S, Transport, build_transports, fetch_json

if TYPE_CHECKING:
    from tankmon.src.config import TankSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LATEST_TTL_S: float = 30.0
HISTORY_TTL_S: float = 300.0
HISTORY_DISPLAY_POINTS: int = 24
"""Chart budget the history series is downsampled to."""

MAX_FEED_RESULTS: int = 8000
"""ThingSpeak cap on entries per feeds request."""

SAMPLES_PER_HOUR: int = 6
"""The node posts roughly every 10 minutes."""

STALE_AFTER_S: float = 600.0
"""Readings older than this mark the sensor link as disconnected."""


class TelemetryClient:
    """Client for one ThingSpeak channel carrying tank level telemetry.

    Args:
        channel_id: ThingSpeak channel id.
        read_api_key: Channel read key (empty for public channels).
        base_url: ThingSpeak API root.
        relay_url: Optional relay endpoint for the last transport tier.
        timeout_s: Timeout per transport attempt.
        latest_ttl_s: TTL for the latest reading.
        history_ttl_s: TTL for the history series.
        history_points: Downsampling budget for the history series.
        max_results: Provider cap on entries per request.
        default_capacity: Tank capacity used when field4 is absent.
        stale_after_s: Reading age that counts as disconnected.
        transports: Pre-built transport list; when omitted the client builds
            direct/alternate/relay tiers on :meth:`open`.
        clock: Epoch-seconds clock, injectable for tests.

    Usage::

        async with TelemetryClient(channel_id="3035826", read_api_key="...") as client:
            reading = await client.fetch_latest()
            series = await client.fetch_history(24)
    """

    def __init__(
        self,
        *,
        channel_id: str,
        read_api_key: str = "",
        base_url: str = "https://api.thingspeak.com",
        relay_url: str = "",
        timeout_s: float = REQUEST_TIMEOUT_S,
        latest_ttl_s: float = LATEST_TTL_S,
        history_ttl_s: float = HISTORY_TTL_S,
        history_points: int = HISTORY_DISPLAY_POINTS,
        max_results: int = MAX_FEED_RESULTS,
        default_capacity: float = DEFAULT_TANK_CAPACITY_L,
        stale_after_s: float = STALE_AFTER_S,
        transports: Sequence[Transport] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._channel_id = channel_id
        self._read_api_key = read_api_key
        self._base_url = base_url.rstrip("/")
        self._relay_url = relay_url
        self._timeout_s = timeout_s
        self._history_points = history_points
        self._max_results = max_results
        self._default_capacity = default_capacity
        self._stale_after_s = stale_after_s
        self._clock = clock

        self._http: httpx.AsyncClient | None = None
        self._transports: list[Transport] | None = (
            list(transports) if transports is not None else None
        )

        self._latest: CacheSlot[Reading] = CacheSlot("latest", latest_ttl_s, clock)
        self._history: CacheSlot[tuple[int, list[HistoryPoint]]] = CacheSlot(
            "history", history_ttl_s, clock
        )
        self._inflight: dict[str, asyncio.Task[Any]] = {}

    @classmethod
    def from_settings(cls, settings: TankSettings) -> TelemetryClient:
        """Build a client from :class:`~tankmon.src.config.TankSettings`."""
        return cls(
            channel_id=settings.thingspeak_channel_id,
            read_api_key=settings.thingspeak_read_api_key,
            base_url=settings.thingspeak_base_url,
            relay_url=settings.relay_url,
            timeout_s=settings.request_timeout_s,
            latest_ttl_s=settings.latest_cache_ttl_s,
            history_ttl_s=settings.history_cache_ttl_s,
            history_points=settings.history_display_points,
            max_results=settings.max_feed_results,
            default_capacity=settings.default_tank_capacity_l,
            stale_after_s=settings.stale_after_s,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create the shared HTTP client and transports (unless injected)."""
        if self._transports is not None:
            return
        self._http = httpx.AsyncClient(follow_redirects=True)
        self._transports = build_transports(
            self._http, timeout_s=self._timeout_s, relay_url=self._relay_url
        )

    async def close(self) -> None:
        """Cancel in-flight fetches and close the shared HTTP client."""
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            self._transports = None

    async def __aenter__(self) -> TelemetryClient:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_latest(self) -> Reading:
        """Return the latest reading, from cache when younger than the TTL.

        Returns:
            The newest Reading.  On total transport failure the last good
            reading (with a refreshed recency label) or a sentinel; on an
            empty or malformed feed the sentinel.
        """
        cached = self._latest.get_fresh()
        if cached is not None:
            return cached
        return await self._coalesce("latest", self._fetch_latest)

    async def fetch_history(self, hours: int = 24) -> list[HistoryPoint]:
        """Return the level series for the last *hours*, oldest first.

        The series is downsampled to the display budget and always ends
        with the most recent valid sample.  On failure the last cached
        series is returned, or an empty list.
        """
        cached = self._history.get_fresh()
        if cached is not None and cached[0] == hours:
            return list(cached[1])
        return await self._coalesce(f"history:{hours}", lambda: self._fetch_history(hours))

    async def test_connection(self) -> bool:
        """Probe the channel metadata endpoint; any successful response is True."""
        return await self.get_channel_info() is not None

    async def get_channel_info(self) -> dict[str, Any] | None:
        """Return the channel descriptor, or ``None`` if unreachable."""
        try:
            data = await fetch_json(self._require_transports(), self._channel_url, self._auth_params())
        except TransportError:
            logger.error("Connection test to channel %s failed", self._channel_id)
            return None
        return data if isinstance(data, dict) else {}

    def invalidate_cache(self) -> None:
        """Clear both cache slots; the next fetch goes to the network."""
        self._latest.clear()
        self._history.clear()
        # Later callers must not join requests issued before the invalidation.
        self._inflight.clear()
        logger.info("Telemetry cache cleared")

    def system_status(self) -> SystemStatus:
        """Summarize the freshness of the cached latest reading."""
        entry = self._latest.entry
        return SystemStatus(
            is_online=self._latest.is_fresh(),
            last_update=entry.value.last_update if entry is not None else NEVER_LABEL,
            cache_status=self._latest.status(),
        )

    def connection_status(
        self, reading: Reading, now: datetime | None = None
    ) -> ConnectionStatus:
        """Classify the sensor link from a reading.

        Returns "error" for sentinel readings, "disconnected" when the
        reading is older than the staleness threshold, else "connected".
        Stale data is a status, never a reason to drop the reading.
        """
        if reading.is_sentinel:
            return "error"
        now = now or self._now()
        if (now - reading.timestamp).total_seconds() > self._stale_after_s:
            return "disconnected"
        return "connected"

    # ------------------------------------------------------------------
    # Fetch implementations
    # ------------------------------------------------------------------

    async def _fetch_latest(self) -> Reading:
        requested_at = self._clock()
        now = self._now()
        try:
            data = await fetch_json(
                self._require_transports(),
                self._feeds_url,
                {**self._auth_params(), "results": 1},
            )
        except TransportError:
            logger.error("All transports failed fetching latest reading", exc_info=True)
            return self._last_good_or_sentinel(now)

        feeds = data.get("feeds") if isinstance(data, dict) else None
        if not isinstance(feeds, list) or not feeds or not isinstance(feeds[0], dict):
            logger.warning("No feed entries received from channel %s", self._channel_id)
            return sentinel_reading(now=now, default_capacity=self._default_capacity)

        try:
            reading = normalize_entry(feeds[0], now=now, default_capacity=self._default_capacity)
        except ValidationError as exc:
            logger.warning("Latest entry rejected: %s", exc)
            return sentinel_reading(now=now, default_capacity=self._default_capacity)

        if not self._latest.put(reading, requested_at=requested_at):
            # A newer fetch already landed; hand out that one instead.
            return self._latest.get_any() or reading
        logger.info(
            "Fetched latest reading: level=%.1f%% ts=%s",
            reading.level_percent,
            reading.timestamp.isoformat(),
        )
        return reading

    async def _fetch_history(self, hours: int) -> list[HistoryPoint]:
        requested_at = self._clock()
        results = min(hours * SAMPLES_PER_HOUR, self._max_results)
        try:
            data = await fetch_json(
                self._require_transports(),
                self._feeds_url,
                {**self._auth_params(), "results": results},
            )
        except TransportError:
            logger.error("All transports failed fetching history", exc_info=True)
            return self._last_history()

        feeds = data.get("feeds") if isinstance(data, dict) else None
        if not isinstance(feeds, list) or not feeds:
            logger.warning("No history entries received from channel %s", self._channel_id)
            return self._last_history()

        series = downsample(normalize_history(feeds), self._history_points)
        if not self._history.put((hours, series), requested_at=requested_at):
            return self._last_history() or series
        logger.info("Fetched %d history points (%d raw entries)", len(series), len(feeds))
        return list(series)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _coalesce(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run *factory* once per key; concurrent callers await the same task."""
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task

            def _forget(done: asyncio.Task[Any], key: str = key) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]

            task.add_done_callback(_forget)
        else:
            logger.debug("Joining in-flight fetch for '%s'", key)
        # Shield so one cancelled waiter does not cancel the shared request.
        return await asyncio.shield(task)

    def _last_good_or_sentinel(self, now: datetime) -> Reading:
        last = self._latest.get_any()
        if last is None:
            return sentinel_reading(now=now, default_capacity=self._default_capacity)
        return last.model_copy(update={"last_update": recency_label(last.timestamp, now)})

    def _last_history(self) -> list[HistoryPoint]:
        cached = self._history.get_any()
        return list(cached[1]) if cached is not None else []

    def _require_transports(self) -> list[Transport]:
        assert self._transports is not None, (
            "TelemetryClient not opened. Call open() or use async with."
        )
        return self._transports

    def _auth_params(self) -> dict[str, str | int]:
        return {"api_key": self._read_api_key} if self._read_api_key else {}

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=UTC)

    @property
    def _feeds_url(self) -> str:
        return f"{self._base_url}/channels/{self._channel_id}/feeds.json"

    @property
    def _channel_url(self) -> str:
        return f"{self._base_url}/channels/{self._channel_id}.json"
