"""
Tank monitor daemon: orchestration of telemetry, pump inference and usage.

The :class:`Monitor` ties the components together on one timeline:

1. **Tick** (every ``poll_interval_s``, default 30 s): fetch the latest
   reading, annotate it with the inferred pump state, ingest it into the
   usage aggregator, update the health file.
2. **History refresh** (every ``history_interval_s``, default 5 min): fetch
   the downsampled chart series.

A manual refresh and the periodic tick share one in-flight tick task, so a
reading is never ingested twice by racing callers.  Both loops are
resilient: an exception in one iteration is logged and does not crash the
loop.  SIGTERM/SIGINT set a shared asyncio.Event; the loops finish their
current iteration and the components are closed (flushing pending usage).

``tankmon`` runs the loops headless; ``tankmon-api`` (tankmon.src.api)
runs the same loops behind the HTTP API.

Structured JSON logging is used for all events.

CHANGELOG:
- 2026-10-18: Skip readings already ingested before a restart (STORY-014)
- 2026-10-09: Expose alerts and status for the API (STORY-011)
- 2026-10-08: Coalesce manual refresh with the periodic tick (STORY-010)
- 2026-10-06: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from tankmon.src.aggregation import UsageAggregator
from tankmon.src.alerts import AlertThresholds, evaluate_alerts
from tankmon.src.health import HealthWriter
from tankmon.src.store import UsageStore
from tankmon.src.telemetry import TelemetryClient
from tankmon.src.trend import TrendAnalyzer

if TYPE_CHECKING:
    from tankmon.src.config import TankSettings
    from tankmon.src.models import (
        Alert,
        ConnectionStatus,
        DailyUsageRecord,
        ExportData,
        HistoryPoint,
        Reading,
        SystemStatus,
        UsageSummary,
    )

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging on the root logger (stderr)."""

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


def log_config_summary(settings: TankSettings) -> None:
    """Log a config summary at startup; the read API key is only fingerprinted."""
    logger.info(
        "Tank monitor starting with config: "
        "channel_id=%s, base_url=%s, relay_enabled=%s, "
        "poll_interval_s=%s, history_interval_s=%s, "
        "latest_ttl_s=%s, history_ttl_s=%s, request_timeout_s=%s, "
        "store_path=%s, health_path=%s, api_key_masked=%s",
        settings.thingspeak_channel_id,
        settings.thingspeak_base_url,
        bool(settings.relay_url),
        settings.poll_interval_s,
        settings.history_interval_s,
        settings.latest_cache_ttl_s,
        settings.history_cache_ttl_s,
        settings.request_timeout_s,
        settings.store_path,
        settings.health_path,
        _masked_token(settings.thingspeak_read_api_key),
    )


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


class Monitor:
    """Owns the telemetry client, trend analyzer and usage aggregator.

    Args:
        telemetry: ThingSpeak client (opened and closed by the monitor).
        analyzer: Pump state inference.
        aggregator: Usage accumulator (opened and closed by the monitor).
        health: Optional health file writer.
        history_hours: Hours of history fetched for the chart series.
        alert_thresholds: Thresholds for :meth:`alerts`.
    """

    def __init__(
        self,
        *,
        telemetry: TelemetryClient,
        analyzer: TrendAnalyzer,
        aggregator: UsageAggregator,
        health: HealthWriter | None = None,
        history_hours: int = 24,
        alert_thresholds: AlertThresholds | None = None,
    ) -> None:
        self.telemetry = telemetry
        self.analyzer = analyzer
        self.aggregator = aggregator
        self._health = health
        self._history_hours = history_hours
        self._alert_thresholds = alert_thresholds or AlertThresholds()

        self._latest: Reading | None = None
        self._history: list[HistoryPoint] = []
        self._connection_status: ConnectionStatus = "disconnected"
        self._tick_task: asyncio.Task[Reading] | None = None

    @classmethod
    def from_settings(cls, settings: TankSettings) -> Monitor:
        return cls(
            telemetry=TelemetryClient.from_settings(settings),
            analyzer=TrendAnalyzer(
                window_size=settings.trend_window_size,
                trend_samples=settings.trend_sample_count,
                min_samples=settings.trend_min_samples,
                rise_threshold=settings.trend_rise_threshold,
                fall_threshold=settings.trend_fall_threshold,
                hold_level_pct=settings.trend_hold_level_pct,
            ),
            aggregator=UsageAggregator.from_settings(settings, UsageStore(settings.store_path)),
            health=HealthWriter(settings.health_path),
            history_hours=settings.history_hours,
            alert_thresholds=AlertThresholds.from_settings(settings),
        )

    async def open(self) -> None:
        await self.telemetry.open()
        await self.aggregator.open()

    async def close(self) -> None:
        if self._tick_task is not None and not self._tick_task.done():
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._tick_task
        await self.aggregator.close()
        await self.telemetry.close()

    async def __aenter__(self) -> Monitor:
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
    # Operations
    # ------------------------------------------------------------------

    async def tick(self) -> Reading:
        """Run one fetch-annotate-ingest cycle, joining one already running."""
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.ensure_future(self._tick())
        else:
            logger.debug("Tick already in flight, joining it")
        return await asyncio.shield(self._tick_task)

    async def refresh_history(self) -> list[HistoryPoint]:
        """Fetch the chart series (cached by the telemetry client)."""
        self._history = await self.telemetry.fetch_history(self._history_hours)
        if self._health is not None:
            try:
                self._health.record_history()
            except OSError:
                logger.warning("Failed to write health file", exc_info=True)
        return self._history

    async def refresh(self, *, force: bool = False) -> Reading:
        """Manual refresh: probe the channel, then tick and refresh history.

        Args:
            force: Invalidate the telemetry cache first so both fetches go
                to the network.
        """
        if not await self.telemetry.test_connection():
            logger.warning("Channel unreachable, refresh will use cached data")
        elif force:
            self.telemetry.invalidate_cache()
        reading, _ = await asyncio.gather(self.tick(), self.refresh_history())
        return reading

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def latest(self) -> Reading | None:
        return self._latest

    @property
    def history(self) -> list[HistoryPoint]:
        return list(self._history)

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._connection_status

    def summary(self) -> UsageSummary:
        return self.aggregator.get_summary()

    def historical_usage(self, days: int = 30) -> list[DailyUsageRecord]:
        return self.aggregator.get_historical_usage(days)

    def hourly_usage(self) -> list[float]:
        return self.aggregator.get_today_hourly_usage()

    def export_data(self) -> ExportData:
        return self.aggregator.get_export_data()

    def system_status(self) -> SystemStatus:
        return self.telemetry.system_status()

    def alerts(self) -> list[Alert]:
        if self._latest is None:
            return []
        return evaluate_alerts(
            self._latest,
            self.summary(),
            connection_status=self._connection_status,
            recent_trend=self.analyzer.recent_trend(),
            thresholds=self._alert_thresholds,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _tick(self) -> Reading:
        reading = await self.telemetry.fetch_latest()
        self._connection_status = self.telemetry.connection_status(reading)

        if reading.is_sentinel:
            annotated = reading.with_pump_state(self.analyzer.state)
        elif self._already_ingested(reading):
            # Cache hit, last known good after a failure, or ingested before a restart.
            annotated = reading.with_pump_state(self.analyzer.state)
        else:
            annotated = self.analyzer.annotate(reading)
            await self.aggregator.ingest(annotated)

        self._latest = annotated
        logger.info(
            "Tick: level=%.1f%% pump=%s status=%s",
            annotated.level_percent,
            annotated.pump_state,
            self._connection_status,
        )
        if self._health is not None:
            try:
                self._health.record_poll(annotated, self._connection_status)
            except OSError:
                logger.warning("Failed to write health file", exc_info=True)
        return annotated

    def _already_ingested(self, reading: Reading) -> bool:
        last = self.aggregator.last_reading_at
        return last is not None and reading.timestamp <= last


# ---------------------------------------------------------------------------
# Loop runners
# ---------------------------------------------------------------------------


async def _poll_once(monitor: Monitor) -> None:
    """Run one tick; never raises so the loop keeps going."""
    try:
        await monitor.tick()
    except Exception:
        logger.error("Tick error", exc_info=True)


async def _history_once(monitor: Monitor) -> None:
    try:
        await monitor.refresh_history()
    except Exception:
        logger.error("History refresh error", exc_info=True)


async def _poll_loop(
    *,
    monitor: Monitor,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
) -> None:
    """Tick every *poll_interval_s* until *shutdown_event* is set."""
    logger.info("Poll loop started (interval=%ss)", poll_interval_s)
    while not shutdown_event.is_set():
        await _poll_once(monitor)
        # Use wait with timeout so we can check shutdown between sleeps
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=poll_interval_s)
    logger.info("Poll loop stopped")


async def _history_loop(
    *,
    monitor: Monitor,
    history_interval_s: float,
    shutdown_event: asyncio.Event,
) -> None:
    """Refresh the chart series every *history_interval_s* until shutdown."""
    logger.info("History loop started (interval=%ss)", history_interval_s)
    while not shutdown_event.is_set():
        await _history_once(monitor)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=history_interval_s)
    logger.info("History loop stopped")


async def run_loops(
    *,
    monitor: Monitor,
    poll_interval_s: float,
    history_interval_s: float,
    shutdown_event: asyncio.Event,
) -> None:
    """Run the poll and history loops concurrently until shutdown."""
    logger.info("Starting poll and history loops")
    await asyncio.gather(
        _poll_loop(
            monitor=monitor,
            poll_interval_s=poll_interval_s,
            shutdown_event=shutdown_event,
        ),
        _history_loop(
            monitor=monitor,
            history_interval_s=history_interval_s,
            shutdown_event=shutdown_event,
        ),
    )
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build the monitor, run the loops."""
    configure_logging()

    from tankmon.src.config import TankSettings

    settings = TankSettings()
    log_config_summary(settings)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: _handle_signal(shutdown_event))

    async with Monitor.from_settings(settings) as monitor:
        await run_loops(
            monitor=monitor,
            poll_interval_s=settings.poll_interval_s,
            history_interval_s=settings.history_interval_s,
            shutdown_event=shutdown_event,
        )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the tank monitor daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
