"""
Usage aggregation: level deltas into daily records and period rollups.

Each ingested reading updates today's :class:`DailyUsageRecord`:

- A level drop larger than the noise threshold is converted to liters
  (``drop% / 100 * capacity``), capped per ingestion so one corrupted sample
  cannot produce a spike, and added to the current local hour's bucket.
  ``daily_usage_liters`` is then recomputed as the sum of the 24 buckets.
- While the inferred pump state is ON, intake accrues at a fixed rate for
  the wall time elapsed since the previous ingestion, bounded by the
  staleness window (10 min by default).  A node posting every 10 minutes is
  credited the whole gap between its posts, however often the monitor
  polls.  This is a heuristic: no flow sensor backs it.
- Efficiency is the intake/usage ratio, capped at 95 %.  The cap also
  applies to imported and persisted records.
- A reading whose timestamp is not newer than the last ingested one is
  skipped.  That timestamp is persisted so a restart does not ingest the
  same reading again.

The last observed level and reading time are owned by the aggregator
instance (and persisted through the store), not read from ambient state,
so independent instances do not interfere.

Persistence is best-effort.  A store that cannot be opened at startup
leaves the aggregator running in memory; a failed write keeps the in-memory
state authoritative and the affected days are re-written on the next
successful save.

CHANGELOG:
- 2026-10-18: Bound intake accrual by the staleness window, cap imported
  efficiency, persist the last ingested reading time (STORY-014)
- 2026-10-08: Add import_records for seeding and restore (STORY-012)
- 2026-10-07: Drop records past the retention window on open (STORY-009)
- 2026-10-06: Accrue intake from elapsed wall time instead of per call (STORY-008)
- 2026-10-04: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from tankmon.src.errors import StorageError
from tankmon.src.models import (
    HOURS_PER_DAY,
    DailySummary,
    DailyUsageRecord,
    ExportData,
    MonthlySummary,
    PumpState,
    Reading,
    UsageSummary,
    YearlySummary,
)

if TYPE_CHECKING:
    from tankmon.src.config import TankSettings
    from tankmon.src.store import UsageStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NOISE_THRESHOLD_PCT: float = 0.5
"""Level drops at or below this are sensor noise, not usage."""

MAX_USAGE_PER_INGEST_L: float = 50.0
INTAKE_RATE_LPM: float = 2.0
EFFICIENCY_CAP_PCT: int = 95
POLL_INTERVAL_S: float = 30.0
MAX_ELAPSED_S: float = 600.0
"""Longest gap credited to one ingestion's intake accrual."""
RETENTION_DAYS: int = 365
NEW_RECORD_EFFICIENCY_PCT: int = 90
"""Efficiency reported for a day before any usage has been seen."""


def _local_now() -> dt.datetime:
    return dt.datetime.now().astimezone()


class UsageAggregator:
    """Per-day usage accumulator with monthly and yearly rollups.

    Args:
        store: Optional persistent store.  ``None`` keeps everything in
            memory.
        poll_interval_s: Nominal polling interval; time credited to the
            first ingestion's intake accrual.
        max_elapsed_s: Upper bound for the time credited to one ingestion's
            intake accrual.
        noise_threshold_pct: Minimum level drop counted as usage.
        max_usage_per_ingest_l: Cap on liters attributed to one ingestion.
        intake_rate_lpm: Assumed pump intake rate while ON.
        efficiency_cap_pct: Upper bound for the efficiency figure.
        retention_days: Records older than this are dropped on open.
        last_observed_level: Initial last level (overridden by the store).
        now: Local-time clock, injectable for tests.

    Usage::

        aggregator = UsageAggregator(store)
        await aggregator.open()
        await aggregator.ingest(reading)
        summary = aggregator.get_summary()
    """

    def __init__(
        self,
        store: UsageStore | None = None,
        *,
        poll_interval_s: float = POLL_INTERVAL_S,
        max_elapsed_s: float = MAX_ELAPSED_S,
        noise_threshold_pct: float = NOISE_THRESHOLD_PCT,
        max_usage_per_ingest_l: float = MAX_USAGE_PER_INGEST_L,
        intake_rate_lpm: float = INTAKE_RATE_LPM,
        efficiency_cap_pct: int = EFFICIENCY_CAP_PCT,
        retention_days: int = RETENTION_DAYS,
        last_observed_level: float | None = None,
        now: Callable[[], dt.datetime] = _local_now,
    ) -> None:
        self._store = store
        self._poll_interval_s = poll_interval_s
        self._max_elapsed_s = max_elapsed_s
        self._noise_threshold_pct = noise_threshold_pct
        self._max_usage_per_ingest_l = max_usage_per_ingest_l
        self._intake_rate_lpm = intake_rate_lpm
        self._efficiency_cap_pct = efficiency_cap_pct
        self._retention_days = retention_days
        self._now = now

        self._records: dict[dt.date, DailyUsageRecord] = {}
        self._last_level: float | None = last_observed_level
        self._last_ingest_at: dt.datetime | None = None
        self._last_reading_at: dt.datetime | None = None
        self._dirty: set[dt.date] = set()
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: TankSettings, store: UsageStore | None = None) -> UsageAggregator:
        return cls(
            store,
            poll_interval_s=settings.poll_interval_s,
            max_elapsed_s=settings.stale_after_s,
            noise_threshold_pct=settings.usage_noise_threshold_pct,
            max_usage_per_ingest_l=settings.max_usage_per_ingest_l,
            intake_rate_lpm=settings.intake_rate_lpm,
            efficiency_cap_pct=settings.efficiency_cap_pct,
            retention_days=settings.retention_days,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Load persisted records and the last level.

        Storage failures are logged and the aggregator starts empty; they
        are never raised.
        """
        if self._store is None:
            return
        try:
            if not self._store.is_open:
                await self._store.open()
            records = await self._store.load_records()
            last_level = await self._store.load_last_level()
            last_reading_at = await self._store.load_last_reading_at()
        except StorageError:
            logger.warning("Usage store unavailable, starting with empty in-memory state", exc_info=True)
            return

        self._records = {r.date: self._capped(r) for r in records}
        if last_level is not None:
            self._last_level = last_level
        self._last_reading_at = last_reading_at
        logger.info(
            "Loaded %d daily usage records (last level=%s)", len(self._records), self._last_level
        )
        await self._prune(self._now().date())

    async def close(self) -> None:
        """Flush pending days and close the store."""
        if self._store is None:
            return
        if self._dirty:
            await self._persist()
        await self._store.close()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(self, reading: Reading, now: dt.datetime | None = None) -> DailyUsageRecord | None:
        """Fold one reading into today's record.

        Args:
            reading: The reading, annotated with the inferred pump state.
            now: Local wall-clock time of the ingestion (defaults to now).

        Returns:
            A copy of today's updated record, or ``None`` when the reading
            is the connection-error sentinel (which is never ingested: its
            zero level would register as a drain) or is not newer than the
            last ingested reading.
        """
        if reading.is_sentinel:
            logger.debug("Skipping ingestion of sentinel reading")
            return None

        async with self._lock:
            if self._last_reading_at is not None and reading.timestamp <= self._last_reading_at:
                logger.debug("Skipping already ingested reading from %s", reading.timestamp.isoformat())
                return None
            now = now or self._now()
            record = self._record_for(now.date())

            if self._last_level is not None:
                level_drop = self._last_level - reading.level_percent
                if level_drop > self._noise_threshold_pct:
                    used = (level_drop / 100.0) * reading.tank_capacity_liters
                    credited = min(used, self._max_usage_per_ingest_l)
                    if credited < used:
                        logger.info(
                            "Usage %.1f L capped to %.1f L (drop %.2f%%)",
                            used,
                            credited,
                            level_drop,
                        )
                    record.hourly_usage[now.hour] += credited
                    record.daily_usage_liters = sum(record.hourly_usage)

            if reading.pump_state == PumpState.ON:
                minutes = self._elapsed_minutes(now)
                record.daily_intake_liters += self._intake_rate_lpm * minutes
                record.pump_run_time_minutes += minutes

            if record.daily_usage_liters > 0:
                record.efficiency_percent = min(
                    self._efficiency_cap_pct,
                    round(record.daily_intake_liters / record.daily_usage_liters * 100),
                )

            self._last_level = reading.level_percent
            self._last_ingest_at = now
            self._last_reading_at = reading.timestamp
            self._dirty.add(record.date)
            await self._persist()
            return record.model_copy(deep=True)

    async def import_records(self, records: Iterable[DailyUsageRecord]) -> int:
        """Upsert *records* by date (seeding, restore); return how many.

        Efficiency above the configured cap is lowered to the cap.
        """
        async with self._lock:
            count = 0
            for record in records:
                self._records[record.date] = self._capped(record)
                self._dirty.add(record.date)
                count += 1
            await self._persist()
            return count

    async def reset(self) -> None:
        """Drop every record and the last observed level (test/demo teardown)."""
        async with self._lock:
            self._records.clear()
            self._dirty.clear()
            self._last_level = None
            self._last_ingest_at = None
            self._last_reading_at = None
            if self._store is not None and self._store.is_open:
                try:
                    await self._store.clear()
                except StorageError:
                    logger.warning("Failed to clear usage store", exc_info=True)
            logger.info("Usage data reset")

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    @property
    def last_observed_level(self) -> float | None:
        return self._last_level

    @property
    def last_reading_at(self) -> dt.datetime | None:
        """Timestamp of the last ingested reading (survives restarts)."""
        return self._last_reading_at

    def get_summary(self, now: dt.datetime | None = None) -> UsageSummary:
        """Project today's, this month's and this year's totals.

        Averages divide by the number of contributing days (or months),
        never by less than one, so an empty record set yields zeros.  The
        yearly ``average_monthly`` divides by the number of months that have
        at least one record, not by 12, so a partially recorded year reports
        the mean of the months actually seen.
        """
        today = (now or self._now()).date()
        today_record = self._records.get(today)
        month_records = [
            r for r in self._records.values()
            if r.date.year == today.year and r.date.month == today.month
        ]
        year_records = [r for r in self._records.values() if r.date.year == today.year]

        if today_record is not None:
            daily = DailySummary(
                usage=round(today_record.daily_usage_liters),
                intake=round(today_record.daily_intake_liters),
                net=round(today_record.daily_intake_liters - today_record.daily_usage_liters),
                efficiency=round(today_record.efficiency_percent),
            )
        else:
            daily = DailySummary()

        month_usage, month_intake, month_eff = _totals(month_records)
        year_usage, year_intake, year_eff = _totals(year_records)
        months_seen = len({r.date.month for r in year_records})

        return UsageSummary(
            daily=daily,
            monthly=MonthlySummary(
                usage=round(month_usage),
                intake=round(month_intake),
                net=round(month_intake - month_usage),
                efficiency=round(month_eff),
                average_daily=round(month_usage / max(1, len(month_records))),
            ),
            yearly=YearlySummary(
                usage=round(year_usage),
                intake=round(year_intake),
                net=round(year_intake - year_usage),
                efficiency=round(year_eff),
                average_daily=round(year_usage / max(1, len(year_records))),
                average_monthly=round(year_usage / max(1, months_seen)),
            ),
        )

    def get_historical_usage(self, days: int = 30) -> list[DailyUsageRecord]:
        """Return copies of the last *days* records, oldest first."""
        if days <= 0:
            return []
        ordered = sorted(self._records.values(), key=lambda r: r.date)
        return [r.model_copy(deep=True) for r in ordered[-days:]]

    def get_today_hourly_usage(self, now: dt.datetime | None = None) -> list[float]:
        """Return today's 24 hourly buckets, zero-filled if there is no record."""
        record = self._records.get((now or self._now()).date())
        if record is None:
            return [0.0] * HOURS_PER_DAY
        return list(record.hourly_usage)

    def get_export_data(self, now: dt.datetime | None = None) -> ExportData:
        """Bundle the summary, full history and today's buckets for export."""
        return ExportData(
            summary=self.get_summary(now),
            historical=self.get_historical_usage(len(self._records)),
            hourly_today=self.get_today_hourly_usage(now),
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _record_for(self, day: dt.date) -> DailyUsageRecord:
        record = self._records.get(day)
        if record is None:
            record = DailyUsageRecord(date=day, efficiency_percent=NEW_RECORD_EFFICIENCY_PCT)
            self._records[day] = record
        return record

    def _capped(self, record: DailyUsageRecord) -> DailyUsageRecord:
        copy = record.model_copy(deep=True)
        if copy.efficiency_percent > self._efficiency_cap_pct:
            copy.efficiency_percent = self._efficiency_cap_pct
        return copy

    def _elapsed_minutes(self, now: dt.datetime) -> float:
        """Minutes to credit for intake, bounded by the staleness window."""
        if self._last_ingest_at is None:
            seconds = self._poll_interval_s
        else:
            elapsed = (now - self._last_ingest_at).total_seconds()
            seconds = max(0.0, min(elapsed, self._max_elapsed_s))
        return seconds / 60.0

    async def _persist(self) -> None:
        """Write dirty days and the meta values; keep them dirty on failure."""
        if self._store is None:
            self._dirty.clear()
            return
        try:
            if not self._store.is_open:
                await self._store.open()
            pending = sorted(self._dirty)
            await self._store.save(
                [self._records[d] for d in pending if d in self._records],
                self._last_level,
                self._last_reading_at,
            )
        except StorageError:
            logger.warning(
                "Usage store write failed, %d day(s) pending in memory", len(self._dirty), exc_info=True
            )
            return
        self._dirty.clear()

    async def _prune(self, today: dt.date) -> None:
        cutoff = today - dt.timedelta(days=self._retention_days)
        expired = [d for d in self._records if d < cutoff]
        for day in expired:
            del self._records[day]
            self._dirty.discard(day)
        if self._store is None:
            return
        try:
            removed = await self._store.prune_before(cutoff)
        except StorageError:
            logger.warning("Failed to prune usage store", exc_info=True)
            return
        if removed:
            logger.info("Pruned %d daily records older than %s", removed, cutoff)


def _totals(records: list[DailyUsageRecord]) -> tuple[float, float, float]:
    """Sum usage and intake and average efficiency over *records*."""
    usage = sum(r.daily_usage_liters for r in records)
    intake = sum(r.daily_intake_liters for r in records)
    efficiency = sum(r.efficiency_percent for r in records) / len(records) if records else 0.0
    return usage, intake, efficiency
