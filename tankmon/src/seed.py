"""
Demo data seeding for tests and local demos.

Synthesizes a year of daily usage records with a seasonal shape (higher in
summer, lower in winter) and morning/evening hourly peaks.  Generation is
driven by a seeded :class:`random.Random`, so the same seed and end date
always produce the same records.  Production startup never calls this.

CHANGELOG:
- 2026-10-08: Initial creation (STORY-012)

TODO:
- None
"""

from __future__ import annotations

import datetime as dt
import random

from tankmon.src.models import HOURS_PER_DAY, DailyUsageRecord

BASE_DAILY_USAGE_L = 150.0
SUMMER_FACTOR = 1.4
WINTER_FACTOR = 0.8


def _season_factor(day: dt.date) -> float:
    if day.month in (12, 1, 2, 3):
        return WINTER_FACTOR
    if 6 <= day.month <= 9:
        return SUMMER_FACTOR
    return 1.0


def _hour_factor(hour: int) -> float:
    if hour <= 5:
        return 0.2
    if 6 <= hour <= 10:
        return 1.8
    if 18 <= hour <= 22:
        return 1.6
    return 1.0


def generate_demo_records(
    end: dt.date,
    days: int = 365,
    *,
    seed: int = 0,
) -> list[DailyUsageRecord]:
    """Build *days* consecutive records ending on *end* (inclusive).

    ``daily_usage_liters`` always equals the sum of the hourly buckets, as
    it does for ingested data.
    """
    rng = random.Random(seed)
    records: list[DailyUsageRecord] = []
    for offset in range(days - 1, -1, -1):
        day = end - dt.timedelta(days=offset)
        target = BASE_DAILY_USAGE_L * _season_factor(day) + (rng.random() - 0.5) * 40
        hourly = [
            target / HOURS_PER_DAY * _hour_factor(hour) * (0.7 + rng.random() * 0.6)
            for hour in range(HOURS_PER_DAY)
        ]
        usage = sum(hourly)
        intake = usage + (rng.random() - 0.3) * 30
        records.append(
            DailyUsageRecord(
                date=day,
                daily_usage_liters=usage,
                daily_intake_liters=intake,
                hourly_usage=hourly,
                pump_run_time_minutes=float(round(30 + rng.random() * 90)),
                efficiency_percent=round(85 + rng.random() * 10),
            )
        )
    return records
