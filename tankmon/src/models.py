"""
Pydantic models for tank telemetry, pump state and usage statistics.

Reading is the immutable snapshot produced by the telemetry client;
DailyUsageRecord is the per-day accumulator owned by the usage aggregator;
UsageSummary is a pure projection recomputed on demand from the records.

CHANGELOG:
- 2026-10-09: Add Alert and SystemStatus (STORY-011)
- 2026-10-04: Add DailyUsageRecord and UsageSummary (STORY-006)
- 2026-10-02: Initial creation (STORY-002)

TODO:
- None
"""

import datetime as dt
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

HOURS_PER_DAY = 24

ConnectionStatus = Literal["connected", "disconnected", "error"]
CacheStatus = Literal["fresh", "stale", "empty"]


class PumpState(StrEnum):
    """Fill pump state as reported by the sensor or inferred from the trend."""

    ON = "ON"
    OFF = "OFF"


class Reading(BaseModel):
    """A single tank level sample pulled from the telemetry channel.

    Readings are immutable; annotating one with an inferred pump state
    returns a copy.

    Attributes:
        timestamp: Time the sensor node posted the entry (UTC).
        level_percent: Water level as a percentage, clamped to [0, 100].
        temperature: Optional water/air temperature in degrees Celsius.
        distance_cm: Optional ultrasonic distance to the water surface.
        tank_capacity_liters: Tank capacity (field4 override or default).
        pump_status_raw: Pump flag as posted by the node (field5).
        pump_state: Pump state inferred from the level trend.
        battery_percent: Optional node battery level.
        wifi_signal: Optional node WiFi signal strength.
        last_update: Human readable recency label ("Just now", "5 mins ago").
        is_sentinel: True for the placeholder returned when no data could
            be fetched at all.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: dt.datetime
    level_percent: float = Field(ge=0.0, le=100.0)
    temperature: float | None = None
    distance_cm: float | None = None
    tank_capacity_liters: float = 10000.0
    pump_status_raw: PumpState = PumpState.OFF
    pump_state: PumpState = PumpState.OFF
    battery_percent: float | None = None
    wifi_signal: float | None = None
    last_update: str = ""
    is_sentinel: bool = False

    def with_pump_state(self, state: PumpState) -> "Reading":
        """Return a copy of this reading annotated with *state*."""
        return self.model_copy(update={"pump_state": state})


class HistoryPoint(BaseModel):
    """One point of the level chart series."""

    model_config = ConfigDict(frozen=True)

    time: dt.datetime
    label: str
    level: int
    temperature: float | None = None


class DailyUsageRecord(BaseModel):
    """Usage accumulator for one calendar day.

    ``daily_usage_liters`` is always the sum of ``hourly_usage``; it is
    recomputed from the buckets rather than accumulated on its own.

    Attributes:
        date: Local calendar day this record covers (unique key).
        daily_usage_liters: Liters consumed during the day.
        daily_intake_liters: Liters attributed to pump-ON periods.
        hourly_usage: 24 buckets of liters consumed per local hour.
        pump_run_time_minutes: Minutes the pump was inferred to be ON.
        efficiency_percent: Capped intake/usage ratio.
    """

    date: dt.date
    daily_usage_liters: float = 0.0
    daily_intake_liters: float = 0.0
    hourly_usage: list[float] = Field(default_factory=lambda: [0.0] * HOURS_PER_DAY)
    pump_run_time_minutes: float = 0.0
    efficiency_percent: int = Field(default=90, ge=0, le=100)

    @field_validator("hourly_usage")
    @classmethod
    def must_have_one_bucket_per_hour(cls, v: list[float]) -> list[float]:
        """Reject hourly series that are not exactly 24 buckets long."""
        if len(v) != HOURS_PER_DAY:
            raise ValueError(f"hourly_usage must have {HOURS_PER_DAY} entries, got {len(v)}")
        return v


class DailySummary(BaseModel):
    usage: int = 0
    intake: int = 0
    net: int = 0
    efficiency: int = 0


class MonthlySummary(DailySummary):
    average_daily: int = 0


class YearlySummary(MonthlySummary):
    average_monthly: int = 0


class UsageSummary(BaseModel):
    """Daily, monthly and yearly usage rollups (derived, never stored)."""

    daily: DailySummary = Field(default_factory=DailySummary)
    monthly: MonthlySummary = Field(default_factory=MonthlySummary)
    yearly: YearlySummary = Field(default_factory=YearlySummary)


class ExportData(BaseModel):
    """Snapshot handed to the workbook exporter."""

    summary: UsageSummary
    historical: list[DailyUsageRecord]
    hourly_today: list[float]


class SystemStatus(BaseModel):
    """Freshness of the telemetry client's cached latest reading."""

    is_online: bool
    last_update: str
    cache_status: CacheStatus


class Alert(BaseModel):
    """A condition worth surfacing to the operator."""

    kind: str
    severity: Literal["info", "warning", "danger"]
    message: str
