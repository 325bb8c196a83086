"""
Pure conversions from ThingSpeak feed entries to tank readings.

ThingSpeak entries carry up to eight string fields; this module maps them to
engineering values, validates the primary level field, clamps the level to
[0, 100] and builds the chart series.  The sensor node posts:

    field1  water level (%)          field5  pump flag ("on"/"off")
    field2  temperature (C)          field6  battery (%)
    field3  distance to surface (cm) field7  WiFi signal
    field4  tank capacity override   field8  spare

These are pure functions: no I/O, no clock.  Wall-clock time is passed in by
the caller so recency labels and sentinels are deterministic under test.

CHANGELOG:
- 2026-10-18: Drop non-object history entries (STORY-014)
- 2026-10-05: Add deterministic history downsampling (STORY-004)
- 2026-10-03: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, TypeVar

from tankmon.src.errors import ValidationError
from tankmon.src.models import HistoryPoint, PumpState, Reading

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TANK_CAPACITY_L: float = 10000.0
"""Capacity assumed when the node does not post field4."""

CONNECTION_ERROR_LABEL = "Connection Error"
NEVER_LABEL = "Never"


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def parse_float(value: Any) -> float | None:
    """Parse a ThingSpeak field into a finite float, or ``None``.

    Empty strings, ``None``, non-numeric text and NaN/inf all map to ``None``.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(parsed):
        return None
    return parsed


def parse_timestamp(value: str) -> datetime:
    """Parse a ThingSpeak ``created_at`` string into an aware UTC datetime.

    Raises:
        ValidationError: If the timestamp is missing or malformed.
    """
    if not value:
        raise ValidationError("entry has no created_at timestamp")
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"malformed created_at: {value!r}") from exc
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def clamp_level(level: float) -> float:
    """Clamp a level percentage into [0, 100]."""
    return max(0.0, min(100.0, level))


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'s' if n != 1 else ''} ago"


def recency_label(ts: datetime, now: datetime) -> str:
    """Describe how long ago *ts* was, relative to *now*.

    Returns "Just now" under a minute (including timestamps slightly in the
    future from clock skew), then minutes, hours, and days.
    """
    diff_mins = math.floor((now - ts).total_seconds() / 60)
    if diff_mins < 1:
        return "Just now"
    if diff_mins < 60:
        return _plural(diff_mins, "min")
    diff_hours = diff_mins // 60
    if diff_hours < 24:
        return _plural(diff_hours, "hour")
    return _plural(diff_hours // 24, "day")


# ---------------------------------------------------------------------------
# Readings
# ---------------------------------------------------------------------------


def normalize_entry(
    entry: dict[str, Any],
    *,
    now: datetime,
    default_capacity: float = DEFAULT_TANK_CAPACITY_L,
) -> Reading:
    """Convert one feed entry into a :class:`Reading`.

    Args:
        entry: Raw ThingSpeak feed entry (``created_at`` plus ``field1..8``).
        now: Current wall-clock time, used for the recency label.
        default_capacity: Capacity used when field4 is absent or invalid.

    Returns:
        The normalized reading with its level clamped to [0, 100].

    Raises:
        ValidationError: If field1 is missing/non-numeric or the timestamp
            cannot be parsed.
    """
    level = parse_float(entry.get("field1"))
    if level is None:
        raise ValidationError(f"field1 missing or non-numeric: {entry.get('field1')!r}")
    ts = parse_timestamp(entry.get("created_at", ""))

    capacity = parse_float(entry.get("field4"))
    if capacity is None or capacity <= 0:
        capacity = default_capacity

    pump_flag = entry.get("field5")
    pump_raw = (
        PumpState.ON
        if isinstance(pump_flag, str) and pump_flag.strip().lower() == "on"
        else PumpState.OFF
    )

    return Reading(
        timestamp=ts,
        level_percent=clamp_level(level),
        temperature=parse_float(entry.get("field2")),
        distance_cm=parse_float(entry.get("field3")),
        tank_capacity_liters=capacity,
        pump_status_raw=pump_raw,
        pump_state=pump_raw,
        battery_percent=parse_float(entry.get("field6")),
        wifi_signal=parse_float(entry.get("field7")),
        last_update=recency_label(ts, now),
    )


def sentinel_reading(
    *,
    now: datetime,
    default_capacity: float = DEFAULT_TANK_CAPACITY_L,
) -> Reading:
    """Return the zero-level placeholder used when no data is available."""
    return Reading(
        timestamp=now,
        level_percent=0.0,
        tank_capacity_liters=default_capacity,
        last_update=CONNECTION_ERROR_LABEL,
        is_sentinel=True,
    )


# ---------------------------------------------------------------------------
# History series
# ---------------------------------------------------------------------------


def normalize_history(feeds: Sequence[Any]) -> list[HistoryPoint]:
    """Convert a newest-first feed into a chronological chart series.

    Entries that are not objects, or that have a missing or non-numeric
    level or an unparseable timestamp, are dropped individually; the rest
    of the series is kept.
    """
    points: list[HistoryPoint] = []
    dropped = 0
    for entry in feeds:
        if not isinstance(entry, dict):
            dropped += 1
            continue
        try:
            level = parse_float(entry.get("field1"))
            if level is None:
                raise ValidationError("field1 missing or non-numeric")
            ts = parse_timestamp(entry.get("created_at", ""))
        except ValidationError:
            dropped += 1
            continue
        points.append(
            HistoryPoint(
                time=ts,
                label=ts.astimezone().strftime("%H:%M"),
                level=round(clamp_level(level)),
                temperature=parse_float(entry.get("field2")),
            )
        )

    if dropped:
        logger.info("Dropped %d invalid history entries of %d", dropped, len(feeds))

    # Provider order is newest-first; the stable sort also repairs any
    # out-of-order entries.
    points.reverse()
    points.sort(key=lambda p: p.time)
    return points


def downsample(points: Sequence[T], budget: int) -> list[T]:
    """Thin *points* to roughly *budget* entries, always keeping the last one.

    Takes every ``len(points) // budget``-th element starting at index 0 and
    force-appends the final element when the stride skipped it.  Sequences no
    longer than *budget* are returned unchanged.  The selection depends only
    on the length of the input, so identical inputs give identical output.
    """
    if budget < 1:
        raise ValueError("budget must be >= 1")
    if len(points) <= budget:
        return list(points)

    stride = len(points) // budget
    sampled = list(points[::stride])
    if (len(points) - 1) % stride != 0:
        sampled.append(points[-1])
    return sampled
