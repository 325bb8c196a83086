"""
Pump state inference from the recent water level trend.

The sensor node's own pump flag is unreliable, so the monitor infers the
pump state from how the level moves.  A bounded window keeps the last ten
levels; each new sample is classified by the mean of successive differences
over the last five:

- fewer than 3 samples: OFF (not enough signal)
- mean delta > +0.5: ON (level rising, fill in progress)
- mean delta < -0.2: OFF (level draining)
- otherwise (flat): OFF above 60 %, ON at or below it

The rise threshold is larger in magnitude than the fall threshold.

CHANGELOG:
- 2026-10-06: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence

from tankmon.src.models import PumpState, Reading

logger = logging.getLogger(__name__)

WINDOW_SIZE: int = 10
TREND_SAMPLES: int = 5
MIN_SAMPLES: int = 3
RISE_THRESHOLD: float = 0.5
FALL_THRESHOLD: float = -0.2
HOLD_LEVEL_PCT: float = 60.0


def average_delta(levels: Sequence[float]) -> float:
    """Mean of successive differences; 0.0 for fewer than two levels."""
    if len(levels) < 2:
        return 0.0
    return sum(b - a for a, b in zip(levels, levels[1:])) / (len(levels) - 1)


def determine_pump_state(
    current_level: float,
    history: Sequence[float],
    *,
    trend_samples: int = TREND_SAMPLES,
    min_samples: int = MIN_SAMPLES,
    rise_threshold: float = RISE_THRESHOLD,
    fall_threshold: float = FALL_THRESHOLD,
    hold_level_pct: float = HOLD_LEVEL_PCT,
) -> PumpState:
    """Classify the pump state from a level history (oldest first).

    Args:
        current_level: The newest level, used for the flat-trend decision.
        history: Level window including the newest sample.

    Returns:
        The inferred :class:`PumpState`.
    """
    if len(history) < min_samples:
        return PumpState.OFF

    delta = average_delta(list(history)[-trend_samples:])
    if delta > rise_threshold:
        return PumpState.ON
    if delta < fall_threshold:
        return PumpState.OFF
    return PumpState.OFF if current_level > hold_level_pct else PumpState.ON


class TrendAnalyzer:
    """Stateful pump inference over a bounded level window.

    The window lives in memory only and is rebuilt from live readings after
    a restart.

    Args:
        window_size: Number of levels retained (oldest dropped first).
        trend_samples: Most recent levels used for the mean delta.
        min_samples: Samples required before any ON decision.
        rise_threshold: Mean delta above which the pump is ON.
        fall_threshold: Mean delta below which the pump is OFF.
        hold_level_pct: Flat-trend level above which the pump is OFF.
    """

    def __init__(
        self,
        *,
        window_size: int = WINDOW_SIZE,
        trend_samples: int = TREND_SAMPLES,
        min_samples: int = MIN_SAMPLES,
        rise_threshold: float = RISE_THRESHOLD,
        fall_threshold: float = FALL_THRESHOLD,
        hold_level_pct: float = HOLD_LEVEL_PCT,
    ) -> None:
        self._window: deque[float] = deque(maxlen=window_size)
        self._trend_samples = trend_samples
        self._min_samples = min_samples
        self._rise_threshold = rise_threshold
        self._fall_threshold = fall_threshold
        self._hold_level_pct = hold_level_pct
        self._state = PumpState.OFF

    @property
    def state(self) -> PumpState:
        return self._state

    @property
    def history(self) -> list[float]:
        """Snapshot of the level window, oldest first."""
        return list(self._window)

    def observe(self, level: float) -> PumpState:
        """Append *level* to the window and return the new pump state."""
        self._window.append(level)
        previous = self._state
        self._state = determine_pump_state(
            level,
            self._window,
            trend_samples=self._trend_samples,
            min_samples=self._min_samples,
            rise_threshold=self._rise_threshold,
            fall_threshold=self._fall_threshold,
            hold_level_pct=self._hold_level_pct,
        )
        if self._state != previous:
            logger.info(
                "Pump state %s -> %s (level=%.1f%%, window=%s)",
                previous,
                self._state,
                level,
                self.history[-self._trend_samples :],
            )
        return self._state

    def annotate(self, reading: Reading) -> Reading:
        """Observe *reading*'s level and return it tagged with the pump state."""
        return reading.with_pump_state(self.observe(reading.level_percent))

    def recent_trend(self, samples: int = 3) -> float:
        """Mean level change per sample over the last *samples* levels."""
        return average_delta(list(self._window)[-samples:])

    def reset(self) -> None:
        self._window.clear()
        self._state = PumpState.OFF
