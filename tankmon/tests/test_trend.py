"""
Unit tests for pump state inference (tankmon.src.trend).

Tests verify:
- Fewer than three samples always infer OFF.
- A rising trend infers ON, a falling trend infers OFF.
- A flat trend holds OFF above 60 % and ON at or below it.
- The analyzer window is bounded to ten samples.
- annotate() tags readings without touching the raw pump flag.

CHANGELOG:
- 2026-10-06: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from tankmon.src.models import PumpState, Reading
from tankmon.src.trend import TrendAnalyzer, average_delta, determine_pump_state


class TestAverageDelta:
    def test_short_sequences(self) -> None:
        assert average_delta([]) == 0.0
        assert average_delta([50.0]) == 0.0

    def test_mean_of_differences(self) -> None:
        assert average_delta([50, 55, 61, 67, 73]) == pytest.approx(5.75)


class TestDeterminePumpState:
    """Trend classification rules."""

    def test_insufficient_samples(self) -> None:
        assert determine_pump_state(50, [50, 50]) == PumpState.OFF

    def test_insufficient_samples_even_when_low(self) -> None:
        assert determine_pump_state(10, [10, 10]) == PumpState.OFF

    def test_rising_is_on(self) -> None:
        assert determine_pump_state(73, [50, 55, 61, 67, 73]) == PumpState.ON

    def test_falling_is_off(self) -> None:
        assert determine_pump_state(69, [80, 78, 75, 72, 69]) == PumpState.OFF

    def test_flat_low_level_is_on(self) -> None:
        assert determine_pump_state(45, [50, 50.1, 49.9, 50.05, 50.0]) == PumpState.ON

    def test_flat_high_level_is_off(self) -> None:
        assert determine_pump_state(80, [80, 80.1, 79.9, 80.05, 80.0]) == PumpState.OFF

    def test_flat_at_hold_level_is_on(self) -> None:
        assert determine_pump_state(60, [60, 60, 60]) == PumpState.ON

    def test_only_last_five_samples_count(self) -> None:
        # Rise early in the window, flat tail at 90 %.
        history = [10, 30, 50, 70, 90, 90, 90, 90, 90, 90]
        assert determine_pump_state(90, history) == PumpState.OFF


class TestTrendAnalyzer:
    def test_window_bounded(self) -> None:
        analyzer = TrendAnalyzer()

        for level in range(15):
            analyzer.observe(float(level))

        assert analyzer.history == [float(level) for level in range(5, 15)]

    def test_state_follows_fill(self) -> None:
        analyzer = TrendAnalyzer()

        states = [analyzer.observe(level) for level in (50, 55, 61, 67, 73)]

        assert states[:2] == [PumpState.OFF, PumpState.OFF]
        assert states[-1] == PumpState.ON
        assert analyzer.state == PumpState.ON

    def test_state_follows_drain(self) -> None:
        analyzer = TrendAnalyzer()
        for level in (50, 55, 61, 67, 73):
            analyzer.observe(level)

        for level in (72, 70, 67, 64, 61):
            analyzer.observe(level)

        assert analyzer.state == PumpState.OFF

    def test_annotate_keeps_raw_flag(self) -> None:
        analyzer = TrendAnalyzer(min_samples=2)
        base = Reading(
            timestamp=datetime(2026, 10, 1, tzinfo=UTC),
            level_percent=40.0,
            pump_status_raw=PumpState.OFF,
        )
        analyzer.observe(30.0)

        annotated = analyzer.annotate(base)

        assert annotated.pump_state == PumpState.ON
        assert annotated.pump_status_raw == PumpState.OFF
        assert base.pump_state == PumpState.OFF

    def test_recent_trend(self) -> None:
        analyzer = TrendAnalyzer()
        for level in (50, 51, 53, 56):
            analyzer.observe(level)

        assert analyzer.recent_trend() == pytest.approx(2.5)

    def test_reset(self) -> None:
        analyzer = TrendAnalyzer()
        for level in (50, 55, 61, 67, 73):
            analyzer.observe(level)

        analyzer.reset()

        assert analyzer.history == []
        assert analyzer.state == PumpState.OFF
