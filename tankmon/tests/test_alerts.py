"""
Unit tests for alert evaluation (tankmon.src.alerts).

Tests verify:
- Critical and low level alerts are mutually exclusive.
- Pump idle / filling alerts depend on inferred state and trend.
- Daily usage and deficit alerts read the usage summary.
- Connection status maps to offline / stale alerts.
- Level and pump alerts are suppressed for the sentinel reading.

CHANGELOG:
- 2026-10-09: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime

from tankmon.src.alerts import AlertThresholds, evaluate_alerts
from tankmon.src.models import DailySummary, PumpState, Reading, UsageSummary

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


def _reading(level: float, pump: PumpState = PumpState.OFF, **kwargs) -> Reading:
    return Reading(timestamp=NOW, level_percent=level, pump_state=pump, **kwargs)


def _summary(usage: int = 0, intake: int = 0) -> UsageSummary:
    return UsageSummary(daily=DailySummary(usage=usage, intake=intake, net=intake - usage))


def _kinds(alerts) -> list[str]:
    return [a.kind for a in alerts]


class TestLevelAlerts:
    def test_healthy_tank_has_no_alerts(self) -> None:
        alerts = evaluate_alerts(_reading(80.0), _summary(), connection_status="connected")
        assert alerts == []

    def test_critical_level(self) -> None:
        alerts = evaluate_alerts(_reading(15.0, PumpState.ON), _summary(), connection_status="connected")

        assert _kinds(alerts) == ["level_critical"]
        assert alerts[0].severity == "danger"
        assert "15%" in alerts[0].message

    def test_low_level(self) -> None:
        alerts = evaluate_alerts(_reading(35.0, PumpState.ON), _summary(), connection_status="connected")

        assert _kinds(alerts) == ["level_low"]
        assert alerts[0].severity == "warning"


class TestPumpAlerts:
    def test_pump_idle_below_optimal(self) -> None:
        alerts = evaluate_alerts(_reading(55.0, PumpState.OFF), _summary(), connection_status="connected")
        assert _kinds(alerts) == ["pump_idle"]

    def test_pump_filling(self) -> None:
        alerts = evaluate_alerts(
            _reading(70.0, PumpState.ON),
            _summary(),
            connection_status="connected",
            recent_trend=1.5,
        )

        assert _kinds(alerts) == ["pump_filling"]
        assert alerts[0].severity == "info"

    def test_pump_on_without_rise_is_quiet(self) -> None:
        alerts = evaluate_alerts(
            _reading(70.0, PumpState.ON), _summary(), connection_status="connected", recent_trend=0.1
        )
        assert alerts == []


class TestUsageAlerts:
    def test_high_usage(self) -> None:
        alerts = evaluate_alerts(_reading(80.0), _summary(usage=300, intake=290), connection_status="connected")
        assert _kinds(alerts) == ["usage_high"]

    def test_deficit(self) -> None:
        alerts = evaluate_alerts(_reading(80.0), _summary(usage=120, intake=20), connection_status="connected")

        assert _kinds(alerts) == ["usage_deficit"]
        assert "100L" in alerts[0].message

    def test_custom_thresholds(self) -> None:
        thresholds = AlertThresholds(high_daily_usage_l=100.0, daily_deficit_l=500.0)

        alerts = evaluate_alerts(
            _reading(80.0),
            _summary(usage=120, intake=20),
            connection_status="connected",
            thresholds=thresholds,
        )

        assert _kinds(alerts) == ["usage_high"]


class TestConnectionAlerts:
    def test_sentinel_only_reports_offline(self) -> None:
        sentinel = Reading(timestamp=NOW, level_percent=0.0, is_sentinel=True)

        alerts = evaluate_alerts(sentinel, _summary(), connection_status="error")

        assert _kinds(alerts) == ["sensor_offline"]

    def test_stale_reading(self) -> None:
        alerts = evaluate_alerts(
            _reading(80.0, last_update="2 hours ago"), _summary(), connection_status="disconnected"
        )

        assert _kinds(alerts) == ["sensor_stale"]
        assert "2 hours ago" in alerts[0].message
