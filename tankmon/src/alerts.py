"""
Rule-based alerts over the latest reading and today's usage.

Pure evaluation: the caller passes the annotated reading, the usage summary,
the connection status and the recent level trend; the rules return the list
of alerts currently active.  Presentation (toasts, badges, push) is left to
the consumer.

CHANGELOG:
- 2026-10-09: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from tankmon.src.models import Alert, ConnectionStatus, PumpState, Reading, UsageSummary

if TYPE_CHECKING:
    from tankmon.src.config import TankSettings


@dataclass(frozen=True)
class AlertThresholds:
    """Thresholds for :func:`evaluate_alerts`.

    Attributes:
        critical_level_pct: Level below which the tank is critically low.
        low_level_pct: Level below which the tank is low.
        pump_expected_below_pct: Level below which an idle pump is flagged.
        high_daily_usage_l: Daily usage that counts as unusually high.
        daily_deficit_l: Daily net loss that counts as a deficit.
        pump_rise_per_sample: Level rise per sample confirming a running pump.
    """

    critical_level_pct: float = 20.0
    low_level_pct: float = 40.0
    pump_expected_below_pct: float = 60.0
    high_daily_usage_l: float = 250.0
    daily_deficit_l: float = 50.0
    pump_rise_per_sample: float = 0.5

    @classmethod
    def from_settings(cls, settings: TankSettings) -> AlertThresholds:
        return cls(
            critical_level_pct=settings.alert_critical_level_pct,
            low_level_pct=settings.alert_low_level_pct,
            pump_expected_below_pct=settings.trend_hold_level_pct,
            high_daily_usage_l=settings.alert_high_daily_usage_l,
            daily_deficit_l=settings.alert_daily_deficit_l,
            pump_rise_per_sample=settings.trend_rise_threshold,
        )


def evaluate_alerts(
    reading: Reading,
    summary: UsageSummary,
    *,
    connection_status: ConnectionStatus,
    recent_trend: float = 0.0,
    thresholds: AlertThresholds | None = None,
) -> list[Alert]:
    """Return the alerts active for the current state.

    Level alerts are skipped for the sentinel reading, whose zero level
    says nothing about the tank.
    """
    t = thresholds or AlertThresholds()
    alerts: list[Alert] = []
    level = reading.level_percent

    if not reading.is_sentinel:
        if level < t.critical_level_pct:
            alerts.append(
                Alert(
                    kind="level_critical",
                    severity="danger",
                    message=f"Critical: water level at {level:.0f}%, immediate attention required",
                )
            )
        elif level < t.low_level_pct:
            alerts.append(
                Alert(kind="level_low", severity="warning", message=f"Water level low at {level:.0f}%")
            )

        if reading.pump_state == PumpState.OFF and level < t.pump_expected_below_pct:
            alerts.append(
                Alert(
                    kind="pump_idle",
                    severity="warning",
                    message="Pump is OFF while water level is below the optimal range",
                )
            )

        if reading.pump_state == PumpState.ON and recent_trend > t.pump_rise_per_sample:
            alerts.append(
                Alert(
                    kind="pump_filling",
                    severity="info",
                    message=f"Pump active, water level increasing ({recent_trend:.1f}%/cycle)",
                )
            )

    if summary.daily.usage > t.high_daily_usage_l:
        alerts.append(
            Alert(
                kind="usage_high",
                severity="warning",
                message=f"High daily usage detected: {summary.daily.usage}L",
            )
        )

    if summary.daily.net < -t.daily_deficit_l:
        alerts.append(
            Alert(
                kind="usage_deficit",
                severity="danger",
                message=f"Daily deficit: {abs(summary.daily.net)}L more usage than intake",
            )
        )

    if connection_status == "error":
        alerts.append(
            Alert(kind="sensor_offline", severity="danger", message="Connection to the tank sensor lost")
        )
    elif connection_status == "disconnected":
        alerts.append(
            Alert(
                kind="sensor_stale",
                severity="warning",
                message=f"Sensor data is stale (last update {reading.last_update})",
            )
        )

    return alerts
