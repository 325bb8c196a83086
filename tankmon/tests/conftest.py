"""
Shared test fixtures for tank monitor tests.

Provides environment variable fixtures for TankSettings configuration
tests.  All monitor env vars are cleaned before each test to ensure
isolation, and the working directory is moved to tmp_path so no stray
``.env`` file is picked up.

CHANGELOG:
- 2026-10-02: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import pytest

# TankSettings environment variable names, used for cleanup.
_ALL_ENV_VARS = (
    "THINGSPEAK_CHANNEL_ID",
    "THINGSPEAK_READ_API_KEY",
    "THINGSPEAK_BASE_URL",
    "RELAY_URL",
    "REQUEST_TIMEOUT_S",
    "LATEST_CACHE_TTL_S",
    "HISTORY_CACHE_TTL_S",
    "HISTORY_HOURS",
    "HISTORY_DISPLAY_POINTS",
    "MAX_FEED_RESULTS",
    "POLL_INTERVAL_S",
    "HISTORY_INTERVAL_S",
    "DEFAULT_TANK_CAPACITY_L",
    "USAGE_NOISE_THRESHOLD_PCT",
    "MAX_USAGE_PER_INGEST_L",
    "INTAKE_RATE_LPM",
    "EFFICIENCY_CAP_PCT",
    "STALE_AFTER_S",
    "RETENTION_DAYS",
    "STORE_PATH",
    "HEALTH_PATH",
    "TREND_WINDOW_SIZE",
    "TREND_SAMPLE_COUNT",
    "TREND_MIN_SAMPLES",
    "TREND_RISE_THRESHOLD",
    "TREND_FALL_THRESHOLD",
    "TREND_HOLD_LEVEL_PCT",
    "ALERT_CRITICAL_LEVEL_PCT",
    "ALERT_LOW_LEVEL_PCT",
    "ALERT_HIGH_DAILY_USAGE_L",
    "ALERT_DAILY_DEFICIT_L",
    "API_HOST",
    "API_PORT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all monitor env vars and isolate from .env files before each test."""
    for var in _ALL_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set a representative full environment for TankSettings."""
    env = {
        "THINGSPEAK_CHANNEL_ID": "3035826",
        "THINGSPEAK_READ_API_KEY": "read-key-123",
        "THINGSPEAK_BASE_URL": "https://api.thingspeak.com/",
        "RELAY_URL": "https://relay.example.com/raw",
        "REQUEST_TIMEOUT_S": "5",
        "POLL_INTERVAL_S": "60",
        "HISTORY_INTERVAL_S": "600",
        "DEFAULT_TANK_CAPACITY_L": "5000",
        "STORE_PATH": "/tmp/tankmon-test.db",
        "HEALTH_PATH": "/tmp/tankmon-health.json",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables."""
    env = {"THINGSPEAK_CHANNEL_ID": "42"}
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env
