"""
Unit tests for the health file writer (tankmon.src.health).

Tests verify:
- record_poll() writes the reading, pump state and connection status.
- record_history() updates only the history timestamp.
- Sentinel readings update the poll time but not the reading fields.
- The file is replaced without leaving the temp file behind.

CHANGELOG:
- 2026-10-08: Track reading, pump and connection state (STORY-010)
- 2026-10-02: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from tankmon.src.health import HealthWriter
from tankmon.src.models import PumpState, Reading

TS = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


def _read(path: Path) -> dict:
    return json.loads(path.read_text())


class TestHealthWriter:
    def test_record_poll(self, tmp_path: Path) -> None:
        path = tmp_path / "health.json"
        writer = HealthWriter(path)

        writer.record_poll(
            Reading(timestamp=TS, level_percent=64.0, pump_state=PumpState.ON), "connected"
        )

        data = _read(path)
        assert data["last_poll_ts"] is not None
        assert data["last_history_ts"] is None
        assert data["last_reading_ts"] == TS.isoformat()
        assert data["level_percent"] == 64.0
        assert data["pump_state"] == "ON"
        assert data["connection_status"] == "connected"

    def test_record_history(self, tmp_path: Path) -> None:
        path = tmp_path / "health.json"
        writer = HealthWriter(str(path))

        writer.record_history()

        data = _read(path)
        assert data["last_history_ts"] is not None
        assert data["last_poll_ts"] is None

    def test_sentinel_keeps_last_reading(self, tmp_path: Path) -> None:
        path = tmp_path / "health.json"
        writer = HealthWriter(path)
        writer.record_poll(Reading(timestamp=TS, level_percent=64.0), "connected")

        writer.record_poll(
            Reading(timestamp=datetime.now(tz=UTC), level_percent=0.0, is_sentinel=True), "error"
        )

        data = _read(path)
        assert data["level_percent"] == 64.0
        assert data["last_reading_ts"] == TS.isoformat()
        assert data["connection_status"] == "error"

    def test_no_temp_file_left(self, tmp_path: Path) -> None:
        path = tmp_path / "health.json"
        HealthWriter(path).record_history()

        assert path.exists()
        assert not (tmp_path / "health.json.tmp").exists()
