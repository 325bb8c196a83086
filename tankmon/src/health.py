"""
Health file writer for the tank monitor daemon.

Writes a JSON health file at a configurable path with:
- last_poll_ts: ISO timestamp of the most recent tick.
- last_history_ts: ISO timestamp of the most recent history refresh.
- last_reading_ts: Timestamp embedded in the latest reading.
- level_percent / pump_state: Latest annotated reading.
- connection_status: "connected", "disconnected" or "error".

The file is replaced atomically on every state change, providing a simple
liveness signal that a container HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-10-08: Track reading, pump and connection state (STORY-010)
- 2026-10-02: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from pathlib import Path

from tankmon.src.models import ConnectionStatus, Reading


class HealthWriter:
    """Writes monitor health status to a JSON file.

    Each mutating method updates the in-memory state and immediately
    rewrites the health file so it always reflects the latest status.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_poll_ts: str | None = None
        self._last_history_ts: str | None = None
        self._last_reading_ts: str | None = None
        self._level_percent: float | None = None
        self._pump_state: str | None = None
        self._connection_status: ConnectionStatus | None = None

    def record_poll(self, reading: Reading, connection_status: ConnectionStatus) -> None:
        """Record a tick and its annotated reading, then write the file."""
        self._last_poll_ts = datetime.now(tz=UTC).isoformat()
        self._connection_status = connection_status
        if not reading.is_sentinel:
            self._last_reading_ts = reading.timestamp.isoformat()
            self._level_percent = reading.level_percent
            self._pump_state = str(reading.pump_state)
        self._write()

    def record_history(self) -> None:
        """Record a history refresh and write the file."""
        self._last_history_ts = datetime.now(tz=UTC).isoformat()
        self._write()

    def _write(self) -> None:
        data = {
            "last_poll_ts": self._last_poll_ts,
            "last_history_ts": self._last_history_ts,
            "last_reading_ts": self._last_reading_ts,
            "level_percent": self._level_percent,
            "pump_state": self._pump_state,
            "connection_status": self._connection_status,
        }
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(data))
        os.replace(tmp, self.path)
