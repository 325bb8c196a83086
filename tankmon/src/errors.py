"""
Exception types raised inside the tank monitor.

None of these escape the public service APIs: the telemetry client degrades
to cached or sentinel data, the aggregator keeps operating in memory.

CHANGELOG:
- 2026-10-02: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations


class TankmonError(Exception):
    """Base class for all tank monitor errors."""


class TransportError(TankmonError):
    """A transport tier (or every tier) failed to return a decodable payload."""


class ValidationError(TankmonError):
    """A feed entry has a missing or non-numeric primary field."""


class StorageError(TankmonError):
    """The local usage store could not be read or written."""
