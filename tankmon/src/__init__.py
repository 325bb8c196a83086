"""
Tank monitor package for ThingSpeak water-level telemetry.

Pulls tank level readings from a ThingSpeak channel, infers whether the fill
pump is running from the level trend, and rolls level deltas into daily,
monthly and yearly usage statistics persisted locally.

CHANGELOG:
- 2026-10-02: Initial creation (STORY-001)

TODO:
- None
"""
