"""
Tank monitor configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
Only the ThingSpeak channel id is required; every tuning knob (TTLs,
thresholds, intervals, capacity) has the default the monitor was calibrated
with and can be overridden from the environment or a ``.env`` file.

CHANGELOG:
- 2026-10-18: Add API bind address (STORY-014)
- 2026-10-09: Add alert thresholds (STORY-011)
- 2026-10-02: Initial creation (STORY-001)

TODO:
- None
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class TankSettings(BaseSettings):
    """Tank monitor configuration.

    Attributes:
        thingspeak_channel_id: ThingSpeak channel carrying the sensor feed.
        thingspeak_read_api_key: Read API key for the channel (empty for
            public channels).
        thingspeak_base_url: ThingSpeak API root.
        relay_url: Optional relay endpoint taking the target as ``?url=``.
            Empty disables the relay transport tier.
        request_timeout_s: Timeout per transport attempt.
        latest_cache_ttl_s: TTL of the cached latest reading.
        history_cache_ttl_s: TTL of the cached history series.
        history_hours: Hours of history requested for the chart series.
        history_display_points: Downsampling budget for the history series.
        max_feed_results: Provider cap on entries per request.
        poll_interval_s: Seconds between latest-reading ticks.
        history_interval_s: Seconds between history refreshes.
        default_tank_capacity_l: Capacity used when the feed omits field4.
        usage_noise_threshold_pct: Minimum level drop counted as usage.
        max_usage_per_ingest_l: Cap on liters attributed to one ingestion.
        intake_rate_lpm: Assumed pump intake rate while the pump is ON.
        efficiency_cap_pct: Upper bound for reported efficiency.
        stale_after_s: Age after which a reading marks the link disconnected.
        retention_days: Days of daily records kept in the store.
        store_path: SQLite file holding daily usage records.
        health_path: JSON health file path.
        trend_window_size: Level samples kept for pump inference.
        trend_sample_count: Most recent samples used for the average delta.
        trend_min_samples: Samples required before inferring ON.
        trend_rise_threshold: Average delta above which the pump is ON.
        trend_fall_threshold: Average delta below which the pump is OFF.
        trend_hold_level_pct: Flat-trend level above which the pump is OFF.
        alert_critical_level_pct: Level below which a critical alert fires.
        alert_low_level_pct: Level below which a low-level warning fires.
        alert_high_daily_usage_l: Daily usage above which a warning fires.
        alert_daily_deficit_l: Daily net deficit beyond which an alert fires.
        api_host: Interface the HTTP API binds to.
        api_port: Port the HTTP API listens on.
    """

    thingspeak_channel_id: str
    thingspeak_read_api_key: str = ""
    thingspeak_base_url: str = "https://api.thingspeak.com"
    relay_url: str = ""
    request_timeout_s: float = 10.0
    latest_cache_ttl_s: float = 30.0
    history_cache_ttl_s: float = 300.0
    history_hours: int = 24
    history_display_points: int = 24
    max_feed_results: int = 8000
    poll_interval_s: int = 30
    history_interval_s: int = 300
    default_tank_capacity_l: float = 10000.0
    usage_noise_threshold_pct: float = 0.5
    max_usage_per_ingest_l: float = 50.0
    intake_rate_lpm: float = 2.0
    efficiency_cap_pct: int = 95
    stale_after_s: int = 600
    retention_days: int = 365
    store_path: str = "/data/tankmon.db"
    health_path: str = "/data/health.json"
    trend_window_size: int = 10
    trend_sample_count: int = 5
    trend_min_samples: int = 3
    trend_rise_threshold: float = 0.5
    trend_fall_threshold: float = -0.2
    trend_hold_level_pct: float = 60.0
    alert_critical_level_pct: float = 20.0
    alert_low_level_pct: float = 40.0
    alert_high_daily_usage_l: float = 250.0
    alert_daily_deficit_l: float = 50.0
    api_host: str = "127.0.0.1"
    api_port: int = 8080

    @field_validator("thingspeak_channel_id")
    @classmethod
    def channel_id_must_be_set(cls, v: str) -> str:
        """Reject blank channel ids."""
        if not v.strip():
            raise ValueError("THINGSPEAK_CHANNEL_ID must not be empty")
        return v.strip()

    @field_validator("thingspeak_base_url", "relay_url")
    @classmethod
    def url_must_be_http(cls, v: str) -> str:
        """Validate that configured URLs use http(s) and drop trailing slashes."""
        if v and not v.lower().startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https:// (got: '{v[:20]}...')")
        return v.rstrip("/")

    @field_validator("poll_interval_s", "history_interval_s")
    @classmethod
    def interval_must_respect_rate_limit(cls, v: int) -> int:
        """ThingSpeak free channels update at most every few seconds."""
        if v < 5:
            raise ValueError("Polling intervals must be >= 5 seconds")
        return v

    @field_validator(
        "request_timeout_s",
        "latest_cache_ttl_s",
        "history_cache_ttl_s",
        "default_tank_capacity_l",
        "intake_rate_lpm",
    )
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        """Validate strictly positive numeric settings."""
        if v <= 0:
            raise ValueError("value must be > 0")
        return v

    @field_validator("history_display_points", "history_hours", "retention_days")
    @classmethod
    def must_be_at_least_one(cls, v: int) -> int:
        """Validate counts that cannot be zero."""
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @field_validator("max_feed_results")
    @classmethod
    def feed_results_within_provider_cap(cls, v: int) -> int:
        """ThingSpeak returns at most 8000 entries per request."""
        if v < 1 or v > 8000:
            raise ValueError("MAX_FEED_RESULTS must be >= 1 and <= 8000")
        return v

    @field_validator("api_port")
    @classmethod
    def port_in_range(cls, v: int) -> int:
        """Validate the API port is a usable TCP port."""
        if v < 1 or v > 65535:
            raise ValueError("API_PORT must be between 1 and 65535")
        return v

    @field_validator("efficiency_cap_pct")
    @classmethod
    def efficiency_cap_in_range(cls, v: int) -> int:
        """Validate the efficiency cap is a percentage."""
        if v < 0 or v > 100:
            raise ValueError("EFFICIENCY_CAP_PCT must be between 0 and 100")
        return v

    @model_validator(mode="after")
    def _trend_window_covers_samples(self) -> "TankSettings":
        """The trend window must hold at least the samples used for inference."""
        if self.trend_window_size < self.trend_sample_count:
            raise ValueError("TREND_WINDOW_SIZE must be >= TREND_SAMPLE_COUNT")
        if self.trend_min_samples < 2 or self.trend_sample_count < 2:
            raise ValueError("TREND_MIN_SAMPLES and TREND_SAMPLE_COUNT must be >= 2")
        return self

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
