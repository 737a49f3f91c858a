"""Centralized configuration using pydantic-settings. All values are env-configurable."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="METRICS_")

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_pool_size: int = 20

    # Moving averages (seconds)
    window_sizes: list[int] = [60, 300, 900, 3600]

    # Aggregation
    aggregation_interval_sec: float = 5.0
    buffer_overflow_threshold: int = 1000

    # Anomaly detection
    anomaly_threshold: float = 3.0
    anomaly_min_samples: int = 30

    # Baseline / retention
    baseline_lookback_sec: int = 7 * 86_400
    aggregate_retention_sec: int = 30 * 86_400
    cleanup_interval_sec: float = 3600.0

    # Storage resilience
    storage_max_retries: int = 3
    storage_backoff_base_sec: float = 0.1
    circuit_failure_threshold: int = 5
    circuit_recovery_sec: float = 30.0

    # Publishing
    publish_updates: bool = True

    # Monitoring
    log_level: str = "INFO"

    @field_validator("window_sizes")
    @classmethod
    def _check_window_sizes(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError("at least one window size is required")
        if any(size <= 0 for size in value):
            raise ValueError("window sizes must be positive")
        if len(set(value)) != len(value):
            raise ValueError("window sizes must be unique")
        return sorted(value)

    @field_validator(
        "aggregation_interval_sec",
        "buffer_overflow_threshold",
        "anomaly_threshold",
        "cleanup_interval_sec",
        "storage_max_retries",
    )
    @classmethod
    def _check_positive(cls, value):
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("anomaly_min_samples", "storage_backoff_base_sec")
    @classmethod
    def _check_non_negative(cls, value):
        if value < 0:
            raise ValueError("must not be negative")
        return value
