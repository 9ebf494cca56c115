"""Tempo configuration management with environment variable overrides.

This module provides centralized configuration management with support for:
- Environment variable overrides
- YAML config file loading
- Pydantic validation

Priority order for configuration values:
1. YAML config file (passed as init values, highest priority)
2. Environment variables (TEMPO_*, nested with "__")
3. Pydantic defaults (lowest priority)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class ModeScaling(BaseModel):
    """Per-mode multipliers applied to drain and charge terms.

    Attributes:
        activity: Multiplier on the activity drain term
        stress: Multiplier on the stress drain term
        environment: Multiplier on the environment drain term
        sleep_bonus: Multiplier on the sleep score (capped at 1.0 afterwards)
    """

    activity: float = 1.0
    stress: float = 1.0
    environment: float = 1.0
    sleep_bonus: float = 1.0


def _default_mode_scaling() -> dict[str, ModeScaling]:
    return {
        "standard": ModeScaling(),
        # Exertion is expected for athletes, so activity drains less
        "athlete": ModeScaling(activity=0.8, sleep_bonus=1.1),
    }


class EnergyConfig(BaseModel):
    """Energy model configuration.

    Attributes:
        tick_interval_seconds: Interval of the periodic battery refresh
        initial_level: Battery level before the first morning charge
        baseline_drain: Constant drain in percent per hour
        activity_drain_weight: Drain (%/h) at the reference active energy
        stress_drain_weight: Drain (%/h) at stress level 100
        environment_drain_weight: Multiplier on the environment factor
        reference_active_energy: Active energy (kcal) normalised to 1.0
        sleep_target_hours: Sleep duration scoring 1.0
        deep_sleep_target_ratio: Deep sleep share scoring 1.0
        sleep_weights: Weights of duration, deep sleep and efficiency
        sleep_weight: Weight of the sleep score in the morning charge
        hrv_weight: Weight of the HRV score in the morning charge
        neutral_score: Score used for any missing input
        recovery_penalty_threshold: Previous level below which recovery is incomplete
        recovery_penalty: Multiplier applied to the morning charge after a low day
        mode_scaling: Per-mode drain and charge scaling factors
    """

    tick_interval_seconds: float = 300.0
    initial_level: float = 75.0
    baseline_drain: float = 2.5
    activity_drain_weight: float = 3.0
    stress_drain_weight: float = 2.0
    environment_drain_weight: float = 1.0
    reference_active_energy: float = 400.0
    sleep_target_hours: float = 8.0
    deep_sleep_target_ratio: float = 0.2
    sleep_weights: tuple[float, float, float] = (0.5, 0.2, 0.3)
    sleep_weight: float = 0.6
    hrv_weight: float = 0.4
    neutral_score: float = 0.5
    recovery_penalty_threshold: float = 20.0
    recovery_penalty: float = 0.9
    mode_scaling: dict[str, ModeScaling] = Field(default_factory=_default_mode_scaling)

    @model_validator(mode="after")
    def check_weights(self) -> "EnergyConfig":
        """Reject weight sets that cannot produce a [0, 1] score."""
        if abs(sum(self.sleep_weights) - 1.0) > 1e-6:
            raise ValueError("sleep_weights must sum to 1.0")
        if abs(self.sleep_weight + self.hrv_weight - 1.0) > 1e-6:
            raise ValueError("sleep_weight and hrv_weight must sum to 1.0")
        if not 0.0 < self.recovery_penalty <= 1.0:
            raise ValueError("recovery_penalty must be in (0, 1]")
        return self

    def scaling_for(self, mode: str) -> ModeScaling:
        """Get scaling factors for a user mode, falling back to neutral scaling."""
        return self.mode_scaling.get(mode, ModeScaling())


class CacheConfig(BaseModel):
    """Analysis cache configuration.

    Attributes:
        memory_max_entries: Bound of the in-process LRU tier
        persistent_path: DuckDB database path (":memory:" keeps it in-process)
        ttl_seconds: TTL for enhanced (hybrid) results
        degraded_ttl_seconds: TTL for fallback and error results (<= 0 disables)
        battery_bucket_width: Width of the battery bucket hashed into fingerprints
        similar_battery_tolerance: Max battery distance for a similar-context hit
            (defaults to invalidation_battery_delta)
        invalidation_battery_delta: Battery change that invalidates a family
        temperature_bands: Upper bounds (C) of the cold and mild bands
        humidity_bands: Upper bounds (%) of the dry and normal bands
        pressure_trend_band: Absolute hPa change considered stable
        air_quality_bands: Upper bounds (AQI) of the good and moderate bands
    """

    memory_max_entries: int = 100
    persistent_path: str = ":memory:"
    ttl_seconds: float = 3600.0
    degraded_ttl_seconds: float = 300.0
    battery_bucket_width: int = 5
    similar_battery_tolerance: float | None = None
    invalidation_battery_delta: float = 15.0
    temperature_bands: tuple[float, float] = (10.0, 28.0)
    humidity_bands: tuple[float, float] = (30.0, 70.0)
    pressure_trend_band: float = 3.0
    air_quality_bands: tuple[float, float] = (50.0, 100.0)

    @model_validator(mode="after")
    def check_tolerances(self) -> "CacheConfig":
        """A similar-context hit must never span an invalidating battery change."""
        if self.similar_battery_tolerance is None:
            self.similar_battery_tolerance = self.invalidation_battery_delta
        if self.similar_battery_tolerance > self.invalidation_battery_delta:
            raise ValueError("similar_battery_tolerance cannot exceed invalidation_battery_delta")
        if self.battery_bucket_width < 1:
            raise ValueError("battery_bucket_width must be at least 1")
        return self


class BudgetConfig(BaseModel):
    """Remote analysis budget configuration.

    Attributes:
        daily_cap_units: Daily spend cap per user
        base_request_cost: Estimated units of a remote call without tags
        per_tag_cost: Additional estimated units per active tag
        units_per_1k_tokens: Conversion of reported token usage into units
        timezone: IANA timezone defining the day boundary (also used for the
            observation day of the energy model)
    """

    daily_cap_units: float = 10.0
    base_request_cost: float = 1.0
    per_tag_cost: float = 0.2
    units_per_1k_tokens: float = 0.5
    timezone: str = "UTC"


class CircuitConfig(BaseModel):
    """Circuit breaker configuration.

    Attributes:
        failure_threshold: Consecutive failed calls before opening
        cooldown_seconds: Seconds to wait before allowing a half-open trial
    """

    failure_threshold: int = Field(default=3, ge=1)
    cooldown_seconds: float = 60.0


class RetryConfig(BaseModel):
    """Retry configuration for remote calls.

    Attributes:
        max_attempts: Attempts per call (including the first)
        attempt_timeout: Max seconds per attempt
        base_delay: First backoff delay in seconds
        multiplier: Backoff growth factor
        max_delay: Upper bound of a single backoff delay
        jitter: Fraction of the delay added as random jitter
    """

    max_attempts: int = Field(default=3, ge=1)
    attempt_timeout: float = 8.0
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 5.0
    jitter: float = 0.25


class RemoteConfig(BaseModel):
    """Remote analysis service configuration.

    Attributes:
        enabled: Whether remote enhancement is attempted at all
        endpoint: URL receiving the analysis POST
        api_key: Bearer token for the endpoint
        endpoint_name: Identity of the endpoint (one circuit per identity)
    """

    enabled: bool = True
    endpoint: str = "http://localhost:8787/api/ai/analyze"
    api_key: SecretStr | None = None
    endpoint_name: str = "remote-analysis"


class TempoConfig(BaseSettings):
    """Main Tempo configuration.

    This class loads configuration from multiple sources:
    1. YAML config file (via get_config)
    2. Environment variables (TEMPO_*)
    3. Pydantic defaults

    Attributes:
        energy: Energy model configuration
        cache: Cache configuration
        budget: Budget gate configuration
        circuit: Circuit breaker configuration
        retry: Retry configuration
        remote: Remote analysis service configuration
        result_valid_hours: Validity window of an analysis result
        location: Location passed to the environment provider
        debug: Enable debug mode
        log_level: Root logging level
        metrics_enabled: Export Prometheus metrics
        prometheus_port: Port of the metrics endpoint
        environment: Deployment environment name
    """

    energy: EnergyConfig = Field(default_factory=EnergyConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    circuit: CircuitConfig = Field(default_factory=CircuitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)

    result_valid_hours: float = 8.0
    location: str | None = None

    debug: bool = False
    log_level: str = "INFO"

    # Monitoring
    metrics_enabled: bool = True
    prometheus_port: int = 9090

    environment: str = "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        env_prefix="tempo_",
        extra="ignore",
    )


def load_config_from_file(config_path: str) -> dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary
    """
    path = Path(config_path).expanduser()
    if not path.exists():
        logger.warning(f"Config file not found: {config_path}")
        return {}

    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        return config
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load config from {config_path}: {e}")
        return {}


def get_config(config_path: str | None = None) -> TempoConfig:
    """Get configuration instance.

    Args:
        config_path: Optional path to YAML config file

    Returns:
        TempoConfig instance
    """
    if config_path:
        file_config = load_config_from_file(config_path)
        return TempoConfig(**file_config)

    return TempoConfig()
