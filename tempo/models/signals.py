"""Biometric and environmental input snapshots.

Every field is optional: providers may return partial data and consumers
substitute neutral defaults instead of failing.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class HRVTrend(str, Enum):
    """Direction of HRV relative to recent days."""

    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class SleepSample(BaseModel):
    """Last night's sleep."""

    duration_hours: float | None = Field(default=None, ge=0)
    deep_sleep_hours: float | None = Field(default=None, ge=0)
    efficiency: float | None = Field(default=None, ge=0, le=1)

    @property
    def deep_sleep_ratio(self) -> float | None:
        if self.deep_sleep_hours is None or not self.duration_hours:
            return None
        return self.deep_sleep_hours / self.duration_hours


class HRVSample(BaseModel):
    """Heart rate variability against the personal baseline (ms)."""

    current: float | None = Field(default=None, ge=0)
    baseline: float | None = Field(default=None, ge=0)
    trend: HRVTrend = HRVTrend.STABLE


class ActivitySample(BaseModel):
    """Activity accumulated so far today."""

    active_energy_kcal: float | None = Field(default=None, ge=0)
    steps: int | None = Field(default=None, ge=0)


class HealthSnapshot(BaseModel):
    """Point-in-time biometric reading."""

    sleep: SleepSample | None = None
    hrv: HRVSample | None = None
    resting_heart_rate: float | None = None
    heart_rate: float | None = None
    activity: ActivitySample | None = None
    timestamp: datetime | None = None

    @property
    def active_energy(self) -> float | None:
        return self.activity.active_energy_kcal if self.activity else None

    @property
    def stress_level(self) -> float | None:
        """Stress estimate in [0, 100] from HRV suppression and heart rate.

        Returns:
            Stress level, or None when HRV data is insufficient
        """
        if self.hrv is None or not self.hrv.baseline or self.hrv.current is None:
            return None
        hrv_stress = max(0.0, (self.hrv.baseline - self.hrv.current) / self.hrv.baseline * 100)
        heart_rate = self.heart_rate if self.heart_rate is not None else self.resting_heart_rate
        if heart_rate is None:
            return min(100.0, hrv_stress)
        hr_stress = max(0.0, (heart_rate - 60.0) / 60.0 * 100)
        return min(100.0, (hrv_stress + hr_stress) / 2)

    def completeness(self) -> float:
        """Share of the main inputs that are present, in [0, 1]."""
        present = [
            self.sleep is not None and self.sleep.duration_hours is not None,
            self.hrv is not None and self.hrv.current is not None,
            self.resting_heart_rate is not None,
            self.active_energy is not None,
        ]
        return sum(present) / len(present)


class EnvironmentSnapshot(BaseModel):
    """Point-in-time weather and air quality reading."""

    temperature: float | None = None
    humidity: float | None = Field(default=None, ge=0, le=100)
    pressure: float | None = None
    pressure_change: float | None = None  # hPa over the last ~6 hours
    air_quality: float | None = Field(default=None, ge=0)
    timestamp: datetime | None = None
