"""Battery (energy) state models."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, computed_field, field_validator

MIN_LEVEL = 0.0
MAX_LEVEL = 100.0


def clamp_level(level: float) -> float:
    """Clamp a battery level into [0, 100]."""
    return max(MIN_LEVEL, min(MAX_LEVEL, level))


class BatteryState(str, Enum):
    """Qualitative battery states."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    CRITICAL = "critical"

    @classmethod
    def from_level(cls, level: float) -> BatteryState:
        """Map a battery level to its state.

        Bands: high >= 70, medium 40-70, low 15-40, critical < 15.
        """
        if level >= 70.0:
            return cls.HIGH
        if level >= 40.0:
            return cls.MEDIUM
        if level >= 15.0:
            return cls.LOW
        return cls.CRITICAL


class UserMode(str, Enum):
    """User modes changing how drain and charge are weighted."""

    STANDARD = "standard"
    ATHLETE = "athlete"


class BatterySnapshot(BaseModel):
    """Immutable point-in-time battery state.

    ``state`` is derived from ``current_level`` on access and is never stored,
    so the two cannot disagree.
    """

    model_config = ConfigDict(frozen=True)

    current_level: float
    morning_charge: float
    drain_rate: float
    last_updated: datetime

    @field_validator("current_level", "morning_charge")
    @classmethod
    def clamp(cls, value: float) -> float:
        return clamp_level(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def state(self) -> BatteryState:
        return BatteryState.from_level(self.current_level)

    def projected_depletion_at(self) -> datetime | None:
        """Time at which the level reaches zero at the current drain rate.

        Returns:
            Projected depletion time, or None when the battery is not depleting
        """
        if self.drain_rate >= 0:
            return None
        hours_remaining = self.current_level / abs(self.drain_rate)
        return self.last_updated + timedelta(hours=hours_remaining)
