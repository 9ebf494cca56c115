"""Analysis request and result models.

Defines the analysis context, the static (local) analysis, the schema the
remote analysis service must satisfy, and the tagged analysis result.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tempo.models.battery import BatterySnapshot, BatteryState, UserMode
from tempo.models.signals import EnvironmentSnapshot, HealthSnapshot

DEFAULT_VALIDITY = timedelta(hours=8)


class FocusTag(str, Enum):
    """Interest categories a user can activate."""

    CHILL = "chill"
    WORK = "work"
    BEAUTY = "beauty"
    DIET = "diet"
    SLEEP = "sleep"
    FITNESS = "fitness"


class TimeOfDay(str, Enum):
    """Time-of-day buckets."""

    MORNING = "morning"  # 06-12
    AFTERNOON = "afternoon"  # 12-17
    EVENING = "evening"  # 17-21
    NIGHT = "night"  # 21-06

    @classmethod
    def from_datetime(cls, moment: datetime) -> TimeOfDay:
        hour = moment.hour
        if 6 <= hour < 12:
            return cls.MORNING
        if 12 <= hour < 17:
            return cls.AFTERNOON
        if 17 <= hour < 21:
            return cls.EVENING
        return cls.NIGHT


class AnalysisSource(str, Enum):
    """Provenance tag of an analysis result."""

    STATIC_ONLY = "static_only"
    HYBRID = "hybrid"
    CACHED = "cached"
    FALLBACK = "fallback"
    AI_ERROR = "ai_error"


class AnalysisContext(BaseModel):
    """Inputs to a single analysis request."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    battery: BatterySnapshot
    tags: frozenset[FocusTag] = frozenset()
    time_of_day: TimeOfDay
    environment: EnvironmentSnapshot | None = None
    health: HealthSnapshot | None = None
    mode: UserMode = UserMode.STANDARD

    @classmethod
    def build(
        cls,
        user_id: str,
        battery: BatterySnapshot,
        tags: set[FocusTag] | frozenset[FocusTag] | None = None,
        environment: EnvironmentSnapshot | None = None,
        health: HealthSnapshot | None = None,
        mode: UserMode = UserMode.STANDARD,
        now: datetime | None = None,
    ) -> AnalysisContext:
        """Build a context, deriving the time-of-day bucket from ``now``."""
        moment = now or battery.last_updated
        return cls(
            user_id=user_id,
            battery=battery,
            tags=frozenset(tags or ()),
            time_of_day=TimeOfDay.from_datetime(moment),
            environment=environment,
            health=health,
            mode=mode,
        )

    def to_payload(self) -> dict:
        """Minimal request payload for the remote analysis service."""
        environment = self.environment.model_dump(exclude={"timestamp"}) if self.environment else {}
        return {
            "battery": {
                "level": round(self.battery.current_level, 1),
                "morning_charge": round(self.battery.morning_charge, 1),
                "drain_rate": round(self.battery.drain_rate, 2),
                "state": self.battery.state.value,
            },
            "tags": sorted(tag.value for tag in self.tags),
            "time_of_day": self.time_of_day.value,
            "mode": self.mode.value,
            "environment": environment,
        }


# ============================================================================
# Static analysis
# ============================================================================


class StaticAnalysis(BaseModel):
    """Locally computed analysis, always available."""

    energy_level: float
    battery_state: BatteryState
    drain_rate: float
    projected_depletion_at: datetime | None = None
    headline: str
    message: str
    suggestions: list[str] = Field(default_factory=list)
    tag_notes: dict[FocusTag, str] = Field(default_factory=dict)
    generated_at: datetime


# ============================================================================
# Remote (enhanced) analysis schema
# ============================================================================


class ImpactLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Urgency(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ActionType(str, Enum):
    REST = "rest"
    HYDRATE = "hydrate"
    EXERCISE = "exercise"
    FOCUS = "focus"
    SOCIAL = "social"
    BEAUTY = "beauty"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Headline(BaseModel):
    title: str = Field(min_length=3)
    subtitle: str = ""
    impact_level: ImpactLevel = ImpactLevel.MEDIUM


class TagInsight(BaseModel):
    tag: FocusTag
    message: str = Field(min_length=1)
    urgency: Urgency = Urgency.INFO


class ActionSuggestion(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    action_type: ActionType
    estimated_minutes: int | None = Field(default=None, ge=0)
    difficulty: Difficulty = Difficulty.EASY


class EnhancedAnalysis(BaseModel):
    """Response schema of the remote analysis service.

    A response that fails validation against this model is a malformed
    response and is never retried.
    """

    headline: Headline
    energy_comment: str = ""
    tag_insights: list[TagInsight] = Field(default_factory=list)
    action_suggestions: list[ActionSuggestion] = Field(default_factory=list, max_length=5)
    confidence: float = Field(ge=0, le=100)
    generated_at: datetime
    tokens_used: int | None = Field(default=None, ge=0)


# ============================================================================
# Result
# ============================================================================

_FORBIDS_ENHANCED = {AnalysisSource.FALLBACK, AnalysisSource.STATIC_ONLY, AnalysisSource.AI_ERROR}


class AnalysisResult(BaseModel):
    """Tagged analysis result returned to callers."""

    source: AnalysisSource
    static_analysis: StaticAnalysis
    enhanced_analysis: EnhancedAnalysis | None = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    valid_until: datetime | None = None

    @model_validator(mode="after")
    def check_provenance(self) -> "AnalysisResult":
        """Enforce the source/enhancement invariant and derive validity."""
        if self.source == AnalysisSource.HYBRID and self.enhanced_analysis is None:
            raise ValueError("hybrid results require an enhanced analysis")
        if self.source in _FORBIDS_ENHANCED and self.enhanced_analysis is not None:
            raise ValueError(f"{self.source.value} results cannot carry an enhanced analysis")
        if self.valid_until is None:
            self.valid_until = self.generated_at + DEFAULT_VALIDITY
        return self

    def as_cached(self, static: StaticAnalysis | None = None) -> AnalysisResult:
        """Copy of this result tagged as served from cache.

        Args:
            static: Fresh static analysis replacing the stored one, so the
                battery figures match the request being served
        """
        update: dict[str, object] = {"source": AnalysisSource.CACHED}
        if static is not None:
            update["static_analysis"] = static
        return self.model_copy(update=update)
