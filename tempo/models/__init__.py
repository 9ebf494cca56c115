"""Tempo domain models."""

from tempo.models.analysis import (
    ActionSuggestion,
    ActionType,
    AnalysisContext,
    AnalysisResult,
    AnalysisSource,
    Difficulty,
    EnhancedAnalysis,
    FocusTag,
    Headline,
    ImpactLevel,
    StaticAnalysis,
    TagInsight,
    TimeOfDay,
    Urgency,
)
from tempo.models.battery import BatterySnapshot, BatteryState, UserMode, clamp_level
from tempo.models.signals import (
    ActivitySample,
    EnvironmentSnapshot,
    HealthSnapshot,
    HRVSample,
    HRVTrend,
    SleepSample,
)

__all__ = [
    "ActionSuggestion",
    "ActionType",
    "ActivitySample",
    "AnalysisContext",
    "AnalysisResult",
    "AnalysisSource",
    "BatterySnapshot",
    "BatteryState",
    "clamp_level",
    "Difficulty",
    "EnhancedAnalysis",
    "EnvironmentSnapshot",
    "FocusTag",
    "Headline",
    "HealthSnapshot",
    "HRVSample",
    "HRVTrend",
    "ImpactLevel",
    "SleepSample",
    "StaticAnalysis",
    "TagInsight",
    "TimeOfDay",
    "Urgency",
    "UserMode",
]
