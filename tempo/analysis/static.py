"""Static (local) analysis engine.

Pure computation over the battery snapshot and context. Always available and
fast enough to answer synchronously before any remote enhancement.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from tempo.models import (
    AnalysisContext,
    BatterySnapshot,
    BatteryState,
    EnvironmentSnapshot,
    FocusTag,
    HealthSnapshot,
    StaticAnalysis,
    TimeOfDay,
)

logger = logging.getLogger(__name__)

HEADLINES = {
    BatteryState.HIGH: "Fully charged",
    BatteryState.MEDIUM: "Steady energy",
    BatteryState.LOW: "Running low",
    BatteryState.CRITICAL: "Recharge needed",
}

MESSAGES = {
    BatteryState.HIGH: "You're in great shape today. A good day to take on demanding work.",
    BatteryState.MEDIUM: "A balanced state. Keep today's pace and take short breaks.",
    BatteryState.LOW: "Fatigue is showing. Ease off the pace where you can.",
    BatteryState.CRITICAL: "Your energy is depleted. Rest is the priority right now.",
}

GENERIC_HEADLINE = "Energy update"
GENERIC_MESSAGE = "Listen to your body today and take breaks when you need them."

_ENERGETIC_TAG_NOTES = {
    FocusTag.WORK: "Schedule your most demanding task now while focus is high.",
    FocusTag.FITNESS: "Your body can handle a solid workout today.",
    FocusTag.DIET: "Keep meals balanced to sustain your energy.",
    FocusTag.BEAUTY: "A good moment for your skincare routine.",
    FocusTag.SLEEP: "Keep your usual bedtime to bank this recovery.",
    FocusTag.CHILL: "Enjoy some free time without guilt.",
}

_DEPLETED_TAG_NOTES = {
    FocusTag.WORK: "Stick to routine tasks and postpone deep work.",
    FocusTag.FITNESS: "Swap intense training for light stretching or a walk.",
    FocusTag.DIET: "Choose easy-to-digest food and avoid heavy meals.",
    FocusTag.BEAUTY: "Keep it simple and prioritise hydration.",
    FocusTag.SLEEP: "Plan an early night to recover.",
    FocusTag.CHILL: "A quiet break will recharge you more than screen time.",
}


class StaticAnalysisEngine:
    """Computes the local analysis of a context."""

    def analyze(self, context: AnalysisContext, now: datetime | None = None) -> StaticAnalysis:
        """Build the static analysis of a context.

        Args:
            context: Analysis context (its battery snapshot is used as-is)
            now: Generation time

        Returns:
            Static analysis
        """
        now = now or datetime.now(UTC)
        battery = context.battery
        state = battery.state
        depletion = battery.projected_depletion_at()

        message = MESSAGES[state]
        if depletion is not None and depletion.date() == battery.last_updated.date():
            message += f" At the current pace you'll be empty around {depletion:%H:%M}."

        return StaticAnalysis(
            energy_level=round(battery.current_level, 1),
            battery_state=state,
            drain_rate=round(battery.drain_rate, 2),
            projected_depletion_at=depletion,
            headline=HEADLINES[state],
            message=message,
            suggestions=self.suggestions(battery, context),
            tag_notes=self.tag_notes(battery, context.tags),
            generated_at=now,
        )

    def suggestions(self, battery: BatterySnapshot, context: AnalysisContext) -> list[str]:
        """Up to five concrete suggestions, most important first."""
        suggestions: list[str] = []
        state = battery.state

        if state == BatteryState.CRITICAL:
            suggestions.append("Take a 20 minute rest or nap as soon as you can.")
        elif state == BatteryState.LOW:
            suggestions.append("Take a 10 minute break away from screens.")

        suggestions.extend(_health_suggestions(context.health))
        suggestions.extend(_environment_suggestions(context.environment))

        if context.time_of_day in (TimeOfDay.EVENING, TimeOfDay.NIGHT):
            suggestions.append("Dim the lights and start winding down for sleep.")
        elif state == BatteryState.HIGH:
            suggestions.append("Use this energy for the task you've been putting off.")

        return suggestions[:5]

    def tag_notes(self, battery: BatterySnapshot, tags: frozenset[FocusTag]) -> dict[FocusTag, str]:
        energetic = battery.state in (BatteryState.HIGH, BatteryState.MEDIUM)
        notes = _ENERGETIC_TAG_NOTES if energetic else _DEPLETED_TAG_NOTES
        return {tag: notes[tag] for tag in sorted(tags, key=lambda t: t.value)}


def _health_suggestions(health: HealthSnapshot | None) -> list[str]:
    if health is None:
        return []
    suggestions = []
    if health.sleep and health.sleep.duration_hours is not None and health.sleep.duration_hours < 7:
        suggestions.append("You slept under 7 hours. Aim for an earlier bedtime tonight.")
    stress = health.stress_level
    if stress is not None and stress >= 60:
        suggestions.append("Stress markers are elevated. Try five minutes of slow breathing.")
    return suggestions


def _environment_suggestions(environment: EnvironmentSnapshot | None) -> list[str]:
    if environment is None:
        return []
    suggestions = []
    if (environment.temperature or 0) > 30 or (environment.humidity or 0) > 70:
        suggestions.append("It's hot or humid out. Drink water regularly.")
    if environment.air_quality is not None and environment.air_quality > 100:
        suggestions.append("Air quality is poor. Keep outdoor exercise short.")
    if environment.pressure_change is not None and environment.pressure_change < -3:
        suggestions.append("Pressure is dropping. Headaches and fatigue are more likely.")
    return suggestions
