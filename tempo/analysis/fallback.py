"""Fallback analysis: the terminal safety net of the analysis pipeline.

Every degraded path (remote disabled, budget rejected, circuit open, remote
failure) resolves here. Generation is local, deterministic and never raises.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from tempo.analysis.static import GENERIC_HEADLINE, GENERIC_MESSAGE, StaticAnalysisEngine
from tempo.models import AnalysisResult, AnalysisSource, StaticAnalysis
from tempo.models.analysis import DEFAULT_VALIDITY

if TYPE_CHECKING:
    from collections.abc import Callable

    from tempo.models import AnalysisContext, BatterySnapshot

logger = logging.getLogger(__name__)

DEGRADED_SOURCES = frozenset(
    {AnalysisSource.STATIC_ONLY, AnalysisSource.FALLBACK, AnalysisSource.AI_ERROR}
)


class FallbackGenerator:
    """Produces static-only analysis results."""

    def __init__(
        self,
        engine: StaticAnalysisEngine | None = None,
        clock: Callable[[], datetime] | None = None,
        validity: timedelta = DEFAULT_VALIDITY,
    ) -> None:
        self.engine = engine or StaticAnalysisEngine()
        self.validity = validity
        self._clock = clock or (lambda: datetime.now(UTC))

    def static_analysis(self, snapshot: BatterySnapshot, context: AnalysisContext) -> StaticAnalysis:
        """Static analysis of a context, degrading to a generic one on bad input."""
        now = self._clock()
        try:
            return self.engine.analyze(context.model_copy(update={"battery": snapshot}), now)
        except Exception as e:
            logger.warning(f"Static analysis failed, using generic message: {e}", exc_info=True)
            return self.generic(snapshot, now)

    def generic(self, snapshot: BatterySnapshot, now: datetime) -> StaticAnalysis:
        return StaticAnalysis(
            energy_level=round(snapshot.current_level, 1),
            battery_state=snapshot.state,
            drain_rate=round(snapshot.drain_rate, 2),
            headline=GENERIC_HEADLINE,
            message=GENERIC_MESSAGE,
            generated_at=now,
        )

    def generate(
        self,
        snapshot: BatterySnapshot,
        context: AnalysisContext,
        source: AnalysisSource = AnalysisSource.FALLBACK,
        static: StaticAnalysis | None = None,
    ) -> AnalysisResult:
        """Produce a static-only result.

        Args:
            snapshot: Battery snapshot the analysis is based on
            context: Analysis context
            source: Provenance tag (static_only, fallback or ai_error)
            static: Already computed static analysis to reuse

        Returns:
            Result without enhanced analysis
        """
        if source not in DEGRADED_SOURCES:
            logger.warning(f"Fallback cannot be tagged {source.value}, using fallback")
            source = AnalysisSource.FALLBACK

        static = static or self.static_analysis(snapshot, context)
        return AnalysisResult(
            source=source,
            static_analysis=static,
            generated_at=static.generated_at,
            valid_until=static.generated_at + self.validity,
        )
