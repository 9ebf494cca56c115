"""Static, fallback and hybrid analysis."""

from tempo.analysis.fallback import FallbackGenerator
from tempo.analysis.orchestrator import AnalysisOrchestrator
from tempo.analysis.static import StaticAnalysisEngine

__all__ = ["AnalysisOrchestrator", "FallbackGenerator", "StaticAnalysisEngine"]
