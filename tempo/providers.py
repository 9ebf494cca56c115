"""Interfaces of the external collaborators Tempo consumes."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from tempo.models import EnhancedAnalysis, EnvironmentSnapshot, HealthSnapshot


@runtime_checkable
class HealthSnapshotProvider(Protocol):
    """Source of biometric readings.

    May return partial data or raise ProviderError.
    """

    async def latest(self) -> HealthSnapshot: ...


@runtime_checkable
class EnvironmentSnapshotProvider(Protocol):
    """Source of weather and air quality readings.

    May return partial data or raise ProviderError.
    """

    async def current(self, location: str | None) -> EnvironmentSnapshot: ...


@runtime_checkable
class RemoteAnalysisService(Protocol):
    """Remote analysis service producing an enhanced analysis.

    Implementations raise TransientRemoteError for retryable failures,
    MalformedResponseError for schema violations and RemoteAnalysisError for
    anything else.
    """

    async def analyze(self, payload: dict[str, Any]) -> EnhancedAnalysis: ...
