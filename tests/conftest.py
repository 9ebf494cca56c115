"""Pytest configuration and fixtures for Tempo tests."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from tempo.models import (
    AnalysisContext,
    BatterySnapshot,
    EnhancedAnalysis,
    EnvironmentSnapshot,
    FocusTag,
    Headline,
)

START = datetime(2026, 3, 10, 9, 0, tzinfo=UTC)


@pytest.fixture(scope="session", autouse=True)
def setup_telemetry():
    """Setup OpenTelemetry once for the test session, without exporters."""
    from tempo.observability.tracing import setup_telemetry

    setup_telemetry(
        service_name="tempo-test",
        enable_console_export=False,
        otlp_endpoint=None,
    )

    yield


class ManualClock:
    """Controllable clock exposing wall, epoch and monotonic views of one instant."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start
        self._start = start

    def __call__(self) -> datetime:
        return self.now

    def epoch(self) -> float:
        return self.now.timestamp()

    def monotonic(self) -> float:
        return (self.now - self._start).total_seconds()

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeRemoteService:
    """Scripted RemoteAnalysisService.

    Each call consumes the next scripted outcome; the last one repeats. An
    outcome that is an exception is raised instead of returned.
    """

    def __init__(self, *outcomes: Any, gate: asyncio.Event | None = None) -> None:
        self.outcomes = list(outcomes)
        self.gate = gate
        self.calls: list[dict[str, Any]] = []

    async def analyze(self, payload: dict[str, Any]) -> EnhancedAnalysis:
        self.calls.append(payload)
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def make_battery(clock: ManualClock):
    """Factory for battery snapshots taken at the clock's current time."""

    def _make(level: float = 75.0, drain_rate: float = -5.0) -> BatterySnapshot:
        return BatterySnapshot(
            current_level=level,
            morning_charge=max(level, 80.0),
            drain_rate=drain_rate,
            last_updated=clock(),
        )

    return _make


@pytest.fixture
def make_context(clock: ManualClock, make_battery):
    """Factory for analysis contexts."""

    def _make(
        user_id: str = "user-1",
        level: float = 75.0,
        tags: set[FocusTag] | None = None,
        environment: EnvironmentSnapshot | None = None,
        drain_rate: float = -5.0,
    ) -> AnalysisContext:
        return AnalysisContext.build(
            user_id=user_id,
            battery=make_battery(level, drain_rate),
            tags=tags if tags is not None else {FocusTag.WORK},
            environment=environment,
            now=clock(),
        )

    return _make


@pytest.fixture
def make_enhanced(clock: ManualClock):
    """Factory for valid remote analysis responses."""

    def _make(tokens_used: int | None = 1000, title: str = "Strong start") -> EnhancedAnalysis:
        return EnhancedAnalysis(
            headline=Headline(title=title, subtitle="Use the morning well"),
            energy_comment="Energy is holding up nicely.",
            confidence=85,
            generated_at=clock(),
            tokens_used=tokens_used,
        )

    return _make


@pytest.fixture
def fake_remote():
    """Factory for scripted remote analysis services."""
    return FakeRemoteService


@pytest.fixture
def no_sleep():
    """Sleep replacement making retry backoff instantaneous."""
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep
