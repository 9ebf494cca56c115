"""End-to-end tests of the analysis pipeline through TempoApplication."""

from __future__ import annotations

from pathlib import Path

import pytest

from tempo.config import BudgetConfig, CacheConfig, CircuitConfig, RemoteConfig, TempoConfig
from tempo.errors import TransientRemoteError
from tempo.main import TempoApplication
from tempo.models import (
    AnalysisSource,
    FocusTag,
    HealthSnapshot,
    HRVSample,
    SleepSample,
)
from tempo.resilience import CircuitState, RetryPolicy

pytestmark = pytest.mark.integration

GOOD_NIGHT = HealthSnapshot(
    sleep=SleepSample(duration_hours=8, deep_sleep_hours=2, efficiency=0.9),
    hrv=HRVSample(current=60, baseline=60),
)


@pytest.fixture
async def make_app(clock, no_sleep):
    """Factory for initialized applications, stopped at teardown."""
    created: list[TempoApplication] = []

    async def _make(service=None, **overrides) -> TempoApplication:
        application = TempoApplication(
            TempoConfig().model_copy(update=overrides),
            remote=service,
            clock=clock,
            monotonic=clock.monotonic,
            epoch=clock.epoch,
            retry=RetryPolicy(sleep=no_sleep),
        )
        await application.initialize()
        created.append(application)
        return application

    yield _make

    for application in created:
        await application.stop()


class TestHybridFlow:
    """Morning charge, remote enhancement and caching."""

    async def test_morning_charge_then_hybrid_then_cached(
        self, make_app, clock, fake_remote, make_enhanced
    ) -> None:
        remote = fake_remote(make_enhanced(tokens_used=1000))
        app = await make_app(remote)

        snapshot = await app.start_day(GOOD_NIGHT)
        assert snapshot.current_level == pytest.approx(98.2)

        first = await app.request_analysis(app.build_context("user-1", [FocusTag.WORK]))
        assert first.source == AnalysisSource.HYBRID
        assert first.enhanced_analysis.headline.title == "Strong start"

        clock.advance(minutes=30)
        second = await app.request_analysis(app.build_context("user-1", [FocusTag.WORK]))

        assert second.source == AnalysisSource.CACHED
        assert second.enhanced_analysis == first.enhanced_analysis
        assert len(remote.calls) == 1
        assert app.budget.ledger("user-1").spent_today == pytest.approx(0.5)
        assert app.metrics.registry.get_sample_value(
            "tempo_analysis_results_total", {"source": "cached"}
        ) == 1.0

    async def test_moderate_battery_change_reuses_analysis(
        self, make_app, clock, fake_remote, make_enhanced
    ) -> None:
        remote = fake_remote(make_enhanced())
        app = await make_app(remote)
        await app.start_day(GOOD_NIGHT)
        app.energy.apply_drain_rate(-4.0)

        await app.request_analysis(app.build_context("user-1", [FocusTag.WORK]))
        clock.advance(hours=2)
        result = await app.request_analysis(app.build_context("user-1", [FocusTag.WORK]))

        assert result.source == AnalysisSource.CACHED
        assert result.static_analysis.energy_level == pytest.approx(90.2)
        assert len(remote.calls) == 1

    async def test_large_battery_change_invalidates(
        self, make_app, clock, fake_remote, make_enhanced
    ) -> None:
        remote = fake_remote(make_enhanced())
        app = await make_app(remote)
        await app.start_day(GOOD_NIGHT)

        await app.request_analysis(app.build_context("user-1", [FocusTag.WORK]))
        # 7h at the initial -2.5%/h drain moves the battery by 17.5 points
        clock.advance(hours=7)
        result = await app.request_analysis(app.build_context("user-1", [FocusTag.WORK]))

        assert result.source == AnalysisSource.HYBRID
        assert len(remote.calls) == 2
        assert app.metrics.registry.get_sample_value("tempo_cache_invalidations_total") == 1.0

    async def test_results_survive_restart(
        self, make_app, make_context, fake_remote, make_enhanced, tmp_path: Path
    ) -> None:
        cache = CacheConfig(persistent_path=str(tmp_path / "cache.duckdb"))
        context = make_context(level=62)

        first_app = await make_app(fake_remote(make_enhanced()), cache=cache)
        assert (await first_app.request_analysis(context)).source == AnalysisSource.HYBRID
        await first_app.stop()

        remote = fake_remote(make_enhanced())
        second_app = await make_app(remote, cache=cache)
        result = await second_app.request_analysis(context)

        assert result.source == AnalysisSource.CACHED
        assert remote.calls == []


class TestDegradedFlow:
    """Paths that never produce an enhanced analysis."""

    async def test_remote_disabled(self, make_app, fake_remote, make_enhanced) -> None:
        remote = fake_remote(make_enhanced())
        app = await make_app(remote, remote=RemoteConfig(enabled=False))

        result = await app.request_analysis(app.build_context("user-1", [FocusTag.CHILL]))

        assert result.source == AnalysisSource.STATIC_ONLY
        assert result.enhanced_analysis is None
        assert remote.calls == []

    async def test_budget_exhaustion_falls_back(self, make_app, fake_remote, make_enhanced) -> None:
        remote = fake_remote(make_enhanced(tokens_used=2000))
        app = await make_app(remote, budget=BudgetConfig(daily_cap_units=1.5))

        first = await app.request_analysis(app.build_context("user-1", [FocusTag.WORK]))
        # 1.0 spent; the next estimate (1.0 + 2 tags * 0.2) no longer fits
        second = await app.request_analysis(
            app.build_context("user-1", [FocusTag.WORK, FocusTag.FITNESS])
        )

        assert first.source == AnalysisSource.HYBRID
        assert second.source == AnalysisSource.FALLBACK
        assert second.static_analysis is not None
        assert len(remote.calls) == 1
        assert app.budget.ledger("user-1").spent_today == pytest.approx(1.0)

    async def test_open_circuit_short_circuits(self, make_app, fake_remote) -> None:
        remote = fake_remote(TransientRemoteError("upstream 503"))
        app = await make_app(remote, circuit=CircuitConfig(failure_threshold=2))
        attempts = app.config.retry.max_attempts

        for user_id in ("user-1", "user-2"):
            result = await app.request_analysis(app.build_context(user_id, [FocusTag.WORK]))
            assert result.source == AnalysisSource.AI_ERROR

        assert app.guard.breaker.state == CircuitState.OPEN
        assert len(remote.calls) == 2 * attempts

        result = await app.request_analysis(app.build_context("user-3", [FocusTag.WORK]))

        assert result.source == AnalysisSource.AI_ERROR
        assert len(remote.calls) == 2 * attempts
        assert app.budget.ledger("user-1").spent_today == 0.0
        assert app.metrics.registry.get_sample_value(
            "tempo_circuit_state", {"endpoint": app.config.remote.endpoint_name}
        ) == 2.0
