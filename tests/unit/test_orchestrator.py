"""Tests for the hybrid analysis orchestrator."""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from tempo.analysis import AnalysisOrchestrator, FallbackGenerator
from tempo.budget import BudgetGate
from tempo.cache import MultiTierCache
from tempo.config import BudgetConfig, CircuitConfig, RetryConfig, TempoConfig
from tempo.errors import MalformedResponseError, TransientRemoteError
from tempo.models import AnalysisSource, BatteryState, FocusTag
from tempo.observability.metrics import TempoMetrics
from tempo.resilience import CircuitBreaker, CircuitState, ReliabilityGuard, RetryPolicy


@pytest.fixture
def config() -> TempoConfig:
    return TempoConfig(
        budget={"daily_cap_units": 10.0},
        circuit={"failure_threshold": 2, "cooldown_seconds": 60},
        retry={"max_attempts": 3},
    )


@pytest.fixture
async def build(config: TempoConfig, clock, no_sleep):
    """Factory wiring an orchestrator around a remote service."""
    caches: list[MultiTierCache] = []

    async def _build(service=None, **overrides) -> AnalysisOrchestrator:
        tempo_config = config.model_copy(update=overrides) if overrides else config
        metrics = TempoMetrics()
        cache = MultiTierCache(tempo_config.cache, metrics=metrics, clock=clock.epoch)
        await cache.initialize()
        caches.append(cache)
        breaker = CircuitBreaker(
            tempo_config.remote.endpoint_name, tempo_config.circuit, clock=clock.monotonic
        )
        return AnalysisOrchestrator(
            tempo_config,
            cache=cache,
            budget=BudgetGate(tempo_config.budget, metrics=metrics, clock=clock),
            guard=ReliabilityGuard(
                breaker, RetryPolicy(tempo_config.retry, sleep=no_sleep), metrics=metrics
            ),
            fallback=FallbackGenerator(clock=clock),
            remote=service,
            metrics=metrics,
            clock=clock,
        )

    yield _build

    for cache in caches:
        await cache.close()


async def _until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never reached")


class TestLocalPaths:
    """Requests that never reach the remote service."""

    async def test_remote_absent_returns_static_only(self, build, make_context) -> None:
        orchestrator = await build(None)

        result = await orchestrator.request_analysis(make_context())
        again = await orchestrator.request_analysis(make_context())

        assert result.source == AnalysisSource.STATIC_ONLY
        assert result.enhanced_analysis is None
        assert again.source == AnalysisSource.CACHED
        assert again.static_analysis == result.static_analysis

    async def test_remote_disabled_by_config(
        self, build, make_context, fake_remote, make_enhanced, config
    ) -> None:
        remote = fake_remote(make_enhanced())
        orchestrator = await build(
            remote, remote=config.remote.model_copy(update={"enabled": False})
        )

        result = await orchestrator.request_analysis(make_context())

        assert not orchestrator.remote_enabled
        assert result.source == AnalysisSource.STATIC_ONLY
        assert remote.calls == []

    async def test_budget_exhausted_returns_fallback(
        self, build, make_context, fake_remote, make_enhanced
    ) -> None:
        remote = fake_remote(make_enhanced())
        orchestrator = await build(remote, budget=BudgetConfig(daily_cap_units=0.5))

        result = await orchestrator.request_analysis(make_context())

        assert result.source == AnalysisSource.FALLBACK
        assert result.enhanced_analysis is None
        assert remote.calls == []


class TestRemotePaths:
    """Requests enhanced by the remote service."""

    async def test_success_returns_hybrid_and_records_cost(
        self, build, make_context, fake_remote, make_enhanced, clock
    ) -> None:
        remote = fake_remote(make_enhanced(tokens_used=1000))
        orchestrator = await build(remote)
        context = make_context(tags={FocusTag.WORK, FocusTag.FITNESS})

        result = await orchestrator.request_analysis(context)

        assert result.source == AnalysisSource.HYBRID
        assert result.enhanced_analysis.headline.title == "Strong start"
        assert result.static_analysis.energy_level == 75.0
        assert result.valid_until == clock() + timedelta(hours=8)
        assert remote.calls == [context.to_payload()]
        # 1000 tokens at 0.5 units per 1k
        assert orchestrator.budget.ledger("user-1").spent_today == pytest.approx(0.5)

    async def test_cost_falls_back_to_estimate(
        self, build, make_context, fake_remote, make_enhanced
    ) -> None:
        orchestrator = await build(fake_remote(make_enhanced(tokens_used=None)))

        await orchestrator.request_analysis(make_context(tags={FocusTag.WORK}))

        assert orchestrator.budget.ledger("user-1").spent_today == pytest.approx(1.2)

    async def test_hybrid_result_is_cached(
        self, build, make_context, fake_remote, make_enhanced
    ) -> None:
        remote = fake_remote(make_enhanced())
        orchestrator = await build(remote)

        first = await orchestrator.request_analysis(make_context(level=72))
        second = await orchestrator.request_analysis(make_context(level=73))

        assert first.source == AnalysisSource.HYBRID
        assert second.source == AnalysisSource.CACHED
        assert second.enhanced_analysis == first.enhanced_analysis
        assert len(remote.calls) == 1

    async def test_similar_context_served_from_cache(
        self, build, make_context, fake_remote, make_enhanced
    ) -> None:
        remote = fake_remote(make_enhanced())
        orchestrator = await build(remote)

        await orchestrator.request_analysis(make_context(level=80))
        adapted = await orchestrator.request_analysis(make_context(level=77))

        assert adapted.source == AnalysisSource.CACHED
        assert adapted.enhanced_analysis is not None
        assert len(remote.calls) == 1

    async def test_change_below_invalidation_threshold_is_cached(
        self, build, make_context, fake_remote, make_enhanced
    ) -> None:
        remote = fake_remote(make_enhanced())
        orchestrator = await build(remote)
        assert orchestrator.config.cache == TempoConfig().cache

        first = await orchestrator.request_analysis(make_context(level=80))
        second = await orchestrator.request_analysis(make_context(level=72))

        assert first.source == AnalysisSource.HYBRID
        assert second.source == AnalysisSource.CACHED
        assert len(remote.calls) == 1

    async def test_cache_hit_refreshes_static_analysis(
        self, build, make_context, fake_remote, make_enhanced
    ) -> None:
        orchestrator = await build(fake_remote(make_enhanced()))

        first = await orchestrator.request_analysis(make_context(level=74))
        adapted = await orchestrator.request_analysis(make_context(level=66))

        assert first.static_analysis.battery_state == BatteryState.HIGH
        assert adapted.source == AnalysisSource.CACHED
        assert adapted.static_analysis.energy_level == 66.0
        assert adapted.static_analysis.battery_state == BatteryState.MEDIUM
        assert adapted.enhanced_analysis == first.enhanced_analysis

    async def test_large_battery_change_invalidates(
        self, build, make_context, fake_remote, make_enhanced
    ) -> None:
        remote = fake_remote(make_enhanced())
        orchestrator = await build(remote)

        await orchestrator.request_analysis(make_context(level=80))
        await orchestrator.request_analysis(make_context(level=60))
        back = await orchestrator.request_analysis(make_context(level=80))

        assert back.source == AnalysisSource.HYBRID
        assert len(remote.calls) == 3

    async def test_transient_failures_exhaust_retries(
        self, build, make_context, fake_remote
    ) -> None:
        remote = fake_remote(TransientRemoteError("HTTP 503"))
        orchestrator = await build(remote)

        result = await orchestrator.request_analysis(make_context())

        assert result.source == AnalysisSource.AI_ERROR
        assert result.enhanced_analysis is None
        assert result.static_analysis.headline
        assert len(remote.calls) == 3
        assert orchestrator.guard.breaker.stats.consecutive_failures == 1
        assert orchestrator.budget.ledger("user-1").reserved == 0.0
        assert orchestrator.budget.ledger("user-1").spent_today == 0.0

    async def test_malformed_response_is_not_retried(
        self, build, make_context, fake_remote
    ) -> None:
        remote = fake_remote(MalformedResponseError("bad schema", errors=[{"loc": ("confidence",)}]))
        orchestrator = await build(remote)

        result = await orchestrator.request_analysis(make_context())

        assert result.source == AnalysisSource.AI_ERROR
        assert len(remote.calls) == 1

    async def test_degraded_results_expire_sooner(
        self, build, make_context, fake_remote, make_enhanced, clock
    ) -> None:
        remote = fake_remote(TransientRemoteError("HTTP 503"), make_enhanced())
        orchestrator = await build(remote, retry=RetryConfig(max_attempts=1))

        first = await orchestrator.request_analysis(make_context())
        cached = await orchestrator.request_analysis(make_context())
        clock.advance(seconds=301)
        recovered = await orchestrator.request_analysis(make_context())

        assert first.source == AnalysisSource.AI_ERROR
        assert cached.source == AnalysisSource.CACHED
        assert recovered.source == AnalysisSource.HYBRID

    async def test_open_circuit_skips_remote_quickly(
        self, build, make_context, fake_remote
    ) -> None:
        remote = fake_remote(TransientRemoteError("HTTP 503"))
        orchestrator = await build(remote)

        for user_id in ("user-a", "user-b"):
            await orchestrator.request_analysis(make_context(user_id=user_id))
        assert orchestrator.guard.state == CircuitState.OPEN
        calls_before = len(remote.calls)

        start = time.perf_counter()
        result = await orchestrator.request_analysis(make_context(user_id="user-c"))
        elapsed = time.perf_counter() - start

        assert result.source == AnalysisSource.AI_ERROR
        assert len(remote.calls) == calls_before
        assert elapsed < 0.05

    async def test_consecutive_timeouts_open_circuit(
        self, build, make_context, fake_remote, make_enhanced
    ) -> None:
        # The remote never answers, so every attempt times out
        remote = fake_remote(make_enhanced(), gate=asyncio.Event())
        orchestrator = await build(
            remote,
            circuit=CircuitConfig(failure_threshold=3, cooldown_seconds=60),
            retry=RetryConfig(max_attempts=1, attempt_timeout=0.01),
        )

        for user_id in ("user-a", "user-b", "user-c"):
            result = await orchestrator.request_analysis(make_context(user_id=user_id))
            assert result.source == AnalysisSource.AI_ERROR
        assert orchestrator.guard.state == CircuitState.OPEN

        start = time.perf_counter()
        result = await orchestrator.request_analysis(make_context(user_id="user-d"))
        elapsed = time.perf_counter() - start

        assert result.source == AnalysisSource.AI_ERROR
        assert elapsed < 0.01
        assert len(remote.calls) == 3
        assert orchestrator.budget.ledger("user-d").reserved == 0.0

        again = await orchestrator.request_analysis(make_context(user_id="user-d"))
        assert again.source == AnalysisSource.AI_ERROR


class TestConcurrency:
    """Concurrent requests and failure containment."""

    async def test_identical_requests_share_one_remote_call(
        self, build, make_context, fake_remote, make_enhanced
    ) -> None:
        gate = asyncio.Event()
        remote = fake_remote(make_enhanced(), gate=gate)
        orchestrator = await build(remote)

        first = asyncio.create_task(orchestrator.request_analysis(make_context()))
        second = asyncio.create_task(orchestrator.request_analysis(make_context()))
        await _until(lambda: remote.calls)
        await asyncio.sleep(0)
        assert orchestrator.in_flight_count == 1

        gate.set()
        results = await asyncio.gather(first, second)

        assert [r.source for r in results] == [AnalysisSource.HYBRID, AnalysisSource.HYBRID]
        assert len(remote.calls) == 1
        assert orchestrator.in_flight_count == 0

    async def test_cancelled_waiter_does_not_cancel_shared_call(
        self, build, make_context, fake_remote, make_enhanced
    ) -> None:
        gate = asyncio.Event()
        remote = fake_remote(make_enhanced(), gate=gate)
        orchestrator = await build(remote)

        first = asyncio.create_task(orchestrator.request_analysis(make_context()))
        second = asyncio.create_task(orchestrator.request_analysis(make_context()))
        await _until(lambda: remote.calls)

        first.cancel()
        gate.set()

        assert (await second).source == AnalysisSource.HYBRID
        assert first.cancelled()

    async def test_concurrent_requests_cannot_overspend_budget(
        self, build, make_context, fake_remote, make_enhanced
    ) -> None:
        gate = asyncio.Event()
        remote = fake_remote(make_enhanced(tokens_used=1000), gate=gate)
        orchestrator = await build(remote, budget=BudgetConfig(daily_cap_units=1.5))
        tags = [FocusTag.CHILL, FocusTag.WORK, FocusTag.BEAUTY, FocusTag.DIET, FocusTag.SLEEP]

        requests = [
            asyncio.create_task(orchestrator.request_analysis(make_context(tags={tag})))
            for tag in tags
        ]
        await _until(lambda: remote.calls)
        gate.set()
        results = await asyncio.gather(*requests)

        assert sorted(r.source.value for r in results) == ["fallback"] * 4 + ["hybrid"]
        assert len(remote.calls) == 1
        ledger = orchestrator.budget.ledger("user-1")
        assert ledger.spent_today == pytest.approx(0.5)
        assert ledger.reserved == 0.0

    async def test_wait_for_in_flight(self, build, make_context, fake_remote, make_enhanced) -> None:
        gate = asyncio.Event()
        orchestrator = await build(fake_remote(make_enhanced(), gate=gate))

        request = asyncio.create_task(orchestrator.request_analysis(make_context()))
        await _until(lambda: orchestrator.in_flight_count == 1)
        gate.set()
        await orchestrator.wait_for_in_flight()

        assert orchestrator.in_flight_count == 0
        assert (await request).source == AnalysisSource.HYBRID

    async def test_unexpected_remote_error_becomes_ai_error(
        self, build, make_context, fake_remote
    ) -> None:
        orchestrator = await build(fake_remote(KeyError("surprise")))

        result = await orchestrator.request_analysis(make_context())

        assert result.source == AnalysisSource.AI_ERROR

    async def test_pipeline_failure_never_raises(self, build, make_context) -> None:
        orchestrator = await build(None)
        orchestrator.cache.lookup = AsyncMock(side_effect=RuntimeError("disk gone"))

        result = await orchestrator.request_analysis(make_context())

        assert result.source == AnalysisSource.AI_ERROR
        assert result.static_analysis is not None

    async def test_results_are_counted_by_source(
        self, build, make_context, fake_remote, make_enhanced
    ) -> None:
        orchestrator = await build(fake_remote(make_enhanced()))

        await orchestrator.request_analysis(make_context())
        await orchestrator.request_analysis(make_context())

        registry = orchestrator.metrics.registry
        assert registry.get_sample_value("tempo_analysis_results_total", {"source": "hybrid"}) == 1.0
        assert registry.get_sample_value("tempo_analysis_results_total", {"source": "cached"}) == 1.0
        assert registry.get_sample_value("tempo_analysis_latency_seconds_count") == 2.0
