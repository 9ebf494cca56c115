"""Hybrid analysis orchestrator.

Decides, per request, between the cache, the budget-gated remote enhancement
and the local fallback, and tags every result with its provenance:

    fingerprint -> delta invalidation -> static analysis (always computed first)
                -> cache, static part refreshed         (cached)
                -> remote disabled                      (static_only)
                -> budget rejected                      (fallback)
                -> guarded remote call ok               (hybrid)
                -> circuit open / remote failure        (ai_error)

Concurrent requests sharing a fingerprint share one remote call. Budget is
reserved before the call and settled or released after it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from tempo.errors import CircuitOpenError, RemoteAnalysisError
from tempo.models import AnalysisResult, AnalysisSource
from tempo.observability.tracing import trace_operation

if TYPE_CHECKING:
    from collections.abc import Callable

    from tempo.analysis.fallback import FallbackGenerator
    from tempo.budget import BudgetGate
    from tempo.cache import ContextFingerprint, MultiTierCache
    from tempo.config import TempoConfig
    from tempo.models import AnalysisContext, StaticAnalysis
    from tempo.observability.metrics import TempoMetrics
    from tempo.providers import RemoteAnalysisService
    from tempo.resilience import ReliabilityGuard

logger = logging.getLogger(__name__)


class AnalysisOrchestrator:
    """Coordinates cache, budget, reliability guard and fallback."""

    def __init__(
        self,
        config: TempoConfig,
        cache: MultiTierCache,
        budget: BudgetGate,
        guard: ReliabilityGuard,
        fallback: FallbackGenerator,
        remote: RemoteAnalysisService | None = None,
        metrics: TempoMetrics | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            config: Application configuration
            cache: Multi-tier analysis cache
            budget: Budget gate for remote calls
            guard: Reliability guard of the remote endpoint
            fallback: Fallback generator
            remote: Remote analysis service (None disables enhancement)
            metrics: Optional Prometheus metrics
            clock: Source of the current time
        """
        self.config = config
        self.cache = cache
        self.budget = budget
        self.guard = guard
        self.fallback = fallback
        self.remote = remote
        self.metrics = metrics
        self._clock = clock or (lambda: datetime.now(UTC))
        self._validity = timedelta(hours=config.result_valid_hours)
        self._in_flight: dict[str, asyncio.Task[AnalysisResult]] = {}
        self._last_context: dict[str, AnalysisContext] = {}

    @property
    def remote_enabled(self) -> bool:
        return self.config.remote.enabled and self.remote is not None

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def request_analysis(self, context: AnalysisContext) -> AnalysisResult:
        """Produce an analysis for a context. Never raises.

        Args:
            context: Analysis context with an immutable battery snapshot

        Returns:
            Result tagged with the path that produced it
        """
        attributes = {"user_id": context.user_id, "battery_state": context.battery.state.value}
        with trace_operation("tempo.request_analysis", attributes) as span:
            if self.metrics:
                with self.metrics.observe_analysis_latency():
                    result = await self._request_or_fallback(context)
                self.metrics.record_analysis_result(result.source.value)
            else:
                result = await self._request_or_fallback(context)
            span.set_attribute("source", result.source.value)
        return result

    async def wait_for_in_flight(self) -> None:
        """Wait until every in-flight remote enhancement has finished."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)

    async def _request_or_fallback(self, context: AnalysisContext) -> AnalysisResult:
        try:
            return await self._request(context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Analysis pipeline failed for {context.user_id}: {e}", exc_info=True)
            return self.fallback.generate(context.battery, context, AnalysisSource.AI_ERROR)

    async def _request(self, context: AnalysisContext) -> AnalysisResult:
        fingerprint = self.cache.fingerprint(context)

        previous = self._last_context.get(context.user_id)
        self._last_context[context.user_id] = context
        if previous is not None:
            await self.cache.invalidate_on_delta(previous, context)

        static = self.fallback.static_analysis(context.battery, context)

        remote = self.remote
        enabled = remote is not None and self.config.remote.enabled
        # An open circuit answers from the exact tiers only, then short-circuits
        short_circuit = enabled and self.guard.is_rejecting

        hit = await self.cache.lookup(fingerprint, similar=not short_circuit)
        if hit is not None:
            logger.info(
                f"Serving cached {hit.result.source.value} analysis for {context.user_id} "
                f"({'exact' if hit.exact else 'adapted'}, {hit.tier.value})"
            )
            return hit.result.as_cached(static)

        if not enabled:
            result = self.fallback.generate(
                context.battery, context, AnalysisSource.STATIC_ONLY, static
            )
            await self._store(fingerprint, result)
            return result

        task = self._in_flight.get(fingerprint.digest)
        if task is None:
            task = asyncio.create_task(self._enhance(fingerprint, context, static, remote))
            self._in_flight[fingerprint.digest] = task
            task.add_done_callback(lambda done, key=fingerprint.digest: self._forget(key, done))
        else:
            logger.debug(f"Joining in-flight analysis {fingerprint.short}")

        # Shielded so a cancelled waiter never cancels the shared call
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task[AnalysisResult]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _enhance(
        self,
        fingerprint: ContextFingerprint,
        context: AnalysisContext,
        static: StaticAnalysis,
        remote: RemoteAnalysisService,
    ) -> AnalysisResult:
        user_id = context.user_id
        estimated = self.budget.estimate_cost(context)

        reservation = await self.budget.reserve(user_id, estimated)
        if reservation is None:
            result = self.fallback.generate(context.battery, context, AnalysisSource.FALLBACK, static)
            await self._store(fingerprint, result)
            return result

        payload = context.to_payload()

        try:
            enhanced = await self.guard.call(lambda: remote.analyze(payload))
        except asyncio.CancelledError:
            await self.budget.release(reservation)
            raise
        except CircuitOpenError as e:
            await self.budget.release(reservation)
            logger.warning(f"Skipping remote analysis for {user_id}: {e}")
            # Not cached: the next request after the cool-down must reach the trial
            return self.fallback.generate(context.battery, context, AnalysisSource.AI_ERROR, static)
        except RemoteAnalysisError as e:
            await self.budget.release(reservation)
            logger.warning(f"Remote analysis failed for {user_id}: {e.__class__.__name__}: {e}")
            result = self.fallback.generate(context.battery, context, AnalysisSource.AI_ERROR, static)
        except Exception as e:
            await self.budget.release(reservation)
            logger.error(f"Unexpected remote analysis error for {user_id}: {e}", exc_info=True)
            result = self.fallback.generate(context.battery, context, AnalysisSource.AI_ERROR, static)
        else:
            cost = (
                self.budget.cost_for_tokens(enhanced.tokens_used)
                if enhanced.tokens_used is not None
                else estimated
            )
            await self.budget.settle(reservation, cost)

            now = self._clock()
            result = AnalysisResult(
                source=AnalysisSource.HYBRID,
                static_analysis=static,
                enhanced_analysis=enhanced,
                generated_at=now,
                valid_until=now + self._validity,
            )
            logger.info(f"✅ Hybrid analysis for {user_id} ({cost:.2f} units)")

        await self._store(fingerprint, result)
        return result

    async def _store(self, fingerprint: ContextFingerprint, result: AnalysisResult) -> None:
        ttl = (
            self.config.cache.ttl_seconds
            if result.source == AnalysisSource.HYBRID
            else self.config.cache.degraded_ttl_seconds
        )
        try:
            await self.cache.put(fingerprint, result, ttl)
        except Exception as e:
            logger.error(f"Failed to cache analysis {fingerprint.short}: {e}", exc_info=True)
