"""Tempo application: component wiring and lifecycle."""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from tempo.analysis import AnalysisOrchestrator, FallbackGenerator
from tempo.budget import BudgetGate
from tempo.cache import MultiTierCache
from tempo.config import TempoConfig
from tempo.energy import BatteryEventChannel, EnergyModel, EnergyTicker
from tempo.models import AnalysisContext, UserMode
from tempo.observability.metrics import TempoMetrics
from tempo.remote import HttpRemoteAnalysisService
from tempo.resilience import CircuitBreakerRegistry, CircuitState, ReliabilityGuard, RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from tempo.models import (
        AnalysisResult,
        BatterySnapshot,
        EnvironmentSnapshot,
        FocusTag,
        HealthSnapshot,
    )
    from tempo.providers import (
        EnvironmentSnapshotProvider,
        HealthSnapshotProvider,
        RemoteAnalysisService,
    )

logger = logging.getLogger(__name__)


class TempoApplication:
    """Owns every component and its lifetime.

    Attributes:
        config: Application configuration
        metrics: Prometheus metrics
        events: Battery event channel
        energy: Energy model
        ticker: Periodic battery refresh
        cache: Multi-tier analysis cache
        budget: Budget gate
        breakers: Circuit breaker registry (one per endpoint)
        guard: Reliability guard of the remote endpoint
        fallback: Fallback generator
        orchestrator: Analysis orchestrator
        shutdown_event: Event for graceful shutdown
    """

    def __init__(
        self,
        config: TempoConfig | None = None,
        health_provider: HealthSnapshotProvider | None = None,
        environment_provider: EnvironmentSnapshotProvider | None = None,
        remote: RemoteAnalysisService | None = None,
        mode: UserMode = UserMode.STANDARD,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
        epoch: Callable[[], float] = time.time,
        retry: RetryPolicy | None = None,
        metrics: TempoMetrics | None = None,
        initial_battery: BatterySnapshot | None = None,
    ) -> None:
        """Wire the components.

        Args:
            config: Application configuration (defaults are used if omitted)
            health_provider: Biometric source for the ticker
            environment_provider: Weather source for the ticker
            remote: Remote analysis service (an HTTP client for the configured
                endpoint is created when omitted and remote analysis is enabled)
            mode: User mode
            clock: Wall clock
            monotonic: Clock of the circuit breaker cool-down
            epoch: Clock of the cache TTLs
            retry: Retry policy (built from the config if omitted)
            metrics: Prometheus metrics (a private registry is created if omitted)
            initial_battery: Battery snapshot to resume from
        """
        self.config = config or TempoConfig()
        self.mode = mode
        self.shutdown_event = asyncio.Event()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._owns_remote = False

        self.metrics = metrics or TempoMetrics()
        self.events = BatteryEventChannel()
        self.energy = EnergyModel(
            self.config.energy,
            events=self.events,
            clock=self._clock,
            initial=initial_battery,
            timezone=self.config.budget.timezone,
        )
        self.ticker = EnergyTicker(
            self.energy,
            health_provider=health_provider,
            environment_provider=environment_provider,
            location=self.config.location,
            mode=mode,
        )
        self.ticker.add_hook(self._publish_battery_metrics)

        self.cache = MultiTierCache(self.config.cache, metrics=self.metrics, clock=epoch)
        self.ticker.add_hook(self._purge_cache)

        self.budget = BudgetGate(self.config.budget, metrics=self.metrics, clock=self._clock)

        self.breakers = CircuitBreakerRegistry(
            self.config.circuit, clock=monotonic, on_state_change=self._publish_circuit_state
        )
        self.guard = ReliabilityGuard(
            self.breakers.get_or_create_breaker(self.config.remote.endpoint_name),
            retry or RetryPolicy(self.config.retry),
            metrics=self.metrics,
        )

        if remote is None and self.config.remote.enabled:
            api_key = self.config.remote.api_key
            remote = HttpRemoteAnalysisService(
                self.config.remote.endpoint,
                api_key=api_key.get_secret_value() if api_key else None,
            )
            self._owns_remote = True
        self.remote = remote

        self.fallback = FallbackGenerator(
            clock=self._clock, validity=timedelta(hours=self.config.result_valid_hours)
        )
        self.orchestrator = AnalysisOrchestrator(
            self.config,
            cache=self.cache,
            budget=self.budget,
            guard=self.guard,
            fallback=self.fallback,
            remote=self.remote,
            metrics=self.metrics,
            clock=self._clock,
        )

    async def initialize(self) -> None:
        """Open storage. Must be awaited before the first analysis request."""
        await self.cache.initialize()

    async def start(self) -> None:
        """Initialize storage and start the energy ticker."""
        logger.info("Starting Tempo application")
        await self.initialize()
        await self.ticker.start()
        logger.info("✅ Tempo application started successfully")
        logger.info(f"   Mode: {self.mode.value}")
        logger.info(f"   Remote analysis: {'enabled' if self.remote else 'disabled'}")

    async def run(self) -> None:
        """Start and block until SIGINT/SIGTERM, then stop."""
        await self.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._handle_shutdown, sig)

        try:
            await self.shutdown_event.wait()
        except asyncio.CancelledError:
            logger.info("Application cancelled")
        finally:
            await self.stop()

    def _handle_shutdown(self, signum: int) -> None:
        signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        logger.info(f"Received {signal_name} signal, initiating graceful shutdown")
        self.shutdown_event.set()

    async def stop(self) -> None:
        """Stop the ticker, let in-flight analyses finish and close storage."""
        await self.ticker.stop()
        await self.orchestrator.wait_for_in_flight()
        await self.cache.close()
        if self._owns_remote and isinstance(self.remote, HttpRemoteAnalysisService):
            await self.remote.close()
        logger.info("✅ Tempo application shutdown complete")

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------

    def get_current_battery(self) -> BatterySnapshot:
        """Most recently completed battery snapshot."""
        return self.energy.snapshot

    async def refresh_battery(self) -> BatterySnapshot:
        """Run one ticker cycle immediately."""
        return await self.ticker.run_once()

    async def start_day(self, health: HealthSnapshot | None) -> BatterySnapshot:
        """Begin a new observation day from the given health snapshot."""
        snapshot = self.energy.start_day(health, self._clock(), self.mode)
        self.metrics.update_battery(snapshot.current_level, snapshot.drain_rate)
        return snapshot

    def build_context(
        self,
        user_id: str,
        tags: Iterable[FocusTag] = (),
        environment: EnvironmentSnapshot | None = None,
        health: HealthSnapshot | None = None,
        mode: UserMode | None = None,
    ) -> AnalysisContext:
        """Build an analysis context around the current battery snapshot.

        Drain is settled up to now first, so the context carries an up to date
        immutable snapshot.
        """
        now = self._clock()
        return AnalysisContext.build(
            user_id=user_id,
            battery=self.energy.tick(now),
            tags=frozenset(tags),
            environment=environment,
            health=health,
            mode=mode or self.mode,
            now=now,
        )

    async def request_analysis(self, context: AnalysisContext) -> AnalysisResult:
        """Produce an analysis for a context. Never raises."""
        return await self.orchestrator.request_analysis(context)

    def status(self) -> dict[str, Any]:
        """Snapshot of component state for diagnostics."""
        battery = self.energy.snapshot
        return {
            "battery": {
                "level": round(battery.current_level, 1),
                "state": battery.state.value,
                "drain_rate": round(battery.drain_rate, 2),
                "last_updated": battery.last_updated.isoformat(),
            },
            "ticker_running": self.ticker.running,
            "remote_enabled": self.orchestrator.remote_enabled,
            "in_flight": self.orchestrator.in_flight_count,
            "circuits": self.breakers.get_all_stats(),
            "budget": self.budget.daily_report(),
        }

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    async def _publish_battery_metrics(self, snapshot: BatterySnapshot) -> None:
        self.metrics.update_battery(snapshot.current_level, snapshot.drain_rate)

    async def _purge_cache(self, _snapshot: BatterySnapshot) -> None:
        removed = await self.cache.purge_expired()
        if removed:
            logger.debug(f"Purged {removed} expired cache entries")

    def _publish_circuit_state(self, endpoint: str, state: CircuitState) -> None:
        self.metrics.set_circuit_state(endpoint, state.value)
