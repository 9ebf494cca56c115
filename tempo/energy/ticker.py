"""Periodic battery refresh worker.

Runs independently of analysis requests: every interval it pulls fresh
snapshots from the providers (when configured), refreshes the energy model
and then runs the registered after-tick hooks.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from tempo.errors import ProviderError
from tempo.models import BatterySnapshot, EnvironmentSnapshot, HealthSnapshot, UserMode

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tempo.energy.model import EnergyModel
    from tempo.providers import EnvironmentSnapshotProvider, HealthSnapshotProvider

logger = logging.getLogger(__name__)


class EnergyTicker:
    """Timer-driven refresh of an EnergyModel."""

    def __init__(
        self,
        model: EnergyModel,
        health_provider: HealthSnapshotProvider | None = None,
        environment_provider: EnvironmentSnapshotProvider | None = None,
        location: str | None = None,
        interval_seconds: float | None = None,
        mode: UserMode = UserMode.STANDARD,
    ) -> None:
        """Initialize the ticker.

        Args:
            model: Energy model to refresh
            health_provider: Optional biometric source
            environment_provider: Optional weather source
            location: Location passed to the environment provider
            interval_seconds: Tick interval (defaults to the model config)
            mode: User mode used for drain computation
        """
        self.model = model
        self.health_provider = health_provider
        self.environment_provider = environment_provider
        self.location = location
        self.interval_seconds = interval_seconds or model.config.tick_interval_seconds
        self.mode = mode
        self._hooks: list[Callable[[BatterySnapshot], Awaitable[object]]] = []
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    def add_hook(self, hook: Callable[[BatterySnapshot], Awaitable[object]]) -> None:
        """Register a coroutine function called with each new snapshot."""
        self._hooks.append(hook)

    async def start(self) -> None:
        """Start the background tick loop."""
        if self._running:
            logger.warning("Energy ticker already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Started energy ticker (interval={self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the background tick loop."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        logger.info("Stopped energy ticker")

    async def run_once(self) -> BatterySnapshot:
        """Perform a single refresh cycle.

        Returns:
            Snapshot after the cycle
        """
        if self.health_provider is None and self.environment_provider is None:
            snapshot = await self.model.tick_serialized()
        else:
            health = await self._fetch_health()
            environment = await self._fetch_environment()
            snapshot = await self.model.refresh(health, environment, mode=self.mode)

        for hook in self._hooks:
            try:
                await hook(snapshot)
            except Exception as e:
                logger.error(f"After-tick hook failed: {e}", exc_info=True)

        return snapshot

    async def _fetch_health(self) -> HealthSnapshot | None:
        if self.health_provider is None:
            return None
        try:
            return await self.health_provider.latest()
        except ProviderError as e:
            logger.warning(f"Health provider unavailable, using neutral inputs: {e}")
            return None

    async def _fetch_environment(self) -> EnvironmentSnapshot | None:
        if self.environment_provider is None:
            return None
        try:
            return await self.environment_provider.current(self.location)
        except ProviderError as e:
            logger.warning(f"Environment provider unavailable, ignoring environment: {e}")
            return None

    async def _loop(self) -> None:
        try:
            while self._running:
                try:
                    snapshot = await self.run_once()
                    logger.debug(
                        f"Battery tick: {snapshot.current_level:.1f}% "
                        f"({snapshot.state.value}, {snapshot.drain_rate:.2f}%/h)"
                    )
                    await asyncio.sleep(self.interval_seconds)
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error(f"Error in energy tick loop: {e}", exc_info=True)
                    await asyncio.sleep(self.interval_seconds)
        finally:
            logger.info("Energy tick loop terminated")
