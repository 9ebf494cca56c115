"""Energy model: morning charge and continuous drain of the user battery.

The model owns the single mutable battery state. Every mutation replaces the
frozen snapshot, so readers always see a consistent copy, and every mutation
is published on the battery event channel.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from tempo.energy.events import BatteryEvent, BatteryEventChannel, BatteryEventKind
from tempo.models import (
    BatterySnapshot,
    EnvironmentSnapshot,
    HealthSnapshot,
    HRVSample,
    HRVTrend,
    SleepSample,
    UserMode,
    clamp_level,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from tempo.config import EnergyConfig

logger = logging.getLogger(__name__)

_HRV_TREND_MULTIPLIER = {
    HRVTrend.IMPROVING: 1.1,
    HRVTrend.STABLE: 1.0,
    HRVTrend.DECLINING: 0.9,
}


def _unit(value: float) -> float:
    return max(0.0, min(1.0, value))


class EnergyModel:
    """Maintains the decaying battery state of one user.

    Attributes:
        config: Energy configuration
        events: Channel receiving every new snapshot
    """

    def __init__(
        self,
        config: EnergyConfig,
        events: BatteryEventChannel | None = None,
        clock: Callable[[], datetime] | None = None,
        initial: BatterySnapshot | None = None,
        timezone: str = "UTC",
    ) -> None:
        """Initialize energy model.

        Args:
            config: Energy configuration
            events: Event channel (a private one is created if omitted)
            clock: Source of the current time
            initial: Snapshot to resume from
            timezone: IANA timezone defining the observation day boundary
        """
        self.config = config
        self.events = events or BatteryEventChannel()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = asyncio.Lock()
        self._tz = ZoneInfo(timezone)
        self._snapshot = initial or BatterySnapshot(
            current_level=config.initial_level,
            morning_charge=config.initial_level,
            drain_rate=-config.baseline_drain,
            last_updated=self._clock(),
        )
        self._day = self.local_day(self._snapshot.last_updated) if initial else None

    def local_day(self, moment: datetime) -> date:
        """Observation day of a moment in the configured timezone."""
        return moment.astimezone(self._tz).date()

    @property
    def snapshot(self) -> BatterySnapshot:
        """Most recently completed snapshot."""
        return self._snapshot

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def sleep_score(self, sleep: SleepSample | None) -> float:
        """Sleep quality score in [0, 1].

        Weighted blend of duration against target, deep sleep share against
        target and efficiency. Each missing component scores neutral.
        """
        neutral = self.config.neutral_score
        if sleep is None:
            return neutral

        duration = (
            _unit(sleep.duration_hours / self.config.sleep_target_hours)
            if sleep.duration_hours is not None
            else neutral
        )
        ratio = sleep.deep_sleep_ratio
        deep = _unit(ratio / self.config.deep_sleep_target_ratio) if ratio is not None else neutral
        efficiency = _unit(sleep.efficiency) if sleep.efficiency is not None else neutral

        w_duration, w_deep, w_efficiency = self.config.sleep_weights
        return _unit(duration * w_duration + deep * w_deep + efficiency * w_efficiency)

    def hrv_score(self, hrv: HRVSample | None) -> float:
        """HRV score in [0, 1]: current against personal baseline, trend adjusted."""
        if hrv is None or hrv.current is None or not hrv.baseline:
            return self.config.neutral_score
        ratio = _unit(hrv.current / hrv.baseline)
        return _unit(ratio * _HRV_TREND_MULTIPLIER[hrv.trend])

    def compute_morning_charge(
        self,
        sleep: SleepSample | None,
        hrv: HRVSample | None,
        previous_level: float | None,
        mode: UserMode = UserMode.STANDARD,
    ) -> float:
        """Compute the level assigned at the start of the observation day.

        Args:
            sleep: Last night's sleep (None scores neutral)
            hrv: Current HRV reading (None scores neutral)
            previous_level: Level at the end of the previous day, if known
            mode: User mode

        Returns:
            Morning charge in [0, 100]
        """
        scaling = self.config.scaling_for(mode.value)
        sleep_component = _unit(self.sleep_score(sleep) * scaling.sleep_bonus)
        blended = (
            sleep_component * self.config.sleep_weight
            + self.hrv_score(hrv) * self.config.hrv_weight
        )
        charge = blended * 100.0

        if previous_level is not None and previous_level < self.config.recovery_penalty_threshold:
            charge *= self.config.recovery_penalty
            logger.debug(
                f"Previous day ended at {previous_level:.1f}, "
                f"applying recovery penalty {self.config.recovery_penalty}"
            )

        return clamp_level(charge)

    def environment_factor(self, environment: EnvironmentSnapshot | None) -> float:
        """Additional drain pressure from weather and air quality (>= 0)."""
        if environment is None:
            return 0.0

        factor = 0.0
        if (
            environment.temperature is not None
            and environment.humidity is not None
            and environment.temperature > 30
            and environment.humidity > 70
        ):
            factor += 2.0
        if environment.pressure_change is not None and environment.pressure_change < -3.0:
            factor += 1.5
        if environment.air_quality is not None and environment.air_quality > 100:
            factor += 1.0
        return factor

    def compute_drain_rate(
        self,
        active_energy: float | None,
        stress_level: float | None,
        environment_factor: float,
        mode: UserMode = UserMode.STANDARD,
    ) -> float:
        """Compute the drain rate in percent per hour.

        Args:
            active_energy: Active energy burned (kcal); None scores neutral
            stress_level: Stress in [0, 100]; None scores neutral
            environment_factor: Output of environment_factor()
            mode: User mode selecting the scaling factors

        Returns:
            Signed drain rate (negative while depleting)
        """
        scaling = self.config.scaling_for(mode.value)
        neutral = self.config.neutral_score

        activity = (
            active_energy / self.config.reference_active_energy
            if active_energy is not None
            else neutral
        )
        stress = _unit(stress_level / 100.0) if stress_level is not None else neutral

        drain = (
            self.config.baseline_drain
            + activity * self.config.activity_drain_weight * scaling.activity
            + stress * self.config.stress_drain_weight * scaling.stress
            + max(0.0, environment_factor) * self.config.environment_drain_weight * scaling.environment
        )
        return -drain

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> BatterySnapshot:
        """Apply drain for the time elapsed since the last update.

        Calling tick again with the same (or an earlier) time returns the
        same snapshot.

        Args:
            now: Current time (defaults to the model clock)

        Returns:
            Updated snapshot
        """
        now = now or self._clock()
        current = self._snapshot
        elapsed_hours = (now - current.last_updated).total_seconds() / 3600.0
        if elapsed_hours <= 0:
            return current

        self._snapshot = current.model_copy(
            update={
                "current_level": clamp_level(current.current_level + current.drain_rate * elapsed_hours),
                "last_updated": now,
            }
        )
        self._publish(BatteryEventKind.TICK)
        return self._snapshot

    async def tick_serialized(self, now: datetime | None = None) -> BatterySnapshot:
        """tick() under the model lock, for callers racing a refresh."""
        async with self._lock:
            return self.tick(now)

    def start_day(
        self,
        health: HealthSnapshot | None,
        now: datetime | None = None,
        mode: UserMode = UserMode.STANDARD,
    ) -> BatterySnapshot:
        """Begin a new observation day with a fresh morning charge.

        Args:
            health: Latest health snapshot (partial data allowed)
            now: Start of the observation
            mode: User mode

        Returns:
            The day's first snapshot
        """
        now = now or self._clock()
        previous_level = self._snapshot.current_level if self._day is not None else None
        charge = self.compute_morning_charge(
            health.sleep if health else None,
            health.hrv if health else None,
            previous_level,
            mode,
        )
        self._snapshot = BatterySnapshot(
            current_level=charge,
            morning_charge=charge,
            drain_rate=self._snapshot.drain_rate,
            last_updated=now,
        )
        self._day = self.local_day(now)
        logger.info(f"🔋 Observation day {self._day} started at {charge:.1f}%")
        self._publish(BatteryEventKind.DAY_STARTED)
        return self._snapshot

    def apply_drain_rate(self, drain_rate: float, now: datetime | None = None) -> BatterySnapshot:
        """Settle elapsed drain at the old rate, then switch to a new rate."""
        now = now or self._clock()
        self.tick(now)
        self._snapshot = self._snapshot.model_copy(update={"drain_rate": drain_rate})
        self._publish(BatteryEventKind.DRAIN_UPDATED)
        return self._snapshot

    async def refresh(
        self,
        health: HealthSnapshot | None,
        environment: EnvironmentSnapshot | None,
        now: datetime | None = None,
        mode: UserMode = UserMode.STANDARD,
    ) -> BatterySnapshot:
        """Recompute the battery from fresh inputs.

        Starts a new observation day when the calendar day changed, then
        recomputes the drain rate. Refreshes are serialized.

        Args:
            health: Latest health snapshot (None if unavailable)
            environment: Latest environment snapshot (None if unavailable)
            now: Current time
            mode: User mode

        Returns:
            Updated snapshot
        """
        async with self._lock:
            now = now or self._clock()
            if self._day != self.local_day(now):
                self.start_day(health, now, mode)

            drain_rate = self.compute_drain_rate(
                health.active_energy if health else None,
                health.stress_level if health else None,
                self.environment_factor(environment),
                mode,
            )
            return self.apply_drain_rate(drain_rate, now)

    def _publish(self, kind: BatteryEventKind) -> None:
        self.events.publish(BatteryEvent(kind=kind, snapshot=self._snapshot))
