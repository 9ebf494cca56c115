"""Per-user daily budget for remote analysis calls.

Once a user's spend reaches the daily cap, remote calls are rejected until the
next day boundary. Rejection is an admission decision, not an error: callers
route straight to the fallback analysis.

Admission reserves the estimated cost under the user's lock, so concurrent
calls cannot all be admitted against the same headroom. A reservation is
settled to the actual cost when the call succeeds and released otherwise.

Ledgers reset lazily on first access after the day boundary. A ledger that has
not been reset yet only makes the gate more conservative.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

if TYPE_CHECKING:
    from collections.abc import Callable

    from tempo.config import BudgetConfig
    from tempo.models import AnalysisContext
    from tempo.observability.metrics import TempoMetrics

logger = logging.getLogger(__name__)


@dataclass
class BudgetLedger:
    """Spend of one user on one day.

    Attributes:
        user_id: User identifier
        daily_cap_units: Daily cap
        day: Day the spend belongs to
        spent_today: Units spent (non-decreasing until reset)
        reserved: Units held by admitted calls that have not completed yet
        request_count: Remote calls recorded today
    """

    user_id: str
    daily_cap_units: float
    day: date
    spent_today: float = 0.0
    reserved: float = 0.0
    request_count: int = 0

    @property
    def remaining(self) -> float:
        return max(0.0, self.daily_cap_units - self.spent_today - self.reserved)

    def fits(self, cost: float) -> bool:
        return self.spent_today + self.reserved + cost <= self.daily_cap_units


@dataclass(frozen=True)
class BudgetReservation:
    """Units held for one admitted remote call."""

    user_id: str
    amount: float
    day: date


class BudgetGate:
    """Admission control for remote analysis spend.

    Example:
        gate = BudgetGate(BudgetConfig(daily_cap_units=10))

        reservation = await gate.reserve("user-123", gate.estimate_cost(context))
        if reservation:
            try:
                enhanced = await remote.analyze(payload)
            except RemoteAnalysisError:
                await gate.release(reservation)
            else:
                await gate.settle(reservation, gate.cost_for_tokens(enhanced.tokens_used))
    """

    def __init__(
        self,
        config: BudgetConfig,
        metrics: TempoMetrics | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize budget gate.

        Args:
            config: Budget configuration
            metrics: Optional Prometheus metrics
            clock: Source of the current time
        """
        self.config = config
        self.metrics = metrics
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tz = ZoneInfo(config.timezone)
        self._ledgers: dict[str, BudgetLedger] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def today(self) -> date:
        """Current day in the configured timezone."""
        return self._clock().astimezone(self._tz).date()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def _ledger_for(self, user_id: str) -> BudgetLedger:
        ledger = self._ledgers.get(user_id)
        if ledger is None:
            ledger = self._ledgers[user_id] = BudgetLedger(
                user_id=user_id,
                daily_cap_units=self.config.daily_cap_units,
                day=self.today(),
            )
        return ledger

    def _reset_if_new_day(self, ledger: BudgetLedger) -> bool:
        today = self.today()
        if ledger.day >= today:
            return False
        logger.info(
            f"Budget reset for {ledger.user_id}: {ledger.spent_today:.2f} units "
            f"spent on {ledger.day}"
        )
        ledger.day = today
        ledger.spent_today = 0.0
        ledger.reserved = 0.0
        ledger.request_count = 0
        return True

    async def reset_if_new_day(self, user_id: str) -> bool:
        """Reset the user's ledger if the day boundary has passed.

        Returns:
            True if the ledger was reset
        """
        async with self._lock_for(user_id):
            return self._reset_if_new_day(self._ledger_for(user_id))

    async def can_afford(self, user_id: str, estimated_cost: float) -> bool:
        """Check whether a remote call of the given cost fits today's budget.

        Nothing is held; use reserve() to admit a call.

        Args:
            user_id: User identifier
            estimated_cost: Estimated units of the call

        Returns:
            True if spent + reserved + estimated_cost stays within the daily cap
        """
        async with self._lock_for(user_id):
            ledger = self._ledger_for(user_id)
            self._reset_if_new_day(ledger)
            return ledger.fits(estimated_cost)

    async def reserve(self, user_id: str, estimated_cost: float) -> BudgetReservation | None:
        """Admit a remote call and hold its estimated cost.

        Args:
            user_id: User identifier
            estimated_cost: Estimated units of the call

        Returns:
            Reservation to settle or release, or None if the call does not fit
        """
        async with self._lock_for(user_id):
            ledger = self._ledger_for(user_id)
            self._reset_if_new_day(ledger)
            admitted = ledger.fits(estimated_cost)
            if admitted:
                ledger.reserved += estimated_cost

        if self.metrics:
            self.metrics.record_budget_decision(admitted)
        if not admitted:
            logger.warning(
                f"Budget exhausted for {user_id}: {ledger.spent_today:.2f}/"
                f"{ledger.daily_cap_units:.2f} units spent, {ledger.reserved:.2f} reserved, "
                f"{estimated_cost:.2f} required"
            )
            return None
        return BudgetReservation(user_id=user_id, amount=estimated_cost, day=ledger.day)

    async def release(self, reservation: BudgetReservation) -> None:
        """Give back the units of a call that did not complete."""
        async with self._lock_for(reservation.user_id):
            self._release(self._ledger_for(reservation.user_id), reservation)

    async def settle(self, reservation: BudgetReservation, actual_cost: float) -> BudgetLedger:
        """Replace a reservation with the actual cost of the completed call.

        Raises:
            ValueError: If the cost is negative
        """
        if actual_cost < 0:
            raise ValueError(f"Cost cannot be negative: {actual_cost}")

        async with self._lock_for(reservation.user_id):
            ledger = self._ledger_for(reservation.user_id)
            self._release(ledger, reservation)
            self._charge(ledger, actual_cost)

        if self.metrics:
            self.metrics.set_budget_spent(ledger.user_id, ledger.spent_today)
        return ledger

    async def record(self, user_id: str, actual_cost: float) -> BudgetLedger:
        """Record the cost of a completed remote call made without a reservation.

        Args:
            user_id: User identifier
            actual_cost: Units consumed

        Returns:
            Updated ledger

        Raises:
            ValueError: If the cost is negative
        """
        if actual_cost < 0:
            raise ValueError(f"Cost cannot be negative: {actual_cost}")

        async with self._lock_for(user_id):
            ledger = self._ledger_for(user_id)
            self._charge(ledger, actual_cost)

        if self.metrics:
            self.metrics.set_budget_spent(user_id, ledger.spent_today)
        return ledger

    def _release(self, ledger: BudgetLedger, reservation: BudgetReservation) -> None:
        self._reset_if_new_day(ledger)
        # Reservations taken before a reset were dropped with the old day
        if reservation.day == ledger.day:
            ledger.reserved = max(0.0, ledger.reserved - reservation.amount)

    def _charge(self, ledger: BudgetLedger, cost: float) -> None:
        self._reset_if_new_day(ledger)
        ledger.spent_today += cost
        ledger.request_count += 1

    def estimate_cost(self, context: AnalysisContext) -> float:
        """Estimated units of a remote call for a context."""
        return self.config.base_request_cost + self.config.per_tag_cost * len(context.tags)

    def cost_for_tokens(self, tokens: int) -> float:
        """Convert reported token usage into budget units."""
        return tokens / 1000.0 * self.config.units_per_1k_tokens

    def ledger(self, user_id: str) -> BudgetLedger:
        """Current ledger of a user (created on first access)."""
        return self._ledger_for(user_id)

    def daily_report(self) -> dict[str, Any]:
        """Aggregate spend of today's ledgers.

        Returns:
            Dict with total spend, average per user, request count, active
            users and utilisation of the combined cap
        """
        today = self.today()
        ledgers = [ledger for ledger in self._ledgers.values() if ledger.day == today]
        total = sum(ledger.spent_today for ledger in ledgers)
        requests = sum(ledger.request_count for ledger in ledgers)
        capacity = sum(ledger.daily_cap_units for ledger in ledgers)

        return {
            "day": today.isoformat(),
            "total_spent": round(total, 4),
            "average_per_user": round(total / len(ledgers), 4) if ledgers else 0.0,
            "request_count": requests,
            "active_users": len(ledgers),
            "utilisation": round(total / capacity, 4) if capacity else 0.0,
        }
