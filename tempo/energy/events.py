"""Battery update notification channel.

Listeners subscribe to a bounded asyncio queue and receive every snapshot the
energy model publishes, without the model knowing who listens.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from tempo.models import BatterySnapshot

logger = logging.getLogger(__name__)


class BatteryEventKind(str, Enum):
    """Why a snapshot was published."""

    DAY_STARTED = "day_started"
    TICK = "tick"
    DRAIN_UPDATED = "drain_updated"


@dataclass(frozen=True)
class BatteryEvent:
    """A published battery snapshot."""

    kind: BatteryEventKind
    snapshot: BatterySnapshot


class BatteryEventChannel:
    """Fan-out channel for battery events.

    Slow listeners never block the publisher: when a listener's queue is full
    its oldest event is dropped.
    """

    def __init__(self, max_queue_size: int = 32) -> None:
        self.max_queue_size = max_queue_size
        self._subscribers: list[asyncio.Queue[BatteryEvent]] = []

    def subscribe(self) -> asyncio.Queue[BatteryEvent]:
        """Register a listener.

        Returns:
            Queue receiving every subsequent event
        """
        queue: asyncio.Queue[BatteryEvent] = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[BatteryEvent]) -> None:
        """Remove a listener (no-op if unknown)."""
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: BatteryEvent) -> None:
        """Deliver an event to every listener."""
        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
                logger.debug("Battery listener lagging, dropped oldest event")
            queue.put_nowait(event)
