"""
GITOPS RBAC - Event Bus
=======================

Hands committed audit entries and policy changes to exporters (SIEM
forwarders, log shippers, metrics).

Publishing never blocks and never fails the publisher: a full queue or a
failing exporter moves the event to a bounded dead letter buffer, and the
oldest dead letters are discarded first.
"""

import asyncio
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Callable, Coroutine, Deque, Dict, List, Optional, Set
from uuid import uuid4

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Event types published by the access-control core."""

    AUDIT_ENTRY_APPENDED = auto()
    AUDIT_ARCHIVED = auto()
    POLICY_INSTALLED = auto()
    POLICY_REJECTED = auto()


class EventPriority(Enum):
    """Queue order; policy changes overtake routine audit traffic."""

    CRITICAL = 0  # Policy changes
    NORMAL = 1    # Audit entries
    LOW = 2       # Archival


@dataclass
class Event:
    """Event message for the event bus."""

    event_type: EventType
    data: Dict[str, Any]
    source: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    priority: EventPriority = EventPriority.NORMAL
    event_id: str = field(default_factory=lambda: f"evt_{uuid4().hex[:16]}")

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type.name,
            "data": self.data,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
            "priority": self.priority.name,
            "event_id": self.event_id,
        }


EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


@dataclass
class Subscription:
    subscriber_id: str
    event_types: Set[EventType]
    handler: EventHandler


class EventBus:
    """
    Async exporter fan-out.

    Example:
        bus = EventBus()

        async def forward(event: Event):
            await siem.send(event.data)

        bus.subscribe("siem", {EventType.AUDIT_ENTRY_APPENDED}, forward)
        await bus.start()
    """

    def __init__(
        self,
        max_queue_size: int = 10000,
        history_size: int = 1000,
        dead_letter_size: int = 1000,
    ):
        self._subscriptions: Dict[str, Subscription] = {}
        self._by_type: Dict[EventType, Set[str]] = defaultdict(set)
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue(maxsize=max_queue_size)
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._dead_letter: Deque[Event] = deque(maxlen=dead_letter_size)
        self._sequence = 0
        self._running = False
        self._worker_task: Optional[asyncio.Task] = None
        self._stats = {
            "events_published": 0,
            "events_delivered": 0,
            "events_failed": 0,
            "events_dropped": 0,
        }

    # --------------------------------------------------------
    # Subscriptions
    # --------------------------------------------------------

    def subscribe(
        self,
        subscriber_id: str,
        event_types: Set[EventType],
        handler: EventHandler,
    ) -> None:
        """Register ``handler`` for ``event_types``, replacing any earlier one for this id."""
        self.unsubscribe(subscriber_id)
        self._subscriptions[subscriber_id] = Subscription(subscriber_id, set(event_types), handler)
        for event_type in event_types:
            self._by_type[event_type].add(subscriber_id)
        logger.debug(f"Subscription added: {subscriber_id} -> {[e.name for e in event_types]}")

    def unsubscribe(self, subscriber_id: str) -> bool:
        subscription = self._subscriptions.pop(subscriber_id, None)
        if subscription is None:
            return False
        for event_type in subscription.event_types:
            self._by_type[event_type].discard(subscriber_id)
        logger.debug(f"Subscription removed: {subscriber_id}")
        return True

    # --------------------------------------------------------
    # Publishing
    # --------------------------------------------------------

    async def publish(self, event: Event) -> None:
        """Queue an event for delivery. Never blocks."""
        self._history.append(event)
        self._stats["events_published"] += 1
        self._sequence += 1
        try:
            self._queue.put_nowait((event.priority.value, self._sequence, event))
        except asyncio.QueueFull:
            logger.error(f"Event queue full, dropping {event.event_type.name} {event.event_id}")
            self._dead_letter.append(event)
            self._stats["events_dropped"] += 1

    async def drain(self) -> int:
        """
        Deliver everything currently queued.

        Returns:
            Number of events taken off the queue
        """
        drained = 0
        while not self._queue.empty():
            _, _, event = self._queue.get_nowait()
            await self._deliver(event)
            drained += 1
        return drained

    async def _deliver(self, event: Event) -> None:
        for subscriber_id in sorted(self._by_type.get(event.event_type, ())):
            subscription = self._subscriptions.get(subscriber_id)
            if subscription is None:
                continue
            try:
                await subscription.handler(event)
                self._stats["events_delivered"] += 1
            except Exception as e:
                logger.error(f"Exporter {subscriber_id} failed on {event.event_id}: {e}")
                self._dead_letter.append(event)
                self._stats["events_failed"] += 1

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._worker_task = asyncio.create_task(self._worker())
        logger.info("EventBus started")

    async def stop(self) -> None:
        """Stop the worker, then deliver whatever is still queued."""
        if not self._running:
            return
        self._running = False
        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None
        await self.drain()
        logger.info("EventBus stopped")

    async def _worker(self) -> None:
        while self._running:
            _, _, event = await self._queue.get()
            await self._deliver(event)

    @property
    def is_running(self) -> bool:
        return self._running

    # --------------------------------------------------------
    # Introspection
    # --------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "subscribers": len(self._subscriptions),
            "queue_size": self._queue.qsize(),
            "dead_letter_count": len(self._dead_letter),
            "history_size": len(self._history),
        }

    def get_history(self, event_type: Optional[EventType] = None, limit: int = 100) -> List[Event]:
        events = [e for e in self._history if event_type is None or e.event_type == event_type]
        return events[-limit:]

    def clear_dead_letter(self) -> List[Event]:
        """Hand the dead letters to the caller and forget them."""
        events = list(self._dead_letter)
        self._dead_letter.clear()
        return events


__all__ = [
    "EventType",
    "EventPriority",
    "Event",
    "EventHandler",
    "Subscription",
    "EventBus",
]
