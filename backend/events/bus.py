"""Async event bus for planning progress notifications.

This module provides an EventBus class that fans progress events out to any
number of subscribers per planning run. Publishing is fire-and-forget: a
stalled or broken subscriber is logged and skipped, it never raises into the
engine.

The event bus supports:
- Multiple subscribers per run
- Async event delivery via asyncio.Queue
- Buffering of events published before the first subscriber connects
- Run lifecycle management (close run terminates all subscribers)
"""

import asyncio
import threading
from collections import defaultdict, deque

import structlog

from events.types import EventType, PlanEvent

logger = structlog.get_logger()


class EventBus:
    """Async pub/sub event bus for plan events.

    Event Buffering:
        Events published before any subscriber connects are buffered, up to
        MAX_BUFFER_PER_RUN per run (oldest dropped first).
        When the first subscriber connects, all buffered events are
        delivered immediately, so a consumer attached after ``create_plan``
        still sees ``PLAN_CREATED``.

    Thread Safety:
        The subscription registry is guarded by a threading.Lock so that
        subscribers can be registered from other threads.

    Usage:
        >>> bus = EventBus()
        >>> queue = bus.subscribe("run_123")
        >>> await bus.publish(PlanEvent(
        ...     type=EventType.TASK_STARTED,
        ...     run_id="run_123",
        ...     message="Executing task: Draft outline",
        ... ))
        >>> event = await queue.get()
        >>> bus.unsubscribe("run_123", queue)
        >>> await bus.close_run("run_123")

    Attributes:
        _subscribers: Dict mapping run_id to list of subscriber queues
        _event_buffer: Dict mapping run_id to a bounded deque of buffered events
        _event_history: Dict mapping run_id to every event published
        _lock: Threading lock for subscriber management
    """

    # Maximum number of events retained per run for replay.
    MAX_HISTORY_PER_RUN = 5000
    # Maximum number of events held for a run with no subscriber yet.
    MAX_BUFFER_PER_RUN = 5000
    DELIVERY_TIMEOUT_SECONDS = 5.0

    def __init__(self) -> None:
        """Initialize an empty event bus."""
        self._subscribers: dict[str, list[asyncio.Queue[PlanEvent]]] = defaultdict(list)
        self._event_buffer: dict[str, deque[PlanEvent]] = defaultdict(
            lambda: deque(maxlen=self.MAX_BUFFER_PER_RUN)
        )
        self._event_history: dict[str, list[PlanEvent]] = defaultdict(list)
        self._lock = threading.Lock()
        logger.debug("event_bus_initialized")

    def subscribe(self, run_id: str) -> asyncio.Queue[PlanEvent]:
        """Subscribe to events for a planning run.

        Buffered events for the run are delivered to the new queue
        immediately.

        Args:
            run_id: The run to subscribe to

        Returns:
            An asyncio.Queue that will receive PlanEvent objects
        """
        queue: asyncio.Queue[PlanEvent] = asyncio.Queue()

        with self._lock:
            self._subscribers[run_id].append(queue)
            subscriber_count = len(self._subscribers[run_id])
            buffered_events = list(self._event_buffer.pop(run_id, ()))

        for event in buffered_events:
            queue.put_nowait(event)

        logger.debug(
            "subscriber_added",
            run_id=run_id,
            subscriber_count=subscriber_count,
            buffered_events_delivered=len(buffered_events),
        )
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue[PlanEvent]) -> None:
        """Remove a queue from a run's subscribers. Unknown queues are ignored."""
        with self._lock:
            queues = self._subscribers.get(run_id)
            if not queues or queue not in queues:
                logger.warning("unsubscribe_queue_not_found", run_id=run_id)
                return
            queues.remove(queue)
            if not queues:
                del self._subscribers[run_id]
            remaining = len(queues)

        logger.debug("subscriber_removed", run_id=run_id, subscriber_count=remaining)

    async def publish(self, event: PlanEvent) -> None:
        """Publish an event to all subscribers for its run.

        If there are no subscribers the event is buffered until one
        connects. Delivery failures are logged and never raised.

        Args:
            event: The PlanEvent to publish
        """
        with self._lock:
            if event.type != EventType.RUN_CLOSED:
                history = self._event_history[event.run_id]
                history.append(event)
                if len(history) > self.MAX_HISTORY_PER_RUN:
                    self._event_history[event.run_id] = history[-self.MAX_HISTORY_PER_RUN:]

            subscribers = list(self._subscribers.get(event.run_id, []))

            if not subscribers:
                self._event_buffer[event.run_id].append(event)
                return

        for queue in subscribers:
            try:
                await asyncio.wait_for(
                    queue.put(event), timeout=self.DELIVERY_TIMEOUT_SECONDS
                )
            except TimeoutError:
                logger.warning(
                    "event_delivery_timeout",
                    run_id=event.run_id,
                    event_type=event.type.value,
                )
            except Exception:
                logger.warning(
                    "event_delivery_failed",
                    run_id=event.run_id,
                    event_type=event.type.value,
                )

        logger.debug(
            "event_published",
            run_id=event.run_id,
            event_type=event.type.value,
            subscriber_count=len(subscribers),
        )

    def get_event_history(self, run_id: str) -> list[PlanEvent]:
        """Return all stored events for a run in chronological order."""
        with self._lock:
            return list(self._event_history.get(run_id, []))

    async def close_run(self, run_id: str) -> None:
        """Close a run and signal all subscribers.

        Each subscriber queue receives a RUN_CLOSED sentinel so read loops
        can exit. Subscribers and buffered events are dropped; history is kept.

        Args:
            run_id: The run to close
        """
        with self._lock:
            queues_to_signal = self._subscribers.pop(run_id, [])
            buffer_count = len(self._event_buffer.pop(run_id, ()))

        for queue in queues_to_signal:
            queue.put_nowait(
                PlanEvent(type=EventType.RUN_CLOSED, run_id=run_id, message="Run closed")
            )

        logger.debug(
            "run_closed",
            run_id=run_id,
            subscribers_removed=len(queues_to_signal),
            buffered_events_cleared=buffer_count,
        )

    def get_subscriber_count(self, run_id: str) -> int:
        """Get the number of subscribers for a run."""
        with self._lock:
            return len(self._subscribers.get(run_id, []))

    def clear_event_history(self, run_id: str) -> None:
        """Forget the stored history for a run."""
        with self._lock:
            self._event_history.pop(run_id, None)


# Global event bus instance
_event_bus: EventBus | None = None
_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the global EventBus instance, creating it on first call."""
    global _event_bus
    if _event_bus is None:
        with _bus_lock:
            # Double-check locking pattern
            if _event_bus is None:
                _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global EventBus instance (used by tests)."""
    global _event_bus
    with _bus_lock:
        _event_bus = None
