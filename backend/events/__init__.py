"""Progress notifications for the planning engine.

The engine publishes a PlanEvent at each task start, phase start,
replanning transition and plan completion. Consumers subscribe per run id
and read events from an asyncio.Queue.

Usage:
    >>> from events import EventType, PlanEvent, get_event_bus
    >>>
    >>> bus = get_event_bus()
    >>> queue = bus.subscribe("run_123")
    >>> await bus.publish(PlanEvent(
    ...     type=EventType.PHASE_STARTED,
    ...     run_id="run_123",
    ...     message="Executing phase: Research",
    ... ))
    >>> event = await queue.get()
"""

from events.bus import (
    EventBus,
    get_event_bus,
    reset_event_bus,
)
from events.types import (
    EventType,
    LLMMetrics,
    PlanEvent,
)

__all__ = [
    "EventType",
    "PlanEvent",
    "LLMMetrics",
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
]
