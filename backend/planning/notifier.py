"""Thin helper for publishing plan events to an optional EventBus."""

from typing import Any

from events.bus import EventBus
from events.types import EventType, PlanEvent
from models.plan import Plan, Task


class PlanNotifier:
    """Publishes PlanEvents for one run; a no-op without an event bus."""

    def __init__(self, event_bus: EventBus | None, run_id: str) -> None:
        self.event_bus = event_bus
        self.run_id = run_id

    async def emit(
        self,
        event_type: EventType,
        plan: Plan | None = None,
        task: Task | None = None,
        message: str = "",
        **data: Any,
    ) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            PlanEvent(
                type=event_type,
                run_id=self.run_id,
                plan_id=plan.id if plan else None,
                task_id=task.id if task else None,
                message=message,
                data=data,
            )
        )
