"""Replanner: produces a revised plan after pervasive task failure.

The revised plan is requested in the hierarchical grammar regardless of the
strategy the failed plan used, and carries the failed plan's metadata
forward with the replanning counter incremented.
"""

import structlog

from config import settings
from events.bus import EventBus
from events.types import EventType
from models.plan import (
    Plan,
    PlanStatus,
    Task,
    TaskStatus,
    count_total_tasks,
    estimate_completion_time,
    failure_ratio,
    flatten_tasks,
)
from planning.llm import TextGenerator
from planning.notifier import PlanNotifier
from planning.parser import parse_hierarchical_plan
from planning.prompts import build_replanning_prompt

logger = structlog.get_logger()


def should_replan(plan: Plan, threshold: float) -> bool:
    """True when the failed fraction of the tree exceeds ``threshold``."""
    return failure_ratio(plan) > threshold


def _preview(text: str, limit: int) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


def _render_tasks(tasks: tuple[Task, ...], indent: int) -> list[str]:
    pad = " " * indent
    lines: list[str] = []
    for task in tasks:
        lines.append(f"{pad}- Task: {task.description} (ID: {task.id})")
        lines.append(f"{pad}  Status: {task.status.value}")
        if task.dependencies:
            lines.append(f"{pad}  Dependencies: {', '.join(task.dependencies)}")
        if task.subtasks:
            lines.append(f"{pad}  Subtasks:")
            lines.extend(_render_tasks(task.subtasks, indent + 4))
    return lines


def format_plan_for_prompt(plan: Plan) -> str:
    """Render the plan tree for the replanning prompt."""
    lines = [
        f"Plan ID: {plan.id}",
        f"Status: {plan.status.value}",
        f"Progress: {plan.progress}%",
        "Tasks:",
    ]
    lines.extend(_render_tasks(plan.tasks, 0))
    return "\n".join(lines)


def format_completed_tasks(plan: Plan, preview_chars: int | None = None) -> str:
    limit = preview_chars if preview_chars is not None else settings.replan_result_preview_chars
    completed = [t for t in flatten_tasks(plan.tasks) if t.status == TaskStatus.COMPLETED]
    if not completed:
        return "No tasks completed yet."
    return "\n".join(
        f"- {task.description}: {_preview(task.result or '', limit)}" for task in completed
    )


def format_failed_tasks(plan: Plan) -> str:
    failed = [t for t in flatten_tasks(plan.tasks) if t.status == TaskStatus.FAILED]
    if not failed:
        return "No tasks have failed."
    return "\n".join(
        f"- {task.description}: {task.error or 'Unknown error'}" for task in failed
    )


class Replanner:
    """Asks the text-generation collaborator for a revised plan.

    Attributes:
        text_generator: Collaborator used for the replanning prompt
        event_bus: Optional EventBus; a PLAN_CREATED event marks each revision
        run_id: Run id for emitted events (defaults to the revised plan id)
        preview_chars: Length of completed-task result previews in the prompt
    """

    def __init__(
        self,
        text_generator: TextGenerator,
        event_bus: EventBus | None = None,
        run_id: str | None = None,
        preview_chars: int | None = None,
    ) -> None:
        self.text_generator = text_generator
        self.event_bus = event_bus
        self.run_id = run_id
        self.preview_chars = (
            preview_chars if preview_chars is not None
            else settings.replan_result_preview_chars
        )

    def should_replan(self, plan: Plan, threshold: float | None = None) -> bool:
        if threshold is None:
            threshold = (
                plan.adaptive_options.replanning_threshold
                if "adaptive" in plan.metadata
                else settings.replanning_threshold
            )
        return should_replan(plan, threshold)

    async def replan(self, plan: Plan) -> Plan:
        """Produce a revised plan for ``plan``.

        Args:
            plan: The failed plan snapshot

        Returns:
            A new plan in ``created`` status with a new id

        Raises:
            Exception: Whatever the text-generation collaborator raises
        """
        prompt = build_replanning_prompt(
            plan.original_task,
            format_plan_for_prompt(plan),
            format_completed_tasks(plan, self.preview_chars),
            format_failed_tasks(plan),
        )
        response = await self.text_generator.generate(prompt)
        tasks = parse_hierarchical_plan(response)

        adaptive = plan.adaptive_options
        adaptive = adaptive.model_copy(
            update={"current_replan_count": adaptive.current_replan_count + 1}
        )
        metadata = {
            **plan.metadata,
            "adaptive": adaptive.model_dump(),
            "original_plan_id": plan.metadata.get("original_plan_id", plan.id),
            "revised_from": plan.id,
        }

        revised = Plan(
            original_task=plan.original_task,
            tasks=tuple(tasks),
            status=PlanStatus.CREATED,
            metadata=metadata,
            estimated_completion_time=estimate_completion_time(tasks, 1),
        )

        task_count = count_total_tasks(revised.tasks)
        logger.info(
            "plan_revised",
            plan_id=revised.id,
            revised_from=plan.id,
            replan_count=adaptive.current_replan_count,
            task_count=task_count,
        )
        await PlanNotifier(self.event_bus, self.run_id or revised.id).emit(
            EventType.PLAN_CREATED,
            plan=revised,
            message=f"Created revised plan with {task_count} tasks",
            strategy=revised.strategy.value,
            task_count=task_count,
            revised_from=plan.id,
        )
        return revised
