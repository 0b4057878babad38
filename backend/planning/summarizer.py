"""Summarizer: natural-language completion report for an executed plan."""

import structlog

from config import settings
from models.plan import (
    Plan,
    PlanStatus,
    Task,
    TaskStatus,
    count_completed_tasks,
    count_total_tasks,
    flatten_tasks,
)
from planning.llm import TextGenerator
from planning.prompts import build_summary_prompt

logger = structlog.get_logger()


def _preview(text: str, limit: int) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


def _render_results(tasks: tuple[Task, ...], indent: int, preview_chars: int) -> list[str]:
    pad = " " * indent
    lines: list[str] = []
    for task in tasks:
        lines.append(f"{pad}- {task.description}")
        lines.append(f"{pad}  Status: {task.status.value}")
        if task.result:
            lines.append(f"{pad}  Result: {_preview(task.result, preview_chars)}")
        if task.error:
            lines.append(f"{pad}  Error: {task.error}")
        if task.subtasks:
            lines.extend(_render_results(task.subtasks, indent + 4, preview_chars))
    return lines


def format_plan_results(plan: Plan, preview_chars: int | None = None) -> str:
    """Render a transcript of every task's outcome, children indented."""
    limit = preview_chars if preview_chars is not None else settings.summary_result_preview_chars
    if not plan.tasks:
        return "No tasks were planned."
    return "\n".join(_render_results(plan.tasks, 0, limit))


def fallback_report(plan: Plan) -> str:
    """Deterministic report used when the collaborator cannot produce one."""
    total = count_total_tasks(plan.tasks)
    lines = [
        f"Task: {plan.original_task}",
        f"Status: {plan.status.value}",
        f"Progress: {plan.progress}%",
        f"Completed {count_completed_tasks(plan.tasks)} of {total} tasks.",
    ]
    failed = [t for t in flatten_tasks(plan.tasks) if t.status == TaskStatus.FAILED]
    if failed:
        lines.append("Failed tasks:")
        lines.extend(f"- {t.description}: {t.error or 'Unknown error'}" for t in failed)
    return "\n".join(lines)


class Summarizer:
    def __init__(
        self,
        text_generator: TextGenerator,
        preview_chars: int | None = None,
    ) -> None:
        self.text_generator = text_generator
        self.preview_chars = (
            preview_chars if preview_chars is not None
            else settings.summary_result_preview_chars
        )

    async def summarize(self, plan: Plan) -> str:
        """Return a completion report; never raises for collaborator failure."""
        prompt = build_summary_prompt(
            plan.original_task,
            plan.status.value,
            plan.progress,
            format_plan_results(plan, self.preview_chars),
        )
        try:
            summary = await self.text_generator.generate(prompt)
        except Exception as e:
            logger.warning(
                "summary_generation_failed",
                plan_id=plan.id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return fallback_report(plan)

        if not summary.strip():
            logger.warning("summary_generation_empty", plan_id=plan.id)
            return fallback_report(plan)

        logger.info(
            "summary_generated",
            plan_id=plan.id,
            completed=plan.status == PlanStatus.COMPLETED,
            summary_length=len(summary),
        )
        return summary.strip()
