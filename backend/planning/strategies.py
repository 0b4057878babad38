"""Strategy selection and plan construction.

Each strategy asks the text-generation collaborator for a decomposition in
the grammar that strategy understands:

- sequential: numbered list, each step depends on the previous one
- parallel: numbered list, then a second call assigns dependencies
- hierarchical: PHASE/TASK/SUBTASK tree
- adaptive: hierarchical tree plus replanning bookkeeping
"""

from typing import Any

import structlog

from config import settings
from events.bus import EventBus
from events.types import EventType
from models.plan import (
    DEFAULT_TASK_DURATION_MS,
    AdaptiveOptions,
    Plan,
    PlanningStrategy,
    PlanOptions,
    PlanStatus,
    Task,
    count_total_tasks,
    estimate_completion_time,
)
from planning.llm import TextGenerator
from planning.dependency_inference import InferenceOptions, infer_dependencies
from planning.notifier import PlanNotifier
from planning.parser import (
    build_sequential_tasks,
    parse_dependencies,
    read_dependency_assignments,
    parse_hierarchical_plan,
    parse_numbered_list,
)
from planning.prompts import (
    build_decomposition_prompt,
    build_dependency_prompt,
    build_hierarchical_prompt,
)

logger = structlog.get_logger()


def select_strategy(requested: str | PlanningStrategy | None = None) -> PlanningStrategy:
    """Resolve the strategy for a plan.

    An explicit request wins over ``settings.planning_strategy``. Unknown
    names fall back to hierarchical.
    """
    raw = requested if requested is not None else settings.planning_strategy
    try:
        return PlanningStrategy(str(raw).strip().lower())
    except ValueError:
        logger.warning("unknown_planning_strategy", requested=str(raw), fallback="hierarchical")
        return PlanningStrategy.HIERARCHICAL


def resolve_options(
    options: PlanOptions | None = None,
    base: dict[str, Any] | None = None,
) -> PlanOptions:
    """Fill every unset option, explicit options first, then ``base``, then settings."""
    merged: dict[str, Any] = {}
    if base:
        merged.update({key: value for key, value in base.items() if value is not None})
    if options is not None:
        merged.update(options.model_dump(exclude_none=True))

    return PlanOptions(
        strategy=select_strategy(merged.get("strategy")),
        max_parallel_tasks=merged.get("max_parallel_tasks", settings.max_parallel_tasks),
        replanning_threshold=merged.get("replanning_threshold", settings.replanning_threshold),
        max_replans=merged.get("max_replans", settings.max_replans),
    )


class PlanBuilder:
    """Creates plans by prompting the text-generation collaborator.

    Collaborator failures propagate to the caller; the LLM client applies
    its own transport retries before giving up.
    """

    def __init__(
        self,
        text_generator: TextGenerator,
        event_bus: EventBus | None = None,
        run_id: str | None = None,
    ) -> None:
        self.text_generator = text_generator
        self.event_bus = event_bus
        self.run_id = run_id

    async def create_plan(self, objective: str, options: PlanOptions | None = None) -> Plan:
        """Decompose ``objective`` into a fresh plan.

        Args:
            objective: Natural-language goal
            options: Strategy and execution options (unset fields come from settings)

        Returns:
            A plan in ``created`` status with progress 0
        """
        resolved = resolve_options(options)
        strategy = resolved.strategy

        logger.info("plan_creation_started", strategy=strategy.value, objective=objective[:80])

        if strategy == PlanningStrategy.SEQUENTIAL:
            tasks = await self._sequential_tasks(objective)
        elif strategy == PlanningStrategy.PARALLEL:
            tasks = await self._parallel_tasks(objective)
        else:
            tasks = await self._hierarchical_tasks(objective)

        metadata: dict[str, Any] = {
            "strategy": strategy.value,
            "plan_options": resolved.model_dump(mode="json"),
        }
        if strategy == PlanningStrategy.ADAPTIVE:
            metadata["adaptive"] = AdaptiveOptions(
                replanning_threshold=resolved.replanning_threshold,
                max_replans=resolved.max_replans,
            ).model_dump()

        max_parallel = resolved.max_parallel_tasks if strategy == PlanningStrategy.PARALLEL else 1
        plan = Plan(
            original_task=objective,
            tasks=tuple(tasks),
            status=PlanStatus.CREATED,
            metadata=metadata,
            estimated_completion_time=estimate_completion_time(tasks, max_parallel),
        )

        task_count = count_total_tasks(plan.tasks)
        logger.info(
            "plan_created",
            plan_id=plan.id,
            strategy=strategy.value,
            task_count=task_count,
        )
        if not plan.tasks:
            logger.warning("plan_created_without_tasks", plan_id=plan.id)

        await PlanNotifier(self.event_bus, self.run_id or plan.id).emit(
            EventType.PLAN_CREATED,
            plan=plan,
            message=f"Created {strategy.value} plan with {task_count} tasks",
            strategy=strategy.value,
            task_count=task_count,
        )
        return plan

    async def _sequential_tasks(self, objective: str) -> list[Task]:
        response = await self.text_generator.generate(
            build_decomposition_prompt(objective, PlanningStrategy.SEQUENTIAL.value)
        )
        return build_sequential_tasks(parse_numbered_list(response))

    async def _parallel_tasks(self, objective: str) -> list[Task]:
        response = await self.text_generator.generate(
            build_decomposition_prompt(objective, PlanningStrategy.PARALLEL.value)
        )
        tasks = [
            Task(description=step, estimated_duration=DEFAULT_TASK_DURATION_MS)
            for step in parse_numbered_list(response)
        ]
        if not tasks:
            return tasks

        dependency_response = await self.text_generator.generate(
            build_dependency_prompt(objective, tasks)
        )
        if read_dependency_assignments(dependency_response, tasks):
            return parse_dependencies(dependency_response, tasks)

        logger.warning("dependency_reply_unparsed", task_count=len(tasks))
        return infer_dependencies(
            tasks,
            context=f"{response}\n{dependency_response}",
            options=InferenceOptions(
                max_dependencies_per_task=settings.inferred_dependencies_per_task
            ),
        )

    async def _hierarchical_tasks(self, objective: str) -> list[Task]:
        response = await self.text_generator.generate(build_hierarchical_prompt(objective))
        return parse_hierarchical_plan(response)
