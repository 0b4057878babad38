"""Execution engine: runs a plan under one of four disciplines.

Every executor works on immutable plan snapshots. Each status change goes
through ``update_task_status`` and the executor keeps a single reference to
the latest snapshot, so no task is ever observed half-updated.

Disciplines:
- sequential: top-level tasks in order; unmet dependencies fail the task
- parallel: bounded concurrency with dependency gating and deadlock detection
- hierarchical: depth-first, sub-plans executed recursively and folded back
- adaptive: hierarchical plus bounded replanning on pervasive failure

Collaborator exceptions are recorded on the failing task and never escape.
``InvalidTaskTransitionError`` is not caught: it signals a scheduling bug.
"""

import asyncio

import structlog

from config import settings
from events.bus import EventBus
from events.types import EventType
from models.plan import (
    AdaptiveOptions,
    Plan,
    PlanningStrategy,
    PlanOptions,
    PlanStatus,
    Task,
    TaskStatus,
    compute_progress,
    dependencies_satisfied,
    failure_ratio,
    find_task,
    replace_subtasks,
    update_task_status,
    with_status,
)
from planning.executor import TaskExecutor
from planning.notifier import PlanNotifier
from planning.replanner import Replanner
from planning.strategies import resolve_options

logger = structlog.get_logger()

DEPENDENCIES_NOT_SATISFIED = "Dependencies not satisfied"


def _error_message(error: Exception) -> str:
    return str(error) or type(error).__name__


class ExecutionEngine:
    """Runs plans to a terminal status.

    Usage:
        >>> engine = ExecutionEngine(LLMTaskExecutor(), replanner=Replanner(llm))
        >>> executed = await engine.execute(plan)
        >>> executed.status
        <PlanStatus.COMPLETED: 'completed'>

    Attributes:
        task_executor: Collaborator that performs leaf task descriptions
        replanner: Produces revised plans for the adaptive discipline
        event_bus: Optional EventBus for progress notifications
        run_id: Run id for emitted events (defaults to the plan id)
        poll_interval: Upper bound in seconds on a parallel scheduling wait
    """

    def __init__(
        self,
        task_executor: TaskExecutor,
        replanner: Replanner | None = None,
        event_bus: EventBus | None = None,
        run_id: str | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.task_executor = task_executor
        self.replanner = replanner
        self.event_bus = event_bus
        self.run_id = run_id
        self.poll_interval = (
            poll_interval if poll_interval is not None
            else settings.parallel_poll_interval_seconds
        )

    async def execute(self, plan: Plan, options: PlanOptions | None = None) -> Plan:
        """Execute ``plan`` with the strategy recorded in its metadata.

        Args:
            plan: Plan snapshot, normally in ``created`` status
            options: Overrides for the options recorded at creation time

        Returns:
            The final snapshot, with status ``completed`` or ``failed``
        """
        resolved = resolve_options(options, base=plan.metadata.get("plan_options"))
        notifier = PlanNotifier(self.event_bus, self.run_id or plan.id)
        strategy = plan.strategy

        logger.info(
            "plan_execution_started",
            plan_id=plan.id,
            strategy=strategy.value,
            task_count=len(plan.tasks),
        )

        if not plan.tasks:
            logger.warning("plan_has_no_tasks", plan_id=plan.id)
            final = with_status(plan, PlanStatus.FAILED)
        else:
            plan = with_status(plan, PlanStatus.IN_PROGRESS)
            if strategy == PlanningStrategy.PARALLEL:
                final = await self._run_parallel(plan, resolved, notifier)
            elif strategy == PlanningStrategy.HIERARCHICAL:
                final = await self._run_hierarchical(plan, notifier)
            elif strategy == PlanningStrategy.ADAPTIVE:
                plan = self._with_adaptive_overrides(plan, options)
                final = await self._run_adaptive(plan, resolved, notifier)
            else:
                final = await self._run_sequential(plan, notifier)

        completed = final.status == PlanStatus.COMPLETED
        logger.info(
            "plan_execution_finished",
            plan_id=final.id,
            status=final.status.value,
            progress=final.progress,
        )
        await notifier.emit(
            EventType.PLAN_COMPLETED if completed else EventType.PLAN_FAILED,
            plan=final,
            message=f"Plan {'completed' if completed else 'failed'} at {final.progress}%",
            progress=final.progress,
        )
        return final

    # -------------------------------------------------------------------------
    # Task helpers
    # -------------------------------------------------------------------------

    async def _call_executor(self, plan: Plan, task: Task) -> tuple[str | None, str | None]:
        """Invoke the collaborator, returning ``(result, error)``."""
        try:
            result = await self.task_executor.execute(
                task.description,
                objective=plan.original_task,
            )
        except Exception as e:
            logger.warning(
                "task_execution_failed",
                plan_id=plan.id,
                task_id=task.id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None, _error_message(e)
        return str(result) if result is not None else "", None

    async def _record_outcome(
        self,
        plan: Plan,
        task: Task,
        result: str | None,
        error: str | None,
        notifier: PlanNotifier,
    ) -> Plan:
        if error is not None:
            plan = update_task_status(plan, task.id, TaskStatus.FAILED, error=error)
            await notifier.emit(
                EventType.TASK_FAILED,
                plan=plan,
                task=task,
                message=f"Task failed: {task.description}",
                error=error,
            )
        else:
            plan = update_task_status(plan, task.id, TaskStatus.COMPLETED, result=result)
            await notifier.emit(
                EventType.TASK_COMPLETED,
                plan=plan,
                task=task,
                message=f"Task completed: {task.description}",
            )
        return plan

    async def _run_leaf(self, plan: Plan, task: Task, notifier: PlanNotifier) -> Plan:
        plan = update_task_status(plan, task.id, TaskStatus.IN_PROGRESS)
        await notifier.emit(
            EventType.TASK_STARTED,
            plan=plan,
            task=task,
            message=f"Executing task: {task.description}",
        )
        result, error = await self._call_executor(plan, task)
        return await self._record_outcome(plan, task, result, error, notifier)

    async def _fail_unmet_dependencies(
        self, plan: Plan, task: Task, notifier: PlanNotifier
    ) -> Plan:
        logger.warning(
            "task_dependencies_not_satisfied",
            plan_id=plan.id,
            task_id=task.id,
            dependencies=list(task.dependencies),
        )
        plan = update_task_status(plan, task.id, TaskStatus.IN_PROGRESS)
        return await self._record_outcome(
            plan, task, None, DEPENDENCIES_NOT_SATISFIED, notifier
        )

    @staticmethod
    def _all_completed(plan: Plan) -> bool:
        return all(task.status == TaskStatus.COMPLETED for task in plan.tasks)

    # -------------------------------------------------------------------------
    # Sequential
    # -------------------------------------------------------------------------

    async def _run_sequential(self, plan: Plan, notifier: PlanNotifier) -> Plan:
        for task_id in [task.id for task in plan.tasks]:
            task = find_task(plan.tasks, task_id)

            if not dependencies_satisfied(task, plan.tasks):
                plan = await self._fail_unmet_dependencies(plan, task, notifier)
                continue

            plan = await self._run_leaf(plan, task, notifier)
            if find_task(plan.tasks, task_id).status == TaskStatus.FAILED:
                logger.info("sequential_execution_aborted", plan_id=plan.id, task_id=task_id)
                return with_status(plan, PlanStatus.FAILED)

        status = PlanStatus.COMPLETED if self._all_completed(plan) else PlanStatus.FAILED
        return with_status(plan, status)

    # -------------------------------------------------------------------------
    # Bounded parallel
    # -------------------------------------------------------------------------

    async def _run_parallel(
        self, plan: Plan, options: PlanOptions, notifier: PlanNotifier
    ) -> Plan:
        max_parallel = options.max_parallel_tasks or 1
        pending: list[str] = [task.id for task in plan.tasks]
        in_flight: dict[asyncio.Task[tuple[str | None, str | None]], str] = {}

        try:
            while pending or in_flight:
                ready = [
                    task
                    for task in plan.tasks
                    if task.id in pending and dependencies_satisfied(task, plan.tasks)
                ]
                ready.sort(key=lambda t: t.priority, reverse=True)

                for task in ready[: max_parallel - len(in_flight)]:
                    pending.remove(task.id)
                    plan = update_task_status(plan, task.id, TaskStatus.IN_PROGRESS)
                    await notifier.emit(
                        EventType.TASK_STARTED,
                        plan=plan,
                        task=task,
                        message=f"Starting task in parallel: {task.description}",
                    )
                    in_flight[asyncio.create_task(self._call_executor(plan, task))] = task.id

                if not in_flight:
                    logger.error(
                        "parallel_execution_deadlock",
                        plan_id=plan.id,
                        pending_task_ids=pending,
                    )
                    return with_status(plan, PlanStatus.FAILED)

                done, _ = await asyncio.wait(
                    in_flight.keys(),
                    timeout=self.poll_interval,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                for finished in done:
                    task_id = in_flight.pop(finished)
                    result, error = finished.result()
                    plan = await self._record_outcome(
                        plan, find_task(plan.tasks, task_id), result, error, notifier
                    )
        finally:
            for leftover in in_flight:
                leftover.cancel()

        status = PlanStatus.COMPLETED if self._all_completed(plan) else PlanStatus.FAILED
        return with_status(plan, status)

    # -------------------------------------------------------------------------
    # Hierarchical
    # -------------------------------------------------------------------------

    async def _run_hierarchical(self, plan: Plan, notifier: PlanNotifier) -> Plan:
        for task_id in [task.id for task in plan.tasks]:
            task = find_task(plan.tasks, task_id)

            if not dependencies_satisfied(task, plan.tasks):
                plan = await self._fail_unmet_dependencies(plan, task, notifier)
                return with_status(plan, PlanStatus.FAILED)

            if task.subtasks:
                plan = await self._run_phase(plan, task, notifier)
            else:
                plan = await self._run_leaf(plan, task, notifier)

            if find_task(plan.tasks, task_id).status == TaskStatus.FAILED:
                logger.info("hierarchical_execution_halted", plan_id=plan.id, task_id=task_id)
                return with_status(plan, PlanStatus.FAILED)

        return with_status(plan, PlanStatus.COMPLETED)

    async def _run_phase(self, plan: Plan, task: Task, notifier: PlanNotifier) -> Plan:
        """Execute a task's children as a sub-plan and fold them back in."""
        plan = update_task_status(plan, task.id, TaskStatus.IN_PROGRESS)
        await notifier.emit(
            EventType.PHASE_STARTED,
            plan=plan,
            task=task,
            message=f"Executing phase: {task.description}",
        )

        sub_plan = Plan(
            original_task=plan.original_task,
            tasks=task.subtasks,
            status=PlanStatus.IN_PROGRESS,
            progress=compute_progress(task.subtasks),
            metadata={
                **plan.metadata,
                "parent_plan_id": plan.id,
                "parent_task_id": task.id,
            },
        )
        sub_plan = await self._run_hierarchical(sub_plan, notifier)
        plan = replace_subtasks(plan, task.id, sub_plan.tasks)

        if sub_plan.status == PlanStatus.COMPLETED:
            result = "\n\n".join(child.result for child in sub_plan.tasks if child.result)
            return await self._record_outcome(plan, task, result, None, notifier)

        reasons = "; ".join(
            child.error for child in sub_plan.tasks
            if child.status == TaskStatus.FAILED and child.error
        )
        return await self._record_outcome(
            plan, task, None, f"Sub-plan failed: {reasons or 'unknown error'}", notifier
        )

    # -------------------------------------------------------------------------
    # Adaptive
    # -------------------------------------------------------------------------

    async def _run_adaptive(
        self, plan: Plan, options: PlanOptions, notifier: PlanNotifier
    ) -> Plan:
        while True:
            executed = await self._run_hierarchical(plan, notifier)
            if executed.status == PlanStatus.COMPLETED:
                return executed

            adaptive = self._adaptive_options(executed, options)
            ratio = failure_ratio(executed)
            if self.replanner is None:
                return executed
            if ratio <= adaptive.replanning_threshold:
                logger.info(
                    "replanning_skipped_below_threshold",
                    plan_id=executed.id,
                    failure_ratio=ratio,
                    threshold=adaptive.replanning_threshold,
                )
                return executed
            if adaptive.current_replan_count >= adaptive.max_replans:
                logger.warning(
                    "replanning_limit_reached",
                    plan_id=executed.id,
                    max_replans=adaptive.max_replans,
                )
                return executed

            replanning = with_status(
                executed,
                PlanStatus.REPLANNING,
                metadata={**executed.metadata, "adaptive": adaptive.model_dump()},
            )
            await notifier.emit(
                EventType.REPLANNING,
                plan=replanning,
                message="Replanning after task failures",
                replan_count=adaptive.current_replan_count,
                failure_ratio=ratio,
            )

            try:
                revised = await self.replanner.replan(replanning)
            except Exception as e:
                logger.error(
                    "replanning_failed",
                    plan_id=executed.id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                return executed

            if not revised.tasks:
                logger.warning("revised_plan_has_no_tasks", plan_id=revised.id)
                return with_status(revised, PlanStatus.FAILED)

            plan = with_status(revised, PlanStatus.IN_PROGRESS)

    @staticmethod
    def _with_adaptive_overrides(plan: Plan, options: PlanOptions | None) -> Plan:
        """Apply explicitly passed replanning options over recorded bookkeeping.

        The replan count is kept, and revisions inherit the merged values.
        """
        if options is None or "adaptive" not in plan.metadata:
            return plan
        overrides = options.model_dump(
            include={"replanning_threshold", "max_replans"}, exclude_none=True
        )
        if not overrides:
            return plan
        adaptive = plan.adaptive_options.model_copy(update=overrides)
        logger.debug("adaptive_options_overridden", plan_id=plan.id, **overrides)
        return plan.model_copy(
            update={"metadata": {**plan.metadata, "adaptive": adaptive.model_dump()}}
        )

    @staticmethod
    def _adaptive_options(plan: Plan, options: PlanOptions) -> AdaptiveOptions:
        """Bookkeeping from the plan, or fresh bookkeeping from the options."""
        if "adaptive" in plan.metadata:
            return plan.adaptive_options
        return AdaptiveOptions(
            replanning_threshold=options.replanning_threshold,
            max_replans=options.max_replans,
        )
