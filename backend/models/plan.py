"""Task graph model for the planning engine.

A ``Plan`` owns a list of top-level ``Task`` objects. Flat strategies link
tasks through ``dependencies``; hierarchical strategies nest children in
``subtasks``. Both models are frozen: every status change goes through
``update_task_status`` and produces a brand-new plan snapshot, so a caller
holding an older reference never observes a half-applied transition.
"""

import time
from enum import StrEnum
from typing import Any
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field

logger = structlog.get_logger()

DEFAULT_TASK_DURATION_MS = 60_000
PARALLEL_OVERHEAD_FACTOR = 1.2


class PlanningError(Exception):
    """Base class for planning engine errors."""


class InvalidTaskTransitionError(PlanningError):
    """Raised when a status update would break the task lifecycle.

    This always indicates a scheduling bug in the engine, never a condition
    produced by collaborator output.
    """


class TaskStatus(StrEnum):
    """Task lifecycle status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanStatus(StrEnum):
    """Plan lifecycle status."""

    CREATED = "created"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    REPLANNING = "replanning"


class PlanningStrategy(StrEnum):
    """Available planning and execution disciplines."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    HIERARCHICAL = "hierarchical"
    ADAPTIVE = "adaptive"


ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def _new_id() -> str:
    return str(uuid4())


class Task(BaseModel):
    """A single unit of work inside a plan.

    Attributes:
        id: Opaque unique identifier, immutable once created.
        description: Instruction handed to the execution collaborator.
        dependencies: Ids of tasks that must be completed before this one starts.
        status: Current lifecycle status.
        result: Output of a completed task.
        error: Failure reason of a failed task.
        priority: Ordering hint among equally eligible tasks (higher first).
        estimated_duration: Expected duration in milliseconds.
        resource_requirements: Advisory list of tools or resources.
        subtasks: Ordered child tasks (hierarchical strategies only).
        assigned_to: Optional executor id in multi-agent setups.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    description: str
    dependencies: tuple[str, ...] = ()
    status: TaskStatus = TaskStatus.PENDING
    result: str | None = None
    error: str | None = None
    priority: int = 1
    estimated_duration: int = DEFAULT_TASK_DURATION_MS
    resource_requirements: tuple[str, ...] = ()
    subtasks: tuple["Task", ...] = ()
    assigned_to: str | None = None

    @property
    def is_leaf(self) -> bool:
        """True when the task has no children and is dispatched directly."""
        return not self.subtasks


Task.model_rebuild()


class AdaptiveOptions(BaseModel):
    """Replanning bookkeeping carried in ``Plan.metadata['adaptive']``."""

    replanning_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    max_replans: int = Field(default=3, ge=0)
    current_replan_count: int = Field(default=0, ge=0)


class PlanOptions(BaseModel):
    """Options controlling how a plan is created and executed.

    ``None`` values are filled from ``config.settings`` by
    ``planning.strategies.resolve_options``.
    """

    strategy: PlanningStrategy | None = None
    max_parallel_tasks: int | None = Field(default=None, ge=1)
    replanning_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    max_replans: int | None = Field(default=None, ge=0)


class Plan(BaseModel):
    """The full task graph for one objective.

    Attributes:
        id: Unique plan identifier.
        original_task: The objective text the plan was created for.
        tasks: Top-level tasks (flat graph or hierarchy roots).
        status: Plan lifecycle status.
        progress: Completed-task percentage over the flattened tree.
        created: Unix timestamp of creation.
        updated: Unix timestamp of the last snapshot.
        estimated_completion_time: Unix timestamp estimate, if known.
        metadata: Strategy, options and replanning bookkeeping.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    original_task: str
    tasks: tuple[Task, ...] = ()
    status: PlanStatus = PlanStatus.CREATED
    progress: int = Field(default=0, ge=0, le=100)
    created: float = Field(default_factory=time.time)
    updated: float = Field(default_factory=time.time)
    estimated_completion_time: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def strategy(self) -> PlanningStrategy:
        """Strategy recorded at creation time (sequential when absent)."""
        raw = self.metadata.get("strategy", PlanningStrategy.SEQUENTIAL)
        try:
            return PlanningStrategy(raw)
        except ValueError:
            return PlanningStrategy.SEQUENTIAL

    @property
    def adaptive_options(self) -> AdaptiveOptions:
        """Adaptive bookkeeping, defaulted when the plan carries none."""
        raw = self.metadata.get("adaptive")
        if isinstance(raw, AdaptiveOptions):
            return raw
        if isinstance(raw, dict):
            return AdaptiveOptions.model_validate(raw)
        return AdaptiveOptions()

    @property
    def is_finished(self) -> bool:
        return self.status in (PlanStatus.COMPLETED, PlanStatus.FAILED)


# -----------------------------------------------------------------------------
# Tree helpers
# -----------------------------------------------------------------------------


def flatten_tasks(tasks: tuple[Task, ...] | list[Task]) -> list[Task]:
    """Return every task in the tree, parents before their children."""
    flat: list[Task] = []
    for task in tasks:
        flat.append(task)
        if task.subtasks:
            flat.extend(flatten_tasks(task.subtasks))
    return flat


def find_task(tasks: tuple[Task, ...] | list[Task], task_id: str) -> Task | None:
    """Find a task anywhere in the tree by id."""
    for task in flatten_tasks(tasks):
        if task.id == task_id:
            return task
    return None


def count_total_tasks(tasks: tuple[Task, ...] | list[Task]) -> int:
    return len(flatten_tasks(tasks))


def count_completed_tasks(tasks: tuple[Task, ...] | list[Task]) -> int:
    return sum(1 for t in flatten_tasks(tasks) if t.status == TaskStatus.COMPLETED)


def count_failed_tasks(tasks: tuple[Task, ...] | list[Task]) -> int:
    return sum(1 for t in flatten_tasks(tasks) if t.status == TaskStatus.FAILED)


def compute_progress(tasks: tuple[Task, ...] | list[Task]) -> int:
    """Completed percentage over all tree levels, 0 for an empty tree.

    Halves round up (1 of 8 is 13), not to even.
    """
    total = count_total_tasks(tasks)
    if total == 0:
        return 0
    return (200 * count_completed_tasks(tasks) + total) // (2 * total)


def failure_ratio(plan: Plan) -> float:
    """Fraction of failed tasks over all tree levels."""
    total = count_total_tasks(plan.tasks)
    if total == 0:
        return 0.0
    return count_failed_tasks(plan.tasks) / total


def dependencies_satisfied(task: Task, tasks: tuple[Task, ...] | list[Task]) -> bool:
    """True when every dependency of ``task`` is a completed sibling.

    A dependency id that does not exist among ``tasks`` can never be
    satisfied.
    """
    by_id = {t.id: t for t in tasks}
    for dep_id in task.dependencies:
        dep = by_id.get(dep_id)
        if dep is None or dep.status != TaskStatus.COMPLETED:
            return False
    return True


def sum_task_durations(tasks: tuple[Task, ...] | list[Task]) -> int:
    """Total estimated duration in milliseconds, subtasks included."""
    return sum(t.estimated_duration or DEFAULT_TASK_DURATION_MS for t in flatten_tasks(tasks))


def estimate_completion_time(
    tasks: tuple[Task, ...] | list[Task],
    max_parallel: int,
    now: float | None = None,
) -> float:
    """Estimate a completion timestamp for the plan.

    Sequential execution sums all durations. Parallel execution divides the
    total work by the usable concurrency and adds coordination overhead.
    Dependencies are not taken into account.

    Args:
        tasks: Top-level tasks of the plan
        max_parallel: Concurrency cap the plan will run under
        now: Reference Unix timestamp (defaults to the current time)

    Returns:
        Estimated Unix timestamp of completion
    """
    start = time.time() if now is None else now
    total_ms = sum_task_durations(tasks)
    if max_parallel <= 1 or not tasks:
        return start + total_ms / 1000
    lanes = min(max_parallel, len(tasks))
    return start + (total_ms / lanes) * PARALLEL_OVERHEAD_FACTOR / 1000


# -----------------------------------------------------------------------------
# Snapshot updates
# -----------------------------------------------------------------------------


def _replace_in_tree(
    tasks: tuple[Task, ...], task_id: str, replace: Any
) -> tuple[tuple[Task, ...], bool]:
    """Rebuild ``tasks`` with ``replace(task)`` applied to the matching task."""
    found = False
    rebuilt: list[Task] = []
    for task in tasks:
        if found:
            rebuilt.append(task)
        elif task.id == task_id:
            rebuilt.append(replace(task))
            found = True
        elif task.subtasks:
            children, found = _replace_in_tree(task.subtasks, task_id, replace)
            rebuilt.append(task.model_copy(update={"subtasks": children}) if found else task)
        else:
            rebuilt.append(task)
    return tuple(rebuilt), found


def update_task_status(
    plan: Plan,
    task_id: str,
    status: TaskStatus,
    result: str | None = None,
    error: str | None = None,
) -> Plan:
    """Return a new plan with one task moved to ``status``.

    The task may live at any depth of the tree. Progress is recomputed over
    the flattened tree and ``updated`` is refreshed.

    Args:
        plan: Current plan snapshot
        task_id: Id of the task to update
        status: Target status
        result: Output, only accepted with ``completed``
        error: Failure reason, only accepted with ``failed``

    Returns:
        The new plan snapshot

    Raises:
        InvalidTaskTransitionError: Unknown task id, a transition outside
            ``pending -> in_progress -> {completed, failed}``, or an outcome
            payload attached to the wrong status.
    """
    current = find_task(plan.tasks, task_id)
    if current is None:
        raise InvalidTaskTransitionError(f"Task {task_id} is not part of plan {plan.id}")

    if status not in ALLOWED_TRANSITIONS[current.status]:
        raise InvalidTaskTransitionError(
            f"Task {task_id} cannot move from {current.status} to {status}"
        )
    if result is not None and status != TaskStatus.COMPLETED:
        raise InvalidTaskTransitionError("A result can only be recorded on completion")
    if error is not None and status != TaskStatus.FAILED:
        raise InvalidTaskTransitionError("An error can only be recorded on failure")

    update: dict[str, Any] = {"status": status}
    if status == TaskStatus.COMPLETED:
        update["result"] = result if result is not None else ""
    elif status == TaskStatus.FAILED:
        update["error"] = error if error is not None else "Unknown error"

    tasks, _ = _replace_in_tree(plan.tasks, task_id, lambda t: t.model_copy(update=update))

    logger.debug(
        "task_status_updated",
        plan_id=plan.id,
        task_id=task_id,
        status=status.value,
        error=error is not None,
    )

    return plan.model_copy(
        update={
            "tasks": tasks,
            "progress": compute_progress(tasks),
            "updated": time.time(),
        }
    )


def replace_subtasks(plan: Plan, task_id: str, subtasks: tuple[Task, ...]) -> Plan:
    """Return a new plan with the children of ``task_id`` replaced.

    Used to fold an executed sub-plan back into the task that owns it.

    Raises:
        InvalidTaskTransitionError: If the task is not part of the plan.
    """
    tasks, found = _replace_in_tree(
        plan.tasks, task_id, lambda t: t.model_copy(update={"subtasks": tuple(subtasks)})
    )
    if not found:
        raise InvalidTaskTransitionError(f"Task {task_id} is not part of plan {plan.id}")
    return plan.model_copy(
        update={
            "tasks": tasks,
            "progress": compute_progress(tasks),
            "updated": time.time(),
        }
    )


def with_status(plan: Plan, status: PlanStatus, **changes: Any) -> Plan:
    """Return a new plan snapshot with a different plan-level status."""
    update: dict[str, Any] = {"status": status, "updated": time.time(), **changes}
    return plan.model_copy(update=update)
