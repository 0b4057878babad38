"""Task graph model for the planning engine.

This module exposes the immutable Plan/Task models and the pure functions
that produce new plan snapshots.
"""

from models.plan import (
    AdaptiveOptions,
    InvalidTaskTransitionError,
    Plan,
    PlanningError,
    PlanningStrategy,
    PlanOptions,
    PlanStatus,
    Task,
    TaskStatus,
    compute_progress,
    count_completed_tasks,
    count_failed_tasks,
    count_total_tasks,
    dependencies_satisfied,
    estimate_completion_time,
    failure_ratio,
    find_task,
    flatten_tasks,
    replace_subtasks,
    update_task_status,
    with_status,
)

__all__ = [
    "AdaptiveOptions",
    "InvalidTaskTransitionError",
    "Plan",
    "PlanningError",
    "PlanningStrategy",
    "PlanOptions",
    "PlanStatus",
    "Task",
    "TaskStatus",
    "compute_progress",
    "count_completed_tasks",
    "count_failed_tasks",
    "count_total_tasks",
    "dependencies_satisfied",
    "estimate_completion_time",
    "failure_ratio",
    "find_task",
    "flatten_tasks",
    "replace_subtasks",
    "update_task_status",
    "with_status",
]
