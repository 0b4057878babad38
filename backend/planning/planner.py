"""TaskPlanner facade: plan, execute and report on an objective.

Usage:
    >>> planner = TaskPlanner(LLMClient(), run_id="run_123")
    >>> outcome = await planner.run("Write a blog post about solar power")
    >>> outcome.plan.status, outcome.summary
"""

from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict

from events.bus import EventBus
from events.types import EventType
from models.plan import Plan, PlanOptions, PlanStatus, TaskStatus
from models.plan import update_task_status as _update_task_status
from planning.engine import ExecutionEngine
from planning.executor import LLMTaskExecutor, TaskExecutor
from planning.llm import LLMClient, TextGenerator
from planning.notifier import PlanNotifier
from planning.replanner import Replanner
from planning.strategies import PlanBuilder
from planning.summarizer import Summarizer

logger = structlog.get_logger()

# Heuristic thresholds for deciding whether an objective needs a plan
LONG_OBJECTIVE_CHARS = 100
MANY_SENTENCES = 3


def should_plan(objective: str) -> bool:
    """Guess whether an objective is complex enough to be planned.

    True for long objectives, explicit "step by step" or "complex" wording,
    or more than three sentence fragments.
    """
    lowered = objective.lower()
    return (
        len(objective) > LONG_OBJECTIVE_CHARS
        or "step by step" in lowered
        or "complex" in lowered
        or len(objective.split(".")) > MANY_SENTENCES
    )


class PlanResult(BaseModel):
    """Final plan snapshot plus its completion report."""

    model_config = ConfigDict(frozen=True)

    summary: str
    plan: Plan

    @property
    def succeeded(self) -> bool:
        return self.plan.status == PlanStatus.COMPLETED


class TaskPlanner:
    """Single entry point wiring plan creation, execution and reporting.

    Attributes:
        run_id: Run id attached to every emitted event
        builder: Creates plans for each strategy
        replanner: Revises plans for the adaptive strategy
        engine: Executes plans
        summarizer: Produces the completion report
    """

    def __init__(
        self,
        text_generator: TextGenerator | None = None,
        task_executor: TaskExecutor | None = None,
        event_bus: EventBus | None = None,
        run_id: str | None = None,
    ) -> None:
        self.event_bus = event_bus
        self.run_id = run_id or f"run_{uuid4().hex[:12]}"
        self.text_generator = text_generator or LLMClient(event_bus=event_bus, run_id=self.run_id)
        self.task_executor = task_executor or LLMTaskExecutor(
            LLMClient(event_bus=event_bus, run_id=self.run_id)
        )

        self.builder = PlanBuilder(self.text_generator, event_bus, self.run_id)
        self.replanner = Replanner(self.text_generator, event_bus, self.run_id)
        self.summarizer = Summarizer(self.text_generator)
        self.engine = ExecutionEngine(
            self.task_executor,
            replanner=self.replanner,
            event_bus=event_bus,
            run_id=self.run_id,
        )
        self._notifier = PlanNotifier(event_bus, self.run_id)

    async def create_plan(self, objective: str, options: PlanOptions | None = None) -> Plan:
        return await self.builder.create_plan(objective, options)

    async def execute_plan(self, plan: Plan, options: PlanOptions | None = None) -> PlanResult:
        """Run ``plan`` to completion and summarize it.

        Plan-level failure is reported through ``PlanResult.plan.status``,
        never raised.
        """
        executed = await self.engine.execute(plan, options)
        summary = await self.summarizer.summarize(executed)
        await self._notifier.emit(
            EventType.SUMMARY_READY,
            plan=executed,
            message="Summary ready",
            status=executed.status.value,
            progress=executed.progress,
        )
        logger.info(
            "plan_run_finished",
            run_id=self.run_id,
            plan_id=executed.id,
            status=executed.status.value,
            progress=executed.progress,
        )
        return PlanResult(summary=summary, plan=executed)

    async def run(self, objective: str, options: PlanOptions | None = None) -> PlanResult:
        plan = await self.create_plan(objective, options)
        return await self.execute_plan(plan, options)

    def update_task_status(
        self,
        plan: Plan,
        task_id: str,
        status: TaskStatus,
        result: str | None = None,
        error: str | None = None,
    ) -> Plan:
        return _update_task_status(plan, task_id, status, result=result, error=error)

    def should_replan(self, plan: Plan, threshold: float | None = None) -> bool:
        return self.replanner.should_replan(plan, threshold)

    async def replan(self, plan: Plan) -> Plan:
        return await self.replanner.replan(plan)
