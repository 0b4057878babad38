"""Shared test fixtures for backend tests.

Provides a fresh EventBus, scripted text-generation and execution
collaborators, and plan factories so that tests never touch real LLM APIs.
"""

import asyncio
import sys
from typing import Any

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from planning.parser import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from events.bus import EventBus, reset_event_bus  # noqa: E402
from events.types import PlanEvent  # noqa: E402
from models.plan import Plan, PlanningStrategy, Task  # noqa: E402
from planning.llm import MockLLMClient  # noqa: E402

# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    reset_event_bus()
    bus = EventBus()
    return bus


async def collect_events(event_bus: EventBus, run_id: str) -> list[PlanEvent]:
    """Subscribe to a run and drain all buffered events."""
    queue = event_bus.subscribe(run_id)
    events: list[PlanEvent] = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


# ---------------------------------------------------------------------------
# Text-generation collaborator
# ---------------------------------------------------------------------------


def make_llm(*responses: str | Exception) -> MockLLMClient:
    """MockLLMClient returning ``responses`` in order, with no retries."""
    return MockLLMClient(responses=list(responses), retry_attempts=0)


# ---------------------------------------------------------------------------
# Execution collaborator
# ---------------------------------------------------------------------------


class ScriptedExecutor:
    """TaskExecutor double with per-description outcomes.

    ``outcomes`` maps a task description to either a result string or an
    Exception instance to raise. Unlisted descriptions succeed with
    ``"done: <description>"``. Every call is recorded, and the peak number
    of concurrently running calls is tracked.

    Args:
        outcomes: Per-description result or exception
        delay: Seconds each call sleeps before returning
        delays: Per-description override of ``delay``
    """

    def __init__(
        self,
        outcomes: dict[str, str | Exception] | None = None,
        delay: float = 0.0,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.outcomes = outcomes or {}
        self.delay = delay
        self.delays = delays or {}
        self.calls: list[str] = []
        self.options: list[dict[str, Any]] = []
        self.running = 0
        self.max_running = 0

    async def execute(self, description: str, **options: Any) -> str:
        self.calls.append(description)
        self.options.append(options)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            await asyncio.sleep(self.delays.get(description, self.delay))
            outcome = self.outcomes.get(description, f"done: {description}")
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.running -= 1


@pytest.fixture()
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


# ---------------------------------------------------------------------------
# Plan factories
# ---------------------------------------------------------------------------


def make_plan(
    *tasks: Task,
    strategy: PlanningStrategy = PlanningStrategy.SEQUENTIAL,
    objective: str = "Test objective",
    **metadata: Any,
) -> Plan:
    """Create a plan whose metadata records ``strategy``."""
    return Plan(
        original_task=objective,
        tasks=tuple(tasks),
        metadata={"strategy": strategy.value, **metadata},
    )


def make_chain(*descriptions: str) -> list[Task]:
    """Tasks where each depends on the one before it."""
    tasks: list[Task] = []
    for description in descriptions:
        tasks.append(
            Task(
                description=description,
                dependencies=(tasks[-1].id,) if tasks else (),
            )
        )
    return tasks


HIERARCHICAL_RESPONSE = """\
Here is the plan.

<phases>
PHASE 1: Research
- Description: Gather background material
- Estimated effort: Low

  TASK 1.1: Find sources
  - Description: Search for recent articles
  - Dependencies: none
  - Can run in parallel: No
  - Tools needed: web_search, notes
  - Estimated effort: Medium

  TASK 1.2: Take notes
  - Description: Summarize each source
  - Dependencies: TASK 1.1
  - Can run in parallel: No
  - Tools needed: none
  - Estimated effort: Low

PHASE 2: Writing
- Description: Produce the article
- Estimated effort: High

  TASK 2.1: Draft
  - Description: Write the first draft
  - Can run in parallel: No
  - Estimated effort: High

    SUBTASK 2.1.1: Introduction
    - Description: Write the opening paragraph
    - Estimated effort: Low

    SUBTASK 2.1.2: Body
    - Description: Write the main sections
    - Dependencies: SUBTASK 2.1.1

  TASK 2.2: Proofread
  - Description: Check grammar and flow
  - Can run in parallel: Yes
</phases>
"""
