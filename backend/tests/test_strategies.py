"""Tests for planning/strategies.py -- strategy selection and plan creation."""

import pytest

from config import settings
from events.bus import EventBus
from events.types import EventType
from models.plan import PlanningStrategy, PlanOptions, PlanStatus, flatten_tasks
from planning.strategies import PlanBuilder, resolve_options, select_strategy
from tests.conftest import HIERARCHICAL_RESPONSE, collect_events, make_llm


class TestSelectStrategy:
    def test_explicit_request_wins(self) -> None:
        assert select_strategy("parallel") == PlanningStrategy.PARALLEL
        assert select_strategy(PlanningStrategy.ADAPTIVE) == PlanningStrategy.ADAPTIVE

    def test_case_insensitive(self) -> None:
        assert select_strategy(" Sequential ") == PlanningStrategy.SEQUENTIAL

    def test_default_from_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "planning_strategy", "parallel")
        assert select_strategy() == PlanningStrategy.PARALLEL

    def test_unknown_falls_back_to_hierarchical(self) -> None:
        assert select_strategy("round-robin") == PlanningStrategy.HIERARCHICAL


class TestResolveOptions:
    def test_fills_from_settings(self) -> None:
        resolved = resolve_options(PlanOptions(strategy=PlanningStrategy.PARALLEL))
        assert resolved.strategy == PlanningStrategy.PARALLEL
        assert resolved.max_parallel_tasks == settings.max_parallel_tasks
        assert resolved.replanning_threshold == settings.replanning_threshold
        assert resolved.max_replans == settings.max_replans

    def test_explicit_overrides_base(self) -> None:
        resolved = resolve_options(
            PlanOptions(max_parallel_tasks=5),
            base={"strategy": "parallel", "max_parallel_tasks": 2, "max_replans": 1},
        )
        assert resolved.strategy == PlanningStrategy.PARALLEL
        assert resolved.max_parallel_tasks == 5
        assert resolved.max_replans == 1


class TestPlanBuilder:
    async def test_sequential_plan(self) -> None:
        llm = make_llm("1. Draft outline\n2. Write draft\n3. Edit draft")
        plan = await PlanBuilder(llm).create_plan(
            "Write a blog post", PlanOptions(strategy=PlanningStrategy.SEQUENTIAL)
        )

        assert plan.status == PlanStatus.CREATED
        assert plan.progress == 0
        assert plan.original_task == "Write a blog post"
        assert plan.strategy == PlanningStrategy.SEQUENTIAL
        assert [t.description for t in plan.tasks] == [
            "Draft outline",
            "Write draft",
            "Edit draft",
        ]
        outline, draft, edit = plan.tasks
        assert outline.dependencies == ()
        assert draft.dependencies == (outline.id,)
        assert edit.dependencies == (draft.id,)
        assert plan.estimated_completion_time is not None
        assert "sequential plan" in llm.prompts[0]
        assert "Write a blog post" in llm.prompts[0]

    async def test_parallel_plan_elicits_dependencies(self) -> None:
        llm = make_llm("1. A\n2. B\n3. C", "placeholder")
        builder = PlanBuilder(llm)

        # Script the dependency response once ids exist: patch generate to
        # answer from the dependency prompt itself.
        original_generate = llm.generate

        async def generate(prompt: str) -> str:
            text = await original_generate(prompt)
            if "depends on" not in prompt:
                return text
            ids = [line.split("(ID: ")[1].rstrip(")") for line in prompt.splitlines()
                   if "(ID: " in line]
            return (
                f"Task 1 ({ids[0]}): [none]\n"
                f"Task 2 ({ids[1]}): [none]\n"
                f"Task 3 ({ids[2]}): [{ids[0]}, {ids[1]}]"
            )

        llm.generate = generate  # type: ignore[method-assign]

        plan = await builder.create_plan(
            "Objective", PlanOptions(strategy=PlanningStrategy.PARALLEL)
        )
        a, b, c = plan.tasks
        assert a.dependencies == ()
        assert b.dependencies == ()
        assert set(c.dependencies) == {a.id, b.id}
        assert len(llm.call_history) == 2
        assert plan.metadata["plan_options"]["strategy"] == "parallel"

    async def test_parallel_plan_infers_dependencies_from_unparsed_reply(self) -> None:
        llm = make_llm(
            "1. Research competitor pricing models\n2. Review competitor pricing models",
            "I cannot tell.",
        )
        plan = await PlanBuilder(llm).create_plan(
            "Objective", PlanOptions(strategy=PlanningStrategy.PARALLEL)
        )
        research, review = plan.tasks
        assert research.dependencies == ()
        assert review.dependencies == (research.id,)

    async def test_parallel_plan_keeps_explicit_none_reply(self) -> None:
        llm = make_llm(
            "1. Research competitor pricing models\n2. Review competitor pricing models",
            "placeholder",
        )
        original_generate = llm.generate

        async def generate(prompt: str) -> str:
            text = await original_generate(prompt)
            if "depends on" not in prompt:
                return text
            ids = [line.split("(ID: ")[1].rstrip(")") for line in prompt.splitlines()
                   if "(ID: " in line]
            return f"Task 1 ({ids[0]}): [none]\nTask 2 ({ids[1]}): [none]"

        llm.generate = generate  # type: ignore[method-assign]

        plan = await PlanBuilder(llm).create_plan(
            "Objective", PlanOptions(strategy=PlanningStrategy.PARALLEL)
        )
        assert [t.dependencies for t in plan.tasks] == [(), ()]

    async def test_parallel_plan_with_no_steps_skips_dependency_call(self) -> None:
        llm = make_llm("")
        plan = await PlanBuilder(llm).create_plan(
            "Objective", PlanOptions(strategy=PlanningStrategy.PARALLEL)
        )
        assert plan.tasks == ()
        assert len(llm.call_history) == 1

    async def test_hierarchical_plan(self) -> None:
        llm = make_llm(HIERARCHICAL_RESPONSE)
        plan = await PlanBuilder(llm).create_plan(
            "Objective", PlanOptions(strategy=PlanningStrategy.HIERARCHICAL)
        )
        assert len(plan.tasks) == 2
        assert len(flatten_tasks(plan.tasks)) == 8
        assert "PHASE 1: [Name]" in llm.prompts[0]
        assert "adaptive" not in plan.metadata

    async def test_adaptive_plan_carries_bookkeeping(self) -> None:
        llm = make_llm(HIERARCHICAL_RESPONSE)
        plan = await PlanBuilder(llm).create_plan(
            "Objective",
            PlanOptions(
                strategy=PlanningStrategy.ADAPTIVE,
                replanning_threshold=0.5,
                max_replans=2,
            ),
        )
        assert plan.strategy == PlanningStrategy.ADAPTIVE
        assert plan.adaptive_options.replanning_threshold == 0.5
        assert plan.adaptive_options.max_replans == 2
        assert plan.adaptive_options.current_replan_count == 0

    async def test_collaborator_errors_propagate(self) -> None:
        llm = make_llm(RuntimeError("model offline"))
        with pytest.raises(RuntimeError, match="model offline"):
            await PlanBuilder(llm).create_plan(
                "Objective", PlanOptions(strategy=PlanningStrategy.SEQUENTIAL)
            )

    async def test_emits_plan_created(self, event_bus: EventBus) -> None:
        llm = make_llm("1. Only step")
        plan = await PlanBuilder(llm, event_bus, run_id="run_1").create_plan(
            "Objective", PlanOptions(strategy=PlanningStrategy.SEQUENTIAL)
        )
        events = await collect_events(event_bus, "run_1")
        assert [e.type for e in events] == [EventType.PLAN_CREATED]
        assert events[0].plan_id == plan.id
        assert events[0].data == {"strategy": "sequential", "task_count": 1}
