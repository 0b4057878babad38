"""Tests for planning/dependency_inference.py -- heuristic dependency edges."""

from models.plan import Task
from planning.dependency_inference import (
    InferenceOptions,
    build_dependency_graph,
    extract_keywords,
    infer_dependencies,
    remove_dependency_cycles,
    sequence_position,
    task_type_level,
    visualize_dependency_graph,
)
from tests.conftest import make_chain

ONLY_TEXT = InferenceOptions(
    enable_type_hierarchy=False,
    enable_information_flow=False,
    enable_content_similarity=False,
)


def _deps(tasks: list[Task]) -> dict[str, tuple[str, ...]]:
    return {task.description: task.dependencies for task in tasks}


class TestTextFeatures:
    def test_keywords_drop_short_and_stop_words(self) -> None:
        assert extract_keywords("Compile the findings from each interview") == [
            "compile",
            "findings",
            "interview",
        ]

    def test_type_level_prefers_earliest_named_type(self) -> None:
        assert task_type_level("Research and analysis of rivals") == 1
        assert task_type_level("Final review") == 5

    def test_type_level_keyword_fallback(self) -> None:
        assert task_type_level("Gather pricing pages") == 1
        assert task_type_level("Examine churn") == 2
        assert task_type_level("Develop landing page") == 4
        assert task_type_level("Check links") == 5
        assert task_type_level("Coordinate with legal") == 3

    def test_sequence_position(self) -> None:
        assert sequence_position("Collect quotes") == 5
        assert sequence_position("Initial research") == 1
        assert sequence_position("Final review and polish") == 10


class TestInferencePasses:
    def test_dependency_phrase_in_context(self) -> None:
        collect = Task(description="Collect survey data")
        summary = Task(description="Write summary")

        inferred = infer_dependencies(
            [collect, summary],
            context="Write summary after collect survey data. Then publish.",
            options=ONLY_TEXT,
        )

        assert _deps(inferred) == {
            "Collect survey data": (),
            "Write summary": (collect.id,),
        }

    def test_consumer_wording_points_at_research(self) -> None:
        research = Task(description="Research competitor pricing")
        prices = Task(description="Set prices based on the competitor pricing")

        inferred = infer_dependencies([research, prices], context="pricing plan", options=ONLY_TEXT)

        assert inferred[1].dependencies == (research.id,)
        assert inferred[0].dependencies == ()

    def test_wording_pass_needs_context(self) -> None:
        research = Task(description="Research competitor pricing")
        prices = Task(description="Set prices based on the competitor pricing")

        inferred = infer_dependencies([research, prices], options=ONLY_TEXT)

        assert all(task.dependencies == () for task in inferred)

    def test_task_type_hierarchy(self) -> None:
        research = Task(description="Research market trends")
        analysis = Task(description="Analysis of market trends")
        copy = Task(description="Write marketing copy")

        inferred = infer_dependencies(
            [research, analysis, copy],
            options=InferenceOptions(
                enable_information_flow=False, enable_content_similarity=False
            ),
        )

        assert _deps(inferred) == {
            "Research market trends": (),
            "Analysis of market trends": (research.id,),
            "Write marketing copy": (),
        }

    def test_information_flow(self) -> None:
        compile_ = Task(description="Compile findings from interviews")
        review = Task(description="Review findings with stakeholders")

        inferred = infer_dependencies(
            [review, compile_],
            options=InferenceOptions(
                enable_type_hierarchy=False, enable_content_similarity=False
            ),
        )

        assert inferred[0].dependencies == (compile_.id,)
        assert inferred[1].dependencies == ()

    def test_content_similarity_orders_by_wording(self) -> None:
        research = Task(description="Research competitor pricing models")
        review = Task(description="Review competitor pricing models")

        inferred = infer_dependencies(
            [review, research],
            options=InferenceOptions(
                enable_type_hierarchy=False, enable_information_flow=False
            ),
        )

        assert inferred[0].dependencies == (research.id,)
        assert inferred[1].dependencies == ()

    def test_unrelated_tasks_stay_independent(self) -> None:
        tasks = [Task(description=name) for name in ("Book venue", "Order badges")]
        inferred = infer_dependencies(tasks, context="Book venue. Order badges.")
        assert all(task.dependencies == () for task in inferred)

    def test_existing_dependencies_are_kept(self) -> None:
        first, second = make_chain("Book venue", "Order badges")
        inferred = infer_dependencies([first, second])
        assert inferred[1].dependencies == (first.id,)


class TestCyclesAndLimits:
    def test_mutual_information_flow_is_broken(self) -> None:
        report = Task(description="Create report using data")
        data = Task(description="Generate data using report")

        inferred = infer_dependencies(
            [report, data],
            options=InferenceOptions(
                enable_type_hierarchy=False, enable_content_similarity=False
            ),
        )

        assert inferred[0].dependencies == (data.id,)
        assert inferred[1].dependencies == ()

    def test_dependencies_capped_per_task(self) -> None:
        others = [Task(description=name) for name in ("alpha", "bravo", "charlie", "delta")]
        hub = Task(description="foxtrot", dependencies=tuple(t.id for t in others))

        inferred = infer_dependencies(
            [*others, hub], options=InferenceOptions(max_dependencies_per_task=2)
        )

        assert inferred[-1].dependencies == (others[0].id, others[1].id)

    def test_remove_cycles(self) -> None:
        a = Task(id="a", description="a", dependencies=("b",))
        b = Task(id="b", description="b", dependencies=("a",))
        c = Task(id="c", description="c", dependencies=("c", "missing"))

        cleaned = remove_dependency_cycles([a, b, c])

        assert [task.dependencies for task in cleaned] == [("b",), (), ("missing",)]

    def test_remove_cycles_leaves_acyclic_input_alone(self) -> None:
        tasks = make_chain("a", "b", "c")
        assert remove_dependency_cycles(tasks) == tasks


class TestDependencyGraph:
    def test_edges_and_critical_path(self) -> None:
        a, b, c = make_chain("outline", "draft", "edit")
        side = Task(description="pick title", dependencies=(a.id, "unknown"))

        graph = build_dependency_graph([a, b, c, side])

        assert [(e.from_id, e.to_id) for e in graph.edges] == [
            (a.id, b.id),
            (b.id, c.id),
            (a.id, side.id),
        ]
        assert graph.critical_path == (a.id, b.id, c.id)

    def test_critical_path_of_independent_tasks(self) -> None:
        tasks = [Task(description="x"), Task(description="y")]
        assert build_dependency_graph(tasks).critical_path == (tasks[0].id,)

    def test_critical_path_survives_cycles(self) -> None:
        a = Task(id="a", description="a", dependencies=("b",))
        b = Task(id="b", description="b", dependencies=("a",))
        assert len(build_dependency_graph([a, b]).critical_path) == 2

    def test_visualize(self) -> None:
        outline, draft = make_chain("Draft outline", "Write draft")

        text = visualize_dependency_graph([outline, draft])

        assert text.splitlines() == [
            "Dependency Graph:",
            "",
            "Tasks:",
            f"- {outline.id}: Draft outline",
            f"- {draft.id}: Write draft",
            "",
            "Dependencies:",
            '- "Write draft" depends on:',
            '  - "Draft outline"',
            "",
            "Critical Path:",
            '- "Draft outline"',
            '- "Write draft"',
        ]
