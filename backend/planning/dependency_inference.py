"""Heuristic dependency inference for flat task lists.

Used when a collaborator's dependency reply yields nothing usable. Four
passes add edges between tasks, then cycles are broken and each task's
dependency count is capped:

1. Dependency phrases in the planning text ("draft ... after the outline")
   and consumer wording ("based on the ...") pointing at research tasks
2. Task-type ordering (research before analysis before writing ...)
3. Information flow ("compile findings" feeds "review findings")
4. Keyword similarity, ordered by early/late wording

Also provides the dependency graph with its critical path and a plain-text
rendering of it.
"""

import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

import structlog
from pydantic import BaseModel, ConfigDict, Field

from models.plan import Task

logger = structlog.get_logger()

# Lower levels happen earlier.
TASK_TYPE_LEVELS: dict[str, int] = {
    "research": 1,
    "data-gathering": 1,
    "search": 1,
    "analysis": 2,
    "evaluation": 2,
    "interpretation": 2,
    "planning": 3,
    "design": 3,
    "writing": 4,
    "implementation": 4,
    "creation": 4,
    "review": 5,
    "testing": 5,
    "validation": 5,
    "refinement": 6,
    "finalization": 7,
}
DEFAULT_TYPE_LEVEL = 3

# Checked in order when no task type name appears in the description.
_KEYWORD_LEVELS: tuple[tuple[tuple[str, ...], int], ...] = (
    (("find", "search", "gather"), TASK_TYPE_LEVELS["research"]),
    (("analyze", "examine"), TASK_TYPE_LEVELS["analysis"]),
    (("write", "create", "develop"), TASK_TYPE_LEVELS["writing"]),
    (("review", "test", "check"), TASK_TYPE_LEVELS["review"]),
)

DEPENDENCY_PHRASES: tuple[str, ...] = (
    "depends on",
    "after",
    "following",
    "based on",
    "using",
    "utilizing",
    "with input from",
    "building on",
    "extending",
    "requires",
    "needs",
    "once",
    "when",
    "subsequent to",
)

# A task worded like a consumer depends on every task worded like a producer.
_CONSUMER_MARKERS = ("using the", "based on", "with the results", "analyze the")
_PRODUCER_MARKERS = ("research", "collect", "gather", "find", "identify", "search")

INFO_TYPES: tuple[str, ...] = (
    "data",
    "research",
    "analysis",
    "results",
    "findings",
    "report",
    "documentation",
    "design",
    "requirements",
    "feedback",
    "metrics",
    "recommendations",
    "insights",
)
_OUTPUT_VERBS = ("generate", "create", "produce", "develop", "write", "prepare", "compile")
_INPUT_VERBS = ("using", "based on", "from", "analyze", "review", "with")

_STOP_WORDS = frozenset({
    "the", "and", "for", "with", "this", "that", "from", "then", "than",
    "each", "have", "what", "will", "about", "when", "where", "which",
    "their", "there", "would", "could", "should", "these", "those", "other",
})
_EARLY_WORDS = ("initial", "first", "begin", "start", "research", "gather", "plan")
_LATE_WORDS = ("review", "finalize", "test", "evaluate", "polish", "refine", "final")

_WORD_SPLIT_RE = re.compile(r"\W")

_VISITING = 1
_DONE = 2


class InferenceOptions(BaseModel):
    """Which passes run and how many dependencies a task may keep."""

    model_config = ConfigDict(frozen=True)

    enable_type_hierarchy: bool = True
    enable_information_flow: bool = True
    enable_content_similarity: bool = True
    similarity_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    max_dependencies_per_task: int = Field(default=3, ge=1)


@dataclass(frozen=True)
class DependencyEdge:
    """``to_id`` depends on ``from_id``."""

    from_id: str
    to_id: str
    weight: int = 1


@dataclass(frozen=True)
class DependencyGraph:
    tasks: tuple[Task, ...]
    edges: tuple[DependencyEdge, ...]
    critical_path: tuple[str, ...]


# ---------------------------------------------------------------------------
# Text features
# ---------------------------------------------------------------------------


def extract_keywords(text: str) -> list[str]:
    """Lower-cased words longer than three characters, stop words removed."""
    return [
        word
        for word in _WORD_SPLIT_RE.split(text.lower())
        if len(word) > 3 and word not in _STOP_WORDS
    ]


def task_type_level(description: str) -> int:
    """Position of a task in the research → finalization ordering."""
    desc = description.lower()
    levels = [level for name, level in TASK_TYPE_LEVELS.items() if name in desc]
    if levels:
        return min(levels)
    for words, level in _KEYWORD_LEVELS:
        if any(word in desc for word in words):
            return level
    return DEFAULT_TYPE_LEVEL


def sequence_position(description: str) -> int:
    """Rough 1-10 position from early/late wording, 5 when neutral."""
    desc = description.lower()
    position = 5
    position -= 2 * sum(1 for word in _EARLY_WORDS if word in desc)
    position += 2 * sum(1 for word in _LATE_WORDS if word in desc)
    return max(1, min(10, position))


def _information_flow(description: str) -> tuple[set[str], set[str]]:
    """(inputs, outputs) information types named in a description."""
    desc = description.lower()
    outputs = {
        info for info in INFO_TYPES
        if any(f"{verb} {info}" in desc for verb in _OUTPUT_VERBS)
    }
    inputs = {
        info for info in INFO_TYPES
        if any(f"{verb} {info}" in desc for verb in _INPUT_VERBS)
    }
    return inputs, outputs


# ---------------------------------------------------------------------------
# Inference passes
# ---------------------------------------------------------------------------


class _Dependencies:
    """Mutable dependency lists keyed by task id, in insertion order."""

    def __init__(self, tasks: Sequence[Task]) -> None:
        self.tasks = list(tasks)
        self.by_id: dict[str, list[str]] = {
            task.id: list(task.dependencies) for task in tasks
        }

    def add(self, task: Task, dependency: Task, source: str) -> None:
        deps = self.by_id[task.id]
        if dependency.id == task.id or dependency.id in deps:
            return
        deps.append(dependency.id)
        logger.debug(
            "dependency_inferred",
            source=source,
            task=task.description[:60],
            depends_on=dependency.description[:60],
        )

    def depends(self, task: Task, other: Task) -> bool:
        return other.id in self.by_id[task.id]

    def pairs(self) -> Iterator[tuple[Task, Task]]:
        for task in self.tasks:
            for other in self.tasks:
                if other.id != task.id:
                    yield task, other

    def apply(self) -> list[Task]:
        return [
            task.model_copy(update={"dependencies": tuple(self.by_id[task.id])})
            for task in self.tasks
        ]


def _infer_from_text(deps: _Dependencies, context: str) -> None:
    text = context.lower()
    for task in deps.tasks:
        desc = task.description.lower()
        for phrase in DEPENDENCY_PHRASES:
            match = re.search(
                rf"{re.escape(desc)}\s*(?:\w+\s+){{0,5}}{re.escape(phrase)}\s+([^.,;\n]+)",
                text,
            )
            target = match.group(1).strip() if match else ""
            if not target:
                continue
            for other in deps.tasks:
                if other.id != task.id and target in other.description.lower():
                    deps.add(task, other, "text")


def _infer_from_wording(deps: _Dependencies) -> None:
    for task, other in deps.pairs():
        if any(marker in task.description.lower() for marker in _CONSUMER_MARKERS) and any(
            marker in other.description.lower() for marker in _PRODUCER_MARKERS
        ):
            deps.add(task, other, "input_output")


def _infer_from_task_types(deps: _Dependencies) -> None:
    levels = {task.id: task_type_level(task.description) for task in deps.tasks}
    keywords = {task.id: set(extract_keywords(task.description)) for task in deps.tasks}
    for task, other in deps.pairs():
        if levels[other.id] >= levels[task.id]:
            continue
        shared = {word for word in keywords[task.id] & keywords[other.id] if len(word) > 4}
        if shared:
            deps.add(task, other, "type_hierarchy")


def _infer_from_information_flow(deps: _Dependencies) -> None:
    flows = {task.id: _information_flow(task.description) for task in deps.tasks}
    for task, other in deps.pairs():
        inputs, _ = flows[task.id]
        _, outputs = flows[other.id]
        if inputs & outputs:
            deps.add(task, other, "information_flow")


def _infer_from_similarity(deps: _Dependencies, threshold: float) -> None:
    keywords = {task.id: set(extract_keywords(task.description)) for task in deps.tasks}
    for task, other in deps.pairs():
        union = keywords[task.id] | keywords[other.id]
        if not union:
            continue
        similarity = len(keywords[task.id] & keywords[other.id]) / len(union)
        if similarity <= threshold or deps.depends(task, other) or deps.depends(other, task):
            continue
        task_position = sequence_position(task.description)
        other_position = sequence_position(other.description)
        if task_position > other_position:
            deps.add(task, other, "similarity")
        elif other_position > task_position:
            deps.add(other, task, "similarity")


def _break_cycles(deps: dict[str, list[str]], order: Sequence[str]) -> list[tuple[str, str]]:
    """Drop every dependency that closes a cycle, in depth-first order.

    Returns the removed ``(task_id, dependency_id)`` pairs.
    """
    removed: list[tuple[str, str]] = []
    state: dict[str, int] = {}

    def visit(node: str) -> None:
        state[node] = _VISITING
        for dep in list(deps[node]):
            if dep not in deps:
                continue
            mark = state.get(dep)
            if mark == _VISITING:
                deps[node].remove(dep)
                removed.append((node, dep))
            elif mark is None:
                visit(dep)
        state[node] = _DONE

    for node in order:
        if node not in state:
            visit(node)
    return removed


def infer_dependencies(
    tasks: Sequence[Task],
    context: str = "",
    options: InferenceOptions | None = None,
) -> list[Task]:
    """Return ``tasks`` with heuristically inferred dependencies added.

    Existing dependencies are kept. The result is acyclic and no task has
    more than ``options.max_dependencies_per_task`` dependencies.

    Args:
        tasks: Flat task list
        context: Planning text the tasks came from, scanned for phrases
            like "X after Y"
        options: Pass toggles and limits

    Returns:
        A new list of tasks, in the original order
    """
    options = options or InferenceOptions()
    deps = _Dependencies(tasks)

    if context:
        _infer_from_text(deps, context)
        _infer_from_wording(deps)
    if options.enable_type_hierarchy:
        _infer_from_task_types(deps)
    if options.enable_information_flow:
        _infer_from_information_flow(deps)
    if options.enable_content_similarity:
        _infer_from_similarity(deps, options.similarity_threshold)

    removed = _break_cycles(deps.by_id, [task.id for task in deps.tasks])
    if removed:
        logger.debug("dependency_cycles_broken", removed=len(removed))

    for task_deps in deps.by_id.values():
        if len(task_deps) > options.max_dependencies_per_task:
            del task_deps[options.max_dependencies_per_task:]

    inferred = deps.apply()
    logger.info(
        "dependencies_inferred",
        task_count=len(inferred),
        dependency_count=sum(len(task.dependencies) for task in inferred),
    )
    return inferred


def remove_dependency_cycles(tasks: Sequence[Task]) -> list[Task]:
    """Return ``tasks`` with the dependencies that close cycles removed.

    Self-dependencies count as cycles. Ids outside ``tasks`` are left alone.
    """
    by_id = {task.id: list(task.dependencies) for task in tasks}
    removed = _break_cycles(by_id, [task.id for task in tasks])
    if not removed:
        return list(tasks)
    logger.info("dependency_cycles_broken", removed=len(removed))
    return [task.model_copy(update={"dependencies": tuple(by_id[task.id])}) for task in tasks]


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


def _critical_path(tasks: Sequence[Task]) -> tuple[str, ...]:
    """Longest chain of dependent tasks, earliest first.

    Ties go to the task listed first. Edges that would revisit a task on
    the current chain are ignored, so cyclic input still terminates.
    """
    deps = {task.id: [d for d in task.dependencies if d != task.id] for task in tasks}
    longest: dict[str, tuple[str, ...]] = {}
    on_chain: set[str] = set()

    def chain_to(node: str) -> tuple[str, ...]:
        if node in longest:
            return longest[node]
        on_chain.add(node)
        best: tuple[str, ...] = ()
        for dep in deps[node]:
            if dep in deps and dep not in on_chain:
                candidate = chain_to(dep)
                if len(candidate) > len(best):
                    best = candidate
        on_chain.discard(node)
        longest[node] = (*best, node)
        return longest[node]

    path: tuple[str, ...] = ()
    for task in tasks:
        candidate = chain_to(task.id)
        if len(candidate) > len(path):
            path = candidate
    return path


def build_dependency_graph(tasks: Sequence[Task]) -> DependencyGraph:
    """Edges for every dependency between ``tasks`` plus the critical path."""
    known = {task.id for task in tasks}
    edges = tuple(
        DependencyEdge(from_id=dep, to_id=task.id)
        for task in tasks
        for dep in task.dependencies
        if dep in known
    )
    return DependencyGraph(
        tasks=tuple(tasks),
        edges=edges,
        critical_path=_critical_path(tasks),
    )


def visualize_dependency_graph(tasks: Sequence[Task]) -> str:
    """Plain-text listing of tasks, their dependencies and the critical path."""
    graph = build_dependency_graph(tasks)
    descriptions = {task.id: task.description for task in tasks}

    lines = ["Dependency Graph:", "", "Tasks:"]
    lines.extend(f"- {task.id}: {task.description}" for task in tasks)

    lines.extend(["", "Dependencies:"])
    for task in tasks:
        if not task.dependencies:
            continue
        lines.append(f'- "{task.description}" depends on:')
        lines.extend(f'  - "{descriptions.get(dep, dep)}"' for dep in task.dependencies)

    lines.extend(["", "Critical Path:"])
    lines.extend(f'- "{descriptions[task_id]}"' for task_id in graph.critical_path)
    return "\n".join(lines)
