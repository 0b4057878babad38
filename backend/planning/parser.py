"""Response parser: collaborator prose to task graphs.

Three grammars are supported, each selected by the calling strategy:

1. Flat numbered list (``parse_numbered_list``)::

       1. Draft outline
       Step 2: Write draft

2. Dependency annotation for an already-built flat list
   (``parse_dependencies``)::

       Task 1 (3f2a...): [none]
       Task 2 (9c1e...): [3f2a...]

3. Hierarchical phases (``parse_hierarchical_plan``)::

       PHASE 1: Research
       - Description: Collect sources
       - Estimated effort: Low
         TASK 1.1: Search
         - Dependencies: none
         - Can run in parallel: Yes
         - Tools needed: web_search, notes
           SUBTASK 1.1.1: Query the index

None of the parsers raise on malformed input. They return the best partial
structure they can extract and drop references they cannot resolve.
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import structlog

from models.plan import DEFAULT_TASK_DURATION_MS, Task

logger = structlog.get_logger()

# Estimated effort levels in milliseconds
EFFORT_DURATIONS_MS = {
    "low": 60_000,
    "medium": 300_000,
    "high": 900_000,
}
PHASE_DEFAULT_DURATION_MS = 180_000
TASK_DEFAULT_DURATION_MS = 120_000
SUBTASK_DEFAULT_DURATION_MS = 60_000

# Lines shorter than this are ignored by the unnumbered fallback
MIN_FALLBACK_LINE_LENGTH = 10

PARALLEL_PRIORITY = 2
DEFAULT_PRIORITY = 1

_NUMBERED_ITEM_RE = re.compile(
    r"(?:^|\n)[ \t]*(?:Step\s*)?(\d+)[:.)\s]+(.+?)(?=\n[ \t]*(?:Step\s*)?\d+[:.)\s]+|\Z)",
    re.IGNORECASE | re.DOTALL,
)
_DEPENDENCY_TASK_RE = re.compile(r"Task\s*\d+\s*\(([^)]+)\)", re.IGNORECASE)
_DEPENDENCY_LIST_RE = re.compile(r":\s*\[([^\]]*)\]")
_PHASES_TAG_RE = re.compile(r"<phases>(.*?)</phases>", re.IGNORECASE | re.DOTALL)
_PHASE_RE = re.compile(r"^[ \t#*>]*PHASE\s+(\d+)\s*:\s*(.+?)[ \t*]*$", re.IGNORECASE | re.MULTILINE)
_TASK_RE = re.compile(
    r"^[ \t#*>-]*TASK\s+(\d+(?:\.\d+)?)\s*:\s*(.+?)[ \t*]*$", re.IGNORECASE | re.MULTILINE
)
_SUBTASK_RE = re.compile(
    r"^[ \t#*>-]*SUBTASK\s+(\d+(?:\.\d+)*)\s*:\s*(.+?)[ \t*]*$", re.IGNORECASE | re.MULTILINE
)
_REFERENCE_RE = re.compile(r"\d+(?:\.\d+)+")
_NONE_RE = re.compile(r"^\W*(none|n/?a|no|-)?\W*$", re.IGNORECASE)


# -----------------------------------------------------------------------------
# Grammar 1: flat numbered list
# -----------------------------------------------------------------------------


def parse_numbered_list(response: str) -> list[str]:
    """Extract step descriptions from a numbered list.

    Items may be written ``1. text``, ``1) text``, ``1: text`` or
    ``Step 1: text``. An item runs until the next numbered marker, so
    wrapped lines are joined into one description.

    If no numbered item is found, every non-empty line longer than
    ``MIN_FALLBACK_LINE_LENGTH`` characters becomes a step instead.

    Args:
        response: Raw collaborator text

    Returns:
        Step descriptions in order
    """
    steps: list[str] = []
    for match in _NUMBERED_ITEM_RE.finditer(response):
        description = " ".join(match.group(2).split())
        if description:
            steps.append(description)

    if steps:
        return steps

    fallback = [
        line.strip()
        for line in response.splitlines()
        if len(line.strip()) > MIN_FALLBACK_LINE_LENGTH
    ]
    if fallback:
        logger.debug("numbered_list_fallback_to_lines", line_count=len(fallback))
    return fallback


# -----------------------------------------------------------------------------
# Grammar 2: dependency annotation
# -----------------------------------------------------------------------------


def read_dependency_assignments(
    response: str, tasks: Sequence[Task]
) -> dict[str, tuple[str, ...]]:
    """Dependency ids per task id from ``Task N (id): [dep, ...]`` lines.

    Only ids belonging to ``tasks`` are kept. Lines naming an unknown task
    are ignored. An empty tuple means the reply said the task has none. A
    task listing itself keeps that entry.
    """
    known_ids = {task.id for task in tasks}
    assigned: dict[str, tuple[str, ...]] = {}

    for line in response.splitlines():
        task_match = _DEPENDENCY_TASK_RE.search(line)
        if not task_match:
            continue
        task_id = task_match.group(1).strip()
        if task_id not in known_ids:
            continue

        deps_match = _DEPENDENCY_LIST_RE.search(line, task_match.end())
        if not deps_match:
            continue

        deps_text = deps_match.group(1).strip()
        if not deps_text or "none" in deps_text.lower():
            assigned[task_id] = ()
            continue

        candidates = [dep.strip().strip("'\"` ") for dep in deps_text.split(",")]
        deps = tuple(dict.fromkeys(dep for dep in candidates if dep in known_ids))
        dropped = [dep for dep in candidates if dep and dep not in known_ids]
        if dropped:
            logger.debug("unknown_dependencies_dropped", task_id=task_id, dropped=dropped)
        assigned[task_id] = deps

    return assigned


def parse_dependencies(response: str, tasks: Sequence[Task]) -> list[Task]:
    """Assign dependencies from ``Task N (id): [dep, ...]`` lines.

    Tasks the response does not mention keep their current dependencies.
    A self-dependency is kept; the resulting single-node cycle is left for
    the scheduler to detect.

    Args:
        response: Raw collaborator text
        tasks: The flat task list the ids refer to

    Returns:
        A new list of tasks with dependencies assigned
    """
    assigned = read_dependency_assignments(response, tasks)
    return [
        task.model_copy(update={"dependencies": assigned[task.id]})
        if task.id in assigned
        else task
        for task in tasks
    ]


# -----------------------------------------------------------------------------
# Grammar 3: hierarchical phases
# -----------------------------------------------------------------------------


@dataclass
class _Block:
    """A header match plus the text that belongs to it."""

    label: str
    name: str
    body: str


def _split_blocks(text: str, pattern: re.Pattern[str]) -> list[_Block]:
    matches = list(pattern.finditer(text))
    blocks: list[_Block] = []
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        blocks.append(
            _Block(
                label=match.group(1),
                name=match.group(2).strip().strip("*").strip(),
                body=text[match.end():end],
            )
        )
    return blocks


def _own_section(body: str, child_pattern: re.Pattern[str] | None) -> str:
    """Text of a block before its first child header."""
    if child_pattern is None:
        return body
    child = child_pattern.search(body)
    return body[: child.start()] if child else body


def _field(section: str, name: str) -> str | None:
    match = re.search(
        rf"^[ \t]*[-*]?[ \t]*{name}\s*:[ \t]*(.+?)[ \t]*$",
        section,
        re.IGNORECASE | re.MULTILINE,
    )
    return match.group(1).strip() if match else None


def parse_effort(effort: str | None, default: int) -> int:
    """Map a Low/Medium/High effort label to milliseconds."""
    if not effort:
        return default
    normalized = effort.strip().lower()
    for level, duration in EFFORT_DURATIONS_MS.items():
        if level in normalized:
            return duration
    return default


def _is_yes(value: str | None) -> bool:
    return bool(value) and value.strip().lower().startswith(("yes", "true", "y"))


def _parse_tools(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    tools = [tool.strip().strip("[]").strip() for tool in re.split(r",\s*", value)]
    return tuple(tool for tool in tools if tool and tool.lower() not in ("none", "n/a"))


def _resolve_references(
    raw: str | None, earlier_labels: dict[str, str]
) -> tuple[str, ...] | None:
    """Resolve ``Dependencies:`` text against earlier siblings.

    Returns None when the field is absent or names nothing resolvable, and
    an empty tuple when it explicitly says there are no dependencies.
    """
    if raw is None:
        return None
    if _NONE_RE.match(raw):
        return ()
    resolved = [
        earlier_labels[ref] for ref in _REFERENCE_RE.findall(raw) if ref in earlier_labels
    ]
    if not resolved:
        logger.debug("hierarchical_dependencies_unresolved", raw=raw)
        return None
    return tuple(dict.fromkeys(resolved))


def _build_level(
    blocks: list[_Block],
    default_duration: int,
    child_pattern: re.Pattern[str] | None,
    build_children: Callable[[str], tuple[Task, ...]] | None,
    always_chain: bool = False,
) -> tuple[Task, ...]:
    """Build sibling tasks from header blocks.

    Siblings are chained to the previous sibling unless they are flagged
    as parallel (priority raised instead) or name explicit dependencies
    on earlier siblings. ``always_chain`` forces chaining (phases).
    """
    tasks: list[Task] = []
    labels: dict[str, str] = {}

    for block in blocks:
        own = _own_section(block.body, child_pattern)
        description = _field(own, "Description")
        parallel = _is_yes(_field(own, "Can run in parallel"))
        explicit = None if always_chain else _resolve_references(
            _field(own, "Dependencies"), labels
        )

        if explicit is not None and explicit:
            dependencies = explicit
        elif tasks and (always_chain or not parallel):
            dependencies = (tasks[-1].id,)
        else:
            dependencies = ()

        task = Task(
            description=f"{block.name}: {description}" if description else block.name,
            dependencies=dependencies,
            priority=PARALLEL_PRIORITY if parallel and not always_chain else DEFAULT_PRIORITY,
            estimated_duration=parse_effort(_field(own, "Estimated effort"), default_duration),
            resource_requirements=_parse_tools(_field(own, "Tools needed")),
            subtasks=build_children(block.body) if build_children else (),
        )
        tasks.append(task)
        labels[block.label] = task.id

    return tuple(tasks)


def _parse_subtasks(task_body: str) -> tuple[Task, ...]:
    return _build_level(
        _split_blocks(task_body, _SUBTASK_RE),
        SUBTASK_DEFAULT_DURATION_MS,
        child_pattern=None,
        build_children=None,
    )


def _parse_tasks(phase_body: str) -> tuple[Task, ...]:
    return _build_level(
        _split_blocks(phase_body, _TASK_RE),
        TASK_DEFAULT_DURATION_MS,
        child_pattern=_SUBTASK_RE,
        build_children=_parse_subtasks,
    )


def parse_hierarchical_plan(response: str) -> list[Task]:
    """Parse a PHASE/TASK/SUBTASK plan into a task tree.

    Phases become top-level tasks chained one after another; TASK blocks
    become their subtasks and SUBTASK blocks the subtasks of those.

    Degradation rules:
    - content inside ``<phases>`` tags is preferred when present
    - no PHASE header but TASK headers: the tasks become the top level
    - no headers at all: the numbered-list grammar is used and each item
      becomes a sequential leaf phase

    Args:
        response: Raw collaborator text

    Returns:
        Top-level tasks (possibly empty for empty input)
    """
    tagged = _PHASES_TAG_RE.search(response)
    content = tagged.group(1) if tagged else response

    phase_blocks = _split_blocks(content, _PHASE_RE)
    if phase_blocks:
        phases = _build_level(
            phase_blocks,
            PHASE_DEFAULT_DURATION_MS,
            child_pattern=_TASK_RE,
            build_children=_parse_tasks,
            always_chain=True,
        )
        logger.debug("hierarchical_plan_parsed", phase_count=len(phases))
        return list(phases)

    if _TASK_RE.search(content):
        logger.warning("hierarchical_plan_without_phases")
        return list(_parse_tasks(content))

    steps = parse_numbered_list(content)
    if steps:
        logger.warning("hierarchical_plan_fallback_to_list", step_count=len(steps))
    tasks: list[Task] = []
    for step in steps:
        tasks.append(
            Task(
                description=step,
                dependencies=(tasks[-1].id,) if tasks else (),
                estimated_duration=PHASE_DEFAULT_DURATION_MS,
            )
        )
    return tasks


def build_sequential_tasks(descriptions: Sequence[str]) -> list[Task]:
    """Create flat tasks where each one depends on its predecessor."""
    tasks: list[Task] = []
    for description in descriptions:
        tasks.append(
            Task(
                description=description,
                dependencies=(tasks[-1].id,) if tasks else (),
                estimated_duration=DEFAULT_TASK_DURATION_MS,
            )
        )
    return tasks
