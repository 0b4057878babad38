"""Prompt templates for the planning engine.

This module contains every prompt the engine sends to the text-generation
collaborator:
- build_decomposition_prompt: flat numbered plan (sequential/parallel)
- build_dependency_prompt: dependency elicitation for a flat plan with ids
- build_hierarchical_prompt: PHASE/TASK/SUBTASK plan
- build_replanning_prompt: revised hierarchical plan after failures
- build_summary_prompt: final completion report
- EXECUTOR_SYSTEM_PROMPT / build_task_execution_prompt: default leaf executor

The hierarchical and replanning prompts request exactly the format parsed by
``planning.parser.parse_hierarchical_plan``.
"""

from collections.abc import Sequence

from models.plan import Task

# Output format shared by the hierarchical and replanning prompts
HIERARCHICAL_FORMAT = """\
<phases>
PHASE 1: [Name]
- Description: [Brief description]
- Estimated effort: [Low/Medium/High]

  TASK 1.1: [Name]
  - Description: [Detailed description]
  - Dependencies: [List of task IDs that must be completed first, if any]
  - Can run in parallel: [Yes/No]
  - Tools needed: [List of tools or resources needed]
  - Estimated effort: [Low/Medium/High]

    SUBTASK 1.1.1: [Name]
    - Description: [Atomic action description]
    - Dependencies: [List of subtask IDs that must be completed first]
    - Estimated effort: [Low/Medium/High]
</phases>"""

EXECUTOR_SYSTEM_PROMPT = """\
You are a focused task executor working on one step of a larger plan.

## Execution Contract
- Complete only the step you are given; other steps are handled separately.
- Use the overall objective and any provided context to stay consistent.
- Respond with the concrete outcome of the step, not with a plan for it.
- If the step cannot be completed, say exactly what is missing."""


def compose_prompt_sections(*sections: str) -> str:
    """Compose prompt sections into a single deterministic prompt."""
    cleaned = [section.strip() for section in sections if section and section.strip()]
    return "\n\n".join(cleaned)


def build_decomposition_prompt(objective: str, strategy: str = "sequential") -> str:
    """Ask for a numbered list of steps for a flat plan."""
    return compose_prompt_sections(
        "# Task Planning",
        f'I need to break down the following complex task into manageable steps:\n\n"{objective}"',
        f"""Please help me create a {strategy} plan by:

1. Analyzing what the task requires
2. Identifying the main components or stages
3. Breaking those down into specific, actionable steps
4. Determining any tools or resources needed for each step
5. Establishing dependencies between steps (what must happen before what)""",
        "Format your response as a numbered list with one step per number "
        '(for example "1. Gather requirements"). Keep each step self-contained.',
    )


def build_dependency_prompt(objective: str, tasks: Sequence[Task]) -> str:
    """Ask which already-decomposed steps each step depends on."""
    listing = "\n".join(
        f"{index}. {task.description} (ID: {task.id})"
        for index, task in enumerate(tasks, start=1)
    )
    first_id = tasks[0].id if tasks else "example-id"
    second_id = tasks[1].id if len(tasks) > 1 else "example-id"
    return compose_prompt_sections(
        f'I\'ve broken down the complex task "{objective}" into the following steps:',
        listing,
        "For each task, please identify which other tasks (if any) it depends on to start.\n"
        "A task with dependencies can only start after ALL its dependencies are completed.",
        f"""Format your response as:

Task 1 ({first_id}): [list of dependency IDs, or "none"]
Task 2 ({second_id}): [list of dependency IDs, or "none"]
...and so on""",
    )


def build_hierarchical_prompt(objective: str) -> str:
    """Ask for a PHASE/TASK/SUBTASK plan."""
    return compose_prompt_sections(
        "# Hierarchical Task Planning",
        f'I need to create a detailed hierarchical plan for the following complex task:\n\n"{objective}"',
        """Please help me by creating a comprehensive plan with:

1. Major phases of work (high-level tasks)
2. For each phase, break it down into specific subtasks
3. For complex subtasks, further decompose them into atomic actions
4. Identify dependencies between tasks (what must be completed before other tasks)
5. Indicate which tasks could be executed in parallel
6. Estimate relative effort for each task (low/medium/high)
7. Identify any specialized tools or resources needed for specific tasks""",
        "Format your response with clear hierarchical structure using the following format:",
        HIERARCHICAL_FORMAT,
        "Ensure the plan is comprehensive enough to fully accomplish the task "
        "but broken down into manageable pieces.",
    )


def build_replanning_prompt(
    objective: str,
    plan_text: str,
    completed_tasks: str,
    failed_tasks: str,
) -> str:
    """Ask for a revised hierarchical plan given what succeeded and failed."""
    return compose_prompt_sections(
        "# Adaptive Replanning",
        f'I was working on the following task:\n\n"{objective}"',
        f"My original plan was:\n{plan_text}",
        f"So far, I've completed the following tasks:\n{completed_tasks}",
        f"However, the following tasks failed or encountered problems:\n{failed_tasks}",
        """Given the current state and what we've learned so far, please help me revise my plan by:

1. Analyzing what went wrong with the failed tasks
2. Determining if we need to take a different approach
3. Creating replacement tasks or alternative paths to achieve the goal
4. Adjusting any dependencies in the remaining tasks
5. Preserving what worked well in the original plan""",
        "Provide the revised plan using exactly this format:",
        HIERARCHICAL_FORMAT,
    )


def build_summary_prompt(
    objective: str,
    status: str,
    progress: int,
    transcript: str,
) -> str:
    """Ask for a concise report of an executed plan."""
    completed = status == "completed"
    closing = "Please provide a concise summary of the overall result."
    if not completed:
        closing += " Include information about what failed and why."
    return compose_prompt_sections(
        f"I've {'completed' if completed else 'worked on'} the following complex task:\n"
        f'"{objective}"',
        f"Here's a summary of the execution:\n\n{transcript}",
        f"Overall Status: {status}\nProgress: {progress}%",
        closing,
    )


def build_task_execution_prompt(
    description: str,
    objective: str | None = None,
    context: str | None = None,
) -> str:
    """Prompt used by the default executor for a single leaf task."""
    return compose_prompt_sections(
        f"## Overall Objective\n{objective}" if objective else "",
        f"## Context\n{context}" if context else "",
        f"## Current Step\n{description}",
    )
