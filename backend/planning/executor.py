"""Execution collaborator contract.

The engine hands each leaf task's description to a ``TaskExecutor`` and
records whatever it returns (or raises) on the task. ``LLMTaskExecutor`` is
the default implementation: it asks the text-generation model to carry out
the instruction directly.
"""

from typing import Any, Protocol, runtime_checkable

import structlog

from config import settings
from planning.llm import LLMClient
from planning.prompts import EXECUTOR_SYSTEM_PROMPT, build_task_execution_prompt

logger = structlog.get_logger()


@runtime_checkable
class TaskExecutor(Protocol):
    """Anything that performs a task description and returns a text result."""

    async def execute(self, description: str, **options: Any) -> str: ...


class LLMTaskExecutor:
    """Executes a task by prompting a model with its description.

    Run options are forwarded into the prompt as context. ``objective`` is
    recognised and rendered as the overall goal.
    """

    def __init__(
        self,
        llm_client: LLMClient | None = None,
        model: str | None = None,
    ) -> None:
        self.llm_client = llm_client or LLMClient(system_prompt=EXECUTOR_SYSTEM_PROMPT)
        self.model = model or settings.default_model

    async def execute(self, description: str, **options: Any) -> str:
        prompt = build_task_execution_prompt(
            description,
            objective=options.get("objective"),
            context=options.get("context"),
        )
        result = await self.llm_client.generate(
            prompt, model=self.model, system_prompt=EXECUTOR_SYSTEM_PROMPT
        )
        logger.debug(
            "task_executed",
            description_preview=description[:80],
            result_length=len(result),
        )
        return result
