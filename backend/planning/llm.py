"""Text-generation collaborator for the planning engine.

This module provides:
- TextGenerator: the narrow contract the engine consumes (prompt in, text out)
- LLMClient: LiteLLM-backed generator with bounded retries and a fallback model
- MockLLMClient: Scripted responses for tests and offline runs
"""

import asyncio
import time
from typing import Any, Protocol, runtime_checkable

import structlog
from litellm import ModelResponse, acompletion
from litellm.exceptions import (
    AuthenticationError,
    BadRequestError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from config import settings
from events.bus import EventBus
from events.types import EventType, LLMMetrics
from planning.notifier import PlanNotifier

logger = structlog.get_logger()

RETRYABLE_ERRORS = (RateLimitError, ServiceUnavailableError, Timeout)
FATAL_ERRORS = (AuthenticationError, BadRequestError)
MAX_BACKOFF_SECONDS = 4.0

Messages = list[dict[str, Any]]


@runtime_checkable
class TextGenerator(Protocol):
    """Anything that turns a prompt into response text asynchronously."""

    async def generate(self, prompt: str) -> str: ...


class LLMClient:
    """LiteLLM-backed TextGenerator.

    Each model gets ``retry_attempts`` retries on rate-limit, unavailable and
    timeout errors, with exponential backoff capped at ``MAX_BACKOFF_SECONDS``.
    The fallback model, when configured, gets a single attempt after the
    primary is exhausted. Authentication and bad-request errors are raised
    immediately. Successful calls publish LLM_CALL_COMPLETE with token
    metrics; final failures publish LLM_ERROR.
    """

    def __init__(
        self,
        event_bus: EventBus | None = None,
        run_id: str | None = None,
        default_model: str | None = None,
        fallback_model: str | None = None,
        retry_attempts: int | None = None,
        retry_delay: float = 1.0,
        temperature: float | None = None,
        system_prompt: str | None = None,
    ) -> None:
        self.event_bus = event_bus
        self.run_id = run_id
        self.default_model = default_model or settings.planner_model
        self.fallback_model = fallback_model or settings.llm_fallback_model
        self.retry_attempts = (
            retry_attempts if retry_attempts is not None
            else settings.llm_max_retries
        )
        self.retry_delay = retry_delay
        self.temperature = temperature if temperature is not None else settings.llm_temperature
        self.system_prompt = system_prompt

    async def generate(
        self,
        prompt: str,
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> str:
        """Send ``prompt`` as a user message and return the response text."""
        messages: Messages = []
        system = system_prompt or self.system_prompt
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return await self.complete(messages, model=model)

    async def complete(self, messages: Messages, model: str | None = None) -> str:
        """Run ``messages`` through the primary model, then the fallback.

        Raises:
            AuthenticationError, BadRequestError: On the first occurrence.
            The last transient error once every model is exhausted.
        """
        primary = model or self.default_model
        started = time.monotonic()
        last_error: Exception | None = None
        failures = 0

        for candidate, retries in self._attempt_plan(primary):
            for attempt in range(retries + 1):
                try:
                    completion = await self._request(messages, candidate)
                except FATAL_ERRORS as e:
                    logger.error(
                        "llm_call_failed_no_retry",
                        model=candidate,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    await self._emit_error(e, candidate, failures)
                    raise
                except RETRYABLE_ERRORS as e:
                    last_error = e
                    failures += 1
                    if attempt < retries:
                        delay = min(self.retry_delay * (2 ** attempt), MAX_BACKOFF_SECONDS)
                        logger.warning(
                            "llm_call_retry",
                            model=candidate,
                            attempt=attempt + 1,
                            error_type=type(e).__name__,
                            retry_delay=delay,
                        )
                        await self._async_sleep(delay)
                    continue
                return await self._record(completion, candidate, started, attempt + 1)

            logger.warning("llm_model_exhausted", model=candidate, attempts=retries + 1)

        if last_error is None:
            last_error = RuntimeError(f"LLM call to {primary} produced no attempts")
        await self._emit_error(last_error, primary, failures)
        raise last_error

    def _attempt_plan(self, primary: str) -> list[tuple[str, int]]:
        """(model, retries) pairs in the order they are tried."""
        plan = [(primary, self.retry_attempts)]
        if self.fallback_model and self.fallback_model != primary:
            plan.append((self.fallback_model, 0))
        return plan

    async def _request(self, messages: Messages, model: str) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
            "timeout": settings.llm_request_timeout_seconds,
        }
        if settings.llm_api_base:
            kwargs["api_base"] = settings.llm_api_base
        return await acompletion(**kwargs)

    async def _record(
        self,
        completion: ModelResponse,
        model: str,
        started: float,
        attempts: int,
    ) -> str:
        """Publish metrics for a successful completion and return its text."""
        usage = getattr(completion, "usage", None)
        metrics = LLMMetrics(
            model=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info("llm_call_complete", attempts=attempts, **metrics.model_dump())
        await self._emit(EventType.LLM_CALL_COMPLETE, **metrics.model_dump())
        return completion.choices[0].message.content or ""

    async def _emit_error(self, error: Exception, model: str, failures: int) -> None:
        await self._emit(
            EventType.LLM_ERROR,
            message=f"LLM call failed: {error}",
            error=str(error),
            error_type=type(error).__name__,
            model=model,
            retry_count=failures,
            fallback_model=self.fallback_model,
        )

    async def _emit(self, event_type: EventType, message: str = "", **data: Any) -> None:
        if self.run_id:
            await PlanNotifier(self.event_bus, self.run_id).emit(
                event_type, message=message, **data
            )

    async def _async_sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class MockLLMClient(LLMClient):
    """Scripted LLMClient for tests and offline runs.

    Responses are returned in order. A response may be a string or an
    Exception instance which is raised instead.

    Usage:
        >>> client = MockLLMClient(responses=["1. Draft outline\\n2. Write draft"])
        >>> text = await client.generate("Break this down")
    """

    def __init__(
        self,
        responses: list[str | Exception] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.responses = list(responses) if responses else []
        self.call_history: list[dict[str, Any]] = []
        self._response_index = 0

    @property
    def prompts(self) -> list[str]:
        """The user prompt of every recorded call, in order."""
        return [
            str(call["messages"][-1]["content"])
            for call in self.call_history
            if call["messages"]
        ]

    async def complete(self, messages: Messages, model: str | None = None) -> str:
        """Return the next scripted response.

        Raises:
            IndexError: If no more responses are available
            Exception: When the scripted entry is an exception
        """
        self.call_history.append({"messages": messages, "model": model or self.default_model})

        if self._response_index >= len(self.responses):
            raise IndexError("No more mock responses available")

        scripted = self.responses[self._response_index]
        self._response_index += 1
        if isinstance(scripted, Exception):
            raise scripted

        logger.debug(
            "mock_llm_call",
            response_index=self._response_index - 1,
            content_preview=scripted[:50],
        )
        return scripted

    def reset(self) -> None:
        """Reset the mock to start returning responses from the beginning."""
        self._response_index = 0
        self.call_history.clear()
