"""Event type definitions for the planning engine.

This module defines the progress notifications emitted while a plan is
created, executed, revised and summarized. Events are purely informational:
consumers may log or display them, but they never influence execution.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """All event types emitted by the planning engine.

    Events are categorized by:
    - Plan lifecycle: creation, completion, failure, revision
    - Task lifecycle: start, phase start, completion, failure
    - Observability: LLM call metrics and errors
    """

    # Plan lifecycle
    PLAN_CREATED = "plan_created"
    PLAN_COMPLETED = "plan_completed"
    PLAN_FAILED = "plan_failed"
    REPLANNING = "replanning"
    SUMMARY_READY = "summary_ready"

    # Task lifecycle
    TASK_STARTED = "task_started"
    PHASE_STARTED = "phase_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"

    # Observability
    LLM_CALL_COMPLETE = "llm_call_complete"
    LLM_ERROR = "llm_error"

    # Internal sentinel delivered when a run is closed
    RUN_CLOSED = "run_closed"


class PlanEvent(BaseModel):
    """A progress notification emitted during planning and execution.

    Each event includes:
    - type: The category of event (from EventType enum)
    - timestamp: Unix timestamp when the event occurred
    - run_id: Which planning run this event belongs to
    - plan_id: The plan snapshot the event refers to (if applicable)
    - task_id: The task the event refers to (if applicable)
    - message: Human-readable description ("Executing task: ...")
    - data: Event-specific payload

    Payload schemas by event type:

    PLAN_CREATED:
        - strategy: str - Strategy the plan was built for
        - task_count: int - Number of tasks across all tree levels

    TASK_FAILED:
        - error: str - Failure reason recorded on the task

    REPLANNING:
        - replan_count: int - Revisions made so far
        - failure_ratio: float - Failed fraction that triggered the revision

    PLAN_COMPLETED / PLAN_FAILED:
        - progress: int - Final progress percentage

    LLM_CALL_COMPLETE:
        - model: str - Model used
        - input_tokens: int - Input token count
        - output_tokens: int - Output token count
        - latency_ms: int - Latency in milliseconds

    LLM_ERROR:
        - error: str - Error message
        - error_type: str - Exception class name
        - model: str - Model that was called
        - retry_count: int - Retries attempted
    """

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    run_id: str
    plan_id: str | None = None
    task_id: str | None = None
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "task_started",
                    "timestamp": 1699876543.123,
                    "run_id": "run_abc123",
                    "plan_id": "5b0c3b5e-3f57-4c55-9a43-2f1f1c8e7d10",
                    "task_id": "0f8e1d55-4d7a-4c0e-b1b8-9d3b7d6c2a11",
                    "message": "Executing task: Draft outline",
                    "data": {},
                }
            ]
        }
    }


class LLMMetrics(BaseModel):
    """Token and latency metrics for a single LLM call.

    Attributes:
        model: The model identifier
        input_tokens: Number of tokens in the prompt
        output_tokens: Number of tokens in the response
        latency_ms: Time taken for the LLM call in milliseconds
    """

    model: str
    input_tokens: int
    output_tokens: int
    latency_ms: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used in this call."""
        return self.input_tokens + self.output_tokens
