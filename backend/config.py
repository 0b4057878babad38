"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the planning
engine. All settings can be overridden via environment variables or a .env file.
"""

import logging
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VALID_STRATEGIES = ("sequential", "parallel", "hierarchical", "adaptive")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        llm_api_base: Optional OpenAI-compatible endpoint passed to LiteLLM as
            ``api_base`` (self-hosted or proxy deployments).
        default_model: Model used by the default task executor.
        planner_model: Model used for decomposition, replanning and summaries.
        llm_fallback_model: Optional model tried once after the primary fails.
        llm_max_retries: Retries on transient LLM errors before giving up.
        llm_request_timeout_seconds: Timeout for a single LLM API call.
        llm_temperature: Sampling temperature for planning calls.
        planning_strategy: Default strategy when the caller does not pick one.
        max_parallel_tasks: Concurrency cap for the bounded-parallel executor.
        replanning_threshold: Failed-task fraction above which adaptive
            execution requests a revised plan.
        max_replans: Maximum revised plans per objective.
        parallel_poll_interval_seconds: Upper bound on how long the
            bounded-parallel executor waits before re-checking readiness.
        inferred_dependencies_per_task: Cap on heuristically inferred
            dependencies per task when a dependency reply is unusable.
        replan_result_preview_chars: Result preview length in replanning prompts.
        summary_result_preview_chars: Result preview length in summary prompts.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # LLM Configuration
    llm_api_base: str | None = None
    # Model names use LiteLLM provider prefixes where needed (e.g. anthropic/, gemini/)
    default_model: str = "gpt-4o-mini"
    planner_model: str = "gpt-4o"
    llm_fallback_model: str | None = None
    llm_max_retries: int = 3
    llm_request_timeout_seconds: int = 120
    llm_temperature: float = 0.7

    # Planning
    planning_strategy: str = "hierarchical"
    max_parallel_tasks: int = 3
    replanning_threshold: float = 0.3
    max_replans: int = 3
    parallel_poll_interval_seconds: float = 0.1
    inferred_dependencies_per_task: int = 4

    # Prompt rendering
    replan_result_preview_chars: int = 100
    summary_result_preview_chars: int = 200

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("planning_strategy", mode="before")
    @classmethod
    def normalize_strategy(cls, v: Any) -> str:
        """Lower-case the strategy name and reject unknown values."""
        value = str(v).strip().lower()
        if value not in VALID_STRATEGIES:
            raise ValueError(
                f"planning_strategy must be one of {', '.join(VALID_STRATEGIES)}"
            )
        return value

    @field_validator("replanning_threshold")
    @classmethod
    def clamp_threshold(cls, v: float) -> float:
        """Keep the replanning threshold inside [0, 1]."""
        return min(max(v, 0.0), 1.0)

    @field_validator("max_parallel_tasks", "inferred_dependencies_per_task")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        """Caps below one are raised to one."""
        return max(v, 1)

    model_config = SettingsConfigDict(
        # Support running from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)
