"""Orchestrator configuration with environment variable loading."""

import os
from typing import Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


class OrchestratorConfig(BaseModel):
    """Configuration for task orchestration, workspaces and verification."""

    # Repository / workspace
    base_branch: str = Field(
        default_factory=lambda: os.getenv("HOLLON_BASE_BRANCH", "main"),
        description="Branch new workspaces start from and PRs target",
    )
    remote_name: str = Field(
        default_factory=lambda: os.getenv("HOLLON_REMOTE", "origin"),
        description="Git remote used for fetch and push",
    )
    workspace_dirname: str = Field(
        default_factory=lambda: os.getenv("HOLLON_WORKSPACE_DIRNAME", ".workspaces"),
        description="Directory (sibling of the repository) holding workspaces",
    )
    repository_url: Optional[str] = Field(
        default_factory=lambda: os.getenv("HOLLON_REPOSITORY_URL"),
        description="Repository identifier recorded on pull requests",
    )
    skip_pull_requests: bool = Field(
        default_factory=lambda: _env_bool("HOLLON_SKIP_PR", "false"),
        description="Skip push/PR creation (local runs without a remote)",
    )

    # Decomposition limits
    max_task_depth: int = Field(
        default_factory=lambda: int(os.getenv("HOLLON_MAX_TASK_DEPTH", "3")),
        ge=1,
        description="Maximum task depth below an aggregate root",
    )
    max_subtasks_per_parent: int = Field(
        default_factory=lambda: int(os.getenv("HOLLON_MAX_SUBTASKS", "10")),
        ge=1,
        description="Maximum children per parent task",
    )
    max_ephemeral_depth: int = Field(
        default_factory=lambda: int(os.getenv("HOLLON_MAX_EPHEMERAL_DEPTH", "1")),
        ge=1,
        description="Maximum nesting of ephemeral sub-workers",
    )

    # Verification loop
    max_ci_retries: int = Field(
        default_factory=lambda: int(os.getenv("HOLLON_MAX_CI_RETRIES", "3")),
        ge=0,
        description="Verification failures tolerated before terminal failure",
    )
    verification_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("HOLLON_VERIFICATION_TIMEOUT", "600")),
        gt=0,
        description="Wall-clock limit for verification polling",
    )
    verification_poll_interval_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv("HOLLON_VERIFICATION_POLL_INTERVAL", "30")
        ),
        gt=0,
        description="Delay between verification polls",
    )
    no_checks_grace_polls: int = Field(
        default_factory=lambda: int(os.getenv("HOLLON_NO_CHECKS_GRACE_POLLS", "3")),
        ge=1,
        description="Polls without any reported check before a change request counts as unchecked",
    )
    max_feedback_chars: int = Field(
        default_factory=lambda: int(os.getenv("HOLLON_MAX_FEEDBACK_CHARS", "4000")),
        description="Truncation limit for verification logs kept as feedback",
    )

    # Assignment
    overload_threshold: int = Field(
        default_factory=lambda: int(os.getenv("HOLLON_OVERLOAD_THRESHOLD", "10")),
        description="Active tasks at which a worker counts as overloaded",
    )
    low_match_threshold: float = Field(
        default_factory=lambda: float(os.getenv("HOLLON_LOW_MATCH_THRESHOLD", "60")),
        description="Match score under which an assignment is flagged",
    )

    # Quality gate
    daily_cost_limit_cents: Optional[float] = Field(
        default_factory=lambda: _env_optional_float("HOLLON_DAILY_COST_LIMIT_CENTS"),
        description="Per-call cost ceiling enforced by the quality gate",
    )

    # Brain (OpenAI adapter)
    openai_api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("OPENAI_API_KEY"),
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default_factory=lambda: os.getenv("HOLLON_OPENAI_MODEL", "gpt-4o-mini"),
        description="Model used by the OpenAI brain adapter",
    )
    cost_per_1k_input_cents: float = Field(
        default_factory=lambda: float(os.getenv("HOLLON_COST_PER_1K_INPUT_CENTS", "0.015")),
    )
    cost_per_1k_output_cents: float = Field(
        default_factory=lambda: float(os.getenv("HOLLON_COST_PER_1K_OUTPUT_CENTS", "0.06")),
    )

    # Progress events
    redis_url: Optional[str] = Field(
        default_factory=lambda: os.getenv("HOLLON_REDIS_URL"),
        description="Redis URL for publishing progress events (optional)",
    )
    progress_channel: str = Field(
        default_factory=lambda: os.getenv("HOLLON_PROGRESS_CHANNEL", "hollon:progress"),
    )
