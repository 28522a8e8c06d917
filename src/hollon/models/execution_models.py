"""Models for brain calls, decoded inference results and execution outcomes."""

from pydantic import BaseModel, Field
from typing import Dict, List, Any, Literal, Optional, Union
from enum import Enum


class BrainCost(BaseModel):
    """Token usage and cost of a single brain call."""

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_cost_cents: float = Field(default=0.0, ge=0)


class BrainRequest(BaseModel):
    """Request sent to the inference port."""

    prompt: str = Field(description="User prompt")
    system_prompt: Optional[str] = Field(default=None)
    context: Dict[str, Any] = Field(
        default_factory=dict,
        description="Execution context, e.g. working_directory and task_id",
    )


class BrainResponse(BaseModel):
    """Response returned by the inference port."""

    success: bool = Field(default=True)
    output: str = Field(default="")
    duration_ms: int = Field(default=0, ge=0)
    cost: BrainCost = Field(default_factory=BrainCost)


# ---------------------------------------------------------------------------
# Decoded inference output
# ---------------------------------------------------------------------------


class SubtaskSpec(BaseModel):
    """One subtask proposed by a worker that asked for decomposition."""

    title: str
    description: str = Field(default="")
    type: str = Field(default="implementation")
    specialization: Optional[str] = Field(
        default=None,
        description="planning, implementation, testing or integration",
    )
    priority: Optional[str] = Field(default=None)
    affected_files: List[str] = Field(default_factory=list)
    required_skills: List[str] = Field(default_factory=list)
    acceptance_criteria: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(
        default_factory=list, description="Titles of sibling subtasks"
    )


class DecomposeResult(BaseModel):
    """The worker found the task too large and proposes subtasks."""

    kind: Literal["decompose"] = "decompose"
    reason: str = Field(default="")
    subtasks: List[SubtaskSpec] = Field(default_factory=list)


class SelfCorrectResult(BaseModel):
    """The worker wants another attempt with corrected instructions."""

    kind: Literal["self_correct"] = "self_correct"
    reason: str = Field(default="")


class DirectResult(BaseModel):
    """The worker implemented the task directly."""

    kind: Literal["direct"] = "direct"
    output: str


InferenceResult = Union[DecomposeResult, SelfCorrectResult, DirectResult]


# ---------------------------------------------------------------------------
# Team distribution plan
# ---------------------------------------------------------------------------


class WorkItem(BaseModel):
    """A work item a team manager distributes to a member or sub-team."""

    title: str
    description: str = Field(default="")
    assigned_to: Optional[str] = Field(
        default=None, description="Member name chosen by the manager"
    )
    team: Optional[str] = Field(
        default=None, description="Sub-team name for hierarchical distribution"
    )
    type: str = Field(default="implementation")
    priority: Optional[str] = Field(default=None)
    estimated_complexity: Optional[str] = Field(default=None)
    affected_files: List[str] = Field(default_factory=list)
    required_skills: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(
        default_factory=list, description="Titles of sibling work items"
    )


class DistributionPlan(BaseModel):
    """Structured output of a manager's distribution call."""

    subtasks: List[WorkItem] = Field(default_factory=list)
    reasoning: str = Field(default="")


# ---------------------------------------------------------------------------
# Quality gate and verification
# ---------------------------------------------------------------------------


class QualityValidationResult(BaseModel):
    """Outcome of the quality gate applied to a brain result."""

    passed: bool
    should_retry: bool = Field(default=False)
    reason: Optional[str] = Field(default=None)
    details: Dict[str, Any] = Field(default_factory=dict)


class CheckState(str, Enum):
    """Normalized state of a verification check."""

    PENDING = "pending"
    PASS = "pass"
    FAIL = "fail"
    SKIPPING = "skipping"
    CANCEL = "cancel"


class VerificationCheck(BaseModel):
    """A single build/test check attached to a change request."""

    name: str
    state: CheckState = Field(default=CheckState.PENDING)
    link: Optional[str] = Field(default=None)

    @property
    def is_complete(self) -> bool:
        return self.state != CheckState.PENDING

    @property
    def is_failure(self) -> bool:
        return self.state in (CheckState.FAIL, CheckState.CANCEL)


class VerificationStatus(BaseModel):
    """Aggregated verification state of a change request."""

    checks: List[VerificationCheck] = Field(default_factory=list)

    @property
    def all_complete(self) -> bool:
        return all(c.is_complete for c in self.checks)

    @property
    def passed(self) -> bool:
        return self.all_complete and not self.failed_checks

    @property
    def failed_checks(self) -> List[VerificationCheck]:
        return [c for c in self.checks if c.is_failure]


class CIFeedback(BaseModel):
    """Structured verification feedback stored in task metadata."""

    pr_url: str
    attempt: int
    failed_checks: List[str] = Field(default_factory=list)
    logs: str = Field(default="")
    summary: str = Field(default="")


# ---------------------------------------------------------------------------
# Execution outcomes
# ---------------------------------------------------------------------------


class SuccessOutcome(BaseModel):
    """Task reached READY_FOR_REVIEW."""

    kind: Literal["success"] = "success"
    task_id: str
    pr_url: Optional[str] = Field(default=None)
    worktree_path: Optional[str] = Field(default=None)
    branch_name: Optional[str] = Field(default=None)


class RetryOutcome(BaseModel):
    """Retryable failure; the caller may re-invoke execute_task."""

    kind: Literal["retry"] = "retry"
    task_id: str
    reason: str
    feedback: Optional[str] = Field(default=None)
    attempt: int = Field(default=0)


class TerminalOutcome(BaseModel):
    """Non-recoverable failure for this task."""

    kind: Literal["terminal"] = "terminal"
    task_id: str
    reason: str
    error_type: str = Field(default="Error")


class DecomposedOutcome(BaseModel):
    """Task was split into subtasks; children carry the work forward."""

    kind: Literal["decomposed"] = "decomposed"
    task_id: str
    subtask_ids: List[str] = Field(default_factory=list)
    reason: str = Field(default="")


ExecutionOutcome = Union[SuccessOutcome, RetryOutcome, TerminalOutcome, DecomposedOutcome]
