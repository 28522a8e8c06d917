"""Data models for dependency validation and task decomposition results."""

from pydantic import BaseModel, Field
from typing import Dict, List
from enum import Enum


class DependencyValidation(BaseModel):
    """Result of dependency graph validation."""

    is_valid: bool = Field(description="Whether dependencies form a valid DAG")
    has_cycles: bool = Field(default=False)
    cycles: List[List[str]] = Field(
        default_factory=list, description="Circular dependency chains"
    )
    missing_dependencies: List[str] = Field(
        default_factory=list, description="Referenced but unknown task IDs"
    )
    execution_order: List[str] = Field(
        default_factory=list, description="Valid execution order if DAG"
    )


class FileConflict(BaseModel):
    """A file touched by more than one task."""

    file: str
    task_ids: List[str] = Field(default_factory=list)


class DecompositionStrategy(str, Enum):
    """Recommendation from the complexity estimator."""

    DIRECT = "direct"
    RECOMMENDED = "recommended"
    MANDATORY = "mandatory"


class ComplexityAssessment(BaseModel):
    """Heuristic sizing of a task in estimated commits."""

    score: float = Field(ge=0, le=100)
    estimated_commits: int = Field(ge=1)
    strategy: DecompositionStrategy
    factors: Dict[str, float] = Field(default_factory=dict)
    reasoning: str = Field(default="")


class DistributionResult(BaseModel):
    """Tasks created while distributing an aggregate task through a team tree."""

    root_task_id: str
    created_task_ids: List[str] = Field(default_factory=list)
    sub_aggregate_ids: List[str] = Field(default_factory=list)
    leaf_task_ids: List[str] = Field(default_factory=list)
    blocked_task_ids: List[str] = Field(default_factory=list)
    ready_task_ids: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class InFlightDecompositionResult(BaseModel):
    """Subtasks and ephemeral workers created for a running task."""

    parent_task_id: str
    subtask_ids: List[str] = Field(default_factory=list)
    ephemeral_worker_ids: List[str] = Field(default_factory=list)
    blocked_task_ids: List[str] = Field(default_factory=list)
    ready_task_ids: List[str] = Field(default_factory=list)
    reason: str = Field(default="")
