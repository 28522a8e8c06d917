"""Data models for tasks, workers, teams and knowledge records."""

from pydantic import BaseModel, Field, model_validator
from typing import Dict, List, Any, Optional, Set
from enum import Enum
from datetime import datetime
from uuid import uuid4


class TaskType(str, Enum):
    """Kinds of tasks understood by the orchestrator."""

    AGGREGATE = "aggregate"  # Decomposed into children, never executed
    IMPLEMENTATION = "implementation"
    REVIEW = "review"
    RESEARCH = "research"
    SPIKE = "spike"


class TaskStatus(str, Enum):
    """Lifecycle states of a task."""

    PENDING = "pending"
    READY = "ready"
    BLOCKED = "blocked"  # Waiting on dependencies or children
    IN_PROGRESS = "in_progress"
    READY_FOR_REVIEW = "ready_for_review"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
    TaskStatus.CANCELLED,
}

ACTIVE_ASSIGNMENT_STATUSES = {
    TaskStatus.READY,
    TaskStatus.IN_PROGRESS,
    TaskStatus.READY_FOR_REVIEW,
}


class TaskPriority(str, Enum):
    """Ordered priority tiers. Lower rank is more urgent."""

    P1_CRITICAL = "P1"
    P2_HIGH = "P2"
    P3_MEDIUM = "P3"
    P4_LOW = "P4"

    @property
    def rank(self) -> int:
        return int(self.value[1:])


class ComplexityLevel(str, Enum):
    """Coarse complexity estimate attached to a task."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Task(BaseModel):
    """A unit of work, either a leaf or an aggregate over children."""

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique task ID")
    title: str = Field(description="Short task title")
    description: str = Field(default="", description="Detailed task description")
    type: TaskType = Field(default=TaskType.IMPLEMENTATION)
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    priority: TaskPriority = Field(default=TaskPriority.P3_MEDIUM)

    # Hierarchy
    parent_task_id: Optional[str] = Field(default=None, description="Parent task ID")
    depth: int = Field(default=0, ge=0, description="Distance from aggregate root")
    dependencies: Set[str] = Field(
        default_factory=set, description="Task IDs this task depends on"
    )

    # Assignment (exactly one of worker/team while assigned)
    assigned_worker_id: Optional[str] = Field(default=None)
    assigned_team_id: Optional[str] = Field(default=None)
    organization_id: Optional[str] = Field(default=None)
    project_id: Optional[str] = Field(default=None)

    # Semantic containers
    required_skills: Set[str] = Field(default_factory=set)
    tags: Set[str] = Field(default_factory=set)
    affected_files: Set[str] = Field(default_factory=set)
    acceptance_criteria: List[str] = Field(default_factory=list)

    # Sizing
    estimated_complexity: Optional[ComplexityLevel] = Field(default=None)
    story_points: Optional[int] = Field(default=None, ge=0)

    # Execution
    working_directory: Optional[str] = Field(
        default=None, description="Provisioned workspace path"
    )
    metadata: Dict[str, Any] = Field(default_factory=dict)
    retry_count: int = Field(default=0, ge=0)
    error_message: Optional[str] = Field(default=None)
    version: int = Field(default=0, description="Optimistic concurrency counter")

    # Timing
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)

    @model_validator(mode="after")
    def _check_single_assignee(self) -> "Task":
        if self.assigned_worker_id and self.assigned_team_id:
            raise ValueError(
                f"Task {self.id} cannot be assigned to both a worker and a team"
            )
        return self

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def is_aggregate(self) -> bool:
        return self.type == TaskType.AGGREGATE

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def ci_retry_count(self) -> int:
        return int(self.metadata.get("ci_retry_count", 0))

    def assign_worker(self, worker_id: str) -> None:
        """Assign to a worker, clearing any team assignment."""
        self.assigned_team_id = None
        self.assigned_worker_id = worker_id

    def assign_team(self, team_id: str) -> None:
        """Assign to a team, clearing any worker assignment."""
        self.assigned_worker_id = None
        self.assigned_team_id = team_id

    def unassign(self) -> None:
        self.assigned_worker_id = None
        self.assigned_team_id = None


class WorkerLifecycle(str, Enum):
    """Whether a worker outlives the task it was created for."""

    PERMANENT = "permanent"
    EPHEMERAL = "ephemeral"


class WorkerStatus(str, Enum):
    """Runtime state of a worker."""

    IDLE = "idle"
    WORKING = "working"
    PAUSED = "paused"
    ERROR = "error"


class ExperienceLevel(str, Enum):
    """Experience tier used as a small assignment bias."""

    JUNIOR = "junior"
    MID = "mid"
    SENIOR = "senior"
    LEAD = "lead"
    PRINCIPAL = "principal"


class Role(BaseModel):
    """Role definition carrying the capability set of a worker."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(description="Role name, e.g. 'Developer'")
    capabilities: Set[str] = Field(default_factory=set)
    available_for_ephemeral: bool = Field(
        default=False, description="Role may be used for ephemeral sub-workers"
    )


class Worker(BaseModel):
    """An autonomous agent (hollon) that executes leaf tasks."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(description="Human readable worker name")
    lifecycle: WorkerLifecycle = Field(default=WorkerLifecycle.PERMANENT)
    status: WorkerStatus = Field(default=WorkerStatus.IDLE)
    role: Role = Field(description="Role with capabilities")
    experience_level: ExperienceLevel = Field(default=ExperienceLevel.MID)
    team_id: Optional[str] = Field(default=None)
    organization_id: Optional[str] = Field(default=None)
    depth: int = Field(default=0, ge=0, description="0 for permanent workers")
    created_by_worker_id: Optional[str] = Field(default=None)
    system_prompt: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def is_ephemeral(self) -> bool:
        return self.lifecycle == WorkerLifecycle.EPHEMERAL


class Team(BaseModel):
    """A group of workers, optionally nested under a parent team."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(description="Team name")
    parent_team_id: Optional[str] = Field(default=None)
    manager_worker_id: Optional[str] = Field(default=None)
    member_ids: Set[str] = Field(default_factory=set)
    organization_id: Optional[str] = Field(default=None)


class DocumentType(str, Enum):
    """Types of persisted knowledge records."""

    KNOWLEDGE = "knowledge"
    TASK_RESULT = "task_result"
    SPIKE_REPORT = "spike_report"


class Document(BaseModel):
    """Knowledge or result record produced by or available to workers."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str
    content: str = Field(default="")
    type: DocumentType = Field(default=DocumentType.KNOWLEDGE)
    tags: Set[str] = Field(default_factory=set)
    task_id: Optional[str] = Field(default=None)
    worker_id: Optional[str] = Field(default=None)
    organization_id: Optional[str] = Field(default=None)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)


class PullRequestStatus(str, Enum):
    """Review status of an opened change request."""

    OPEN = "open"
    REVIEW_REQUESTED = "review_requested"
    APPROVED = "approved"
    MERGED = "merged"
    CLOSED = "closed"


class PullRequestRecord(BaseModel):
    """Change request registered with the review pipeline."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    task_id: str
    pr_number: int
    pr_url: str
    repository: str
    branch_name: str
    author_worker_id: str
    status: PullRequestStatus = Field(default=PullRequestStatus.OPEN)
    created_at: datetime = Field(default_factory=datetime.now)
