"""Data models for assignment planning, uncertainty and pivot analysis."""

from pydantic import BaseModel, Field
from typing import List, Optional
from enum import Enum
from datetime import datetime

from .task_models import Task, Worker


# ---------------------------------------------------------------------------
# Worker matching
# ---------------------------------------------------------------------------


class Availability(str, Enum):
    """Workload band of a worker."""

    AVAILABLE = "available"
    BUSY = "busy"
    OVERLOADED = "overloaded"


class AlternativeMatch(BaseModel):
    """A runner-up worker for a task."""

    worker: Worker
    score: float = Field(ge=0, le=100)
    reason: str


class AssignmentRecommendation(BaseModel):
    """Best worker for a task plus alternatives."""

    task: Task
    recommended_worker: Optional[Worker] = Field(default=None)
    match_score: float = Field(default=0.0, ge=0, le=100)
    reasoning: str = Field(default="")
    alternatives: List[AlternativeMatch] = Field(default_factory=list)


class TaskAssignment(BaseModel):
    """A task assigned during project planning."""

    task: Task
    worker: Worker
    match_score: float = Field(ge=0, le=100)


class WorkerWorkload(BaseModel):
    """Active workload of a worker."""

    worker: Worker
    active_task_ids: List[str] = Field(default_factory=list)
    total_tasks: int = Field(default=0)
    utilization_score: float = Field(default=0.0, ge=0, le=100)
    availability: Availability = Field(default=Availability.AVAILABLE)


class ResourcePlanningResult(BaseModel):
    """Result of assigning a set of tasks to workers."""

    assignments: List[TaskAssignment] = Field(default_factory=list)
    workloads: List[WorkerWorkload] = Field(default_factory=list)
    assigned_tasks: int = Field(default=0)
    unassigned_tasks: int = Field(default=0)
    average_match_score: float = Field(default=0.0)
    warnings: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Uncertainty
# ---------------------------------------------------------------------------


class UncertaintyLevel(str, Enum):
    """Uncertainty band derived from the number of risk factors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecommendedAction(str, Enum):
    """How to resolve an uncertain task."""

    SPIKE = "spike"
    RESEARCH = "research"
    PROTOTYPE = "prototype"
    EXPERT_CONSULT = "expert_consult"


class UncertaintyFactors(BaseModel):
    """Independent binary risk factors."""

    lack_of_requirements: bool = False
    technical_unknowns: bool = False
    dependency_uncertainty: bool = False
    scope_ambiguity: bool = False
    risk_factors: List[str] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.risk_factors)


class SpikeTask(BaseModel):
    """Time-boxed investigation proposed for an uncertain task."""

    title: str
    description: str
    parent_task_id: str
    timebox_hours: int = Field(ge=4, le=16)
    acceptance_criteria: List[str] = Field(default_factory=list)
    deliverables: List[str] = Field(default_factory=list)
    uncertainty_addressed: str = Field(default="")


class UncertaintyAnalysis(BaseModel):
    """Uncertainty analysis of a single task."""

    task: Task
    uncertainty_level: UncertaintyLevel
    factors: UncertaintyFactors
    confidence: float = Field(ge=0, le=100)
    reasoning: str
    suggested_spike: Optional[SpikeTask] = Field(default=None)


class UncertainTaskSummary(BaseModel):
    """Reported entry for a task at medium uncertainty or above."""

    task: Task
    uncertainty_level: UncertaintyLevel
    uncertainty_factors: List[str] = Field(default_factory=list)
    recommended_action: RecommendedAction
    confidence: float


class DecisionOptions(BaseModel):
    """Options for a batch uncertainty run."""

    auto_generate_spikes: bool = Field(default=False)


class UncertaintyDetectionResult(BaseModel):
    """Batch uncertainty report over a task pool."""

    uncertain_tasks: List[UncertainTaskSummary] = Field(default_factory=list)
    spikes_generated: List[SpikeTask] = Field(default_factory=list)
    spike_task_ids: List[str] = Field(default_factory=list)
    total_uncertain: int = Field(default=0)
    average_uncertainty_level: float = Field(default=0.0)
    recommendations: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Pivot
# ---------------------------------------------------------------------------


class PivotType(str, Enum):
    """Scope of a strategic change."""

    STRATEGIC = "strategic"
    TACTICAL = "tactical"
    TECHNICAL = "technical"


class ImpactLevel(str, Enum):
    """Impact band of a pivot on a task."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PivotRecommendation(str, Enum):
    """What to do with a task after a pivot."""

    CONTINUE = "continue"
    ADAPT = "adapt"
    DEFER = "defer"
    CANCEL = "cancel"


class AssetClassification(str, Enum):
    """Disposition of a task's existing assets."""

    REUSE = "reuse"
    ARCHIVE = "archive"
    DISCARD = "discard"


class PivotContext(BaseModel):
    """Description of a change in direction."""

    pivot_type: PivotType = Field(default=PivotType.STRATEGIC)
    old_direction: str
    new_direction: str
    affected_areas: List[str] = Field(default_factory=list)
    effective_date: Optional[datetime] = Field(default=None)


class PivotOptions(BaseModel):
    """Controls whether pivot analysis mutates the task pool."""

    dry_run: bool = Field(default=True)
    auto_archive_tasks: bool = Field(default=False)
    auto_create_replacements: bool = Field(default=False)
    preserve_completed_work: bool = Field(default=True)


class ImpactAssessment(BaseModel):
    """Alignment/cost scoring of one task."""

    task: Task
    alignment_score: float = Field(ge=0, le=100)
    adaptation_cost: float = Field(ge=0, le=100)
    impact_level: ImpactLevel
    recommendation: PivotRecommendation

    @property
    def combined_score(self) -> float:
        return (100 - self.alignment_score + self.adaptation_cost) / 2


class AssetAnalysis(BaseModel):
    """Asset disposition of one task."""

    task: Task
    classification: AssetClassification
    reusable_assets: List[str] = Field(default_factory=list)
    obsolete_assets: List[str] = Field(default_factory=list)
    reasoning: str = Field(default="")


class TaskRecreationPlan(BaseModel):
    """Replacement task proposed for discarded work."""

    title: str
    description: str
    priority: str
    reason: str
    replaces_task_id: str
    project_id: Optional[str] = Field(default=None)
    organization_id: Optional[str] = Field(default=None)
    reuse_assets: List[str] = Field(default_factory=list)


class AffectedTaskSummary(BaseModel):
    """Reported entry for a task touched by a pivot."""

    task: Task
    impact_level: ImpactLevel
    alignment_score: float
    adaptation_cost: float
    recommendation: PivotRecommendation
    asset_classification: AssetClassification
    recommendation_text: str
    estimated_effort_hours: float = Field(default=0.0)


class PivotAnalysisResult(BaseModel):
    """Full pivot impact report."""

    affected_tasks: List[AffectedTaskSummary] = Field(default_factory=list)
    recreation_plan: List[TaskRecreationPlan] = Field(default_factory=list)
    total_impact_score: float = Field(default=0.0)
    estimated_transition_hours: int = Field(default=0)
    cancelled_task_ids: List[str] = Field(default_factory=list)
    created_task_ids: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
