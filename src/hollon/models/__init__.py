"""Models package for the hollon orchestrator."""

from .task_models import (
    TaskType,
    TaskStatus,
    TaskPriority,
    ComplexityLevel,
    Task,
    WorkerLifecycle,
    WorkerStatus,
    ExperienceLevel,
    Role,
    Worker,
    Team,
    DocumentType,
    Document,
    PullRequestStatus,
    PullRequestRecord,
    TERMINAL_STATUSES,
    ACTIVE_ASSIGNMENT_STATUSES,
)
from .execution_models import (
    BrainCost,
    BrainRequest,
    BrainResponse,
    SubtaskSpec,
    DecomposeResult,
    SelfCorrectResult,
    DirectResult,
    InferenceResult,
    WorkItem,
    DistributionPlan,
    QualityValidationResult,
    CheckState,
    VerificationCheck,
    VerificationStatus,
    CIFeedback,
    SuccessOutcome,
    RetryOutcome,
    TerminalOutcome,
    DecomposedOutcome,
    ExecutionOutcome,
)
from .decomposition_models import (
    DependencyValidation,
    FileConflict,
    DecompositionStrategy,
    ComplexityAssessment,
    DistributionResult,
    InFlightDecompositionResult,
)

__all__ = [
    # Task models
    "TaskType",
    "TaskStatus",
    "TaskPriority",
    "ComplexityLevel",
    "Task",
    "WorkerLifecycle",
    "WorkerStatus",
    "ExperienceLevel",
    "Role",
    "Worker",
    "Team",
    "DocumentType",
    "Document",
    "PullRequestStatus",
    "PullRequestRecord",
    "TERMINAL_STATUSES",
    "ACTIVE_ASSIGNMENT_STATUSES",
    # Execution models
    "BrainCost",
    "BrainRequest",
    "BrainResponse",
    "SubtaskSpec",
    "DecomposeResult",
    "SelfCorrectResult",
    "DirectResult",
    "InferenceResult",
    "WorkItem",
    "DistributionPlan",
    "QualityValidationResult",
    "CheckState",
    "VerificationCheck",
    "VerificationStatus",
    "CIFeedback",
    "SuccessOutcome",
    "RetryOutcome",
    "TerminalOutcome",
    "DecomposedOutcome",
    "ExecutionOutcome",
    # Decomposition models
    "DependencyValidation",
    "FileConflict",
    "DecompositionStrategy",
    "ComplexityAssessment",
    "DistributionResult",
    "InFlightDecompositionResult",
]
