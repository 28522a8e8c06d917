"""Heuristic ambiguity detection and spike task generation."""

import logging
import re
from typing import List, Optional

from ..config import OrchestratorConfig
from ..decomposition.subtask_factory import SubtaskFactory
from ..errors import DecompositionBoundsError
from ..models.planning_models import (
    DecisionOptions,
    RecommendedAction,
    SpikeTask,
    UncertainTaskSummary,
    UncertaintyAnalysis,
    UncertaintyDetectionResult,
    UncertaintyFactors,
    UncertaintyLevel,
)
from ..models.task_models import Task, TaskPriority, TaskStatus, TaskType
from ..repositories import BaseRepository


logger = logging.getLogger(__name__)

MIN_DESCRIPTION_CHARS = 50
WELL_DESCRIBED_CHARS = 100
MIN_TITLE_CHARS = 10

REQUIREMENT_MARKERS = [
    "tbd",
    "todo",
    "unclear",
    "not sure",
    "investigate",
    "figure out",
    "?",
]

TECHNICAL_MARKERS = [
    "research",
    "explore",
    "evaluate",
    "prototype",
    "proof of concept",
    "poc",
    "spike",
    "feasibility",
    "new technology",
    "unknown",
]

EXTERNAL_DEPENDENCY_MARKERS = [
    "external",
    "third-party",
    "api",
    "integration",
    "other team",
    "pending",
    "waiting",
]

SCOPE_MARKERS = [
    "various",
    "multiple",
    "several",
    "many",
    "improve",
    "optimize",
    "refactor",
    "update",
]

_DEPENDENCY_SECTION = re.compile(r"\*\*Dependencies:\*\*\n((?:- .+\n?)+)")

LEVEL_SCORES = {
    UncertaintyLevel.LOW: 25,
    UncertaintyLevel.MEDIUM: 50,
    UncertaintyLevel.HIGH: 75,
    UncertaintyLevel.CRITICAL: 100,
}

SPIKE_BASE_HOURS = 4
SPIKE_HOURS_PER_FACTOR = 2
SPIKE_MAX_HOURS = 16


class UncertaintyAnalyzer:
    """
    Flags ambiguous tasks and proposes time-boxed spikes.

    PATTERN: Four independent keyword/length heuristics, level = factor count
    CRITICAL: Spikes are only generated for HIGH or CRITICAL tasks
    CRITICAL: Never spikes a spike, and at most one spike per parent
    GOTCHA: Keyword checks are substring matches, "api" also hits "capital"
    """

    def __init__(
        self,
        task_repository: BaseRepository[Task],
        config: Optional[OrchestratorConfig] = None,
        factory: Optional[SubtaskFactory] = None,
    ):
        """
        Initialize uncertainty analyzer.

        Args:
            task_repository: Task persistence port
            config: Orchestrator configuration (depth and fan-out limits)
            factory: Subtask builder enforcing those limits
        """
        self.tasks = task_repository
        self.config = config or OrchestratorConfig()
        self.factory = factory or SubtaskFactory(self.config)
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Factor detection
    # ------------------------------------------------------------------

    @staticmethod
    def has_lack_of_requirements(task: Task) -> bool:
        description = task.description or ""
        if len(description) < MIN_DESCRIPTION_CHARS:
            return True
        lowered = description.lower()
        return any(marker in lowered for marker in REQUIREMENT_MARKERS)

    @staticmethod
    def has_technical_unknowns(task: Task) -> bool:
        lowered = (task.description or "").lower()
        return any(marker in lowered for marker in TECHNICAL_MARKERS)

    async def has_dependency_uncertainty(self, task: Task) -> bool:
        """
        External dependencies declared in the description, or declared task
        dependencies that are unknown or owned by another project.
        """
        match = _DEPENDENCY_SECTION.search(task.description or "")
        if match:
            section = match.group(1).lower()
            if any(marker in section for marker in EXTERNAL_DEPENDENCY_MARKERS):
                return True

        for dependency_id in task.dependencies:
            dependency = await self.tasks.find_by_id(dependency_id)
            if dependency is None:
                return True
            if (
                task.project_id
                and dependency.project_id
                and dependency.project_id != task.project_id
            ):
                return True

        return False

    @staticmethod
    def has_scope_ambiguity(task: Task) -> bool:
        if len(task.title or "") < MIN_TITLE_CHARS:
            return True
        lowered = task.title.lower()
        return any(marker in lowered for marker in SCOPE_MARKERS)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze_task(self, task: Task) -> UncertaintyAnalysis:
        """
        Analyze a single task.

        Args:
            task: Task to analyze

        Returns:
            UncertaintyAnalysis with level, confidence and optional spike
        """
        factors = UncertaintyFactors()

        if self.has_lack_of_requirements(task):
            factors.lack_of_requirements = True
            factors.risk_factors.append("Requirements are incomplete or unclear")

        if self.has_technical_unknowns(task):
            factors.technical_unknowns = True
            factors.risk_factors.append("Technical approach is uncertain")

        if await self.has_dependency_uncertainty(task):
            factors.dependency_uncertainty = True
            factors.risk_factors.append("Dependencies are unclear or unstable")

        if self.has_scope_ambiguity(task):
            factors.scope_ambiguity = True
            factors.risk_factors.append("Scope is not well-defined")

        level = self.calculate_level(factors)

        suggested_spike = None
        if task.type != TaskType.SPIKE and level in (
            UncertaintyLevel.HIGH,
            UncertaintyLevel.CRITICAL,
        ):
            suggested_spike = self.generate_spike(task, factors)

        return UncertaintyAnalysis(
            task=task,
            uncertainty_level=level,
            factors=factors,
            confidence=self.calculate_confidence(task, factors),
            reasoning=self._reasoning(factors, level),
            suggested_spike=suggested_spike,
        )

    @staticmethod
    def calculate_level(factors: UncertaintyFactors) -> UncertaintyLevel:
        count = factors.count
        if count == 0:
            return UncertaintyLevel.LOW
        if count == 1:
            return UncertaintyLevel.MEDIUM
        if count == 2:
            return UncertaintyLevel.HIGH
        return UncertaintyLevel.CRITICAL

    @staticmethod
    def calculate_confidence(task: Task, factors: UncertaintyFactors) -> float:
        confidence = 100
        if len(task.description or "") < WELL_DESCRIBED_CHARS:
            confidence -= 20
        confidence -= factors.count * 15
        return float(max(0, min(100, confidence)))

    @staticmethod
    def _reasoning(factors: UncertaintyFactors, level: UncertaintyLevel) -> str:
        if not factors.risk_factors:
            return "Task is well-defined with clear requirements and approach"
        return f"{level.value.upper()} uncertainty: {'; '.join(factors.risk_factors)}"

    @staticmethod
    def determine_action(analysis: UncertaintyAnalysis) -> RecommendedAction:
        factors = analysis.factors
        if (
            analysis.uncertainty_level == UncertaintyLevel.CRITICAL
            and factors.technical_unknowns
        ):
            return RecommendedAction.EXPERT_CONSULT
        if factors.technical_unknowns:
            return RecommendedAction.PROTOTYPE
        if factors.lack_of_requirements or factors.scope_ambiguity:
            return RecommendedAction.RESEARCH
        return RecommendedAction.SPIKE

    @staticmethod
    def factor_labels(factors: UncertaintyFactors) -> List[str]:
        labels = []
        if factors.lack_of_requirements:
            labels.append("Incomplete requirements")
        if factors.technical_unknowns:
            labels.append("Technical unknowns")
        if factors.dependency_uncertainty:
            labels.append("Unclear dependencies")
        if factors.scope_ambiguity:
            labels.append("Ambiguous scope")
        return labels

    # ------------------------------------------------------------------
    # Spike synthesis
    # ------------------------------------------------------------------

    @staticmethod
    def spike_hours(factors: UncertaintyFactors) -> int:
        return min(
            SPIKE_MAX_HOURS, SPIKE_BASE_HOURS + factors.count * SPIKE_HOURS_PER_FACTOR
        )

    @staticmethod
    def uncertainty_type(factors: UncertaintyFactors) -> str:
        if factors.technical_unknowns:
            return "Technical Research"
        if factors.lack_of_requirements:
            return "Requirements Analysis"
        if factors.dependency_uncertainty:
            return "Dependency Investigation"
        if factors.scope_ambiguity:
            return "Scope Definition"
        return "General Research"

    def generate_spike(self, task: Task, factors: UncertaintyFactors) -> SpikeTask:
        """
        Build a time-boxed investigation task for an uncertain task.

        Args:
            task: The uncertain task
            factors: Detected risk factors

        Returns:
            Unsaved SpikeTask description
        """
        spike_type = self.uncertainty_type(factors)
        hours = self.spike_hours(factors)

        return SpikeTask(
            title=f"[SPIKE] {spike_type} for: {task.title}",
            description=self._spike_description(task, factors, hours),
            parent_task_id=task.id,
            timebox_hours=hours,
            acceptance_criteria=self._spike_acceptance_criteria(factors),
            deliverables=self._spike_deliverables(spike_type),
            uncertainty_addressed=", ".join(factors.risk_factors),
        )

    @staticmethod
    def _spike_description(task: Task, factors: UncertaintyFactors, hours: int) -> str:
        risk_lines = "\n".join(f"- {factor}" for factor in factors.risk_factors)
        return (
            f"**Purpose**: Time-boxed investigation to reduce uncertainty before "
            f'implementing "{task.title}"\n\n'
            f"**Uncertainty Factors**:\n{risk_lines}\n\n"
            "**Goal**: Gather enough information to confidently estimate and "
            "implement the parent task.\n\n"
            f"**Time-box**: {hours} hours maximum\n\n"
            "**Approach**:\n"
            "- Research and document findings\n"
            "- Create proof of concept if needed\n"
            "- Identify risks and mitigation strategies\n"
            "- Provide clear go/no-go recommendation\n\n"
            f"**Parent Task**: {task.title} (ID: {task.id})\n"
        )

    @staticmethod
    def _spike_acceptance_criteria(factors: UncertaintyFactors) -> List[str]:
        criteria = [
            "All identified uncertainties are investigated and documented",
            "Technical approach is validated (or alternatives identified)",
            "Risks and mitigation strategies are documented",
            "Clear recommendation is provided (proceed/pivot/abort)",
        ]
        if factors.lack_of_requirements:
            criteria.append("Requirements are clarified and documented")
        if factors.technical_unknowns:
            criteria.append("Proof of concept demonstrates feasibility")
        if factors.dependency_uncertainty:
            criteria.append("External dependencies are verified and documented")
        return criteria

    @staticmethod
    def _spike_deliverables(spike_type: str) -> List[str]:
        deliverables = [
            "Investigation summary document",
            "Recommendation with justification",
            "Updated task estimates (if proceeding)",
        ]
        if spike_type == "Technical Research":
            deliverables.append("Proof of concept code (if applicable)")
            deliverables.append("Technical approach documentation")
        elif spike_type == "Requirements Analysis":
            deliverables.append("Clarified requirements document")
            deliverables.append("User stories or acceptance criteria")
        return deliverables

    async def create_spike_task(self, parent: Task, spike: SpikeTask) -> Task:
        """
        Persist a spike as a PENDING, high-priority child of parent.

        Raises:
            DecompositionBoundsError: If the parent cannot take another child
        """
        existing = await self.tasks.count(parent_task_id=parent.id)
        self.factory.validate_bounds(parent, 1, existing)

        task = Task(
            title=spike.title,
            description=spike.description,
            type=TaskType.SPIKE,
            status=TaskStatus.PENDING,
            priority=TaskPriority.P2_HIGH,
            parent_task_id=spike.parent_task_id,
            depth=parent.depth + 1,
            organization_id=parent.organization_id,
            project_id=parent.project_id,
            acceptance_criteria=list(spike.acceptance_criteria),
            metadata={
                "timebox_hours": spike.timebox_hours,
                "deliverables": list(spike.deliverables),
                "uncertainty_addressed": spike.uncertainty_addressed,
            },
        )
        created = await self.tasks.create(task)

        self.logger.info(f"Created spike task '{spike.title}' for parent task {parent.id}")

        return created

    # ------------------------------------------------------------------
    # Batch detection
    # ------------------------------------------------------------------

    async def detect_uncertainty(
        self,
        tasks: Optional[List[Task]] = None,
        options: Optional[DecisionOptions] = None,
        project_id: Optional[str] = None,
    ) -> UncertaintyDetectionResult:
        """
        Analyze a pool of pending tasks.

        Args:
            tasks: Tasks to analyze (defaults to PENDING tasks of the project)
            options: Batch options (spike generation)
            project_id: Project filter when tasks is None

        Returns:
            UncertaintyDetectionResult report
        """
        options = options or DecisionOptions()

        if tasks is None:
            filters = {"status": TaskStatus.PENDING}
            if project_id:
                filters["project_id"] = project_id
            tasks = await self.tasks.find(**filters)

        if not tasks:
            return UncertaintyDetectionResult(
                recommendations=["No pending tasks found to analyze"]
            )

        analyses = [await self.analyze_task(task) for task in tasks]

        uncertain = [
            UncertainTaskSummary(
                task=a.task,
                uncertainty_level=a.uncertainty_level,
                uncertainty_factors=self.factor_labels(a.factors),
                recommended_action=self.determine_action(a),
                confidence=a.confidence,
            )
            for a in analyses
            if a.uncertainty_level != UncertaintyLevel.LOW
        ]

        spikes: List[SpikeTask] = []
        spike_task_ids: List[str] = []
        skipped: List[str] = []
        if options.auto_generate_spikes:
            for analysis in analyses:
                if analysis.suggested_spike is None:
                    continue
                if await self.tasks.find(
                    parent_task_id=analysis.task.id, type=TaskType.SPIKE
                ):
                    self.logger.debug(f"Task {analysis.task.id} already has a spike")
                    continue
                try:
                    created = await self.create_spike_task(
                        analysis.task, analysis.suggested_spike
                    )
                except DecompositionBoundsError as e:
                    self.logger.warning(f"Spike for task {analysis.task.id} skipped: {e}")
                    skipped.append(
                        f"Spike for '{analysis.task.title}' skipped, clarify it "
                        f"manually: {e}"
                    )
                    continue
                spikes.append(analysis.suggested_spike)
                spike_task_ids.append(created.id)

        average = sum(LEVEL_SCORES[a.uncertainty_level] for a in analyses) / len(analyses)

        self.logger.info(
            f"Uncertainty detection completed: {len(uncertain)}/{len(tasks)} "
            f"uncertain tasks, {len(spikes)} spikes generated"
        )

        return UncertaintyDetectionResult(
            uncertain_tasks=uncertain,
            spikes_generated=spikes,
            spike_task_ids=spike_task_ids,
            total_uncertain=len(uncertain),
            average_uncertainty_level=average,
            recommendations=self._recommendations(uncertain, spikes) + skipped,
        )

    @staticmethod
    def _recommendations(
        uncertain: List[UncertainTaskSummary], spikes: List[SpikeTask]
    ) -> List[str]:
        recommendations = []

        critical = sum(1 for t in uncertain if t.uncertainty_level == UncertaintyLevel.CRITICAL)
        if critical:
            recommendations.append(
                f"{critical} task(s) have critical uncertainty - consider expert consultation"
            )

        high = sum(1 for t in uncertain if t.uncertainty_level == UncertaintyLevel.HIGH)
        if high:
            recommendations.append(
                f"{high} task(s) require spike tasks before implementation"
            )

        if spikes:
            recommendations.append(
                f"{len(spikes)} spike task(s) generated - prioritize these to reduce uncertainty"
            )

        if len(uncertain) > 5:
            recommendations.append(
                "High number of uncertain tasks - consider breaking down or "
                "clarifying requirements"
            )

        return recommendations
