"""Impact analysis of a strategic change in direction on open tasks."""

import logging
import math
import re
from typing import List, Optional, Set

from ..models.planning_models import (
    AffectedTaskSummary,
    AssetAnalysis,
    AssetClassification,
    ImpactAssessment,
    ImpactLevel,
    PivotAnalysisResult,
    PivotContext,
    PivotOptions,
    PivotRecommendation,
    TaskRecreationPlan,
)
from ..models.task_models import (
    ComplexityLevel,
    Task,
    TaskPriority,
    TaskStatus,
)
from ..repositories import BaseRepository


logger = logging.getLogger(__name__)

OPEN_STATUSES = {
    TaskStatus.PENDING,
    TaskStatus.READY,
    TaskStatus.IN_PROGRESS,
    TaskStatus.READY_FOR_REVIEW,
    TaskStatus.BLOCKED,
}

MID_EXECUTION_STATUSES = {TaskStatus.IN_PROGRESS, TaskStatus.READY_FOR_REVIEW}

ALIGNMENT_STATUS_BONUS = {
    TaskStatus.READY_FOR_REVIEW: 15,
    TaskStatus.IN_PROGRESS: 10,
}

COST_STATUS_PENALTY = {
    TaskStatus.READY_FOR_REVIEW: 30,
    TaskStatus.IN_PROGRESS: 20,
    TaskStatus.READY: 10,
}

COST_COMPLEXITY_PENALTY = {
    ComplexityLevel.HIGH: 20,
    ComplexityLevel.MEDIUM: 10,
}

RECOMMENDATION_TEXT = {
    PivotRecommendation.CONTINUE: "Continue as planned - aligns well with new direction",
    PivotRecommendation.ADAPT: "Adapt task to align with new direction",
    PivotRecommendation.DEFER: "Defer for review - may need significant changes",
    PivotRecommendation.CANCEL: "Cancel and recreate if still needed",
}

_WORD = re.compile(r"[a-z0-9][a-z0-9\-]*")


def direction_keywords(direction: str) -> Set[str]:
    """Distinct lowercase words of at least two characters."""
    return {word for word in _WORD.findall(direction.lower()) if len(word) >= 2}


def count_keyword_hits(text: str, keywords: Set[str]) -> int:
    lowered = text.lower()
    return sum(
        1 for word in keywords if re.search(rf"\b{re.escape(word)}\b", lowered)
    )


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


class PivotImpactAnalyzer:
    """
    Scores open tasks against a change in direction and plans the transition.

    PATTERN: alignment/cost scores -> impact bucket -> recommendation -> asset class
    CRITICAL: Tasks mid-execution are never recommended for cancellation
    GOTCHA: Nothing is mutated unless PivotOptions.dry_run is False
    """

    def __init__(self, task_repository: BaseRepository[Task]):
        """
        Initialize pivot analyzer.

        Args:
            task_repository: Task persistence port
        """
        self.tasks = task_repository
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    @staticmethod
    def _task_text(task: Task) -> str:
        return f"{task.title} {task.description}"

    def alignment_score(self, task: Task, context: PivotContext) -> float:
        """Base 50, +10 per new-direction word, -10 per old-direction word."""
        text = self._task_text(task)
        new_hits = count_keyword_hits(text, direction_keywords(context.new_direction))
        old_hits = count_keyword_hits(text, direction_keywords(context.old_direction))

        score = 50 + min(30, new_hits * 10) - min(30, old_hits * 10)
        score += ALIGNMENT_STATUS_BONUS.get(task.status, 0)

        return _clamp(score)

    @staticmethod
    def adaptation_cost(task: Task, alignment: float) -> float:
        cost = 50 + (100 - alignment) * 0.3
        cost += COST_STATUS_PENALTY.get(task.status, 0)
        cost += COST_COMPLEXITY_PENALTY.get(task.estimated_complexity, 0)
        return _clamp(cost)

    @staticmethod
    def impact_level(alignment: float, cost: float) -> ImpactLevel:
        combined = (100 - alignment + cost) / 2
        if combined >= 75:
            return ImpactLevel.CRITICAL
        if combined >= 60:
            return ImpactLevel.HIGH
        if combined >= 40:
            return ImpactLevel.MEDIUM
        return ImpactLevel.LOW

    @staticmethod
    def recommendation(task: Task, alignment: float, cost: float) -> PivotRecommendation:
        if alignment >= 70 and cost < 30:
            return PivotRecommendation.CONTINUE
        if alignment >= 40 and cost < 60:
            return PivotRecommendation.ADAPT
        if alignment < 40 and cost >= 60:
            if task.status in MID_EXECUTION_STATUSES:
                return PivotRecommendation.DEFER
            return PivotRecommendation.CANCEL
        return PivotRecommendation.DEFER

    def assess(self, task: Task, context: PivotContext) -> ImpactAssessment:
        """
        Score one task against the pivot.

        Args:
            task: Open task
            context: Old and new direction

        Returns:
            ImpactAssessment with scores, impact level and recommendation
        """
        alignment = self.alignment_score(task, context)
        cost = self.adaptation_cost(task, alignment)

        return ImpactAssessment(
            task=task,
            alignment_score=alignment,
            adaptation_cost=cost,
            impact_level=self.impact_level(alignment, cost),
            recommendation=self.recommendation(task, alignment, cost),
        )

    # ------------------------------------------------------------------
    # Assets and recreation
    # ------------------------------------------------------------------

    @staticmethod
    def classify_assets(assessment: ImpactAssessment) -> AssetAnalysis:
        task = assessment.task
        alignment = assessment.alignment_score
        reusable: List[str] = []
        obsolete: List[str] = []

        if assessment.recommendation in (
            PivotRecommendation.CONTINUE,
            PivotRecommendation.ADAPT,
        ):
            classification = AssetClassification.REUSE
            reusable.extend(["Task requirements", "Existing implementation"])
            if alignment >= 50:
                reusable.extend(["Test cases", "Documentation"])
            action = (
                "Continue as-is"
                if assessment.recommendation == PivotRecommendation.CONTINUE
                else "Adapt and reuse assets"
            )
            reasoning = (
                f"Task aligns well with new direction (score: {alignment:.0f}). {action}."
            )
        elif assessment.recommendation == PivotRecommendation.DEFER:
            classification = AssetClassification.ARCHIVE
            reusable.append("Requirements documentation")
            obsolete.append("Current implementation approach")
            reasoning = (
                f"Task has moderate alignment (score: {alignment:.0f}). "
                "Archive for potential future use."
            )
        else:
            classification = AssetClassification.DISCARD
            obsolete.append("All task assets")
            if task.status in MID_EXECUTION_STATUSES:
                reusable.append("Learning and insights from progress")
            reasoning = (
                f"Task does not align with new direction (score: {alignment:.0f}). "
                "Discard and recreate if needed."
            )

        return AssetAnalysis(
            task=task,
            classification=classification,
            reusable_assets=reusable,
            obsolete_assets=obsolete,
            reasoning=reasoning,
        )

    @staticmethod
    def _revised_description(task: Task, context: PivotContext) -> str:
        return (
            "**Revised Task** (Post-Pivot)\n\n"
            f"**Original Context**: {context.old_direction}\n"
            f"**New Direction**: {context.new_direction}\n\n"
            f"**Original Requirements**:\n{task.description}\n\n"
            "**Revision Notes**:\n"
            "- This task has been recreated to align with the new strategic direction\n"
            f"- Review and update requirements based on: {context.new_direction}\n"
            f"- Reuse applicable assets from original task (ID: {task.id})\n\n"
            "**Action Required**:\n"
            "1. Review original task and extract reusable components\n"
            "2. Align implementation approach with new direction\n"
            "3. Update acceptance criteria accordingly\n"
        )

    def recreation_plan(
        self, analyses: List[AssetAnalysis], context: PivotContext
    ) -> List[TaskRecreationPlan]:
        """Replacement tasks for discarded work that was critical or in progress."""
        plan = []
        for analysis in analyses:
            task = analysis.task
            if analysis.classification != AssetClassification.DISCARD:
                continue
            if not (
                task.priority == TaskPriority.P1_CRITICAL
                or task.status == TaskStatus.IN_PROGRESS
            ):
                continue

            plan.append(
                TaskRecreationPlan(
                    title=f"{task.title} (Revised for {context.new_direction})",
                    description=self._revised_description(task, context),
                    priority=task.priority.value,
                    reason=(
                        f"Recreation due to pivot: "
                        f"{context.old_direction} -> {context.new_direction}"
                    ),
                    replaces_task_id=task.id,
                    project_id=task.project_id,
                    organization_id=task.organization_id,
                    reuse_assets=list(analysis.reusable_assets),
                )
            )
        return plan

    # ------------------------------------------------------------------
    # Batch analysis
    # ------------------------------------------------------------------

    @staticmethod
    def in_affected_area(task: Task, areas: List[str]) -> bool:
        text = f"{task.title} {task.description}".lower()
        return any(area.lower() in text for area in areas)

    async def find_affected_tasks(
        self, context: PivotContext, project_id: Optional[str] = None
    ) -> List[Task]:
        filters = {"status": OPEN_STATUSES}
        if project_id:
            filters["project_id"] = project_id
        tasks = await self.tasks.find(**filters)

        if context.affected_areas:
            tasks = [t for t in tasks if self.in_affected_area(t, context.affected_areas)]
        return tasks

    @staticmethod
    def estimate_transition_hours(
        assessments: List[ImpactAssessment], plan: List[TaskRecreationPlan]
    ) -> int:
        hours = 0.0
        for assessment in assessments:
            if assessment.recommendation == PivotRecommendation.ADAPT:
                hours += assessment.adaptation_cost * 0.2
            elif assessment.recommendation == PivotRecommendation.CANCEL:
                hours += 2
        hours += len(plan) * 4
        return math.ceil(hours)

    async def analyze_pivot(
        self,
        context: PivotContext,
        tasks: Optional[List[Task]] = None,
        options: Optional[PivotOptions] = None,
        project_id: Optional[str] = None,
    ) -> PivotAnalysisResult:
        """
        Score every open task in scope and plan the transition.

        Args:
            context: Old/new direction and optional area filter
            tasks: Tasks to analyze (defaults to the project's open tasks)
            options: Mutation options, dry run by default
            project_id: Project filter when tasks is None

        Returns:
            PivotAnalysisResult report
        """
        options = options or PivotOptions()

        self.logger.info(
            f"Analyzing pivot impact: {context.old_direction} -> {context.new_direction}"
        )

        if tasks is None:
            tasks = await self.find_affected_tasks(context, project_id)
        else:
            tasks = [t for t in tasks if t.status in OPEN_STATUSES]
            if context.affected_areas:
                tasks = [
                    t for t in tasks if self.in_affected_area(t, context.affected_areas)
                ]

        if not tasks:
            return PivotAnalysisResult(warnings=["No tasks found to analyze"])

        assessments = [self.assess(task, context) for task in tasks]
        analyses = [self.classify_assets(a) for a in assessments]
        plan = self.recreation_plan(analyses, context)

        total_impact = sum(a.combined_score for a in assessments) / len(assessments)
        transition_hours = self.estimate_transition_hours(assessments, plan)

        cancelled: List[str] = []
        created: List[str] = []
        if not options.dry_run:
            cancelled, created = await self.apply_changes(analyses, plan, options)

        self.logger.info(
            f"Pivot analysis completed: {len(tasks)} tasks affected, "
            f"impact score: {total_impact:.1f}, transition time: {transition_hours}h"
        )

        return PivotAnalysisResult(
            affected_tasks=[
                AffectedTaskSummary(
                    task=assessment.task,
                    impact_level=assessment.impact_level,
                    alignment_score=assessment.alignment_score,
                    adaptation_cost=assessment.adaptation_cost,
                    recommendation=assessment.recommendation,
                    asset_classification=analysis.classification,
                    recommendation_text=RECOMMENDATION_TEXT[assessment.recommendation],
                    estimated_effort_hours=assessment.adaptation_cost * 0.1,
                )
                for assessment, analysis in zip(assessments, analyses)
            ],
            recreation_plan=plan,
            total_impact_score=total_impact,
            estimated_transition_hours=transition_hours,
            cancelled_task_ids=cancelled,
            created_task_ids=created,
            warnings=self._warnings(assessments, total_impact),
            recommendations=self._recommendations(assessments),
        )

    async def apply_changes(
        self,
        analyses: List[AssetAnalysis],
        plan: List[TaskRecreationPlan],
        options: PivotOptions,
    ):
        """
        Cancel discarded tasks and create replacements, as enabled by options.

        Returns:
            (cancelled task IDs, created task IDs)
        """
        cancelled: List[str] = []
        created: List[str] = []

        if options.auto_archive_tasks:
            for analysis in analyses:
                if analysis.classification != AssetClassification.DISCARD:
                    continue

                task = await self.tasks.find_by_id(analysis.task.id)
                if task is None:
                    continue
                if options.preserve_completed_work and task.status in (
                    TaskStatus.READY_FOR_REVIEW,
                    TaskStatus.COMPLETED,
                ):
                    continue

                task.status = TaskStatus.CANCELLED
                task.version += 1
                await self.tasks.save(task)
                cancelled.append(task.id)
                self.logger.info(f"Cancelled task {task.id}: {task.title}")

        if options.auto_create_replacements:
            for entry in plan:
                replacement = Task(
                    title=entry.title,
                    description=entry.description,
                    priority=TaskPriority(entry.priority),
                    project_id=entry.project_id,
                    organization_id=entry.organization_id,
                    status=TaskStatus.PENDING,
                    metadata={"replaces_task_id": entry.replaces_task_id},
                )
                replacement = await self.tasks.create(replacement)
                created.append(replacement.id)
                self.logger.info(
                    f"Created replacement task: {entry.title} "
                    f"(replaces {entry.replaces_task_id})"
                )

        return cancelled, created

    @staticmethod
    def _warnings(assessments: List[ImpactAssessment], total_impact: float) -> List[str]:
        warnings = []

        critical = sum(1 for a in assessments if a.impact_level == ImpactLevel.CRITICAL)
        if critical:
            warnings.append(
                f"{critical} task(s) have critical impact - immediate attention required"
            )

        if total_impact >= 70:
            warnings.append("Overall pivot impact is high - expect significant disruption")

        in_progress_cancelled = sum(
            1
            for a in assessments
            if a.task.status == TaskStatus.IN_PROGRESS
            and a.recommendation == PivotRecommendation.CANCEL
        )
        if in_progress_cancelled:
            warnings.append(
                f"{in_progress_cancelled} in-progress task(s) recommended for "
                "cancellation - review carefully"
            )

        return warnings

    @staticmethod
    def _recommendations(assessments: List[ImpactAssessment]) -> List[str]:
        def count(kind: PivotRecommendation) -> int:
            return sum(1 for a in assessments if a.recommendation == kind)

        recommendations = []

        adapt = count(PivotRecommendation.ADAPT)
        if adapt:
            recommendations.append(
                f"{adapt} task(s) need adaptation - prioritize updating these "
                "to align with new direction"
            )

        defer = count(PivotRecommendation.DEFER)
        if defer:
            recommendations.append(
                f"{defer} task(s) deferred - schedule review session to decide on these"
            )

        cancel = count(PivotRecommendation.CANCEL)
        if cancel:
            recommendations.append(
                f"{cancel} task(s) recommended for cancellation - "
                "ensure stakeholders are informed"
            )

        recommendations.append(
            "Consider holding team sync to communicate pivot rationale and answer questions"
        )

        return recommendations
