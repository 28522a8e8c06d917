"""Multi-factor worker/task matching and workload balancing."""

import logging
from typing import Dict, List, Optional

from ..config import OrchestratorConfig
from ..models.planning_models import (
    AlternativeMatch,
    AssignmentRecommendation,
    Availability,
    ResourcePlanningResult,
    TaskAssignment,
    WorkerWorkload,
)
from ..models.task_models import (
    ACTIVE_ASSIGNMENT_STATUSES,
    DocumentType,
    ExperienceLevel,
    Task,
    TaskStatus,
    Worker,
    WorkerLifecycle,
    WorkerStatus,
)
from ..repositories import RepositoryRegistry


logger = logging.getLogger(__name__)

# Maximum points per component
SKILL_POINTS = 50
KNOWLEDGE_POINTS = 20
NO_SKILLS_POINTS = 25

EXPERIENCE_POINTS = {
    ExperienceLevel.JUNIOR: 2,
    ExperienceLevel.MID: 4,
    ExperienceLevel.SENIOR: 6,
    ExperienceLevel.LEAD: 8,
    ExperienceLevel.PRINCIPAL: 10,
}

STATUS_POINTS = {
    WorkerStatus.IDLE: 10,
    WorkerStatus.WORKING: 5,
    WorkerStatus.PAUSED: 2,
}

ASSIGNABLE_WORKER_STATUSES = {WorkerStatus.IDLE, WorkerStatus.WORKING}
BUSY_THRESHOLD = 5
UNBALANCED_SPREAD = 5
MAX_ALTERNATIVES = 3


def match_reason(score: float) -> str:
    """Human readable band for a match score."""
    if score >= 90:
        return "Excellent match: Skills highly aligned, low workload"
    elif score >= 75:
        return "Good match: Skills aligned, reasonable workload"
    elif score >= 60:
        return "Fair match: Some skills match, manageable workload"
    elif score >= 40:
        return "Acceptable match: Basic requirements met"
    else:
        return "Poor match: Limited skill alignment or heavy workload"


class WorkerMatcher:
    """
    Scores workers against tasks and assigns tasks greedily.

    PATTERN: Skill 50 + knowledge 20 + experience 10 + workload 10 + status 10
    CRITICAL: Only permanent IDLE/WORKING workers are assignment candidates
    GOTCHA: Workload is re-read after every assignment, so assigning a batch
    spreads tasks across equally skilled workers
    """

    def __init__(
        self,
        repositories: RepositoryRegistry,
        config: Optional[OrchestratorConfig] = None,
    ):
        """
        Initialize worker matcher.

        Args:
            repositories: Task, worker and document repositories
            config: Orchestrator configuration (thresholds)
        """
        self.repositories = repositories
        self.config = config or OrchestratorConfig()
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def skill_score(self, task: Task, worker: Worker) -> float:
        """
        Fraction of required skills covered by the worker's capabilities.

        A skill matches when any capability contains it, case-insensitive.
        """
        if not task.required_skills:
            return float(NO_SKILLS_POINTS)

        capabilities = [cap.lower() for cap in worker.role.capabilities]
        matched = sum(
            1
            for skill in task.required_skills
            if any(skill.lower() in cap for cap in capabilities)
        )

        return matched / len(task.required_skills) * SKILL_POINTS

    @staticmethod
    def experience_score(worker: Worker) -> float:
        return float(EXPERIENCE_POINTS.get(worker.experience_level, 4))

    @staticmethod
    def workload_score(active_count: int) -> float:
        return float(max(0, 10 - active_count))

    @staticmethod
    def status_score(worker: Worker) -> float:
        return float(STATUS_POINTS.get(worker.status, 0))

    def score(
        self,
        task: Task,
        worker: Worker,
        active_count: int = 0,
        has_knowledge: bool = False,
    ) -> float:
        """
        Match score of a worker for a task.

        Args:
            task: Task to place
            worker: Candidate worker
            active_count: Worker's active assignments
            has_knowledge: Whether organization knowledge covers the task

        Returns:
            Score in [0, 100]
        """
        total = (
            self.skill_score(task, worker)
            + (KNOWLEDGE_POINTS if has_knowledge else 0)
            + self.experience_score(worker)
            + self.workload_score(active_count)
            + self.status_score(worker)
        )
        return min(100.0, max(0.0, total))

    async def count_active_tasks(self, worker_id: str) -> int:
        return await self.repositories.tasks.count(
            assigned_worker_id=worker_id,
            status=ACTIVE_ASSIGNMENT_STATUSES,
        )

    async def has_knowledge(self, task: Task) -> bool:
        """Whether KNOWLEDGE documents are tagged with the task's skills or tags."""
        keywords = {k.lower() for k in task.required_skills | task.tags}
        if not keywords:
            return False

        filters = {"type": DocumentType.KNOWLEDGE}
        if task.organization_id:
            filters["organization_id"] = task.organization_id

        documents = await self.repositories.documents.find(**filters)
        return any(keywords & {tag.lower() for tag in doc.tags} for doc in documents)

    async def match_score(self, task: Task, worker: Worker) -> float:
        active = await self.count_active_tasks(worker.id)
        return self.score(task, worker, active, await self.has_knowledge(task))

    # ------------------------------------------------------------------
    # Recommendation and assignment
    # ------------------------------------------------------------------

    async def available_workers(
        self, organization_id: Optional[str] = None
    ) -> List[Worker]:
        filters = {
            "lifecycle": WorkerLifecycle.PERMANENT,
            "status": ASSIGNABLE_WORKER_STATUSES,
        }
        if organization_id:
            filters["organization_id"] = organization_id
        return await self.repositories.workers.find(**filters)

    async def recommend_worker(
        self,
        task: Task,
        candidate_pool: Optional[List[Worker]] = None,
    ) -> AssignmentRecommendation:
        """
        Best worker for a task plus up to three alternatives.

        Ties are broken by lower workload, then by worker ID.

        Args:
            task: Task to place
            candidate_pool: Workers to consider (all available when None)

        Returns:
            AssignmentRecommendation, without a worker if nobody is available
        """
        if candidate_pool is None:
            candidate_pool = await self.available_workers(task.organization_id)

        candidates = [
            w
            for w in candidate_pool
            if w.lifecycle == WorkerLifecycle.PERMANENT
            and w.status in ASSIGNABLE_WORKER_STATUSES
        ]

        if not candidates:
            return AssignmentRecommendation(
                task=task, reasoning="No available workers"
            )

        knowledge = await self.has_knowledge(task)
        ranked = []
        for worker in candidates:
            active = await self.count_active_tasks(worker.id)
            ranked.append((self.score(task, worker, active, knowledge), active, worker))

        ranked.sort(key=lambda item: (-item[0], item[1], item[2].id))

        best_score, _, best_worker = ranked[0]
        alternatives = [
            AlternativeMatch(worker=worker, score=score, reason=match_reason(score))
            for score, _, worker in ranked[1 : MAX_ALTERNATIVES + 1]
        ]

        return AssignmentRecommendation(
            task=task,
            recommended_worker=best_worker,
            match_score=best_score,
            reasoning=match_reason(best_score),
            alternatives=alternatives,
        )

    async def _tasks_in_scope(
        self,
        tasks: Optional[List[Task]],
        project_id: Optional[str],
    ) -> List[Task]:
        """Fresh PENDING/READY copies of the given tasks, or of the project."""
        statuses = {TaskStatus.PENDING, TaskStatus.READY}

        if tasks is None:
            filters = {"status": statuses}
            if project_id:
                filters["project_id"] = project_id
            return await self.repositories.tasks.find(**filters)

        scoped = []
        for task in tasks:
            current = await self.repositories.tasks.find_by_id(task.id)
            if current is not None and current.status in statuses:
                scoped.append(current)
        return scoped

    async def assign_project(
        self,
        tasks: Optional[List[Task]] = None,
        project_id: Optional[str] = None,
    ) -> ResourcePlanningResult:
        """
        Assign every unassigned PENDING/READY task to its best worker.

        Args:
            tasks: Tasks in scope (defaults to the project's tasks)
            project_id: Project filter when tasks is None

        Returns:
            ResourcePlanningResult with assignments, workloads and warnings
        """
        scope = await self._tasks_in_scope(tasks, project_id)
        unassigned = [
            t for t in scope if not t.assigned_worker_id and not t.assigned_team_id
        ]

        self.logger.info(f"Planning assignment for {len(unassigned)} tasks")

        if not unassigned:
            return ResourcePlanningResult(warnings=["No tasks to assign"])

        workers = await self.available_workers(unassigned[0].organization_id)
        if not workers:
            self.logger.warning("No available workers for assignment")
            return ResourcePlanningResult(
                unassigned_tasks=len(unassigned),
                warnings=["No available workers in organization"],
            )

        assignments: List[TaskAssignment] = []
        for task in unassigned:
            recommendation = await self.recommend_worker(task, workers)
            if recommendation.recommended_worker is None:
                continue

            worker = recommendation.recommended_worker
            task.assign_worker(worker.id)
            task.status = TaskStatus.READY
            task.version += 1
            task = await self.repositories.tasks.save(task)

            assignments.append(
                TaskAssignment(
                    task=task, worker=worker, match_score=recommendation.match_score
                )
            )

        workloads = await self.calculate_workloads(workers)
        average = (
            sum(a.match_score for a in assignments) / len(assignments)
            if assignments
            else 0.0
        )
        warnings = self._generate_warnings(workloads, assignments, len(unassigned))

        self.logger.info(
            f"Assignment completed: {len(assignments)}/{len(unassigned)} tasks assigned, "
            f"avg match score: {average:.1f}"
        )

        return ResourcePlanningResult(
            assignments=assignments,
            workloads=workloads,
            assigned_tasks=len(assignments),
            unassigned_tasks=len(unassigned) - len(assignments),
            average_match_score=average,
            warnings=warnings,
        )

    async def calculate_workloads(self, workers: List[Worker]) -> List[WorkerWorkload]:
        workloads = []
        for worker in workers:
            active = await self.repositories.tasks.find(
                assigned_worker_id=worker.id,
                status=ACTIVE_ASSIGNMENT_STATUSES,
            )
            total = len(active)

            if total >= self.config.overload_threshold:
                availability = Availability.OVERLOADED
            elif total >= BUSY_THRESHOLD:
                availability = Availability.BUSY
            else:
                availability = Availability.AVAILABLE

            workloads.append(
                WorkerWorkload(
                    worker=worker,
                    active_task_ids=[t.id for t in active],
                    total_tasks=total,
                    utilization_score=min(100.0, total * 10.0),
                    availability=availability,
                )
            )
        return workloads

    def _generate_warnings(
        self,
        workloads: List[WorkerWorkload],
        assignments: List[TaskAssignment],
        total_tasks: int,
    ) -> List[str]:
        warnings = []

        overloaded = [w for w in workloads if w.availability == Availability.OVERLOADED]
        if overloaded:
            warnings.append(
                f"{len(overloaded)} worker(s) are overloaded "
                f"({self.config.overload_threshold}+ tasks)"
            )

        threshold = self.config.low_match_threshold
        low = [a for a in assignments if a.match_score < threshold]
        if low:
            warnings.append(f"{len(low)} task(s) have low match scores (<{threshold:g})")

        if len(assignments) < total_tasks:
            warnings.append(
                f"{total_tasks - len(assignments)} task(s) could not be assigned"
            )

        if len(workloads) > 1:
            totals = [w.total_tasks for w in workloads]
            if max(totals) - min(totals) > UNBALANCED_SPREAD:
                warnings.append(
                    "Workload is unbalanced across workers (consider rebalancing)"
                )

        return warnings

    async def rebalance_workload(
        self,
        tasks: Optional[List[Task]] = None,
        project_id: Optional[str] = None,
    ) -> ResourcePlanningResult:
        """
        Clear worker assignments on PENDING/READY tasks in scope and reassign.

        Args:
            tasks: Tasks in scope (defaults to the project's tasks)
            project_id: Project filter when tasks is None
        """
        scope = await self._tasks_in_scope(tasks, project_id)
        cleared: Dict[str, Task] = {}

        for task in scope:
            if task.assigned_worker_id:
                task.assigned_worker_id = None
                task.version += 1
                cleared[task.id] = await self.repositories.tasks.save(task)

        self.logger.info(f"Rebalancing: cleared {len(cleared)} assignments")

        refreshed = [cleared.get(t.id, t) for t in scope]
        return await self.assign_project(refreshed)
