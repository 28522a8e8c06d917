"""Hierarchical task decomposition: team distribution and in-flight splitting."""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from ..config import OrchestratorConfig
from ..errors import DecompositionBoundsError, DecompositionError, DecompositionParseError
from ..llm.base import BaseBrain
from ..llm.response_parser import extract_json_object
from ..models.decomposition_models import DistributionResult, InFlightDecompositionResult
from ..models.execution_models import (
    BrainRequest,
    DecomposeResult,
    DistributionPlan,
    SubtaskSpec,
    WorkItem,
)
from ..models.task_models import (
    Role,
    Task,
    TaskStatus,
    TaskType,
    Team,
    Worker,
    WorkerLifecycle,
    WorkerStatus,
)
from ..planning.worker_matcher import WorkerMatcher
from ..repositories import RepositoryRegistry
from .dependency_graph import DependencyGraph
from .progress_tracker import ProgressTracker
from .subtask_factory import SubtaskFactory


logger = logging.getLogger(__name__)

SPECIALIZATION_ROLES = {
    "planning": "Planner",
    "implementation": "Developer",
    "testing": "QA Engineer",
    "integration": "Integrator",
}

MANAGER_SYSTEM_PROMPT = (
    "You are a team manager responsible for distributing tasks. "
    "Provide structured JSON output only."
)

DISTRIBUTION_FORMAT = """{
  "subtasks": [
    {
      "title": "Subtask title",
      "description": "Detailed description",
      "assigned_to": "Member name",
      "team": "Sub-team name (only when distributing to sub-teams)",
      "type": "implementation | review | research",
      "priority": "P1 | P2 | P3 | P4",
      "estimated_complexity": "low | medium | high",
      "affected_files": ["path/to/file"],
      "dependencies": ["Other subtask title if any"]
    }
  ],
  "reasoning": "Brief explanation of your distribution strategy"
}"""


def parse_plan(output: str) -> DistributionPlan:
    """
    Parse a manager's distribution response.

    Args:
        output: Raw brain output, possibly wrapped in a markdown fence

    Returns:
        Validated DistributionPlan

    Raises:
        DecompositionParseError: If the output has no valid plan
    """
    data = extract_json_object(output)

    if not isinstance(data.get("subtasks"), list):
        raise DecompositionParseError(
            "Invalid plan structure: missing subtasks array", raw_output=output
        )

    try:
        return DistributionPlan.model_validate(data)
    except ValidationError as e:
        raise DecompositionParseError(
            f"Invalid distribution plan: {e}", raw_output=output
        ) from e


def resolve_title(title: str, by_title: Dict[str, Task]) -> Optional[Task]:
    """Exact title match first, then case-insensitive."""
    task = by_title.get(title)
    if task is not None:
        return task

    wanted = title.strip().lower()
    for candidate_title, candidate in by_title.items():
        if candidate_title.strip().lower() == wanted:
            return candidate
    return None


class DecompositionEngine:
    """
    Breaks aggregate and oversized tasks into dependency-linked subtasks.

    PATTERN: Plan in memory -> validate bounds and edges -> persist
    CRITICAL: Team trees are walked with an explicit stack, never recursion
    CRITICAL: A failed decomposition leaves no subtasks or ephemeral workers behind
    GOTCHA: Sub-aggregates are distributed by their own team's manager, so
    every level costs one brain call
    """

    def __init__(
        self,
        repositories: RepositoryRegistry,
        brain: BaseBrain,
        config: Optional[OrchestratorConfig] = None,
        factory: Optional[SubtaskFactory] = None,
        matcher: Optional[WorkerMatcher] = None,
        progress_tracker: Optional[ProgressTracker] = None,
        ephemeral_roles: Optional[Iterable[Role]] = None,
    ):
        """
        Initialize decomposition engine.

        Args:
            repositories: Task, worker, team and document repositories
            brain: Inference port used for manager distribution calls
            config: Orchestrator configuration
            factory: Subtask builder enforcing depth and fan-out limits
            matcher: Worker matcher used for workload counts
            progress_tracker: Status rollup from children to parents
            ephemeral_roles: Extra roles usable for ephemeral workers
        """
        self.repositories = repositories
        self.brain = brain
        self.config = config or OrchestratorConfig()
        self.factory = factory or SubtaskFactory(self.config)
        self.matcher = matcher or WorkerMatcher(repositories, self.config)
        self.progress = progress_tracker or ProgressTracker(repositories.tasks)
        self.ephemeral_roles = list(ephemeral_roles or [])
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Team distribution
    # ------------------------------------------------------------------

    def compose_distribution_prompt(
        self,
        task: Task,
        team: Team,
        members: List[Tuple[Worker, int]],
        sub_teams: List[Team],
    ) -> str:
        """
        Prompt asking a team manager for a distribution plan.

        Args:
            task: Aggregate task to distribute
            team: Team owning the task
            members: Members paired with their active task count
            sub_teams: Child teams, empty for a leaf team

        Returns:
            Prompt text
        """
        lines = [
            "You are a Manager responsible for distributing tasks to your team.",
            "",
            "**Team Task to Distribute:**",
            f"Title: {task.title}",
            f"Description: {task.description}",
            f"Priority: {task.priority.value}",
        ]

        if task.acceptance_criteria:
            lines.append("Acceptance Criteria:")
            lines.extend(
                f"{i}. {criterion}"
                for i, criterion in enumerate(task.acceptance_criteria, 1)
            )

        if sub_teams:
            lines += ["", f"**Sub-teams of {team.name}:**"]
            lines.extend(f"- {sub_team.name}" for sub_team in sub_teams)
            lines += [
                "",
                "**Your Task:**",
                "Split this task into work items and route each one to the most "
                'suitable sub-team with the "team" field.',
            ]
        else:
            lines += ["", f"**Members of {team.name}:**"]
            for worker, active in members:
                skills = ", ".join(sorted(worker.role.capabilities)) or "general"
                lines += [
                    f"- {worker.name}",
                    f"  Role: {worker.role.name}",
                    f"  Skills: {skills}",
                    f"  Current workload: {active} active tasks",
                ]
            lines += [
                "",
                "**Your Task:**",
                "Break down this task into 3-7 subtasks and assign each one to the "
                'most suitable member with the "assigned_to" field.',
            ]

        lines += [
            "",
            "**Consider:**",
            "1. Each member's skills and current workload",
            "2. Dependencies between subtasks, use exact subtask titles",
            "3. Subtasks touching the same files should depend on each other",
            "4. Parallel execution only for truly independent work",
            "",
            f"At most {self.config.max_subtasks_per_parent} subtasks. "
            "Do not create circular dependencies.",
            "",
            "**Response Format (JSON):**",
            DISTRIBUTION_FORMAT,
        ]

        return "\n".join(lines)

    async def _team_members(self, team: Team) -> List[Tuple[Worker, int]]:
        members = []
        for worker_id in sorted(team.member_ids):
            worker = await self.repositories.workers.find_by_id(worker_id)
            if worker is None:
                self.logger.warning(f"Team {team.name} member {worker_id} not found")
                continue
            members.append((worker, await self.matcher.count_active_tasks(worker.id)))
        return members

    async def _request_plan(
        self,
        task: Task,
        team: Team,
        members: List[Tuple[Worker, int]],
        sub_teams: List[Team],
    ) -> DistributionPlan:
        system_prompt = MANAGER_SYSTEM_PROMPT
        if team.manager_worker_id:
            manager = await self.repositories.workers.find_by_id(team.manager_worker_id)
            if manager is not None and manager.system_prompt:
                system_prompt = f"{manager.system_prompt}\n\n{MANAGER_SYSTEM_PROMPT}"

        response = await self.brain.execute(
            BrainRequest(
                prompt=self.compose_distribution_prompt(task, team, members, sub_teams),
                system_prompt=system_prompt,
                context={"task_id": task.id, "team_id": team.id},
            )
        )

        if not response.success:
            raise DecompositionError(
                f"Manager of team {team.name} failed to produce a distribution plan"
            )

        plan = parse_plan(response.output)
        if not plan.subtasks:
            raise DecompositionParseError(
                f"Distribution plan for task {task.id} has no subtasks",
                raw_output=response.output,
            )

        self.logger.info(
            f"Team {team.name} plan for {task.short_id}: "
            f"{len(plan.subtasks)} work items"
        )
        return plan

    @staticmethod
    def route_to_sub_teams(
        items: List[WorkItem], sub_teams: List[Team]
    ) -> Dict[str, List[WorkItem]]:
        """
        Route work items by their "team" name, round-robin otherwise.

        Returns:
            Sub-team ID -> routed items (every sub-team has an entry)
        """
        routed: Dict[str, List[WorkItem]] = {team.id: [] for team in sub_teams}
        by_name = {team.name.strip().lower(): team for team in sub_teams}

        next_index = 0
        for item in items:
            target = by_name.get((item.team or "").strip().lower())
            if target is None:
                target = sub_teams[next_index % len(sub_teams)]
                next_index += 1
            routed[target.id].append(item)

        return routed

    @staticmethod
    def select_assignee(
        item: WorkItem, members: List[Tuple[Worker, int]], workloads: Dict[str, int]
    ) -> Worker:
        """
        Named member if valid, else least-loaded idle member, else the first.

        Args:
            item: Work item
            members: Team members with their active task count
            workloads: Running active counts including assignments made so far
        """
        if item.assigned_to:
            wanted = item.assigned_to.strip().lower()
            for worker, _ in members:
                if worker.name.strip().lower() == wanted:
                    return worker

        idle = [w for w, _ in members if w.status == WorkerStatus.IDLE]
        if idle:
            return min(idle, key=lambda w: (workloads.get(w.id, 0), w.id))

        return members[0][0]

    def _link_dependencies(
        self, children: List[Task], titles: Dict[str, List[str]]
    ) -> List[str]:
        """
        Resolve title dependencies among siblings through a DependencyGraph.

        Args:
            children: Unsaved sibling tasks
            titles: Child ID -> declared dependency titles

        Returns:
            Warnings for titles that could not be resolved

        Raises:
            CycleDetectedError: If the declared dependencies form a cycle
        """
        graph = DependencyGraph(children)
        by_title = {child.title: child for child in children}
        warnings = []

        for child in children:
            for title in titles.get(child.id, []):
                target = resolve_title(title, by_title)
                if target is None:
                    warnings.append(
                        f"Dependency '{title}' of '{child.title}' does not match a sibling"
                    )
                    continue
                if target.id == child.id:
                    warnings.append(f"Ignored self-dependency of '{child.title}'")
                    continue
                graph.add_dependency(child, target)

        for child in children:
            child.status = TaskStatus.BLOCKED if child.dependencies else TaskStatus.READY

        return warnings

    async def _persist_children(self, children: List[Task]) -> List[Task]:
        created: List[Task] = []
        try:
            for child in children:
                created.append(await self.repositories.tasks.create(child))
        except Exception:
            for task in created:
                await self.repositories.tasks.remove(task.id)
            raise
        return created

    async def _block_parent(self, task: Task, reason: str) -> Task:
        task.status = TaskStatus.BLOCKED
        task.version += 1
        task.metadata["decomposition_reason"] = reason
        return await self.repositories.tasks.save(task)

    async def _rollback_distribution(
        self, root: Task, result: DistributionResult, originals: List[Task]
    ) -> None:
        """Remove every task created so far and restore aggregates blocked so far."""
        self.logger.error(
            f"Distribution of {root.short_id} failed, removing "
            f"{len(result.created_task_ids)} created tasks"
        )
        created = set(result.created_task_ids)
        for task_id in reversed(result.created_task_ids):
            await self.repositories.tasks.remove(task_id)
        for original in originals:
            if original.id not in created:
                await self.repositories.tasks.save(original)

    async def distribute_to_team(self, task_id: str) -> DistributionResult:
        """
        Distribute an aggregate task down its team tree.

        PATTERN: Stack of (aggregate task, team) frames. A team with sub-teams
        gets one sub-aggregate per child team, a leaf team gets one
        implementation task per work item.

        Args:
            task_id: Aggregate task assigned to a team

        Returns:
            DistributionResult listing every created task

        Raises:
            NotFoundError: If the task or a team does not exist
            DecompositionError: On an invalid plan or a team without members
            DecompositionBoundsError: If depth or fan-out limits are exceeded
        """
        root = await self.repositories.tasks.get(task_id)
        if not root.assigned_team_id:
            raise DecompositionError(f"Task {root.id} is not assigned to a team")

        self.logger.info(f"Distributing task {root.short_id} ({root.title}) to teams")

        result = DistributionResult(root_task_id=root.id)
        stack: List[Tuple[str, str]] = [(root.id, root.assigned_team_id)]
        originals: List[Task] = []

        try:
            while stack:
                aggregate_id, team_id = stack.pop()
                aggregate = await self.repositories.tasks.get(aggregate_id)
                team = await self.repositories.teams.get(team_id)

                sub_teams = await self.repositories.teams.find(parent_team_id=team.id)
                members = [] if sub_teams else await self._team_members(team)
                if not sub_teams and not members:
                    raise DecompositionError(f"Team {team.name} has no members")

                # Depth is known before the manager call, fan-out only after it
                existing = await self.repositories.tasks.count(parent_task_id=aggregate.id)
                if aggregate.depth + 1 > self.config.max_task_depth:
                    self.factory.validate_bounds(aggregate, 1, existing)

                plan = await self._request_plan(aggregate, team, members, sub_teams)

                if sub_teams:
                    children = self._build_sub_aggregates(aggregate, plan, sub_teams, result)
                    self.factory.validate_bounds(aggregate, len(children), existing)
                    created = await self._persist_children([c for c, _ in children])
                    for task, (_, sub_team) in zip(created, children):
                        result.sub_aggregate_ids.append(task.id)
                        stack.append((task.id, sub_team.id))
                else:
                    self.factory.validate_bounds(aggregate, len(plan.subtasks), existing)
                    created = await self._create_leaf_tasks(aggregate, plan, members, result)
                    result.leaf_task_ids.extend(t.id for t in created)

                result.created_task_ids.extend(t.id for t in created)
                originals.append(aggregate.model_copy(deep=True))
                await self._block_parent(aggregate, plan.reasoning or "Distributed to team")
        except Exception:
            await self._rollback_distribution(root, result, originals)
            raise

        self.logger.info(
            f"Distributed {root.short_id}: {len(result.created_task_ids)} tasks, "
            f"{len(result.ready_task_ids)} ready, {len(result.blocked_task_ids)} blocked"
        )
        return result

    def _build_sub_aggregates(
        self,
        aggregate: Task,
        plan: DistributionPlan,
        sub_teams: List[Team],
        result: DistributionResult,
    ) -> List[Tuple[Task, Team]]:
        routed = self.route_to_sub_teams(plan.subtasks, sub_teams)
        children = []

        for sub_team in sub_teams:
            items = routed[sub_team.id]
            if not items:
                result.warnings.append(f"No work routed to sub-team {sub_team.name}")
                continue

            description = "\n".join(
                [aggregate.description, "", "Work items:"]
                + [f"- {item.title}: {item.description}" for item in items]
            ).strip()

            child = self.factory.build(
                aggregate,
                title=f"{aggregate.title} ({sub_team.name})",
                description=description,
                task_type=TaskType.AGGREGATE.value,
                priority=aggregate.priority.value,
                affected_files=[f for item in items for f in item.affected_files],
                required_skills=[s for item in items for s in item.required_skills],
                acceptance_criteria=aggregate.acceptance_criteria,
            )
            child.assign_team(sub_team.id)
            child.metadata["work_items"] = [item.model_dump() for item in items]
            children.append((child, sub_team))

        return children

    async def _create_leaf_tasks(
        self,
        aggregate: Task,
        plan: DistributionPlan,
        members: List[Tuple[Worker, int]],
        result: DistributionResult,
    ) -> List[Task]:
        workloads = {worker.id: active for worker, active in members}
        children: List[Task] = []
        titles: Dict[str, List[str]] = {}

        for item in plan.subtasks:
            assignee = self.select_assignee(item, members, workloads)
            named = (item.assigned_to or "").strip().lower()
            if named and named != assignee.name.strip().lower():
                result.warnings.append(
                    f"'{item.assigned_to}' is not a member, '{item.title}' "
                    f"assigned to {assignee.name}"
                )
            workloads[assignee.id] = workloads.get(assignee.id, 0) + 1

            child = self.factory.build(
                aggregate,
                title=item.title,
                description=item.description,
                task_type=item.type,
                priority=item.priority,
                affected_files=item.affected_files,
                required_skills=item.required_skills,
                estimated_complexity=item.estimated_complexity,
            )
            # Nested aggregates are not distributed further from a leaf team
            if child.type == TaskType.AGGREGATE:
                child.type = TaskType.IMPLEMENTATION
            child.assign_worker(assignee.id)
            children.append(child)
            titles[child.id] = item.dependencies

        result.warnings.extend(self._link_dependencies(children, titles))
        created = await self._persist_children(children)

        for task in created:
            if task.status == TaskStatus.BLOCKED:
                result.blocked_task_ids.append(task.id)
            else:
                result.ready_task_ids.append(task.id)

        return created

    # ------------------------------------------------------------------
    # In-flight decomposition
    # ------------------------------------------------------------------

    async def _ephemeral_role_map(self, organization_id: Optional[str]) -> Dict[str, Role]:
        roles: Dict[str, Role] = {}
        for role in self.ephemeral_roles:
            if role.available_for_ephemeral:
                roles.setdefault(role.name.lower(), role)

        filters = {"organization_id": organization_id} if organization_id else {}
        for worker in await self.repositories.workers.find(**filters):
            if worker.role.available_for_ephemeral:
                roles.setdefault(worker.role.name.lower(), worker.role)

        return roles

    @staticmethod
    def select_role(spec: SubtaskSpec, roles: Dict[str, Role], fallback: Role) -> Role:
        """Specialized role for a subtask, the parent's role if none exists."""
        specialization = (spec.specialization or "implementation").strip().lower()
        role_name = SPECIALIZATION_ROLES.get(specialization)
        if role_name is None:
            return fallback
        return roles.get(role_name.lower(), fallback)

    async def decompose_in_flight(
        self,
        task: Task,
        worker: Worker,
        decompose_result: DecomposeResult,
    ) -> InFlightDecompositionResult:
        """
        Split a running task into subtasks, each with its own ephemeral worker.

        CRITICAL: Subtasks inherit the parent's working directory
        CRITICAL: Ephemeral nesting is bounded by max_ephemeral_depth

        Args:
            task: Task that asked for decomposition
            worker: Worker executing it
            decompose_result: Decoded decomposition request

        Returns:
            InFlightDecompositionResult with created subtasks and workers

        Raises:
            DecompositionBoundsError: If depth, fan-out or ephemeral limits are exceeded
            CycleDetectedError: If the subtask dependencies form a cycle
        """
        specs = decompose_result.subtasks
        existing = await self.repositories.tasks.count(parent_task_id=task.id)
        self.factory.validate_bounds(task, len(specs), existing)

        ephemeral_depth = worker.depth + 1
        if ephemeral_depth > self.config.max_ephemeral_depth:
            raise DecompositionBoundsError(
                f"Cannot decompose task {task.id}: ephemeral worker depth "
                f"{ephemeral_depth} exceeds maximum {self.config.max_ephemeral_depth}"
            )

        roles = await self._ephemeral_role_map(worker.organization_id)

        children: List[Task] = []
        titles: Dict[str, List[str]] = {}
        workers: List[Worker] = []

        for spec in specs:
            child = self.factory.build(
                task,
                title=spec.title,
                description=spec.description,
                task_type=spec.type,
                priority=spec.priority,
                affected_files=spec.affected_files,
                required_skills=spec.required_skills,
                acceptance_criteria=spec.acceptance_criteria,
                inherit_workspace=True,
            )
            if child.type == TaskType.AGGREGATE:
                child.type = TaskType.IMPLEMENTATION

            role = self.select_role(spec, roles, worker.role)
            sub_worker = Worker(
                name=f"{role.name.lower().replace(' ', '-')}-{child.short_id}",
                lifecycle=WorkerLifecycle.EPHEMERAL,
                status=WorkerStatus.IDLE,
                role=role,
                experience_level=worker.experience_level,
                team_id=worker.team_id,
                organization_id=worker.organization_id,
                depth=ephemeral_depth,
                created_by_worker_id=worker.id,
            )
            child.assign_worker(sub_worker.id)
            children.append(child)
            workers.append(sub_worker)
            titles[child.id] = spec.dependencies

        warnings = self._link_dependencies(children, titles)
        for warning in warnings:
            self.logger.warning(f"Task {task.short_id}: {warning}")

        created_workers: List[Worker] = []
        try:
            for sub_worker in workers:
                created_workers.append(await self.repositories.workers.create(sub_worker))
            created = await self._persist_children(children)
        except Exception:
            self.logger.error(
                f"In-flight decomposition of {task.short_id} failed, "
                f"removing {len(created_workers)} ephemeral workers"
            )
            for sub_worker in created_workers:
                await self.repositories.workers.remove(sub_worker.id)
            raise

        reason = decompose_result.reason or "Task too large for a single change"
        await self._block_parent(task, reason)

        self.logger.info(
            f"Decomposed {task.short_id} into {len(created)} subtasks "
            f"with {len(created_workers)} ephemeral workers"
        )

        return InFlightDecompositionResult(
            parent_task_id=task.id,
            subtask_ids=[t.id for t in created],
            ephemeral_worker_ids=[w.id for w in created_workers],
            blocked_task_ids=[t.id for t in created if t.status == TaskStatus.BLOCKED],
            ready_task_ids=[t.id for t in created if t.status == TaskStatus.READY],
            reason=reason,
        )

    async def retire_ephemeral_workers(self, parent_task_id: str) -> List[str]:
        """
        Remove the ephemeral workers of a parent's subtasks once all are terminal.

        Returns:
            IDs of removed workers, empty while any sibling is still open
        """
        children = await self.repositories.tasks.find(parent_task_id=parent_task_id)
        if not children or not all(child.is_terminal for child in children):
            return []

        removed = []
        for worker_id in sorted({c.assigned_worker_id for c in children if c.assigned_worker_id}):
            worker = await self.repositories.workers.find_by_id(worker_id)
            if worker is None or not worker.is_ephemeral:
                continue
            if await self.repositories.workers.remove(worker_id):
                removed.append(worker_id)

        if removed:
            self.logger.info(
                f"Retired {len(removed)} ephemeral workers of task {parent_task_id}"
            )
        return removed

    async def complete_task(self, task_id: str) -> List[Task]:
        """
        Mark a subtask COMPLETED and propagate the change.

        Unblocks siblings waiting on it, rolls the status up to its ancestors
        and retires ephemeral workers when the last sibling finishes.

        Returns:
            Siblings that became READY
        """
        task = await self.repositories.tasks.get(task_id)
        task.status = TaskStatus.COMPLETED
        task.completed_at = datetime.now()
        task.version += 1
        await self.repositories.tasks.save(task)

        if not task.parent_task_id:
            return []

        siblings = await self.repositories.tasks.find(parent_task_id=task.parent_task_id)
        graph = DependencyGraph(siblings)

        unblocked = []
        for sibling in graph.unblock_dependents(task.id):
            sibling.version += 1
            unblocked.append(await self.repositories.tasks.save(sibling))

        await self.progress.refresh_parent_status(task.parent_task_id)
        await self.retire_ephemeral_workers(task.parent_task_id)
        return unblocked
