"""Per-task workspace lifecycle, execution and build-verification loop."""

import asyncio
import logging
import os
import re
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import uuid4

from ..config import OrchestratorConfig
from ..decomposition.decomposition_engine import DecompositionEngine
from ..errors import (
    ConcurrentModificationError,
    CycleDetectedError,
    DecompositionError,
    GitOperationError,
    HollonError,
    InferenceError,
    QualityGateError,
    VerificationTimeoutError,
    WorkspaceAlreadyExistsError,
)
from ..llm.base import BaseBrain
from ..llm.response_parser import decode_inference_output
from ..models.execution_models import (
    BrainRequest,
    BrainResponse,
    CIFeedback,
    DecomposeResult,
    DecomposedOutcome,
    ExecutionOutcome,
    RetryOutcome,
    SelfCorrectResult,
    SuccessOutcome,
    TerminalOutcome,
    VerificationCheck,
    VerificationStatus,
)
from ..models.task_models import (
    Document,
    DocumentType,
    PullRequestRecord,
    Task,
    TaskStatus,
    Worker,
    WorkerStatus,
)
from ..repositories import RepositoryRegistry
from ..workspace.git_client import GitClient, extract_pr_number
from ..workspace.keyed_mutex import KeyedMutex
from ..workspace.prompt_composer import PromptComposer
from ..workspace.quality_gate import QualityGate
from .review_service import BaseReviewService


logger = logging.getLogger(__name__)

_BRANCH_UNSAFE = re.compile(r"[^a-z0-9._-]+")


def sanitize_branch_component(name: str) -> str:
    """Lowercase name reduced to characters git accepts in a branch segment."""
    cleaned = _BRANCH_UNSAFE.sub("-", name.strip().lower())
    return re.sub(r"-{2,}", "-", cleaned).strip("-.")


class WorkspaceOrchestrator:
    """
    Executes tasks inside isolated git worktrees and drives verification.

    PATTERN: Resolve -> provision -> infer -> gate -> decode -> publish -> verify
    CRITICAL: Every git mutation on a repository runs under its repository lock
    CRITICAL: Failures are converted to outcomes exactly once, in execute_task
    GOTCHA: Subtasks reuse the worktree of the task that provisioned it and
    never remove it, the owning task does
    """

    def __init__(
        self,
        repositories: RepositoryRegistry,
        brain: BaseBrain,
        review_service: BaseReviewService,
        decomposition_engine: Optional[DecompositionEngine] = None,
        git_client: Optional[GitClient] = None,
        quality_gate: Optional[QualityGate] = None,
        prompt_composer: Optional[PromptComposer] = None,
        config: Optional[OrchestratorConfig] = None,
        repository_path: Optional[str] = None,
        repository_locks: Optional[KeyedMutex] = None,
    ):
        """
        Initialize workspace orchestrator.

        Args:
            repositories: Task, worker, team and document repositories
            brain: Inference port
            review_service: Review port receiving opened change requests
            decomposition_engine: Engine for aggregate and oversized tasks
            git_client: git/gh subprocess wrapper
            quality_gate: Checks applied to brain output
            prompt_composer: Builds execution prompts
            config: Orchestrator configuration
            repository_path: Default repository, tasks may override it with
                metadata["repository_path"]
            repository_locks: Shared repository mutation gate
        """
        self.repositories = repositories
        self.brain = brain
        self.review_service = review_service
        self.config = config or OrchestratorConfig()
        self.engine = decomposition_engine or DecompositionEngine(
            repositories, brain, self.config
        )
        self.git = git_client or GitClient()
        self.quality_gate = quality_gate or QualityGate(self.config.daily_cost_limit_cents)
        self.composer = prompt_composer or PromptComposer(
            max_task_depth=self.config.max_task_depth,
            max_subtasks=self.config.max_subtasks_per_parent,
        )
        self.repository_path = repository_path or os.getcwd()
        self.repository_locks = repository_locks or KeyedMutex("repository")
        self.task_locks = KeyedMutex("task")
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def workspace_path(self, repository_path: str, worker_id: str, task_id: str) -> str:
        """{repo}/../{workspace_dirname}/worker-{id[:8]}/task-{id[:8]}"""
        parent = os.path.dirname(os.path.normpath(os.path.abspath(repository_path)))
        return os.path.join(
            parent,
            self.config.workspace_dirname,
            f"worker-{worker_id[:8]}",
            f"task-{task_id[:8]}",
        )

    @staticmethod
    def temporary_branch(worker: Worker, task: Task) -> str:
        return f"wt-worker-{worker.short_id}-task-{task.short_id}-{uuid4().hex[:6]}"

    @staticmethod
    def feature_branch(worker: Worker, task: Task) -> str:
        name = sanitize_branch_component(worker.name) or f"worker-{worker.short_id}"
        return f"feature/{name}/task-{task.short_id}"

    def repository_for(self, task: Task) -> str:
        return task.metadata.get("repository_path") or self.repository_path

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    async def _transition(
        self, task: Task, status: Optional[TaskStatus] = None, **changes
    ) -> Task:
        """
        Compare-and-set save of a task.

        Raises:
            ConcurrentModificationError: If the stored version moved on
        """
        stored = await self.repositories.tasks.get(task.id)
        if stored.version != task.version:
            raise ConcurrentModificationError(task.id, task.version, stored.version)

        if status is not None and status != task.status:
            self.logger.info(
                f"Task {task.short_id}: {task.status.value} -> {status.value}"
            )
            task.status = status
        for field, value in changes.items():
            setattr(task, field, value)
        task.version += 1
        return await self.repositories.tasks.save(task)

    async def _set_worker_status(self, worker: Worker, status: WorkerStatus) -> None:
        current = await self.repositories.workers.find_by_id(worker.id)
        if current is None or current.status == status:
            return
        await self.repositories.workers.update(worker.id, status=status)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def execute_task(self, task_id: str, worker_id: str) -> ExecutionOutcome:
        """
        Execute one task with one worker.

        Args:
            task_id: Task to execute
            worker_id: Worker executing it

        Returns:
            SuccessOutcome, RetryOutcome, TerminalOutcome or DecomposedOutcome

        Raises:
            NotFoundError: If the task or worker does not exist
        """
        async with self.task_locks.hold(task_id):
            task = await self.repositories.tasks.get(task_id)
            worker = await self.repositories.workers.get(worker_id)

            self.logger.info(
                f"Executing task {task.short_id} ({task.title}) with worker {worker.name}"
            )

            if task.is_aggregate:
                return await self._execute_aggregate(task, worker)
            return await self._execute_leaf(task, worker)

    async def _execute_aggregate(self, task: Task, worker: Worker) -> ExecutionOutcome:
        if not task.assigned_team_id:
            if not worker.team_id:
                return TerminalOutcome(
                    task_id=task.id,
                    reason="Aggregate task has no team to distribute to",
                    error_type="DecompositionError",
                )
            task.assign_team(worker.team_id)
            task = await self._transition(task)

        try:
            result = await self.engine.distribute_to_team(task.id)
        except (DecompositionError, CycleDetectedError) as e:
            self.logger.error(f"Distribution of task {task.short_id} failed: {e}")
            await self._fail_task(task.id, str(e))
            return TerminalOutcome(
                task_id=task.id, reason=str(e), error_type=type(e).__name__
            )

        for warning in result.warnings:
            self.logger.warning(f"Task {task.short_id}: {warning}")

        return DecomposedOutcome(
            task_id=task.id,
            subtask_ids=result.created_task_ids,
            reason="Distributed to team",
        )

    async def _execute_leaf(self, task: Task, worker: Worker) -> ExecutionOutcome:
        repository_path = self.repository_for(task)
        provisioned: Optional[str] = None
        owns_workspace = not await self._inherits_workspace(task)

        try:
            if task.working_directory:
                worktree = task.working_directory
                branch = await self.git.current_branch(worktree)
                self.logger.info(f"Reusing workspace {worktree} on {branch}")
            else:
                worktree, branch = await self._provision_workspace(
                    task, worker, repository_path
                )
                provisioned = worktree

            if task.assigned_worker_id != worker.id:
                task.assign_worker(worker.id)
            task = await self._transition(
                task,
                TaskStatus.IN_PROGRESS,
                working_directory=worktree,
                started_at=task.started_at or datetime.now(),
                error_message=None,
            )
            await self._set_worker_status(worker, WorkerStatus.WORKING)

            outcome = await self._run(task, worker, worktree, branch)

        except ConcurrentModificationError as e:
            self.logger.warning(f"Task {task.short_id} skipped: {e}")
            if provisioned:
                await self._discard_worktree(provisioned, repository_path)
            await self._set_worker_status(worker, WorkerStatus.IDLE)
            return TerminalOutcome(
                task_id=task.id, reason=str(e), error_type="ConcurrentModificationError"
            )
        except HollonError as e:
            outcome = await self._outcome_for_error(task, e)
        except Exception:
            self.logger.exception(f"Unexpected failure executing task {task.short_id}")
            await self._fail_task(task.id, "Unexpected error")
            await self._cleanup_after_failure(task, provisioned, owns_workspace)
            await self._set_worker_status(worker, WorkerStatus.IDLE)
            raise

        if isinstance(outcome, TerminalOutcome):
            await self._cleanup_after_failure(task, provisioned, owns_workspace)

        await self._set_worker_status(worker, WorkerStatus.IDLE)
        return outcome

    async def _outcome_for_error(self, task: Task, error: HollonError) -> ExecutionOutcome:
        """Convert a raised error into a retry or terminal outcome and persist it."""
        if isinstance(error, QualityGateError):
            retryable = error.should_retry
        else:
            retryable = isinstance(error, InferenceError)

        if retryable:
            self.logger.warning(f"Task {task.short_id} will be retried: {error}")
            current = await self.repositories.tasks.get(task.id)
            current.status = TaskStatus.READY
            current.retry_count += 1
            current.error_message = str(error)
            current.version += 1
            await self.repositories.tasks.save(current)
            return RetryOutcome(
                task_id=task.id,
                reason=str(error),
                attempt=current.retry_count,
            )

        self.logger.error(f"Task {task.short_id} failed: {error}")
        await self._fail_task(task.id, str(error))
        return TerminalOutcome(
            task_id=task.id, reason=str(error), error_type=type(error).__name__
        )

    async def _fail_task(self, task_id: str, reason: str) -> None:
        current = await self.repositories.tasks.find_by_id(task_id)
        if current is None:
            return
        current.status = TaskStatus.FAILED
        current.error_message = reason
        current.version += 1
        await self.repositories.tasks.save(current)

    # ------------------------------------------------------------------
    # Workspace lifecycle
    # ------------------------------------------------------------------

    async def _inherits_workspace(self, task: Task) -> bool:
        if not task.working_directory or not task.parent_task_id:
            return False
        parent = await self.repositories.tasks.find_by_id(task.parent_task_id)
        return parent is not None and parent.working_directory == task.working_directory

    async def _workspace_owner(self, task: Task) -> Task:
        """Topmost ancestor sharing the task's working directory."""
        owner = task
        while owner.parent_task_id:
            parent = await self.repositories.tasks.find_by_id(owner.parent_task_id)
            if parent is None or parent.working_directory != task.working_directory:
                break
            owner = parent
        return owner

    async def _resolve_base_ref(self, repository_path: str) -> str:
        """Remote base branch when fetch works, the local one otherwise."""
        remote = self.config.remote_name
        base = self.config.base_branch
        try:
            await self.git.fetch(repository_path, remote, base)
            return f"{remote}/{base}"
        except GitOperationError as e:
            self.logger.warning(
                f"Fetch of {remote}/{base} failed, using local {base}: {e.stderr.strip()}"
            )
            return base

    async def _provision_workspace(
        self, task: Task, worker: Worker, repository_path: str
    ) -> Tuple[str, str]:
        """
        Create the task worktree on a feature branch.

        Returns:
            (worktree path, branch name)

        Raises:
            WorkspaceAlreadyExistsError: If the path is already occupied
            GitOperationError: If a git command fails
        """
        path = self.workspace_path(repository_path, worker.id, task.id)

        async with self.repository_locks.hold(repository_path):
            if self.git.path_exists(path):
                raise WorkspaceAlreadyExistsError(path)

            base_ref = await self._resolve_base_ref(repository_path)
            temporary = self.temporary_branch(worker, task)
            await self.git.worktree_add(repository_path, path, temporary, base_ref)

            branch = self.feature_branch(worker, task)
            try:
                await self.git.rename_branch(path, branch)
            except GitOperationError:
                await self.git.worktree_remove(repository_path, path)
                raise

        self.logger.info(f"Workspace ready: {path} on {branch} (from {base_ref})")
        return path, branch

    async def cleanup_workspace(self, path: str, task_id: str) -> None:
        """
        Remove a worktree and clear the task's working directory.

        Idempotent: a missing path or task is not an error.

        Raises:
            GitOperationError: If git fails to remove an existing worktree
        """
        task = await self.repositories.tasks.find_by_id(task_id)
        repository_path = self.repository_for(task) if task else self.repository_path

        async with self.repository_locks.hold(repository_path):
            if self.git.path_exists(path):
                await self.git.worktree_remove(repository_path, path)
                self.logger.info(f"Removed workspace {path}")
            else:
                self.logger.debug(f"Workspace {path} already removed")

        if task is not None and task.working_directory:
            await self.repositories.tasks.update(task_id, working_directory=None)

    async def _safe_cleanup(self, path: str, task_id: str) -> None:
        try:
            await self.cleanup_workspace(path, task_id)
        except Exception as e:
            self.logger.warning(f"Cleanup of {path} failed: {e}")

    async def _discard_worktree(self, path: str, repository_path: str) -> None:
        """Remove a worktree without touching the task record."""
        try:
            async with self.repository_locks.hold(repository_path):
                if self.git.path_exists(path):
                    await self.git.worktree_remove(repository_path, path)
        except GitOperationError as e:
            self.logger.warning(f"Cleanup of {path} failed: {e}")

    async def _cleanup_after_failure(
        self, task: Task, provisioned: Optional[str], owns_workspace: bool
    ) -> None:
        path = provisioned or (task.working_directory if owns_workspace else None)
        if path:
            await self._safe_cleanup(path, task.id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def last_feedback(task: Task) -> Optional[CIFeedback]:
        raw = task.metadata.get("last_ci_feedback")
        return CIFeedback.model_validate(raw) if raw else None

    async def _infer(self, task: Task, worker: Worker, worktree: str) -> BrainResponse:
        prompt = self.composer.compose_task_prompt(task, self.last_feedback(task))
        request = BrainRequest(
            prompt=prompt,
            system_prompt=self.composer.system_prompt(worker),
            context={"working_directory": worktree, "task_id": task.id},
        )

        response = await self.brain.execute(request)

        self.logger.info(
            f"Brain finished task {task.short_id} in {response.duration_ms}ms "
            f"(${response.cost.total_cost_cents / 100:.4f})"
        )
        return response

    async def _record_execution(self, task: Task, response: BrainResponse) -> Task:
        metadata = dict(task.metadata)
        metadata["last_execution"] = {
            "duration_ms": response.duration_ms,
            "input_tokens": response.cost.input_tokens,
            "output_tokens": response.cost.output_tokens,
            "cost_cents": response.cost.total_cost_cents,
        }
        metadata["total_cost_cents"] = (
            float(metadata.get("total_cost_cents", 0.0)) + response.cost.total_cost_cents
        )
        return await self._transition(task, metadata=metadata)

    async def _run(
        self, task: Task, worker: Worker, worktree: str, branch: str
    ) -> ExecutionOutcome:
        response = await self._infer(task, worker, worktree)
        task = await self._record_execution(task, response)

        quality = self.quality_gate.validate(task, response)
        if not quality.passed:
            raise QualityGateError(quality.reason or "Quality gate failed", quality.should_retry)

        result = decode_inference_output(response.output)

        if isinstance(result, DecomposeResult):
            decomposition = await self.engine.decompose_in_flight(task, worker, result)
            return DecomposedOutcome(
                task_id=task.id,
                subtask_ids=decomposition.subtask_ids,
                reason=decomposition.reason,
            )

        if isinstance(result, SelfCorrectResult):
            task.retry_count += 1
            await self._transition(task, TaskStatus.READY)
            self.logger.info(f"Task {task.short_id} self-corrects: {result.reason}")
            return RetryOutcome(
                task_id=task.id,
                reason="Worker requested self-correction",
                feedback=result.reason,
                attempt=task.retry_count,
            )

        await self._store_result(task, worker, result.output)

        if self.config.skip_pull_requests:
            await self._transition(task, TaskStatus.READY_FOR_REVIEW)
            return SuccessOutcome(task_id=task.id, worktree_path=worktree, branch_name=branch)

        pr_url = await self._publish(task, worktree, branch)
        record = await self._register_pull_request(task, worker, pr_url, branch)
        task = await self._transition(
            task, metadata={**task.metadata, "pr_url": pr_url}
        )

        status = await self.wait_for_verification(pr_url, worktree)
        if status.failed_checks:
            return await self.handle_verification_failure(
                task, pr_url, worktree, status.failed_checks
            )

        if record is not None:
            await self.review_service.request_review(record.id)
        await self._transition(task, TaskStatus.READY_FOR_REVIEW)

        return SuccessOutcome(
            task_id=task.id, pr_url=pr_url, worktree_path=worktree, branch_name=branch
        )

    async def _store_result(self, task: Task, worker: Worker, output: str) -> Document:
        document = Document(
            title=f"Result: {task.title}",
            content=output,
            type=DocumentType.TASK_RESULT,
            tags=set(task.tags) | set(task.required_skills),
            task_id=task.id,
            worker_id=worker.id,
            organization_id=task.organization_id,
            metadata={"cost_cents": task.metadata.get("total_cost_cents", 0.0)},
        )
        return await self.repositories.documents.create(document)

    # ------------------------------------------------------------------
    # Change requests
    # ------------------------------------------------------------------

    @staticmethod
    def pull_request_body(task: Task) -> str:
        sections = [f"## Task: {task.title}\n"]
        if task.description:
            sections.append(f"### Description\n{task.description}\n")
        if task.acceptance_criteria:
            criteria = "\n".join(f"- {c}" for c in task.acceptance_criteria)
            sections.append(f"### Acceptance Criteria\n{criteria}\n")
        sections.append(f"### Task ID\n{task.id}\n")
        if task.required_skills:
            sections.append(
                f"### Required Skills\n{', '.join(sorted(task.required_skills))}\n"
            )
        return "\n".join(sections)

    async def _publish(self, task: Task, worktree: str, branch: str) -> str:
        """
        Push the branch and open a change request, reusing an existing one.

        Subtasks sharing a worktree share the change request of the task that
        owns the workspace.
        """
        repository_path = self.repository_for(task)
        current_branch = await self.git.current_branch(worktree) or branch

        async with self.repository_locks.hold(repository_path):
            await self.git.push(worktree, self.config.remote_name, current_branch)

        existing = task.metadata.get("pr_url")
        owner = await self._workspace_owner(task)
        existing = existing or owner.metadata.get("pr_url")
        if existing:
            self.logger.info(f"Pushed {current_branch} to existing PR {existing}")
            return existing

        pr_url = await self.git.create_pr(
            worktree,
            title=owner.title,
            body=self.pull_request_body(owner),
            base=self.config.base_branch,
        )
        self.logger.info(f"PR created for task {task.short_id}: {pr_url}")

        if owner.id != task.id:
            await self.repositories.tasks.update(
                owner.id, metadata={**owner.metadata, "pr_url": pr_url}
            )
        return pr_url

    async def _register_pull_request(
        self, task: Task, worker: Worker, pr_url: str, branch: str
    ) -> Optional[PullRequestRecord]:
        pr_number = extract_pr_number(pr_url)
        if pr_number is None:
            self.logger.warning(f"Could not extract PR number from {pr_url}")
            return None

        return await self.review_service.create_pull_request(
            task_id=task.id,
            pr_number=pr_number,
            pr_url=pr_url,
            repository=self.config.repository_url or self.repository_for(task),
            branch_name=branch,
            author_worker_id=worker.id,
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def check_verification_status(
        self, pr_url: str, worktree: str
    ) -> VerificationStatus:
        """Single poll of every check attached to a change request."""
        checks = await self.git.pr_checks(worktree, pr_url)
        return VerificationStatus(checks=checks)

    async def wait_for_verification(
        self, pr_url: str, worktree: str
    ) -> VerificationStatus:
        """
        Poll checks until all complete or the timeout elapses.

        CRITICAL: A change request with no checks after no_checks_grace_polls
        polls is treated as passed

        Raises:
            VerificationTimeoutError: If checks are still pending at the deadline
        """
        timeout = self.config.verification_timeout_seconds
        interval = self.config.verification_poll_interval_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        empty_polls = 0

        while True:
            status = await self.check_verification_status(pr_url, worktree)

            if status.checks and status.all_complete:
                self.logger.info(
                    f"Verification of {pr_url} complete: "
                    f"{len(status.failed_checks)} of {len(status.checks)} failed"
                )
                return status

            if not status.checks:
                empty_polls += 1
                if empty_polls >= self.config.no_checks_grace_polls:
                    self.logger.warning(f"No verification checks reported for {pr_url}")
                    return status

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise VerificationTimeoutError(pr_url, timeout)

            await asyncio.sleep(min(interval, remaining))

    async def _collect_failure_logs(
        self, worktree: str, failed_checks: List[VerificationCheck]
    ) -> str:
        sections = []
        for check in failed_checks:
            try:
                log = await self.git.failed_logs(worktree, check)
            except GitOperationError as e:
                self.logger.warning(f"Could not fetch logs for check {check.name}: {e}")
                continue
            if log:
                sections.append(f"=== {check.name} ===\n{log}")

        logs = "\n\n".join(sections)
        limit = self.config.max_feedback_chars
        # Failures are usually reported at the end of a log
        return logs[-limit:] if len(logs) > limit else logs

    async def handle_verification_failure(
        self,
        task: Task,
        pr_url: str,
        worktree: str,
        failed_checks: List[VerificationCheck],
    ) -> ExecutionOutcome:
        """
        Record verification feedback and decide between retry and failure.

        CRITICAL: ci_retry_count never decreases and stops at max_ci_retries,
        the failure after that is terminal

        Args:
            task: Task whose change request failed
            pr_url: Change request URL
            worktree: Workspace of the task
            failed_checks: Checks that failed

        Returns:
            RetryOutcome while under the cap, TerminalOutcome afterwards
        """
        logs = await self._collect_failure_logs(worktree, failed_checks)
        names = [check.name for check in failed_checks]
        retries = task.ci_retry_count
        max_retries = self.config.max_ci_retries

        if retries >= max_retries:
            reason = (
                f"Verification failed after {max_retries} retries: {', '.join(names)}"
            )
            self.logger.error(f"Task {task.short_id}: {reason}")
            feedback = CIFeedback(
                pr_url=pr_url,
                attempt=retries,
                failed_checks=names,
                logs=logs,
                summary=reason,
            )
            await self._transition(
                task,
                TaskStatus.FAILED,
                error_message=reason,
                metadata={**task.metadata, "last_ci_feedback": feedback.model_dump()},
            )
            return TerminalOutcome(
                task_id=task.id,
                reason=reason,
                error_type="VerificationFailureMaxRetries",
            )

        attempt = retries + 1
        summary = (
            f"{len(names)} check(s) failed on attempt {attempt} of {max_retries}: "
            f"{', '.join(names)}"
        )
        feedback = CIFeedback(
            pr_url=pr_url,
            attempt=attempt,
            failed_checks=names,
            logs=logs,
            summary=summary,
        )
        metadata = {
            **task.metadata,
            "ci_retry_count": attempt,
            "last_ci_feedback": feedback.model_dump(),
        }
        await self._transition(task, TaskStatus.READY, metadata=metadata, error_message=summary)

        self.logger.warning(f"Task {task.short_id}: {summary}, retry scheduled")
        return RetryOutcome(
            task_id=task.id, reason=summary, feedback=logs or summary, attempt=attempt
        )
