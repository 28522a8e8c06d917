"""Tests for workspace provisioning, execution and the verification loop."""

import asyncio
import json

import pytest

from hollon.errors import InferenceError
from hollon.models.execution_models import (
    CheckState,
    DecomposedOutcome,
    RetryOutcome,
    SuccessOutcome,
    TerminalOutcome,
    VerificationCheck,
)
from hollon.models.task_models import (
    DocumentType,
    PullRequestStatus,
    Role,
    Task,
    TaskStatus,
    TaskType,
    Team,
    Worker,
    WorkerStatus,
)
from hollon.services import InMemoryReviewService, WorkspaceOrchestrator
from hollon.services.workspace_orchestrator import sanitize_branch_component

from conftest import FakeBrain, FakeGitClient


REPO = "/srv/repos/widgets"
DIRECT_OUTPUT = "Implemented the handler.\n\ndef handler():\n    return 42\n"


def passing(name="build"):
    return VerificationCheck(name=name, state=CheckState.PASS)


def failing(name="tests"):
    return VerificationCheck(
        name=name,
        state=CheckState.FAIL,
        link="https://github.com/acme/widgets/actions/runs/987/job/1",
    )


def build(repos, brain, git, config, review=None):
    return WorkspaceOrchestrator(
        repos,
        brain,
        review or InMemoryReviewService(),
        git_client=git,
        config=config,
        repository_path=REPO,
    )


async def seed(repos, **task_kwargs):
    worker = await repos.workers.create(
        Worker(name="Alice Smith", role=Role(name="Developer", capabilities={"python"}))
    )
    task_kwargs.setdefault("title", "Add handler")
    task_kwargs.setdefault("status", TaskStatus.READY)
    task = await repos.tasks.create(Task(assigned_worker_id=worker.id, **task_kwargs))
    return task, worker


class TestNaming:
    """Deterministic paths and branch names."""

    def test_workspace_path(self, repos, brain, git, config):
        orchestrator = build(repos, brain, git, config)

        path = orchestrator.workspace_path(REPO, "ab12cd34", "ef56gh78")

        assert path == "/srv/repos/.workspaces/worker-ab12cd34/task-ef56gh78"
        assert path.endswith(".workspaces/worker-ab12cd34/task-ef56gh78")

    def test_workspace_path_truncates_ids(self, repos, brain, git, config):
        orchestrator = build(repos, brain, git, config)

        path = orchestrator.workspace_path(REPO + "/", "ab12cd34-long", "ef56gh78-long")

        assert path == "/srv/repos/.workspaces/worker-ab12cd34/task-ef56gh78"

    def test_feature_branch(self):
        worker = Worker(id="1234567890", name="Alice Smith!", role=Role(name="Developer"))
        task = Task(id="abcdef123456", title="x")

        assert WorkspaceOrchestrator.feature_branch(worker, task) == (
            "feature/alice-smith/task-abcdef12"
        )

    def test_feature_branch_without_usable_name(self):
        worker = Worker(id="1234567890", name="!!!", role=Role(name="Developer"))
        task = Task(id="abcdef123456", title="x")

        assert WorkspaceOrchestrator.feature_branch(worker, task) == (
            "feature/worker-12345678/task-abcdef12"
        )

    def test_temporary_branch_is_unique(self):
        worker = Worker(id="1234567890", name="a", role=Role(name="Developer"))
        task = Task(id="abcdef123456", title="x")

        first = WorkspaceOrchestrator.temporary_branch(worker, task)
        second = WorkspaceOrchestrator.temporary_branch(worker, task)

        assert first.startswith("wt-worker-12345678-task-abcdef12-")
        assert first != second

    def test_sanitize_branch_component(self):
        assert sanitize_branch_component("  Dev // Team  ") == "dev-team"
        assert sanitize_branch_component("qa.engineer") == "qa.engineer"


class TestSuccessfulExecution:
    """Direct results through to READY_FOR_REVIEW."""

    @pytest.mark.asyncio
    async def test_success_flow(self, repos, brain, git, config):
        review = InMemoryReviewService()
        task, worker = await seed(repos, description="Return 42 from the handler")
        brain.queue(DIRECT_OUTPUT)
        git.check_polls = [[passing()]]
        orchestrator = build(repos, brain, git, config, review)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, SuccessOutcome)
        assert outcome.pr_url == git.pr_url
        assert outcome.branch_name == f"feature/alice-smith/task-{task.short_id}"
        expected_path = orchestrator.workspace_path(REPO, worker.id, task.id)
        assert outcome.worktree_path == expected_path

        stored = await repos.tasks.get(task.id)
        assert stored.status == TaskStatus.READY_FOR_REVIEW
        assert stored.working_directory == expected_path
        assert stored.metadata["pr_url"] == git.pr_url
        assert stored.metadata["total_cost_cents"] == pytest.approx(0.25)

        assert git.names()[:3] == ["fetch", "worktree_add", "rename_branch"]
        assert git.calls[1][3] == "origin/main"
        assert "push" in git.names()
        assert git.names().count("create_pr") == 1

        record = await review.find_by_task(task.id)
        assert record.pr_number == 42
        assert record.status == PullRequestStatus.REVIEW_REQUESTED

        documents = await repos.documents.find(task_id=task.id)
        assert [d.type for d in documents] == [DocumentType.TASK_RESULT]

        assert brain.requests[0].context["working_directory"] == expected_path
        assert (await repos.workers.get(worker.id)).status == WorkerStatus.IDLE

    @pytest.mark.asyncio
    async def test_fetch_failure_falls_back_to_local_base(self, repos, brain, git, config):
        task, worker = await seed(repos)
        brain.queue(DIRECT_OUTPUT)
        git.fail_fetch = True
        git.check_polls = [[passing()]]
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, SuccessOutcome)
        worktree_add = [c for c in git.calls if c[0] == "worktree_add"][0]
        assert worktree_add[3] == "main"

    @pytest.mark.asyncio
    async def test_no_checks_reported_counts_as_passed(self, repos, brain, git, config):
        task, worker = await seed(repos)
        brain.queue(DIRECT_OUTPUT)
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, SuccessOutcome)
        assert git.names().count("pr_checks") == 3

    @pytest.mark.asyncio
    async def test_no_checks_grace_polls_is_configurable(self, repos, brain, git, config):
        config = config.model_copy(update={"no_checks_grace_polls": 5})
        task, worker = await seed(repos)
        brain.queue(DIRECT_OUTPUT)
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, SuccessOutcome)
        assert git.names().count("pr_checks") == 5

    @pytest.mark.asyncio
    async def test_skip_pull_requests(self, repos, brain, git, config):
        config = config.model_copy(update={"skip_pull_requests": True})
        task, worker = await seed(repos)
        brain.queue(DIRECT_OUTPUT)
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, SuccessOutcome)
        assert outcome.pr_url is None
        assert "push" not in git.names()
        assert (await repos.tasks.get(task.id)).status == TaskStatus.READY_FOR_REVIEW


class TestVerificationRetries:
    """Bounded retry loop on failing checks."""

    @pytest.mark.asyncio
    async def test_three_retries_then_terminal(self, repos, brain, git, config):
        task, worker = await seed(repos)
        brain.queue(DIRECT_OUTPUT, DIRECT_OUTPUT, DIRECT_OUTPUT, DIRECT_OUTPUT)
        git.check_polls = [[passing("lint"), failing("tests")]]
        git.logs = {"tests": "FAILED test_handler - AssertionError"}
        orchestrator = build(repos, brain, git, config)

        attempts = []
        for _ in range(3):
            outcome = await orchestrator.execute_task(task.id, worker.id)
            assert isinstance(outcome, RetryOutcome)
            attempts.append(outcome.attempt)

            stored = await repos.tasks.get(task.id)
            assert stored.status == TaskStatus.READY
            assert stored.metadata["ci_retry_count"] == outcome.attempt
            feedback = stored.metadata["last_ci_feedback"]
            assert feedback["failed_checks"] == ["tests"]
            assert "AssertionError" in feedback["logs"]

        assert attempts == [1, 2, 3]

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, TerminalOutcome)
        assert outcome.error_type == "VerificationFailureMaxRetries"
        stored = await repos.tasks.get(task.id)
        assert stored.status == TaskStatus.FAILED
        assert stored.metadata["ci_retry_count"] == 3
        assert stored.working_directory is None

        # One workspace and one change request across all attempts
        assert git.names().count("worktree_add") == 1
        assert git.names().count("create_pr") == 1
        assert git.names().count("worktree_remove") == 1
        assert "Build Verification Feedback (attempt 1)" in brain.requests[1].prompt

    @pytest.mark.asyncio
    async def test_verification_timeout_is_terminal(self, repos, brain, git, config):
        config = config.model_copy(
            update={
                "verification_timeout_seconds": 0.05,
                "verification_poll_interval_seconds": 0.01,
            }
        )
        task, worker = await seed(repos)
        brain.queue(DIRECT_OUTPUT)
        git.check_polls = [[VerificationCheck(name="build", state=CheckState.PENDING)]]
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, TerminalOutcome)
        assert outcome.error_type == "VerificationTimeoutError"
        stored = await repos.tasks.get(task.id)
        assert stored.status == TaskStatus.FAILED
        assert "worktree_remove" in git.names()


class TestExecutionFailures:
    """Errors converted to outcomes."""

    @pytest.mark.asyncio
    async def test_existing_workspace_is_terminal(self, repos, brain, git, config):
        task, worker = await seed(repos)
        orchestrator = build(repos, brain, git, config)
        path = orchestrator.workspace_path(REPO, worker.id, task.id)
        git.existing.add(path)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, TerminalOutcome)
        assert outcome.error_type == "WorkspaceAlreadyExistsError"
        assert brain.requests == []
        assert git.path_exists(path)
        assert (await repos.tasks.get(task.id)).status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_branch_rename_failure_removes_worktree(self, repos, brain, git, config):
        task, worker = await seed(repos)
        git.fail_rename = True
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, TerminalOutcome)
        assert outcome.error_type == "GitOperationError"
        assert git.existing == set()

    @pytest.mark.asyncio
    async def test_quality_gate_failure_is_retryable(self, repos, brain, git, config):
        task, worker = await seed(repos)
        brain.queue("Error: command not found: npm")
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, RetryOutcome)
        stored = await repos.tasks.get(task.id)
        assert stored.status == TaskStatus.READY
        assert stored.retry_count == 1
        assert stored.working_directory is not None
        assert "worktree_remove" not in git.names()

    @pytest.mark.asyncio
    async def test_cost_limit_is_terminal(self, repos, brain, git, config):
        config = config.model_copy(update={"daily_cost_limit_cents": 1.0})
        task, worker = await seed(repos)
        brain.queue(DIRECT_OUTPUT)
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, TerminalOutcome)
        assert outcome.error_type == "QualityGateError"
        assert (await repos.tasks.get(task.id)).working_directory is None

    @pytest.mark.asyncio
    async def test_inference_error_is_retryable(self, repos, brain, git, config):
        task, worker = await seed(repos)
        brain.queue(InferenceError("OpenAI rate limit"))
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, RetryOutcome)
        assert "rate limit" in outcome.reason

    @pytest.mark.asyncio
    async def test_self_correction(self, repos, brain, git, config):
        task, worker = await seed(repos)
        brain.queue("SELF_CORRECT: edited the wrong module, switch to services/")
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, RetryOutcome)
        assert outcome.feedback == "edited the wrong module, switch to services/"
        stored = await repos.tasks.get(task.id)
        assert stored.status == TaskStatus.READY
        assert stored.retry_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_update_is_detected(self, repos, git, config):
        task, worker = await seed(repos)

        class MeddlingBrain(FakeBrain):
            async def execute(self, request):
                await repos.tasks.update(task.id, version=99)
                return await super().execute(request)

        brain = MeddlingBrain([DIRECT_OUTPUT])
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, TerminalOutcome)
        assert outcome.error_type == "ConcurrentModificationError"
        assert git.existing == set()
        assert (await repos.tasks.get(task.id)).status == TaskStatus.IN_PROGRESS


class TestDecomposition:
    """Decomposition requests and aggregate tasks."""

    @pytest.mark.asyncio
    async def test_decompose_sentinel(self, repos, brain, git, config):
        task, worker = await seed(repos)
        payload = {
            "reason": "Two independent changes",
            "subtasks": [
                {"title": "Backend handler", "affected_files": ["api.py"]},
                {"title": "Frontend form", "dependencies": ["Backend handler"]},
            ],
        }
        brain.queue("DECOMPOSE_TASK: " + json.dumps(payload))
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, DecomposedOutcome)
        assert len(outcome.subtask_ids) == 2
        assert outcome.reason == "Two independent changes"

        stored = await repos.tasks.get(task.id)
        assert stored.status == TaskStatus.BLOCKED
        for subtask_id in outcome.subtask_ids:
            subtask = await repos.tasks.get(subtask_id)
            assert subtask.working_directory == stored.working_directory
        assert "worktree_remove" not in git.names()

    @pytest.mark.asyncio
    async def test_subtask_reuses_parent_workspace_and_change_request(
        self, repos, brain, git, config
    ):
        task, worker = await seed(repos)
        brain.queue(
            "DECOMPOSE_TASK: "
            + json.dumps({"reason": "split", "subtasks": [{"title": "Part one"}]})
        )
        git.check_polls = [[passing()]]
        orchestrator = build(repos, brain, git, config)
        decomposed = await orchestrator.execute_task(task.id, worker.id)
        subtask = await repos.tasks.get(decomposed.subtask_ids[0])

        brain.queue(DIRECT_OUTPUT)
        outcome = await orchestrator.execute_task(subtask.id, subtask.assigned_worker_id)

        assert isinstance(outcome, SuccessOutcome)
        assert outcome.worktree_path == subtask.working_directory
        assert git.names().count("worktree_add") == 1
        create_pr = [c for c in git.calls if c[0] == "create_pr"][0]
        assert create_pr[2] == "Add handler"
        assert (await repos.tasks.get(task.id)).metadata["pr_url"] == git.pr_url

    @pytest.mark.asyncio
    async def test_aggregate_is_distributed(self, repos, brain, git, config):
        worker = await repos.workers.create(
            Worker(
                id="w-lead",
                name="Lead",
                role=Role(name="Developer"),
                team_id="team-core",
            )
        )
        await repos.teams.create(Team(id="team-core", name="Core", member_ids={"w-lead"}))
        task = await repos.tasks.create(Task(title="Epic", type=TaskType.AGGREGATE))
        brain.queue(json.dumps({"subtasks": [{"title": "Step one"}], "reasoning": "r"}))
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, DecomposedOutcome)
        assert outcome.reason == "Distributed to team"
        assert len(outcome.subtask_ids) == 1
        stored = await repos.tasks.get(task.id)
        assert stored.assigned_team_id == "team-core"
        assert stored.status == TaskStatus.BLOCKED
        assert git.calls == []

    @pytest.mark.asyncio
    async def test_aggregate_without_team(self, repos, brain, git, config):
        worker = await repos.workers.create(Worker(name="Solo", role=Role(name="Developer")))
        task = await repos.tasks.create(Task(title="Epic", type=TaskType.AGGREGATE))
        orchestrator = build(repos, brain, git, config)

        outcome = await orchestrator.execute_task(task.id, worker.id)

        assert isinstance(outcome, TerminalOutcome)
        assert outcome.error_type == "DecompositionError"


class TestWorkspaceCleanup:
    """Cleanup and repository serialization."""

    @pytest.mark.asyncio
    async def test_cleanup_is_idempotent(self, repos, brain, git, config):
        path = "/srv/repos/.workspaces/worker-a/task-b"
        task = await repos.tasks.create(Task(title="t", working_directory=path))
        git.existing.add(path)
        orchestrator = build(repos, brain, git, config)

        await orchestrator.cleanup_workspace(path, task.id)
        await orchestrator.cleanup_workspace(path, task.id)

        assert git.names().count("worktree_remove") == 1
        assert (await repos.tasks.get(task.id)).working_directory is None

    @pytest.mark.asyncio
    async def test_cleanup_of_unknown_task(self, repos, brain, git, config):
        orchestrator = build(repos, brain, git, config)

        await orchestrator.cleanup_workspace("/nowhere", "missing-task")

        assert git.calls == []

    @pytest.mark.asyncio
    async def test_git_mutations_are_serialized_per_repository(self, repos, brain, config):
        class SlowGit(FakeGitClient):
            def __init__(self):
                super().__init__()
                self.active = 0
                self.max_active = 0

            async def worktree_add(self, repo_path, worktree_path, branch, base_ref):
                self.active += 1
                self.max_active = max(self.max_active, self.active)
                await asyncio.sleep(0.01)
                await super().worktree_add(repo_path, worktree_path, branch, base_ref)
                self.active -= 1

        git = SlowGit()
        first, worker = await seed(repos, title="First")
        second = await repos.tasks.create(
            Task(title="Second", status=TaskStatus.READY, assigned_worker_id=worker.id)
        )
        brain.queue(DIRECT_OUTPUT, DIRECT_OUTPUT)
        git.check_polls = [[passing()]]
        orchestrator = build(repos, brain, git, config)

        outcomes = await asyncio.gather(
            orchestrator.execute_task(first.id, worker.id),
            orchestrator.execute_task(second.id, worker.id),
        )

        assert all(isinstance(o, SuccessOutcome) for o in outcomes)
        assert git.max_active == 1
        assert not orchestrator.repository_locks.is_locked(REPO)
