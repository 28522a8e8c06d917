"""Shared fixtures and test doubles."""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from typing import Dict, List, Optional, Union

import pytest

from hollon.config import OrchestratorConfig
from hollon.errors import GitOperationError
from hollon.llm.base import BaseBrain
from hollon.models.execution_models import (
    BrainCost,
    BrainRequest,
    BrainResponse,
    VerificationCheck,
)
from hollon.repositories import RepositoryRegistry
from hollon.workspace.git_client import GitClient


class FakeBrain(BaseBrain):
    """Brain returning queued outputs and recording every request."""

    name = "fake"

    def __init__(self, outputs: Optional[List[Union[str, BrainResponse, Exception]]] = None):
        self.outputs = list(outputs or [])
        self.requests: List[BrainRequest] = []

    def queue(self, *outputs: Union[str, BrainResponse, Exception]) -> None:
        self.outputs.extend(outputs)

    async def execute(self, request: BrainRequest) -> BrainResponse:
        self.requests.append(request)
        if not self.outputs:
            raise AssertionError("FakeBrain called more often than expected")

        output = self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        if isinstance(output, BrainResponse):
            return output
        return BrainResponse(
            success=True,
            output=output,
            duration_ms=5,
            cost=BrainCost(input_tokens=100, output_tokens=50, total_cost_cents=0.25),
        )


class FakeGitClient(GitClient):
    """GitClient that keeps worktrees and branches in memory."""

    def __init__(self, pr_url: str = "https://github.com/acme/widgets/pull/42"):
        super().__init__()
        self.pr_url = pr_url
        self.calls: List[tuple] = []
        self.existing: set = set()
        self.branches: Dict[str, str] = {}
        self.check_polls: List[List[VerificationCheck]] = []
        self.logs: Dict[str, str] = {}
        self.fail_fetch = False
        self.fail_rename = False

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def path_exists(self, path: str) -> bool:
        return path in self.existing

    async def fetch(self, repo_path: str, remote: str, branch: str) -> None:
        self.calls.append(("fetch", repo_path, remote, branch))
        if self.fail_fetch:
            raise GitOperationError(
                ["git", "fetch", remote, branch], 128, "fatal: could not read from remote"
            )

    async def worktree_add(
        self, repo_path: str, worktree_path: str, branch: str, base_ref: str
    ) -> None:
        self.calls.append(("worktree_add", worktree_path, branch, base_ref))
        self.existing.add(worktree_path)
        self.branches[worktree_path] = branch

    async def worktree_remove(self, repo_path: str, worktree_path: str) -> None:
        self.calls.append(("worktree_remove", worktree_path))
        self.existing.discard(worktree_path)
        self.branches.pop(worktree_path, None)

    async def rename_branch(self, worktree_path: str, new_name: str) -> None:
        self.calls.append(("rename_branch", worktree_path, new_name))
        if self.fail_rename:
            raise GitOperationError(["git", "branch", "-m", new_name], 128, "fatal: exists")
        self.branches[worktree_path] = new_name

    async def current_branch(self, worktree_path: str) -> str:
        return self.branches.get(worktree_path, "")

    async def push(self, worktree_path: str, remote: str, branch: str) -> None:
        self.calls.append(("push", worktree_path, remote, branch))

    async def create_pr(self, worktree_path: str, title: str, body: str, base: str) -> str:
        self.calls.append(("create_pr", worktree_path, title, base))
        return self.pr_url

    async def pr_checks(self, worktree_path: str, pr_url: str) -> List[VerificationCheck]:
        self.calls.append(("pr_checks", pr_url))
        if not self.check_polls:
            return []
        if len(self.check_polls) > 1:
            return self.check_polls.pop(0)
        return self.check_polls[0]

    async def failed_logs(self, worktree_path: str, check: VerificationCheck) -> str:
        return self.logs.get(check.name, "")


@pytest.fixture
def config():
    return OrchestratorConfig(
        base_branch="main",
        remote_name="origin",
        workspace_dirname=".workspaces",
        repository_url=None,
        skip_pull_requests=False,
        max_task_depth=3,
        max_subtasks_per_parent=10,
        max_ephemeral_depth=1,
        max_ci_retries=3,
        verification_timeout_seconds=1.0,
        verification_poll_interval_seconds=0.01,
        no_checks_grace_polls=3,
        max_feedback_chars=4000,
        overload_threshold=10,
        low_match_threshold=60,
        daily_cost_limit_cents=None,
        openai_api_key="test-key",
        redis_url=None,
    )


@pytest.fixture
def repos():
    return RepositoryRegistry()


@pytest.fixture
def brain():
    return FakeBrain()


@pytest.fixture
def git():
    return FakeGitClient()
