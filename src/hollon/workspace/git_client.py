"""Async wrapper around the git and gh command line tools."""

import asyncio
import json
import logging
import os
import re
from typing import List, Optional

from ..errors import GitOperationError
from ..models.execution_models import CheckState, VerificationCheck


logger = logging.getLogger(__name__)

_BUCKET_STATES = {
    "pass": CheckState.PASS,
    "fail": CheckState.FAIL,
    "pending": CheckState.PENDING,
    "skipping": CheckState.SKIPPING,
    "cancel": CheckState.CANCEL,
}

_RUN_ID_PATTERN = re.compile(r"/actions/runs/(\d+)")
_PR_NUMBER_PATTERN = re.compile(r"/pull/(\d+)")

# `gh pr checks` exits 8 while checks are pending and 1 when any failed
_GH_CHECKS_OK_CODES = {0, 1, 8}


def extract_pr_number(pr_url: str) -> Optional[int]:
    match = _PR_NUMBER_PATTERN.search(pr_url)
    return int(match.group(1)) if match else None


def extract_run_id(link: Optional[str]) -> Optional[str]:
    if not link:
        return None
    match = _RUN_ID_PATTERN.search(link)
    return match.group(1) if match else None


class GitClient:
    """
    Runs git/gh as subprocesses.

    PATTERN: asyncio.create_subprocess_exec with argument lists, never a shell
    CRITICAL: Non-zero exits raise GitOperationError carrying stderr
    GOTCHA: Callers serialize mutating commands per repository themselves
    """

    def __init__(self, git_binary: str = "git", gh_binary: str = "gh"):
        self.git_binary = git_binary
        self.gh_binary = gh_binary
        self.logger = logging.getLogger(__name__)

    async def run(
        self,
        command: List[str],
        cwd: str,
        ok_codes: Optional[set] = None,
    ) -> str:
        """
        Run a command and return its stdout.

        Args:
            command: Program and arguments
            cwd: Working directory
            ok_codes: Exit codes treated as success (default {0})

        Returns:
            Decoded stdout, stripped

        Raises:
            GitOperationError: On a non-accepted exit code or a missing binary
        """
        ok_codes = ok_codes or {0}
        self.logger.debug(f"Running {' '.join(command)} in {cwd}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise GitOperationError(command, -1, str(e)) from e

        stdout, stderr = await process.communicate()

        if process.returncode not in ok_codes:
            raise GitOperationError(
                command, process.returncode, stderr.decode(errors="replace")
            )

        return stdout.decode(errors="replace").strip()

    async def git(self, cwd: str, *args: str) -> str:
        return await self.run([self.git_binary, *args], cwd)

    # ------------------------------------------------------------------
    # Workspace lifecycle
    # ------------------------------------------------------------------

    def path_exists(self, path: str) -> bool:
        return os.path.exists(path)

    async def fetch(self, repo_path: str, remote: str, branch: str) -> None:
        await self.git(repo_path, "fetch", remote, branch)

    async def ref_exists(self, repo_path: str, ref: str) -> bool:
        try:
            await self.git(repo_path, "rev-parse", "--verify", "--quiet", ref)
        except GitOperationError:
            return False
        return True

    async def worktree_add(
        self, repo_path: str, worktree_path: str, branch: str, base_ref: str
    ) -> None:
        """Create worktree_path on a new branch starting at base_ref."""
        os.makedirs(os.path.dirname(worktree_path), exist_ok=True)
        await self.git(repo_path, "worktree", "add", "-b", branch, worktree_path, base_ref)

    async def worktree_remove(self, repo_path: str, worktree_path: str) -> None:
        await self.git(repo_path, "worktree", "remove", "--force", worktree_path)

    async def rename_branch(self, worktree_path: str, new_name: str) -> None:
        await self.git(worktree_path, "branch", "-m", new_name)

    async def current_branch(self, worktree_path: str) -> str:
        return await self.git(worktree_path, "branch", "--show-current")

    async def push(self, worktree_path: str, remote: str, branch: str) -> None:
        await self.git(worktree_path, "push", "-u", remote, branch)

    # ------------------------------------------------------------------
    # Pull requests and checks
    # ------------------------------------------------------------------

    async def create_pr(
        self, worktree_path: str, title: str, body: str, base: str
    ) -> str:
        """Open a pull request for the current branch and return its URL."""
        output = await self.run(
            [
                self.gh_binary,
                "pr",
                "create",
                "--title",
                title,
                "--body",
                body,
                "--base",
                base,
            ],
            worktree_path,
        )
        # gh prints progress lines before the URL
        return output.splitlines()[-1].strip() if output else ""

    async def pr_checks(self, worktree_path: str, pr_url: str) -> List[VerificationCheck]:
        """
        Current state of every check attached to a pull request.

        Returns:
            Checks, empty when none are reported yet
        """
        command = [
            self.gh_binary,
            "pr",
            "checks",
            pr_url,
            "--json",
            "name,state,bucket,link",
        ]
        try:
            output = await self.run(command, worktree_path, ok_codes=_GH_CHECKS_OK_CODES)
        except GitOperationError as e:
            if "no checks reported" in e.stderr.lower():
                return []
            raise

        if not output:
            return []

        try:
            entries = json.loads(output)
        except json.JSONDecodeError as e:
            raise GitOperationError(command, 0, f"Unparseable checks output: {e}") from e

        return [
            VerificationCheck(
                name=entry.get("name", "unknown"),
                state=_BUCKET_STATES.get(
                    str(entry.get("bucket", "")).lower(), CheckState.PENDING
                ),
                link=entry.get("link") or None,
            )
            for entry in entries
        ]

    async def failed_logs(self, worktree_path: str, check: VerificationCheck) -> str:
        """Failed step logs for a check, empty if the run cannot be resolved."""
        run_id = extract_run_id(check.link)
        if run_id is None:
            return ""
        return await self.run(
            [self.gh_binary, "run", "view", run_id, "--log-failed"], worktree_path
        )
