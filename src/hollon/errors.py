"""Exception taxonomy for orchestration failures."""

from typing import List, Optional


class HollonError(Exception):
    """Base class for all orchestrator errors."""

    pass


class NotFoundError(HollonError):
    """Raised when a task, worker or team does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class CycleDetectedError(HollonError):
    """Raised when a dependency insert would create a cycle."""

    def __init__(self, task_id: str, depends_on: str, path: Optional[List[str]] = None):
        self.task_id = task_id
        self.depends_on = depends_on
        self.path = path or []
        if task_id == depends_on:
            message = f"Task {task_id} cannot depend on itself"
        else:
            chain = " -> ".join(self.path) if self.path else depends_on
            message = (
                f"Adding dependency {task_id} -> {depends_on} creates a cycle ({chain})"
            )
        super().__init__(message)


class ConcurrentModificationError(HollonError):
    """Raised when a task was updated by someone else since it was read."""

    def __init__(self, task_id: str, expected_version: int, actual_version: int):
        self.task_id = task_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Task {task_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class WorkspaceError(HollonError):
    """Base class for workspace lifecycle failures."""

    pass


class WorkspaceAlreadyExistsError(WorkspaceError):
    """Raised when the deterministic workspace path is already occupied."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Workspace already exists: {path}")


class GitOperationError(WorkspaceError):
    """Raised when a git or gh subprocess exits non-zero."""

    def __init__(self, command: List[str], returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        message = f"`{' '.join(command)}` failed with exit code {returncode}"
        if stderr:
            message = f"{message}\nstderr: {stderr.strip()}"
        super().__init__(message)


class InferenceError(HollonError):
    """Raised when the brain call fails."""

    pass


class DecompositionError(HollonError):
    """Base class for decomposition failures."""

    pass


class DecompositionParseError(DecompositionError):
    """Raised when structured brain output cannot be parsed."""

    def __init__(self, message: str, raw_output: str = ""):
        self.raw_output = raw_output
        super().__init__(message)


class DecompositionBoundsError(DecompositionError):
    """Raised when a decomposition would exceed the depth or fan-out limit."""

    pass


class QualityGateError(HollonError):
    """Raised when a brain result fails the quality gate."""

    def __init__(self, reason: str, should_retry: bool):
        self.reason = reason
        self.should_retry = should_retry
        super().__init__(reason)


class VerificationFailureError(HollonError):
    """Raised when verification checks on a change request fail."""

    def __init__(self, pr_url: str, failed_checks: List[str]):
        self.pr_url = pr_url
        self.failed_checks = failed_checks
        super().__init__(
            f"Verification failed for {pr_url}: {', '.join(failed_checks) or 'unknown'}"
        )


class VerificationTimeoutError(HollonError):
    """Raised when verification checks do not finish in time."""

    def __init__(self, pr_url: str, timeout_seconds: float):
        self.pr_url = pr_url
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Verification checks for {pr_url} did not complete "
            f"within {timeout_seconds:.0f}s"
        )
