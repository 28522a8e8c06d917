"""Creation of child tasks within depth and fan-out bounds."""

import logging
from typing import Iterable, Optional

from ..config import OrchestratorConfig
from ..errors import DecompositionBoundsError
from ..models.task_models import (
    ComplexityLevel,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
)


logger = logging.getLogger(__name__)

_PRIORITY_ALIASES = {
    "critical": TaskPriority.P1_CRITICAL,
    "urgent": TaskPriority.P1_CRITICAL,
    "high": TaskPriority.P2_HIGH,
    "medium": TaskPriority.P3_MEDIUM,
    "normal": TaskPriority.P3_MEDIUM,
    "low": TaskPriority.P4_LOW,
}

_TYPE_ALIASES = {
    "team_epic": TaskType.AGGREGATE,
    "epic": TaskType.AGGREGATE,
    "feature": TaskType.IMPLEMENTATION,
    "bug": TaskType.IMPLEMENTATION,
    "testing": TaskType.IMPLEMENTATION,
    "documentation": TaskType.IMPLEMENTATION,
}


def parse_priority(value: Optional[str], default: TaskPriority) -> TaskPriority:
    """Accept "P1".."P4", enum names or plain words like "high"."""
    if not value:
        return default

    normalized = value.strip()
    upper = normalized.upper()
    for priority in TaskPriority:
        if upper == priority.value or upper == priority.name:
            return priority

    return _PRIORITY_ALIASES.get(normalized.lower(), default)


def parse_task_type(value: Optional[str]) -> TaskType:
    if not value:
        return TaskType.IMPLEMENTATION

    normalized = value.strip().lower()
    try:
        return TaskType(normalized)
    except ValueError:
        return _TYPE_ALIASES.get(normalized, TaskType.IMPLEMENTATION)


def parse_complexity(value: Optional[str]) -> Optional[ComplexityLevel]:
    if not value:
        return None
    try:
        return ComplexityLevel(value.strip().lower())
    except ValueError:
        return None


class SubtaskFactory:
    """
    Builds child tasks of a parent and enforces the decomposition bounds.

    CRITICAL: Bounds are checked before anything is created, exceeding them
    fails the whole decomposition instead of truncating it
    GOTCHA: Built tasks are not persisted, the caller creates them
    """

    def __init__(self, config: Optional[OrchestratorConfig] = None):
        self.config = config or OrchestratorConfig()
        self.logger = logging.getLogger(__name__)

    def validate_bounds(
        self, parent: Task, new_children: int, existing_children: int = 0
    ) -> None:
        """
        Check depth and fan-out limits for a planned decomposition.

        Args:
            parent: Task that will receive the children
            new_children: Number of children about to be created
            existing_children: Children the parent already has

        Raises:
            DecompositionBoundsError: If either limit would be exceeded
        """
        child_depth = parent.depth + 1
        if child_depth > self.config.max_task_depth:
            raise DecompositionBoundsError(
                f"Cannot decompose task {parent.id}: child depth {child_depth} "
                f"exceeds maximum {self.config.max_task_depth}"
            )

        total = existing_children + new_children
        if total > self.config.max_subtasks_per_parent:
            raise DecompositionBoundsError(
                f"Cannot decompose task {parent.id}: {total} subtasks "
                f"exceed maximum {self.config.max_subtasks_per_parent}"
            )

        if new_children < 1:
            raise DecompositionBoundsError(
                f"Cannot decompose task {parent.id}: no subtasks proposed"
            )

    def build(
        self,
        parent: Task,
        title: str,
        description: str = "",
        task_type: Optional[str] = None,
        priority: Optional[str] = None,
        affected_files: Iterable[str] = (),
        required_skills: Iterable[str] = (),
        acceptance_criteria: Iterable[str] = (),
        estimated_complexity: Optional[str] = None,
        status: TaskStatus = TaskStatus.PENDING,
        inherit_workspace: bool = False,
    ) -> Task:
        """
        Build one child task of parent.

        Args:
            parent: Parent task
            title: Child title
            description: Child description
            task_type: Free-form type string from brain output
            priority: Free-form priority string, defaults to the parent's
            affected_files: Files the child will touch
            required_skills: Skills needed by the child
            acceptance_criteria: Completion criteria
            estimated_complexity: "low", "medium" or "high"
            status: Initial status
            inherit_workspace: Reuse the parent's working directory

        Returns:
            Unsaved child Task
        """
        child = Task(
            title=title,
            description=description,
            type=parse_task_type(task_type),
            status=status,
            priority=parse_priority(priority, parent.priority),
            parent_task_id=parent.id,
            depth=parent.depth + 1,
            organization_id=parent.organization_id,
            project_id=parent.project_id,
            affected_files=set(affected_files),
            required_skills=set(required_skills),
            acceptance_criteria=list(acceptance_criteria),
            estimated_complexity=parse_complexity(estimated_complexity),
            working_directory=parent.working_directory if inherit_workspace else None,
        )

        self.logger.debug(
            f"Built subtask '{title}' (depth {child.depth}) for parent {parent.id}"
        )

        return child
