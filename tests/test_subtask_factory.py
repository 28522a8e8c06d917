"""Tests for subtask construction and decomposition bounds."""

import pytest

from hollon.config import OrchestratorConfig
from hollon.decomposition.subtask_factory import (
    SubtaskFactory,
    parse_complexity,
    parse_priority,
    parse_task_type,
)
from hollon.errors import DecompositionBoundsError
from hollon.models.task_models import ComplexityLevel, Task, TaskPriority, TaskStatus, TaskType


def test_parse_priority():
    default = TaskPriority.P3_MEDIUM

    assert parse_priority("P1", default) == TaskPriority.P1_CRITICAL
    assert parse_priority("p2", default) == TaskPriority.P2_HIGH
    assert parse_priority("P4_LOW", default) == TaskPriority.P4_LOW
    assert parse_priority("urgent", default) == TaskPriority.P1_CRITICAL
    assert parse_priority("whenever", TaskPriority.P4_LOW) == TaskPriority.P4_LOW
    assert parse_priority(None, default) == default


def test_parse_task_type():
    assert parse_task_type("review") == TaskType.REVIEW
    assert parse_task_type("Team_Epic") == TaskType.AGGREGATE
    assert parse_task_type("bug") == TaskType.IMPLEMENTATION
    assert parse_task_type("chore") == TaskType.IMPLEMENTATION
    assert parse_task_type(None) == TaskType.IMPLEMENTATION


def test_parse_complexity():
    assert parse_complexity("High") == ComplexityLevel.HIGH
    assert parse_complexity("enormous") is None
    assert parse_complexity("") is None


class TestSubtaskFactory:
    def setup_method(self):
        self.factory = SubtaskFactory(
            OrchestratorConfig(max_task_depth=3, max_subtasks_per_parent=10)
        )
        self.parent = Task(
            title="Checkout",
            depth=1,
            priority=TaskPriority.P2_HIGH,
            organization_id="org-1",
            project_id="proj-1",
            working_directory="/srv/repos/.workspaces/worker-1/task-1",
        )

    def test_build_inherits_from_parent(self):
        child = self.factory.build(
            self.parent,
            "Payment form",
            affected_files=["form.tsx"],
            estimated_complexity="medium",
        )

        assert child.parent_task_id == self.parent.id
        assert child.depth == 2
        assert child.priority == TaskPriority.P2_HIGH
        assert child.organization_id == "org-1"
        assert child.project_id == "proj-1"
        assert child.affected_files == {"form.tsx"}
        assert child.estimated_complexity == ComplexityLevel.MEDIUM
        assert child.status == TaskStatus.PENDING
        assert child.working_directory is None

    def test_build_with_inherited_workspace(self):
        child = self.factory.build(
            self.parent, "Styles", priority="low", inherit_workspace=True
        )

        assert child.priority == TaskPriority.P4_LOW
        assert child.working_directory == self.parent.working_directory

    def test_bounds_within_limits(self):
        self.factory.validate_bounds(self.parent, new_children=4, existing_children=6)

    def test_depth_limit(self):
        deep = Task(title="Deep", depth=3)

        with pytest.raises(DecompositionBoundsError, match="depth 4"):
            self.factory.validate_bounds(deep, new_children=1)

    def test_fan_out_limit(self):
        with pytest.raises(DecompositionBoundsError, match="11 subtasks"):
            self.factory.validate_bounds(self.parent, new_children=5, existing_children=6)

    def test_empty_plan(self):
        with pytest.raises(DecompositionBoundsError, match="no subtasks"):
            self.factory.validate_bounds(self.parent, new_children=0)
