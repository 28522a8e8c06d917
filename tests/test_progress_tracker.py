"""Tests for parent status rollup."""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from hollon.decomposition.progress_tracker import ProgressTracker
from hollon.models.task_models import Task, TaskStatus
from hollon.repositories import RepositoryRegistry


def children(*statuses):
    return [Task(title=f"child {i}", status=s) for i, s in enumerate(statuses)]


def test_derive_status():
    derive = ProgressTracker.derive_status

    assert derive([]) is None
    assert derive(children(TaskStatus.COMPLETED, TaskStatus.COMPLETED)) == TaskStatus.COMPLETED
    assert derive(children(TaskStatus.COMPLETED, TaskStatus.FAILED)) == TaskStatus.BLOCKED
    assert derive(children(TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED)) == TaskStatus.BLOCKED
    assert derive(children(TaskStatus.READY, TaskStatus.IN_PROGRESS)) == TaskStatus.IN_PROGRESS
    assert derive(children(TaskStatus.READY, TaskStatus.COMPLETED)) is None


class TestProgressTracker:
    """Rollup through the repository."""

    def setup_method(self):
        self.repos = RepositoryRegistry()
        self.redis = AsyncMock()
        self.tracker = ProgressTracker(self.repos.tasks, redis_client=self.redis)

    async def _tree(self, *child_statuses):
        root = await self.repos.tasks.create(Task(title="root", status=TaskStatus.BLOCKED))
        parent = await self.repos.tasks.create(
            Task(title="parent", status=TaskStatus.BLOCKED, parent_task_id=root.id, depth=1)
        )
        for i, status in enumerate(child_statuses):
            await self.repos.tasks.create(
                Task(title=f"leaf {i}", status=status, parent_task_id=parent.id, depth=2)
            )
        return root, parent

    @pytest.mark.asyncio
    async def test_completion_propagates_to_root(self):
        root, parent = await self._tree(TaskStatus.COMPLETED, TaskStatus.COMPLETED)

        updated = await self.tracker.refresh_parent_status(parent.id)

        assert updated.status == TaskStatus.COMPLETED
        assert updated.completed_at is not None
        assert updated.version == parent.version + 1
        assert (await self.repos.tasks.get(root.id)).status == TaskStatus.COMPLETED
        assert self.redis.publish.await_count == 2

        channel, payload = self.redis.publish.await_args_list[0].args
        event = json.loads(payload)
        assert channel == "hollon:progress"
        assert event["task_id"] == parent.id
        assert event["children"] == {"completed": 2, "total": 2}

    @pytest.mark.asyncio
    async def test_undecided_children_leave_parent_alone(self):
        root, parent = await self._tree(TaskStatus.READY, TaskStatus.COMPLETED)

        updated = await self.tracker.refresh_parent_status(parent.id)

        assert updated.status == TaskStatus.BLOCKED
        assert updated.version == parent.version
        self.redis.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_in_progress_child(self):
        _, parent = await self._tree(TaskStatus.IN_PROGRESS, TaskStatus.READY)

        updated = await self.tracker.refresh_parent_status(parent.id)

        assert updated.status == TaskStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_missing_parent(self):
        assert await self.tracker.refresh_parent_status("nope") is None

    @pytest.mark.asyncio
    async def test_publish_failure_is_logged(self, caplog):
        self.redis.publish.side_effect = RedisConnectionError("down")
        _, parent = await self._tree(TaskStatus.COMPLETED)

        updated = await self.tracker.refresh_parent_status(parent.id)

        assert updated.status == TaskStatus.COMPLETED
        assert "Failed to publish progress" in caplog.text

    @pytest.mark.asyncio
    async def test_no_redis_configured(self):
        tracker = ProgressTracker(self.repos.tasks)
        _, parent = await self._tree(TaskStatus.COMPLETED)

        updated = await tracker.refresh_parent_status(parent.id)

        assert updated.status == TaskStatus.COMPLETED
