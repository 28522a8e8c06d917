"""Tests for the in-memory repositories."""

import pytest

from hollon.errors import NotFoundError
from hollon.models.task_models import Task, TaskStatus
from hollon.repositories import InMemoryRepository


class TestInMemoryRepository:
    def setup_method(self):
        self.repo = InMemoryRepository(Task)

    @pytest.mark.asyncio
    async def test_create_and_find(self):
        task = await self.repo.create(Task(title="Write docs"))

        found = await self.repo.find_by_id(task.id)

        assert found.title == "Write docs"
        assert await self.repo.find_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_create_duplicate(self):
        task = await self.repo.create(Task(title="Once"))

        with pytest.raises(ValueError):
            await self.repo.create(task)

    @pytest.mark.asyncio
    async def test_returns_detached_copies(self):
        task = await self.repo.create(Task(title="Original"))

        copy = await self.repo.find_by_id(task.id)
        copy.title = "Changed"
        copy.tags.add("local")

        stored = await self.repo.get(task.id)
        assert stored.title == "Original"
        assert stored.tags == set()

    @pytest.mark.asyncio
    async def test_find_filters(self):
        a = await self.repo.create(Task(title="a", status=TaskStatus.READY, depth=1))
        b = await self.repo.create(Task(title="b", status=TaskStatus.BLOCKED, depth=1))
        await self.repo.create(Task(title="c", status=TaskStatus.COMPLETED, depth=0))

        assert [t.id for t in await self.repo.find(depth=1)] == [a.id, b.id]
        assert [t.id for t in await self.repo.find(status=TaskStatus.READY)] == [a.id]

        statuses = {TaskStatus.READY, TaskStatus.BLOCKED}
        assert await self.repo.count(status=statuses) == 2
        assert await self.repo.count() == 3

    @pytest.mark.asyncio
    async def test_update(self):
        task = await self.repo.create(Task(title="Edit me"))

        updated = await self.repo.update(task.id, status=TaskStatus.IN_PROGRESS)

        assert updated.status == TaskStatus.IN_PROGRESS
        assert updated.updated_at >= task.updated_at

        with pytest.raises(AttributeError):
            await self.repo.update(task.id, colour="red")

        with pytest.raises(NotFoundError):
            await self.repo.update("missing", status=TaskStatus.READY)

    @pytest.mark.asyncio
    async def test_remove_and_get(self):
        task = await self.repo.create(Task(title="Temporary"))

        assert await self.repo.remove(task.id) is True
        assert await self.repo.remove(task.id) is False

        with pytest.raises(NotFoundError) as exc_info:
            await self.repo.get(task.id)
        assert exc_info.value.entity == "Task"
