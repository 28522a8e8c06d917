"""Tests for the in-memory review service."""

import pytest

from hollon.errors import NotFoundError
from hollon.models.task_models import PullRequestStatus
from hollon.services.review_service import InMemoryReviewService


class TestInMemoryReviewService:
    def setup_method(self):
        self.service = InMemoryReviewService()

    async def _register(self, task_id="task-1", number=42):
        return await self.service.create_pull_request(
            task_id=task_id,
            pr_number=number,
            pr_url=f"https://github.com/acme/widgets/pull/{number}",
            repository="acme/widgets",
            branch_name="feature/alice/task-1-add-parser",
            author_worker_id="worker-1",
        )

    @pytest.mark.asyncio
    async def test_register_and_request_review(self):
        record = await self._register()
        assert record.status == PullRequestStatus.OPEN

        reviewed = await self.service.request_review(record.id)

        assert reviewed.status == PullRequestStatus.REVIEW_REQUESTED
        assert (await self.service.find_by_task("task-1")).status == (
            PullRequestStatus.REVIEW_REQUESTED
        )

    @pytest.mark.asyncio
    async def test_find_by_task_returns_latest(self):
        await self._register(number=41)
        await self._register(number=42)

        record = await self.service.find_by_task("task-1")

        assert record.pr_number == 42
        assert await self.service.find_by_task("task-2") is None

    @pytest.mark.asyncio
    async def test_request_review_unknown(self):
        with pytest.raises(NotFoundError):
            await self.service.request_review("missing")
