"""Review port: registers change requests and hands them to reviewers."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..errors import NotFoundError
from ..models.task_models import PullRequestRecord, PullRequestStatus
from ..repositories.base import BaseRepository
from ..repositories.memory import InMemoryRepository


logger = logging.getLogger(__name__)


class BaseReviewService(ABC):
    """Contract the orchestrator uses to hand finished work to review."""

    @abstractmethod
    async def create_pull_request(
        self,
        task_id: str,
        pr_number: int,
        pr_url: str,
        repository: str,
        branch_name: str,
        author_worker_id: str,
    ) -> PullRequestRecord:
        """
        Register an opened change request.

        Returns:
            The stored PullRequestRecord
        """
        pass

    @abstractmethod
    async def request_review(self, pr_id: str) -> PullRequestRecord:
        """
        Ask reviewers to look at a registered change request.

        Raises:
            NotFoundError: If the record does not exist
        """
        pass


class InMemoryReviewService(BaseReviewService):
    """
    Review port backed by a repository of PullRequestRecord.

    GOTCHA: Reviewer selection is out of scope, request_review only moves
    the record to REVIEW_REQUESTED
    """

    def __init__(self, repository: Optional[BaseRepository[PullRequestRecord]] = None):
        self.repository = repository or InMemoryRepository(
            PullRequestRecord, entity_name="PullRequest"
        )
        self.logger = logging.getLogger(__name__)

    async def create_pull_request(
        self,
        task_id: str,
        pr_number: int,
        pr_url: str,
        repository: str,
        branch_name: str,
        author_worker_id: str,
    ) -> PullRequestRecord:
        record = PullRequestRecord(
            task_id=task_id,
            pr_number=pr_number,
            pr_url=pr_url,
            repository=repository,
            branch_name=branch_name,
            author_worker_id=author_worker_id,
        )
        record = await self.repository.create(record)
        self.logger.info(f"Registered PR #{pr_number} for task {task_id}: {pr_url}")
        return record

    async def request_review(self, pr_id: str) -> PullRequestRecord:
        record = await self.repository.find_by_id(pr_id)
        if record is None:
            raise NotFoundError("PullRequest", pr_id)

        record = await self.repository.update(
            pr_id, status=PullRequestStatus.REVIEW_REQUESTED
        )
        self.logger.info(f"Review requested for PR #{record.pr_number}")
        return record

    async def find_by_task(self, task_id: str) -> Optional[PullRequestRecord]:
        records = await self.repository.find(task_id=task_id)
        return records[-1] if records else None
