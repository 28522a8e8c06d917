"""Bottom-up status rollup from subtasks to their parents."""

import json
import logging
from collections import Counter
from datetime import datetime
from typing import Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..models.task_models import Task, TaskStatus
from ..repositories import BaseRepository


logger = logging.getLogger(__name__)


class ProgressTracker:
    """
    Rolls child task statuses up to their parent.

    PATTERN: Update leaf task -> propagate to ancestors iteratively
    CRITICAL: Parents are only touched when their derived status changes
    GOTCHA: Redis publishing is optional and best effort
    """

    def __init__(
        self,
        task_repository: BaseRepository[Task],
        redis_client: Optional[redis.Redis] = None,
        redis_url: Optional[str] = None,
        channel: str = "hollon:progress",
    ):
        """
        Initialize progress tracker.

        Args:
            task_repository: Task persistence port
            redis_client: Optional Redis client for progress events
            redis_url: Redis URL used to connect lazily when no client is given
            channel: Pub/sub channel for progress events
        """
        self.tasks = task_repository
        self.redis = redis_client
        self.redis_url = redis_url
        self.channel = channel
        self.logger = logging.getLogger(__name__)

    async def _get_redis(self) -> Optional[redis.Redis]:
        if self.redis is None and self.redis_url:
            self.redis = redis.from_url(self.redis_url)
            self.logger.info(f"Progress events published to Redis: {self.redis_url}")
        return self.redis

    @staticmethod
    def derive_status(children: list) -> Optional[TaskStatus]:
        """
        Status implied by a set of children, None if nothing should change.

        All COMPLETED -> COMPLETED; any FAILED or BLOCKED -> BLOCKED;
        any IN_PROGRESS -> IN_PROGRESS.
        """
        if not children:
            return None

        statuses = [child.status for child in children]

        if all(status == TaskStatus.COMPLETED for status in statuses):
            return TaskStatus.COMPLETED
        if any(status in (TaskStatus.FAILED, TaskStatus.BLOCKED) for status in statuses):
            return TaskStatus.BLOCKED
        if any(status == TaskStatus.IN_PROGRESS for status in statuses):
            return TaskStatus.IN_PROGRESS
        return None

    async def refresh_parent_status(self, parent_id: str) -> Optional[Task]:
        """
        Recompute a parent's status from its children and propagate upward.

        Args:
            parent_id: Parent task ID

        Returns:
            The parent after the update, or None if it does not exist
        """
        current_id: Optional[str] = parent_id
        first: Optional[Task] = None

        while current_id:
            parent = await self.tasks.find_by_id(current_id)
            if parent is None:
                self.logger.error(f"Parent task {current_id} not found")
                return first

            children = await self.tasks.find(parent_task_id=current_id)
            new_status = self.derive_status(children)

            if new_status is not None and new_status != parent.status:
                old_status = parent.status
                parent.status = new_status
                parent.version += 1
                if new_status == TaskStatus.COMPLETED:
                    parent.completed_at = datetime.now()
                parent = await self.tasks.save(parent)

                self.logger.info(
                    f"Parent task {parent.id} status: "
                    f"{old_status.value} -> {new_status.value}"
                )
                await self.publish(parent, children)

            if first is None:
                first = parent

            if new_status is None or parent.parent_task_id is None:
                break
            current_id = parent.parent_task_id

        return first

    def summarize(self, children: list) -> Dict[str, int]:
        counts = Counter(child.status.value for child in children)
        counts["total"] = len(children)
        return dict(counts)

    async def publish(self, task: Task, children: list) -> None:
        """Publish a progress event for task. Failures are logged only."""
        client = await self._get_redis()
        if client is None:
            return

        event = {
            "task_id": task.id,
            "status": task.status.value,
            "children": self.summarize(children),
            "timestamp": datetime.now().isoformat(),
        }

        try:
            await client.publish(self.channel, json.dumps(event))
        except RedisError as e:
            self.logger.warning(f"Failed to publish progress for {task.id}: {e}")
