"""In-memory repository implementation."""

import logging
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, Type

from .base import BaseRepository, T
from ..errors import NotFoundError
from ..models.task_models import Document, Task, Team, Worker


logger = logging.getLogger(__name__)

_COLLECTION_TYPES = (set, frozenset, list, tuple)


class InMemoryRepository(BaseRepository[T], Generic[T]):
    """
    Dictionary-backed repository.

    PATTERN: Store and return deep copies so callers cannot mutate state by accident
    GOTCHA: Insertion order is preserved, find() results follow creation order
    """

    def __init__(self, model: Type[T], entity_name: Optional[str] = None):
        """
        Initialize repository.

        Args:
            model: Pydantic model class stored in this repository
            entity_name: Name used in NotFoundError messages
        """
        self.model = model
        self.entity_name = entity_name or model.__name__
        self._items: Dict[str, T] = {}

    async def find_by_id(self, entity_id: str) -> Optional[T]:
        item = self._items.get(entity_id)
        return item.model_copy(deep=True) if item is not None else None

    async def find(self, **filters: Any) -> List[T]:
        return [
            item.model_copy(deep=True)
            for item in self._items.values()
            if self._matches(item, filters)
        ]

    async def create(self, entity: T) -> T:
        if entity.id in self._items:
            raise ValueError(f"{self.entity_name} {entity.id} already exists")
        self._items[entity.id] = entity.model_copy(deep=True)
        logger.debug(f"Created {self.entity_name} {entity.id}")
        return entity.model_copy(deep=True)

    async def save(self, entity: T) -> T:
        if hasattr(entity, "updated_at"):
            entity.updated_at = datetime.now()
        self._items[entity.id] = entity.model_copy(deep=True)
        return entity.model_copy(deep=True)

    async def update(self, entity_id: str, **changes: Any) -> T:
        item = self._items.get(entity_id)
        if item is None:
            raise NotFoundError(self.entity_name, entity_id)

        for field, value in changes.items():
            if field not in self.model.model_fields:
                raise AttributeError(f"{self.entity_name} has no field '{field}'")
            setattr(item, field, value)

        if "updated_at" in self.model.model_fields and "updated_at" not in changes:
            item.updated_at = datetime.now()

        return item.model_copy(deep=True)

    async def remove(self, entity_id: str) -> bool:
        removed = self._items.pop(entity_id, None)
        if removed is not None:
            logger.debug(f"Removed {self.entity_name} {entity_id}")
        return removed is not None

    @staticmethod
    def _matches(item: T, filters: Dict[str, Any]) -> bool:
        for field, expected in filters.items():
            actual = getattr(item, field)
            if isinstance(expected, _COLLECTION_TYPES):
                if actual not in expected:
                    return False
            elif actual != expected:
                return False
        return True


class RepositoryRegistry:
    """Bundle of the repositories every component works against."""

    def __init__(
        self,
        tasks: Optional[BaseRepository[Task]] = None,
        workers: Optional[BaseRepository[Worker]] = None,
        teams: Optional[BaseRepository[Team]] = None,
        documents: Optional[BaseRepository[Document]] = None,
    ):
        self.tasks = tasks or InMemoryRepository(Task)
        self.workers = workers or InMemoryRepository(Worker)
        self.teams = teams or InMemoryRepository(Team)
        self.documents = documents or InMemoryRepository(Document)
