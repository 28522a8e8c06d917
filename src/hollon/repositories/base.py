"""Abstract persistence port for orchestrator entities."""

from abc import ABC, abstractmethod
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel

from ..errors import NotFoundError

T = TypeVar("T", bound=BaseModel)


class BaseRepository(ABC, Generic[T]):
    """
    Find/create/update/remove contract keyed by entity id.

    PATTERN: Filters are keyword arguments; a collection value means "field in values"
    CRITICAL: Implementations return detached copies, callers persist changes explicitly
    """

    entity_name: str = "Entity"

    @abstractmethod
    async def find_by_id(self, entity_id: str) -> Optional[T]:
        """
        Fetch one entity.

        Args:
            entity_id: Entity ID

        Returns:
            Entity if found, None otherwise
        """
        pass

    @abstractmethod
    async def find(self, **filters: Any) -> List[T]:
        """
        Fetch all entities matching every filter.

        Args:
            **filters: field=value or field=collection-of-values

        Returns:
            Matching entities in insertion order
        """
        pass

    @abstractmethod
    async def create(self, entity: T) -> T:
        """Persist a new entity."""
        pass

    @abstractmethod
    async def save(self, entity: T) -> T:
        """Insert or replace an entity."""
        pass

    @abstractmethod
    async def update(self, entity_id: str, **changes: Any) -> T:
        """
        Apply field changes to a stored entity.

        Raises:
            NotFoundError: If the entity does not exist
        """
        pass

    @abstractmethod
    async def remove(self, entity_id: str) -> bool:
        """Delete an entity. Returns False when it did not exist."""
        pass

    async def count(self, **filters: Any) -> int:
        return len(await self.find(**filters))

    async def get(self, entity_id: str) -> T:
        """Fetch one entity or raise NotFoundError."""
        entity = await self.find_by_id(entity_id)
        if entity is None:
            raise NotFoundError(self.entity_name, entity_id)
        return entity
