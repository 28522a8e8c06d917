"""Persistence ports and the in-memory implementation."""

from .base import BaseRepository
from .memory import InMemoryRepository, RepositoryRegistry

__all__ = [
    "BaseRepository",
    "InMemoryRepository",
    "RepositoryRegistry",
]
