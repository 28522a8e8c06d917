"""Execution services: workspace orchestration and review handoff."""

from .review_service import BaseReviewService, InMemoryReviewService
from .workspace_orchestrator import WorkspaceOrchestrator, sanitize_branch_component

__all__ = [
    "BaseReviewService",
    "InMemoryReviewService",
    "WorkspaceOrchestrator",
    "sanitize_branch_component",
]
