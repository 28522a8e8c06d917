"""Dependency graph, sizing and hierarchical decomposition."""

from .dependency_graph import DependencyGraph
from .complexity_estimator import ComplexityEstimator
from .subtask_factory import SubtaskFactory, parse_priority, parse_task_type
from .progress_tracker import ProgressTracker
from .decomposition_engine import DecompositionEngine, SPECIALIZATION_ROLES

__all__ = [
    "DependencyGraph",
    "ComplexityEstimator",
    "SubtaskFactory",
    "parse_priority",
    "parse_task_type",
    "ProgressTracker",
    "DecompositionEngine",
    "SPECIALIZATION_ROLES",
]
