"""Assignment planning and decision-support analyzers."""

from .worker_matcher import WorkerMatcher, match_reason
from .uncertainty_analyzer import UncertaintyAnalyzer
from .pivot_analyzer import PivotImpactAnalyzer

__all__ = [
    "WorkerMatcher",
    "match_reason",
    "UncertaintyAnalyzer",
    "PivotImpactAnalyzer",
]
