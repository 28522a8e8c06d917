"""Heuristic sizing of tasks in estimated commits."""

import logging
import math

from ..models.decomposition_models import ComplexityAssessment, DecompositionStrategy
from ..models.task_models import ComplexityLevel, Task


logger = logging.getLogger(__name__)

# Score thresholds for decomposition strategy
RECOMMENDED_THRESHOLD = 60
MANDATORY_THRESHOLD = 80

# One estimated commit per this many score points
POINTS_PER_COMMIT = 15


class ComplexityEstimator:
    """
    Estimates how large a task is before a worker starts on it.

    PATTERN: Multi-factor additive score, capped per factor
    CRITICAL: Must be cheap, runs on every prompt composition
    GOTCHA: Only declared metadata is used, the description is not analyzed
    """

    def __init__(self):
        """Initialize complexity estimator."""
        self.logger = logging.getLogger(__name__)

        self.complexity_weights = {
            ComplexityLevel.LOW: 0,
            ComplexityLevel.MEDIUM: 10,
            ComplexityLevel.HIGH: 25,
        }

    def assess(self, task: Task) -> ComplexityAssessment:
        """
        Score a task and pick a decomposition strategy.

        Args:
            task: Task to assess

        Returns:
            ComplexityAssessment with score, commit estimate and strategy
        """
        factors = {
            "affected_files": float(min(30, 6 * len(task.affected_files))),
            "story_points": float(min(25, 3 * (task.story_points or 0))),
            "complexity": float(
                self.complexity_weights.get(task.estimated_complexity, 0)
            ),
            "required_skills": float(min(10, 3 * len(task.required_skills))),
            "acceptance_criteria": float(min(10, 2 * len(task.acceptance_criteria))),
            "description": float(min(10, len(task.description) // 150)),
            "dependencies": float(min(10, 2 * len(task.dependencies))),
        }

        score = min(100.0, sum(factors.values()))
        estimated_commits = max(1, math.ceil(score / POINTS_PER_COMMIT))

        if score >= MANDATORY_THRESHOLD:
            strategy = DecompositionStrategy.MANDATORY
        elif score >= RECOMMENDED_THRESHOLD:
            strategy = DecompositionStrategy.RECOMMENDED
        else:
            strategy = DecompositionStrategy.DIRECT

        top = sorted(
            ((name, value) for name, value in factors.items() if value > 0),
            key=lambda item: -item[1],
        )[:3]
        drivers = ", ".join(name.replace("_", " ") for name, _ in top) or "none"
        reasoning = (
            f"Score {score:.0f}/100 (~{estimated_commits} commits), "
            f"main drivers: {drivers}"
        )

        self.logger.debug(f"Assessed task {task.id}: {reasoning} -> {strategy.value}")

        return ComplexityAssessment(
            score=score,
            estimated_commits=estimated_commits,
            strategy=strategy,
            factors=factors,
            reasoning=reasoning,
        )

    def is_complex(self, task: Task) -> bool:
        """
        Whether a task should be broken down before anyone executes it.

        Aggregate tasks, HIGH complexity, more than 3 dependencies, more than
        2 required skills or more than 8 story points.
        """
        if task.is_aggregate:
            return True
        if task.estimated_complexity == ComplexityLevel.HIGH:
            return True
        if len(task.dependencies) > 3:
            return True
        if len(task.required_skills) > 2:
            return True
        if task.story_points is not None and task.story_points > 8:
            return True
        return False
