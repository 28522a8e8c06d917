"""Pass/fail checks applied to brain output before anything is published."""

import logging
import re
from typing import Optional

from ..models.execution_models import BrainResponse, QualityValidationResult
from ..models.task_models import Task, TaskType


logger = logging.getLogger(__name__)

MIN_OUTPUT_CHARS = 10

ERROR_PATTERNS = [
    re.compile(r"^Error:", re.IGNORECASE),
    re.compile(r"^Fatal:", re.IGNORECASE),
    re.compile(r"^Exception:", re.IGNORECASE),
    re.compile(r"command not found", re.IGNORECASE),
    re.compile(r"permission denied", re.IGNORECASE),
]

INCOMPLETION_MARKERS = ["TODO", "FIXME", "XXX", "HACK"]

_CODE_INDICATORS = re.compile(
    r"\b(def|class|function|const|let|var|import|export|return)\b"
)

# Share of the daily budget a single call may consume
SINGLE_CALL_BUDGET_SHARE = 0.1

LONG_LINE_CHARS = 200


class QualityGate:
    """
    Validates a brain response in order: existence, format, quality, cost.

    PATTERN: First failing check wins, warnings are logged and never fail
    CRITICAL: should_retry tells the caller whether another attempt can help
    """

    def __init__(self, daily_cost_limit_cents: Optional[float] = None):
        """
        Initialize quality gate.

        Args:
            daily_cost_limit_cents: Daily budget, a single call may use 10% of it
        """
        self.daily_cost_limit_cents = daily_cost_limit_cents
        self.logger = logging.getLogger(__name__)

    def validate(self, task: Task, response: BrainResponse) -> QualityValidationResult:
        """
        Run every check against a brain response.

        Args:
            task: Task the response belongs to
            response: Brain response

        Returns:
            QualityValidationResult, passed=True if all checks succeed
        """
        self.logger.info(f"Running quality gate for task {task.id} ({task.title})")

        for check in (
            self._check_success,
            self._check_result_exists,
            self._check_format,
            self._check_quality,
            self._check_cost,
        ):
            result = check(task, response)
            if not result.passed:
                self.logger.warning(
                    f"Quality gate failed for task {task.id}: {result.reason} "
                    f"(retry: {result.should_retry})"
                )
                return result

        return QualityValidationResult(passed=True)

    def _check_success(self, task: Task, response: BrainResponse) -> QualityValidationResult:
        if not response.success:
            return QualityValidationResult(
                passed=False,
                should_retry=True,
                reason="Brain execution reported failure",
                details={"check_type": "brain_success"},
            )
        return QualityValidationResult(passed=True)

    def _check_result_exists(
        self, task: Task, response: BrainResponse
    ) -> QualityValidationResult:
        output = response.output.strip()

        if not output:
            return QualityValidationResult(
                passed=False,
                should_retry=True,
                reason="Brain execution returned empty result",
                details={"check_type": "result_exists", "output_length": 0},
            )

        if len(output) < MIN_OUTPUT_CHARS:
            return QualityValidationResult(
                passed=False,
                should_retry=True,
                reason="Result is too short to be a valid response",
                details={"check_type": "result_exists", "output_length": len(output)},
            )

        return QualityValidationResult(passed=True)

    def _check_format(self, task: Task, response: BrainResponse) -> QualityValidationResult:
        output = response.output.lstrip()

        for pattern in ERROR_PATTERNS:
            if pattern.search(output):
                return QualityValidationResult(
                    passed=False,
                    should_retry=True,
                    reason="Output contains error messages",
                    details={
                        "check_type": "format_compliance",
                        "error_pattern": pattern.pattern,
                    },
                )

        if task.type == TaskType.IMPLEMENTATION and len(output) > 100:
            if not _CODE_INDICATORS.search(output) and "{" not in output:
                self.logger.warning(
                    f"Implementation task {task.id} result does not look like code"
                )

        return QualityValidationResult(passed=True)

    def _check_quality(self, task: Task, response: BrainResponse) -> QualityValidationResult:
        found = [m for m in INCOMPLETION_MARKERS if m in response.output]
        if found:
            self.logger.warning(
                f"Task {task.id} output contains incompletion markers: {', '.join(found)}"
            )

        long_lines = sum(
            1 for line in response.output.splitlines() if len(line) > LONG_LINE_CHARS
        )
        if long_lines > 5:
            self.logger.warning(f"Task {task.id} output has {long_lines} very long lines")

        return QualityValidationResult(passed=True)

    def _check_cost(self, task: Task, response: BrainResponse) -> QualityValidationResult:
        if not self.daily_cost_limit_cents:
            return QualityValidationResult(passed=True)

        threshold = self.daily_cost_limit_cents * SINGLE_CALL_BUDGET_SHARE
        cost = response.cost.total_cost_cents

        if cost > threshold:
            return QualityValidationResult(
                passed=False,
                should_retry=False,
                reason="Execution cost exceeds single-task threshold (10% of daily limit)",
                details={
                    "check_type": "cost_validation",
                    "actual_cost_cents": cost,
                    "threshold_cents": threshold,
                    "daily_limit_cents": self.daily_cost_limit_cents,
                },
            )

        return QualityValidationResult(passed=True)
