"""Tests for the quality gate."""

from hollon.models.execution_models import BrainCost, BrainResponse
from hollon.models.task_models import Task
from hollon.workspace.quality_gate import QualityGate


def response(output, cost_cents=0.0, success=True):
    return BrainResponse(
        success=success,
        output=output,
        cost=BrainCost(total_cost_cents=cost_cents),
    )


class TestQualityGate:
    """Checks applied in order, first failure wins."""

    def setup_method(self):
        self.gate = QualityGate()
        self.task = Task(title="Add handler")

    def test_valid_output_passes(self):
        result = self.gate.validate(self.task, response("def handler():\n    return 42\n"))
        assert result.passed is True

    def test_failed_call_is_retryable(self):
        result = self.gate.validate(self.task, response("whatever", success=False))

        assert result.passed is False
        assert result.should_retry is True
        assert result.details["check_type"] == "brain_success"

    def test_empty_output(self):
        result = self.gate.validate(self.task, response("   "))

        assert result.passed is False
        assert result.should_retry is True
        assert result.reason == "Brain execution returned empty result"

    def test_too_short_output(self):
        result = self.gate.validate(self.task, response("ok"))

        assert result.passed is False
        assert result.details["output_length"] == 2

    def test_error_output(self):
        result = self.gate.validate(self.task, response("Fatal: not a git repository"))

        assert result.passed is False
        assert result.should_retry is True
        assert result.details["check_type"] == "format_compliance"

    def test_incompletion_markers_only_warn(self):
        result = self.gate.validate(
            self.task, response("def handler():\n    # TODO: validate input\n    return 42")
        )
        assert result.passed is True

    def test_cost_over_threshold_is_not_retryable(self):
        gate = QualityGate(daily_cost_limit_cents=100.0)

        result = gate.validate(self.task, response("def handler(): return 1", cost_cents=10.5))

        assert result.passed is False
        assert result.should_retry is False
        assert result.details["threshold_cents"] == 10.0

    def test_cost_under_threshold(self):
        gate = QualityGate(daily_cost_limit_cents=100.0)

        result = gate.validate(self.task, response("def handler(): return 1", cost_cents=9.9))

        assert result.passed is True
