"""Tests for task prompt composition."""

from hollon.models.execution_models import CIFeedback
from hollon.models.task_models import (
    ComplexityLevel,
    ExperienceLevel,
    Role,
    Task,
    Worker,
)
from hollon.workspace.prompt_composer import PromptComposer


class TestPromptComposer:
    def setup_method(self):
        self.composer = PromptComposer(max_task_depth=3, max_subtasks=10)

    def test_system_prompt(self):
        worker = Worker(
            name="Alice Smith",
            role=Role(name="Developer", capabilities={"python", "api"}),
            experience_level=ExperienceLevel.SENIOR,
        )

        prompt = self.composer.system_prompt(worker)

        assert prompt.startswith("You are Alice Smith, an autonomous Developer (senior).")
        assert "Capabilities: api, python." in prompt

        worker.system_prompt = "Custom prompt"
        assert self.composer.system_prompt(worker) == "Custom prompt"

    def test_small_task_is_implemented_directly(self):
        task = Task(
            title="Add health endpoint",
            description="Return 200 from /health",
            acceptance_criteria=["GET /health returns 200"],
            affected_files={"api/health.py"},
        )

        prompt = self.composer.compose_task_prompt(task)

        assert prompt.startswith("# Task: Add health endpoint")
        assert "## Acceptance Criteria\n- GET /health returns 200" in prompt
        assert "api/health.py" in prompt
        assert "Implement this task directly." in prompt
        assert "DECOMPOSE_TASK:" in prompt
        assert "SELF_CORRECT:" in prompt
        assert "Build Verification Feedback" not in prompt

    def test_large_task_must_decompose(self):
        task = Task(
            title="Rewrite billing",
            affected_files={f"billing/{i}.py" for i in range(5)},
            story_points=9,
            estimated_complexity=ComplexityLevel.HIGH,
        )

        prompt = self.composer.compose_task_prompt(task)

        assert "Do NOT implement it" in prompt
        assert "at most 10 subtasks" in prompt
        assert "~6 commit(s)" in prompt

    def test_deepest_task_is_never_told_to_decompose(self):
        task = Task(
            title="Rewrite billing",
            depth=3,
            affected_files={f"billing/{i}.py" for i in range(5)},
            estimated_complexity=ComplexityLevel.HIGH,
        )

        prompt = self.composer.compose_task_prompt(task)

        assert "maximum decomposition depth" in prompt
        assert "DECOMPOSE_TASK:" not in prompt

    def test_feedback_section(self):
        feedback = CIFeedback(
            pr_url="https://github.com/acme/widgets/pull/42",
            attempt=2,
            failed_checks=["test", "lint"],
            logs="E   assert 1 == 2",
            summary="2 of 3 checks failed.",
        )

        prompt = self.composer.compose_task_prompt(Task(title="Fix"), feedback=feedback)

        assert "## Build Verification Feedback (attempt 2)" in prompt
        assert "failed these checks: test, lint." in prompt
        assert "```\nE   assert 1 == 2\n```" in prompt
