"""Prompt construction for task execution."""

import logging
from typing import List, Optional

from ..decomposition.complexity_estimator import ComplexityEstimator
from ..llm.response_parser import DECOMPOSE_PREFIX, SELF_CORRECT_PREFIX
from ..models.decomposition_models import ComplexityAssessment, DecompositionStrategy
from ..models.execution_models import CIFeedback
from ..models.task_models import Task, Worker


logger = logging.getLogger(__name__)

DECOMPOSITION_FORMAT = f"""{DECOMPOSE_PREFIX} {{
  "reason": "why the task is too large",
  "subtasks": [
    {{
      "title": "...",
      "description": "...",
      "specialization": "planning | implementation | testing | integration",
      "priority": "P1 | P2 | P3 | P4",
      "affected_files": ["..."],
      "dependencies": ["title of another subtask"]
    }}
  ]
}}"""


class PromptComposer:
    """
    Builds the prompts sent to the brain.

    PATTERN: Markdown sections joined in a fixed order
    GOTCHA: Decomposition instructions depend on the complexity estimate,
    subtasks below the depth limit are never told to decompose again
    """

    def __init__(
        self,
        estimator: Optional[ComplexityEstimator] = None,
        max_task_depth: int = 3,
        max_subtasks: int = 10,
    ):
        self.estimator = estimator or ComplexityEstimator()
        self.max_task_depth = max_task_depth
        self.max_subtasks = max_subtasks
        self.logger = logging.getLogger(__name__)

    def system_prompt(self, worker: Worker) -> str:
        if worker.system_prompt:
            return worker.system_prompt

        capabilities = ", ".join(sorted(worker.role.capabilities)) or "general"
        return (
            f"You are {worker.name}, an autonomous {worker.role.name} "
            f"({worker.experience_level.value}). Capabilities: {capabilities}. "
            "You work inside a dedicated git worktree and commit your own changes."
        )

    def compose_task_prompt(
        self,
        task: Task,
        feedback: Optional[CIFeedback] = None,
        assessment: Optional[ComplexityAssessment] = None,
    ) -> str:
        """
        Prompt for executing a leaf task.

        Args:
            task: Task to execute
            feedback: Verification feedback from the previous attempt
            assessment: Complexity assessment (computed when omitted)

        Returns:
            Prompt text
        """
        assessment = assessment or self.estimator.assess(task)
        sections: List[str] = [f"# Task: {task.title}\n"]

        if task.description:
            sections.append(f"## Description\n{task.description}\n")

        if task.acceptance_criteria:
            criteria = "\n".join(f"- {c}" for c in task.acceptance_criteria)
            sections.append(f"## Acceptance Criteria\n{criteria}\n")

        if task.affected_files:
            sections.append(
                "## Affected Files\n" + "\n".join(sorted(task.affected_files)) + "\n"
            )

        if feedback is not None:
            sections.append(self._feedback_section(feedback))

        sections.append(
            "## Instructions\n"
            "Please implement the task described above. Make sure to:\n"
            "1. Write clean, maintainable code\n"
            "2. Follow the project's coding standards\n"
            "3. Add appropriate tests if needed\n"
            "4. Update documentation if required\n"
            "5. Commit your changes with a descriptive message\n"
        )

        sections.append(self._decomposition_section(task, assessment))
        sections.append(
            "## Self Correction\n"
            f"If your previous approach was wrong and you need another attempt, "
            f"answer with `{SELF_CORRECT_PREFIX} <what to change>` instead.\n"
        )

        return "\n".join(sections)

    @staticmethod
    def _feedback_section(feedback: CIFeedback) -> str:
        checks = ", ".join(feedback.failed_checks) or "unknown"
        section = (
            f"## Build Verification Feedback (attempt {feedback.attempt})\n"
            f"Your previous change request {feedback.pr_url} failed these checks: "
            f"{checks}.\n{feedback.summary}\n"
        )
        if feedback.logs:
            section += f"\n```\n{feedback.logs}\n```\n"
        section += "Fix the failures on the existing branch and commit again.\n"
        return section

    def _decomposition_section(
        self, task: Task, assessment: ComplexityAssessment
    ) -> str:
        if task.depth + 1 > self.max_task_depth:
            return (
                "## Scope\n"
                "This task is already at the maximum decomposition depth. "
                "Implement it directly.\n"
            )

        header = (
            f"## Scope\nEstimated size: ~{assessment.estimated_commits} commit(s) "
            f"({assessment.reasoning}).\n"
        )

        if assessment.strategy == DecompositionStrategy.MANDATORY:
            guidance = (
                "This task is too large for a single change request. Do NOT "
                "implement it. Decompose it into at most "
                f"{self.max_subtasks} subtasks and answer ONLY with:\n"
            )
        elif assessment.strategy == DecompositionStrategy.RECOMMENDED:
            guidance = (
                "This task is large. Prefer decomposing it into at most "
                f"{self.max_subtasks} subtasks if it cannot be done in a few "
                "focused commits. To decompose, answer ONLY with:\n"
            )
        else:
            guidance = (
                "Implement this task directly. Only if it turns out to be much "
                "larger than expected, answer with:\n"
            )

        return f"{header}{guidance}\n{DECOMPOSITION_FORMAT}\n"
