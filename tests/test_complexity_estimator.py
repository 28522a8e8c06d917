"""Tests for complexity scoring."""

from hollon.decomposition.complexity_estimator import ComplexityEstimator
from hollon.models.decomposition_models import DecompositionStrategy
from hollon.models.task_models import ComplexityLevel, Task, TaskType


class TestComplexityEstimator:
    def setup_method(self):
        self.estimator = ComplexityEstimator()

    def test_trivial_task(self):
        assessment = self.estimator.assess(Task(title="Fix typo"))

        assert assessment.score == 0
        assert assessment.estimated_commits == 1
        assert assessment.strategy == DecompositionStrategy.DIRECT
        assert assessment.reasoning.endswith("main drivers: none")

    def test_recommended_threshold(self):
        task = Task(
            title="Add export",
            affected_files={"a.py", "b.py", "c.py", "d.py"},
            required_skills={"python", "sql", "csv"},
            estimated_complexity=ComplexityLevel.HIGH,
            acceptance_criteria=["exports a file"],
        )

        assessment = self.estimator.assess(task)

        assert assessment.score == 60
        assert assessment.estimated_commits == 4
        assert assessment.strategy == DecompositionStrategy.RECOMMENDED

    def test_mandatory_threshold(self):
        task = Task(
            title="Rewrite billing",
            affected_files={f"billing/{i}.py" for i in range(5)},
            story_points=9,
            estimated_complexity=ComplexityLevel.HIGH,
        )

        assessment = self.estimator.assess(task)

        assert assessment.factors["story_points"] == 25
        assert assessment.score == 80
        assert assessment.estimated_commits == 6
        assert assessment.strategy == DecompositionStrategy.MANDATORY
        assert "affected files, story points, complexity" in assessment.reasoning

    def test_factor_caps(self):
        task = Task(
            title="Huge",
            affected_files={f"f{i}.py" for i in range(20)},
            description="x" * 5000,
        )

        assessment = self.estimator.assess(task)

        assert assessment.factors["affected_files"] == 30
        assert assessment.factors["description"] == 10

    def test_is_complex(self):
        assert self.estimator.is_complex(Task(title="Epic", type=TaskType.AGGREGATE))
        assert self.estimator.is_complex(
            Task(title="Hard", estimated_complexity=ComplexityLevel.HIGH)
        )
        assert self.estimator.is_complex(Task(title="Deps", dependencies={"a", "b", "c", "d"}))
        assert self.estimator.is_complex(Task(title="Skills", required_skills={"a", "b", "c"}))
        assert self.estimator.is_complex(Task(title="Big", story_points=9))

        assert not self.estimator.is_complex(Task(title="Small", story_points=8))
        assert not self.estimator.is_complex(Task(title="Plain"))
