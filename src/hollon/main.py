"""Main application entry point for the hollon orchestrator."""

import logging
from typing import Optional

from .config import OrchestratorConfig
from .decomposition import DecompositionEngine, DependencyGraph, ProgressTracker
from .llm import BaseBrain, OpenAIBrain
from .models.execution_models import ExecutionOutcome
from .planning import PivotImpactAnalyzer, UncertaintyAnalyzer, WorkerMatcher
from .repositories import RepositoryRegistry
from .services import BaseReviewService, InMemoryReviewService, WorkspaceOrchestrator
from .workspace import GitClient, KeyedMutex


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: int = logging.INFO) -> None:
    """Configure root logging the same way for every entry point."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


class HollonSystem:
    """
    Main hollon system wiring every component together.

    Provides a high-level interface to:
    - Execute tasks in isolated workspaces
    - Assign and rebalance work across workers
    - Run uncertainty and pivot analyses
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        repositories: Optional[RepositoryRegistry] = None,
        brain: Optional[BaseBrain] = None,
        review_service: Optional[BaseReviewService] = None,
        git_client: Optional[GitClient] = None,
        repository_path: Optional[str] = None,
    ):
        """
        Initialize hollon system.

        Args:
            config: Orchestrator configuration (loaded from the environment by default)
            repositories: Persistence ports (in-memory by default)
            brain: Inference port (OpenAI adapter by default)
            review_service: Review port (in-memory by default)
            git_client: git/gh wrapper
            repository_path: Repository the workers operate on
        """
        self.config = config or OrchestratorConfig()
        self.repositories = repositories or RepositoryRegistry()
        self.brain = brain or OpenAIBrain(
            api_key=self.config.openai_api_key,
            model=self.config.openai_model,
            cost_per_1k_input_cents=self.config.cost_per_1k_input_cents,
            cost_per_1k_output_cents=self.config.cost_per_1k_output_cents,
        )
        self.review_service = review_service or InMemoryReviewService()

        self.progress_tracker = ProgressTracker(
            self.repositories.tasks,
            redis_url=self.config.redis_url,
            channel=self.config.progress_channel,
        )
        self.worker_matcher = WorkerMatcher(self.repositories, self.config)
        self.decomposition_engine = DecompositionEngine(
            self.repositories,
            self.brain,
            self.config,
            matcher=self.worker_matcher,
            progress_tracker=self.progress_tracker,
        )
        self.repository_locks = KeyedMutex("repository")
        self.orchestrator = WorkspaceOrchestrator(
            self.repositories,
            self.brain,
            self.review_service,
            decomposition_engine=self.decomposition_engine,
            git_client=git_client,
            config=self.config,
            repository_path=repository_path,
            repository_locks=self.repository_locks,
        )
        self.uncertainty_analyzer = UncertaintyAnalyzer(self.repositories.tasks, self.config)
        self.pivot_analyzer = PivotImpactAnalyzer(self.repositories.tasks)

        logger.info("Hollon system initialized")

    async def execute_task(self, task_id: str, worker_id: str) -> ExecutionOutcome:
        return await self.orchestrator.execute_task(task_id, worker_id)

    async def dependency_graph(self, project_id: Optional[str] = None) -> DependencyGraph:
        """Dependency graph over every task, or the tasks of one project."""
        filters = {"project_id": project_id} if project_id else {}
        return DependencyGraph(await self.repositories.tasks.find(**filters))

    async def complete_task(self, task_id: str) -> None:
        """Mark a reviewed task COMPLETED and unblock the tasks waiting on it."""
        unblocked = await self.decomposition_engine.complete_task(task_id)
        if unblocked:
            logger.info(f"Task {task_id} completed, {len(unblocked)} tasks unblocked")
