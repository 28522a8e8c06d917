"""Inference port consumed by the orchestrator."""

import logging
from abc import ABC, abstractmethod

from ..models.execution_models import BrainRequest, BrainResponse

logger = logging.getLogger(__name__)


class BaseBrain(ABC):
    """
    Abstract base class for all inference backends.

    CRITICAL: Must be async, the orchestrator awaits every call
    GOTCHA: Failures surface as InferenceError, a response with success=False
    is also treated as a failed call by callers
    """

    name: str = "brain"

    @abstractmethod
    async def execute(self, request: BrainRequest) -> BrainResponse:
        """
        Run one inference call.

        Args:
            request: Prompt, optional system prompt and execution context

        Returns:
            BrainResponse with output, duration and cost

        Raises:
            InferenceError: On provider failures
        """
        pass
