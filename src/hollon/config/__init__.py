"""Configuration package."""

from .orchestrator_config import OrchestratorConfig

__all__ = ["OrchestratorConfig"]
