"""Workspace isolation, git access and pre-publication checks."""

from .keyed_mutex import KeyedMutex
from .git_client import GitClient, extract_pr_number, extract_run_id
from .quality_gate import QualityGate
from .prompt_composer import PromptComposer

__all__ = [
    "KeyedMutex",
    "GitClient",
    "extract_pr_number",
    "extract_run_id",
    "QualityGate",
    "PromptComposer",
]
