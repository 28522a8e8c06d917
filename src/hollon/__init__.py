"""Hollon: task orchestration for autonomous worker agents."""

__version__ = "0.1.0"
