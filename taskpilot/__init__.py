"""TASKPILOT — long-running autonomous task orchestration."""

from taskpilot.identity import __version__

__all__ = ["__version__"]
