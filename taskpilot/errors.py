"""
TASKPILOT error taxonomy.

Only PlanParseError, TaskNotFound, InvalidState and ConcurrentUpdateError
reach callers. StepExecutionError and ProviderExhausted are absorbed by the
orchestration loop.
"""

from __future__ import annotations

from typing import Any


class TaskPilotError(Exception):
    pass


class PlanParseError(TaskPilotError):
    """The planner output could not be turned into a Plan. No task is registered."""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response


class TaskNotFound(TaskPilotError):
    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InvalidState(TaskPilotError):
    """Operation requested against a task in an incompatible status."""

    def __init__(self, message: str, *, status: str = "", progress: int = 0):
        super().__init__(message)
        self.status = status
        self.progress = progress

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self), "status": self.status, "progress": self.progress}


class ConcurrentUpdateError(TaskPilotError):
    """A write was based on a stale version of the task document."""


class StepExecutionError(TaskPilotError):
    pass


class ProviderExhausted(TaskPilotError):
    """Every model and credential in the gateway's rotation failed."""
