from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from taskpilot.plan import AgentRole, Plan

_ARABIC = re.compile(r"[\u0600-\u06FF]")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def detect_language(text: str) -> str:
    """Arabic script anywhere in the prompt selects Arabic output."""
    return "ar" if _ARABIC.search(text or "") else "en"


def percent(done: int, total: int) -> int:
    """round(100 * done / total) with halves rounded up."""
    if total <= 0:
        return 0
    return min(100, (200 * done + total) // (2 * total))


class TaskStatus(str, Enum):
    WAITING_APPROVAL = "waiting_approval"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class NotificationKind(str, Enum):
    PROGRESS = "progress"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"


class Notification(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: NotificationKind
    message: str
    timestamp: datetime = Field(default_factory=utc_now)
    read: bool = False


class StepResult(BaseModel):
    step_id: str
    step_index: int
    agent_role: AgentRole
    description: str
    text: str
    completed_at: datetime = Field(default_factory=utc_now)
    recovered: bool = False
    failed: bool = False
    error: str | None = None


class Task(BaseModel):
    """
    The orchestration aggregate. The registry owns it; the controller is the
    only writer and always replaces the whole document.
    """

    id: str = Field(default_factory=lambda: f"task_{uuid.uuid4().hex[:12]}")
    owner_id: str = "anonymous"
    prompt: str
    language: str = "en"
    plan: Plan
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    current_phase_index: int = 0
    current_step_index: int = 0
    results: list[StepResult] = Field(default_factory=list)
    notifications: list[Notification] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    error: str | None = None
    version: int = 0

    @property
    def total_steps(self) -> int:
        return self.plan.total_step_count

    @property
    def next_step_index(self) -> int:
        # one result per step, appended in plan order
        return len(self.results)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    def notify(self, kind: NotificationKind, message: str) -> Notification:
        note = Notification(kind=kind, message=message)
        self.notifications.append(note)
        return note

    def touch(self) -> None:
        self.updated_at = utc_now()

    def transcript(self, window_chars: int | None = None) -> str:
        """
        Original request followed by every recorded, non-failed step output.
        With a window, the oldest step sections are dropped first; the request
        header is always kept.
        """
        header = f"Original Request: {self.prompt}\n\n"
        sections = [
            f"\n\n=== {r.description} ===\n{r.text}"
            for r in self.results
            if not r.failed
        ]
        body = "".join(sections)
        if window_chars is not None and len(body) > window_chars:
            body = "...\n" + body[-window_chars:]
        return header + body

    # -- projections --------------------------------------------------------

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.plan.title,
            "status": self.status.value,
            "progress": self.progress,
            "current_step": min(self.current_step_index + 1, self.total_steps),
            "total_steps": self.total_steps,
            "phases": len(self.plan.phases),
            "outputs": [o.value for o in self.plan.declared_outputs],
            "unread_notifications": self.unread_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def status_view(self) -> dict[str, Any]:
        phases = self.plan.phases
        current_phase = phases[self.current_phase_index].name if self.current_phase_index < len(phases) else ""
        return {
            **self.summary(),
            "owner_id": self.owner_id,
            "prompt": self.prompt,
            "language": self.language,
            "estimated_duration": self.plan.estimated_duration,
            "current_phase": self.current_phase_index + 1,
            "total_phases": len(phases),
            "current_phase_name": current_phase,
            "results_count": len(self.results),
            "failed_steps": sum(1 for r in self.results if r.failed),
            "recovered_steps": sum(1 for r in self.results if r.recovered),
            "notifications": [n.model_dump(mode="json") for n in self.notifications],
            "error": self.error,
        }

    def advance_view(self, recent: int = 5) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "current_step": min(self.current_step_index + 1, self.total_steps),
            "total_steps": self.total_steps,
            "results_count": len(self.results),
            "notifications": [n.model_dump(mode="json") for n in self.notifications[-recent:]],
        }
