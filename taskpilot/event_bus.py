import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from loguru import logger
from pydantic import BaseModel, Field


class TaskEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: str
    task_id: str
    payload: Dict[str, Any]


class EventBus:
    """A lightweight, synchronous event bus for decoupling TASKPILOT observability."""

    def __init__(self):
        self._subscribers: List[Callable[[TaskEvent], None]] = []

    def subscribe(self, callback: Callable[[TaskEvent], None]) -> None:
        """Register a callback to be executed when an event is emitted."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[TaskEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, event_type: str, task_id: str, payload: Dict[str, Any]) -> None:
        """Construct and broadcast a TaskEvent to all subscribers."""
        event = TaskEvent(
            event_type=event_type,
            task_id=task_id,
            payload=payload
        )

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                # A failing subscriber must not stop the orchestration loop
                logger.exception(f"[BUS] subscriber failed on {event_type}")


# Global singleton instance for easy imports across the project
bus = EventBus()
