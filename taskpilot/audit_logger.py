import os
import threading

from taskpilot.event_bus import EventBus, TaskEvent


class AuditLogger:
    """
    Subscribes to an EventBus and appends events to a JSONL file,
    flushing every `batch_size` events and on close.
    """

    def __init__(self, file_path: str, event_bus: EventBus, batch_size: int = 10):
        self.file_path = file_path
        self.event_bus = event_bus
        self.batch_size = max(1, batch_size)
        self._buffer: list[str] = []
        self._lock = threading.Lock()

        os.makedirs(os.path.dirname(os.path.abspath(self.file_path)), exist_ok=True)
        self.event_bus.subscribe(self.log_event)

    def log_event(self, event: TaskEvent) -> None:
        with self._lock:
            self._buffer.append(event.model_dump_json() + "\n")
            if len(self._buffer) >= self.batch_size:
                self._flush_locked()

    def flush(self) -> None:
        with self._lock:
            self._flush_locked()

    def close(self) -> None:
        self.event_bus.unsubscribe(self.log_event)
        self.flush()

    def _flush_locked(self) -> None:
        if not self._buffer:
            return
        with open(self.file_path, "a", encoding="utf-8") as f:
            f.writelines(self._buffer)
        self._buffer.clear()
