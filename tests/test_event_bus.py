import json

from taskpilot.audit_logger import AuditLogger
from taskpilot.event_bus import EventBus, TaskEvent


def test_event_bus_pub_sub():
    test_bus = EventBus()
    received_events: list[TaskEvent] = []

    def dummy_subscriber(event: TaskEvent):
        received_events.append(event)

    test_bus.subscribe(dummy_subscriber)

    test_bus.emit(
        event_type="step_completed",
        task_id="task_abc",
        payload={"progress": 25}
    )

    assert len(received_events) == 1

    event = received_events[0]
    assert event.event_type == "step_completed"
    assert event.task_id == "task_abc"
    assert event.payload == {"progress": 25}

    assert event.event_id is not None
    assert isinstance(event.event_id, str)
    assert event.timestamp is not None


def test_failing_subscriber_does_not_block_others():
    test_bus = EventBus()
    received: list[str] = []

    def broken(event: TaskEvent):
        raise RuntimeError("boom")

    test_bus.subscribe(broken)
    test_bus.subscribe(lambda e: received.append(e.event_type))

    test_bus.emit("task_created", "task_abc", {})

    assert received == ["task_created"]


def test_unsubscribe():
    test_bus = EventBus()
    received: list[str] = []
    subscriber = lambda e: received.append(e.event_type)

    test_bus.subscribe(subscriber)
    test_bus.unsubscribe(subscriber)
    test_bus.emit("task_created", "task_abc", {})

    assert received == []


def test_audit_logger_writes_jsonl_in_batches(tmp_path):
    test_bus = EventBus()
    path = tmp_path / "logs" / "events.jsonl"
    audit = AuditLogger(str(path), test_bus, batch_size=2)

    test_bus.emit("task_created", "task_abc", {"total_steps": 4})
    assert not path.exists()

    test_bus.emit("task_started", "task_abc", {})
    test_bus.emit("step_started", "task_abc", {"step_index": 0})
    audit.close()

    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert [l["event_type"] for l in lines] == ["task_created", "task_started", "step_started"]
    assert lines[0]["payload"] == {"total_steps": 4}

    test_bus.emit("task_completed", "task_abc", {})
    assert len(path.read_text().splitlines()) == 3
