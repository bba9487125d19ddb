import concurrent.futures
import json

import pytest

from conftest import StubRouter
from taskpilot.config_loader import load_config
from taskpilot.controller import Controller
from taskpilot.parallel import run_parallel
from taskpilot.registry import SqliteTaskRegistry


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.setenv("TASKPILOT_STEP_DELAY", "0")
    monkeypatch.setattr("taskpilot.controller.Router", lambda config: StubRouter())
    return tmp_path


def _threads(n: int) -> concurrent.futures.Executor:
    return concurrent.futures.ThreadPoolExecutor(max_workers=n)


def _create(root, count: int) -> list[str]:
    config = load_config(root)
    registry = SqliteTaskRegistry(config.store_path(root))
    controller = Controller(config, registry)
    ids = [controller.create_task(f"Research topic {i}")["id"] for i in range(count)]
    registry.close()
    return ids


def test_batch_drains_distinct_tasks(project):
    ids = _create(project, 3)

    results = run_parallel(project, ids + [ids[0]], max_workers=2, executor_factory=_threads)

    assert sorted(r["id"] for r in results) == sorted(ids)
    assert all(r["status"] == "completed" for r in results)
    assert all(r["progress"] == 100 for r in results)


def test_batch_reports_unknown_task_as_error(project):
    (known,) = _create(project, 1)

    results = run_parallel(project, [known, "task_missing"], max_workers=2, executor_factory=_threads)

    by_id = {r["id"]: r for r in results}
    assert by_id[known]["status"] == "completed"
    assert by_id["task_missing"]["status"] == "error"
    assert "task_missing" in by_id["task_missing"]["error"]


def test_batch_events_reach_audit_log(project):
    ids = _create(project, 2)

    run_parallel(project, ids, max_workers=2, executor_factory=_threads)

    log = project / ".taskpilot" / "logs" / "events.jsonl"
    lines = [json.loads(line) for line in log.read_text().splitlines()]
    completed = [l["task_id"] for l in lines if l["event_type"] == "task_completed"]
    assert sorted(completed) == sorted(ids)
    assert len([l for l in lines if l["event_type"] == "task_started"]) == 2
