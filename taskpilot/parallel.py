"""
TASKPILOT Parallel Runner

Drains several distinct tasks at once. Each worker:
  1. Loads its own config and opens the shared task store.
  2. Builds its own Controller.
  3. Records its events to the shared audit log.
  4. Drains one task to a terminal state or the first cancellation.

Steps inside a task stay sequential; only whole tasks run side by side.
The store's version check rejects any stale write across workers.
"""

from __future__ import annotations

import concurrent.futures
from pathlib import Path
from typing import Any, Callable

from loguru import logger
from rich.console import Console
from rich.table import Table

console = Console()

ExecutorFactory = Callable[[int], concurrent.futures.Executor]


def _drain_single_task(task_id: str, root: Path) -> dict[str, Any]:
    """Worker body. Never raises: failures come back as an error record."""
    try:
        from taskpilot.audit_logger import AuditLogger
        from taskpilot.config_loader import load_config
        from taskpilot.controller import AdvanceMode, Controller
        from taskpilot.event_bus import EventBus
        from taskpilot.registry import SqliteTaskRegistry

        config = load_config(root)
        registry = SqliteTaskRegistry(config.store_path(root))
        # One bus per worker: thread workers must not record each other's events.
        events = EventBus()
        audit = AuditLogger(str(config.audit_path(root)), events, config.audit.batch_size) if config.audit.enabled else None
        controller = Controller(config, registry, event_bus=events)
        try:
            return controller.advance_task(task_id, AdvanceMode.DRAIN_ALL)
        finally:
            if audit:
                audit.close()
            registry.close()

    except Exception as e:
        logger.error(f"[PARALLEL] Drain failed: {task_id} — {e}")
        return {"id": task_id, "status": "error", "error": str(e)}


def run_parallel(
    root: Path,
    task_ids: list[str],
    max_workers: int = 3,
    executor_factory: ExecutorFactory | None = None,
) -> list[dict[str, Any]]:
    """Drain every listed task, at most `max_workers` at a time."""
    root = root.resolve()
    unique_ids = list(dict.fromkeys(task_ids))
    if len(unique_ids) != len(task_ids):
        logger.warning("[PARALLEL] Duplicate task ids dropped from the batch")

    _print_parallel_header(len(unique_ids), max_workers)

    factory = executor_factory or (lambda n: concurrent.futures.ProcessPoolExecutor(max_workers=n))
    results: list[dict[str, Any]] = []

    with factory(max(1, max_workers)) as executor:
        future_to_id = {
            executor.submit(_drain_single_task, task_id, root): task_id
            for task_id in unique_ids
        }

        for future in concurrent.futures.as_completed(future_to_id):
            task_id = future_to_id[future]
            try:
                result = future.result()
            except Exception as e:
                result = {"id": task_id, "status": "error", "error": str(e)}
            results.append(result)
            _log_task_completion(result, task_id)

    _print_parallel_summary(results)
    return results


# --- Helpers ---

_STATUS_COLORS = {"completed": "green", "running": "yellow", "cancelled": "yellow"}


def _print_parallel_header(count: int, workers: int) -> None:
    console.print(f"\n[bold]⚡ TASKPILOT Batch Mode — {count} tasks, {workers} workers[/]")
    console.print("[dim]Each task drains in its own worker against the shared store.[/]\n")


def _log_task_completion(result: dict[str, Any], task_id: str) -> None:
    status = result.get("status", "unknown")
    color = _STATUS_COLORS.get(status, "red")
    console.print(f"  [{color}]{result.get('id', task_id)}: {status}[/]")


def _print_parallel_summary(results: list[dict[str, Any]]) -> None:
    table = Table(title="Batch Results", border_style="bright_green")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Progress")
    table.add_column("Steps")

    for r in results:
        status = r.get("status", "unknown")
        color = _STATUS_COLORS.get(status, "red")
        steps = f"{r.get('results_count', 0)}/{r.get('total_steps', '?')}"
        table.add_row(r.get("id", "?"), f"[{color}]{status}[/]", f"{r.get('progress', 0)}%", steps)

    console.print(table)

    completed = sum(1 for r in results if r.get("status") == "completed")
    console.print(f"\n[bold]{completed}/{len(results)} completed[/]")
