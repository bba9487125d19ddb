"""
TASKPILOT Controller — The Brainstem

It is NOT smart. It is deterministic.

Responsibilities:
  - Turn a prompt into a registered Task (via the planner)
  - Walk the flattened plan one step at a time
  - Dispatch each step to its agent, recover once on failure
  - Keep progress, cursors and notifications consistent
  - Serialize every mutation per task id
  - Honour cancellation between steps
  - Hand completed tasks to the result synthesizer

It never writes content. It only coordinates.
"""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Any, Callable

from loguru import logger

from taskpilot.agents.planner import PlannerAgent
from taskpilot.config_loader import TaskPilotConfig
from taskpilot.dispatcher import StepDispatcher
from taskpilot.errors import (
    ConcurrentUpdateError,
    InvalidState,
    StepExecutionError,
    TaskNotFound,
)
from taskpilot.event_bus import EventBus, bus
from taskpilot.messages import FAILED_STEP_TEXT, render
from taskpilot.plan import FlatStep
from taskpilot.results import ResultFormat, ResultSynthesizer
from taskpilot.router import Router
from taskpilot.state import (
    NotificationKind,
    StepResult,
    Task,
    TaskStatus,
    detect_language,
    percent,
    utc_now,
)


class AdvanceMode(str, Enum):
    SINGLE_STEP = "single"
    DRAIN_ALL = "all"


class KeyedLocks:
    """One lock per key, created on first use."""

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def __call__(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


# A mutation receives the freshly read task and reports whether it changed it.
Mutation = Callable[[Task], bool]


class Controller:
    """
    The TASKPILOT brainstem.

    Two lock families keep a task consistent:
      - the advance lock serializes whole `advance` calls per task
      - the write lock serializes every read-modify-write commit per task

    Cancellation only takes the write lock, so it lands between steps of a
    running drain without waiting for the drain to finish.
    """

    def __init__(
        self,
        config: TaskPilotConfig,
        registry: Any,
        router: Any = None,
        event_bus: EventBus | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.registry = registry
        self.router = router or Router(config)
        self.bus = event_bus or bus
        self._sleep = sleep

        self.planner = PlannerAgent(self.router)
        self.dispatcher = StepDispatcher(self.router, config)
        self.synthesizer = ResultSynthesizer(self.router)

        self._advance_locks = KeyedLocks()
        self._write_locks = KeyedLocks()

    # -----------------------------------------------------------------------
    # Boundary operations
    # -----------------------------------------------------------------------

    def create_task(self, prompt: str, owner_id: str | None = None) -> dict[str, Any]:
        """Plan the prompt and register a new task. PlanParseError registers nothing."""
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValueError("Missing prompt")

        language = detect_language(prompt)
        logger.info(f"[LOOP] Planning ({language}): {prompt[:60]}")
        plan = self.planner.build_plan(prompt, language)

        task = Task(owner_id=owner_id or "anonymous", prompt=prompt, language=language, plan=plan)
        if self.config.intervention.require_plan_approval:
            task.status = TaskStatus.WAITING_APPROVAL
            task.notify(NotificationKind.PROGRESS, render("plan_waiting", language))

        self.registry.create(task)
        logger.info(f"[LOOP] Task {task.id} created with {task.total_steps} steps")
        self._emit("task_created", task, {"total_steps": task.total_steps, "status": task.status.value})

        return {**task.summary(), "estimated_duration": plan.estimated_duration}

    def advance_task(self, task_id: str, mode: AdvanceMode | str = AdvanceMode.SINGLE_STEP) -> dict[str, Any]:
        task = self.advance(task_id, mode)
        return task.advance_view(self.config.limits.recent_notifications)

    def get_status(self, task_id: str) -> dict[str, Any]:
        return self.registry.get(task_id).status_view()

    def list_tasks(self, owner_id: str | None = None) -> list[dict[str, Any]]:
        return [task.summary() for task in self.registry.list(owner_id)]

    def get_results(self, task_id: str, fmt: ResultFormat | str = ResultFormat.ALL) -> dict[str, Any]:
        task = self.registry.get(task_id)
        if task.status is not TaskStatus.COMPLETED:
            raise InvalidState(
                "Task not completed yet",
                status=task.status.value,
                progress=task.progress,
            )
        return self.synthesizer.render(task, ResultFormat(fmt))

    def cancel_task(self, task_id: str) -> dict[str, Any]:
        """Idempotent. Cancelling a terminal task is a flagged no-op."""

        def cancel(task: Task) -> bool:
            task.status = TaskStatus.CANCELLED
            task.notify(NotificationKind.WARNING, render("task_cancelled", task.language))
            return True

        task, changed = self._mutate(task_id, cancel)
        if changed:
            logger.info(f"[LOOP] Task {task_id} cancelled")
            self._emit("task_cancelled", task, {"at_step": task.current_step_index})
            message = "Task cancelled"
        else:
            logger.warning(f"[LOOP] Cancel ignored: task {task_id} is already {task.status.value}")
            message = f"Task already {task.status.value}"

        return {"task_id": task_id, "status": task.status.value, "changed": changed, "message": message}

    def approve_task(self, task_id: str) -> dict[str, Any]:
        def approve(task: Task) -> bool:
            if task.status is not TaskStatus.WAITING_APPROVAL:
                raise InvalidState(
                    f"Task is {task.status.value}, not waiting for approval",
                    status=task.status.value,
                    progress=task.progress,
                )
            task.status = TaskStatus.PENDING
            task.notify(NotificationKind.PROGRESS, render("plan_approved", task.language))
            return True

        task, changed = self._mutate(task_id, approve)
        if not changed:
            raise InvalidState(
                f"Task is {task.status.value}, not waiting for approval",
                status=task.status.value,
                progress=task.progress,
            )
        self._emit("task_approved", task, {})
        return task.summary()

    def mark_notifications_read(self, task_id: str, notification_ids: list[str] | None = None) -> int:
        """Flip notifications to read. Allowed on terminal tasks."""
        wanted = set(notification_ids) if notification_ids else None
        flipped = 0

        def mark(task: Task) -> bool:
            nonlocal flipped
            for note in task.notifications:
                if not note.read and (wanted is None or note.id in wanted):
                    note.read = True
                    flipped += 1
            return flipped > 0

        self._mutate(task_id, mark, allow_terminal=True)
        return flipped

    # -----------------------------------------------------------------------
    # Orchestration loop
    # -----------------------------------------------------------------------

    def advance(self, task_id: str, mode: AdvanceMode | str = AdvanceMode.SINGLE_STEP) -> Task:
        """
        Run the next step (SINGLE_STEP) or every remaining step (DRAIN_ALL).

        Step failures are recovered or recorded, never raised. Only
        TaskNotFound and InvalidState reach the caller as caller errors.
        """
        mode = AdvanceMode(mode)

        with self._advance_locks(task_id):
            task = self.registry.get(task_id)
            self._require_runnable(task)

            flat = task.plan.flatten()
            start = task.next_step_index
            working = flat[start:] if mode is AdvanceMode.DRAIN_ALL else flat[start:start + 1]
            logger.info(f"[LOOP] Advancing {task_id} ({mode.value}): steps {start + 1}..{start + len(working)} of {len(flat)}")

            try:
                for entry in working:
                    task = self._run_step(task_id, entry)
                    if task is None:
                        break
                    if task.next_step_index < task.total_steps:
                        self._pause()

                task, completed = self._mutate(task_id, self._finish)
                if completed:
                    logger.info(f"[LOOP] Task {task_id} completed")
                    self._emit("task_completed", task, {"results": len(task.results)})
            except (ConcurrentUpdateError, TaskNotFound, InvalidState):
                raise
            except Exception as e:
                logger.exception(f"[LOOP] Unexpected error while advancing {task_id}")
                self._fail(task_id, e)
                raise

            return task

    def _run_step(self, task_id: str, entry: FlatStep) -> Task | None:
        """One step: begin, dispatch (+ one recovery), record. None when cancelled."""
        step = entry.step

        task, started = self._mutate(task_id, lambda t: self._begin_step(t, entry))
        if not started:
            logger.info(f"[LOOP] Task {task_id} is {task.status.value}; stopping before step {entry.index + 1}")
            return None
        if entry.index == 0:
            self._emit("task_started", task, {"total_steps": task.total_steps})
        self._emit("step_started", task, {"step_index": entry.index, "step_id": step.id, "progress": task.progress})
        logger.info(f"[LOOP] Step {entry.index + 1}/{task.total_steps} [{step.agent_role.value}] {step.description[:60]}")

        context = task.transcript(self.config.limits.context_window_chars)
        kwargs = {"task_id": task_id, "language": task.language}

        try:
            text = self.dispatcher.dispatch(step, context, **kwargs)
            result = self._result(entry, text)
        except StepExecutionError as e:
            logger.warning(f"[LOOP] Step {entry.index + 1} failed: {e}. Attempting recovery")
            task, noted = self._mutate(task_id, lambda t: self._note_retry(t, entry))
            if not noted:
                return None
            self._emit("step_retrying", task, {"step_index": entry.index, "error": str(e)})

            try:
                text = self.dispatcher.recover(step, context, **kwargs)
                result = self._result(entry, text, recovered=True)
            except StepExecutionError as retry_error:
                logger.error(f"[LOOP] Recovery failed for step {entry.index + 1}: {retry_error}")
                result = self._result(entry, FAILED_STEP_TEXT, failed=True, error=str(retry_error))

        task, recorded = self._mutate(task_id, lambda t: self._record(t, entry, result))
        if not recorded:
            logger.warning(
                f"[LOOP] Task {task_id} became {task.status.value} during step {entry.index + 1}; result discarded"
            )
            return None

        outcome = "step_failed" if result.failed else "step_recovered" if result.recovered else "step_completed"
        self._emit(outcome, task, {"step_index": entry.index, "step_id": step.id, "progress": task.progress})
        if task.plan.is_last_in_phase(entry.index):
            self._emit("phase_completed", task, {"phase_index": entry.phase_index, "phase": entry.phase_name})
        return task

    # -- mutations (always applied to a fresh read, under the write lock) ----

    def _begin_step(self, task: Task, entry: FlatStep) -> bool:
        self._require_cursor(task, entry)
        if task.status is TaskStatus.PENDING:
            task.status = TaskStatus.RUNNING
            task.notify(NotificationKind.PROGRESS, render("task_started", task.language))
        task.current_step_index = entry.index
        task.current_phase_index = entry.phase_index
        task.progress = percent(len(task.results), task.total_steps)
        task.notify(NotificationKind.PROGRESS, render("step_started", task.language, step=entry.step.description))
        return True

    def _note_retry(self, task: Task, entry: FlatStep) -> bool:
        task.notify(NotificationKind.WARNING, render("step_retry", task.language, step=entry.step.description))
        return True

    def _record(self, task: Task, entry: FlatStep, result: StepResult) -> bool:
        self._require_cursor(task, entry)
        task.results.append(result)
        task.progress = percent(len(task.results), task.total_steps)
        if result.failed:
            task.notify(NotificationKind.ERROR, render("step_failed", task.language, step=entry.step.description))
        if task.plan.is_last_in_phase(entry.index):
            task.notify(NotificationKind.SUCCESS, render("phase_completed", task.language, phase=entry.phase_name))
        return True

    def _finish(self, task: Task) -> bool:
        if task.status is not TaskStatus.RUNNING or len(task.results) < task.total_steps:
            return False
        task.status = TaskStatus.COMPLETED
        task.progress = 100
        task.completed_at = utc_now()
        task.notify(NotificationKind.SUCCESS, render("task_completed", task.language))
        return True

    def _fail(self, task_id: str, error: Exception) -> None:
        def fail(task: Task) -> bool:
            task.status = TaskStatus.FAILED
            task.error = str(error)
            task.notify(NotificationKind.ERROR, render("task_failed", task.language, error=str(error)))
            return True

        try:
            task, changed = self._mutate(task_id, fail)
        except Exception:
            logger.exception(f"[LOOP] Could not mark {task_id} as failed")
            return
        if changed:
            self._emit("task_failed", task, {"error": str(error)})

    def _mutate(self, task_id: str, mutation: Mutation, *, allow_terminal: bool = False) -> tuple[Task, bool]:
        """
        Full read-modify-write under the per-task write lock. Terminal tasks
        are returned untouched unless `allow_terminal` is set.
        """
        with self._write_locks(task_id):
            task = self.registry.get(task_id)
            if task.status.is_terminal and not allow_terminal:
                return task, False
            if not mutation(task):
                return task, False
            task.touch()
            self.registry.put(task)
            return task, True

    # -- helpers ---------------------------------------------------------------

    @staticmethod
    def _require_runnable(task: Task) -> None:
        if task.status.is_terminal:
            raise InvalidState(
                f"Task {task.id} is already {task.status.value}",
                status=task.status.value,
                progress=task.progress,
            )
        if task.status is TaskStatus.WAITING_APPROVAL:
            raise InvalidState(
                f"Task {task.id} is waiting for plan approval",
                status=task.status.value,
                progress=task.progress,
            )

    @staticmethod
    def _require_cursor(task: Task, entry: FlatStep) -> None:
        if task.next_step_index != entry.index:
            raise ConcurrentUpdateError(
                f"Task {task.id} expected step {entry.index + 1}, store is at step {task.next_step_index + 1}"
            )

    @staticmethod
    def _result(
        entry: FlatStep,
        text: str,
        *,
        recovered: bool = False,
        failed: bool = False,
        error: str | None = None,
    ) -> StepResult:
        return StepResult(
            step_id=entry.step.id,
            step_index=entry.index,
            agent_role=entry.step.agent_role,
            description=entry.step.description,
            text=text,
            recovered=recovered,
            failed=failed,
            error=error,
        )

    def _pause(self) -> None:
        """Courtesy delay after any step that leaves work behind, whichever mode ran it."""
        delay = self.config.limits.inter_step_delay_seconds
        if delay > 0:
            self._sleep(delay)

    def _emit(self, event_type: str, task: Task, payload: dict[str, Any]) -> None:
        self.bus.emit(event_type, task.id, {"status": task.status.value, **payload})
