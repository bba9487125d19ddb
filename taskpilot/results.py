"""
Result synthesis for completed tasks.

Turns the ordered step outputs into the requested shape:
  - summary: executive summary from excerpts of every step
  - report:  comprehensive report from every step in full
  - raw:     the step results as recorded
  - all:     everything above plus sources and metadata
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from loguru import logger

from taskpilot.agents import AgentContext
from taskpilot.agents.reporter import SUMMARY_EXCERPT_CHARS, ReportAgent, SummaryAgent
from taskpilot.state import Task


class ResultFormat(str, Enum):
    SUMMARY = "summary"
    REPORT = "report"
    RAW = "raw"
    ALL = "all"


class ResultSynthesizer:
    def __init__(self, router: Any):
        self.summary_agent = SummaryAgent(router)
        self.report_agent = ReportAgent(router)

    def render(self, task: Task, fmt: ResultFormat = ResultFormat.ALL) -> dict[str, Any]:
        logger.info(f"[SYNTH] Rendering {fmt.value} for {task.id}")

        if fmt is ResultFormat.SUMMARY:
            output: Any = {"type": "summary", "content": self.summary(task)}
        elif fmt is ResultFormat.REPORT:
            output = {"type": "report", "content": self.report(task)}
        elif fmt is ResultFormat.RAW:
            output = {"type": "raw", "results": self.raw(task)}
        else:
            output = {
                "summary": self.summary(task),
                "report": self.report(task),
                "raw_results": self.raw(task),
                "sources": [
                    {"task": r.description, "agent": r.agent_role.value}
                    for r in task.results
                ],
                "metadata": {
                    "total_steps": task.total_steps,
                    "completed_at": task.completed_at.isoformat() if task.completed_at else None,
                    "duration_seconds": self._duration(task),
                    "failed_steps": sum(1 for r in task.results if r.failed),
                    "recovered_steps": sum(1 for r in task.results if r.recovered),
                },
            }

        return {
            "task_id": task.id,
            "title": task.plan.title,
            "format": fmt.value,
            "output": output,
        }

    def summary(self, task: Task) -> str:
        excerpts = "\n\n".join(
            f"{r.description}: {r.text[:SUMMARY_EXCERPT_CHARS]}..." for r in task.results
        )
        context = AgentContext(
            task_id=task.id,
            objective=task.prompt,
            language=task.language,
            transcript=excerpts,
        )
        return self.summary_agent.run(context)

    def report(self, task: Task) -> str:
        sections = "\n\n".join(f"=== {r.description} ===\n{r.text}" for r in task.results)
        context = AgentContext(
            task_id=task.id,
            objective=task.prompt,
            language=task.language,
            transcript=sections,
        )
        return self.report_agent.run(context)

    @staticmethod
    def raw(task: Task) -> list[dict[str, Any]]:
        return [r.model_dump(mode="json") for r in task.results]

    @staticmethod
    def _duration(task: Task) -> float | None:
        if task.completed_at is None:
            return None
        return round((task.completed_at - task.created_at).total_seconds(), 1)
