"""
TASKPILOT Step Dispatcher

Maps a step's agent role to its agent, builds the role prompt around the
accumulated context and makes exactly one gateway call under a hard
timeout. Never touches the Task.
"""

from __future__ import annotations

import threading
from typing import Any

from loguru import logger

from taskpilot.agents import AgentContext, BaseAgent
from taskpilot.agents.analyst import AnalystAgent
from taskpilot.agents.generic import GenericAgent, RecoveryAgent
from taskpilot.agents.searcher import SearcherAgent
from taskpilot.agents.synthesizer import SynthesizerAgent
from taskpilot.agents.writer import WriterAgent
from taskpilot.config_loader import TaskPilotConfig
from taskpilot.errors import StepExecutionError
from taskpilot.plan import AgentRole, Step

ROSTER: dict[AgentRole, type[BaseAgent]] = {
    AgentRole.SEARCHER: SearcherAgent,
    AgentRole.ANALYST: AnalystAgent,
    AgentRole.WRITER: WriterAgent,
    AgentRole.SYNTHESIZER: SynthesizerAgent,
    AgentRole.GENERIC: GenericAgent,
}

_missing = set(AgentRole) - set(ROSTER)
if _missing:
    raise RuntimeError(f"Agent roster incomplete: {sorted(r.value for r in _missing)}")


class StepDispatcher:
    """
    dispatch(step, context) → text, or StepExecutionError.
    recover(step, context) → text from the Generic template on the recovery
    route with a truncated context, or StepExecutionError.
    """

    def __init__(self, router: Any, config: TaskPilotConfig):
        self.config = config
        self.timeout = config.limits.step_timeout_seconds
        self.recovery_chars = config.limits.recovery_context_chars
        self._agents: dict[AgentRole, BaseAgent] = {role: cls(router) for role, cls in ROSTER.items()}
        self._recovery = RecoveryAgent(router)

    def agent_for(self, role: AgentRole) -> BaseAgent:
        return self._agents[role]

    def dispatch(self, step: Step, accumulated_context: str, *, task_id: str = "", language: str = "en") -> str:
        agent = self.agent_for(step.agent_role)
        context = AgentContext(
            task_id=task_id,
            objective=step.description,
            language=language,
            transcript=accumulated_context,
        )
        logger.debug(f"[DISPATCH] step {step.id} → {agent.role} ({len(accumulated_context)} chars context)")
        return self._call(agent, context, step)

    def recover(self, step: Step, accumulated_context: str, *, task_id: str = "", language: str = "en") -> str:
        window = accumulated_context[-self.recovery_chars:] if self.recovery_chars > 0 else ""
        context = AgentContext(
            task_id=task_id,
            objective=step.description,
            language=language,
            transcript=window,
        )
        logger.debug(f"[DISPATCH] recovery for step {step.id} ({len(window)} chars context)")
        return self._call(self._recovery, context, step)

    def _call(self, agent: BaseAgent, context: AgentContext, step: Step) -> str:
        """
        One gateway call on its own daemon thread. The timeout starts when the
        call starts; a call that never returns is abandoned, not joined.
        """
        outcome: dict[str, Any] = {}

        def invoke() -> None:
            try:
                outcome["text"] = agent.run(context)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(
            target=invoke,
            name=f"taskpilot-dispatch-{agent.role}-{step.id}",
            daemon=True,
        )
        worker.start()
        worker.join(self.timeout)

        if worker.is_alive():
            logger.warning(f"[DISPATCH] {agent.role} still running after {self.timeout:g}s; abandoning step {step.id}")
            raise StepExecutionError(f"{agent.role} timed out after {self.timeout:g}s on step {step.id}")

        error = outcome.get("error")
        if isinstance(error, StepExecutionError):
            raise error
        if error is not None:
            raise StepExecutionError(f"{agent.role} failed on step {step.id}: {error}") from error
        return outcome["text"]
