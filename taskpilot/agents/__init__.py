"""
TASKPILOT Agent Roster

Each agent is:
  - A system prompt
  - A structured input template
  - A response parser

Agents are stateless between calls. State lives in the task registry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from taskpilot.errors import StepExecutionError
from taskpilot.router import Router, RouterResponse


class AgentContext(BaseModel):
    """Shared context passed to every agent invocation."""
    task_id: str = ""
    objective: str
    language: str = "en"
    transcript: str = ""  # accumulated output of prior steps
    extra: dict[str, Any] = {}


def language_name(code: str) -> str:
    return "Arabic" if code == "ar" else "English"


class BaseAgent(ABC):
    """
    Base class for all TASKPILOT agents.

    Subclasses define:
      - role: str — maps to router model
      - system_prompt: str — agent personality + constraints
      - build_messages() — constructs the chat messages
      - parse_response() — extracts the output
    """

    role: str = "generic"
    system_prompt: str = "You are a helpful assistant."
    structured_output: bool = False
    grounding: bool = False

    def __init__(self, router: Router):
        self.router = router

    def run(self, context: AgentContext, **kwargs) -> Any:
        """Execute the agent: build messages → call model → parse."""
        messages = self.build_messages(context)
        response = self.router.complete(
            role=self.role,
            messages=messages,
            structured_output=self.structured_output,
            grounding_enabled=self.grounding,
            **kwargs,
        )
        return self.parse_response(response, context)

    @abstractmethod
    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        """Build the message list for the LLM call."""
        ...

    def parse_response(self, response: RouterResponse, context: AgentContext) -> Any:
        """Plain-text agents: the stripped content, with sources appended."""
        text = response.content.strip()
        if not text:
            raise StepExecutionError(f"{self.role} returned an empty response ({response.model})")
        if response.citations:
            text += "\n\nSources:\n" + "\n".join(f"- {c}" for c in response.citations)
        return text

    def _system_msg(self) -> dict[str, str]:
        return {"role": "system", "content": self.system_prompt}

    def _user_msg(self, content: str) -> dict[str, str]:
        return {"role": "user", "content": content}
