"""
🛠️ Jack — The Generalist

Catch-all executor for steps no specialist claims.
Also runs the one-shot recovery when a specialist fails.

Energy: the intern who somehow knows where everything is.
"""

from __future__ import annotations

from taskpilot.agents import AgentContext, BaseAgent, language_name
from taskpilot.plan import AgentRole


class GenericAgent(BaseAgent):
    role = AgentRole.GENERIC.value
    grounding = True

    system_prompt = """You are Jack, the general-purpose agent inside TASKPILOT.

You execute one step of a larger task using the context provided.
Be direct, complete and factual.
"""

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        user_content = f"""Execute the following task:
{context.objective}

Context:
{context.transcript}

Respond in {language_name(context.language)}."""

        return [self._system_msg(), self._user_msg(user_content)]


class RecoveryAgent(GenericAgent):
    """Generic template on the recovery route, with a short context window."""

    role = "recovery"

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        user_content = f"""Execute: {context.objective}
Context: {context.transcript}

Respond in {language_name(context.language)}."""

        return [self._system_msg(), self._user_msg(user_content)]
