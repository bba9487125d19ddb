"""
📊 Lens — The Analyst

Reads everything gathered so far and pulls out what matters.
Trends, comparisons, risks, conclusions.

Energy: quiet spreadsheet wizard, three coffees deep.
"""

from __future__ import annotations

from taskpilot.agents import AgentContext, BaseAgent, language_name
from taskpilot.plan import AgentRole


class AnalystAgent(BaseAgent):
    role = AgentRole.ANALYST.value

    system_prompt = """You are Lens, the analysis agent inside TASKPILOT.

You turn gathered material into insight for one step of a larger task.

Rules:
- Ground every conclusion in the provided context.
- Separate facts from interpretation.
- Quantify where the data allows it.
- Flag gaps or contradictions in the material.
"""

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        user_content = f"""Analyze the following data and provide insights:

Task: {context.objective}

Context from previous steps:
{context.transcript}

Provide detailed analysis with conclusions. Write in {language_name(context.language)}."""

        return [self._system_msg(), self._user_msg(user_content)]
