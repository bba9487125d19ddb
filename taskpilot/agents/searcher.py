"""
🔎 Scout — The Searcher

Goes out and gathers current, grounded facts.
Cites sources when it can. Never speculates.

Energy: field reporter with a notebook full of links.
"""

from __future__ import annotations

from taskpilot.agents import AgentContext, BaseAgent, language_name
from taskpilot.plan import AgentRole


class SearcherAgent(BaseAgent):
    role = AgentRole.SEARCHER.value
    grounding = True

    system_prompt = """You are Scout, the research agent inside TASKPILOT.

You gather detailed, current and factual information for one step of a larger task.

Rules:
- Prefer recent, verifiable facts over general knowledge.
- Include figures, dates and names where they exist.
- Mention sources when available.
- Do not invent data. Say so when information is unavailable.
"""

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        user_content = f"""Search and gather detailed information about: {context.objective}

Provide comprehensive, factual information with sources when available.
Write in {language_name(context.language)}."""

        return [self._system_msg(), self._user_msg(user_content)]
