"""
✍️ Quill — The Writer

Turns research and analysis into clean, professional prose.

Energy: editor who has opinions about semicolons.
"""

from __future__ import annotations

from taskpilot.agents import AgentContext, BaseAgent, language_name
from taskpilot.plan import AgentRole


class WriterAgent(BaseAgent):
    role = AgentRole.WRITER.value

    system_prompt = """You are Quill, the writing agent inside TASKPILOT.

You produce polished, well-structured prose from the material gathered so far.

Rules:
- Use headings and lists where they help the reader.
- Keep the tone professional and precise.
- Do not introduce facts that are not in the provided material.
"""

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        user_content = f"""Write professional content based on the following:

Task: {context.objective}

Research and analysis:
{context.transcript}

Write clear, professional, and comprehensive content in {language_name(context.language)}."""

        return [self._system_msg(), self._user_msg(user_content)]
