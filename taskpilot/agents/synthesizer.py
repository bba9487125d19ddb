"""
🧩 Weave — The Synthesizer

Integrates every prior step into one coherent whole.
Resolves overlaps. Keeps the thread.

Energy: conductor of a very chatty orchestra.
"""

from __future__ import annotations

from taskpilot.agents import AgentContext, BaseAgent, language_name
from taskpilot.plan import AgentRole


class SynthesizerAgent(BaseAgent):
    role = AgentRole.SYNTHESIZER.value

    system_prompt = """You are Weave, the synthesis agent inside TASKPILOT.

You combine the outputs of many earlier steps into a single coherent result.

Rules:
- Merge overlapping points instead of repeating them.
- Preserve important numbers and findings.
- Resolve or explicitly note contradictions between steps.
"""

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        user_content = f"""Synthesize all the information into a cohesive output:

Task: {context.objective}

All gathered information:
{context.transcript}

Create a well-structured synthesis in {language_name(context.language)}."""

        return [self._system_msg(), self._user_msg(user_content)]
