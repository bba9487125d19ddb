"""
📰 Herald — The Reporter

Runs after the last step. Folds every step output into
an executive summary or a full report.

Energy: newsroom editor on deadline.
"""

from __future__ import annotations

from taskpilot.agents import AgentContext, BaseAgent, language_name

SUMMARY_EXCERPT_CHARS = 500


class SummaryAgent(BaseAgent):
    role = "reporter"

    system_prompt = """You are Herald, the reporting agent inside TASKPILOT.
You write concise, professional executive summaries of completed research."""

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        user_content = f"""Create a 1-page EXECUTIVE SUMMARY of this research:

TOPIC: {context.objective}

KEY FINDINGS:
{context.transcript}

Write a concise, professional executive summary in {language_name(context.language)}.
Include: Key points, Main conclusions, Top recommendations."""

        return [self._system_msg(), self._user_msg(user_content)]


class ReportAgent(BaseAgent):
    role = "reporter"

    system_prompt = """You are Herald, the reporting agent inside TASKPILOT.
You turn the complete trace of a task into a comprehensive final report."""

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        user_content = f"""Based on all the research and analysis below, create a COMPREHENSIVE FINAL REPORT.

ORIGINAL REQUEST: {context.objective}

ALL GATHERED INFORMATION:
{context.transcript}

Create a professional report with:
1. Executive Summary
2. Key Findings (organized by topic)
3. Detailed Analysis
4. Data and Statistics
5. Recommendations
6. Conclusion

Write in {language_name(context.language)}.
Use proper headings, bullet points, and formatting."""

        return [self._system_msg(), self._user_msg(user_content)]
