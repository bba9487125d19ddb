"""
🧠 Atlas — The Planner

Breaks a goal into phases and steps.
Assigns each step to a specialist.
Never executes. Only plans.

Energy: air-traffic controller with a whiteboard.
"""

from __future__ import annotations

import json
import re
from typing import Any

from loguru import logger
from pydantic import ValidationError

from taskpilot.agents import AgentContext, BaseAgent, language_name
from taskpilot.errors import PlanParseError, ProviderExhausted
from taskpilot.plan import Plan
from taskpilot.router import RouterResponse


class PlannerAgent(BaseAgent):
    role = "planner"
    structured_output = True

    system_prompt = """You are Atlas, the planning engine inside TASKPILOT.

Your job is to take a complex user request and produce a DETAILED, multi-phase
execution plan that specialist agents can execute one step at a time.

You MUST respond with a valid JSON object ONLY. No markdown, no commentary.

Output schema:
{
  "taskTitle": "Short task title",
  "estimatedTime": "2-4 hours",
  "phases": [
    {
      "name": "Phase name",
      "steps": [
        {
          "id": 1,
          "agent": "SearchAgent|AnalysisAgent|WriterAgent|SynthesisAgent|GenericAgent",
          "task": "Specific, actionable step description",
          "critical": true,
          "estimatedMinutes": 5
        }
      ]
    }
  ],
  "outputs": ["PDF Report", "Presentation", "Summary"],
  "totalSteps": 15
}

Rules:
- Create 10-20 steps in total.
- Use these five phases, in order:
  1. Research & Data Gathering (3-5 steps)
  2. Analysis & Processing (3-5 steps)
  3. Synthesis & Writing (2-4 steps)
  4. Output Generation (2-4 steps)
  5. Quality Check (1-2 steps)
- Each step must be specific, actionable and executable on its own.
- Step ids are unique integers numbered from 1.
- totalSteps MUST equal the number of steps across all phases.
"""

    def build_plan(self, prompt: str, language: str = "en") -> Plan:
        """Plan Builder entry point. Raises PlanParseError on any failure."""
        context = AgentContext(objective=prompt, language=language)
        try:
            return self.run(context)
        except PlanParseError:
            raise
        except ProviderExhausted as e:
            raise PlanParseError(f"Planner call failed: {e}") from e
        except Exception as e:
            logger.exception("[PLANNER] Unexpected planner failure")
            raise PlanParseError(f"Planner failed: {e}") from e

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        user_content = f"""USER REQUEST: "{context.objective}"
LANGUAGE: {language_name(context.language)}

Write the task title, phase names and step descriptions in {language_name(context.language)}.

Produce your execution plan as JSON."""

        return [self._system_msg(), self._user_msg(user_content)]

    def parse_response(self, response: RouterResponse, context: AgentContext) -> Plan:
        """Parse and validate the JSON plan from Atlas."""
        content = response.content.strip()
        raw = extract_json_object(content)

        try:
            plan = Plan.model_validate(reconcile_plan(raw))
        except ValidationError as e:
            logger.error(f"[PLANNER] Plan failed validation: {e}")
            logger.debug(f"[PLANNER] Raw response: {content[:500]}")
            raise PlanParseError(f"Plan failed validation: {e}", raw_response=content[:1000]) from e

        logger.info(
            f"[PLANNER] Plan ready — "
            f"{plan.total_step_count} steps in {len(plan.phases)} phases "
            f"({response.model})"
        )
        return plan


def _strip_fences(content: str) -> str:
    if content.startswith("```"):
        lines = content.split("\n")
        lines = [l for l in lines if not l.strip().startswith("```")]
        content = "\n".join(lines)
    return content


def extract_json_object(content: str) -> dict[str, Any]:
    """
    Parse a JSON object from model output. Falls back to the outermost
    {...} span when the model wrapped the JSON in prose.
    """
    content = _strip_fences(content.strip())
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", content, re.DOTALL)
        if not match:
            raise PlanParseError("No JSON object in planner response", raw_response=content[:1000])
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError as e:
            raise PlanParseError(f"Embedded JSON is invalid: {e}", raw_response=content[:1000]) from e

    if not isinstance(data, dict):
        raise PlanParseError("Planner response is not a JSON object", raw_response=content[:1000])
    return data


def reconcile_plan(data: dict[str, Any]) -> dict[str, Any]:
    """
    Repair the two things models routinely get wrong: missing step ids and
    a totalSteps figure that disagrees with the phases.
    """
    data = dict(data)
    phases = data.get("phases")
    if not isinstance(phases, list):
        return data

    counter = 0
    fixed_phases = []
    for phase in phases:
        if not isinstance(phase, dict) or not isinstance(phase.get("steps"), list):
            fixed_phases.append(phase)
            continue
        steps = []
        for step in phase["steps"]:
            counter += 1
            if isinstance(step, dict) and step.get("id") in (None, ""):
                step = {**step, "id": counter}
            steps.append(step)
        fixed_phases.append({**phase, "steps": steps})
    data["phases"] = fixed_phases

    declared = data.pop("totalSteps", None)
    if declared is not None and declared != counter:
        logger.warning(f"[PLANNER] Declared totalSteps={declared}, counted {counter}; using counted")
    data["totalSteps"] = counter
    return data
