import itertools
import json
import threading
from dataclasses import dataclass
from typing import Any, Callable, Union

import pytest

from taskpilot.config_loader import GatewayConfig, LimitsConfig, TaskPilotConfig
from taskpilot.controller import Controller
from taskpilot.event_bus import EventBus
from taskpilot.registry import SqliteTaskRegistry
from taskpilot.router import RouterResponse

# A scripted reply: text, an exception to raise, or a callable producing either.
Reply = Union[str, Exception, Callable[[str, list], Any]]


def make_plan(*phase_sizes: int, title: str = "Market study") -> dict:
    """Planner-shaped JSON with one phase per size given."""
    ids = itertools.count(1)
    roles = itertools.cycle(["SearchAgent", "AnalysisAgent", "WriterAgent", "SynthesisAgent", "GenericAgent"])
    phases = []
    for p, size in enumerate(phase_sizes, start=1):
        steps = []
        for _ in range(size):
            step_id = next(ids)
            steps.append({
                "id": step_id,
                "agent": next(roles),
                "task": f"Step {step_id} of phase {p}",
                "critical": step_id == 1,
                "estimatedMinutes": 5,
            })
        phases.append({"name": f"Phase {p}", "steps": steps})
    return {
        "taskTitle": title,
        "estimatedTime": "1 hour",
        "phases": phases,
        "outputs": ["PDF Report", "Summary"],
        "totalSteps": sum(phase_sizes),
    }


@dataclass
class Call:
    role: str
    messages: list
    structured_output: bool
    grounding_enabled: bool

    @property
    def prompt(self) -> str:
        return self.messages[-1]["content"]


class StubRouter:
    """
    Stands in for the gateway. The planner route answers with `plan`;
    every other call consumes the next entry of `script`, then falls back
    to "<role> result".
    """

    def __init__(self, plan: Any = None):
        self.plan = plan if plan is not None else make_plan(2, 2)
        self.script: list[Reply] = []
        self.calls: list[Call] = []
        self._lock = threading.Lock()

    def complete(self, role, messages, structured_output=False, grounding_enabled=False, max_tokens=None):
        with self._lock:
            self.calls.append(Call(role, messages, structured_output, grounding_enabled))
            reply: Reply
            if role == "planner":
                reply = self.plan if isinstance(self.plan, (str, Exception)) else json.dumps(self.plan)
            elif self.script:
                reply = self.script.pop(0)
            else:
                reply = f"{role} result"

        if callable(reply) and not isinstance(reply, Exception):
            reply = reply(role, messages)
        if isinstance(reply, Exception):
            raise reply
        return RouterResponse(content=reply, model=f"stub/{role}")

    def roles(self) -> list[str]:
        return [c.role for c in self.calls]


@pytest.fixture
def config() -> TaskPilotConfig:
    return TaskPilotConfig(
        limits=LimitsConfig(
            step_timeout_seconds=5,
            inter_step_delay_seconds=0,
            context_window_chars=24_000,
            recovery_context_chars=2_000,
        ),
        gateway=GatewayConfig(max_attempts=2, backoff_min=0, backoff_max=0, fallback_models=[]),
    )


@pytest.fixture
def router() -> StubRouter:
    return StubRouter()


@pytest.fixture
def registry(tmp_path):
    reg = SqliteTaskRegistry(tmp_path / "tasks.db")
    yield reg
    reg.close()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def controller(config, registry, router, events):
    ctl = Controller(config, registry, router=router, event_bus=events)
    return ctl
