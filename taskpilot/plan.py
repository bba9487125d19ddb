"""
Plan schema — phases, steps, agent roles and flattening.

A Plan is immutable once created. Flattening turns it into the ordered
step sequence the orchestration loop walks.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AgentRole(str, Enum):
    SEARCHER = "searcher"
    ANALYST = "analyst"
    WRITER = "writer"
    SYNTHESIZER = "synthesizer"
    GENERIC = "generic"


# Planner output uses names like "SearchAgent"; normalise at the parse boundary.
_ROLE_ALIASES: dict[str, AgentRole] = {
    "search": AgentRole.SEARCHER,
    "searcher": AgentRole.SEARCHER,
    "research": AgentRole.SEARCHER,
    "analysis": AgentRole.ANALYST,
    "analyst": AgentRole.ANALYST,
    "analyze": AgentRole.ANALYST,
    "writer": AgentRole.WRITER,
    "write": AgentRole.WRITER,
    "writing": AgentRole.WRITER,
    "synthesis": AgentRole.SYNTHESIZER,
    "synthesizer": AgentRole.SYNTHESIZER,
    "synthesize": AgentRole.SYNTHESIZER,
}


def parse_role(value: Any) -> AgentRole:
    if isinstance(value, AgentRole):
        return value
    key = str(value or "").strip().lower().replace("_", "").replace("-", "").replace(" ", "")
    if key.endswith("agent"):
        key = key[: -len("agent")]
    return _ROLE_ALIASES.get(key, AgentRole.GENERIC)


class OutputKind(str, Enum):
    SUMMARY = "summary"
    REPORT = "report"
    PRESENTATION = "presentation"
    DATA = "data"
    OTHER = "other"


def parse_output_kind(value: Any) -> OutputKind:
    if isinstance(value, OutputKind):
        return value
    text = str(value or "").lower()
    if "summary" in text or "ملخص" in text:
        return OutputKind.SUMMARY
    if "presentation" in text or "slide" in text or "عرض" in text:
        return OutputKind.PRESENTATION
    if any(term in text for term in ("chart", "table", "data", "spreadsheet", "بيانات")):
        return OutputKind.DATA
    if "report" in text or "pdf" in text or "تقرير" in text:
        return OutputKind.REPORT
    return OutputKind.OTHER


class Step(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    agent_role: AgentRole = Field(default=AgentRole.GENERIC, alias="agent")
    description: str = Field(alias="task", min_length=1)
    is_critical: bool = Field(default=False, alias="critical")
    estimated_minutes: int = Field(default=5, alias="estimatedMinutes", ge=0)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value).strip()

    @field_validator("agent_role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> AgentRole:
        return parse_role(value)


class Phase(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    steps: tuple[Step, ...]


class FlatStep(NamedTuple):
    """One entry of the flattened step sequence."""
    index: int
    phase_index: int
    phase_name: str
    step: Step


def _count_steps(phases: Any) -> int:
    """Count steps in raw phase data. Malformed entries count as zero and are left to field validation."""
    if not isinstance(phases, (list, tuple)):
        return 0
    total = 0
    for phase in phases:
        if isinstance(phase, Phase):
            total += len(phase.steps)
        elif isinstance(phase, dict) and isinstance(phase.get("steps"), (list, tuple)):
            total += len(phase["steps"])
    return total


class Plan(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str = Field(alias="taskTitle")
    estimated_duration: str = Field(default="", alias="estimatedTime")
    phases: tuple[Phase, ...]
    declared_outputs: tuple[OutputKind, ...] = Field(default=(), alias="outputs")
    total_step_count: int = Field(default=0, alias="totalSteps")

    @model_validator(mode="before")
    @classmethod
    def _fill_total(cls, data: Any) -> Any:
        if isinstance(data, dict) and not (data.get("total_step_count") or data.get("totalSteps")):
            data = dict(data)
            data["total_step_count"] = _count_steps(data.get("phases"))
        return data

    @field_validator("declared_outputs", mode="before")
    @classmethod
    def _coerce_outputs(cls, value: Any) -> tuple[OutputKind, ...]:
        kinds: list[OutputKind] = []
        for item in value or []:
            kind = parse_output_kind(item)
            if kind not in kinds:
                kinds.append(kind)
        return tuple(kinds)

    @model_validator(mode="after")
    def _check_invariants(self) -> "Plan":
        counted = sum(len(phase.steps) for phase in self.phases)
        if counted == 0:
            raise ValueError("plan has no steps")
        if self.total_step_count != counted:
            raise ValueError(
                f"total_step_count={self.total_step_count} but phases hold {counted} steps"
            )
        ids = [step.id for phase in self.phases for step in phase.steps]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate step ids: {duplicates}")
        return self

    def flatten(self) -> list[FlatStep]:
        """Phases × steps in declaration order, each tagged with its global index."""
        flat: list[FlatStep] = []
        for phase_index, phase in enumerate(self.phases):
            for step in phase.steps:
                flat.append(FlatStep(len(flat), phase_index, phase.name, step))
        return flat

    def is_last_in_phase(self, index: int) -> bool:
        flat = self.flatten()
        if index >= len(flat) - 1:
            return True
        return flat[index + 1].phase_index != flat[index].phase_index
