import pytest
from pydantic import ValidationError

from conftest import make_plan
from taskpilot.plan import AgentRole, OutputKind, Plan, parse_output_kind, parse_role


def test_flatten_is_deterministic_and_ordered():
    plan = Plan.model_validate(make_plan(2, 3, 1))

    flat = plan.flatten()

    assert flat == plan.flatten()
    assert [f.index for f in flat] == list(range(6))
    assert [f.phase_index for f in flat] == [0, 0, 1, 1, 1, 2]
    assert [f.step.id for f in flat] == ["1", "2", "3", "4", "5", "6"]
    assert flat[2].phase_name == "Phase 2"


def test_last_in_phase():
    plan = Plan.model_validate(make_plan(2, 3, 1))

    assert [plan.is_last_in_phase(i) for i in range(6)] == [False, True, False, False, True, True]


def test_plan_aliases_and_defaults():
    plan = Plan.model_validate(make_plan(1))

    assert plan.title == "Market study"
    assert plan.estimated_duration == "1 hour"
    assert plan.total_step_count == 1
    step = plan.phases[0].steps[0]
    assert step.agent_role is AgentRole.SEARCHER
    assert step.description == "Step 1 of phase 1"
    assert step.is_critical is True


def test_total_defaults_to_counted_steps():
    data = make_plan(2, 2)
    del data["totalSteps"]

    assert Plan.model_validate(data).total_step_count == 4


def test_total_mismatch_is_rejected():
    data = make_plan(2, 2)
    data["totalSteps"] = 7

    with pytest.raises(ValidationError):
        Plan.model_validate(data)


def test_plan_without_steps_is_rejected():
    with pytest.raises(ValidationError):
        Plan.model_validate({"taskTitle": "Empty", "phases": [{"name": "P", "steps": []}]})


def test_duplicate_step_ids_are_rejected():
    data = make_plan(2)
    data["phases"][0]["steps"][1]["id"] = 1

    with pytest.raises(ValidationError):
        Plan.model_validate(data)


def test_blank_step_description_is_rejected():
    data = make_plan(1)
    data["phases"][0]["steps"][0]["task"] = ""

    with pytest.raises(ValidationError):
        Plan.model_validate(data)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("SearchAgent", AgentRole.SEARCHER),
        ("AnalysisAgent", AgentRole.ANALYST),
        ("writer_agent", AgentRole.WRITER),
        ("SynthesisAgent", AgentRole.SYNTHESIZER),
        ("GenericAgent", AgentRole.GENERIC),
        ("TranslatorAgent", AgentRole.GENERIC),
        (None, AgentRole.GENERIC),
    ],
)
def test_parse_role(raw, expected):
    assert parse_role(raw) is expected


def test_outputs_are_classified_and_deduplicated():
    data = make_plan(1)
    data["outputs"] = ["PDF Report", "Executive Summary", "Presentation slides", "Data tables", "Report", "Podcast"]

    plan = Plan.model_validate(data)

    assert plan.declared_outputs == (
        OutputKind.REPORT,
        OutputKind.SUMMARY,
        OutputKind.PRESENTATION,
        OutputKind.DATA,
        OutputKind.OTHER,
    )
    assert parse_output_kind("تقرير شامل") is OutputKind.REPORT
