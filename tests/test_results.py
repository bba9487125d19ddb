import pytest

from conftest import StubRouter, make_plan
from taskpilot.messages import FAILED_STEP_TEXT
from taskpilot.plan import AgentRole, Plan
from taskpilot.results import ResultFormat, ResultSynthesizer
from taskpilot.state import StepResult, Task, TaskStatus, utc_now


@pytest.fixture
def completed_task() -> Task:
    plan = Plan.model_validate(make_plan(1, 1))
    task = Task(prompt="Research EV batteries", plan=plan, status=TaskStatus.COMPLETED, progress=100)
    task.results = [
        StepResult(step_id="1", step_index=0, agent_role=AgentRole.SEARCHER, description="Gather data", text="z" * 800),
        StepResult(
            step_id="2",
            step_index=1,
            agent_role=AgentRole.ANALYST,
            description="Analyze data",
            text=FAILED_STEP_TEXT,
            failed=True,
            error="timed out",
        ),
    ]
    task.completed_at = utc_now()
    return task


def test_summary_uses_excerpts(completed_task):
    router = StubRouter()
    router.script = ["Executive summary"]

    payload = ResultSynthesizer(router).render(completed_task, ResultFormat.SUMMARY)

    assert payload["output"] == {"type": "summary", "content": "Executive summary"}
    prompt = router.calls[0].prompt
    assert router.calls[0].role == "reporter"
    assert "Gather data: " + "z" * 500 + "..." in prompt
    assert "z" * 501 not in prompt


def test_report_uses_full_sections(completed_task):
    router = StubRouter()

    payload = ResultSynthesizer(router).render(completed_task, ResultFormat.REPORT)

    assert payload["output"]["type"] == "report"
    prompt = router.calls[0].prompt
    assert "=== Gather data ===\n" + "z" * 800 in prompt
    assert "ORIGINAL REQUEST: Research EV batteries" in prompt


def test_raw_makes_no_gateway_calls(completed_task):
    router = StubRouter()

    payload = ResultSynthesizer(router).render(completed_task, ResultFormat.RAW)

    assert router.calls == []
    results = payload["output"]["results"]
    assert [r["step_id"] for r in results] == ["1", "2"]
    assert results[1]["failed"] is True
    assert results[1]["error"] == "timed out"


def test_all_bundles_everything(completed_task):
    router = StubRouter()
    router.script = ["the summary", "the report"]

    payload = ResultSynthesizer(router).render(completed_task, ResultFormat.ALL)

    output = payload["output"]
    assert payload["title"] == "Market study"
    assert output["summary"] == "the summary"
    assert output["report"] == "the report"
    assert output["sources"] == [
        {"task": "Gather data", "agent": "searcher"},
        {"task": "Analyze data", "agent": "analyst"},
    ]
    assert output["metadata"]["failed_steps"] == 1
    assert output["metadata"]["recovered_steps"] == 0
    assert output["metadata"]["duration_seconds"] >= 0


def test_arabic_task_asks_for_arabic(completed_task):
    completed_task.language = "ar"
    router = StubRouter()

    ResultSynthesizer(router).render(completed_task, ResultFormat.SUMMARY)

    assert "Arabic" in router.calls[0].prompt
