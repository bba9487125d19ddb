import pytest

from conftest import make_plan
from taskpilot.plan import AgentRole, Plan
from taskpilot.state import StepResult, Task, TaskStatus, detect_language, percent


@pytest.mark.parametrize(
    "done, total, expected",
    [(0, 4, 0), (1, 4, 25), (1, 8, 13), (1, 3, 33), (2, 3, 67), (4, 4, 100), (0, 0, 0)],
)
def test_percent(done, total, expected):
    assert percent(done, total) == expected


def test_detect_language():
    assert detect_language("Research the EV market") == "en"
    assert detect_language("قارن بين iPhone و Samsung") == "ar"
    assert detect_language("") == "en"


def test_terminal_statuses():
    assert {s for s in TaskStatus if s.is_terminal} == {
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    }


def _result(index: int, text: str, failed: bool = False) -> StepResult:
    return StepResult(
        step_id=str(index + 1),
        step_index=index,
        agent_role=AgentRole.GENERIC,
        description=f"Step {index + 1}",
        text=text,
        failed=failed,
    )


def test_transcript_skips_failed_results():
    task = Task(prompt="Compare phones", plan=Plan.model_validate(make_plan(3)))
    task.results = [_result(0, "alpha"), _result(1, "broken", failed=True), _result(2, "gamma")]

    transcript = task.transcript()

    assert transcript.startswith("Original Request: Compare phones")
    assert "=== Step 1 ===\nalpha" in transcript
    assert "broken" not in transcript
    assert transcript.index("alpha") < transcript.index("gamma")


def test_transcript_window_keeps_header_and_newest():
    task = Task(prompt="Compare phones", plan=Plan.model_validate(make_plan(2)))
    task.results = [_result(0, "a" * 500), _result(1, "b" * 40)]

    transcript = task.transcript(window_chars=100)

    assert transcript.startswith("Original Request: Compare phones")
    assert "b" * 40 in transcript
    assert "a" * 101 not in transcript
    assert task.next_step_index == 2
