from pathlib import Path

from taskpilot.config_loader import _deep_merge, load_config


def test_defaults_load():
    config = load_config()

    assert config.routing.planner.startswith("gemini/")
    assert config.limits.recovery_context_chars == 2000
    assert config.limits.recent_notifications == 5
    assert config.intervention.require_plan_approval is False
    assert config.gateway.key_pools["gemini"] == "GEMINI_API_KEY"


def test_project_overrides_merge(tmp_path):
    (tmp_path / ".taskpilot").mkdir()
    (tmp_path / ".taskpilot" / "config.yaml").write_text(
        "routing:\n  writer: groq/llama-3.3-70b-versatile\nlimits:\n  step_timeout_seconds: 30\n"
    )

    config = load_config(tmp_path)

    assert config.routing.writer == "groq/llama-3.3-70b-versatile"
    assert config.routing.planner.startswith("gemini/")
    assert config.limits.step_timeout_seconds == 30
    assert config.limits.context_window_chars == 24000


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("TASKPILOT_STEP_DELAY", "0")
    monkeypatch.setenv("TASKPILOT_REQUIRE_APPROVAL", "true")
    monkeypatch.setenv("TASKPILOT_STORE_PATH", str(tmp_path / "elsewhere.db"))

    config = load_config(tmp_path)

    assert config.limits.inter_step_delay_seconds == 0
    assert config.intervention.require_plan_approval is True
    assert config.store_path(tmp_path) == tmp_path / "elsewhere.db"


def test_relative_paths_resolve_against_root():
    config = load_config()
    root = Path("/srv/project")

    assert config.store_path(root) == root / ".taskpilot" / "tasks.db"
    assert config.audit_path(root) == root / ".taskpilot" / "logs" / "events.jsonl"


def test_deep_merge_keeps_siblings():
    merged = _deep_merge({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"c": 9}})

    assert merged == {"a": {"b": 1, "c": 9}, "d": 3}
