"""
Configuration loader for TASKPILOT.
Merges defaults with per-project .taskpilot/config.yaml overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable

import yaml
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class RoutingConfig(BaseModel):
    planner: str = "gemini/gemini-2.5-pro"
    searcher: str = "gemini/gemini-2.5-flash"
    analyst: str = "gemini/gemini-2.5-pro"
    writer: str = "gemini/gemini-2.5-pro"
    synthesizer: str = "gemini/gemini-2.5-pro"
    generic: str = "gemini/gemini-2.5-flash"
    recovery: str = "gemini/gemini-2.0-flash"
    reporter: str = "gemini/gemini-2.5-pro"


class GatewayConfig(BaseModel):
    max_attempts: int = 3
    backoff_min: float = 1.0
    backoff_max: float = 10.0
    request_timeout: float = 90.0
    max_tokens: int = 8000
    temperature: float = 0.4
    fallback_models: list[str] = Field(default_factory=lambda: ["gemini/gemini-2.0-flash"])
    # provider prefix → env var prefix (FOO, FOO_1 .. FOO_n are rotated)
    key_pools: dict[str, str] = Field(default_factory=dict)
    max_pool_size: int = 15


class LimitsConfig(BaseModel):
    step_timeout_seconds: float = 180.0
    inter_step_delay_seconds: float = 0.5
    context_window_chars: int = 24_000
    recovery_context_chars: int = 2_000
    recent_notifications: int = 5


class InterventionConfig(BaseModel):
    require_plan_approval: bool = False


class StoreConfig(BaseModel):
    path: str = ".taskpilot/tasks.db"


class AuditConfig(BaseModel):
    enabled: bool = True
    path: str = ".taskpilot/logs/events.jsonl"
    batch_size: int = 10


class TaskPilotConfig(BaseModel):
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    intervention: InterventionConfig = Field(default_factory=InterventionConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    def store_path(self, root: Path) -> Path:
        path = Path(self.store.path).expanduser()
        return path if path.is_absolute() else root / path

    def audit_path(self, root: Path) -> Path:
        path = Path(self.audit.path).expanduser()
        return path if path.is_absolute() else root / path


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

# env var → (section, key, cast)
_ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "TASKPILOT_STORE_PATH": ("store", "path", str),
    "TASKPILOT_STEP_TIMEOUT": ("limits", "step_timeout_seconds", float),
    "TASKPILOT_STEP_DELAY": ("limits", "inter_step_delay_seconds", float),
    "TASKPILOT_REQUIRE_APPROVAL": ("intervention", "require_plan_approval", lambda v: v.lower() in ("1", "true", "yes")),
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env(base: dict[str, Any]) -> dict[str, Any]:
    for var, (section, key, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(var)
        if raw is None or not raw.strip():
            continue
        base.setdefault(section, {})[key] = cast(raw.strip())
    return base


def load_config(root: Path | None = None) -> TaskPilotConfig:
    """
    Load config by merging:
      1. Built-in defaults (taskpilot/config.yaml)
      2. Project overrides (<root>/.taskpilot/config.yaml)
      3. Environment variable overrides (TASKPILOT_*)
    """
    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    if root:
        project_config = root / ".taskpilot" / "config.yaml"
        if project_config.exists():
            with open(project_config, "r") as f:
                overrides: dict[str, Any] = yaml.safe_load(f) or {}
            base = _deep_merge(base, overrides)

    return TaskPilotConfig(**_apply_env(base))


def validate_api_keys() -> dict[str, bool]:
    """Check which API keys are available."""
    return {
        "GEMINI_API_KEY": bool(os.environ.get("GEMINI_API_KEY") or os.environ.get("GEMINI_API_KEY_1")),
        "GROQ_API_KEY": bool(os.environ.get("GROQ_API_KEY") or os.environ.get("GROQ_API_KEY_1")),
        "OPENAI_API_KEY": bool(os.environ.get("OPENAI_API_KEY")),
        "ANTHROPIC_API_KEY": bool(os.environ.get("ANTHROPIC_API_KEY")),
    }
