"""
TASKPILOT Router — Provider Gateway

Routes agent calls through LiteLLM so agents never know
which vendor is backing them. Handles credential rotation,
model fallback, retries, usage tracking and structured logging.
"""

from __future__ import annotations

import itertools
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Iterator

import litellm
from loguru import logger
from pydantic import BaseModel
from tenacity import Retrying, stop_after_attempt, wait_exponential

from taskpilot.config_loader import TaskPilotConfig
from taskpilot.errors import ProviderExhausted


# ---------------------------------------------------------------------------
# Usage Tracking
# ---------------------------------------------------------------------------

@dataclass
class UsageRecord:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    call_count: int = 0
    failed_calls: int = 0


@dataclass
class UsageTracker:
    """Tracks token + dollar spend across gateway calls."""
    usage: UsageRecord = field(default_factory=UsageRecord)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, response: Any) -> None:
        """Record usage from a LiteLLM response.

        Extracts token usage from the response object and updates the internal
        counters. Cost is estimated with LiteLLM's cost calculator; models
        without pricing data simply add nothing.

        Args:
            response (Any): The response object returned by LiteLLM.
        """
        usage = getattr(response, "usage", None)
        try:
            cost = litellm.completion_cost(completion_response=response)
        except Exception as e:
            logger.debug(f"[ROUTER] No cost data: {e}")
            cost = 0.0

        with self._lock:
            if usage:
                self.usage.prompt_tokens += getattr(usage, "prompt_tokens", 0) or 0
                self.usage.completion_tokens += getattr(usage, "completion_tokens", 0) or 0
                self.usage.total_tokens += getattr(usage, "total_tokens", 0) or 0
            self.usage.estimated_cost += cost or 0.0
            self.usage.call_count += 1

    def record_failure(self) -> None:
        with self._lock:
            self.usage.failed_calls += 1

    def summary(self) -> dict:
        """Generate a summary of current usage.

        Returns:
            dict: Total tokens used, estimated cost, call count and failed calls.
        """
        return {
            "total_tokens": self.usage.total_tokens,
            "estimated_cost": round(self.usage.estimated_cost, 4),
            "call_count": self.usage.call_count,
            "failed_calls": self.usage.failed_calls,
        }


# ---------------------------------------------------------------------------
# Credential rotation
# ---------------------------------------------------------------------------

def collect_keys(env_prefix: str, max_pool_size: int = 15) -> list[str]:
    """Collect PREFIX, PREFIX_1 .. PREFIX_n from the environment, de-duplicated."""
    names = [env_prefix] + [f"{env_prefix}_{i}" for i in range(1, max_pool_size + 1)]
    keys: list[str] = []
    for name in names:
        value = (os.environ.get(name) or "").strip()
        if value and value not in keys:
            keys.append(value)
    return keys


class KeyPool:
    """Round-robin credential rotation per provider prefix (e.g. ``gemini``)."""

    def __init__(self, pools: dict[str, str], max_pool_size: int = 15):
        self._cycles: dict[str, Iterator[str]] = {}
        self._sizes: dict[str, int] = {}
        self._lock = threading.Lock()
        for provider, env_prefix in pools.items():
            keys = collect_keys(env_prefix, max_pool_size)
            if keys:
                self._cycles[provider] = itertools.cycle(keys)
                self._sizes[provider] = len(keys)

    def next_key(self, model: str) -> str | None:
        provider = model.split("/", 1)[0] if "/" in model else ""
        with self._lock:
            cycle = self._cycles.get(provider)
            return next(cycle) if cycle else None

    def sizes(self) -> dict[str, int]:
        return dict(self._sizes)


# ---------------------------------------------------------------------------
# Model capability helpers
# ---------------------------------------------------------------------------

def _is_gpt5_model(model: str) -> bool:
    """GPT-5 family models have restricted parameter support."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith("gpt-5")


def _is_o_series_model(model: str) -> bool:
    """OpenAI o-series reasoning models don't support temperature."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith("o1") or normalized.startswith("o3") or normalized.startswith("o4")


def _supports_grounding(model: str) -> bool:
    """Google search grounding is only wired for Gemini models."""
    normalized = model.lower()
    return normalized.startswith(("gemini/", "vertex_ai/")) and "gemini" in normalized


def _build_kwargs(
    model: str,
    messages: list[dict[str, str]],
    temperature: float,
    max_tokens: int,
    structured_output: bool,
    grounding_enabled: bool,
    timeout: float | None,
) -> dict[str, Any]:
    """
    Build LiteLLM kwargs with per-model param filtering.
    Different model families support different parameters.
    """
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
    }

    if not _is_gpt5_model(model) and not _is_o_series_model(model):
        kwargs["temperature"] = temperature

    if structured_output:
        kwargs["response_format"] = {"type": "json_object"}
    elif grounding_enabled and _supports_grounding(model):
        # Gemini rejects search tools combined with JSON mode
        kwargs["tools"] = [{"googleSearch": {}}]

    if timeout:
        kwargs["timeout"] = timeout

    return kwargs


def _extract_citations(response: Any) -> list[str]:
    citations = getattr(response, "citations", None)
    if not citations:
        hidden = getattr(response, "_hidden_params", None) or {}
        citations = hidden.get("citations") if isinstance(hidden, dict) else None
    if not citations:
        return []
    return [str(c) for c in citations if c]


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class RouterResponse(BaseModel):
    content: str
    model: str
    citations: list[str] = []
    tokens_used: int = 0
    cost: float = 0.0
    latency_ms: int = 0


class Router:
    """
    Vendor-agnostic model router.

    Agents call `router.complete(role, messages)`.
    The router resolves the model chain for the role, rotates credentials,
    retries each model, falls back to the next one, and returns structured
    output. When every model is exhausted it raises ProviderExhausted.
    """

    def __init__(self, config: TaskPilotConfig):
        self.config = config
        self.usage = UsageTracker()
        self.keys = KeyPool(config.gateway.key_pools, config.gateway.max_pool_size)
        self._role_model_map = config.routing.model_dump()

        litellm.suppress_debug_info = True

    def resolve_models(self, role: str) -> list[str]:
        """Resolve an agent role to its ordered model chain.

        Args:
            role (str): The routing role (e.g. 'planner', 'searcher').

        Returns:
            list[str]: The primary model followed by unique fallback models.

        Raises:
            ValueError: If the role has no routing entry.
        """
        model = self._role_model_map.get(role)
        if not model:
            raise ValueError(f"Unknown agent role: {role}. Known: {list(self._role_model_map)}")
        chain = [model]
        for fallback in self.config.gateway.fallback_models:
            if fallback not in chain:
                chain.append(fallback)
        return chain

    def generate(
        self,
        prompt: str,
        *,
        role: str = "generic",
        structured_output: bool = False,
        grounding_enabled: bool = False,
    ) -> RouterResponse:
        """Single-prompt convenience wrapper around `complete`."""
        return self.complete(
            role=role,
            messages=[{"role": "user", "content": prompt}],
            structured_output=structured_output,
            grounding_enabled=grounding_enabled,
        )

    def complete(
        self,
        role: str,
        messages: list[dict[str, str]],
        structured_output: bool = False,
        grounding_enabled: bool = False,
        max_tokens: int | None = None,
    ) -> RouterResponse:
        """Send a completion request through LiteLLM.

        Walks the role's model chain. Each model is retried with exponential
        backoff, rotating credentials between attempts.

        Args:
            role (str): Routing role name (planner, searcher, ...).
            messages (list[dict[str, str]]): Standard chat messages.
            structured_output (bool, optional): Request a JSON object response.
            grounding_enabled (bool, optional): Enable web search grounding
                where the model supports it.
            max_tokens (int | None, optional): Override the configured limit.

        Returns:
            RouterResponse: Content, model used, citations, tokens and latency.

        Raises:
            ProviderExhausted: If every model in the chain failed.
        """
        gateway = self.config.gateway
        last_error: Exception | None = None

        for model in self.resolve_models(role):
            kwargs = _build_kwargs(
                model,
                messages,
                temperature=gateway.temperature,
                max_tokens=max_tokens or gateway.max_tokens,
                structured_output=structured_output,
                grounding_enabled=grounding_enabled,
                timeout=gateway.request_timeout,
            )
            start = time.monotonic()
            logger.debug(f"[ROUTER] {role} → {model} ({len(messages)} messages)")

            try:
                response = self._call_with_retry(kwargs)
            except Exception as e:
                self.usage.record_failure()
                logger.warning(f"[ROUTER] {role} → {model} failed: {e}")
                last_error = e
                continue

            elapsed_ms = int((time.monotonic() - start) * 1000)
            self.usage.record(response)
            content = response.choices[0].message.content or ""

            logger.debug(
                f"[ROUTER] {role} complete — "
                f"{self.usage.usage.total_tokens} tokens, "
                f"${self.usage.usage.estimated_cost:.4f}, "
                f"{elapsed_ms}ms"
            )

            usage = getattr(response, "usage", None)
            return RouterResponse(
                content=content,
                model=model,
                citations=_extract_citations(response),
                tokens_used=getattr(usage, "total_tokens", 0) or 0,
                cost=self.usage.usage.estimated_cost,
                latency_ms=elapsed_ms,
            )

        raise ProviderExhausted(f"All models failed for role '{role}': {last_error}")

    def _call_with_retry(self, kwargs: dict[str, Any]) -> Any:
        gateway = self.config.gateway
        retrying = Retrying(
            stop=stop_after_attempt(max(1, gateway.max_attempts)),
            wait=wait_exponential(min=gateway.backoff_min, max=gateway.backoff_max),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                key = self.keys.next_key(kwargs["model"])
                if key:
                    kwargs["api_key"] = key
                return litellm.completion(**kwargs)
        raise ProviderExhausted("retry loop ended without a result")
