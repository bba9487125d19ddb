from types import SimpleNamespace

import litellm
import pytest

from taskpilot.config_loader import GatewayConfig, RoutingConfig, TaskPilotConfig
from taskpilot.errors import ProviderExhausted
from taskpilot.router import KeyPool, Router, _build_kwargs, collect_keys


def _response(content: str = "hello", citations=None):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        citations=citations,
    )


@pytest.fixture
def gateway_config() -> TaskPilotConfig:
    return TaskPilotConfig(
        routing=RoutingConfig(searcher="gemini/gemini-2.5-flash"),
        gateway=GatewayConfig(
            max_attempts=2,
            backoff_min=0,
            backoff_max=0,
            fallback_models=["groq/llama-3.3-70b-versatile"],
            key_pools={"gemini": "TP_TEST_GEMINI_KEY"},
        ),
    )


@pytest.fixture
def completions(monkeypatch):
    """Records every litellm.completion call; `replies` maps model → list of replies."""
    calls: list[dict] = []
    replies: dict[str, list] = {}

    def fake_completion(**kwargs):
        calls.append(kwargs)
        queue = replies.get(kwargs["model"], [])
        reply = queue.pop(0) if queue else _response()
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(litellm, "completion", fake_completion)
    monkeypatch.setattr(litellm, "completion_cost", lambda completion_response: 0.001)
    return SimpleNamespace(calls=calls, replies=replies)


def test_resolve_models_appends_fallbacks(gateway_config):
    router = Router(gateway_config)

    assert router.resolve_models("searcher") == ["gemini/gemini-2.5-flash", "groq/llama-3.3-70b-versatile"]
    with pytest.raises(ValueError):
        router.resolve_models("nobody")


def test_complete_returns_content_and_tracks_usage(gateway_config, completions):
    router = Router(gateway_config)

    response = router.complete("searcher", [{"role": "user", "content": "hi"}])

    assert response.content == "hello"
    assert response.model == "gemini/gemini-2.5-flash"
    assert response.tokens_used == 15
    assert router.usage.summary()["call_count"] == 1
    assert router.usage.summary()["total_tokens"] == 15


def test_retries_then_succeeds(gateway_config, completions):
    completions.replies["gemini/gemini-2.5-flash"] = [RuntimeError("503"), _response("second try")]
    router = Router(gateway_config)

    response = router.complete("searcher", [{"role": "user", "content": "hi"}])

    assert response.content == "second try"
    assert len(completions.calls) == 2


def test_falls_back_to_next_model(gateway_config, completions):
    completions.replies["gemini/gemini-2.5-flash"] = [RuntimeError("429"), RuntimeError("429")]
    router = Router(gateway_config)

    response = router.complete("searcher", [{"role": "user", "content": "hi"}])

    assert response.model == "groq/llama-3.3-70b-versatile"
    assert router.usage.summary()["failed_calls"] == 1


def test_exhausted_when_every_model_fails(gateway_config, completions):
    completions.replies["gemini/gemini-2.5-flash"] = [RuntimeError("down")] * 2
    completions.replies["groq/llama-3.3-70b-versatile"] = [RuntimeError("down")] * 2
    router = Router(gateway_config)

    with pytest.raises(ProviderExhausted):
        router.generate("hi", role="searcher")
    assert len(completions.calls) == 4


def test_credentials_rotate_between_attempts(gateway_config, completions, monkeypatch):
    monkeypatch.setenv("TP_TEST_GEMINI_KEY", "key-a")
    monkeypatch.setenv("TP_TEST_GEMINI_KEY_1", "key-b")
    completions.replies["gemini/gemini-2.5-flash"] = [RuntimeError("429"), _response()]
    router = Router(gateway_config)

    router.complete("searcher", [{"role": "user", "content": "hi"}])

    assert [c["api_key"] for c in completions.calls] == ["key-a", "key-b"]


def test_citations_are_passed_through(gateway_config, completions):
    completions.replies["gemini/gemini-2.5-flash"] = [_response(citations=["https://example.org/a"])]
    router = Router(gateway_config)

    response = router.complete("searcher", [{"role": "user", "content": "hi"}], grounding_enabled=True)

    assert response.citations == ["https://example.org/a"]
    assert completions.calls[0]["tools"] == [{"googleSearch": {}}]


def test_collect_keys_deduplicates(monkeypatch):
    monkeypatch.setenv("TP_POOL", "k1")
    monkeypatch.setenv("TP_POOL_1", "k1")
    monkeypatch.setenv("TP_POOL_2", "k2")

    assert collect_keys("TP_POOL", 3) == ["k1", "k2"]


def test_key_pool_without_keys_returns_none():
    pool = KeyPool({"gemini": "TP_UNSET_PREFIX"})

    assert pool.next_key("gemini/gemini-2.5-flash") is None
    assert pool.sizes() == {}


def test_build_kwargs_structured_output_wins_over_grounding():
    kwargs = _build_kwargs(
        "gemini/gemini-2.5-pro",
        [],
        temperature=0.4,
        max_tokens=100,
        structured_output=True,
        grounding_enabled=True,
        timeout=30,
    )

    assert kwargs["response_format"] == {"type": "json_object"}
    assert "tools" not in kwargs
    assert kwargs["timeout"] == 30


def test_build_kwargs_drops_temperature_for_reasoning_models():
    kwargs = _build_kwargs(
        "openai/o3-mini",
        [],
        temperature=0.4,
        max_tokens=100,
        structured_output=False,
        grounding_enabled=True,
        timeout=None,
    )

    assert "temperature" not in kwargs
    assert "tools" not in kwargs
    assert "timeout" not in kwargs
