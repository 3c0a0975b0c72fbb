from __future__ import annotations

import asyncio

import pytest

from xstory.llm import (
    CompletionOptions,
    CostTracker,
    LangChainCompletionClient,
    OperationCancelled,
    ProviderDependencyError,
    ProviderSettings,
    build_client,
    run_cancellable,
    user,
)


def test_build_client_prefers_explicit_over_env(monkeypatch: pytest.MonkeyPatch, dummy_chat_model) -> None:
    monkeypatch.setenv("XSTORY_MODEL", "env-model")
    monkeypatch.setenv("XSTORY_BASE_URL", "https://env.example")
    monkeypatch.setenv("XSTORY_API_KEY", "env-key")
    monkeypatch.setenv("XSTORY_TEMPERATURE", "0.25")
    monkeypatch.setenv("XSTORY_MAX_TOKENS", "512")

    client = build_client(
        model="cli-model",
        temperature=0.9,
        max_tokens=2048,
        timeout=30.0,
    )

    assert isinstance(client, LangChainCompletionClient)
    assert client.model == "cli-model"
    settings = client.settings
    assert settings.base_url == "https://env.example"
    assert settings.api_key == "env-key"
    assert settings.temperature == 0.9
    assert settings.max_tokens == 2048
    assert settings.timeout == 30.0

    dummy_instance = client._client  # type: ignore[attr-defined]
    assert dummy_instance.kwargs["model"] == "cli-model"
    assert dummy_instance.kwargs["temperature"] == 0.9


def test_build_client_uses_env_fallbacks_when_not_overridden(monkeypatch: pytest.MonkeyPatch, dummy_chat_model) -> None:
    monkeypatch.setenv("OPENAI_MODEL", "fallback-model")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://fallback.example")
    monkeypatch.setenv("OPENAI_API_KEY", "fallback-key")
    monkeypatch.setenv("XSTORY_TEMPERATURE", "0.1")

    client = build_client()

    assert client.model == "fallback-model"
    settings = client.settings
    assert settings.base_url == "https://fallback.example"
    assert settings.api_key == "fallback-key"
    assert settings.temperature == 0.1
    assert settings.max_tokens is None


def test_build_client_raises_dependency_error(monkeypatch: pytest.MonkeyPatch) -> None:
    from xstory.llm import providers

    monkeypatch.setattr(providers, "ChatOpenAI", None)
    with pytest.raises(ProviderDependencyError):
        build_client()


def test_provider_settings_as_kwargs_filters_none() -> None:
    settings = ProviderSettings(model="demo", temperature=0.5, max_tokens=None, timeout=None)
    kwargs = settings.as_kwargs()
    assert kwargs == {"model": "demo", "temperature": 0.5}


def test_complete_records_usage_under_call_tag(dummy_chat_model, dummy_cost_tracker) -> None:
    client = build_client(model="stub-model", cost_tracker=dummy_cost_tracker)

    completion = asyncio.run(
        client.complete([user("hi")], CompletionOptions(temperature=0.2, tag="dialogue.refine"))
    )

    assert completion.content == "dummy reply"
    assert completion.finish_reason == "stop"
    assert completion.usage.total_tokens == 15
    dummy_instance = client._client  # type: ignore[attr-defined]
    name, (messages, kwargs) = dummy_instance.invocations[0]
    assert name == "ainvoke"
    assert messages[0].content == "hi"
    assert kwargs == {"temperature": 0.2}
    usage = dummy_cost_tracker.usage_for_tag("dialogue.refine")
    assert usage is not None and usage.prompt_tokens == 10


def test_stream_yields_chunks(dummy_chat_model) -> None:
    client = build_client(model="demo-model")

    async def collect() -> list[str]:
        return [chunk async for chunk in client.stream([user("hi")])]

    assert asyncio.run(collect()) == ["dummy", "reply"]


def test_stream_raises_when_signal_is_set(dummy_chat_model) -> None:
    client = build_client(model="demo-model")
    received: list[str] = []

    async def collect() -> None:
        signal = asyncio.Event()
        async for chunk in client.stream([user("hi")], signal=signal):
            received.append(chunk)
            signal.set()

    with pytest.raises(OperationCancelled, match="demo-model"):
        asyncio.run(collect())
    assert received == ["dummy"]


def test_run_cancellable_aborts_when_signal_fires() -> None:
    async def scenario() -> None:
        signal = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, signal.set)
        await run_cancellable(asyncio.sleep(5), signal)

    with pytest.raises(OperationCancelled):
        asyncio.run(scenario())


def test_run_cancellable_returns_result_without_signal() -> None:
    async def answer() -> int:
        return 42

    assert asyncio.run(run_cancellable(answer(), None)) == 42
    assert asyncio.run(run_cancellable(answer(), asyncio.Event())) == 42


def test_cost_tracker_serialises_by_tag() -> None:
    tracker = CostTracker()
    tracker.record("unpriced-model", 10, 5, tag="brainstorm.generate")
    payload = tracker.to_dict()
    assert payload["total_cost_usd"] == 0.0
    assert "brainstorm.generate" in payload["by_tag"]
