"""Shared fixtures for the test suite."""
from __future__ import annotations

from typing import Any, Iterable

import pytest

from xstory.knowledge import InMemoryKnowledgeStore
from xstory.llm.cost import CostTracker, ModelPricing

ENV_VARS = {
    "XSTORY_MODEL",
    "OPENAI_MODEL",
    "XSTORY_API_KEY",
    "XSTORY_API_KEY_ENV",
    "OPENAI_API_KEY",
    "XSTORY_BASE_URL",
    "OPENAI_BASE_URL",
    "XSTORY_TEMPERATURE",
    "XSTORY_MAX_TOKENS",
    "XSTORY_EMBEDDING_MODEL",
    "XSTORY_MAX_ITERATIONS",
    "XSTORY_BUDGET_USD",
    "XSTORY_BUDGET_WARN_RATIO",
    "XSTORY_OUTPUT_ROOT",
    "XSTORY_LOG_LEVEL",
}


@pytest.fixture(autouse=True)
def _clear_llm_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure LLM-related environment variables do not leak between tests."""

    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class DummyResponse:
    def __init__(self, content: str, *, prompt_tokens: int = 10, completion_tokens: int = 5) -> None:
        self.content = content
        self.usage_metadata = {"input_tokens": prompt_tokens, "output_tokens": completion_tokens}
        self.response_metadata = {"finish_reason": "stop"}


@pytest.fixture
def dummy_chat_model(monkeypatch: pytest.MonkeyPatch):
    """Patch the LangChain chat client used by the completion client."""

    from xstory.llm import providers

    class DummyChatModel:
        reply = "dummy reply"

        def __init__(self, **kwargs: Any) -> None:
            self.kwargs = kwargs
            self.invocations: list[tuple[str, tuple[Iterable[Any], dict[str, Any]]]] = []

        async def ainvoke(self, messages: Iterable[Any], **kwargs: Any) -> DummyResponse:
            self.invocations.append(("ainvoke", (tuple(messages), dict(kwargs))))
            return DummyResponse(self.reply)

        async def astream(self, messages: Iterable[Any], **kwargs: Any):
            from langchain_core.messages import AIMessageChunk

            self.invocations.append(("astream", (tuple(messages), dict(kwargs))))
            for word in self.reply.split():
                yield AIMessageChunk(content=word)

    monkeypatch.setattr(providers, "ChatOpenAI", DummyChatModel)
    return DummyChatModel


@pytest.fixture
def dummy_cost_tracker() -> CostTracker:
    """Provide a cost tracker with deterministic pricing for tests."""

    pricing = {
        "stub-model": ModelPricing(prompt_per_1k=0.001, completion_per_1k=0.002),
        "alt-model": ModelPricing(prompt_per_1k=0.01, completion_per_1k=0.02),
    }
    return CostTracker(pricing=pricing, budget_limit=5.0, warn_ratio=0.5)


@pytest.fixture
def story_store() -> InMemoryKnowledgeStore:
    """A small world/season/episode hierarchy with canon and draft entities."""

    store = InMemoryKnowledgeStore()
    store.create_scope("WORLD", "Tidewater", scope_id="series")
    store.create_scope("SEASON", "Book One", parent_scope_id="series", scope_id="book-1")
    store.create_scope("EPISODE", "Chapter 3", parent_scope_id="book-1", scope_id="chapter-3")

    store.create_entity(
        "Character",
        "series",
        "Mara Vell",
        content={"voice": "clipped, wry"},
        status="canon",
        entity_id="mara",
    )
    store.create_entity(
        "Location",
        "book-1",
        "Harbor Lighthouse",
        content={"description": "A cracked lamp on the north cliff"},
        status="canon",
        entity_id="lighthouse",
    )
    store.create_entity(
        "Rule",
        "series",
        "No magic at sea",
        content={"rule": "Spells fail beyond the tide line"},
        status="canon",
        entity_id="rule-sea",
    )
    store.create_entity(
        "Rule",
        "book-1",
        "Tentative curfew",
        content={"rule": "Nobody out after dusk"},
        status="draft",
        entity_id="rule-curfew",
    )
    store.create_entity(
        "Event",
        "chapter-3",
        "The storm",
        content={"when": "night of the festival"},
        status="canon",
        entity_id="storm",
    )
    return store
