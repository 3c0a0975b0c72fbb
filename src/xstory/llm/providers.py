"""LangChain-backed completion client for OpenAI-compatible endpoints.

Works with any server exposing ``/v1/chat/completions`` (OpenAI, Ollama,
llama.cpp, LM Studio, vLLM) through ``langchain_openai.ChatOpenAI``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Sequence, Tuple

from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, HumanMessage, SystemMessage

from .client import (
    ChatMessage,
    Completion,
    CompletionOptions,
    CompletionUsage,
    OperationCancelled,
    ProviderDependencyError,
    ProviderError,
    run_cancellable,
)
from .cost import CostTracker

try:  # pragma: no cover - import guard for optional dependency
    from langchain_openai import ChatOpenAI, OpenAIEmbeddings
except ImportError:  # pragma: no cover - gracefully degrade when dependency missing
    ChatOpenAI = None  # type: ignore[assignment]
    OpenAIEmbeddings = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

__all__ = [
    "ProviderSettings",
    "LangChainCompletionClient",
    "build_client",
    "to_langchain_messages",
]

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MODEL_ENVS: Tuple[str, ...] = ("XSTORY_MODEL", "OPENAI_MODEL")
DEFAULT_API_KEY_ENVS: Tuple[str, ...] = ("XSTORY_API_KEY", "OPENAI_API_KEY")
DEFAULT_BASE_URL_ENVS: Tuple[str, ...] = ("XSTORY_BASE_URL", "OPENAI_BASE_URL")
DEFAULT_EMBEDDING_MODEL_ENV = "XSTORY_EMBEDDING_MODEL"
DEFAULT_TEMPERATURE_ENV = "XSTORY_TEMPERATURE"
DEFAULT_MAX_TOKEN_ENV = "XSTORY_MAX_TOKENS"
# Applied when the caller supplies no cancellation signal.
DEFAULT_TIMEOUT_SECONDS = 300.0


@dataclass(slots=True)
class ProviderSettings:
    """Settings bundle for a chat provider."""

    model: str = DEFAULT_MODEL
    base_url: str | None = None
    api_key: str | None = None
    temperature: float = 0.0
    max_tokens: int | None = None
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS
    embedding_model: str | None = None

    def as_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
        }
        if self.base_url:
            kwargs["base_url"] = self.base_url.rstrip("/")
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.max_tokens is not None:
            kwargs["max_tokens"] = self.max_tokens
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        return kwargs

    def embedding_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": self.embedding_model or self.model}
        if self.base_url:
            kwargs["base_url"] = self.base_url.rstrip("/")
        if self.api_key:
            kwargs["api_key"] = self.api_key
        return kwargs


def to_langchain_messages(messages: Sequence[ChatMessage]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in messages:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


def _extract_content(response: Any) -> str:
    content = getattr(response, "content", "")
    if isinstance(content, list):
        pieces = [segment.get("text", "") for segment in content if isinstance(segment, dict)]
        return "".join(pieces)
    return str(content or "")


def _extract_usage(response: Any) -> CompletionUsage:
    usage = getattr(response, "usage_metadata", None) or {}
    if not usage:
        metadata = getattr(response, "response_metadata", None) or {}
        usage = metadata.get("token_usage") or metadata.get("usage") or {}
    return CompletionUsage(
        prompt_tokens=int(usage.get("input_tokens") or usage.get("prompt_tokens") or 0),
        completion_tokens=int(usage.get("output_tokens") or usage.get("completion_tokens") or 0),
    )


class LangChainCompletionClient:
    """Async completion client wrapping ``ChatOpenAI`` with safeguards."""

    def __init__(self, settings: ProviderSettings, *, cost_tracker: CostTracker | None = None):
        if ChatOpenAI is None:
            raise ProviderDependencyError(
                "langchain-openai is required to instantiate LangChainCompletionClient"
            )
        self.settings = settings
        self.cost_tracker = cost_tracker
        self._client = self._build_client(settings)
        self._embedder: Any | None = None

    def _build_client(self, settings: ProviderSettings):
        try:
            return ChatOpenAI(**settings.as_kwargs())  # type: ignore[misc]
        except Exception as exc:  # pragma: no cover - passthrough
            raise ProviderError(f"Failed to initialise chat model '{settings.model}': {exc}") from exc

    @property
    def model(self) -> str:
        return self.settings.model

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        options: CompletionOptions | None = None,
        signal: asyncio.Event | None = None,
    ) -> Completion:
        options = options or CompletionOptions()
        client = self._client if options.model is None else self._client.bind(model=options.model)
        try:
            response = await run_cancellable(
                client.ainvoke(to_langchain_messages(messages), **options.as_kwargs()),
                signal,
            )
        except OperationCancelled:
            raise
        except Exception as exc:
            raise ProviderError(f"Invocation failed for model '{self.settings.model}': {exc}") from exc

        usage = _extract_usage(response)
        metadata = getattr(response, "response_metadata", None) or {}
        model_name = metadata.get("model_name") or options.model or self.settings.model
        if self.cost_tracker is not None:
            self.cost_tracker.record(
                model_name,
                usage.prompt_tokens,
                usage.completion_tokens,
                tag=options.tag,
            )
        return Completion(
            content=_extract_content(response),
            finish_reason=metadata.get("finish_reason"),
            usage=usage,
            model=model_name,
        )

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        options: CompletionOptions | None = None,
        signal: asyncio.Event | None = None,
    ):
        """Yield content chunks; raises :class:`OperationCancelled` once *signal* is set."""

        options = options or CompletionOptions()
        try:
            async for chunk in self._client.astream(to_langchain_messages(messages), **options.as_kwargs()):
                if signal is not None and signal.is_set():
                    raise OperationCancelled(f"Stream for model '{self.settings.model}' was cancelled")
                if isinstance(chunk, AIMessageChunk):
                    text = _extract_content(chunk)
                    if text:
                        yield text
        except OperationCancelled:
            raise
        except Exception as exc:
            raise ProviderError(f"Streaming failed for model '{self.settings.model}': {exc}") from exc

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if OpenAIEmbeddings is None:
            raise ProviderDependencyError("langchain-openai is required for embeddings")
        if self._embedder is None:
            self._embedder = OpenAIEmbeddings(**self.settings.embedding_kwargs())
        try:
            return await self._embedder.aembed_documents(list(texts))
        except Exception as exc:
            raise ProviderError(f"Embedding request failed: {exc}") from exc


def build_client(
    *,
    model: str | None = None,
    base_url: str | None = None,
    api_key: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    embedding_model: str | None = None,
    api_key_envs: Sequence[str] | None = None,
    cost_tracker: CostTracker | None = None,
) -> LangChainCompletionClient:
    """Factory that mirrors CLI/env resolution for provider credentials."""

    settings = ProviderSettings(
        model=model or _resolve_from_env(DEFAULT_MODEL_ENVS) or DEFAULT_MODEL,
        base_url=base_url or _resolve_from_env(DEFAULT_BASE_URL_ENVS),
        api_key=api_key or _resolve_from_env(api_key_envs or DEFAULT_API_KEY_ENVS),
        temperature=_coerce_float(temperature, os.getenv(DEFAULT_TEMPERATURE_ENV), default=0.0),
        max_tokens=_coerce_int(max_tokens, os.getenv(DEFAULT_MAX_TOKEN_ENV)),
        timeout=timeout,
        embedding_model=embedding_model or os.getenv(DEFAULT_EMBEDDING_MODEL_ENV),
    )
    return LangChainCompletionClient(settings, cost_tracker=cost_tracker)


def _resolve_from_env(envs: Sequence[str]) -> str | None:
    for env_name in envs:
        value = os.getenv(env_name)
        if value:
            return value
    return None


def _coerce_float(explicit: float | None, env_value: str | None, *, default: float) -> float:
    if explicit is not None:
        return explicit
    if env_value is None:
        return default
    try:
        return float(env_value)
    except ValueError:  # pragma: no cover
        return default


def _coerce_int(explicit: int | None, env_value: str | None) -> int | None:
    if explicit is not None:
        return explicit
    if env_value is None:
        return None
    try:
        return int(env_value)
    except ValueError:  # pragma: no cover
        return None
