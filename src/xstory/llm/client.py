"""Text-generation contract consumed by workflow steps."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Literal, Protocol, Sequence, TypeVar, runtime_checkable

__all__ = [
    "Role",
    "ChatMessage",
    "CompletionOptions",
    "CompletionUsage",
    "Completion",
    "CompletionClient",
    "EmbeddingClient",
    "ProviderError",
    "ProviderDependencyError",
    "OperationCancelled",
    "run_cancellable",
    "system",
    "user",
]

T = TypeVar("T")

Role = Literal["system", "user", "assistant"]


class ProviderError(RuntimeError):
    """Base error raised when interacting with a text-generation provider."""


class ProviderDependencyError(ProviderError):
    """Raised when required dependencies are unavailable."""


class OperationCancelled(ProviderError):
    """Raised when a provider call is aborted by the run's cancellation signal."""


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def system(content: str) -> ChatMessage:
    return ChatMessage("system", content)


def user(content: str) -> ChatMessage:
    return ChatMessage("user", content)


@dataclass(frozen=True, slots=True)
class CompletionOptions:
    """Per-call sampling options. ``tag`` labels the call for accounting."""

    temperature: float | None = None
    max_tokens: int | None = None
    stop: tuple[str, ...] | None = None
    model: str | None = None
    tag: str | None = None

    def as_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if self.max_tokens is not None:
            kwargs["max_tokens"] = self.max_tokens
        if self.stop:
            kwargs["stop"] = list(self.stop)
        return kwargs


@dataclass(frozen=True, slots=True)
class CompletionUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True, slots=True)
class Completion:
    content: str
    finish_reason: str | None = None
    usage: CompletionUsage = field(default_factory=CompletionUsage)
    model: str | None = None


@runtime_checkable
class CompletionClient(Protocol):
    """Anything able to answer a chat conversation.

    Implementations must honor *signal*: once it is set the call should abort
    promptly with :class:`OperationCancelled`.
    """

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        options: CompletionOptions | None = None,
        signal: asyncio.Event | None = None,
    ) -> Completion:
        ...


@runtime_checkable
class EmbeddingClient(Protocol):
    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        ...


async def run_cancellable(awaitable: Awaitable[T], signal: asyncio.Event | None) -> T:
    """Await *awaitable* unless *signal* fires first.

    When the signal wins the underlying task is cancelled and
    :class:`OperationCancelled` is raised.
    """

    if signal is None:
        return await awaitable
    if signal.is_set():
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelled("Operation cancelled before it started")

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    raise OperationCancelled("Operation cancelled")
