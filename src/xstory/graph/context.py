"""Collaborators and run controls handed to every node step.

Steps are expected to forward :attr:`WorkflowContext.signal` into their own
external calls (see :func:`xstory.llm.run_cancellable`); the executor only
observes it between nodes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..knowledge.store import KnowledgeStore
    from ..llm.client import CompletionClient
    from ..retrieval.api import Retriever

__all__ = ["ProgressCallback", "BreakpointHandler", "WorkflowContext"]

ProgressCallback = Callable[[str, Mapping[str, Any]], Optional[Awaitable[None]]]
BreakpointHandler = Callable[[str, Any], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class WorkflowContext:
    """Read-only bundle shared by every node invocation in one run."""

    llm: "CompletionClient"
    knowledge: "KnowledgeStore | None" = None
    retrieval: "Retriever | None" = None
    signal: asyncio.Event = field(default_factory=asyncio.Event)
    on_progress: ProgressCallback | None = None
    on_breakpoint: BreakpointHandler | None = None

    @property
    def cancelled(self) -> bool:
        return self.signal.is_set()

    def cancel(self) -> None:
        """Request cooperative cancellation of the run using this context."""

        self.signal.set()
