"""Caller-held admission gate enforcing one active workflow run at a time.

The executor itself allows any number of independent runs. Hosts that want a
"single active workflow per session" policy wrap their runs in a
:class:`RunGate` and cancel the active run through :meth:`RunGate.cancel_active`.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, TypeVar

from .context import WorkflowContext
from .executor import WorkflowExecutor
from .states import WorkflowRunResult, WorkflowStatus

logger = logging.getLogger(__name__)

__all__ = ["RunRejectedError", "ActiveRun", "RunGate"]

S = TypeVar("S", bound=Mapping[str, Any])


class RunRejectedError(RuntimeError):
    """Raised when a run is requested while another one holds the gate."""


@dataclass(slots=True)
class ActiveRun:
    """Bookkeeping for the run currently holding the gate."""

    name: str
    executor: WorkflowExecutor[Any]
    context: WorkflowContext

    @property
    def status(self) -> WorkflowStatus:
        return self.executor.status


class RunGate:
    """Non-blocking mutex around workflow runs."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._active: ActiveRun | None = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def active(self) -> ActiveRun | None:
        return self._active

    @asynccontextmanager
    async def admit(
        self,
        name: str,
        executor: WorkflowExecutor[Any],
        context: WorkflowContext,
    ) -> AsyncIterator[ActiveRun]:
        if self._lock.locked():
            current = self._active.name if self._active else "unknown"
            raise RunRejectedError(
                f"A workflow is already running ('{current}'). Cancel it first."
            )
        await self._lock.acquire()
        self._active = ActiveRun(name=name, executor=executor, context=context)
        try:
            yield self._active
        finally:
            self._active = None
            self._lock.release()

    async def run(
        self,
        name: str,
        executor: WorkflowExecutor[S],
        initial_state: S,
        context: WorkflowContext,
    ) -> WorkflowRunResult[S]:
        async with self.admit(name, executor, context):
            return await executor.run(initial_state, context)

    def cancel_active(self) -> bool:
        """Signal cancellation to the active run; returns ``False`` when idle."""

        if self._active is None:
            return False
        logger.info("Cancelling active workflow '%s'", self._active.name)
        self._active.context.cancel()
        return True
