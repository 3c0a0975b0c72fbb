"""Directed-graph executor for iterative generation pipelines.

The executor walks a :class:`~xstory.graph.definition.WorkflowGraph` one node
at a time. It supports:

``conditional edges``
    The first declared edge whose condition holds wins; otherwise the first
    unconditioned edge is taken; otherwise the node is terminal.
``cycles``
    Revision loops are bounded by ``graph.max_iterations``.
``breakpoints``
    A step returning :class:`~xstory.graph.states.Pause` (or a state carrying
    the reserved ``__breakpoint__`` field) hands the state to
    ``context.on_breakpoint`` and resumes with whatever it returns.
``cancellation``
    ``context.signal`` is checked before every node and after every pause.

Only one step is ever in flight. Failures never raise out of :meth:`run`;
they are reported on the returned :class:`WorkflowRunResult` together with
the last state that was successfully computed.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
from typing import Any, Generic, Mapping, TypeVar

from ..llm.client import OperationCancelled
from .context import WorkflowContext
from .definition import WorkflowGraph, WorkflowNode
from .errors import (
    ConfigurationError,
    MaxIterationsExceededError,
    NodeExecutionError,
    NodeNotFoundError,
    WorkflowError,
)
from .states import WorkflowRunResult, WorkflowStatus, split_outcome, strip_breakpoint

logger = logging.getLogger(__name__)

__all__ = ["WorkflowExecutor", "resolve_next", "run_workflow"]

S = TypeVar("S", bound=Mapping[str, Any])


def _aborted_by_signal(exc: BaseException) -> bool:
    if isinstance(exc, NodeExecutionError):
        return isinstance(exc.cause, OperationCancelled)
    return isinstance(exc, OperationCancelled)


def resolve_next(graph: WorkflowGraph[Any], from_id: str, state: Mapping[str, Any]) -> str | None:
    """Pick the next node id after *from_id*, or ``None`` when the run ends.

    Conditioned edges take priority over the default edge regardless of where
    the default is declared; among conditioned edges the first declared match
    wins.
    """

    edges = graph.outgoing(from_id)
    if not edges:
        return None

    for edge in edges:
        if edge.condition is not None and edge.condition(state):
            return edge.target

    for edge in edges:
        if edge.condition is None:
            return edge.target
    return None


class WorkflowExecutor(Generic[S]):
    """Run a workflow graph from its entry node to a terminal status."""

    def __init__(self, graph: WorkflowGraph[S]) -> None:
        self.graph = graph
        self._status: WorkflowStatus = "idle"
        self._callback_tasks: set[asyncio.Future[Any]] = set()

    @property
    def status(self) -> WorkflowStatus:
        return self._status

    def get_status(self) -> WorkflowStatus:
        return self._status

    async def run(self, initial_state: S, context: WorkflowContext) -> WorkflowRunResult[S]:
        if self._status in ("running", "paused"):
            raise RuntimeError(f"Executor for graph '{self.graph.id}' is already running")

        graph = self.graph
        limit = graph.max_iterations
        visited: list[str] = []
        current: str | None = graph.entry_node
        state: S = copy.copy(initial_state)
        iterations = 0

        self._status = "running"
        logger.info("Starting workflow '%s' at node '%s'", graph.id, current)

        try:
            while current is not None and iterations < limit:
                if context.cancelled:
                    return self._finish_cancelled(state, visited)

                node = self._lookup(current, entry=iterations == 0)
                visited.append(current)

                state, pause_requested = await self._execute(node, state, context)
                self._notify_progress(context, current, state)

                if pause_requested:
                    state = strip_breakpoint(state)
                    state = await self._handle_breakpoint(current, state, context)
                    if context.cancelled:
                        return self._finish_cancelled(state, visited)

                current = self._resolve(current, state)
                iterations += 1

            if current is not None:
                raise MaxIterationsExceededError(limit, graph.id)
        except asyncio.CancelledError:
            self._status = "cancelled"
            logger.info("Workflow '%s' task cancelled after %d node(s)", graph.id, len(visited))
            raise
        except Exception as exc:  # noqa: BLE001
            if context.cancelled and _aborted_by_signal(exc):
                logger.debug("Step aborted by cancellation: %s", exc)
                return self._finish_cancelled(state, visited)
            failure = exc if isinstance(exc, WorkflowError) else NodeExecutionError(current or "?", exc)
            return self._finish_error(state, visited, failure)

        self._status = "completed"
        logger.info("Workflow '%s' completed after %d node(s)", graph.id, len(visited))
        return WorkflowRunResult(status="completed", final_state=state, nodes_visited=visited)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _lookup(self, node_id: str, *, entry: bool) -> WorkflowNode[S]:
        node = self.graph.node(node_id)
        if node is not None:
            return node
        if entry:
            raise ConfigurationError(
                f"Entry node '{node_id}' is not defined in graph '{self.graph.id}'"
            )
        raise NodeNotFoundError(node_id)

    async def _execute(
        self,
        node: WorkflowNode[S],
        state: S,
        context: WorkflowContext,
    ) -> tuple[S, bool]:
        logger.debug("Executing node '%s' (%s)", node.id, node.name)
        try:
            outcome = await node.step(state, context)
        except Exception as exc:
            raise NodeExecutionError(node.id, exc) from exc

        new_state, pause_requested = split_outcome(outcome)
        if not isinstance(new_state, Mapping):
            raise NodeExecutionError(
                node.id,
                TypeError(
                    f"Node '{node.id}' returned {type(new_state).__name__}, expected a mapping state"
                ),
            )
        return new_state, pause_requested

    def _resolve(self, node_id: str, state: S) -> str | None:
        try:
            return resolve_next(self.graph, node_id, state)
        except Exception as exc:
            raise NodeExecutionError(node_id, exc) from exc

    async def _handle_breakpoint(self, node_id: str, state: S, context: WorkflowContext) -> S:
        self._status = "paused"

        handler = context.on_breakpoint
        if handler is None:
            logger.debug("Breakpoint at node '%s' ignored; no handler configured", node_id)
        else:
            logger.info("Workflow '%s' paused at node '%s'", self.graph.id, node_id)
            resumed = await handler(node_id, state)
            if not isinstance(resumed, Mapping):
                raise NodeExecutionError(
                    node_id,
                    TypeError(
                        f"Breakpoint handler returned {type(resumed).__name__}, expected a mapping state"
                    ),
                )
            state = strip_breakpoint(resumed)

        self._status = "running"
        return state

    def _notify_progress(self, context: WorkflowContext, node_id: str, state: S) -> None:
        callback = context.on_progress
        if callback is None:
            return
        try:
            pending = callback(node_id, state)
        except Exception:
            logger.exception("Progress callback failed for node '%s'", node_id)
            return
        if inspect.isawaitable(pending):
            task = asyncio.ensure_future(pending)
            self._callback_tasks.add(task)
            task.add_done_callback(self._progress_done)

    def _progress_done(self, task: asyncio.Future[Any]) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Asynchronous progress callback failed: %s", exc, exc_info=exc)

    def _finish_cancelled(self, state: S, visited: list[str]) -> WorkflowRunResult[S]:
        self._status = "cancelled"
        logger.info("Workflow '%s' cancelled after %d node(s)", self.graph.id, len(visited))
        return WorkflowRunResult(status="cancelled", final_state=state, nodes_visited=visited)

    def _finish_error(
        self,
        state: S,
        visited: list[str],
        failure: WorkflowError,
    ) -> WorkflowRunResult[S]:
        self._status = "error"
        logger.warning(
            "Workflow '%s' failed after %d node(s): %s",
            self.graph.id,
            len(visited),
            failure,
        )
        return WorkflowRunResult(
            status="error",
            final_state=state,
            nodes_visited=visited,
            error=str(failure),
            failure=failure,
        )


async def run_workflow(
    graph: WorkflowGraph[S],
    initial_state: S,
    context: WorkflowContext,
) -> WorkflowRunResult[S]:
    """Run *graph* once with a throwaway executor."""

    return await WorkflowExecutor(graph).run(initial_state, context)
