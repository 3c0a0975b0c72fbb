"""Translate workflow definitions into LangGraph ``StateGraph`` builders.

The translation reuses :func:`~xstory.graph.executor.resolve_next` as the
router for every branching node, so edge priority is identical to the native
executor. LangGraph has no notion of the breakpoint protocol: pause requests
are stripped and the run continues. Use :class:`WorkflowExecutor` when pauses,
cancellation or lazy edge validation matter; use this module for diagrams.
"""

from __future__ import annotations

from typing import Any, Mapping

from langgraph.graph import END, START, StateGraph

from .context import WorkflowContext
from .definition import WorkflowGraph, WorkflowNode
from .errors import ConfigurationError
from .executor import resolve_next
from .states import split_outcome, strip_breakpoint

__all__ = ["langgraph_node_name", "build_state_graph", "draw_mermaid"]


def langgraph_node_name(node_id: str, state_keys: set[str]) -> str:
    """LangGraph refuses node names that shadow state keys."""

    return f"{node_id}_node" if node_id in state_keys else node_id


def _state_keys(state_schema: type) -> set[str]:
    return set(getattr(state_schema, "__annotations__", {}) or {})


def _wrap_step(node: WorkflowNode[Any], context: WorkflowContext | None):
    async def _run(state: Mapping[str, Any]) -> dict[str, Any]:
        if context is None:
            raise ConfigurationError(
                f"Node '{node.id}' cannot execute without a WorkflowContext"
            )
        outcome = await node.step(state, context)
        new_state, _ = split_outcome(outcome)
        return dict(strip_breakpoint(new_state))

    _run.__name__ = f"step_{node.id}"
    return _run


def build_state_graph(
    graph: WorkflowGraph[Any],
    state_schema: type,
    *,
    context: WorkflowContext | None = None,
) -> StateGraph:
    """Return an uncompiled ``StateGraph`` mirroring *graph*.

    Unlike the executor, LangGraph needs every edge target up front, so the
    graph must pass :meth:`WorkflowGraph.validate`.
    """

    problems = graph.validate()
    if problems:
        raise ConfigurationError(
            f"Graph '{graph.id}' cannot be exported: " + "; ".join(problems)
        )

    keys = _state_keys(state_schema)
    names = {node.id: langgraph_node_name(node.id, keys) for node in graph.nodes}

    builder = StateGraph(state_schema)
    for node in graph.nodes:
        builder.add_node(names[node.id], _wrap_step(node, context))
    builder.add_edge(START, names[graph.entry_node])

    for node in graph.nodes:
        edges = graph.outgoing(node.id)
        if not edges:
            builder.add_edge(names[node.id], END)
            continue
        if len(edges) == 1 and edges[0].condition is None:
            builder.add_edge(names[node.id], names[edges[0].target])
            continue

        def _route(state: Mapping[str, Any], _source: str = node.id) -> str:
            target = resolve_next(graph, _source, state)
            return names[target] if target is not None else END

        path_map = {names[edge.target]: names[edge.target] for edge in edges}
        if all(edge.condition is not None for edge in edges):
            path_map[END] = END
        builder.add_conditional_edges(names[node.id], _route, path_map)

    return builder


def draw_mermaid(graph: WorkflowGraph[Any], state_schema: type) -> str:
    """Render *graph* as a Mermaid flowchart via LangGraph."""

    compiled = build_state_graph(graph, state_schema).compile()
    return compiled.get_graph().draw_mermaid()
