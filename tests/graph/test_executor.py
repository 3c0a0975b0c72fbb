from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from xstory.graph import (
    BREAKPOINT_KEY,
    ConfigurationError,
    Continue,
    MaxIterationsExceededError,
    NodeExecutionError,
    NodeNotFoundError,
    Pause,
    WorkflowContext,
    WorkflowEdge,
    WorkflowExecutor,
    WorkflowGraph,
    WorkflowNode,
    request_breakpoint,
    run_workflow,
)
from xstory.llm import MockCompletionClient, OperationCancelled


def _context(**kwargs: Any) -> WorkflowContext:
    return WorkflowContext(llm=MockCompletionClient(), **kwargs)


def _appender(label: str):
    async def step(state, context):
        return {**state, "trail": [*state.get("trail", []), label]}

    return step


def _node(node_id: str, step=None) -> WorkflowNode:
    return WorkflowNode(node_id, node_id.title(), step or _appender(node_id))


def _graph(nodes, edges=(), *, entry: str = "a", max_iterations: int | None = None) -> WorkflowGraph:
    return WorkflowGraph.build(
        id="test",
        name="Test Graph",
        entry_node=entry,
        nodes=nodes,
        edges=edges,
        max_iterations=max_iterations,
    )


def test_single_node_graph_completes() -> None:
    result = asyncio.run(run_workflow(_graph([_node("a")]), {}, _context()))

    assert result.status == "completed"
    assert result.nodes_visited == ["a"]
    assert result.final_state == {"trail": ["a"]}
    assert result.error is None


def test_false_condition_falls_through_to_default_edge() -> None:
    graph = _graph(
        [_node("a"), _node("b"), _node("c")],
        [WorkflowEdge("a", "b", lambda state: False), WorkflowEdge("a", "c")],
    )

    result = asyncio.run(run_workflow(graph, {}, _context()))

    assert result.nodes_visited == ["a", "c"]


def test_conditioned_edge_beats_default_declared_first() -> None:
    graph = _graph(
        [_node("a"), _node("b"), _node("c")],
        [WorkflowEdge("a", "c"), WorkflowEdge("a", "b", lambda state: True)],
    )

    result = asyncio.run(run_workflow(graph, {}, _context()))

    assert result.nodes_visited == ["a", "b"]


def test_first_declared_true_condition_wins() -> None:
    graph = _graph(
        [_node("a"), _node("b"), _node("c")],
        [WorkflowEdge("a", "b", lambda state: True), WorkflowEdge("a", "c", lambda state: True)],
    )

    result = asyncio.run(run_workflow(graph, {}, _context()))

    assert result.nodes_visited == ["a", "b"]


def test_only_false_conditions_make_node_terminal() -> None:
    graph = _graph([_node("a"), _node("b")], [WorkflowEdge("a", "b", lambda state: False)])

    result = asyncio.run(run_workflow(graph, {}, _context()))

    assert result.status == "completed"
    assert result.nodes_visited == ["a"]


def test_unbounded_cycle_hits_iteration_limit() -> None:
    graph = _graph(
        [_node("a"), _node("b")],
        [WorkflowEdge("a", "b"), WorkflowEdge("b", "a")],
        max_iterations=5,
    )

    result = asyncio.run(run_workflow(graph, {}, _context()))

    assert result.status == "error"
    assert len(result.nodes_visited) == 5
    assert "Max iterations (5)" in result.error
    assert isinstance(result.failure, MaxIterationsExceededError)
    assert result.final_state["trail"] == ["a", "b", "a", "b", "a"]


def test_cycle_with_exit_condition_converges() -> None:
    async def count(state, context):
        return {**state, "count": state.get("count", 0) + 1}

    graph = _graph(
        [WorkflowNode("a", "Count", count), _node("done")],
        [WorkflowEdge("a", "done", lambda state: state["count"] >= 3), WorkflowEdge("a", "a")],
    )

    result = asyncio.run(run_workflow(graph, {}, _context()))

    assert result.status == "completed"
    assert result.nodes_visited == ["a", "a", "a", "done"]


def test_pre_cancelled_signal_runs_nothing() -> None:
    calls: list[str] = []

    async def step(state, context):
        calls.append("a")
        return state

    async def scenario():
        context = _context()
        context.cancel()
        return await run_workflow(_graph([WorkflowNode("a", "A", step)]), {"seed": 1}, context)

    result = asyncio.run(scenario())

    assert result.status == "cancelled"
    assert result.nodes_visited == []
    assert result.final_state == {"seed": 1}
    assert calls == []


def test_cancel_between_nodes_stops_before_next_step() -> None:
    async def cancelling(state, context):
        context.cancel()
        return {**state, "a": True}

    graph = _graph([WorkflowNode("a", "A", cancelling), _node("b")], [WorkflowEdge("a", "b")])

    result = asyncio.run(run_workflow(graph, {}, _context()))

    assert result.status == "cancelled"
    assert result.nodes_visited == ["a"]
    assert result.final_state == {"a": True}


def test_step_aborted_by_cancellation_reports_cancelled() -> None:
    async def aborting(state, context):
        context.cancel()
        raise OperationCancelled("aborted by signal")

    result = asyncio.run(run_workflow(_graph([WorkflowNode("a", "A", aborting)]), {}, _context()))

    assert result.status == "cancelled"
    assert result.error is None


def test_unrelated_failure_after_cancel_is_still_an_error() -> None:
    async def broken(state, context):
        context.cancel()
        return {}["missing"]

    result = asyncio.run(run_workflow(_graph([WorkflowNode("a", "A", broken)]), {"x": 1}, _context()))

    assert result.status == "error"
    assert isinstance(result.failure, NodeExecutionError)
    assert isinstance(result.failure.cause, KeyError)
    assert result.final_state == {"x": 1}


def test_iteration_limit_reached_while_cancelling_is_an_error() -> None:
    async def looping(state, context):
        count = state.get("count", 0) + 1
        if count == 3:
            context.cancel()
        return {**state, "count": count}

    graph = _graph([WorkflowNode("a", "A", looping)], [WorkflowEdge("a", "a")], max_iterations=3)
    result = asyncio.run(run_workflow(graph, {}, _context()))

    assert result.status == "error"
    assert result.nodes_visited == ["a", "a", "a"]
    assert isinstance(result.failure, MaxIterationsExceededError)
    assert result.error == "Max iterations (3) exceeded in graph 'test'"


def test_pause_marker_invokes_handler_once_and_resumes_with_its_state() -> None:
    seen: list[tuple[str, dict, str]] = []

    async def pausing(state, context):
        return request_breakpoint({**state, "draft": "v1"})

    async def reader(state, context):
        return {**state, "read": state.get("approved")}

    graph = _graph([WorkflowNode("a", "A", pausing), WorkflowNode("b", "B", reader)], [WorkflowEdge("a", "b")])
    executor = WorkflowExecutor(graph)

    async def handler(node_id, state):
        seen.append((node_id, dict(state), executor.status))
        return {**state, "approved": True}

    result = asyncio.run(executor.run({}, _context(on_breakpoint=handler)))

    assert seen == [("a", {"draft": "v1"}, "paused")]
    assert result.status == "completed"
    assert result.final_state == {"draft": "v1", "approved": True, "read": True}
    assert BREAKPOINT_KEY not in result.final_state
    assert executor.status == "completed"


def test_pause_variant_behaves_like_marker() -> None:
    handled: list[str] = []

    async def pausing(state, context):
        return Pause({**state, "draft": "v1"}, reason="review")

    async def handler(node_id, state):
        handled.append(node_id)
        return {**state, "edited": True}

    result = asyncio.run(
        run_workflow(_graph([WorkflowNode("a", "A", pausing)]), {}, _context(on_breakpoint=handler))
    )

    assert handled == ["a"]
    assert result.final_state == {"draft": "v1", "edited": True}


def test_continue_variant_does_not_pause() -> None:
    handled: list[str] = []

    async def advancing(state, context):
        return Continue({**state, "ok": True})

    async def handler(node_id, state):
        handled.append(node_id)
        return state

    result = asyncio.run(
        run_workflow(_graph([WorkflowNode("a", "A", advancing)]), {}, _context(on_breakpoint=handler))
    )

    assert handled == []
    assert result.final_state == {"ok": True}


def test_pause_without_handler_continues_and_strips_marker() -> None:
    async def pausing(state, context):
        return request_breakpoint(state)

    result = asyncio.run(run_workflow(_graph([WorkflowNode("a", "A", pausing)]), {"x": 1}, _context()))

    assert result.status == "completed"
    assert result.final_state == {"x": 1}


def test_cancel_during_pause_ends_run() -> None:
    async def pausing(state, context):
        return Pause(state)

    graph = _graph([WorkflowNode("a", "A", pausing), _node("b")], [WorkflowEdge("a", "b")])

    async def scenario():
        context_holder: list[WorkflowContext] = []

        async def handler(node_id, state):
            context_holder[0].cancel()
            return state

        context = _context(on_breakpoint=handler)
        context_holder.append(context)
        return await run_workflow(graph, {}, context)

    result = asyncio.run(scenario())

    assert result.status == "cancelled"
    assert result.nodes_visited == ["a"]


def test_runs_are_deterministic() -> None:
    graph = _graph(
        [_node("a"), _node("b"), _node("c")],
        [WorkflowEdge("a", "b", lambda state: len(state.get("trail", [])) < 2), WorkflowEdge("a", "c"), WorkflowEdge("b", "a")],
    )

    first = asyncio.run(run_workflow(graph, {}, _context()))
    second = asyncio.run(run_workflow(graph, {}, _context()))

    assert first.nodes_visited == second.nodes_visited == ["a", "b", "a", "c"]
    assert first.final_state == second.final_state


def test_step_failure_keeps_last_good_state() -> None:
    async def boom(state, context):
        raise ValueError("model exploded")

    graph = _graph([_node("a"), WorkflowNode("b", "B", boom), _node("c")], [WorkflowEdge("a", "b"), WorkflowEdge("b", "c")])

    result = asyncio.run(run_workflow(graph, {}, _context()))

    assert result.status == "error"
    assert result.nodes_visited == ["a", "b"]
    assert result.final_state == {"trail": ["a"]}
    assert result.error == "model exploded"
    assert isinstance(result.failure, NodeExecutionError)
    assert result.failure.node_id == "b"
    assert result.to_dict()["error_type"] == "NodeExecutionError"


def test_non_mapping_step_result_is_an_error() -> None:
    async def bad(state, context):
        return ["not", "a", "state"]

    result = asyncio.run(run_workflow(_graph([WorkflowNode("a", "A", bad)]), {}, _context()))

    assert result.status == "error"
    assert "expected a mapping state" in result.error


def test_missing_edge_target_fails_only_when_traversed() -> None:
    graph = _graph(
        [_node("a"), _node("b")],
        [WorkflowEdge("a", "ghost", lambda state: state.get("go_ghost", False)), WorkflowEdge("a", "b")],
    )

    ok = asyncio.run(run_workflow(graph, {}, _context()))
    broken = asyncio.run(run_workflow(graph, {"go_ghost": True}, _context()))

    assert ok.status == "completed"
    assert broken.status == "error"
    assert isinstance(broken.failure, NodeNotFoundError)
    assert broken.nodes_visited == ["a"]
    assert graph.validate() == ["edge #0 points to unknown node 'ghost'"]


def test_missing_entry_node_is_configuration_error() -> None:
    graph = _graph([_node("a")], entry="missing")

    result = asyncio.run(run_workflow(graph, {}, _context()))

    assert result.status == "error"
    assert isinstance(result.failure, ConfigurationError)
    assert result.nodes_visited == []


def test_graph_rejects_duplicate_nodes_and_bad_limit() -> None:
    with pytest.raises(ConfigurationError):
        _graph([_node("a"), _node("a")])
    with pytest.raises(ConfigurationError):
        _graph([_node("a")], max_iterations=0)


def test_edge_condition_failure_is_reported_against_source_node() -> None:
    def explode(state):
        raise KeyError("missing")

    graph = _graph([_node("a"), _node("b")], [WorkflowEdge("a", "b", explode)])

    result = asyncio.run(run_workflow(graph, {}, _context()))

    assert result.status == "error"
    assert result.failure.node_id == "a"


def test_progress_callback_failures_never_abort(caplog: pytest.LogCaptureFixture) -> None:
    progress: list[str] = []

    def sync_callback(node_id, state):
        progress.append(node_id)
        raise RuntimeError("progress sink down")

    graph = _graph([_node("a"), _node("b")], [WorkflowEdge("a", "b")])

    with caplog.at_level(logging.ERROR):
        result = asyncio.run(run_workflow(graph, {}, _context(on_progress=sync_callback)))

    assert result.status == "completed"
    assert progress == ["a", "b"]
    assert "Progress callback failed" in caplog.text


def test_async_progress_callback_receives_each_node() -> None:
    progress: list[str] = []

    async def callback(node_id, state):
        progress.append(node_id)

    graph = _graph([_node("a"), _node("b")], [WorkflowEdge("a", "b")])

    async def scenario():
        result = await run_workflow(graph, {}, _context(on_progress=callback))
        await asyncio.sleep(0)
        return result

    result = asyncio.run(scenario())

    assert result.status == "completed"
    assert progress == ["a", "b"]


def test_executor_rejects_overlapping_runs() -> None:
    async def slow(state, context):
        await asyncio.sleep(0.05)
        return state

    executor = WorkflowExecutor(_graph([WorkflowNode("a", "A", slow)]))

    async def scenario():
        first = asyncio.ensure_future(executor.run({}, _context()))
        await asyncio.sleep(0)
        with pytest.raises(RuntimeError):
            await executor.run({}, _context())
        return await first

    assert asyncio.run(scenario()).status == "completed"
    assert executor.get_status() == "completed"


def test_initial_state_is_not_mutated() -> None:
    initial = {"trail": []}

    asyncio.run(run_workflow(_graph([_node("a")]), initial, _context()))

    assert initial == {"trail": []}


def test_with_max_iterations_returns_new_graph() -> None:
    graph = _graph([_node("a")], [WorkflowEdge("a", "a")])
    limited = graph.with_max_iterations(3)

    result = asyncio.run(run_workflow(limited, {}, _context()))

    assert graph.max_iterations == 50
    assert result.nodes_visited == ["a", "a", "a"]


def test_new_executor_is_idle() -> None:
    graph = _graph([_node("a")])

    assert WorkflowExecutor(graph).status == "idle" == WorkflowExecutor(graph).get_status()


def test_failing_breakpoint_handler_leaves_no_marker() -> None:
    async def pausing(state, context):
        return {**state, "x": 1, BREAKPOINT_KEY: True}

    async def crash(node_id, state):
        raise RuntimeError("reviewer crashed")

    graph = _graph([WorkflowNode("a", "A", pausing)])
    executor = WorkflowExecutor(graph)
    result = asyncio.run(executor.run({}, _context(on_breakpoint=crash)))

    assert result.status == "error"
    assert result.error == "reviewer crashed"
    assert result.final_state == {"x": 1}
    assert executor.status == "error"
