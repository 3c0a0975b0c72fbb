"""Failure taxonomy for the workflow graph executor."""

from __future__ import annotations

__all__ = [
    "WorkflowError",
    "ConfigurationError",
    "NodeNotFoundError",
    "MaxIterationsExceededError",
    "NodeExecutionError",
]


class WorkflowError(RuntimeError):
    """Base error for everything that halts a workflow run."""


class ConfigurationError(WorkflowError):
    """Raised when a graph definition cannot be executed as declared."""


class NodeNotFoundError(WorkflowError):
    """Raised when a traversed edge points at an id absent from the graph."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class MaxIterationsExceededError(WorkflowError):
    """Raised when a cycle does not converge within the iteration ceiling."""

    def __init__(self, limit: int, graph_id: str | None = None) -> None:
        suffix = f" in graph '{graph_id}'" if graph_id else ""
        super().__init__(f"Max iterations ({limit}) exceeded{suffix}")
        self.limit = limit
        self.graph_id = graph_id


class NodeExecutionError(WorkflowError):
    """Wraps any exception raised by a node step function."""

    def __init__(self, node_id: str, cause: BaseException) -> None:
        message = str(cause) or cause.__class__.__name__
        super().__init__(message)
        self.node_id = node_id
        self.cause = cause
