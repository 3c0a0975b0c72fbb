"""Workflow graph executor for the xstory pipelines."""

from .context import BreakpointHandler, ProgressCallback, WorkflowContext
from .definition import DEFAULT_MAX_ITERATIONS, WorkflowEdge, WorkflowGraph, WorkflowNode
from .errors import (
    ConfigurationError,
    MaxIterationsExceededError,
    NodeExecutionError,
    NodeNotFoundError,
    WorkflowError,
)
from .executor import WorkflowExecutor, resolve_next, run_workflow
from .gate import ActiveRun, RunGate, RunRejectedError
from .states import (
    BREAKPOINT_KEY,
    Continue,
    Pause,
    WorkflowRunResult,
    WorkflowStatus,
    request_breakpoint,
)

__all__ = [
    "BREAKPOINT_KEY",
    "DEFAULT_MAX_ITERATIONS",
    "ActiveRun",
    "BreakpointHandler",
    "ConfigurationError",
    "Continue",
    "MaxIterationsExceededError",
    "NodeExecutionError",
    "NodeNotFoundError",
    "Pause",
    "ProgressCallback",
    "RunGate",
    "RunRejectedError",
    "WorkflowContext",
    "WorkflowEdge",
    "WorkflowError",
    "WorkflowExecutor",
    "WorkflowGraph",
    "WorkflowNode",
    "WorkflowRunResult",
    "WorkflowStatus",
    "request_breakpoint",
    "resolve_next",
    "run_workflow",
]
