"""Run-scoped types shared by the workflow executor and pipeline steps."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Literal, Mapping, TypeVar, Union

from .errors import WorkflowError

__all__ = [
    "BREAKPOINT_KEY",
    "WorkflowStatus",
    "Continue",
    "Pause",
    "StepOutcome",
    "WorkflowRunResult",
    "request_breakpoint",
    "split_outcome",
    "strip_breakpoint",
]

# Reserved field a step may set on its returned state to ask for human review.
BREAKPOINT_KEY = "__breakpoint__"

WorkflowStatus = Literal["idle", "running", "paused", "completed", "error", "cancelled"]

S = TypeVar("S", bound=Mapping[str, Any])


@dataclass(frozen=True, slots=True)
class Continue(Generic[S]):
    """Step result that advances along the graph without pausing."""

    state: S


@dataclass(frozen=True, slots=True)
class Pause(Generic[S]):
    """Step result that requests a human-in-the-loop breakpoint."""

    state: S
    reason: str | None = None


StepOutcome = Union[S, Continue[S], Pause[S]]


def split_outcome(outcome: StepOutcome[S]) -> tuple[S, bool]:
    """Return ``(state, pause_requested)`` for any supported step result.

    Bare mappings request a pause through the reserved ``__breakpoint__`` field.
    """

    if isinstance(outcome, Pause):
        return outcome.state, True
    if isinstance(outcome, Continue):
        return outcome.state, bool(outcome.state.get(BREAKPOINT_KEY))
    if not isinstance(outcome, Mapping):
        return outcome, False
    return outcome, bool(outcome.get(BREAKPOINT_KEY))


def strip_breakpoint(state: S) -> S:
    """Return a copy of *state* without the reserved marker field."""

    if BREAKPOINT_KEY not in state:
        return state
    return {key: value for key, value in state.items() if key != BREAKPOINT_KEY}  # type: ignore[return-value]


def request_breakpoint(state: S) -> S:
    """Return a copy of *state* carrying the reserved pause marker."""

    updated = dict(state)
    updated[BREAKPOINT_KEY] = True
    return updated  # type: ignore[return-value]


@dataclass(slots=True)
class WorkflowRunResult(Generic[S]):
    """Outcome of a single :meth:`WorkflowExecutor.run` call."""

    status: WorkflowStatus
    final_state: S
    nodes_visited: list[str] = field(default_factory=list)
    error: str | None = None
    failure: WorkflowError | None = None

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status,
            "final_state": dict(self.final_state),
            "nodes_visited": list(self.nodes_visited),
        }
        if self.error is not None:
            payload["error"] = self.error
        if self.failure is not None:
            payload["error_type"] = self.failure.__class__.__name__
        return payload
