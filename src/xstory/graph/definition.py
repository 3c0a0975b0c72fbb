"""Immutable workflow graph definitions.

A :class:`WorkflowGraph` is authored once per pipeline and reused across many
runs. The executor never mutates it. Cycles are allowed; edges may reference
node ids that do not exist, which only fails when such an edge is traversed.
Call :meth:`WorkflowGraph.validate` to check a graph eagerly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Generic, Iterable, Mapping, TypeVar

from .errors import ConfigurationError
from .states import StepOutcome

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .context import WorkflowContext

__all__ = [
    "DEFAULT_MAX_ITERATIONS",
    "EdgeCondition",
    "StepFunction",
    "WorkflowNode",
    "WorkflowEdge",
    "WorkflowGraph",
]

DEFAULT_MAX_ITERATIONS = 50

S = TypeVar("S", bound=Mapping[str, Any])

StepFunction = Callable[[S, "WorkflowContext"], Awaitable[StepOutcome[S]]]
EdgeCondition = Callable[[Mapping[str, Any]], bool]


@dataclass(frozen=True, slots=True)
class WorkflowNode(Generic[S]):
    """A named unit of work transforming workflow state."""

    id: str
    name: str
    step: StepFunction[S]


@dataclass(frozen=True, slots=True)
class WorkflowEdge:
    """Directed, optionally conditional transition between two nodes."""

    source: str
    target: str
    condition: EdgeCondition | None = None


@dataclass(frozen=True, slots=True)
class WorkflowGraph(Generic[S]):
    """Description of a workflow: nodes, ordered edges and an entry point."""

    id: str
    name: str
    entry_node: str
    nodes: tuple[WorkflowNode[S], ...]
    edges: tuple[WorkflowEdge, ...] = ()
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    _index: dict[str, WorkflowNode[S]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        nodes = tuple(self.nodes)
        edges = tuple(self.edges)
        if self.max_iterations < 1:
            raise ConfigurationError(
                f"Graph '{self.id}' max_iterations must be at least 1, got {self.max_iterations}"
            )

        index: dict[str, WorkflowNode[S]] = {}
        for node in nodes:
            if node.id in index:
                raise ConfigurationError(f"Graph '{self.id}' declares node '{node.id}' more than once")
            index[node.id] = node

        object.__setattr__(self, "nodes", nodes)
        object.__setattr__(self, "edges", edges)
        object.__setattr__(self, "_index", index)

    def node(self, node_id: str) -> WorkflowNode[S] | None:
        return self._index.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._index

    def outgoing(self, node_id: str) -> list[WorkflowEdge]:
        """Edges leaving *node_id* in declaration order."""

        return [edge for edge in self.edges if edge.source == node_id]

    def validate(self) -> list[str]:
        """Return a list of structural problems without raising.

        The executor never calls this; it exists for callers who prefer to
        reject partially specified graphs before running them.
        """

        problems: list[str] = []
        if not self.has_node(self.entry_node):
            problems.append(f"entry node '{self.entry_node}' is not defined")
        for position, edge in enumerate(self.edges):
            if not self.has_node(edge.source):
                problems.append(f"edge #{position} starts at unknown node '{edge.source}'")
            if not self.has_node(edge.target):
                problems.append(f"edge #{position} points to unknown node '{edge.target}'")
        return problems

    def with_max_iterations(self, max_iterations: int) -> "WorkflowGraph[S]":
        return WorkflowGraph(
            id=self.id,
            name=self.name,
            entry_node=self.entry_node,
            nodes=self.nodes,
            edges=self.edges,
            max_iterations=max_iterations,
        )

    @classmethod
    def build(
        cls,
        *,
        id: str,
        name: str,
        entry_node: str,
        nodes: Iterable[WorkflowNode[S]],
        edges: Iterable[WorkflowEdge] = (),
        max_iterations: int | None = None,
    ) -> "WorkflowGraph[S]":
        """Convenience constructor accepting any iterables."""

        return cls(
            id=id,
            name=name,
            entry_node=entry_node,
            nodes=tuple(nodes),
            edges=tuple(edges),
            max_iterations=DEFAULT_MAX_ITERATIONS if max_iterations is None else max_iterations,
        )
