"""Lookup table from pipeline id to graph builder and state factory."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping

from ..graph import WorkflowGraph
from .brainstorm import BrainstormState, build_brainstorm_graph, create_brainstorm_state
from .continuity import ContinuityState, build_continuity_graph, create_continuity_state
from .dialogue import DialogueState, build_dialogue_graph, create_dialogue_state
from .scene_draft import SceneDraftState, build_scene_draft_graph, create_scene_draft_state

logger = logging.getLogger(__name__)

__all__ = ["PipelineSpec", "PIPELINES", "get_pipeline"]


@dataclass(frozen=True, slots=True)
class PipelineSpec:
    """How to build and seed one pipeline.

    ``text_field`` names the state factory argument that receives free-text
    input (for instance the outline of a scene draft).
    """

    id: str
    description: str
    state_schema: type
    build_graph: Callable[[], WorkflowGraph[Any]]
    create_state: Callable[..., Mapping[str, Any]]
    text_field: str

    def state_from_text(self, text: str, **options: Any) -> Mapping[str, Any]:
        return self.state_from_fields({self.text_field: text, **options})

    def state_from_fields(self, fields: Mapping[str, Any]) -> Mapping[str, Any]:
        """Call the factory with the recognised subset of *fields*."""

        accepted = set(inspect.signature(self.create_state).parameters)
        unknown = sorted(set(fields) - accepted)
        if unknown:
            logger.warning("Ignoring unknown %s input fields: %s", self.id, ", ".join(unknown))
        if self.text_field not in fields:
            raise ValueError(f"Pipeline '{self.id}' requires the '{self.text_field}' field")
        return self.create_state(**{key: value for key, value in fields.items() if key in accepted})


PIPELINES: Dict[str, PipelineSpec] = {
    spec.id: spec
    for spec in (
        PipelineSpec(
            id="scene-draft",
            description="Draft a scene from an outline, checked against canon",
            state_schema=SceneDraftState,
            build_graph=build_scene_draft_graph,
            create_state=create_scene_draft_state,
            text_field="outline",
        ),
        PipelineSpec(
            id="brainstorm",
            description="Propose and optionally expand story beats",
            state_schema=BrainstormState,
            build_graph=build_brainstorm_graph,
            create_state=create_brainstorm_state,
            text_field="premise",
        ),
        PipelineSpec(
            id="dialogue",
            description="Refine dialogue for distinct character voices",
            state_schema=DialogueState,
            build_graph=build_dialogue_graph,
            create_state=create_dialogue_state,
            text_field="text",
        ),
        PipelineSpec(
            id="continuity",
            description="Audit a passage against canon and repair issues",
            state_schema=ContinuityState,
            build_graph=build_continuity_graph,
            create_state=create_continuity_state,
            text_field="text",
        ),
    )
}


def get_pipeline(pipeline_id: str) -> PipelineSpec:
    try:
        return PIPELINES[pipeline_id]
    except KeyError:
        known = ", ".join(sorted(PIPELINES))
        raise KeyError(f"Unknown pipeline '{pipeline_id}'. Available: {known}") from None
