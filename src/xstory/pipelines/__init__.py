"""Story generation pipelines built on the workflow executor."""

from .brainstorm import BrainstormState, build_brainstorm_graph, create_brainstorm_state
from .continuity import ContinuityState, build_continuity_graph, create_continuity_state
from .dialogue import DialogueState, build_dialogue_graph, create_dialogue_state
from .prompts import TEMPLATES, render_template
from .registry import PIPELINES, PipelineSpec, get_pipeline
from .scene_draft import SceneDraftState, build_scene_draft_graph, create_scene_draft_state

__all__ = [
    "BrainstormState",
    "ContinuityState",
    "DialogueState",
    "PIPELINES",
    "PipelineSpec",
    "SceneDraftState",
    "TEMPLATES",
    "build_brainstorm_graph",
    "build_continuity_graph",
    "build_dialogue_graph",
    "build_scene_draft_graph",
    "create_brainstorm_state",
    "create_continuity_state",
    "create_dialogue_state",
    "create_scene_draft_state",
    "get_pipeline",
    "render_template",
]
