"""Brainstorm beats pipeline.

Gathers characters, arcs and rules from the knowledge store, analyses the
story state, proposes beats and optionally expands one chosen beat.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, TypedDict

from ..graph import WorkflowContext, WorkflowEdge, WorkflowGraph, WorkflowNode
from ._common import ask, dumps, fetch_in_scope, find_json, parse_json, retrieve
from .prompts import SYSTEM_BRAINSTORMER, TEMPLATES, render_template

logger = logging.getLogger(__name__)

__all__ = ["BrainstormState", "build_brainstorm_graph", "create_brainstorm_state"]

GRAPH_ID = "brainstorm-beats"
_TAG = "brainstorm"
DEFAULT_BEAT_COUNT = 5


class BrainstormState(TypedDict, total=False):
    premise: str
    user_direction: str
    tone: str
    beat_count: int
    scope_id: str
    selected_beat_index: Optional[int]

    characters: List[Dict[str, Any]]
    arcs: List[Dict[str, Any]]
    world_rules: List[Dict[str, Any]]
    constraints: str
    story_state: str
    rag_snippets: List[Dict[str, Any]]

    beats: List[Dict[str, Any]]
    expanded_beat: Optional[Dict[str, Any]]


def create_brainstorm_state(
    premise: str,
    *,
    user_direction: str = "",
    tone: str = "",
    beat_count: int = DEFAULT_BEAT_COUNT,
    scope_id: str = "",
    selected_beat_index: int | None = None,
) -> BrainstormState:
    return BrainstormState(
        premise=premise,
        user_direction=user_direction,
        tone=tone,
        beat_count=beat_count or DEFAULT_BEAT_COUNT,
        scope_id=scope_id,
        selected_beat_index=selected_beat_index,
        characters=[],
        arcs=[],
        world_rules=[],
        constraints="",
        story_state="",
        rag_snippets=[],
        beats=[],
        expanded_beat=None,
    )


async def gather_context(state: BrainstormState, context: WorkflowContext) -> BrainstormState:
    scope_id = state.get("scope_id", "")
    if context.knowledge is None or not scope_id:
        return state
    return {
        **state,
        "characters": fetch_in_scope(context, scope_id, "Character"),
        "arcs": fetch_in_scope(context, scope_id, "Arc"),
        "world_rules": fetch_in_scope(context, scope_id, "Rule"),
    }


async def rag_context(state: BrainstormState, context: WorkflowContext) -> BrainstormState:
    premise = state.get("premise", "")
    if not premise:
        return state
    return {**state, "rag_snippets": await retrieve(context, premise, 5)}


async def analyze_state(state: BrainstormState, context: WorkflowContext) -> BrainstormState:
    rules = "\n".join(
        f"- {rule['name']}: {dumps(rule.get('content', {}))}" for rule in state.get("world_rules") or []
    ) or "None specified"
    prompt = render_template(
        TEMPLATES["brainstorm_analyze"],
        {
            "premise": state.get("premise", ""),
            "characters": ", ".join(f"{c['name']} ({c['type']})" for c in state.get("characters") or [])
            or "None specified",
            "arcs": "\n".join(f"{a['name']}: {dumps(a.get('content', {}))}" for a in state.get("arcs") or [])
            or "None specified",
            "world_rules": rules,
        },
    )
    story_state = await ask(context, SYSTEM_BRAINSTORMER, prompt, tag=f"{_TAG}.analyze", temperature=0.5)
    return {**state, "story_state": story_state, "constraints": rules}


async def generate_beats(state: BrainstormState, context: WorkflowContext) -> BrainstormState:
    prompt = render_template(
        TEMPLATES["brainstorm_generate"],
        {
            "count": state.get("beat_count", DEFAULT_BEAT_COUNT),
            "story_state": state.get("story_state", ""),
            "tone": state.get("tone") or "Not specified, infer from context",
            "user_direction": state.get("user_direction") or "No specific direction, surprise me",
            "constraints": state.get("constraints", ""),
        },
    )
    content = await ask(context, SYSTEM_BRAINSTORMER, prompt, tag=f"{_TAG}.generate", temperature=0.8)
    try:
        beats = find_json(content, kind="array") or []
    except ValueError as exc:
        logger.warning("Could not parse generated beats: %s", exc)
        beats = [
            {
                "summary": "Failed to parse beats",
                "expansion": content,
                "characters": [],
                "stakes": "",
                "threads": [],
                "surpriseFactor": "medium",
            }
        ]
    return {**state, "beats": beats if isinstance(beats, list) else []}


async def expand_beat(state: BrainstormState, context: WorkflowContext) -> BrainstormState:
    index = state.get("selected_beat_index")
    beats = state.get("beats") or []
    if index is None or not 0 <= index < len(beats):
        return state

    selected = beats[index]
    prompt = render_template(
        TEMPLATES["brainstorm_expand"],
        {
            "selected_beat": dumps(selected),
            "story_state": state.get("story_state", ""),
            "constraints": state.get("constraints", ""),
        },
    )
    content = await ask(context, SYSTEM_BRAINSTORMER, prompt, tag=f"{_TAG}.expand", temperature=0.7)
    sub_beats = parse_json(content, kind="array", default=None, tag=f"{_TAG}.expand")
    if sub_beats is None:
        expanded = {"beat": selected, "sub_beats": [], "raw": content}
    else:
        expanded = {"beat": selected, "sub_beats": sub_beats}
    return {**state, "expanded_beat": expanded}


def beat_selected(state: BrainstormState) -> bool:
    return state.get("selected_beat_index") is not None


def build_brainstorm_graph() -> WorkflowGraph[BrainstormState]:
    return WorkflowGraph.build(
        id=GRAPH_ID,
        name="Brainstorm Beats",
        entry_node="gather_context",
        nodes=[
            WorkflowNode("gather_context", "Gather Context", gather_context),
            WorkflowNode("rag_context", "Reference Context", rag_context),
            WorkflowNode("analyze_state", "Analyze Story State", analyze_state),
            WorkflowNode("generate_beats", "Generate Beats", generate_beats),
            WorkflowNode("expand_beat", "Expand Beat", expand_beat),
        ],
        edges=[
            WorkflowEdge("gather_context", "rag_context"),
            WorkflowEdge("rag_context", "analyze_state"),
            WorkflowEdge("analyze_state", "generate_beats"),
            WorkflowEdge("generate_beats", "expand_beat", beat_selected),
        ],
    )
