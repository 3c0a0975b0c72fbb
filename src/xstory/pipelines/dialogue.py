"""Dialogue refinement pipeline."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, TypedDict

from ..graph import WorkflowContext, WorkflowEdge, WorkflowGraph, WorkflowNode
from ._common import ask, dumps, fetch_in_scope, find_json, retrieve
from .prompts import SYSTEM_DIALOGUE_COACH, TEMPLATES, render_template

logger = logging.getLogger(__name__)

__all__ = ["DialogueState", "build_dialogue_graph", "create_dialogue_state"]

GRAPH_ID = "dialogue-refine"
_TAG = "dialogue"
MAX_SAMPLE_QUERIES = 5
MAX_SAMPLES = 8


class DialogueState(TypedDict, total=False):
    text: str
    instructions: str
    scope_id: str

    character_profiles: List[Dict[str, Any]]
    voice_analysis: Optional[Dict[str, Any]]
    rag_samples: List[Dict[str, Any]]

    refined_text: str
    evaluation: Optional[Dict[str, Any]]


def create_dialogue_state(text: str, *, instructions: str = "", scope_id: str = "") -> DialogueState:
    return DialogueState(
        text=text,
        instructions=instructions,
        scope_id=scope_id,
        character_profiles=[],
        voice_analysis=None,
        rag_samples=[],
        refined_text="",
        evaluation=None,
    )


async def gather_profiles(state: DialogueState, context: WorkflowContext) -> DialogueState:
    if context.knowledge is None or not state.get("scope_id"):
        return state
    return {**state, "character_profiles": fetch_in_scope(context, state["scope_id"], "Character")}


async def fetch_samples(state: DialogueState, context: WorkflowContext) -> DialogueState:
    if context.retrieval is None:
        return state

    names = [profile["name"] for profile in state.get("character_profiles") or []]
    queries = [f"{name} dialogue" for name in names] or ["dialogue scene conversation"]

    unique: list[dict[str, Any]] = []
    seen: set[str] = set()
    for query in queries[:MAX_SAMPLE_QUERIES]:
        for result in await retrieve(context, query, 3):
            if result["document_id"] in seen:
                continue
            seen.add(result["document_id"])
            unique.append(result)
    return {**state, "rag_samples": unique[:MAX_SAMPLES]}


def _json_or_raw(content: str, tag: str, fallback: Dict[str, Any] | None = None) -> Dict[str, Any] | None:
    try:
        parsed = find_json(content, kind="object")
    except ValueError as exc:
        logger.warning("Keeping raw output for '%s': %s", tag, exc)
        return {"raw": content, **(fallback or {})}
    return parsed if isinstance(parsed, dict) else None


async def analyze_voice(state: DialogueState, context: WorkflowContext) -> DialogueState:
    profiles = state.get("character_profiles") or []
    prompt = render_template(
        TEMPLATES["dialogue_analyze"],
        {
            "text": state.get("text", ""),
            "character_profiles": "\n\n".join(f"{p['name']}: {dumps(p.get('content', {}))}" for p in profiles)
            or "No character profiles available. Analyze from the text itself.",
        },
    )
    content = await ask(context, SYSTEM_DIALOGUE_COACH, prompt, tag=f"{_TAG}.analyze", temperature=0.3)
    return {**state, "voice_analysis": _json_or_raw(content, f"{_TAG}.analyze")}


async def refine(state: DialogueState, context: WorkflowContext) -> DialogueState:
    analysis = state.get("voice_analysis")
    samples = state.get("rag_samples") or []
    prompt = render_template(
        TEMPLATES["dialogue_refine"],
        {
            "passage": state.get("text", ""),
            "voice_profiles": dumps(analysis) if analysis else "No voice analysis available",
            "reference_samples": "\n\n".join(
                f"--- {s.get('title') or s['document_id']} ---\n{s['snippet']}" for s in samples
            )
            or "No reference samples available",
            "instructions": state.get("instructions")
            or "Improve naturalness and character voice distinctiveness.",
        },
    )
    refined = await ask(context, SYSTEM_DIALOGUE_COACH, prompt, tag=f"{_TAG}.refine", temperature=0.6)
    return {**state, "refined_text": refined}


async def evaluate(state: DialogueState, context: WorkflowContext) -> DialogueState:
    analysis = state.get("voice_analysis")
    prompt = render_template(
        TEMPLATES["dialogue_evaluate"],
        {
            "original": state.get("text", ""),
            "refined": state.get("refined_text", ""),
            "voice_profiles": dumps(analysis) if analysis else "No voice profiles",
        },
    )
    content = await ask(context, SYSTEM_DIALOGUE_COACH, prompt, tag=f"{_TAG}.evaluate", temperature=0.2)
    return {**state, "evaluation": _json_or_raw(content, f"{_TAG}.evaluate", {"pass": False, "score": 0})}


def build_dialogue_graph() -> WorkflowGraph[DialogueState]:
    return WorkflowGraph.build(
        id=GRAPH_ID,
        name="Dialogue Refinement",
        entry_node="gather_profiles",
        nodes=[
            WorkflowNode("gather_profiles", "Gather Character Profiles", gather_profiles),
            WorkflowNode("fetch_samples", "Fetch Reference Samples", fetch_samples),
            WorkflowNode("analyze_voice", "Analyze Voice Patterns", analyze_voice),
            WorkflowNode("refine", "Refine Dialogue", refine),
            WorkflowNode("evaluate", "Evaluate Refinement", evaluate),
        ],
        edges=[
            WorkflowEdge("gather_profiles", "fetch_samples"),
            WorkflowEdge("fetch_samples", "analyze_voice"),
            WorkflowEdge("analyze_voice", "refine"),
            WorkflowEdge("refine", "evaluate"),
        ],
    )
