"""Outline to scene draft pipeline.

``identify -> constraints -> rag -> generate -> continuity``, then either a
``revise`` loop back into ``continuity`` (at most two revisions) or
``deltas -> evaluate -> finalize``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence, TypedDict

from ..graph import Pause, WorkflowContext, WorkflowEdge, WorkflowGraph, WorkflowNode
from ._common import (
    NO_KNOWLEDGE,
    as_records,
    ask,
    dumps,
    entity_summaries,
    fetch_in_scope,
    parse_json,
    retrieve,
)
from .prompts import (
    SYSTEM_CONTINUITY_CHECKER,
    SYSTEM_EVALUATOR,
    SYSTEM_SCREENWRITER,
    TEMPLATES,
    render_template,
)

logger = logging.getLogger(__name__)

__all__ = ["SceneDraftState", "MAX_REVISIONS", "build_scene_draft_graph", "create_scene_draft_state"]

GRAPH_ID = "outline-to-scene-draft"
MAX_REVISIONS = 2
_TAG = "scene-draft"
ENTITY_GROUPS = ("characters", "locations", "arcs", "rules", "items")


class SceneDraftState(TypedDict, total=False):
    outline: str
    user_instructions: str
    pinned_entity_ids: List[str]
    scope_id: str
    review: bool

    identified_entities: Dict[str, List[str]]
    entity_details: List[Dict[str, Any]]
    world_rules: List[Dict[str, Any]]
    character_states: List[Dict[str, Any]]
    constraints: str
    rag_snippets: List[Dict[str, Any]]
    draft: str
    contradictions: List[Dict[str, Any]]
    proposed_deltas: List[Dict[str, Any]]
    evaluation: Dict[str, Any]
    revision_count: int

    final_draft: str
    citations: List[str]
    kg_updates: List[Dict[str, Any]]


def create_scene_draft_state(
    outline: str,
    *,
    user_instructions: str = "",
    pinned_entity_ids: Sequence[str] = (),
    scope_id: str = "",
    review: bool = False,
) -> SceneDraftState:
    """Initial state; set ``review`` to pause for approval after evaluation."""

    return SceneDraftState(
        outline=outline,
        user_instructions=user_instructions,
        pinned_entity_ids=list(pinned_entity_ids),
        scope_id=scope_id,
        review=review,
        identified_entities={group: [] for group in ENTITY_GROUPS},
        entity_details=[],
        world_rules=[],
        character_states=[],
        constraints="",
        rag_snippets=[],
        draft="",
        contradictions=[],
        proposed_deltas=[],
        evaluation={},
        revision_count=0,
        final_draft="",
        citations=[],
        kg_updates=[],
    )


async def identify(state: SceneDraftState, context: WorkflowContext) -> SceneDraftState:
    pinned = state.get("pinned_entity_ids") or []
    prompt = render_template(
        TEMPLATES["identify_context"],
        {
            "outline": state.get("outline", ""),
            "pinned_entities": f"Pinned entity IDs: {', '.join(pinned)}" if pinned else "None pinned",
        },
    )
    content = await ask(context, SYSTEM_SCREENWRITER, prompt, tag=f"{_TAG}.identify", temperature=0.3)
    parsed = parse_json(content, kind="object", default={}, tag=f"{_TAG}.identify")

    identified = {group: [] for group in ENTITY_GROUPS}
    for group in ENTITY_GROUPS:
        values = parsed.get(group, [])
        if isinstance(values, list):
            identified[group] = [str(value) for value in values if value]
    return {**state, "identified_entities": identified}


async def gather_constraints(state: SceneDraftState, context: WorkflowContext) -> SceneDraftState:
    store = context.knowledge
    if store is None:
        return {**state, "constraints": NO_KNOWLEDGE}

    identified = state.get("identified_entities") or {}
    names = [
        name
        for group in ("characters", "locations", "arcs", "items")
        for name in identified.get(group, [])
    ]

    details: list[dict[str, Any]] = []
    seen: set[str] = set()

    def _collect(records: list[dict[str, Any]]) -> None:
        for record in records:
            if record["id"] not in seen:
                seen.add(record["id"])
                details.append(record)

    try:
        for name in names:
            _collect(as_records(store.search_entities(name, 3)))
        for entity_id in state.get("pinned_entity_ids") or []:
            entity = store.get_entity(entity_id)
            if entity is not None:
                _collect(as_records([entity]))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Entity lookup failed; drafting with partial context: %s", exc)

    world_rules = fetch_in_scope(context, state.get("scope_id", ""), "Rule")

    character_states: list[dict[str, Any]] = []
    for record in details:
        if record.get("type") != "Character":
            continue
        try:
            snapshots = store.snapshots_for(record["id"])
        except Exception as exc:  # noqa: BLE001
            logger.warning("Snapshot lookup for '%s' failed: %s", record.get("name"), exc)
            continue
        if snapshots:
            latest = snapshots[-1]
            character_states.append({"name": record["name"], "id": record["id"], "state": latest.state_data})

    prompt = render_template(
        TEMPLATES["gather_constraints"],
        {
            "entity_details": dumps(entity_summaries(details)),
            "world_rules": dumps([{"name": r["name"], "content": r.get("content", {})} for r in world_rules]),
            "character_states": dumps(character_states),
        },
    )
    content = await ask(context, SYSTEM_CONTINUITY_CHECKER, prompt, tag=f"{_TAG}.constraints", temperature=0.2)
    return {
        **state,
        "entity_details": details,
        "world_rules": world_rules,
        "character_states": character_states,
        "constraints": content,
    }


async def retrieve_snippets(state: SceneDraftState, context: WorkflowContext) -> SceneDraftState:
    characters = (state.get("identified_entities") or {}).get("characters", [])
    query = " ".join([state.get("outline", "")[:200], *characters[:3]])
    return {**state, "rag_snippets": await retrieve(context, query, 5)}


async def generate(state: SceneDraftState, context: WorkflowContext) -> SceneDraftState:
    snippets = state.get("rag_snippets") or []
    details = state.get("entity_details") or []
    prompt = render_template(
        TEMPLATES["generate_draft"],
        {
            "outline": state.get("outline", ""),
            "constraints": state.get("constraints", ""),
            "rag_snippets": "\n\n".join(f"[{s['title']}]: {s['snippet']}" for s in snippets)
            or "No reference snippets available.",
            "entity_context": "\n".join(
                f'{e.get("type")} "{e.get("name")}": {dumps(e.get("content", {}))}' for e in details
            )
            or "No entity context available.",
            "user_instructions": state.get("user_instructions") or "None.",
        },
    )
    draft = await ask(
        context, SYSTEM_SCREENWRITER, prompt, tag=f"{_TAG}.generate", temperature=0.7, max_tokens=4000
    )
    return {**state, "draft": draft}


async def check_continuity(state: SceneDraftState, context: WorkflowContext) -> SceneDraftState:
    constraints = state.get("constraints", "")
    if not constraints or constraints == NO_KNOWLEDGE:
        return {**state, "contradictions": []}

    prompt = render_template(
        TEMPLATES["continuity_check"],
        {
            "draft": state.get("draft", ""),
            "constraints": constraints,
            "entity_details": dumps(entity_summaries(state.get("entity_details") or [])),
        },
    )
    content = await ask(context, SYSTEM_CONTINUITY_CHECKER, prompt, tag=f"{_TAG}.continuity", temperature=0.1)
    contradictions = parse_json(content, kind="array", default=[], tag=f"{_TAG}.continuity")
    return {**state, "contradictions": contradictions}


async def propose_deltas(state: SceneDraftState, context: WorkflowContext) -> SceneDraftState:
    prompt = render_template(
        TEMPLATES["propose_deltas"],
        {
            "draft": state.get("draft", ""),
            "entity_details": dumps(entity_summaries(state.get("entity_details") or [])),
        },
    )
    content = await ask(context, SYSTEM_CONTINUITY_CHECKER, prompt, tag=f"{_TAG}.deltas", temperature=0.2)
    return {**state, "proposed_deltas": parse_json(content, kind="array", default=[], tag=f"{_TAG}.deltas")}


async def revise(state: SceneDraftState, context: WorkflowContext) -> SceneDraftState:
    prompt = render_template(
        TEMPLATES["revise_draft"],
        {
            "draft": state.get("draft", ""),
            "contradictions": dumps(state.get("contradictions") or []),
            "constraints": state.get("constraints", ""),
        },
    )
    draft = await ask(context, SYSTEM_SCREENWRITER, prompt, tag=f"{_TAG}.revise", temperature=0.5, max_tokens=4000)
    return {
        **state,
        "draft": draft,
        "revision_count": state.get("revision_count", 0) + 1,
        "contradictions": [],
    }


async def evaluate(state: SceneDraftState, context: WorkflowContext):
    prompt = render_template(
        TEMPLATES["evaluate_output"],
        {"draft": state.get("draft", ""), "outline": state.get("outline", "")},
    )
    content = await ask(context, SYSTEM_EVALUATOR, prompt, tag=f"{_TAG}.evaluate", temperature=0.2)
    evaluation = parse_json(content, kind="object", default={"pass": True, "score": 70}, tag=f"{_TAG}.evaluate")
    updated: SceneDraftState = {**state, "evaluation": evaluation}
    if state.get("review"):
        return Pause(updated, reason="Draft ready for review")
    return updated


async def finalize(state: SceneDraftState, context: WorkflowContext) -> SceneDraftState:
    citations = [f"[{s['title']}] (note: {s['note_id']})" for s in state.get("rag_snippets") or []]
    return {
        **state,
        "final_draft": state.get("draft", ""),
        "citations": citations,
        "kg_updates": list(state.get("proposed_deltas") or []),
    }


def needs_revision(state: SceneDraftState) -> bool:
    return bool(state.get("contradictions")) and state.get("revision_count", 0) < MAX_REVISIONS


def build_scene_draft_graph() -> WorkflowGraph[SceneDraftState]:
    return WorkflowGraph.build(
        id=GRAPH_ID,
        name="Outline to Scene Draft",
        entry_node="identify",
        max_iterations=20,
        nodes=[
            WorkflowNode("identify", "Identify Scope & Entities", identify),
            WorkflowNode("constraints", "Query Knowledge Constraints", gather_constraints),
            WorkflowNode("rag", "Retrieve Reference Snippets", retrieve_snippets),
            WorkflowNode("generate", "Generate Draft", generate),
            WorkflowNode("continuity", "Continuity Check", check_continuity),
            WorkflowNode("deltas", "Propose Knowledge Updates", propose_deltas),
            WorkflowNode("revise", "Revise Draft", revise),
            WorkflowNode("evaluate", "Evaluate Output", evaluate),
            WorkflowNode("finalize", "Finalize Output", finalize),
        ],
        edges=[
            WorkflowEdge("identify", "constraints"),
            WorkflowEdge("constraints", "rag"),
            WorkflowEdge("rag", "generate"),
            WorkflowEdge("generate", "continuity"),
            WorkflowEdge("continuity", "revise", needs_revision),
            WorkflowEdge("continuity", "deltas"),
            WorkflowEdge("revise", "continuity"),
            WorkflowEdge("deltas", "evaluate"),
            WorkflowEdge("evaluate", "finalize"),
        ],
    )
