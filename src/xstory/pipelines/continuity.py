"""Continuity audit and repair pipeline.

The audit always runs; repairs are applied only when ``auto_repair`` is set
and the audit found issues. A report closes every run.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, TypedDict

from ..graph import WorkflowContext, WorkflowEdge, WorkflowGraph, WorkflowNode
from ._common import NO_KNOWLEDGE, ask, dumps, fetch_in_scope, find_json, parse_json
from .prompts import SYSTEM_CONTINUITY_AUDITOR, TEMPLATES, render_template

logger = logging.getLogger(__name__)

__all__ = ["ContinuityState", "build_continuity_graph", "create_continuity_state"]

GRAPH_ID = "continuity-repair"
_TAG = "continuity"
CANON_TYPES = ("Character", "Location", "Event", "Item")


class ContinuityState(TypedDict, total=False):
    text: str
    scope_id: str
    auto_repair: bool

    canon_facts: List[Dict[str, Any]]
    world_rules: List[Dict[str, Any]]
    timeline: str
    issues: List[Dict[str, Any]]

    repaired_text: str
    report: Optional[Dict[str, Any]]


def create_continuity_state(text: str, *, scope_id: str = "", auto_repair: bool = True) -> ContinuityState:
    return ContinuityState(
        text=text,
        scope_id=scope_id,
        auto_repair=auto_repair,
        canon_facts=[],
        world_rules=[],
        timeline="",
        issues=[],
        repaired_text="",
        report=None,
    )


def _canon_summary(facts: List[Dict[str, Any]]) -> str:
    if not facts:
        return "No canon facts available."
    return "\n".join(f"[{fact['type']}] {fact['name']}: {dumps(fact.get('content', {}))}" for fact in facts)


async def gather_canon(state: ContinuityState, context: WorkflowContext) -> ContinuityState:
    if context.knowledge is None:
        return {**state, "timeline": NO_KNOWLEDGE}

    scope_id = state.get("scope_id", "")
    if not scope_id:
        return {**state, "canon_facts": [], "world_rules": [], "timeline": ""}

    by_type = {entity_type: fetch_in_scope(context, scope_id, entity_type) for entity_type in CANON_TYPES}
    canon_facts = [fact for entity_type in CANON_TYPES for fact in by_type[entity_type]]
    timeline = "\n".join(
        f"- {event['name']}: {dumps(event.get('content', {}))}" for event in by_type["Event"]
    ) or "No timeline events found."
    return {
        **state,
        "canon_facts": canon_facts,
        "world_rules": fetch_in_scope(context, scope_id, "Rule"),
        "timeline": timeline,
    }


async def audit(state: ContinuityState, context: WorkflowContext) -> ContinuityState:
    rules = state.get("world_rules") or []
    prompt = render_template(
        TEMPLATES["continuity_audit"],
        {
            "text": state.get("text", ""),
            "canon_facts": _canon_summary(state.get("canon_facts") or []),
            "timeline": state.get("timeline", ""),
            "world_rules": "\n".join(f"- {r['name']}: {dumps(r.get('content', {}))}" for r in rules)
            or "No world rules specified.",
        },
    )
    content = await ask(context, SYSTEM_CONTINUITY_AUDITOR, prompt, tag=f"{_TAG}.audit", temperature=0.2)
    try:
        issues = find_json(content, kind="array") or []
    except ValueError as exc:
        logger.warning("Could not parse audit results: %s", exc)
        issues = [
            {"issue": "Failed to parse audit results", "raw": content, "severity": "minor", "category": "parse-error"}
        ]
    return {**state, "issues": issues if isinstance(issues, list) else []}


async def repair(state: ContinuityState, context: WorkflowContext) -> ContinuityState:
    issues = state.get("issues") or []
    if not issues:
        return {**state, "repaired_text": state.get("text", "")}

    prompt = render_template(
        TEMPLATES["continuity_repair"],
        {
            "text": state.get("text", ""),
            "issues": dumps(issues),
            "canon_facts": _canon_summary(state.get("canon_facts") or []),
        },
    )
    repaired = await ask(context, SYSTEM_CONTINUITY_AUDITOR, prompt, tag=f"{_TAG}.repair", temperature=0.3)
    return {**state, "repaired_text": repaired}


async def report(state: ContinuityState, context: WorkflowContext) -> ContinuityState:
    issues = state.get("issues") or []
    repaired_text = state.get("repaired_text", "")
    changed = bool(repaired_text) and repaired_text != state.get("text", "")
    critical = [issue for issue in issues if isinstance(issue, dict) and issue.get("severity") == "critical"]

    prompt = render_template(
        TEMPLATES["continuity_report"],
        {
            "issues": dumps(issues),
            "repairs": "Text was modified to fix issues." if changed else "No repairs were necessary.",
            "remaining": dumps(critical) if critical else "None, all issues addressed.",
        },
    )
    content = await ask(context, SYSTEM_CONTINUITY_AUDITOR, prompt, tag=f"{_TAG}.report", temperature=0.2)
    parsed = parse_json(content, kind="object", default=None, tag=f"{_TAG}.report")
    return {**state, "report": parsed if parsed is not None else {"raw": content}}


def should_repair(state: ContinuityState) -> bool:
    return bool(state.get("auto_repair")) and bool(state.get("issues"))


def build_continuity_graph() -> WorkflowGraph[ContinuityState]:
    return WorkflowGraph.build(
        id=GRAPH_ID,
        name="Continuity Repair",
        entry_node="gather_canon",
        nodes=[
            WorkflowNode("gather_canon", "Gather Canon Facts", gather_canon),
            WorkflowNode("audit", "Continuity Audit", audit),
            WorkflowNode("repair", "Repair Issues", repair),
            WorkflowNode("report", "Generate Report", report),
        ],
        edges=[
            WorkflowEdge("gather_canon", "audit"),
            WorkflowEdge("audit", "repair", should_repair),
            WorkflowEdge("audit", "report"),
            WorkflowEdge("repair", "report"),
        ],
    )
