"""Helpers shared by the pipeline node steps."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Mapping

from ..graph.context import WorkflowContext
from ..llm.client import CompletionOptions, system, user

logger = logging.getLogger(__name__)

NO_KNOWLEDGE = "No knowledge store available."

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


async def ask(
    context: WorkflowContext,
    system_prompt: str,
    prompt: str,
    *,
    tag: str,
    temperature: float,
    max_tokens: int | None = None,
) -> str:
    """Single system+user completion honouring the run's cancellation signal."""

    completion = await context.llm.complete(
        [system(system_prompt), user(prompt)],
        CompletionOptions(temperature=temperature, max_tokens=max_tokens, tag=tag),
        signal=context.signal,
    )
    return completion.content


def _strip_code_fence(payload: str) -> str:
    stripped = payload.strip()
    if stripped.startswith("```json"):
        inner = stripped[len("```json") :].strip()
        if inner.endswith("```"):
            inner = inner[: -len("```")]
        return inner.strip()
    if stripped.startswith("```") and stripped.endswith("```"):
        return stripped[3:-3].strip()
    return stripped


def find_json(content: str, *, kind: str) -> Any | None:
    """Parse the outermost JSON object (``kind="object"``) or array in *content*.

    Returns ``None`` when no candidate block exists and raises ``ValueError``
    when one exists but does not parse.
    """

    pattern = _OBJECT_RE if kind == "object" else _ARRAY_RE
    match = pattern.search(_strip_code_fence(content))
    if match is None:
        return None
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Malformed JSON {kind} in model output: {exc}") from exc


def parse_json(content: str, *, kind: str, default: Any, tag: str) -> Any:
    """Like :func:`find_json` but falls back to *default* on any problem."""

    try:
        parsed = find_json(content, kind=kind)
    except ValueError as exc:
        logger.warning("Falling back to defaults for '%s': %s", tag, exc)
        return default
    if parsed is None:
        return default
    expected = dict if kind == "object" else list
    if not isinstance(parsed, expected):
        logger.warning("Expected a JSON %s for '%s', got %s", kind, tag, type(parsed).__name__)
        return default
    return parsed


def dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, default=str)


def entity_summaries(entities: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    return [{"name": e.get("name"), "type": e.get("type"), "content": e.get("content", {})} for e in entities]


def as_records(entities: Iterable[Any]) -> list[dict[str, Any]]:
    """Plain-dict copies of knowledge-store entities for the run state."""

    records: list[dict[str, Any]] = []
    for entity in entities:
        if hasattr(entity, "model_dump"):
            records.append(entity.model_dump())
        else:
            records.append(dict(entity))
    return records


def fetch_in_scope(context: WorkflowContext, scope_id: str, entity_type: str) -> list[dict[str, Any]]:
    """Entities of one kind visible from *scope_id*; empty when unavailable."""

    if context.knowledge is None or not scope_id:
        return []
    try:
        return as_records(context.knowledge.entities_in_scope_hierarchy(scope_id, entity_type))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Knowledge lookup for %s in scope '%s' failed: %s", entity_type, scope_id, exc)
        return []


async def retrieve(context: WorkflowContext, query: str, max_results: int) -> list[dict[str, Any]]:
    """Search the reference corpus; empty when unavailable or failing."""

    if context.retrieval is None or not query.strip():
        return []
    try:
        results = await context.retrieval.search(query, max_results)
    except Exception as exc:  # noqa: BLE001
        if context.cancelled:
            raise
        logger.warning("Retrieval for %r failed: %s", query[:60], exc)
        return []
    return [result.to_dict() if hasattr(result, "to_dict") else dict(result) for result in results]
