from __future__ import annotations

import asyncio
import json
import logging

import pytest

from xstory.graph import WorkflowContext, run_workflow
from xstory.knowledge import InMemoryKnowledgeStore
from xstory.llm import MockCompletionClient
from xstory.pipelines import (
    PIPELINES,
    build_brainstorm_graph,
    build_continuity_graph,
    build_dialogue_graph,
    create_brainstorm_state,
    create_continuity_state,
    create_dialogue_state,
    get_pipeline,
)
from xstory.retrieval import Document, build_retrieval_api

PASSAGE = '"Keep the lamp lit," Mara said. "Whatever happens at sea."'


def _run(graph, state, **context_kwargs):
    return asyncio.run(run_workflow(graph, state, WorkflowContext(**context_kwargs)))


# ----------------------------------------------------------------------
# Brainstorm
# ----------------------------------------------------------------------
def test_brainstorm_without_selection_stops_after_beats(story_store: InMemoryKnowledgeStore) -> None:
    llm = MockCompletionClient()

    result = _run(
        build_brainstorm_graph(),
        create_brainstorm_state("A lighthouse keeper hides a secret", scope_id="chapter-3", beat_count=3),
        llm=llm,
        knowledge=story_store,
    )

    assert result.status == "completed"
    assert result.nodes_visited == ["gather_context", "rag_context", "analyze_state", "generate_beats"]
    state = result.final_state
    assert [c["name"] for c in state["characters"]] == ["Mara Vell"]
    assert state["beats"][0]["summary"] == "An unexpected visitor arrives"
    assert state["expanded_beat"] is None
    generate_prompt = llm.calls_for("brainstorm.generate")[0].messages[-1].content
    assert "3" in generate_prompt
    assert "No magic at sea" in generate_prompt


def test_brainstorm_expands_selected_beat() -> None:
    result = _run(
        build_brainstorm_graph(),
        create_brainstorm_state("A storm strands the village", selected_beat_index=0),
        llm=MockCompletionClient(),
    )

    assert result.nodes_visited[-1] == "expand_beat"
    expanded = result.final_state["expanded_beat"]
    assert expanded["beat"]["summary"] == "An unexpected visitor arrives"
    assert expanded["sub_beats"][0]["subBeat"] == "The door opens"


def test_brainstorm_out_of_range_selection_is_ignored() -> None:
    result = _run(
        build_brainstorm_graph(),
        create_brainstorm_state("A storm strands the village", selected_beat_index=7),
        llm=MockCompletionClient(),
    )

    assert result.status == "completed"
    assert result.final_state["expanded_beat"] is None


def test_brainstorm_malformed_beats_fall_back(caplog: pytest.LogCaptureFixture) -> None:
    llm = MockCompletionClient(responses={"brainstorm.generate": "[{summary: broken}]", "brainstorm.expand": "no json"})

    with caplog.at_level(logging.WARNING):
        result = _run(
            build_brainstorm_graph(),
            create_brainstorm_state("A storm strands the village", selected_beat_index=0),
            llm=llm,
        )

    beats = result.final_state["beats"]
    assert beats[0]["summary"] == "Failed to parse beats"
    assert beats[0]["expansion"] == "[{summary: broken}]"
    assert result.final_state["expanded_beat"]["raw"] == "no json"
    assert "Could not parse generated beats" in caplog.text


# ----------------------------------------------------------------------
# Dialogue
# ----------------------------------------------------------------------
def test_dialogue_refines_with_profiles_and_samples(story_store: InMemoryKnowledgeStore) -> None:
    documents = [
        Document(id="mara-voice.md", title="Mara dialogue", content="Mara Vell speaks in clipped dialogue."),
        Document(id="harbor.md", title="Harbor", content="Gulls over the water."),
    ]
    retrieval = asyncio.run(build_retrieval_api(documents))
    llm = MockCompletionClient()

    result = _run(
        build_dialogue_graph(),
        create_dialogue_state(PASSAGE, scope_id="book-1"),
        llm=llm,
        knowledge=story_store,
        retrieval=retrieval,
    )

    assert result.status == "completed"
    assert result.nodes_visited == ["gather_profiles", "fetch_samples", "analyze_voice", "refine", "evaluate"]
    state = result.final_state
    assert [profile["id"] for profile in state["character_profiles"]] == ["mara"]
    assert [sample["document_id"] for sample in state["rag_samples"]] == ["mara-voice.md"]
    assert state["refined_text"] == PASSAGE
    assert state["evaluation"]["score"] == 75
    refine_prompt = llm.calls_for("dialogue.refine")[0].messages[-1].content
    assert "--- Mara dialogue ---" in refine_prompt


def test_dialogue_keeps_raw_output_when_json_breaks() -> None:
    llm = MockCompletionClient(responses={"dialogue.analyze": "{voices: ???}", "dialogue.evaluate": "{oops}"})

    result = _run(build_dialogue_graph(), create_dialogue_state(PASSAGE), llm=llm)

    state = result.final_state
    assert state["voice_analysis"] == {"raw": "{voices: ???}"}
    assert state["evaluation"] == {"raw": "{oops}", "pass": False, "score": 0}
    assert state["rag_samples"] == []


# ----------------------------------------------------------------------
# Continuity
# ----------------------------------------------------------------------
def test_continuity_clean_text_skips_repair(story_store: InMemoryKnowledgeStore) -> None:
    llm = MockCompletionClient()

    result = _run(
        build_continuity_graph(),
        create_continuity_state(PASSAGE, scope_id="chapter-3"),
        llm=llm,
        knowledge=story_store,
    )

    assert result.nodes_visited == ["gather_canon", "audit", "report"]
    state = result.final_state
    assert {fact["id"] for fact in state["canon_facts"]} == {"mara", "lighthouse", "storm"}
    assert state["timeline"].startswith("- The storm")
    assert state["report"]["summary"]["total"] == 0
    report_prompt = llm.calls_for("continuity.report")[0].messages[-1].content
    assert "No repairs were necessary." in report_prompt


def test_continuity_repairs_found_issues(story_store: InMemoryKnowledgeStore) -> None:
    issues = [{"issue": "Magic used at sea", "severity": "critical", "category": "rule"}]
    llm = MockCompletionClient(
        responses={
            "continuity.audit": json.dumps(issues),
            "continuity.repair": PASSAGE.replace("at sea", "ashore") + " [FIXED: moved ashore]",
        }
    )

    result = _run(
        build_continuity_graph(),
        create_continuity_state(PASSAGE, scope_id="chapter-3"),
        llm=llm,
        knowledge=story_store,
    )

    assert result.nodes_visited == ["gather_canon", "audit", "repair", "report"]
    state = result.final_state
    assert state["issues"] == issues
    assert "[FIXED: moved ashore]" in state["repaired_text"]
    report_prompt = llm.calls_for("continuity.report")[0].messages[-1].content
    assert "Text was modified to fix issues." in report_prompt
    assert "Magic used at sea" in report_prompt


def test_continuity_audit_only_when_auto_repair_disabled() -> None:
    llm = MockCompletionClient(responses={"continuity.audit": '[{"issue": "x", "severity": "minor"}]'})

    result = _run(build_continuity_graph(), create_continuity_state(PASSAGE, auto_repair=False), llm=llm)

    assert result.nodes_visited == ["gather_canon", "audit", "report"]
    assert result.final_state["repaired_text"] == ""
    assert result.final_state["timeline"] == "No knowledge store available."


def test_continuity_parse_failure_becomes_issue() -> None:
    llm = MockCompletionClient(responses={"continuity.audit": "[not json]", "continuity.report": "plain words"})

    result = _run(build_continuity_graph(), create_continuity_state(PASSAGE), llm=llm)

    state = result.final_state
    assert state["issues"][0]["category"] == "parse-error"
    assert result.nodes_visited == ["gather_canon", "audit", "repair", "report"]
    assert state["report"] == {"raw": "plain words"}


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------
def test_registry_lists_every_pipeline() -> None:
    assert sorted(PIPELINES) == ["brainstorm", "continuity", "dialogue", "scene-draft"]
    for spec in PIPELINES.values():
        assert spec.build_graph().validate() == []


def test_registry_builds_state_from_fields(caplog: pytest.LogCaptureFixture) -> None:
    spec = get_pipeline("scene-draft")

    with caplog.at_level(logging.WARNING):
        state = spec.state_from_fields({"outline": "A storm", "scope_id": "book-1", "mood": "grim"})

    assert state["outline"] == "A storm"
    assert state["scope_id"] == "book-1"
    assert "mood" not in state
    assert "Ignoring unknown scene-draft input fields: mood" in caplog.text

    with pytest.raises(ValueError):
        spec.state_from_fields({"scope_id": "book-1"})


def test_registry_state_from_text_uses_text_field() -> None:
    state = get_pipeline("brainstorm").state_from_text("A premise", tone="noir")
    assert state["premise"] == "A premise"
    assert state["tone"] == "noir"


def test_unknown_pipeline_lists_available() -> None:
    with pytest.raises(KeyError, match="Available: brainstorm"):
        get_pipeline("poetry")
