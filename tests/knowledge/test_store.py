from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from xstory.knowledge import InMemoryKnowledgeStore, KnowledgeStore, KnowledgeStoreError


def test_store_satisfies_protocol(story_store: InMemoryKnowledgeStore) -> None:
    assert isinstance(story_store, KnowledgeStore)


def test_scope_chain_walks_to_root(story_store: InMemoryKnowledgeStore) -> None:
    assert story_store.scope_chain("chapter-3") == ["chapter-3", "book-1", "series"]
    assert story_store.scope_chain("unknown") == []


def test_hierarchy_includes_enclosing_scopes(story_store: InMemoryKnowledgeStore) -> None:
    names = [entity.name for entity in story_store.entities_in_scope_hierarchy("chapter-3")]
    assert names == sorted(names)
    assert {"Mara Vell", "Harbor Lighthouse", "The storm"} <= set(names)

    book_level = story_store.entities_in_scope_hierarchy("book-1", "Rule")
    assert [entity.id for entity in book_level] == ["rule-sea", "rule-curfew"]
    assert story_store.entities_in_scope_hierarchy("missing") == []


def test_constraints_are_canon_rules_only(story_store: InMemoryKnowledgeStore) -> None:
    constraints = story_store.constraints_for_scope("chapter-3")
    assert [entity.id for entity in constraints] == ["rule-sea"]


def test_search_ranks_name_hits_first(story_store: InMemoryKnowledgeStore) -> None:
    story_store.create_entity("Item", "series", "Brass key", content={"owner": "Mara Vell"}, entity_id="key")

    results = story_store.search_entities("mara")

    assert [entity.id for entity in results] == ["mara", "key"]
    assert story_store.search_entities("light")[0].id == "lighthouse"
    assert story_store.search_entities("   ") == []


def test_create_entity_requires_known_scope(story_store: InMemoryKnowledgeStore) -> None:
    with pytest.raises(KnowledgeStoreError):
        story_store.create_entity("Character", "nowhere", "Ghost")
    with pytest.raises(KnowledgeStoreError):
        story_store.create_scope("SCENE", "Orphan", parent_scope_id="nowhere")


def test_update_entity_validates_fields(story_store: InMemoryKnowledgeStore) -> None:
    updated = story_store.update_entity("rule-curfew", status="canon")
    assert updated.status == "canon"
    assert [entity.id for entity in story_store.constraints_for_scope("book-1")] == ["rule-sea", "rule-curfew"]

    with pytest.raises(KnowledgeStoreError):
        story_store.update_entity("rule-curfew", type="Character")
    with pytest.raises(KnowledgeStoreError):
        story_store.update_entity("rule-curfew", status="published")
    with pytest.raises(KnowledgeStoreError):
        story_store.update_entity("missing", name="x")


def test_delete_entity_cascades(story_store: InMemoryKnowledgeStore) -> None:
    story_store.link("mara", "lighthouse", "connected_to")
    story_store.add_tag("mara", "protagonist")
    story_store.record_snapshot("mara", "chapter-3", 1, {"mood": "tense"})

    story_store.delete_entity("mara")

    assert story_store.get_entity("mara") is None
    assert story_store.links_for("lighthouse") == []
    assert story_store.tags_for("mara") == []
    assert story_store.snapshots_for("mara") == []


def test_tags_are_idempotent(story_store: InMemoryKnowledgeStore) -> None:
    first = story_store.add_tag("mara", "protagonist")
    second = story_store.add_tag("mara", "protagonist")
    assert first.id == second.id

    story_store.remove_tag("mara", "protagonist")
    assert story_store.tags_for("mara") == []


def test_snapshots_are_ordered_by_beat(story_store: InMemoryKnowledgeStore) -> None:
    story_store.record_snapshot("mara", "chapter-3", 5, {"mood": "resolved"})
    story_store.record_snapshot("mara", "chapter-3", 2, {"mood": "afraid"})
    story_store.record_snapshot("mara", "book-1", 9, {"mood": "elsewhere"})

    beats = [snap.beat_index for snap in story_store.snapshots_for("mara")]
    assert beats == [2, 5, 9]
    latest = story_store.latest_snapshot("mara", "chapter-3")
    assert latest is not None and latest.state_data == {"mood": "resolved"}
    assert story_store.latest_snapshot("mara", "series") is None


def test_delete_scope_detaches_children(story_store: InMemoryKnowledgeStore) -> None:
    story_store.delete_scope("book-1")

    assert story_store.get_scope("chapter-3").parent_scope_id is None
    assert story_store.get_entity("lighthouse") is None
    assert story_store.scope_chain("chapter-3") == ["chapter-3"]


def test_save_and_load_round_trip(story_store: InMemoryKnowledgeStore, tmp_path: Path) -> None:
    path = story_store.save(tmp_path / "canon.json")

    loaded = InMemoryKnowledgeStore.load(path)

    assert loaded.get_entity("mara") == story_store.get_entity("mara")
    assert loaded.scope_chain("chapter-3") == ["chapter-3", "book-1", "series"]


def test_load_rejects_bad_payloads(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        InMemoryKnowledgeStore.load(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(KnowledgeStoreError):
        InMemoryKnowledgeStore.load(broken)

    invalid = tmp_path / "invalid.json"
    invalid.write_text(json.dumps({"entities": [{"type": "Spaceship", "scope_id": "x", "name": "y"}]}), encoding="utf-8")
    with pytest.raises(KnowledgeStoreError):
        InMemoryKnowledgeStore.load(invalid)


def test_from_dict_warns_about_orphans(caplog: pytest.LogCaptureFixture) -> None:
    payload = {"entities": [{"id": "e1", "type": "Character", "scope_id": "gone", "name": "Lost"}]}

    with caplog.at_level(logging.WARNING):
        store = InMemoryKnowledgeStore.from_dict(payload)

    assert store.get_entity("e1") is not None
    assert "reference unknown scopes" in caplog.text
