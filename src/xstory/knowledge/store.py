"""In-memory story knowledge store with scope-hierarchy queries."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Protocol, runtime_checkable

from pydantic import ValidationError

from .models import (
    Entity,
    EntityStatus,
    EntityType,
    Link,
    LinkType,
    Scope,
    ScopeType,
    StateSnapshot,
    Tag,
    utcnow,
)

logger = logging.getLogger(__name__)

__all__ = ["KnowledgeStore", "KnowledgeStoreError", "InMemoryKnowledgeStore"]

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_UPDATABLE_FIELDS = frozenset({"name", "content", "structured_fields", "status", "scope_id"})


class KnowledgeStoreError(RuntimeError):
    """Raised when a knowledge store operation references unknown records."""


@runtime_checkable
class KnowledgeStore(Protocol):
    """Read surface the pipelines rely on."""

    def get_entity(self, entity_id: str) -> Entity | None:
        ...

    def search_entities(self, query: str, limit: int = 20) -> list[Entity]:
        ...

    def entities_in_scope_hierarchy(self, scope_id: str, entity_type: EntityType | None = None) -> list[Entity]:
        ...

    def constraints_for_scope(self, scope_id: str) -> list[Entity]:
        ...

    def snapshots_for(self, entity_id: str) -> list[StateSnapshot]:
        ...


def _tokens(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


class InMemoryKnowledgeStore:
    """Dictionary-backed store. Deletes cascade the way the schema declares."""

    def __init__(self) -> None:
        self._scopes: Dict[str, Scope] = {}
        self._entities: Dict[str, Entity] = {}
        self._links: Dict[str, Link] = {}
        self._tags: Dict[str, Tag] = {}
        self._snapshots: Dict[str, StateSnapshot] = {}

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------
    def create_scope(
        self,
        scope_type: ScopeType,
        name: str,
        parent_scope_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        *,
        scope_id: str | None = None,
    ) -> Scope:
        if parent_scope_id is not None and parent_scope_id not in self._scopes:
            raise KnowledgeStoreError(f"Parent scope not found: {parent_scope_id}")
        fields: Dict[str, Any] = {
            "scope_type": scope_type,
            "name": name,
            "parent_scope_id": parent_scope_id,
            "metadata": dict(metadata or {}),
        }
        if scope_id is not None:
            fields["id"] = scope_id
        scope = Scope(**fields)
        self._scopes[scope.id] = scope
        return scope

    def get_scope(self, scope_id: str) -> Scope | None:
        return self._scopes.get(scope_id)

    def list_scopes(self, scope_type: ScopeType | None = None) -> list[Scope]:
        scopes = [scope for scope in self._scopes.values() if scope_type is None or scope.scope_type == scope_type]
        return sorted(scopes, key=lambda scope: scope.name)

    def delete_scope(self, scope_id: str) -> None:
        self._scopes.pop(scope_id, None)
        for child in [scope for scope in self._scopes.values() if scope.parent_scope_id == scope_id]:
            self._scopes[child.id] = child.model_copy(update={"parent_scope_id": None, "updated_at": utcnow()})
        for entity_id in [entity.id for entity in self._entities.values() if entity.scope_id == scope_id]:
            self.delete_entity(entity_id)
        for snapshot_id in [snap.id for snap in self._snapshots.values() if snap.scope_id == scope_id]:
            del self._snapshots[snapshot_id]

    def scope_chain(self, scope_id: str) -> list[str]:
        """Ids from *scope_id* up to its root. Unknown scopes yield ``[]``."""

        if scope_id not in self._scopes:
            return []
        chain = [scope_id]
        current = self._scopes[scope_id]
        while current.parent_scope_id and current.parent_scope_id not in chain:
            chain.append(current.parent_scope_id)
            parent = self._scopes.get(current.parent_scope_id)
            if parent is None:
                break
            current = parent
        return chain

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------
    def create_entity(
        self,
        entity_type: EntityType,
        scope_id: str,
        name: str,
        content: Mapping[str, Any] | None = None,
        structured_fields: Mapping[str, Any] | None = None,
        status: EntityStatus = "draft",
        *,
        entity_id: str | None = None,
    ) -> Entity:
        if scope_id not in self._scopes:
            raise KnowledgeStoreError(f"Scope not found: {scope_id}")
        fields: Dict[str, Any] = {
            "type": entity_type,
            "scope_id": scope_id,
            "name": name,
            "content": dict(content or {}),
            "structured_fields": dict(structured_fields or {}),
            "status": status,
        }
        if entity_id is not None:
            fields["id"] = entity_id
        entity = Entity(**fields)
        self._entities[entity.id] = entity
        return entity

    def get_entity(self, entity_id: str) -> Entity | None:
        return self._entities.get(entity_id)

    def list_entities(
        self,
        *,
        scope_id: str | None = None,
        entity_type: EntityType | None = None,
        status: EntityStatus | None = None,
    ) -> list[Entity]:
        matches = [
            entity
            for entity in self._entities.values()
            if (scope_id is None or entity.scope_id == scope_id)
            and (entity_type is None or entity.type == entity_type)
            and (status is None or entity.status == status)
        ]
        return sorted(matches, key=lambda entity: entity.name)

    def update_entity(self, entity_id: str, **updates: Any) -> Entity:
        entity = self._entities.get(entity_id)
        if entity is None:
            raise KnowledgeStoreError(f"Entity not found: {entity_id}")
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise KnowledgeStoreError(f"Cannot update entity fields: {', '.join(sorted(unknown))}")
        if "scope_id" in updates and updates["scope_id"] not in self._scopes:
            raise KnowledgeStoreError(f"Scope not found: {updates['scope_id']}")
        if not updates:
            return entity
        try:
            updated = Entity.model_validate({**entity.model_dump(), **updates, "updated_at": utcnow()})
        except ValidationError as exc:
            raise KnowledgeStoreError(f"Invalid update for entity {entity_id}: {exc}") from exc
        self._entities[entity_id] = updated
        return updated

    def delete_entity(self, entity_id: str) -> None:
        self._entities.pop(entity_id, None)
        for link_id in [link.id for link in self._links.values() if entity_id in (link.source_id, link.target_id)]:
            del self._links[link_id]
        for tag_id in [tag.id for tag in self._tags.values() if tag.entity_id == entity_id]:
            del self._tags[tag_id]
        for snapshot_id in [snap.id for snap in self._snapshots.values() if snap.entity_id == entity_id]:
            del self._snapshots[snapshot_id]

    # ------------------------------------------------------------------
    # Links and tags
    # ------------------------------------------------------------------
    def link(
        self,
        source_id: str,
        target_id: str,
        link_type: LinkType,
        metadata: Mapping[str, Any] | None = None,
    ) -> Link:
        for endpoint in (source_id, target_id):
            if endpoint not in self._entities:
                raise KnowledgeStoreError(f"Entity not found: {endpoint}")
        link = Link(source_id=source_id, target_id=target_id, link_type=link_type, metadata=dict(metadata or {}))
        self._links[link.id] = link
        return link

    def links_for(self, entity_id: str) -> list[Link]:
        return [link for link in self._links.values() if entity_id in (link.source_id, link.target_id)]

    def unlink(self, link_id: str) -> None:
        self._links.pop(link_id, None)

    def add_tag(self, entity_id: str, tag_name: str) -> Tag:
        if entity_id not in self._entities:
            raise KnowledgeStoreError(f"Entity not found: {entity_id}")
        for tag in self._tags.values():
            if tag.entity_id == entity_id and tag.tag_name == tag_name:
                return tag
        tag = Tag(entity_id=entity_id, tag_name=tag_name)
        self._tags[tag.id] = tag
        return tag

    def tags_for(self, entity_id: str) -> list[Tag]:
        return [tag for tag in self._tags.values() if tag.entity_id == entity_id]

    def remove_tag(self, entity_id: str, tag_name: str) -> None:
        for tag_id in [
            tag.id for tag in self._tags.values() if tag.entity_id == entity_id and tag.tag_name == tag_name
        ]:
            del self._tags[tag_id]

    # ------------------------------------------------------------------
    # State snapshots
    # ------------------------------------------------------------------
    def record_snapshot(
        self,
        entity_id: str,
        scope_id: str,
        beat_index: int,
        state_data: Mapping[str, Any],
    ) -> StateSnapshot:
        if entity_id not in self._entities:
            raise KnowledgeStoreError(f"Entity not found: {entity_id}")
        if scope_id not in self._scopes:
            raise KnowledgeStoreError(f"Scope not found: {scope_id}")
        snapshot = StateSnapshot(
            entity_id=entity_id,
            scope_id=scope_id,
            beat_index=beat_index,
            state_data=dict(state_data),
        )
        self._snapshots[snapshot.id] = snapshot
        return snapshot

    def snapshots_for(self, entity_id: str) -> list[StateSnapshot]:
        """Snapshots of *entity_id* ordered by beat index, oldest first."""

        snapshots = [snap for snap in self._snapshots.values() if snap.entity_id == entity_id]
        return sorted(snapshots, key=lambda snap: snap.beat_index)

    def latest_snapshot(self, entity_id: str, scope_id: str) -> StateSnapshot | None:
        candidates = [snap for snap in self.snapshots_for(entity_id) if snap.scope_id == scope_id]
        return candidates[-1] if candidates else None

    # ------------------------------------------------------------------
    # Queries used by pipelines
    # ------------------------------------------------------------------
    def search_entities(self, query: str, limit: int = 20) -> list[Entity]:
        """Prefix-match any query term against entity names and bodies.

        Name hits weigh double; ties are broken by name.
        """

        terms = _tokens(query)
        if not terms or limit <= 0:
            return []

        scored: list[tuple[float, str, Entity]] = []
        for entity in self._entities.values():
            name_tokens = _tokens(entity.name)
            body_tokens = _tokens(json.dumps(entity.content, ensure_ascii=False)) + _tokens(
                json.dumps(entity.structured_fields, ensure_ascii=False)
            )
            score = 0.0
            for term in terms:
                score += 2.0 * sum(1 for token in name_tokens if token.startswith(term))
                score += sum(1 for token in body_tokens if token.startswith(term))
            if score > 0:
                scored.append((score, entity.name, entity))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [entity for _, _, entity in scored[:limit]]

    def entities_in_scope_hierarchy(self, scope_id: str, entity_type: EntityType | None = None) -> list[Entity]:
        """Entities in *scope_id* and every enclosing scope, sorted by name."""

        chain = set(self.scope_chain(scope_id))
        if not chain:
            return []
        matches = [
            entity
            for entity in self._entities.values()
            if entity.scope_id in chain and (entity_type is None or entity.type == entity_type)
        ]
        return sorted(matches, key=lambda entity: entity.name)

    def constraints_for_scope(self, scope_id: str) -> list[Entity]:
        """Canon rules visible from *scope_id*."""

        return [entity for entity in self.entities_in_scope_hierarchy(scope_id, "Rule") if entity.status == "canon"]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "scopes": [scope.model_dump() for scope in self._scopes.values()],
            "entities": [entity.model_dump() for entity in self._entities.values()],
            "links": [link.model_dump() for link in self._links.values()],
            "tags": [tag.model_dump() for tag in self._tags.values()],
            "snapshots": [snap.model_dump() for snap in self._snapshots.values()],
        }

    def save(self, path: Path) -> Path:
        path = Path(path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        return path

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "InMemoryKnowledgeStore":
        store = cls()
        try:
            store._scopes = _index(Scope.model_validate(item) for item in payload.get("scopes", []))
            store._entities = _index(Entity.model_validate(item) for item in payload.get("entities", []))
            store._links = _index(Link.model_validate(item) for item in payload.get("links", []))
            store._tags = _index(Tag.model_validate(item) for item in payload.get("tags", []))
            store._snapshots = _index(StateSnapshot.model_validate(item) for item in payload.get("snapshots", []))
        except ValidationError as exc:
            raise KnowledgeStoreError(f"Invalid knowledge store payload: {exc}") from exc

        orphans = [entity.name for entity in store._entities.values() if entity.scope_id not in store._scopes]
        if orphans:
            logger.warning("%d entities reference unknown scopes: %s", len(orphans), ", ".join(orphans[:5]))
        return store

    @classmethod
    def load(cls, path: Path) -> "InMemoryKnowledgeStore":
        path = Path(path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Knowledge store file not found: {path}")
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise KnowledgeStoreError(f"Knowledge store file is not valid JSON: {path}") from exc
        if not isinstance(payload, Mapping):
            raise KnowledgeStoreError(f"Knowledge store file must hold a JSON object: {path}")
        store = cls.from_dict(payload)
        logger.info(
            "Loaded knowledge store from %s (%d scopes, %d entities)",
            path,
            len(store._scopes),
            len(store._entities),
        )
        return store


def _index(records: Iterable[Any]) -> Dict[str, Any]:
    return {record.id: record for record in records}
