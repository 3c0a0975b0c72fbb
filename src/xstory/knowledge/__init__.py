"""Story knowledge store: scopes, entities, links, tags and state snapshots."""

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
)
from .store import InMemoryKnowledgeStore, KnowledgeStore, KnowledgeStoreError

__all__ = [
    "Entity",
    "EntityStatus",
    "EntityType",
    "InMemoryKnowledgeStore",
    "KnowledgeStore",
    "KnowledgeStoreError",
    "Link",
    "LinkType",
    "Scope",
    "ScopeType",
    "StateSnapshot",
    "Tag",
]
