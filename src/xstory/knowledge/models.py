"""Structured records held by the story knowledge store."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ScopeType = Literal["WORLD", "SEASON", "EPISODE", "SCENE"]
EntityType = Literal[
    "Character",
    "Location",
    "Rule",
    "Item",
    "Arc",
    "Relationship",
    "Beat",
    "Event",
    "Thread",
]
EntityStatus = Literal["canon", "draft", "needs-review", "archived"]
LinkType = Literal[
    "connected_to",
    "depends_on",
    "transitions_to",
    "references",
    "parent_of",
    "child_of",
    "evolves_into",
]


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class FrozenBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Scope(FrozenBaseModel):
    """A level in the WORLD > SEASON > EPISODE > SCENE hierarchy."""

    id: str = Field(default_factory=new_id)
    scope_type: ScopeType = Field(..., description="Hierarchy level of the scope.")
    name: str
    parent_scope_id: Optional[str] = Field(default=None, description="Enclosing scope, if any.")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(default_factory=utcnow)
    updated_at: str = Field(default_factory=utcnow)


class Entity(FrozenBaseModel):
    """A story card: character, location, rule and so on."""

    id: str = Field(default_factory=new_id)
    type: EntityType
    scope_id: str = Field(..., description="Scope the entity belongs to.")
    name: str
    content: Dict[str, Any] = Field(default_factory=dict, description="Free-form card body.")
    structured_fields: Dict[str, Any] = Field(default_factory=dict)
    status: EntityStatus = "draft"
    created_at: str = Field(default_factory=utcnow)
    updated_at: str = Field(default_factory=utcnow)

    def summary(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type, "content": self.content}


class Link(FrozenBaseModel):
    id: str = Field(default_factory=new_id)
    source_id: str
    target_id: str
    link_type: LinkType
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Tag(FrozenBaseModel):
    id: str = Field(default_factory=new_id)
    entity_id: str
    tag_name: str


class StateSnapshot(FrozenBaseModel):
    """State of an entity at a beat index within a scope."""

    id: str = Field(default_factory=new_id)
    entity_id: str
    scope_id: str
    beat_index: int
    state_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(default_factory=utcnow)
