from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ModelSpec(BaseModel):
    """Name and version addressing an entity type on the platform."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: int = 1


class EntityMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    id: UUID
    model_key: ModelSpec = Field(alias="modelKey")
    state: Optional[str] = None
    creation_date: Optional[datetime] = Field(default=None, alias="creationDate")
    last_update_time: Optional[datetime] = Field(default=None, alias="lastUpdateTime")
    transition_for_latest_save: Optional[str] = Field(default=None, alias="transitionForLatestSave")


class EntityWithMetadata(BaseModel):
    """Entity record plus the platform-owned metadata.

    Serialized as ``{"entity": {...}, "meta": {...}}``.
    """

    model_config = ConfigDict(populate_by_name=True)

    entity: dict[str, Any]
    metadata: EntityMetadata = Field(alias="meta")

    @property
    def id(self) -> UUID:
        return self.metadata.id

    @property
    def state(self) -> Optional[str]:
        return self.metadata.state
