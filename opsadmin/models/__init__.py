"""Entity envelopes, the entity type table and search conditions."""

from .envelope import EntityMetadata, EntityWithMetadata, ModelSpec
from .registry import ENTITY_MODELS, EntityModel

__all__ = [
    "ENTITY_MODELS",
    "EntityMetadata",
    "EntityModel",
    "EntityWithMetadata",
    "ModelSpec",
]
