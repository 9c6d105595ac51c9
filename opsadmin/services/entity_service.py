"""Entity Access Client contract and the in-memory platform.

Routers only talk to the ``EntityService`` protocol. Production wires the
Supabase implementation (see ``supabase_service``); development mode and the
test suite use ``InMemoryEntityService``.
"""

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Protocol
from uuid import UUID, uuid4

from ..core.errors import DuplicateEntityError, EntityNotFoundError
from ..models.conditions import Condition
from ..models.envelope import EntityMetadata, EntityWithMetadata
from ..models.registry import EntityModel


logger = logging.getLogger(__name__)

INITIAL_STATE = "CREATED"


class EntityService(Protocol):
    def create(self, model: EntityModel, entity: dict) -> EntityWithMetadata:
        ...

    def get_by_id(self, model: EntityModel, entity_id: UUID) -> EntityWithMetadata:
        ...

    def find_by_business_id(self, model: EntityModel, value: str) -> Optional[EntityWithMetadata]:
        ...

    def update(
        self,
        model: EntityModel,
        entity_id: UUID,
        entity: dict,
        transition: Optional[str] = None,
    ) -> EntityWithMetadata:
        ...

    def update_by_business_id(
        self,
        model: EntityModel,
        value: str,
        entity: dict,
        transition: Optional[str] = None,
    ) -> EntityWithMetadata:
        ...

    def search(self, model: EntityModel, condition: Condition) -> List[EntityWithMetadata]:
        ...

    def delete(self, model: EntityModel, entity_id: UUID) -> None:
        ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryEntityService:
    """Thread-safe entity platform kept in process memory.

    Transitions are opaque here as well: the name is recorded on the
    metadata, and the state only moves when ``transition_states`` maps the
    transition to a target state.
    """

    def __init__(self, transition_states: Optional[Mapping[str, str]] = None, initial_state: Optional[str] = INITIAL_STATE):
        self._transition_states = dict(transition_states or {})
        self._initial_state = initial_state
        self._records: Dict[UUID, EntityWithMetadata] = {}
        self._lock = threading.RLock()

    def _matches_model(self, record: EntityWithMetadata, model: EntityModel) -> bool:
        key = record.metadata.model_key
        return key.name == model.name and key.version == model.version

    def _find_locked(self, model: EntityModel, value: str) -> Optional[EntityWithMetadata]:
        for record in self._records.values():
            if not self._matches_model(record, model):
                continue
            current = record.entity.get(model.business_key)
            if current is not None and str(current) == str(value):
                return record
        return None

    def _get_locked(self, model: EntityModel, entity_id: UUID) -> EntityWithMetadata:
        record = self._records.get(entity_id)
        if record is None or not self._matches_model(record, model):
            raise EntityNotFoundError(model.name, entity_id)
        return record

    def create(self, model: EntityModel, entity: dict) -> EntityWithMetadata:
        business_value = entity.get(model.business_key)
        with self._lock:
            if business_value is not None and self._find_locked(model, business_value) is not None:
                raise DuplicateEntityError(model.name, model.business_key, str(business_value))
            now = _now()
            record = EntityWithMetadata(
                entity=copy.deepcopy(entity),
                metadata=EntityMetadata(
                    id=uuid4(),
                    model_key=model.spec,
                    state=self._initial_state,
                    creation_date=now,
                    last_update_time=now,
                ),
            )
            self._records[record.id] = record
            logger.debug(f"Created {model.name} {record.id}")
            return record.model_copy(deep=True)

    def get_by_id(self, model: EntityModel, entity_id: UUID) -> EntityWithMetadata:
        with self._lock:
            return self._get_locked(model, entity_id).model_copy(deep=True)

    def find_by_business_id(self, model: EntityModel, value: str) -> Optional[EntityWithMetadata]:
        with self._lock:
            record = self._find_locked(model, value)
            return record.model_copy(deep=True) if record is not None else None

    def _apply_update_locked(
        self,
        model: EntityModel,
        existing: EntityWithMetadata,
        entity: dict,
        transition: Optional[str],
    ) -> EntityWithMetadata:
        new_value = entity.get(model.business_key)
        if new_value is not None:
            clash = self._find_locked(model, new_value)
            if clash is not None and clash.id != existing.id:
                raise DuplicateEntityError(model.name, model.business_key, str(new_value))

        metadata = existing.metadata.model_copy(
            update={
                "last_update_time": _now(),
                "transition_for_latest_save": transition,
            }
        )
        if transition is not None and transition in self._transition_states:
            metadata = metadata.model_copy(update={"state": self._transition_states[transition]})

        updated = EntityWithMetadata(entity=copy.deepcopy(entity), metadata=metadata)
        self._records[existing.id] = updated
        logger.debug(f"Updated {model.name} {existing.id} (transition={transition})")
        return updated.model_copy(deep=True)

    def update(
        self,
        model: EntityModel,
        entity_id: UUID,
        entity: dict,
        transition: Optional[str] = None,
    ) -> EntityWithMetadata:
        with self._lock:
            existing = self._get_locked(model, entity_id)
            return self._apply_update_locked(model, existing, entity, transition)

    def update_by_business_id(
        self,
        model: EntityModel,
        value: str,
        entity: dict,
        transition: Optional[str] = None,
    ) -> EntityWithMetadata:
        with self._lock:
            existing = self._find_locked(model, value)
            if existing is None:
                raise EntityNotFoundError(model.name, value)
            return self._apply_update_locked(model, existing, entity, transition)

    def search(self, model: EntityModel, condition: Condition) -> List[EntityWithMetadata]:
        with self._lock:
            return [
                record.model_copy(deep=True)
                for record in self._records.values()
                if self._matches_model(record, model) and condition.matches(record.entity)
            ]

    def delete(self, model: EntityModel, entity_id: UUID) -> None:
        with self._lock:
            self._get_locked(model, entity_id)
            del self._records[entity_id]
            logger.debug(f"Deleted {model.name} {entity_id}")
