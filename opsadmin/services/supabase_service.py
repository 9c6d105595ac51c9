import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple
from uuid import UUID, uuid4

import httpx
from postgrest.exceptions import APIError
from supabase import create_client, Client

from ..core.config import Config
from ..core.errors import (
    DependencyUnavailableError,
    DuplicateEntityError,
    EntityNotFoundError,
    error_message,
)
from ..models.conditions import Condition, GroupOperator, Operation, SimpleCondition
from ..models.envelope import EntityMetadata, EntityWithMetadata, ModelSpec
from ..models.registry import EntityModel
from .entity_service import INITIAL_STATE


logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def get_client() -> Client:
    return create_client(Config.SUPABASE_URL, Config.SUPABASE_SERVICE_KEY)


def _row_to_entity(row: dict) -> EntityWithMetadata:
    return EntityWithMetadata(
        entity=row.get("data") or {},
        metadata=EntityMetadata(
            id=UUID(str(row["id"])),
            model_key=ModelSpec(name=row["model_name"], version=int(row["model_version"])),
            state=row.get("state"),
            creation_date=row.get("creation_date"),
            last_update_time=row.get("last_update_time"),
            transition_for_latest_save=row.get("transition_for_latest_save"),
        ),
    )


def _rpc_row(data: Any) -> Optional[dict]:
    if isinstance(data, list):
        return data[0] if data else None
    if isinstance(data, dict):
        return data
    return None


def json_column(json_path: str) -> str:
    """``$.sponsor.name`` -> ``data->sponsor->>name`` (text value of the leaf)."""
    parts = [part for part in json_path.lstrip("$").split(".") if part]
    return "->".join(["data", *parts[:-1]]) + f"->>{parts[-1]}"


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _leaf_filter(condition: SimpleCondition) -> Optional[Tuple[str, str, str]]:
    # Only string values compare the same on the jsonb text as in Python
    if not isinstance(condition.value, str) or not condition.json_path.strip("$."):
        return None
    if condition.operation is Operation.EQUALS:
        return json_column(condition.json_path), "eq", condition.value
    if condition.operation is Operation.CONTAINS:
        return json_column(condition.json_path), "ilike", f"*{condition.value}*"
    return None


def _logic_tree(condition: Condition) -> Optional[str]:
    if isinstance(condition, SimpleCondition):
        leaf = _leaf_filter(condition)
        if leaf is None:
            return None
        column, operator, value = leaf
        return f"{column}.{operator}.{_quote(value)}"

    parts = [_logic_tree(child) for child in condition.conditions]
    if condition.operator is GroupOperator.OR:
        if not parts or any(part is None for part in parts):
            return None
        return f"or({','.join(parts)})"
    parts = [part for part in parts if part is not None]
    return f"and({','.join(parts)})" if parts else None


def push_down(builder, condition: Condition):
    """Narrow a PostgREST select with the parts of ``condition`` it can evaluate.

    Unsupported leaves (numeric comparisons, NOT_EQUAL, non-string values) are
    left out, so the rows returned are a superset of the matches and callers
    still run ``condition.matches`` on each one.
    """
    if isinstance(condition, SimpleCondition):
        leaf = _leaf_filter(condition)
        if leaf is None:
            return builder
        column, operator, value = leaf
        return builder.eq(column, value) if operator == "eq" else builder.ilike(column, value)

    if condition.operator is GroupOperator.AND:
        for child in condition.conditions:
            builder = push_down(builder, child)
        return builder

    tree = _logic_tree(condition)
    if tree is None:
        return builder
    return builder.or_(tree[len("or("):-1])


class SupabaseEntityService:
    """Entity platform backed by a Supabase table.

    Every entity lives in ``Config.ENTITY_TABLE`` with its record in the
    ``data`` jsonb column. Workflow transitions are delegated to the
    ``Config.SUPABASE_TRANSITION_RPC`` Postgres function, which owns the
    state machine and returns the updated row.
    """

    def __init__(
        self,
        client: Optional[Client] = None,
        table: Optional[str] = None,
        transition_rpc: Optional[str] = None,
        page_size: Optional[int] = None,
    ):
        self._client = client
        self._table = table or Config.ENTITY_TABLE
        self._transition_rpc = transition_rpc or Config.SUPABASE_TRANSITION_RPC
        self._page_size = page_size or Config.SUPABASE_PAGE_SIZE

    @property
    def client(self) -> Client:
        if self._client is None:
            try:
                Config.validate()
            except ValueError as e:
                logger.error(f"Supabase is not configured: {e}")
                raise DependencyUnavailableError(f"Entity platform is not configured: {e}") from e
            self._client = get_client()
        return self._client

    def _query(self, model: EntityModel):
        return (
            self.client
            .table(self._table)
            .select("*")
            .eq("model_name", model.name)
            .eq("model_version", model.version)
        )

    def _execute(self, action: str, builder):
        try:
            return builder.execute()
        except APIError as e:
            if getattr(e, "code", None) != UNIQUE_VIOLATION:
                logger.error(f"Supabase {action} failed: {error_message(e)}")
            raise
        except httpx.TransportError as e:
            logger.error(f"Supabase {action} failed, platform unreachable: {e}")
            raise DependencyUnavailableError(f"Entity platform unavailable: {e}") from e

    def _fetch_by_id(self, model: EntityModel, entity_id: UUID) -> Optional[dict]:
        result = self._execute("select", self._query(model).eq("id", str(entity_id)))
        return result.data[0] if result.data else None

    def _fetch_by_business_id(self, model: EntityModel, value: str) -> Optional[dict]:
        result = self._execute(
            "select",
            self._query(model).eq(f"data->>{model.business_key}", str(value)),
        )
        return result.data[0] if result.data else None

    def create(self, model: EntityModel, entity: dict) -> EntityWithMetadata:
        business_value = entity.get(model.business_key)
        if business_value is not None and self._fetch_by_business_id(model, business_value) is not None:
            raise DuplicateEntityError(model.name, model.business_key, str(business_value))

        now = datetime.now(timezone.utc).isoformat()
        row = {
            "id": str(uuid4()),
            "model_name": model.name,
            "model_version": model.version,
            "state": INITIAL_STATE,
            "data": entity,
            "creation_date": now,
            "last_update_time": now,
            "transition_for_latest_save": None,
        }
        try:
            result = self._execute("insert", self.client.table(self._table).insert(row))
        except APIError as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                raise DuplicateEntityError(model.name, model.business_key, str(business_value)) from e
            raise

        if not result.data:
            raise RuntimeError(f"Supabase insert returned no row for {model.name}")
        created = _row_to_entity(result.data[0])
        logger.info(f"Created {model.name} {created.id}")
        return created

    def get_by_id(self, model: EntityModel, entity_id: UUID) -> EntityWithMetadata:
        row = self._fetch_by_id(model, entity_id)
        if row is None:
            raise EntityNotFoundError(model.name, entity_id)
        return _row_to_entity(row)

    def find_by_business_id(self, model: EntityModel, value: str) -> Optional[EntityWithMetadata]:
        row = self._fetch_by_business_id(model, value)
        return _row_to_entity(row) if row is not None else None

    def _update_row(self, model: EntityModel, row: dict, entity: dict, transition: Optional[str]) -> EntityWithMetadata:
        entity_id = str(row["id"])
        if transition is not None:
            return self._transition_row(model, entity_id, entity, transition)

        changes = {
            "data": entity,
            "last_update_time": datetime.now(timezone.utc).isoformat(),
            "transition_for_latest_save": None,
        }
        try:
            result = self._execute(
                "update",
                self.client.table(self._table).update(changes).eq("id", entity_id),
            )
        except APIError as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                raise DuplicateEntityError(model.name, model.business_key, str(entity.get(model.business_key))) from e
            raise
        if not result.data:
            raise EntityNotFoundError(model.name, entity_id)
        return _row_to_entity(result.data[0])

    def _transition_row(self, model: EntityModel, entity_id: str, entity: dict, transition: str) -> EntityWithMetadata:
        # The RPC writes the data and applies the transition in one transaction
        params = {"entity_id": entity_id, "data": entity, "transition": transition}
        try:
            result = self._execute("transition", self.client.rpc(self._transition_rpc, params))
        except APIError as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                raise DuplicateEntityError(model.name, model.business_key, str(entity.get(model.business_key))) from e
            raise
        transitioned = _rpc_row(result.data)
        if transitioned is None:
            raise EntityNotFoundError(model.name, entity_id)
        logger.info(f"Applied transition '{transition}' to {model.name} {entity_id}")
        return _row_to_entity(transitioned)

    def update(
        self,
        model: EntityModel,
        entity_id: UUID,
        entity: dict,
        transition: Optional[str] = None,
    ) -> EntityWithMetadata:
        row = self._fetch_by_id(model, entity_id)
        if row is None:
            raise EntityNotFoundError(model.name, entity_id)
        return self._update_row(model, row, entity, transition)

    def update_by_business_id(
        self,
        model: EntityModel,
        value: str,
        entity: dict,
        transition: Optional[str] = None,
    ) -> EntityWithMetadata:
        row = self._fetch_by_business_id(model, value)
        if row is None:
            raise EntityNotFoundError(model.name, value)
        return self._update_row(model, row, entity, transition)

    def search(self, model: EntityModel, condition: Condition) -> List[EntityWithMetadata]:
        rows: List[dict] = []
        start = 0
        # Stop on an empty page: PostgREST max-rows may cap a page below page_size
        while True:
            builder = push_down(self._query(model), condition).order("id")
            page = self._execute("select", builder.range(start, start + self._page_size - 1)).data or []
            if not page:
                break
            rows.extend(page)
            start += len(page)
        logger.debug(f"Fetched {len(rows)} {model.name} rows for search")
        return [_row_to_entity(row) for row in rows if condition.matches(row.get("data") or {})]

    def delete(self, model: EntityModel, entity_id: UUID) -> None:
        result = self._execute(
            "delete",
            self.client
            .table(self._table)
            .delete()
            .eq("id", str(entity_id))
            .eq("model_name", model.name)
            .eq("model_version", model.version),
        )
        if not result.data:
            raise EntityNotFoundError(model.name, entity_id)
        logger.info(f"Deleted {model.name} {entity_id}")
