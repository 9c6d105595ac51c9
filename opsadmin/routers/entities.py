"""Uniform CRUD router shared by every entity type.

``build_entity_router`` turns one ``EntityModel`` record into the endpoint set

- ``POST /x`` (201, 409 duplicate, 400 invalid)
- ``GET /x/{uuid}`` and ``GET /x/business/{xId}`` (200, 404)
- ``PUT /x/{uuid}?transition=name`` (200, 404, 400)
- ``GET /x`` (200 list, optionally filtered)
- ``DELETE /x/{uuid}`` (204, 400)
"""

import logging
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response

from ..core.errors import DependencyUnavailableError, DuplicateEntityError, EntityNotFoundError
from ..core.validation import normalize_transition, validate_business_id, validate_entity_body
from ..dependencies import get_entity_service
from ..models.conditions import all_of, equals
from ..models.envelope import EntityWithMetadata
from ..models.registry import EntityModel
from ..services.entity_service import EntityService
from .common import failure, unavailable


logger = logging.getLogger(__name__)


def list_filter(model: EntityModel, request: Request):
    """AND of EQUALS conditions for the filter fields present in the query."""
    conditions = []
    for field_name in model.filter_fields:
        value = request.query_params.get(field_name)
        if value is not None and value.strip():
            conditions.append(equals(field_name, value))
    return all_of(conditions)


def build_entity_router(model: EntityModel) -> APIRouter:
    router = APIRouter(prefix=f"/{model.path}", tags=[model.name])
    label = model.label
    get_by_id_route = f"get_{label}_by_id"

    @router.post("", status_code=201, response_model=EntityWithMetadata, name=f"create_{label}")
    def create_entity(
        request: Request,
        response: Response,
        body: Any = Body(None),
        transition: Optional[str] = Query(None),
        service: EntityService = Depends(get_entity_service),
    ):
        entity = validate_entity_body(body, model.name)
        business_id = validate_business_id(entity, model.business_key)
        logger.info(f"Creating {model.name}: {business_id}")

        try:
            created = service.create(model, entity)
            transition_name = normalize_transition(transition)
            if transition_name is not None:
                logger.info(f"Applying transition '{transition_name}' to {model.name} {created.id}")
                created = service.update(model, created.id, created.entity, transition_name)
        except DuplicateEntityError as e:
            logger.warning(f"{model.name} with business ID {business_id} already exists")
            raise HTTPException(status_code=409, detail=str(e))
        except DependencyUnavailableError as e:
            raise unavailable(e)
        except Exception as e:
            raise failure(e, f"create {label}")

        response.headers["Location"] = str(request.url_for(get_by_id_route, entity_id=str(created.id)))
        logger.info(f"{model.name} created with ID: {created.id}")
        return created

    @router.get("/business/{business_id}", response_model=EntityWithMetadata, name=f"get_{label}_by_business_id")
    def get_entity_by_business_id(business_id: str, service: EntityService = Depends(get_entity_service)):
        try:
            found = service.find_by_business_id(model, business_id)
        except DependencyUnavailableError as e:
            raise unavailable(e)
        except Exception as e:
            raise failure(e, f"retrieve {label} by {model.business_key} '{business_id}'")
        if found is None:
            raise HTTPException(status_code=404, detail=f"{model.name} not found: {business_id}")
        return found

    @router.get("/{entity_id}", response_model=EntityWithMetadata, name=get_by_id_route)
    def get_entity_by_id(entity_id: UUID, service: EntityService = Depends(get_entity_service)):
        try:
            return service.get_by_id(model, entity_id)
        except EntityNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except DependencyUnavailableError as e:
            raise unavailable(e)
        except Exception as e:
            raise failure(e, f"retrieve {label} with ID '{entity_id}'")

    @router.put("/{entity_id}", response_model=EntityWithMetadata, name=f"update_{label}")
    def update_entity(
        entity_id: UUID,
        body: Any = Body(None),
        transition: Optional[str] = Query(None),
        service: EntityService = Depends(get_entity_service),
    ):
        entity = validate_entity_body(body, model.name)
        transition_name = normalize_transition(transition)

        try:
            service.get_by_id(model, entity_id)
            if transition_name is not None:
                logger.info(f"Updating {model.name} {entity_id} with transition '{transition_name}'")
                updated = service.update(model, entity_id, entity, transition_name)
            else:
                updated = service.update(model, entity_id, entity)
        except EntityNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except DependencyUnavailableError as e:
            raise unavailable(e)
        except Exception as e:
            raise failure(e, f"update {label} with ID '{entity_id}'")

        logger.info(f"{model.name} updated with ID: {entity_id}")
        return updated

    @router.get("", response_model=List[EntityWithMetadata], name=f"list_{label}")
    def list_entities(
        request: Request,
        state: Optional[str] = Query(None),
        service: EntityService = Depends(get_entity_service),
    ):
        try:
            results = service.search(model, list_filter(model, request))
        except DependencyUnavailableError as e:
            raise unavailable(e)
        except Exception as e:
            raise failure(e, f"query {label} entities")

        # State lives in the metadata, not in the entity record
        if state is not None and state.strip():
            results = [result for result in results if result.state == state]
        logger.info(f"Retrieved {len(results)} {label} entities")
        return results

    @router.delete("/{entity_id}", status_code=204, name=f"delete_{label}")
    def delete_entity(entity_id: UUID, service: EntityService = Depends(get_entity_service)):
        try:
            service.delete(model, entity_id)
        except DependencyUnavailableError as e:
            raise unavailable(e)
        except Exception as e:
            raise failure(e, f"delete {label} with ID '{entity_id}'")
        logger.info(f"Deleted {model.name} with ID: {entity_id}")
        return Response(status_code=204)

    return router
