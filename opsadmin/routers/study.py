import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from ..core.errors import DependencyUnavailableError, EntityNotFoundError
from ..dependencies import get_entity_service
from ..models.conditions import Operation, SimpleCondition, all_of, equals
from ..models.envelope import EntityWithMetadata
from ..models.registry import STUDY
from ..services.entity_service import EntityService
from .common import failure, unavailable


logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"/{STUDY.path}", tags=[STUDY.name])


class StudySearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phase: Optional[str] = None
    study_type: Optional[str] = Field(default=None, alias="studyType")
    sponsor_name: Optional[str] = Field(default=None, alias="sponsorName")


class StudyEnrollmentSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    study_id: Optional[str] = Field(default=None, alias="studyId")
    planned_enrollment: Optional[int] = Field(default=None, alias="plannedEnrollment")
    current_enrollment: Optional[int] = Field(default=None, alias="currentEnrollment")
    actual_enrollment: Optional[int] = Field(default=None, alias="actualEnrollment")
    state: Optional[str] = None


def _present(value: Optional[str]) -> bool:
    return value is not None and bool(value.strip())


def search_condition(search: StudySearchRequest):
    conditions = []
    if _present(search.phase):
        conditions.append(equals("phase", search.phase))
    if _present(search.study_type):
        conditions.append(equals("studyType", search.study_type))
    if _present(search.sponsor_name):
        conditions.append(SimpleCondition("$.sponsor.name", Operation.CONTAINS, search.sponsor_name))
    return all_of(conditions)


@router.post("/search", response_model=List[EntityWithMetadata])
def search_studies(search: StudySearchRequest, service: EntityService = Depends(get_entity_service)):
    try:
        results = service.search(STUDY, search_condition(search))
    except DependencyUnavailableError as e:
        raise unavailable(e)
    except Exception as e:
        raise failure(e, "search studies")
    logger.info(f"Found {len(results)} studies matching criteria")
    return results


@router.get("/{study_id}/enrollment", response_model=StudyEnrollmentSummary)
def get_study_enrollment(study_id: UUID, service: EntityService = Depends(get_entity_service)):
    try:
        study = service.get_by_id(STUDY, study_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DependencyUnavailableError as e:
        raise unavailable(e)
    except Exception as e:
        raise failure(e, f"retrieve enrollment summary for study '{study_id}'")

    return StudyEnrollmentSummary(
        study_id=study.entity.get("studyId"),
        planned_enrollment=study.entity.get("plannedEnrollment"),
        current_enrollment=study.entity.get("currentEnrollment"),
        actual_enrollment=study.entity.get("actualEnrollment"),
        state=study.state,
    )
