"""Activity type endpoints (the action→stage map) and funnel stage reference data."""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_tenant_id
from ..exceptions import NotFoundError
from ..services import activity_types as activity_type_service

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api",
    tags=["Activity Types"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
        409: {"model": schemas.ErrorResponse, "description": "Conflict"},
    }
)


@router.get(
    "/funnel-stages",
    response_model=List[schemas.FunnelStageOut],
    summary="List funnel stages",
    description="The four funnel stages in order: awareness, engagement, adoption, advocacy.",
)
def list_funnel_stages(
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return activity_type_service.list_funnel_stages(db)


@router.get(
    "/activity-types",
    response_model=schemas.ActivityTypeList,
    summary="List activity types",
)
def list_activity_types(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    items, total = activity_type_service.list_activity_types(db, tenant_id, limit=limit, offset=offset)
    return schemas.ActivityTypeList(activity_types=items, total=total)


@router.get(
    "/activity-types/actions",
    response_model=schemas.ActionList,
    summary="List recorded actions",
    description="Distinct actions present in the tenant's activities, mapped or not.",
)
def list_actions(
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return schemas.ActionList(actions=activity_type_service.list_distinct_actions(db, tenant_id))


@router.post(
    "/activity-types",
    response_model=schemas.ActivityTypeOut,
    status_code=status.HTTP_201_CREATED,
    summary="Map an action to a funnel stage",
)
def create_activity_type(
    payload: schemas.ActivityTypeCreate,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return activity_type_service.create_activity_type(
        db,
        tenant_id,
        action=payload.action,
        stage_key=payload.stage_key.value if payload.stage_key else None,
        icon_name=payload.icon_name,
        color_class=payload.color_class,
    )


@router.get(
    "/activity-types/{action}",
    response_model=schemas.ActivityTypeOut,
    summary="Get an activity type",
)
def get_activity_type(
    action: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    activity_type = activity_type_service.get_activity_type(db, tenant_id, action)
    if not activity_type:
        raise NotFoundError(f"Activity type '{action}' not found")
    return activity_type


@router.put(
    "/activity-types/{action}",
    response_model=schemas.ActivityTypeOut,
    summary="Update an activity type",
    description="Partial update; send `stageKey: null` to take the action out of the funnel.",
)
def update_activity_type(
    action: str,
    payload: schemas.ActivityTypeUpdate,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("stage_key") is not None:
        changes["stage_key"] = changes["stage_key"].value
    return activity_type_service.update_activity_type(db, tenant_id, action, changes)


@router.delete(
    "/activity-types/{action}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an activity type",
)
def delete_activity_type(
    action: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    activity_type_service.delete_activity_type(db, tenant_id, action)
