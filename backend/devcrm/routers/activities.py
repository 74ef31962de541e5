"""Activity endpoints.

Activities are the event log behind every funnel and ROI number. Writes go
through services/activities.py, which enforces the subject rule (developer,
account or anonymous id), tenant-local references and `dedupKey` uniqueness.
"""

import logging
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import require_scope
from ..services import activities as activity_service
from ..tenancy import parse_uuid

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/activities",
    tags=["Activities"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        403: {"model": schemas.ErrorResponse, "description": "Forbidden"},
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
        409: {"model": schemas.ErrorResponse, "description": "Conflict"},
    }
)


# Session users always pass; API tokens need the matching scope
can_read = require_scope("activities:read")
can_write = require_scope("activities:write")


def _optional_uuid(value: Optional[str], label: str) -> Optional[UUID]:
    return parse_uuid(value, label) if value else None


@router.get("", response_model=schemas.ActivityList, summary="List activities")
def list_activities(
    developer_id: Optional[str] = Query(None, alias="developerId"),
    account_id: Optional[str] = Query(None, alias="accountId"),
    resource_id: Optional[str] = Query(None, alias="resourceId"),
    action: Optional[str] = Query(None),
    source: Optional[str] = Query(None),
    from_date: Optional[datetime] = Query(None, alias="fromDate"),
    to_date: Optional[datetime] = Query(None, alias="toDate"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    order_by: Literal["occurredAt", "recordedAt", "ingestedAt"] = Query("occurredAt", alias="orderBy"),
    order_direction: Literal["asc", "desc"] = Query("desc", alias="orderDirection"),
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(can_read),
):
    items, total = activity_service.list_activities(
        db,
        tenant_id,
        developer_id=_optional_uuid(developer_id, "developer"),
        account_id=_optional_uuid(account_id, "account"),
        resource_id=_optional_uuid(resource_id, "resource"),
        action=action,
        source=source,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
        offset=offset,
        order_by=order_by,
        order_direction=order_direction,
    )
    return schemas.ActivityList(activities=items, total=total)


@router.post(
    "",
    response_model=schemas.ActivityOut,
    status_code=status.HTTP_201_CREATED,
    summary="Record an activity",
    description="""
    At least one of `developerId`, `accountId` or `anonId` is required.
    A repeated `dedupKey` answers 409 so ingestion can be retried safely.
    """,
)
def create_activity(
    payload: schemas.ActivityCreate,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(can_write),
):
    return activity_service.create_activity(db, tenant_id, payload.model_dump())


@router.get("/{activity_id}", response_model=schemas.ActivityOut, summary="Get an activity")
def get_activity(
    activity_id: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(can_read),
):
    return activity_service.get_activity(db, tenant_id, parse_uuid(activity_id, "activity"))


@router.put("/{activity_id}", response_model=schemas.ActivityOut, summary="Correct an activity")
def update_activity(
    activity_id: str,
    payload: schemas.ActivityUpdate,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(can_write),
):
    return activity_service.update_activity(
        db, tenant_id, parse_uuid(activity_id, "activity"), payload.model_dump(exclude_unset=True)
    )


@router.delete("/{activity_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete an activity")
def delete_activity(
    activity_id: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(can_write),
):
    activity_service.delete_activity(db, tenant_id, parse_uuid(activity_id, "activity"))
