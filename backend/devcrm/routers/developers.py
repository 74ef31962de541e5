"""Developer endpoints: CRUD, identifiers, duplicates, merge, activities and stats."""

import logging
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_current_user
from ..models import User
from ..services import developers as developer_service
from ..services import identity as identity_service
from ..tenancy import parse_uuid

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/developers",
    tags=["Developers"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
        409: {"model": schemas.ErrorResponse, "description": "Conflict"},
    }
)


@router.get("", response_model=schemas.DeveloperList, summary="List developers")
def list_developers(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    search: Optional[str] = Query(None, description="Case-insensitive match on name or email"),
    org_id: Optional[str] = Query(None, alias="orgId"),
    order_by: Literal["displayName", "primaryEmail", "createdAt", "updatedAt"] = Query("createdAt", alias="orderBy"),
    order_direction: Literal["asc", "desc"] = Query("desc", alias="orderDirection"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, total = developer_service.list_developers(
        db,
        current_user.tenant_id,
        limit=limit,
        offset=offset,
        search=search,
        org_id=parse_uuid(org_id, "organization") if org_id else None,
        order_by=order_by,
        order_direction=order_direction,
    )
    return schemas.DeveloperList(developers=items, total=total)


@router.post(
    "",
    response_model=schemas.DeveloperOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a developer",
)
def create_developer(
    payload: schemas.DeveloperCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return developer_service.create_developer(
        db,
        current_user.tenant_id,
        display_name=payload.display_name,
        primary_email=payload.primary_email,
        org_id=payload.org_id,
        consent_analytics=payload.consent_analytics,
        tags=payload.tags,
    )


@router.get("/{developer_id}", response_model=schemas.DeveloperOut, summary="Get a developer")
def get_developer(
    developer_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return developer_service.get_developer(db, current_user.tenant_id, parse_uuid(developer_id, "developer"))


@router.put("/{developer_id}", response_model=schemas.DeveloperOut, summary="Update a developer")
def update_developer(
    developer_id: str,
    payload: schemas.DeveloperUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return developer_service.update_developer(
        db,
        current_user.tenant_id,
        parse_uuid(developer_id, "developer"),
        payload.model_dump(exclude_unset=True),
    )


@router.delete("/{developer_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a developer")
def delete_developer(
    developer_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    developer_service.delete_developer(db, current_user.tenant_id, parse_uuid(developer_id, "developer"))


@router.get(
    "/{developer_id}/activities",
    response_model=schemas.ActivityList,
    summary="Activities of a developer",
    description="Newest first.",
)
def list_developer_activities(
    developer_id: str,
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, total = developer_service.list_developer_activities(
        db, current_user.tenant_id, parse_uuid(developer_id, "developer"), limit=limit, offset=offset
    )
    return schemas.ActivityList(activities=items, total=total)


@router.get(
    "/{developer_id}/stats",
    response_model=schemas.DeveloperStats,
    summary="Activity stats of a developer",
    description="Total activities and per-stage counts using the tenant's action→stage map.",
)
def developer_stats(
    developer_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return developer_service.get_developer_stats(db, current_user.tenant_id, parse_uuid(developer_id, "developer"))


# ============================================================================
# Identifiers
# ============================================================================

@router.get(
    "/{developer_id}/identifiers",
    response_model=schemas.IdentifierList,
    summary="List identifiers",
)
def list_identifiers(
    developer_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    identifiers = identity_service.list_identifiers(db, current_user.tenant_id, parse_uuid(developer_id, "developer"))
    return schemas.IdentifierList(identifiers=identifiers)


@router.post(
    "/{developer_id}/identifiers",
    response_model=schemas.IdentifierOut,
    status_code=status.HTTP_201_CREATED,
    summary="Attach an identifier",
    description="""
    Attach an email, domain, phone or other identifier to a developer.

    Re-adding a value the developer already owns refreshes it. A value owned
    by another developer answers 409; merge the developers to combine them.
    """,
)
def add_identifier(
    developer_id: str,
    payload: schemas.IdentifierCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return identity_service.add_identifier(
        db,
        current_user.tenant_id,
        parse_uuid(developer_id, "developer"),
        payload.kind,
        payload.value,
        confidence=payload.confidence,
        attributes=payload.attributes,
    )


@router.delete(
    "/{developer_id}/identifiers/{identifier_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove an identifier",
)
def remove_identifier(
    developer_id: str,
    identifier_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    identity_service.remove_identifier(
        db,
        current_user.tenant_id,
        parse_uuid(developer_id, "developer"),
        parse_uuid(identifier_id, "identifier"),
    )


# ============================================================================
# Duplicates & merge
# ============================================================================

@router.get(
    "/{developer_id}/duplicates",
    response_model=schemas.DuplicateList,
    summary="Find likely duplicates",
    description="Developers sharing an email with this one, most confident first.",
)
def find_duplicates(
    developer_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    candidates = identity_service.find_duplicates(db, current_user.tenant_id, parse_uuid(developer_id, "developer"))
    return schemas.DuplicateList(candidates=candidates)


@router.post(
    "/{developer_id}/merge",
    response_model=schemas.DeveloperOut,
    summary="Merge another developer into this one",
    description="""
    Moves identifiers, accounts and activities from `fromDeveloperId` to this
    developer, unions tags, records a merge log and deletes the source.
    """,
)
def merge_developers(
    developer_id: str,
    payload: schemas.MergeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return identity_service.merge_developers(
        db,
        current_user.tenant_id,
        parse_uuid(developer_id, "developer"),
        payload.from_developer_id,
        reason=payload.reason,
        merged_by=current_user.id,
    )
