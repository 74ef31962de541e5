"""Organization endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_tenant_id
from ..services import developers as developer_service


router = APIRouter(
    prefix="/api/organizations",
    tags=["Organizations"],
    responses={
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        409: {"model": schemas.ErrorResponse, "description": "Conflict"},
    }
)


@router.get("", response_model=schemas.OrganizationList, summary="List organizations")
def list_organizations(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    items, total = developer_service.list_organizations(db, tenant_id, limit=limit, offset=offset)
    return schemas.OrganizationList(organizations=items, total=total)


@router.post(
    "",
    response_model=schemas.OrganizationOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an organization",
)
def create_organization(
    payload: schemas.OrganizationCreate,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return developer_service.create_organization(
        db,
        tenant_id,
        name=payload.name,
        domain_primary=payload.domain_primary,
        attributes=payload.attributes,
    )
