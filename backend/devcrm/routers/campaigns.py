"""
Campaigns router
----------------
Purpose:
- CRUD for campaigns plus their budgets (cost lines), linked resources and
  attributed activities.
- `GET /api/campaigns/{id}/roi` returns cost, value and ROI of a campaign.
Design choices:
- Money leaves the API as plain decimal strings (`"1000"`, `"1234.5"`) so
  clients never see float rounding.
- Campaigns of another tenant answer 404 exactly like missing ones.
"""

import logging
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_settings, get_tenant_id
from ..exceptions import NotFoundError
from ..services import campaigns as campaign_service
from ..services.roi import calculate_roi
from ..tenancy import parse_uuid

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/campaigns",
    tags=["Campaigns"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
        409: {"model": schemas.ErrorResponse, "description": "Conflict"},
    }
)


def _attributed(activity, weight) -> schemas.AttributedActivityOut:
    base = schemas.ActivityOut.model_validate(activity).model_dump()
    return schemas.AttributedActivityOut(**base, weight=float(weight))


@router.get("", response_model=schemas.CampaignList, summary="List campaigns")
def list_campaigns(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    channel: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Case-insensitive name match"),
    order_by: Literal["name", "startDate", "endDate", "createdAt", "updatedAt"] = Query("createdAt", alias="orderBy"),
    order_direction: Literal["asc", "desc"] = Query("desc", alias="orderDirection"),
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    items, total = campaign_service.list_campaigns(
        db,
        tenant_id,
        limit=limit,
        offset=offset,
        channel=channel,
        search=search,
        order_by=order_by,
        order_direction=order_direction,
    )
    return schemas.CampaignList(campaigns=items, total=total)


@router.post(
    "",
    response_model=schemas.CampaignOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a campaign",
)
def create_campaign(
    payload: schemas.CampaignCreate,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    campaign = campaign_service.create_campaign(db, tenant_id, payload.model_dump())
    logger.info("[CAMPAIGNS] Created campaign %s for tenant %s", campaign.id, tenant_id)
    return campaign


@router.get("/{campaign_id}", response_model=schemas.CampaignOut, summary="Get a campaign")
def get_campaign(
    campaign_id: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return campaign_service.get_campaign(db, tenant_id, parse_uuid(campaign_id, "campaign"))


@router.put("/{campaign_id}", response_model=schemas.CampaignOut, summary="Update a campaign")
def update_campaign(
    campaign_id: str,
    payload: schemas.CampaignUpdate,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return campaign_service.update_campaign(
        db, tenant_id, parse_uuid(campaign_id, "campaign"), payload.model_dump(exclude_unset=True)
    )


@router.delete("/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a campaign")
def delete_campaign(
    campaign_id: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    campaign_service.delete_campaign(db, tenant_id, parse_uuid(campaign_id, "campaign"))


# ============================================================================
# ROI
# ============================================================================

@router.get(
    "/{campaign_id}/roi",
    response_model=schemas.CampaignROI,
    summary="Campaign ROI",
    description="""
    `roi = (totalValue - totalCost) / totalCost * 100`, rounded to 2 places.
    `roi` is null when the campaign has no spend.
    """,
)
def campaign_roi(
    campaign_id: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    summary = calculate_roi(db, tenant_id, parse_uuid(campaign_id, "campaign"))
    if summary is None:
        raise NotFoundError("Campaign not found")
    return summary


# ============================================================================
# Budgets
# ============================================================================

@router.get("/{campaign_id}/budgets", response_model=schemas.BudgetList, summary="List budget lines")
def list_budgets(
    campaign_id: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    budgets = campaign_service.list_budgets(db, tenant_id, parse_uuid(campaign_id, "campaign"))
    return schemas.BudgetList(budgets=budgets, total=len(budgets))


@router.post(
    "/{campaign_id}/budgets",
    response_model=schemas.BudgetOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add a budget line",
)
def add_budget(
    campaign_id: str,
    payload: schemas.BudgetCreate,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return campaign_service.add_budget(
        db,
        tenant_id,
        parse_uuid(campaign_id, "campaign"),
        payload.model_dump(),
        default_currency=get_settings().DEFAULT_CURRENCY,
    )


@router.delete(
    "/{campaign_id}/budgets/{budget_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a budget line",
)
def delete_budget(
    campaign_id: str,
    budget_id: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    campaign_service.delete_budget(
        db, tenant_id, parse_uuid(campaign_id, "campaign"), parse_uuid(budget_id, "budget")
    )


# ============================================================================
# Attribution
# ============================================================================

@router.get(
    "/{campaign_id}/activities",
    response_model=schemas.AttributedActivityList,
    summary="Attributed activities",
)
def list_campaign_activities(
    campaign_id: str,
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    rows, total = campaign_service.list_campaign_activities(
        db, tenant_id, parse_uuid(campaign_id, "campaign"), limit=limit, offset=offset
    )
    return schemas.AttributedActivityList(
        activities=[_attributed(activity, weight) for activity, weight in rows],
        total=total,
    )


@router.post(
    "/{campaign_id}/activities",
    response_model=schemas.AttributedActivityOut,
    status_code=status.HTTP_201_CREATED,
    summary="Attribute an activity",
)
def attribute_activity(
    campaign_id: str,
    payload: schemas.AttributionCreate,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    link = campaign_service.attribute_activity(
        db, tenant_id, parse_uuid(campaign_id, "campaign"), payload.activity_id, weight=payload.weight
    )
    return _attributed(link.activity, link.weight)


@router.delete(
    "/{campaign_id}/activities/{activity_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove an attribution",
)
def remove_attribution(
    campaign_id: str,
    activity_id: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    campaign_service.remove_attribution(
        db, tenant_id, parse_uuid(campaign_id, "campaign"), parse_uuid(activity_id, "activity")
    )


# ============================================================================
# Resources
# ============================================================================

@router.get("/{campaign_id}/resources", response_model=schemas.ResourceList, summary="Linked resources")
def list_campaign_resources(
    campaign_id: str,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    items, total = campaign_service.list_campaign_resources(
        db, tenant_id, parse_uuid(campaign_id, "campaign"), limit=limit, offset=offset
    )
    return schemas.ResourceList(resources=items, total=total)
