"""Dashboard overview endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_tenant_id
from ..services.overview import get_overview_stats, get_overview_timeline


router = APIRouter(
    prefix="/api/overview",
    tags=["Overview"],
    responses={
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
    }
)


@router.get(
    "/stats",
    response_model=schemas.OverviewStatsOut,
    response_model_by_alias=True,
    summary="Headline counts",
    description="Developer, activity and campaign totals plus the mean ROI of campaigns with spend.",
)
def overview_stats(
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return schemas.OverviewStatsOut(stats=get_overview_stats(db, tenant_id))


@router.get(
    "/timeline",
    response_model=schemas.OverviewTimelineOut,
    summary="Daily activity timeline",
    description="One entry per day of the window, zero-filled.",
)
def overview_timeline(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return schemas.OverviewTimelineOut(timeline=get_overview_timeline(db, tenant_id, days=days))
