"""
Funnel router
-------------
Purpose:
- Serve the funnel dashboard: a point-in-time snapshot of the four stages
  and the same statistics bucketed by day, week or month.
Design choices:
- All math lives in services/funnel.py and services/funnel_timeseries.py;
  the routes only resolve query parameters and defaults.
- `granularity` and its `interval` alias both accept day/week/month and
  daily/weekly/monthly.
"""

import logging
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_tenant_id
from ..services.funnel import calculate_drop_rate, get_funnel_stats
from ..services.funnel_timeseries import default_window, get_funnel_time_series, normalize_granularity

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/funnel",
    tags=["Funnel"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
    }
)


@router.get(
    "",
    response_model=schemas.FunnelStatsOut,
    summary="Funnel snapshot",
    description="""
    Unique developers and activity counts for awareness, engagement,
    adoption and advocacy, with the drop rate between consecutive stages
    and the overall awareness-to-advocacy conversion rate.
    """,
)
def funnel_stats(
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return get_funnel_stats(db, tenant_id)


@router.get(
    "/timeline",
    response_model=schemas.FunnelTimelineOut,
    summary="Funnel time series",
    description="""
    Funnel statistics per day, week (Monday start) or month. Both dates are
    inclusive. When omitted the window ends today and spans 30 days, 12 weeks
    or 12 months depending on the granularity. Buckets without activity are
    omitted.
    """,
)
def funnel_timeline(
    from_date: Optional[date] = Query(None, alias="fromDate"),
    to_date: Optional[date] = Query(None, alias="toDate"),
    granularity: Optional[str] = Query(None, description="day | week | month"),
    interval: Optional[str] = Query(None, description="Alias of granularity: daily | weekly | monthly"),
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    resolved = normalize_granularity(granularity or interval or "day")
    default_from, default_to = default_window(resolved, today=to_date)
    from_date = from_date or default_from
    to_date = to_date or default_to

    timeline = get_funnel_time_series(db, tenant_id, from_date, to_date, resolved)
    return schemas.FunnelTimelineOut(
        granularity=resolved,
        from_date=from_date,
        to_date=to_date,
        timeline=timeline,
    )


@router.get(
    "/stages/{stage_key}/drop-rate",
    response_model=schemas.StageDropRate,
    summary="Drop rate of one stage",
    description="Not defined for awareness, which has no preceding stage (400).",
)
def stage_drop_rate(
    stage_key: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return calculate_drop_rate(db, tenant_id, stage_key)
