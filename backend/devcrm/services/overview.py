"""Dashboard overview: headline counts and a daily activity timeline."""

import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..models import Activity, Campaign, Developer
from ..tenancy import scoped
from .roi import calculate_roi

logger = logging.getLogger(__name__)


def get_overview_stats(db: Session, tenant_id: UUID) -> dict:
    """Totals of developers, activities and campaigns plus the mean campaign ROI.

    Campaigns without spend have no ROI and are left out of the average;
    the average is None when no campaign has one.
    """
    total_developers = scoped(db, Developer, tenant_id).count()
    total_activities = scoped(db, Activity, tenant_id).count()
    campaign_ids = [row.id for row in scoped(db, Campaign, tenant_id).with_entities(Campaign.id).all()]

    rois = []
    for campaign_id in campaign_ids:
        summary = calculate_roi(db, tenant_id, campaign_id)
        if summary and summary["roi"] is not None:
            rois.append(summary["roi"])

    average_roi: Optional[float] = round(sum(rois) / len(rois), 2) if rois else None
    return {
        "total_developers": total_developers,
        "total_activities": total_activities,
        "total_campaigns": len(campaign_ids),
        "average_roi": average_roi,
    }


def get_overview_timeline(db: Session, tenant_id: UUID, days: int = 30, today: Optional[date] = None) -> List[dict]:
    """Per-day activity count and distinct developer count for the last `days` days.

    Every day in the window is present, with zeros when nothing happened.
    """
    today = today or datetime.utcnow().date()
    first_day = today - timedelta(days=days - 1)
    start = datetime.combine(first_day, time.min)
    end = datetime.combine(today + timedelta(days=1), time.min)

    rows = (
        scoped(db, Activity, tenant_id)
        .with_entities(Activity.occurred_at, Activity.developer_id)
        .filter(Activity.occurred_at >= start, Activity.occurred_at < end)
        .all()
    )

    per_day = {first_day + timedelta(days=i): {"activities": 0, "developers": set()} for i in range(days)}
    for occurred_at, developer_id in rows:
        bucket = per_day.get(occurred_at.date())
        if bucket is None:
            continue
        bucket["activities"] += 1
        if developer_id is not None:
            bucket["developers"].add(developer_id)

    return [
        {"date": day.isoformat(), "activities": data["activities"], "developers": len(data["developers"])}
        for day, data in sorted(per_day.items())
    ]
