"""Campaign ROI calculation.

WHAT:
    Compares a campaign's recorded spend (sum of its budgets) with the value
    of the activities attributed to it and reports the return as a
    percentage.

WHY:
    Money stays in `Decimal` end to end and is rendered as plain decimal
    strings ("1000", "1234.5"), so totals never pick up float artifacts.
    Budgets are summed as-is, whatever their currency.

REFERENCES:
    - devcrm/models.py: Campaign, Budget, ActivityCampaign, Activity
    - devcrm/routers/campaigns.py: GET /api/campaigns/{id}/roi
    - devcrm/services/overview.py: average ROI across campaigns
"""

import logging
from datetime import datetime
from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Activity, ActivityCampaign, Budget, Campaign
from ..tenancy import get_scoped, scoped

logger = logging.getLogger(__name__)


def to_decimal(value) -> Decimal:
    """Coerce a SUM() result (None, Decimal, float or int) to Decimal."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def format_decimal(value: Decimal) -> str:
    """Render without exponent or trailing zeros.

    >>> format_decimal(Decimal("1000.00"))
    '1000'
    >>> format_decimal(Decimal("1234.50"))
    '1234.5'
    """
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


def compute_roi(total_cost: Decimal, total_value: Decimal) -> Optional[float]:
    """((value - cost) / cost) * 100 rounded to 2 places; None when cost is 0."""
    if total_cost == 0:
        return None
    percent = (total_value - total_cost) / total_cost * 100
    # Ties round toward positive infinity: 12.345 -> 12.35, -12.345 -> -12.34
    rounding = ROUND_HALF_UP if percent >= 0 else ROUND_HALF_DOWN
    return float(percent.quantize(Decimal("0.01"), rounding=rounding))


def get_campaign_cost(db: Session, tenant_id: UUID, campaign_id: UUID) -> Decimal:
    total = (
        scoped(db, Budget, tenant_id)
        .with_entities(func.sum(Budget.amount))
        .filter(Budget.campaign_id == campaign_id)
        .scalar()
    )
    return to_decimal(total)


def _attributed(db: Session, tenant_id: UUID, campaign_id: UUID, *columns):
    return (
        db.query(*columns)
        .select_from(ActivityCampaign)
        .join(Activity, Activity.id == ActivityCampaign.activity_id)
        .filter(
            ActivityCampaign.tenant_id == tenant_id,
            Activity.tenant_id == tenant_id,
            ActivityCampaign.campaign_id == campaign_id,
        )
    )


def get_campaign_value(db: Session, tenant_id: UUID, campaign_id: UUID) -> Decimal:
    """Sum of `value` over attributed activities; activities without a value are skipped."""
    total = _attributed(db, tenant_id, campaign_id, func.sum(Activity.value)).scalar()
    return to_decimal(total)


def calculate_roi(db: Session, tenant_id: UUID, campaign_id: UUID) -> Optional[dict]:
    """ROI summary for one campaign, or None when the campaign is not in the tenant."""
    campaign = get_scoped(db, Campaign, tenant_id, campaign_id)
    if not campaign:
        return None

    total_cost = get_campaign_cost(db, tenant_id, campaign_id)
    total_value = get_campaign_value(db, tenant_id, campaign_id)

    counts = _attributed(
        db,
        tenant_id,
        campaign_id,
        func.count(func.distinct(Activity.id)),
        func.count(func.distinct(Activity.developer_id)),
    ).one()

    roi = compute_roi(total_cost, total_value)
    logger.info(
        "[ROI] Campaign %s: cost=%s value=%s roi=%s",
        campaign_id, format_decimal(total_cost), format_decimal(total_value), roi,
    )
    return {
        "campaign_id": campaign.id,
        "campaign_name": campaign.name,
        "total_cost": format_decimal(total_cost),
        "total_value": format_decimal(total_value),
        "activity_count": int(counts[0] or 0),
        "developer_count": int(counts[1] or 0),
        "roi": roi,
        "calculated_at": datetime.utcnow(),
    }
