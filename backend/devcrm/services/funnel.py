"""Funnel stage statistics.

WHAT:
    Point-in-time funnel snapshot over all of a tenant's activities:
    distinct developers and activity rows per stage, drop rate between
    adjacent stages and the overall awareness→advocacy conversion.

WHY:
    The dashboard's funnel chart reads this single structure. Stages are
    always returned in fixed order and zero-filled, so the chart never has
    to guess which stages are missing.

REFERENCES:
    - devcrm/services/activity_types.py: FUNNEL_STAGES and the action→stage map
    - devcrm/services/funnel_timeseries.py: the same calculation per time bucket
    - devcrm/routers/funnel.py: GET /api/funnel
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from ..exceptions import InvalidInputError
from ..models import Activity, ActivityType, FunnelStageKey
from .activity_types import FUNNEL_STAGES

logger = logging.getLogger(__name__)


def drop_rate(previous_count: Optional[int], current_count: int) -> Optional[float]:
    """Percentage of developers lost between two adjacent stages.

    None when there is no previous stage or it has no developers. The
    result is clamped to [0, 100]: a later stage can hold developers who
    never showed up in the earlier one, which would otherwise produce a
    negative rate.

    >>> drop_rate(100, 40)
    60.0
    >>> drop_rate(0, 5) is None
    True
    >>> drop_rate(10, 15)
    0.0
    """
    if previous_count is None or previous_count == 0:
        return None
    rate = (previous_count - current_count) / previous_count * 100
    return min(max(rate, 0.0), 100.0)


def conversion_rate(first_count: int, last_count: int) -> float:
    """Awareness→advocacy conversion as a percentage in [0, 100]; 0 when nobody entered."""
    if first_count <= 0:
        return 0.0
    return min(max(last_count / first_count * 100, 0.0), 100.0)


def mapped_activity_query(db: Session, tenant_id: UUID, *columns):
    """Query over the tenant's activities joined to their stage mapping."""
    return (
        db.query(*columns)
        .select_from(Activity)
        .join(
            ActivityType,
            and_(
                ActivityType.action == Activity.action,
                ActivityType.tenant_id == Activity.tenant_id,
            ),
        )
        .filter(Activity.tenant_id == tenant_id)
        .filter(ActivityType.stage_key.isnot(None))
    )


def get_funnel_stats(db: Session, tenant_id: UUID) -> dict:
    """Funnel snapshot for the tenant.

    Returns:
        {
          "stages": [ {stage_key, title, order_no, unique_developers,
                       total_activities, previous_stage_count, drop_rate} x4 ],
          "total_developers": int,
          "overall_conversion_rate": float,
        }
    """
    rows = (
        mapped_activity_query(
            db,
            tenant_id,
            ActivityType.stage_key,
            func.count(func.distinct(Activity.developer_id)).label("unique_developers"),
            func.count(Activity.id).label("total_activities"),
        )
        .group_by(ActivityType.stage_key)
        .all()
    )
    by_stage: Dict[str, tuple] = {
        row.stage_key: (int(row.unique_developers or 0), int(row.total_activities or 0))
        for row in rows
    }

    stages: List[dict] = []
    previous: Optional[int] = None
    for index, (stage_key, order_no, title) in enumerate(FUNNEL_STAGES):
        unique_developers, total_activities = by_stage.get(stage_key, (0, 0))
        stages.append({
            "stage_key": stage_key,
            "title": title,
            "order_no": order_no,
            "unique_developers": unique_developers,
            "total_activities": total_activities,
            "previous_stage_count": previous if index > 0 else None,
            "drop_rate": drop_rate(previous, unique_developers) if index > 0 else None,
        })
        previous = unique_developers

    total_developers = (
        mapped_activity_query(db, tenant_id, func.count(func.distinct(Activity.developer_id))).scalar() or 0
    )

    result = {
        "stages": stages,
        "total_developers": int(total_developers),
        "overall_conversion_rate": conversion_rate(
            stages[0]["unique_developers"], stages[-1]["unique_developers"]
        ),
        "period_start": None,
        "period_end": datetime.utcnow(),
    }
    logger.info(
        "[FUNNEL] Stats for tenant %s: %s",
        tenant_id,
        [s["unique_developers"] for s in stages],
    )
    return result


def calculate_drop_rate(db: Session, tenant_id: UUID, stage_key: str) -> dict:
    """Drop rate of a single stage relative to the stage before it.

    Raises InvalidInputError for the first stage (it has no predecessor)
    and for unknown stage keys.
    """
    keys = [key for key, _, _ in FUNNEL_STAGES]
    if stage_key not in keys:
        raise InvalidInputError(f"Unknown funnel stage: {stage_key}")
    if stage_key == FunnelStageKey.awareness.value:
        raise InvalidInputError("Cannot calculate drop rate for the first funnel stage")

    previous_key = keys[keys.index(stage_key) - 1]
    rows = (
        mapped_activity_query(
            db,
            tenant_id,
            ActivityType.stage_key,
            func.count(func.distinct(Activity.developer_id)).label("unique_developers"),
        )
        .filter(ActivityType.stage_key.in_([previous_key, stage_key]))
        .group_by(ActivityType.stage_key)
        .all()
    )
    counts = {row.stage_key: int(row.unique_developers or 0) for row in rows}
    previous_count = counts.get(previous_key, 0)
    current_count = counts.get(stage_key, 0)
    return {
        "stage_key": stage_key,
        "previous_stage_count": previous_count,
        "unique_developers": current_count,
        "drop_rate": drop_rate(previous_count, current_count),
    }
