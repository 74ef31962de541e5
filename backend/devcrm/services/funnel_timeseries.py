"""Funnel statistics bucketed by day, week or month.

Buckets are computed in Python from the mapped activity rows so the same
code runs on PostgreSQL and SQLite. Only buckets that contain at least one
mapped activity are returned; empty periods are not synthesized.
"""

import logging
from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Set
from uuid import UUID

from sqlalchemy.orm import Session

from ..exceptions import InvalidInputError
from ..models import Activity, ActivityType
from .activity_types import FUNNEL_STAGES
from .funnel import mapped_activity_query, drop_rate

logger = logging.getLogger(__name__)

GRANULARITIES = ("day", "week", "month")

# Accepted spellings -> canonical granularity
GRANULARITY_ALIASES = {
    "day": "day",
    "daily": "day",
    "week": "week",
    "weekly": "week",
    "month": "month",
    "monthly": "month",
}


def normalize_granularity(value: str) -> str:
    """Map `daily`/`weekly`/`monthly` (and the canonical names) to day/week/month."""
    canonical = GRANULARITY_ALIASES.get((value or "").strip().lower())
    if canonical is None:
        raise InvalidInputError(
            "Invalid granularity: must be one of day, week, month",
            details=[{"field": "granularity", "message": f"Unsupported value '{value}'"}],
        )
    return canonical


def bucket_start(moment: datetime, granularity: str) -> date:
    """Truncate a timestamp to the first day of its bucket.

    Weeks start on Monday.

    >>> bucket_start(datetime(2025, 1, 8, 15, 30), "week")
    datetime.date(2025, 1, 6)
    >>> bucket_start(datetime(2025, 1, 8), "month")
    datetime.date(2025, 1, 1)
    """
    day = moment.date() if isinstance(moment, datetime) else moment
    if granularity == "day":
        return day
    if granularity == "week":
        return day - timedelta(days=day.weekday())
    if granularity == "month":
        return day.replace(day=1)
    raise InvalidInputError(f"Invalid granularity: {granularity}")


def default_window(granularity: str, today: date = None) -> tuple:
    """Default [from, to] window ending today: 30 days, 12 weeks or 12 months."""
    today = today or datetime.utcnow().date()
    if granularity == "week":
        return today - timedelta(weeks=12), today
    if granularity == "month":
        year, month = today.year, today.month - 12
        while month <= 0:
            month += 12
            year -= 1
        return date(year, month, 1), today
    return today - timedelta(days=29), today


def get_funnel_time_series(
    db: Session,
    tenant_id: UUID,
    from_date: date,
    to_date: date,
    granularity: str,
) -> List[dict]:
    """Per-bucket unique developers and drop rates for each funnel stage.

    Parameters:
        from_date, to_date: inclusive calendar days
        granularity: "day", "week" or "month"

    Returns:
        [{"date": "YYYY-MM-DD", "stages": [{stage_key, unique_developers, drop_rate} x4]}, ...]
        ordered by date.
    """
    if from_date > to_date:
        raise InvalidInputError("Invalid date range: fromDate must be on or before toDate")
    if granularity not in GRANULARITIES:
        granularity = normalize_granularity(granularity)

    start = datetime.combine(from_date, time.min)
    end = datetime.combine(to_date + timedelta(days=1), time.min)

    rows = (
        mapped_activity_query(db, tenant_id, Activity.occurred_at, ActivityType.stage_key, Activity.developer_id)
        .filter(Activity.occurred_at >= start, Activity.occurred_at < end)
        .order_by(Activity.occurred_at.asc())
        .all()
    )

    # bucket -> stage_key -> set of developer ids
    buckets: Dict[date, Dict[str, Set[UUID]]] = OrderedDict()
    for occurred_at, stage_key, developer_id in rows:
        per_stage = buckets.setdefault(bucket_start(occurred_at, granularity), {})
        developers = per_stage.setdefault(stage_key, set())
        # Anonymous activities mark the bucket but count no developer
        if developer_id is not None:
            developers.add(developer_id)

    series = []
    for bucket in sorted(buckets):
        per_stage = buckets[bucket]
        stages = []
        previous = None
        for index, (stage_key, _, _) in enumerate(FUNNEL_STAGES):
            count = len(per_stage.get(stage_key, ()))
            stages.append({
                "stage_key": stage_key,
                "unique_developers": count,
                "drop_rate": drop_rate(previous, count) if index > 0 else None,
            })
            previous = count
        series.append({"date": bucket.isoformat(), "stages": stages})

    logger.info(
        "[FUNNEL] Time series for tenant %s (%s, %s..%s): %d buckets",
        tenant_id, granularity, from_date, to_date, len(series),
    )
    return series
