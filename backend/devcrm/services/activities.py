"""Activity CRUD.

WHAT:
    Create, list, fetch, update and delete activities, the event log every
    funnel and ROI statistic is computed from.

WHY:
    An activity must point at someone: a developer, an account or an
    anonymous visitor id. Referenced developers and accounts must live in
    the same tenant, and `dedup_key` makes ingestion idempotent.

REFERENCES:
    - devcrm/models.py: Activity
    - devcrm/routers/activities.py: /api/activities
    - devcrm/workers/arq_worker.py: creates activities from plugin events
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import ConflictError, InvalidInputError, NotFoundError
from ..models import Account, Activity, Developer, Resource
from ..tenancy import get_scoped, scoped

logger = logging.getLogger(__name__)

ACTIVITY_ORDER_COLUMNS = {
    "occurredAt": Activity.occurred_at,
    "occurred_at": Activity.occurred_at,
    "recordedAt": Activity.recorded_at,
    "recorded_at": Activity.recorded_at,
    "ingestedAt": Activity.ingested_at,
    "ingested_at": Activity.ingested_at,
}

# Columns a caller may write directly
_WRITABLE_FIELDS = (
    "developer_id",
    "account_id",
    "anon_id",
    "resource_id",
    "action",
    "occurred_at",
    "source",
    "source_ref",
    "category",
    "group_key",
    "confidence",
    "value",
)


def to_naive_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC; convert aware values first."""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def _check_references(db: Session, tenant_id: UUID, data: dict) -> None:
    if data.get("developer_id") is not None and not get_scoped(db, Developer, tenant_id, data["developer_id"]):
        raise NotFoundError("Developer not found")
    if data.get("account_id") is not None and not get_scoped(db, Account, tenant_id, data["account_id"]):
        raise NotFoundError("Account not found")
    if data.get("resource_id") is not None and not get_scoped(db, Resource, tenant_id, data["resource_id"]):
        raise NotFoundError("Resource not found")


def _require_subject(developer_id, account_id, anon_id) -> None:
    if developer_id is None and account_id is None and not anon_id:
        raise InvalidInputError(
            "At least one of developerId, accountId, or anonId must be provided",
            details=[{"field": "developerId", "message": "developerId, accountId or anonId is required"}],
        )


def _to_amount(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        amount = None
    if amount is None or not amount.is_finite():
        raise InvalidInputError("value must be a number", details=[{"field": "value", "message": "must be a number"}])
    return amount


def _check_confidence(confidence) -> None:
    if confidence is not None and not 0.0 <= float(confidence) <= 1.0:
        raise InvalidInputError(
            "Confidence must be between 0.0 and 1.0",
            details=[{"field": "confidence", "message": "must be between 0.0 and 1.0"}],
        )


def create_activity(db: Session, tenant_id: UUID, data: dict) -> Activity:
    """Insert one activity.

    `data` uses snake_case model field names; `metadata` maps to the
    `metadata` JSON column. Raises ConflictError on a duplicate dedup_key.
    """
    _require_subject(data.get("developer_id"), data.get("account_id"), data.get("anon_id"))
    _check_confidence(data.get("confidence"))
    if not data.get("action"):
        raise InvalidInputError("action is required", details=[{"field": "action", "message": "is required"}])
    if not data.get("source"):
        raise InvalidInputError("source is required", details=[{"field": "source", "message": "is required"}])
    if data.get("occurred_at") is None:
        raise InvalidInputError("occurredAt is required", details=[{"field": "occurredAt", "message": "is required"}])
    _check_references(db, tenant_id, data)

    dedup_key = data.get("dedup_key")
    if dedup_key and scoped(db, Activity, tenant_id).filter(Activity.dedup_key == dedup_key).first():
        raise ConflictError(f"Activity with dedup key '{dedup_key}' already exists")

    now = datetime.utcnow()
    activity = Activity(
        tenant_id=tenant_id,
        developer_id=data.get("developer_id"),
        account_id=data.get("account_id"),
        anon_id=data.get("anon_id"),
        resource_id=data.get("resource_id"),
        action=data["action"],
        occurred_at=to_naive_utc(data["occurred_at"]),
        recorded_at=now,
        ingested_at=now,
        source=data["source"],
        source_ref=data.get("source_ref"),
        category=data.get("category"),
        group_key=data.get("group_key"),
        metadata_=data.get("metadata"),
        confidence=data.get("confidence") if data.get("confidence") is not None else 1.0,
        value=_to_amount(data.get("value")),
        dedup_key=dedup_key,
    )
    db.add(activity)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Activity with dedup key '{dedup_key}' already exists")
    db.refresh(activity)
    return activity


def list_activities(
    db: Session,
    tenant_id: UUID,
    developer_id: Optional[UUID] = None,
    account_id: Optional[UUID] = None,
    resource_id: Optional[UUID] = None,
    action: Optional[str] = None,
    source: Optional[str] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
    order_by: str = "occurredAt",
    order_direction: str = "desc",
) -> Tuple[List[Activity], int]:
    from_date = to_naive_utc(from_date)
    to_date = to_naive_utc(to_date)
    if from_date and to_date and from_date > to_date:
        raise InvalidInputError(
            "fromDate must be on or before toDate",
            details=[{"field": "fromDate", "message": "must be on or before toDate"}],
        )

    query = scoped(db, Activity, tenant_id)
    if developer_id is not None:
        query = query.filter(Activity.developer_id == developer_id)
    if account_id is not None:
        query = query.filter(Activity.account_id == account_id)
    if resource_id is not None:
        query = query.filter(Activity.resource_id == resource_id)
    if action:
        query = query.filter(Activity.action == action)
    if source:
        query = query.filter(Activity.source == source)
    if from_date:
        query = query.filter(Activity.occurred_at >= from_date)
    if to_date:
        query = query.filter(Activity.occurred_at <= to_date)

    total = query.count()
    column = ACTIVITY_ORDER_COLUMNS.get(order_by, Activity.occurred_at)
    ordering = column.asc() if order_direction == "asc" else column.desc()
    items = query.order_by(ordering, Activity.id.asc()).limit(limit).offset(offset).all()
    return items, total


def get_activity(db: Session, tenant_id: UUID, activity_id: UUID) -> Activity:
    activity = get_scoped(db, Activity, tenant_id, activity_id)
    if not activity:
        raise NotFoundError("Activity not found")
    return activity


def update_activity(db: Session, tenant_id: UUID, activity_id: UUID, changes: dict) -> Activity:
    """Apply a partial correction. `dedup_key` and `tenant_id` are immutable."""
    activity = get_activity(db, tenant_id, activity_id)
    _check_confidence(changes.get("confidence"))
    _check_references(db, tenant_id, changes)
    _require_subject(
        *(changes[key] if key in changes else getattr(activity, key) for key in ("developer_id", "account_id", "anon_id"))
    )

    for field in _WRITABLE_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field in ("action", "source", "occurred_at", "confidence") and value is None:
            continue
        if field == "occurred_at":
            value = to_naive_utc(value)
        if field == "value" and value is not None:
            value = _to_amount(value)
        setattr(activity, field, value)
    if "metadata" in changes:
        activity.metadata_ = changes["metadata"]

    db.commit()
    db.refresh(activity)
    return activity


def delete_activity(db: Session, tenant_id: UUID, activity_id: UUID) -> None:
    activity = get_activity(db, tenant_id, activity_id)
    db.delete(activity)
    db.commit()
    logger.info("[ACTIVITIES] Deleted activity %s", activity_id)
