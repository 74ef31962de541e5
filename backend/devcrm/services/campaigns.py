"""Campaigns, their budgets, resources and activity attribution."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import ConflictError, InvalidInputError, NotFoundError
from ..models import Activity, ActivityCampaign, Budget, Campaign, Resource
from ..tenancy import LIKE_ESCAPE, contains_pattern, get_scoped, scoped

logger = logging.getLogger(__name__)

CAMPAIGN_ORDER_COLUMNS = {
    "name": Campaign.name,
    "startDate": Campaign.start_date,
    "endDate": Campaign.end_date,
    "createdAt": Campaign.created_at,
    "updatedAt": Campaign.updated_at,
}


def _check_dates(start_date, end_date) -> None:
    if start_date and end_date and start_date > end_date:
        raise InvalidInputError(
            "startDate must be on or before endDate",
            details=[{"field": "startDate", "message": "must be on or before endDate"}],
        )


def _check_name_free(db: Session, tenant_id: UUID, name: str, exclude_id: Optional[UUID] = None) -> None:
    query = scoped(db, Campaign, tenant_id).filter(Campaign.name == name)
    if exclude_id is not None:
        query = query.filter(Campaign.id != exclude_id)
    if query.first():
        raise ConflictError(f"Campaign with name '{name}' already exists")


# ============================================================================
# Campaigns
# ============================================================================

def create_campaign(db: Session, tenant_id: UUID, data: dict) -> Campaign:
    _check_dates(data.get("start_date"), data.get("end_date"))
    _check_name_free(db, tenant_id, data["name"])

    campaign = Campaign(
        tenant_id=tenant_id,
        name=data["name"],
        channel=data.get("channel"),
        start_date=data.get("start_date"),
        end_date=data.get("end_date"),
        budget_total=data.get("budget_total"),
        attributes=data.get("attributes"),
    )
    db.add(campaign)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Campaign with name '{data['name']}' already exists")
    db.refresh(campaign)
    logger.info("[CAMPAIGNS] Created campaign %s (%s)", campaign.id, campaign.name)
    return campaign


def list_campaigns(
    db: Session,
    tenant_id: UUID,
    limit: int = 50,
    offset: int = 0,
    channel: Optional[str] = None,
    search: Optional[str] = None,
    order_by: str = "createdAt",
    order_direction: str = "desc",
) -> Tuple[List[Campaign], int]:
    query = scoped(db, Campaign, tenant_id)
    if channel:
        query = query.filter(Campaign.channel == channel)
    if search:
        query = query.filter(func.lower(Campaign.name).like(contains_pattern(search), escape=LIKE_ESCAPE))

    total = query.count()
    column = CAMPAIGN_ORDER_COLUMNS.get(order_by, Campaign.created_at)
    ordering = column.asc() if order_direction == "asc" else column.desc()
    items = query.order_by(ordering, Campaign.id.asc()).limit(limit).offset(offset).all()
    return items, total


def get_campaign(db: Session, tenant_id: UUID, campaign_id: UUID) -> Campaign:
    campaign = get_scoped(db, Campaign, tenant_id, campaign_id)
    if not campaign:
        raise NotFoundError("Campaign not found")
    return campaign


def update_campaign(db: Session, tenant_id: UUID, campaign_id: UUID, changes: dict) -> Campaign:
    campaign = get_campaign(db, tenant_id, campaign_id)

    start_date = changes["start_date"] if "start_date" in changes else campaign.start_date
    end_date = changes["end_date"] if "end_date" in changes else campaign.end_date
    _check_dates(start_date, end_date)
    if changes.get("name") and changes["name"] != campaign.name:
        _check_name_free(db, tenant_id, changes["name"], exclude_id=campaign.id)

    for field in ("name", "channel", "start_date", "end_date", "budget_total", "attributes"):
        if field not in changes:
            continue
        if field == "name" and not changes[field]:
            continue
        setattr(campaign, field, changes[field])
    campaign.updated_at = datetime.utcnow()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Campaign with this name already exists")
    db.refresh(campaign)
    return campaign


def delete_campaign(db: Session, tenant_id: UUID, campaign_id: UUID) -> None:
    """Delete a campaign with its budgets and attributions; activities stay."""
    campaign = get_campaign(db, tenant_id, campaign_id)
    db.delete(campaign)
    db.commit()
    logger.info("[CAMPAIGNS] Deleted campaign %s", campaign_id)


# ============================================================================
# Budgets
# ============================================================================

def list_budgets(db: Session, tenant_id: UUID, campaign_id: UUID) -> List[Budget]:
    get_campaign(db, tenant_id, campaign_id)
    return (
        scoped(db, Budget, tenant_id)
        .filter(Budget.campaign_id == campaign_id)
        .order_by(Budget.spent_at.desc(), Budget.created_at.desc())
        .all()
    )


def add_budget(db: Session, tenant_id: UUID, campaign_id: UUID, data: dict, default_currency: str = "JPY") -> Budget:
    get_campaign(db, tenant_id, campaign_id)
    amount = Decimal(str(data["amount"]))
    if amount < 0:
        raise InvalidInputError(
            "Budget amount must be non-negative",
            details=[{"field": "amount", "message": "must be greater than or equal to 0"}],
        )
    budget = Budget(
        tenant_id=tenant_id,
        campaign_id=campaign_id,
        category=data["category"],
        amount=amount,
        currency=(data.get("currency") or default_currency).upper(),
        spent_at=data["spent_at"],
        source=data.get("source"),
        memo=data.get("memo"),
        meta=data.get("meta"),
    )
    db.add(budget)
    db.commit()
    db.refresh(budget)
    return budget


def delete_budget(db: Session, tenant_id: UUID, campaign_id: UUID, budget_id: UUID) -> None:
    budget = (
        scoped(db, Budget, tenant_id)
        .filter(Budget.id == budget_id, Budget.campaign_id == campaign_id)
        .first()
    )
    if not budget:
        raise NotFoundError("Budget not found")
    db.delete(budget)
    db.commit()


# ============================================================================
# Attribution
# ============================================================================

def list_campaign_activities(
    db: Session, tenant_id: UUID, campaign_id: UUID, limit: int = 50, offset: int = 0
) -> Tuple[List[Tuple[Activity, Decimal]], int]:
    """Attributed activities with their weights, newest first."""
    get_campaign(db, tenant_id, campaign_id)
    query = (
        db.query(Activity, ActivityCampaign.weight)
        .join(ActivityCampaign, ActivityCampaign.activity_id == Activity.id)
        .filter(
            Activity.tenant_id == tenant_id,
            ActivityCampaign.tenant_id == tenant_id,
            ActivityCampaign.campaign_id == campaign_id,
        )
    )
    total = query.count()
    rows = query.order_by(Activity.occurred_at.desc()).limit(limit).offset(offset).all()
    return [(activity, weight) for activity, weight in rows], total


def attribute_activity(
    db: Session, tenant_id: UUID, campaign_id: UUID, activity_id: UUID, weight: float = 1.0
) -> ActivityCampaign:
    get_campaign(db, tenant_id, campaign_id)
    if not get_scoped(db, Activity, tenant_id, activity_id):
        raise NotFoundError("Activity not found")
    if weight <= 0:
        raise InvalidInputError("Weight must be positive", details=[{"field": "weight", "message": "must be > 0"}])

    existing = (
        scoped(db, ActivityCampaign, tenant_id)
        .filter(ActivityCampaign.campaign_id == campaign_id, ActivityCampaign.activity_id == activity_id)
        .first()
    )
    if existing:
        raise ConflictError("Activity is already attributed to this campaign")

    link = ActivityCampaign(tenant_id=tenant_id, campaign_id=campaign_id, activity_id=activity_id, weight=weight)
    db.add(link)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Activity is already attributed to this campaign")
    db.refresh(link)
    return link


def remove_attribution(db: Session, tenant_id: UUID, campaign_id: UUID, activity_id: UUID) -> None:
    get_campaign(db, tenant_id, campaign_id)
    link = (
        scoped(db, ActivityCampaign, tenant_id)
        .filter(ActivityCampaign.campaign_id == campaign_id, ActivityCampaign.activity_id == activity_id)
        .first()
    )
    if not link:
        raise NotFoundError("Attribution not found")
    db.delete(link)
    db.commit()


# ============================================================================
# Resources
# ============================================================================

def list_campaign_resources(
    db: Session, tenant_id: UUID, campaign_id: UUID, limit: int = 50, offset: int = 0
) -> Tuple[List[Resource], int]:
    get_campaign(db, tenant_id, campaign_id)
    query = scoped(db, Resource, tenant_id).filter(Resource.campaign_id == campaign_id)
    total = query.count()
    items = query.order_by(Resource.created_at.desc()).limit(limit).offset(offset).all()
    return items, total
