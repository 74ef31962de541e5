"""Developer and organization CRUD plus per-developer activity stats."""

import logging
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import ConflictError, NotFoundError
from ..models import Activity, Developer, Organization
from ..tenancy import LIKE_ESCAPE, contains_pattern, get_scoped, scoped
from .activity_types import FUNNEL_STAGES, get_stage_map

logger = logging.getLogger(__name__)

DEVELOPER_ORDER_COLUMNS = {
    "displayName": Developer.display_name,
    "primaryEmail": Developer.primary_email,
    "createdAt": Developer.created_at,
    "updatedAt": Developer.updated_at,
}


def _normalize_email(email: Optional[str]) -> Optional[str]:
    return email.strip().lower() if email else None


def _check_org(db: Session, tenant_id: UUID, org_id: Optional[UUID]) -> None:
    if org_id is not None and not get_scoped(db, Organization, tenant_id, org_id):
        raise NotFoundError("Organization not found")


def _check_email_free(db: Session, tenant_id: UUID, email: Optional[str], exclude_id: Optional[UUID] = None) -> None:
    if not email:
        return
    query = scoped(db, Developer, tenant_id).filter(Developer.primary_email == email)
    if exclude_id is not None:
        query = query.filter(Developer.id != exclude_id)
    if query.first():
        raise ConflictError(f"Developer with email '{email}' already exists")


# ============================================================================
# Developers
# ============================================================================

def list_developers(
    db: Session,
    tenant_id: UUID,
    limit: int = 50,
    offset: int = 0,
    search: Optional[str] = None,
    org_id: Optional[UUID] = None,
    order_by: str = "createdAt",
    order_direction: str = "desc",
) -> Tuple[List[Developer], int]:
    query = scoped(db, Developer, tenant_id)
    if search:
        pattern = contains_pattern(search)
        query = query.filter(
            or_(
                func.lower(Developer.display_name).like(pattern, escape=LIKE_ESCAPE),
                func.lower(Developer.primary_email).like(pattern, escape=LIKE_ESCAPE),
            )
        )
    if org_id is not None:
        query = query.filter(Developer.org_id == org_id)

    total = query.count()
    column = DEVELOPER_ORDER_COLUMNS.get(order_by, Developer.created_at)
    ordering = column.asc() if order_direction == "asc" else column.desc()
    items = query.order_by(ordering, Developer.id.asc()).limit(limit).offset(offset).all()
    return items, total


def get_developer(db: Session, tenant_id: UUID, developer_id: UUID) -> Developer:
    developer = get_scoped(db, Developer, tenant_id, developer_id)
    if not developer:
        raise NotFoundError("Developer not found")
    return developer


def create_developer(
    db: Session,
    tenant_id: UUID,
    display_name: Optional[str] = None,
    primary_email: Optional[str] = None,
    org_id: Optional[UUID] = None,
    consent_analytics: bool = True,
    tags: Optional[List[str]] = None,
) -> Developer:
    email = _normalize_email(primary_email)
    _check_email_free(db, tenant_id, email)
    _check_org(db, tenant_id, org_id)

    developer = Developer(
        tenant_id=tenant_id,
        display_name=display_name,
        primary_email=email,
        org_id=org_id,
        consent_analytics=consent_analytics,
        tags=list(dict.fromkeys(tags or [])),
    )
    db.add(developer)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Developer with email '{email}' already exists")
    db.refresh(developer)
    logger.info("[DEVELOPERS] Created developer %s", developer.id)
    return developer


def update_developer(db: Session, tenant_id: UUID, developer_id: UUID, changes: dict) -> Developer:
    """Partial update; keys absent from `changes` are left as they are."""
    developer = get_developer(db, tenant_id, developer_id)

    if "primary_email" in changes:
        email = _normalize_email(changes["primary_email"])
        _check_email_free(db, tenant_id, email, exclude_id=developer.id)
        developer.primary_email = email
    if "org_id" in changes:
        _check_org(db, tenant_id, changes["org_id"])
        developer.org_id = changes["org_id"]
    if "display_name" in changes:
        developer.display_name = changes["display_name"]
    if changes.get("consent_analytics") is not None:
        developer.consent_analytics = changes["consent_analytics"]
    if changes.get("tags") is not None:
        developer.tags = list(dict.fromkeys(changes["tags"]))

    developer.updated_at = datetime.utcnow()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Developer with this email already exists")
    db.refresh(developer)
    return developer


def delete_developer(db: Session, tenant_id: UUID, developer_id: UUID) -> None:
    """Delete a developer. Their activities stay, detached from any developer."""
    developer = get_developer(db, tenant_id, developer_id)
    db.delete(developer)
    db.commit()
    logger.info("[DEVELOPERS] Deleted developer %s", developer_id)


def list_developer_activities(
    db: Session, tenant_id: UUID, developer_id: UUID, limit: int = 50, offset: int = 0
) -> Tuple[List[Activity], int]:
    get_developer(db, tenant_id, developer_id)
    query = scoped(db, Activity, tenant_id).filter(Activity.developer_id == developer_id)
    total = query.count()
    items = query.order_by(Activity.occurred_at.desc()).limit(limit).offset(offset).all()
    return items, total


def get_developer_stats(db: Session, tenant_id: UUID, developer_id: UUID) -> dict:
    """Activity totals of one developer, broken down by funnel stage.

    Actions are classified with the tenant's own action→stage map; activities
    whose action is not mapped are counted as unmapped.
    """
    get_developer(db, tenant_id, developer_id)

    rows = (
        scoped(db, Activity, tenant_id)
        .with_entities(Activity.action, func.count(Activity.id))
        .filter(Activity.developer_id == developer_id)
        .group_by(Activity.action)
        .all()
    )
    stage_map = get_stage_map(db, tenant_id)

    stages = {stage_key: 0 for stage_key, _, _ in FUNNEL_STAGES}
    total = 0
    unmapped = 0
    for action, count in rows:
        total += count
        stage_key = stage_map.get(action)
        if stage_key in stages:
            stages[stage_key] += count
        else:
            unmapped += count

    first_at, last_at = (
        scoped(db, Activity, tenant_id)
        .with_entities(func.min(Activity.occurred_at), func.max(Activity.occurred_at))
        .filter(Activity.developer_id == developer_id)
        .one()
    )
    return {
        "developer_id": developer_id,
        "total_activities": total,
        "stages": stages,
        "unmapped_activities": unmapped,
        "first_activity_at": first_at,
        "last_activity_at": last_at,
    }


# ============================================================================
# Organizations
# ============================================================================

def list_organizations(db: Session, tenant_id: UUID, limit: int = 50, offset: int = 0) -> Tuple[List[Organization], int]:
    query = scoped(db, Organization, tenant_id)
    total = query.count()
    items = query.order_by(Organization.name.asc()).limit(limit).offset(offset).all()
    return items, total


def create_organization(
    db: Session,
    tenant_id: UUID,
    name: str,
    domain_primary: Optional[str] = None,
    attributes: Optional[dict] = None,
) -> Organization:
    if scoped(db, Organization, tenant_id).filter(Organization.name == name).first():
        raise ConflictError(f"Organization '{name}' already exists")
    organization = Organization(
        tenant_id=tenant_id,
        name=name,
        domain_primary=domain_primary.strip().lower() if domain_primary else None,
        attributes=attributes,
    )
    db.add(organization)
    db.commit()
    db.refresh(organization)
    return organization
