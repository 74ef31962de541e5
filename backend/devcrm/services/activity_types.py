"""Activity types: the tenant's action→stage map.

WHAT:
    CRUD over `ActivityType` rows plus the funnel stage reference data.
    Each row maps one activity `action` (e.g. "click") to a funnel stage
    (or to none, when the action is tracked but not part of the funnel).

WHY:
    Funnel statistics, time series and developer stats all classify
    activities through this map, so every tenant gets a default set on
    registration and can re-map actions afterwards.

REFERENCES:
    - devcrm/models.py: ActivityType, FunnelStage
    - devcrm/services/funnel.py: consumes the map
    - devcrm/routers/activity_types.py: HTTP surface
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import ConflictError, NotFoundError
from ..models import Activity, ActivityType, FunnelStage, FunnelStageKey
from ..tenancy import get_scoped, scoped

logger = logging.getLogger(__name__)


# Fixed funnel order: (stage_key, order_no, title)
FUNNEL_STAGES: List[Tuple[str, int, str]] = [
    (FunnelStageKey.awareness.value, 1, "Awareness"),
    (FunnelStageKey.engagement.value, 2, "Engagement"),
    (FunnelStageKey.adoption.value, 3, "Adoption"),
    (FunnelStageKey.advocacy.value, 4, "Advocacy"),
]

DEFAULT_ICON = "heroicons:bolt"
DEFAULT_COLOR = "text-gray-600 bg-gray-100 border-gray-200"

DEFAULT_ACTIVITY_TYPES = [
    {
        "action": "click",
        "icon_name": "heroicons:cursor-arrow-rays",
        "color_class": "text-blue-600 bg-blue-100 border-blue-200",
        "stage_key": FunnelStageKey.awareness.value,
    },
    {
        "action": "attend",
        "icon_name": "heroicons:calendar-days",
        "color_class": "text-green-600 bg-green-100 border-green-200",
        "stage_key": FunnelStageKey.engagement.value,
    },
    {
        "action": "signup",
        "icon_name": "heroicons:user-plus",
        "color_class": "text-purple-600 bg-purple-100 border-purple-200",
        "stage_key": FunnelStageKey.engagement.value,
    },
    {
        "action": "post",
        "icon_name": "heroicons:chat-bubble-left-right",
        "color_class": "text-orange-600 bg-orange-100 border-orange-200",
        "stage_key": FunnelStageKey.advocacy.value,
    },
    {
        "action": "star",
        "icon_name": "heroicons:star",
        "color_class": "text-yellow-600 bg-yellow-100 border-yellow-200",
        "stage_key": FunnelStageKey.advocacy.value,
    },
]


# ============================================================================
# Funnel stages (static reference data)
# ============================================================================

def seed_funnel_stages(db: Session) -> int:
    """Insert any missing funnel stage rows. Returns the number inserted."""
    existing = {row.stage_key for row in db.query(FunnelStage.stage_key).all()}
    inserted = 0
    for stage_key, order_no, title in FUNNEL_STAGES:
        if stage_key in existing:
            continue
        db.add(FunnelStage(stage_key=stage_key, order_no=order_no, title=title))
        inserted += 1
    if inserted:
        db.commit()
        logger.info("[FUNNEL] Seeded %d funnel stages", inserted)
    return inserted


def list_funnel_stages(db: Session) -> List[FunnelStage]:
    return db.query(FunnelStage).order_by(FunnelStage.order_no.asc()).all()


# ============================================================================
# Activity type CRUD
# ============================================================================

def get_activity_type(db: Session, tenant_id: UUID, action: str) -> Optional[ActivityType]:
    return scoped(db, ActivityType, tenant_id).filter(ActivityType.action == action).first()


def create_activity_type(
    db: Session,
    tenant_id: UUID,
    action: str,
    stage_key: Optional[str] = None,
    icon_name: Optional[str] = None,
    color_class: Optional[str] = None,
) -> ActivityType:
    """Create a mapping for `action`. Raises ConflictError when it already exists."""
    if get_activity_type(db, tenant_id, action):
        raise ConflictError(f"Activity type '{action}' already exists")

    activity_type = ActivityType(
        tenant_id=tenant_id,
        action=action,
        stage_key=stage_key,
        icon_name=icon_name or DEFAULT_ICON,
        color_class=color_class or DEFAULT_COLOR,
    )
    db.add(activity_type)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Activity type '{action}' already exists")
    db.refresh(activity_type)
    return activity_type


def list_activity_types(db: Session, tenant_id: UUID, limit: int = 50, offset: int = 0) -> Tuple[List[ActivityType], int]:
    query = scoped(db, ActivityType, tenant_id)
    total = query.count()
    items = (
        query.order_by(ActivityType.created_at.desc(), ActivityType.action.asc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return items, total


def update_activity_type(db: Session, tenant_id: UUID, action: str, changes: dict) -> ActivityType:
    """Apply a partial update. Only keys present in `changes` are written.

    `changes` may set `stage_key` to None to take the action out of the funnel.
    """
    activity_type = get_activity_type(db, tenant_id, action)
    if not activity_type:
        raise NotFoundError(f"Activity type '{action}' not found")

    for field in ("stage_key", "icon_name", "color_class"):
        if field in changes:
            value = changes[field]
            if field != "stage_key" and value is None:
                continue
            setattr(activity_type, field, value)
    activity_type.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(activity_type)
    return activity_type


def delete_activity_type(db: Session, tenant_id: UUID, action: str) -> None:
    activity_type = get_activity_type(db, tenant_id, action)
    if not activity_type:
        raise NotFoundError(f"Activity type '{action}' not found")
    db.delete(activity_type)
    db.commit()


def seed_default_activity_types(db: Session, tenant_id: UUID, commit: bool = True) -> int:
    """Create the default action mappings that the tenant does not have yet.

    Idempotent: existing actions (including ones the tenant re-mapped) are
    left untouched. Returns the number of rows created.
    """
    existing = {
        row.action
        for row in scoped(db, ActivityType, tenant_id).with_entities(ActivityType.action).all()
    }
    created = 0
    for defaults in DEFAULT_ACTIVITY_TYPES:
        if defaults["action"] in existing:
            continue
        db.add(ActivityType(tenant_id=tenant_id, **defaults))
        created += 1
    if commit:
        db.commit()
    else:
        db.flush()
    return created


def list_distinct_actions(db: Session, tenant_id: UUID) -> List[str]:
    """Distinct actions that appear in the tenant's activities, alphabetically."""
    rows = (
        scoped(db, Activity, tenant_id)
        .with_entities(Activity.action)
        .distinct()
        .order_by(Activity.action.asc())
        .all()
    )
    return [row.action for row in rows]


def get_stage_map(db: Session, tenant_id: UUID) -> dict:
    """Return {action: stage_key} for every mapped action of the tenant."""
    rows = (
        scoped(db, ActivityType, tenant_id)
        .with_entities(ActivityType.action, ActivityType.stage_key)
        .filter(ActivityType.stage_key.isnot(None))
        .all()
    )
    return {row.action: row.stage_key for row in rows}


def classify_stage(db: Session, tenant_id: UUID, activity_id: UUID) -> Optional[str]:
    """Stage key of one activity, or None when its action is unmapped.

    Raises NotFoundError when the activity does not exist in the tenant.
    """
    activity = get_scoped(db, Activity, tenant_id, activity_id)
    if not activity:
        raise NotFoundError("Activity not found")
    stage_key = (
        scoped(db, ActivityType, tenant_id)
        .with_entities(ActivityType.stage_key)
        .filter(ActivityType.action == activity.action)
        .scalar()
    )
    return stage_key

