"""Campaign shortlinks and click tracking.

WHAT:
    CRUD for shortlinks plus the click side used by `GET /c/{key}`:
    key lookup, redirect allowlist, and recording the click as an activity.

WHY:
    A click is an ordinary `click` activity (source "shortlink", source_ref =
    shortlink id), so it shows up in the funnel and, through its campaign
    attribution, in campaign ROI without a separate counter table.

REFERENCES:
    - devcrm/routers/shortlinks.py
    - devcrm/services/activities.py (create_activity)
    - devcrm/services/campaigns.py (attribute_activity)
"""

import logging
import secrets
import string
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import ConflictError, InvalidInputError, NotFoundError
from ..models import Activity, Campaign, Resource, Shortlink
from ..tenancy import LIKE_ESCAPE, contains_pattern, get_scoped, scoped
from .activities import create_activity
from .campaigns import attribute_activity

logger = logging.getLogger(__name__)

KEY_ALPHABET = string.ascii_letters + string.digits + "_-"
KEY_LENGTH = 8
MAX_KEY_ATTEMPTS = 3

CLICK_ACTION = "click"
CLICK_SOURCE = "shortlink"

SHORTLINK_ORDER_COLUMNS = {
    "key": Shortlink.key,
    "targetUrl": Shortlink.target_url,
    "createdAt": Shortlink.created_at,
    "updatedAt": Shortlink.updated_at,
}


def generate_key(length: int = KEY_LENGTH) -> str:
    return "".join(secrets.choice(KEY_ALPHABET) for _ in range(length))


def short_url(base_url: str, key: str) -> str:
    return f"{base_url.rstrip('/')}/c/{key}"


def check_target_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidInputError(
            "targetUrl must be an http(s) URL",
            details=[{"field": "targetUrl", "message": "must be an http or https URL"}],
        )
    return url


def is_allowed_redirect(url: str, allowed_hosts: str) -> bool:
    """Check a redirect target against a comma-separated host allowlist.

    An empty allowlist accepts any http(s) URL. `*.example.com` matches
    example.com and all of its subdomains.

    >>> is_allowed_redirect("https://docs.example.com/x", "*.example.com")
    True
    >>> is_allowed_redirect("https://evil.test/", "example.com")
    False
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return False
    patterns = [h.strip().lower() for h in allowed_hosts.split(",") if h.strip()]
    if not patterns:
        return True
    host = parsed.hostname.lower()
    for pattern in patterns:
        if pattern == host:
            return True
        if pattern.startswith("*."):
            domain = pattern[2:]
            if host == domain or host.endswith("." + domain):
                return True
    return False


def _check_links(db: Session, tenant_id: UUID, campaign_id: Optional[UUID], resource_id: Optional[UUID]) -> None:
    if campaign_id is not None and not get_scoped(db, Campaign, tenant_id, campaign_id):
        raise NotFoundError("Campaign not found")
    if resource_id is not None and not get_scoped(db, Resource, tenant_id, resource_id):
        raise NotFoundError("Resource not found")


def _key_taken(db: Session, key: str, exclude_id: Optional[UUID] = None) -> bool:
    # Keys are unique across tenants: the redirect has no tenant context
    query = db.query(Shortlink.id).filter(Shortlink.key == key)
    if exclude_id is not None:
        query = query.filter(Shortlink.id != exclude_id)
    return query.first() is not None


# ============================================================================
# CRUD
# ============================================================================

def create_shortlink(db: Session, tenant_id: UUID, data: dict) -> Shortlink:
    """Create a shortlink with the given key, or a generated 8-character one.

    A taken custom key is a ConflictError; a generated key that collides is
    regenerated up to MAX_KEY_ATTEMPTS times.
    """
    target_url = check_target_url(data["target_url"])
    _check_links(db, tenant_id, data.get("campaign_id"), data.get("resource_id"))

    custom_key = data.get("key")
    if custom_key and _key_taken(db, custom_key):
        raise ConflictError(f"Shortlink with key '{custom_key}' already exists")

    attempts = 1 if custom_key else MAX_KEY_ATTEMPTS
    for attempt in range(attempts):
        key = custom_key or generate_key()
        if not custom_key and _key_taken(db, key):
            logger.info("[SHORTLINKS] Generated key collision (attempt %d)", attempt + 1)
            continue
        shortlink = Shortlink(
            tenant_id=tenant_id,
            key=key,
            target_url=target_url,
            campaign_id=data.get("campaign_id"),
            resource_id=data.get("resource_id"),
            attributes=data.get("attributes"),
        )
        db.add(shortlink)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if custom_key:
                raise ConflictError(f"Shortlink with key '{custom_key}' already exists")
            continue
        db.refresh(shortlink)
        logger.info("[SHORTLINKS] Created /c/%s for tenant %s", key, tenant_id)
        return shortlink

    raise ConflictError(f"Failed to generate a unique shortlink key after {attempts} attempts")


def click_counts(db: Session, tenant_id: UUID, shortlink_ids: Optional[Iterable[UUID]] = None) -> Dict[UUID, int]:
    """Recorded clicks per shortlink id."""
    query = (
        scoped(db, Activity, tenant_id)
        .with_entities(Activity.source_ref, func.count(Activity.id))
        .filter(Activity.action == CLICK_ACTION, Activity.source == CLICK_SOURCE)
    )
    if shortlink_ids is not None:
        query = query.filter(Activity.source_ref.in_([str(i) for i in shortlink_ids]))
    counts: Dict[UUID, int] = {}
    for source_ref, count in query.group_by(Activity.source_ref).all():
        try:
            counts[UUID(source_ref)] = count
        except (TypeError, ValueError):
            logger.warning("[SHORTLINKS] Click with unexpected source_ref %r", source_ref)
    return counts


def list_shortlinks(
    db: Session,
    tenant_id: UUID,
    campaign_id: Optional[UUID] = None,
    resource_id: Optional[UUID] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    order_by: str = "createdAt",
    order_direction: str = "desc",
) -> Tuple[List[Tuple[Shortlink, int]], int]:
    """Shortlinks with their click counts.

    Ordering by `clickCount` sorts the whole filtered set in memory before
    paging; other orderings page in SQL.
    """
    query = scoped(db, Shortlink, tenant_id)
    if campaign_id is not None:
        query = query.filter(Shortlink.campaign_id == campaign_id)
    if resource_id is not None:
        query = query.filter(Shortlink.resource_id == resource_id)
    if search:
        pattern = contains_pattern(search)
        query = query.filter(
            or_(
                func.lower(Shortlink.key).like(pattern, escape=LIKE_ESCAPE),
                func.lower(Shortlink.target_url).like(pattern, escape=LIKE_ESCAPE),
            )
        )
    total = query.count()
    descending = order_direction != "asc"

    if order_by == "clickCount":
        links = query.order_by(Shortlink.key.asc()).all()
        counts = click_counts(db, tenant_id, [link.id for link in links])
        links.sort(key=lambda link: counts.get(link.id, 0), reverse=descending)
        page = links[offset:offset + limit]
        return [(link, counts.get(link.id, 0)) for link in page], total

    column = SHORTLINK_ORDER_COLUMNS.get(order_by, Shortlink.created_at)
    ordering = column.desc() if descending else column.asc()
    page = query.order_by(ordering, Shortlink.id.asc()).limit(limit).offset(offset).all()
    counts = click_counts(db, tenant_id, [link.id for link in page])
    return [(link, counts.get(link.id, 0)) for link in page], total


def get_shortlink(db: Session, tenant_id: UUID, shortlink_id: UUID) -> Shortlink:
    shortlink = get_scoped(db, Shortlink, tenant_id, shortlink_id)
    if not shortlink:
        raise NotFoundError("Shortlink not found")
    return shortlink


def update_shortlink(db: Session, tenant_id: UUID, shortlink_id: UUID, changes: dict) -> Shortlink:
    """Partial update; `campaignId`, `resourceId` and `attributes` accept null to unset."""
    shortlink = get_shortlink(db, tenant_id, shortlink_id)
    if not changes:
        raise InvalidInputError("No fields to update")

    if changes.get("target_url") is not None:
        check_target_url(changes["target_url"])
    _check_links(db, tenant_id, changes.get("campaign_id"), changes.get("resource_id"))
    if changes.get("key") and changes["key"] != shortlink.key and _key_taken(db, changes["key"], exclude_id=shortlink.id):
        raise ConflictError(f"Shortlink with key '{changes['key']}' already exists")

    for field in ("key", "target_url", "campaign_id", "resource_id", "attributes"):
        if field not in changes:
            continue
        if field in ("key", "target_url") and not changes[field]:
            continue
        setattr(shortlink, field, changes[field])
    shortlink.updated_at = datetime.utcnow()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Shortlink with this key already exists")
    db.refresh(shortlink)
    return shortlink


def delete_shortlink(db: Session, tenant_id: UUID, shortlink_id: UUID) -> None:
    """Delete a shortlink; its recorded click activities stay."""
    shortlink = get_shortlink(db, tenant_id, shortlink_id)
    db.delete(shortlink)
    db.commit()
    logger.info("[SHORTLINKS] Deleted shortlink %s", shortlink_id)


# ============================================================================
# Redirect & click tracking
# ============================================================================

def resolve_key(db: Session, key: str) -> Optional[Shortlink]:
    return db.query(Shortlink).filter(Shortlink.key == key).first()


def record_click(
    db: Session,
    shortlink: Shortlink,
    anon_id: str,
    user_agent: Optional[str] = None,
    referer: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> Activity:
    """Record one click as an activity and attribute it to the shortlink's campaign."""
    activity = create_activity(
        db,
        shortlink.tenant_id,
        {
            "anon_id": anon_id,
            "action": CLICK_ACTION,
            "source": CLICK_SOURCE,
            "source_ref": str(shortlink.id),
            "resource_id": shortlink.resource_id,
            "occurred_at": datetime.utcnow(),
            "metadata": {
                "shortlink_id": str(shortlink.id),
                "campaign_id": str(shortlink.campaign_id) if shortlink.campaign_id else None,
                "user_agent": user_agent,
                "referer": referer,
                "ip_address": ip_address,
            },
        },
    )
    if shortlink.campaign_id is not None:
        attribute_activity(db, shortlink.tenant_id, shortlink.campaign_id, activity.id)
    return activity
