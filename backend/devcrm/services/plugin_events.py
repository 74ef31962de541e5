"""Raw plugin events: ingestion, browsing, stats and reprocessing.

WHAT:
    Stores payloads received from plugins as-is (`PluginEventRaw`) and lets
    the dashboard page through them. Detail views mask anything that looks
    like a credential.

WHY:
    Raw payloads often carry API keys or tokens copied from upstream
    services. Masking happens on read, so the stored payload stays intact
    for reprocessing while nothing sensitive reaches the browser.

REFERENCES:
    - devcrm/models.py: PluginEventRaw
    - devcrm/workers/arq_worker.py: process_events job turns pending events into activities
    - devcrm/routers/plugins.py: /api/plugins/{id}/events routes
"""

import logging
import math
import re
from datetime import datetime
from typing import Any, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..exceptions import NotFoundError
from ..models import PluginEventRaw, PluginEventStatusEnum
from ..tenancy import scoped

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"

SENSITIVE_FIELD_NAMES = (
    "token",
    "api_key",
    "apikey",
    "secret",
    "password",
    "access_token",
    "accesstoken",
    "refresh_token",
    "refreshtoken",
    "authorization",
    "auth",
    "credentials",
    "private_key",
    "privatekey",
    "client_secret",
    "clientsecret",
    "bearer",
)

CREDENTIAL_PATTERNS = (
    re.compile(r"^[A-Za-z0-9\-_]{20,}$"),       # generic API key / opaque token
    re.compile(r"^sk_[a-z]+_[A-Za-z0-9]{20,}$"),  # Stripe-style secret key
    re.compile(r"^ghp_[A-Za-z0-9]{36}$"),         # GitHub personal access token
    re.compile(r"^gho_[A-Za-z0-9]{36}$"),         # GitHub OAuth token
    re.compile(r"^glpat-[A-Za-z0-9\-_]{20}$"),    # GitLab personal access token
)


# ============================================================================
# Masking
# ============================================================================

def looks_like_credential(value: str) -> bool:
    return any(pattern.match(value) for pattern in CREDENTIAL_PATTERNS)


def mask_value(value: Any) -> str:
    """Keep the first and last four characters of longer strings.

    >>> mask_value("abcdefghijkl")
    'abcd***ijkl'
    >>> mask_value("short")
    '***REDACTED***'
    """
    if not isinstance(value, str) or len(value) < 8:
        return REDACTED
    return f"{value[:4]}***{value[-4:]}"


def sanitize_raw_data(data: Any) -> Any:
    """Copy of `data` with sensitive keys and credential-looking strings masked.

    A key is sensitive when its lower-cased name contains one of
    SENSITIVE_FIELD_NAMES. Nested dicts and lists are walked recursively.
    """
    if isinstance(data, list):
        return [sanitize_raw_data(item) for item in data]
    if isinstance(data, dict):
        sanitized = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if any(name in key_lower for name in SENSITIVE_FIELD_NAMES):
                sanitized[key] = mask_value(value)
            elif isinstance(value, str) and looks_like_credential(value):
                sanitized[key] = mask_value(value)
            else:
                sanitized[key] = sanitize_raw_data(value)
        return sanitized
    return data


# ============================================================================
# Ingestion & queries
# ============================================================================

def ingest_event(db: Session, tenant_id: UUID, plugin_id: UUID, event_type: str, raw_data: dict) -> PluginEventRaw:
    event = PluginEventRaw(
        tenant_id=tenant_id,
        plugin_id=plugin_id,
        event_type=event_type,
        raw_data=raw_data or {},
        status=PluginEventStatusEnum.pending,
        ingested_at=datetime.utcnow(),
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def list_events(
    db: Session,
    tenant_id: UUID,
    plugin_id: UUID,
    page: int = 1,
    per_page: int = 20,
    status: Optional[PluginEventStatusEnum] = None,
    event_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    sort: str = "desc",
) -> Tuple[List[PluginEventRaw], int, int]:
    """Page through events without their payloads.

    Returns (items, total, total_pages).
    """
    query = scoped(db, PluginEventRaw, tenant_id).filter(PluginEventRaw.plugin_id == plugin_id)
    if status is not None:
        query = query.filter(PluginEventRaw.status == status)
    if event_type:
        query = query.filter(PluginEventRaw.event_type == event_type)
    if start_date:
        query = query.filter(PluginEventRaw.ingested_at >= start_date)
    if end_date:
        query = query.filter(PluginEventRaw.ingested_at <= end_date)

    total = query.count()
    ordering = PluginEventRaw.ingested_at.asc() if sort == "asc" else PluginEventRaw.ingested_at.desc()
    items = query.order_by(ordering).limit(per_page).offset((page - 1) * per_page).all()
    total_pages = math.ceil(total / per_page) if total else 0
    return items, total, total_pages


def get_event(db: Session, tenant_id: UUID, plugin_id: UUID, event_id: UUID) -> PluginEventRaw:
    event = (
        scoped(db, PluginEventRaw, tenant_id)
        .filter(PluginEventRaw.plugin_id == plugin_id, PluginEventRaw.id == event_id)
        .first()
    )
    if not event:
        raise NotFoundError("Event not found")
    return event


def get_event_detail(db: Session, tenant_id: UUID, plugin_id: UUID, event_id: UUID) -> dict:
    event = get_event(db, tenant_id, plugin_id, event_id)
    return {
        "id": event.id,
        "plugin_id": event.plugin_id,
        "event_type": event.event_type,
        "status": event.status,
        "ingested_at": event.ingested_at,
        "processed_at": event.processed_at,
        "error_message": event.error_message,
        "raw_data": sanitize_raw_data(event.raw_data or {}),
    }


def get_event_stats(db: Session, tenant_id: UUID, plugin_id: UUID) -> dict:
    base = scoped(db, PluginEventRaw, tenant_id).filter(PluginEventRaw.plugin_id == plugin_id)
    counts = dict(
        base.with_entities(PluginEventRaw.status, func.count(PluginEventRaw.id))
        .group_by(PluginEventRaw.status)
        .all()
    )
    latest, oldest = base.with_entities(
        func.max(PluginEventRaw.ingested_at), func.min(PluginEventRaw.ingested_at)
    ).one()

    def _count(status: PluginEventStatusEnum) -> int:
        return int(counts.get(status, counts.get(status.value, 0)))

    processed = _count(PluginEventStatusEnum.processed)
    failed = _count(PluginEventStatusEnum.failed)
    pending = _count(PluginEventStatusEnum.pending)
    return {
        "total": processed + failed + pending,
        "processed": processed,
        "failed": failed,
        "pending": pending,
        "latest_ingested_at": latest,
        "oldest_ingested_at": oldest,
    }


def reprocess_event(db: Session, tenant_id: UUID, plugin_id: UUID, event_id: UUID) -> PluginEventRaw:
    """Put an event back in the pending queue for the next process_events run."""
    event = get_event(db, tenant_id, plugin_id, event_id)
    event.status = PluginEventStatusEnum.pending
    event.processed_at = None
    event.error_message = None
    db.commit()
    db.refresh(event)
    logger.info("[PLUGINS] Event %s queued for reprocessing", event_id)
    return event


def pending_events(db: Session, tenant_id: UUID, plugin_id: UUID, limit: int) -> List[PluginEventRaw]:
    return (
        scoped(db, PluginEventRaw, tenant_id)
        .filter(
            PluginEventRaw.plugin_id == plugin_id,
            PluginEventRaw.status == PluginEventStatusEnum.pending,
        )
        .order_by(PluginEventRaw.ingested_at.asc())
        .limit(limit)
        .all()
    )
