"""Developer identity: identifiers, resolution, duplicate detection and merge.

WHAT:
    - Normalizes and stores identifiers (email, phone, domain, ...) per developer
    - Resolves a developer from an identifier or an external account
    - Suggests likely duplicates and merges two developers into one

WHY:
    A (tenant, kind, normalized value) triple identifies at most one
    developer. When a second developer claims it, the claim is rejected
    with a conflict rather than resolved automatically; an operator decides
    whether to merge.

REFERENCES:
    - devcrm/models.py: Developer, DeveloperIdentifier, Account, DeveloperMergeLog
    - devcrm/routers/developers.py: identifier, duplicate and merge routes
    - devcrm/workers/arq_worker.py: resolves event emails to developers
"""

import logging
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..exceptions import ConflictError, InvalidInputError, NotFoundError
from ..models import (
    Account,
    Activity,
    Developer,
    DeveloperIdentifier,
    DeveloperMergeLog,
    IdentifierKindEnum,
)
from ..tenancy import get_scoped, scoped

logger = logging.getLogger(__name__)

_PHONE_STRIP = re.compile(r"[^0-9+]")

# Confidence assigned to a duplicate signal when the source carries none
PRIMARY_EMAIL_MATCH_CONFIDENCE = 0.9


def normalize_identifier(kind, value: str) -> str:
    """Canonical form of an identifier value.

    Emails and domains are lower-cased; phone numbers keep digits and '+'.

    >>> normalize_identifier("email", "  Alice@Example.COM ")
    'alice@example.com'
    >>> normalize_identifier("phone", "+81 (90) 1234-5678")
    '+819012345678'
    """
    kind = IdentifierKindEnum(kind)
    normalized = value.strip()
    if kind in (IdentifierKindEnum.email, IdentifierKindEnum.domain):
        normalized = normalized.lower()
    if kind == IdentifierKindEnum.phone:
        normalized = _PHONE_STRIP.sub("", normalized)
    return normalized


def combine_confidences(confidences: Iterable[float]) -> float:
    """Probability that at least one independent signal is right: 1 - Π(1 - c)."""
    values = [float(c) for c in confidences]
    if not values:
        return 0.0
    product = 1.0
    for c in values:
        product *= 1.0 - c
    return 1.0 - product


def _require_developer(db: Session, tenant_id: UUID, developer_id: UUID, label: str = "Developer") -> Developer:
    developer = get_scoped(db, Developer, tenant_id, developer_id)
    if not developer:
        raise NotFoundError(f"{label} not found")
    return developer


# ============================================================================
# Identifiers
# ============================================================================

def add_identifier(
    db: Session,
    tenant_id: UUID,
    developer_id: UUID,
    kind,
    value: str,
    confidence: float = 1.0,
    attributes: Optional[dict] = None,
) -> DeveloperIdentifier:
    """Attach an identifier to a developer.

    Re-adding the same normalized value to the same developer refreshes its
    confidence and last_seen. Adding a value already owned by another
    developer raises ConflictError.
    """
    if confidence < 0.0 or confidence > 1.0:
        raise InvalidInputError(
            "Confidence must be between 0.0 and 1.0",
            details=[{"field": "confidence", "message": "must be between 0.0 and 1.0"}],
        )
    _require_developer(db, tenant_id, developer_id)

    kind = IdentifierKindEnum(kind)
    normalized = normalize_identifier(kind, value)
    if not normalized:
        raise InvalidInputError(
            "Identifier value is empty after normalization",
            details=[{"field": "value", "message": "must contain at least one significant character"}],
        )

    existing = (
        scoped(db, DeveloperIdentifier, tenant_id)
        .filter(DeveloperIdentifier.kind == kind, DeveloperIdentifier.value_normalized == normalized)
        .first()
    )
    now = datetime.utcnow()
    if existing:
        if existing.developer_id != developer_id:
            logger.info(
                "[IDENTITY] Conflict: %s:%s already belongs to developer %s",
                kind.value, normalized, existing.developer_id,
            )
            raise ConflictError(
                f"Identifier conflict: {kind.value}:{normalized} already belongs to another developer "
                f"({existing.developer_id}). Merge the developers to combine them."
            )
        existing.confidence = confidence
        existing.last_seen = now
        if attributes is not None:
            existing.attributes = attributes
        db.commit()
        db.refresh(existing)
        return existing

    identifier = DeveloperIdentifier(
        tenant_id=tenant_id,
        developer_id=developer_id,
        kind=kind,
        value_normalized=normalized,
        confidence=confidence,
        attributes=attributes,
        first_seen=now,
        last_seen=now,
    )
    db.add(identifier)
    db.commit()
    db.refresh(identifier)
    logger.info("[IDENTITY] Added %s identifier to developer %s", kind.value, developer_id)
    return identifier


def list_identifiers(db: Session, tenant_id: UUID, developer_id: UUID) -> List[DeveloperIdentifier]:
    _require_developer(db, tenant_id, developer_id)
    return (
        scoped(db, DeveloperIdentifier, tenant_id)
        .filter(DeveloperIdentifier.developer_id == developer_id)
        .order_by(DeveloperIdentifier.first_seen.desc())
        .all()
    )


def remove_identifier(db: Session, tenant_id: UUID, developer_id: UUID, identifier_id: UUID) -> None:
    identifier = (
        scoped(db, DeveloperIdentifier, tenant_id)
        .filter(
            DeveloperIdentifier.id == identifier_id,
            DeveloperIdentifier.developer_id == developer_id,
        )
        .first()
    )
    if not identifier:
        raise NotFoundError("Identifier not found")
    db.delete(identifier)
    db.commit()


# ============================================================================
# Resolution
# ============================================================================

def resolve_developer_by_identifier(db: Session, tenant_id: UUID, kind, value: str) -> Optional[Developer]:
    """Find the developer behind an identifier.

    Looks in the identifier table first; for emails it then falls back to
    account emails and finally to developers' primary email.
    """
    kind = IdentifierKindEnum(kind)
    normalized = normalize_identifier(kind, value)

    identifier = (
        scoped(db, DeveloperIdentifier, tenant_id)
        .filter(DeveloperIdentifier.kind == kind, DeveloperIdentifier.value_normalized == normalized)
        .first()
    )
    if identifier:
        return get_scoped(db, Developer, tenant_id, identifier.developer_id)

    if kind != IdentifierKindEnum.email:
        return None

    account = (
        scoped(db, Account, tenant_id)
        .filter(func.lower(Account.email) == normalized, Account.developer_id.isnot(None))
        .first()
    )
    if account:
        developer = get_scoped(db, Developer, tenant_id, account.developer_id)
        if developer:
            return developer

    return scoped(db, Developer, tenant_id).filter(Developer.primary_email == normalized).first()


def resolve_developer_by_account(db: Session, tenant_id: UUID, provider: str, external_user_id: str) -> Optional[Developer]:
    account = (
        scoped(db, Account, tenant_id)
        .filter(Account.provider == provider, Account.external_user_id == external_user_id)
        .first()
    )
    if not account or not account.developer_id:
        return None
    return get_scoped(db, Developer, tenant_id, account.developer_id)


# ============================================================================
# Duplicates & merge
# ============================================================================

def find_duplicates(db: Session, tenant_id: UUID, developer_id: UUID) -> List[dict]:
    """Other developers that share an email with this one.

    Emails considered: the developer's primary email, its email identifiers
    and the emails of its accounts. A candidate matches when its primary
    email or one of its accounts' emails is in that set. Signals for the
    same candidate are combined with `combine_confidences`.
    """
    developer = _require_developer(db, tenant_id, developer_id)

    emails = set()
    if developer.primary_email:
        emails.add(developer.primary_email.lower())
    for identifier in (
        scoped(db, DeveloperIdentifier, tenant_id)
        .filter(
            DeveloperIdentifier.developer_id == developer_id,
            DeveloperIdentifier.kind == IdentifierKindEnum.email,
        )
    ):
        emails.add(identifier.value_normalized)
    for account in scoped(db, Account, tenant_id).filter(Account.developer_id == developer_id):
        if account.email:
            emails.add(account.email.lower())

    if not emails:
        return []

    signals: Dict[UUID, dict] = {}

    def _signal(candidate: Developer, confidence: float, matched: str) -> None:
        entry = signals.setdefault(candidate.id, {"developer": candidate, "confidences": [], "matched_on": []})
        entry["confidences"].append(confidence)
        entry["matched_on"].append(matched)

    for candidate in (
        scoped(db, Developer, tenant_id)
        .filter(Developer.id != developer_id, Developer.primary_email.in_(emails))
    ):
        _signal(candidate, PRIMARY_EMAIL_MATCH_CONFIDENCE, f"primary_email:{candidate.primary_email}")

    for account in (
        scoped(db, Account, tenant_id)
        .filter(
            func.lower(Account.email).in_(emails),
            Account.developer_id.isnot(None),
            Account.developer_id != developer_id,
        )
    ):
        candidate = get_scoped(db, Developer, tenant_id, account.developer_id)
        if candidate:
            _signal(candidate, float(account.confidence), f"account:{account.provider}:{account.email}")

    results = [
        {
            "developer_id": entry["developer"].id,
            "display_name": entry["developer"].display_name,
            "primary_email": entry["developer"].primary_email,
            "confidence": round(combine_confidences(entry["confidences"]), 4),
            "matched_on": entry["matched_on"],
        }
        for entry in signals.values()
    ]
    results.sort(key=lambda item: item["confidence"], reverse=True)
    return results


def merge_developers(
    db: Session,
    tenant_id: UUID,
    into_developer_id: UUID,
    from_developer_id: UUID,
    reason: Optional[str] = None,
    merged_by: Optional[UUID] = None,
) -> Developer:
    """Fold `from` into `into` and delete `from`.

    Identifiers, accounts and activities move to the target; tags are
    unioned; the target keeps its own display name, organization and
    primary email, taking the source's only where it has none. A merge log
    row records the operation.
    """
    if into_developer_id == from_developer_id:
        raise InvalidInputError("Cannot merge developer with itself")

    target = _require_developer(db, tenant_id, into_developer_id, "Target developer")
    source = _require_developer(db, tenant_id, from_developer_id, "Source developer")

    scoped(db, DeveloperIdentifier, tenant_id).filter(
        DeveloperIdentifier.developer_id == source.id
    ).update({DeveloperIdentifier.developer_id: target.id}, synchronize_session=False)
    scoped(db, Account, tenant_id).filter(
        Account.developer_id == source.id
    ).update({Account.developer_id: target.id}, synchronize_session=False)
    moved_activities = scoped(db, Activity, tenant_id).filter(
        Activity.developer_id == source.id
    ).update({Activity.developer_id: target.id}, synchronize_session=False)

    merged_tags = list(dict.fromkeys((target.tags or []) + (source.tags or [])))
    source_email = source.primary_email
    # Release the unique (tenant, primary_email) slot before the target takes it
    source.primary_email = None
    db.flush()

    target.tags = merged_tags
    target.display_name = target.display_name or source.display_name
    target.org_id = target.org_id or source.org_id
    target.primary_email = target.primary_email or source_email
    target.updated_at = datetime.utcnow()

    db.add(DeveloperMergeLog(
        tenant_id=tenant_id,
        into_developer_id=target.id,
        from_developer_id=source.id,
        reason=reason or "Manual merge",
        evidence={
            "method": "manual" if merged_by else "automatic",
            "merged_from": source.display_name or str(source.id),
            "merged_into": target.display_name or str(target.id),
            "activities_moved": moved_activities,
        },
        merged_by=merged_by,
    ))
    db.expire(source, ["identifiers", "accounts"])
    db.delete(source)
    db.commit()
    # Bulk updates bypassed the identity map
    db.expire_all()
    db.refresh(target)

    logger.info(
        "[IDENTITY] Merged developer %s into %s (%d activities moved)",
        from_developer_id, into_developer_id, moved_activities,
    )
    return target
