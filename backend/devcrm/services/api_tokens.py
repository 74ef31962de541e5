"""API token lifecycle: issue, list, revoke and authenticate.

Tokens let scripts and webhooks call the API without a browser session.
The plaintext token is returned once, at creation; afterwards only its
sha256 hash and a 16-character display prefix exist.

Status is derived, never stored:
    revoked  -> revoked_at is set
    expired  -> not revoked, expires_at <= now
    active   -> everything else
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import ConflictError, InvalidInputError, NotFoundError
from ..models import ApiToken
from ..security import API_TOKEN_PREFIX, generate_api_token, hash_api_token
from ..tenancy import get_scoped, scoped
from .activities import to_naive_utc

logger = logging.getLogger(__name__)

API_TOKEN_SCOPES = ("activities:read", "activities:write", "webhook:write")
TOKEN_STATUSES = ("active", "expired", "revoked", "all")


def token_status(token: ApiToken, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    if token.revoked_at is not None:
        return "revoked"
    if token.expires_at is not None and token.expires_at <= now:
        return "expired"
    return "active"


def _check_scopes(scopes: Sequence[str]) -> List[str]:
    if not scopes:
        raise InvalidInputError("At least one scope is required", details=[{"field": "scopes", "message": "is required"}])
    unknown = sorted(set(scopes) - set(API_TOKEN_SCOPES))
    if unknown:
        raise InvalidInputError(
            f"Unknown scope(s): {', '.join(unknown)}",
            details=[{"field": "scopes", "message": f"allowed: {', '.join(API_TOKEN_SCOPES)}"}],
        )
    # De-duplicate, keep the caller's order
    return list(dict.fromkeys(scopes))


def create_token(
    db: Session,
    tenant_id: UUID,
    user_id: UUID,
    name: str,
    scopes: Sequence[str],
    expires_at: Optional[datetime] = None,
) -> Tuple[ApiToken, str]:
    """Issue a token. Returns the row and the plaintext, which is never stored."""
    scopes = _check_scopes(scopes)
    expires_at = to_naive_utc(expires_at)
    if expires_at is not None and expires_at <= datetime.utcnow():
        raise InvalidInputError(
            "expiresAt must be in the future",
            details=[{"field": "expiresAt", "message": "must be in the future"}],
        )
    if scoped(db, ApiToken, tenant_id).filter(ApiToken.name == name).first():
        raise ConflictError(f"Token with name '{name}' already exists")

    plaintext = generate_api_token()
    token = ApiToken(
        tenant_id=tenant_id,
        name=name,
        token_prefix=plaintext[:16],
        token_hash=hash_api_token(plaintext),
        scopes=scopes,
        created_by=user_id,
        expires_at=expires_at,
    )
    db.add(token)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Token with name '{name}' already exists")
    db.refresh(token)
    logger.info("[API_TOKENS] Issued token %s (%s) scopes=%s", token.id, token.token_prefix, scopes)
    return token, plaintext


def list_tokens(
    db: Session, tenant_id: UUID, status: str = "active", page: int = 1, per_page: int = 20
) -> Tuple[List[ApiToken], int]:
    now = datetime.utcnow()
    query = scoped(db, ApiToken, tenant_id)
    if status == "active":
        query = query.filter(
            ApiToken.revoked_at.is_(None),
            or_(ApiToken.expires_at.is_(None), ApiToken.expires_at > now),
        )
    elif status == "expired":
        query = query.filter(ApiToken.revoked_at.is_(None), ApiToken.expires_at <= now)
    elif status == "revoked":
        query = query.filter(ApiToken.revoked_at.isnot(None))

    total = query.count()
    items = (
        query.order_by(ApiToken.created_at.desc(), ApiToken.id.asc())
        .limit(per_page)
        .offset((page - 1) * per_page)
        .all()
    )
    return items, total


def get_token(db: Session, tenant_id: UUID, token_id: UUID) -> ApiToken:
    token = get_scoped(db, ApiToken, tenant_id, token_id)
    if not token:
        raise NotFoundError("Token not found")
    return token


def revoke_token(db: Session, tenant_id: UUID, token_id: UUID) -> ApiToken:
    """Revoke a token. Revoking twice keeps the first revocation time."""
    token = get_token(db, tenant_id, token_id)
    if token.revoked_at is None:
        token.revoked_at = datetime.utcnow()
        db.commit()
        db.refresh(token)
        logger.info("[API_TOKENS] Revoked token %s", token_id)
    return token


def authenticate_token(db: Session, plaintext: str) -> Optional[ApiToken]:
    """Return the active token matching `plaintext`, or None.

    Records `last_used_at` on success.
    """
    if not plaintext.startswith(API_TOKEN_PREFIX):
        return None
    token = db.query(ApiToken).filter(ApiToken.token_hash == hash_api_token(plaintext)).first()
    if token is None or token_status(token) != "active":
        return None
    token.last_used_at = datetime.utcnow()
    db.commit()
    return token
