"""Dependency providers and settings management."""

import logging
from functools import lru_cache
from typing import Callable, Optional
from uuid import UUID

from fastapi import Cookie, Depends, Header, HTTPException, status
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.orm import Session

from .database import get_db
from .models import User, UserRoleEnum
from .security import API_TOKEN_PREFIX, decode_token
from .services.api_tokens import authenticate_token

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    # Cookie domain must NOT include protocol (https://)
    # Set to None for same-origin cookies
    COOKIE_DOMAIN: Optional[str] = None

    # Admin panel (/admin)
    ADMIN_SECRET_KEY: str = "supersecretkey-change-this-in-production"
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str | None = None

    # Redis / ARQ
    REDIS_URL: str = "redis://localhost:6379/0"

    # Domain defaults
    DEFAULT_CURRENCY: str = "JPY"
    PLUGIN_EVENT_BATCH_SIZE: int = 100

    # Shortlinks: public base for `/c/{key}` and the redirect allowlist
    # (comma-separated hosts, "*.example.com" matches subdomains; empty allows any)
    SHORTLINK_BASE_URL: str = "http://localhost:8000"
    ALLOWED_REDIRECT_HOSTS: str = ""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _strip_bearer(raw: str) -> str:
    return raw[len("Bearer ") :] if raw.startswith("Bearer ") else raw


def get_current_user(
    db: Session = Depends(get_db),
    access_token: Optional[str] = Cookie(default=None, alias="access_token"),
    authorization: Optional[str] = Header(default=None),
) -> User:
    """Resolve the current user from the `access_token` cookie.

    The cookie value is expected to be in the form: "Bearer <jwt>".
    An `Authorization: Bearer <jwt>` header is accepted for API clients.
    Every failure answers 401 with the same body so callers cannot tell
    which part of the credential was wrong.
    """
    raw = access_token or authorization
    if not raw:
        raise _unauthorized()

    try:
        payload = decode_token(_strip_bearer(raw))
    except Exception:
        raise _unauthorized()

    subject = payload.get("sub")
    tenant_claim = payload.get("tenant_id")
    if not subject or not tenant_claim:
        raise _unauthorized()

    try:
        user_id = UUID(subject)
        tenant_id = UUID(tenant_claim)
    except ValueError:
        raise _unauthorized()

    user = (
        db.query(User)
        .filter(User.id == user_id, User.tenant_id == tenant_id)
        .first()
    )
    if not user or user.disabled:
        raise _unauthorized()
    return user


def get_tenant_id(current_user: User = Depends(get_current_user)) -> UUID:
    """Tenant context for the request: the authenticated user's tenant."""
    return current_user.tenant_id


def require_scope(scope: str) -> Callable[..., UUID]:
    """Tenant dependency that also accepts an API token carrying `scope`.

    `Authorization: Bearer devcrm_...` is checked as an API token; anything
    else falls through to the session JWT rules of `get_current_user`.
    A valid token without the scope answers 403.
    """

    def tenant_for_scope(
        db: Session = Depends(get_db),
        access_token: Optional[str] = Cookie(default=None, alias="access_token"),
        authorization: Optional[str] = Header(default=None),
    ) -> UUID:
        credential = _strip_bearer(authorization) if authorization else ""
        if not credential.startswith(API_TOKEN_PREFIX):
            return get_current_user(db, access_token, authorization).tenant_id

        token = authenticate_token(db, credential)
        if token is None:
            raise _unauthorized()
        if scope not in (token.scopes or []):
            logger.info("[AUTH] Token %s used without scope %s", token.token_prefix, scope)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Token lacks the '{scope}' scope")
        return token.tenant_id

    return tenant_for_scope


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Allow only tenant admins."""
    if current_user.role != UserRoleEnum.admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user
