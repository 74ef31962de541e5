"""API token management: issue, list, inspect and revoke.

Any signed-in user can list tokens; issuing and revoking require the
tenant admin role. The plaintext token appears only in the create response.
"""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_current_user, require_admin
from ..models import ApiToken, User
from ..services import api_tokens as token_service
from ..tenancy import parse_uuid

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/tokens",
    tags=["API Tokens"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        403: {"model": schemas.ErrorResponse, "description": "Forbidden"},
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
        409: {"model": schemas.ErrorResponse, "description": "Conflict"},
    }
)


def _token_out(token: ApiToken) -> dict:
    return dict(
        id=token.id,
        name=token.name,
        token_prefix=token.token_prefix,
        scopes=list(token.scopes or []),
        status=token_service.token_status(token),
        created_by=token.created_by,
        last_used_at=token.last_used_at,
        expires_at=token.expires_at,
        revoked_at=token.revoked_at,
        created_at=token.created_at,
    )


@router.get("", response_model=schemas.ApiTokenList, summary="List API tokens")
def list_tokens(
    status_filter: Literal["active", "expired", "revoked", "all"] = Query("active", alias="status"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100, alias="perPage"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, total = token_service.list_tokens(db, current_user.tenant_id, status_filter, page, per_page)
    return schemas.ApiTokenList(
        tokens=[schemas.ApiTokenOut(**_token_out(t)) for t in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post(
    "",
    response_model=schemas.ApiTokenCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Issue an API token",
    description=f"""
    Scopes: {", ".join(token_service.API_TOKEN_SCOPES)}.
    The `token` field is returned only here; store it right away.
    """,
)
def create_token(
    payload: schemas.ApiTokenCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    token, plaintext = token_service.create_token(
        db, current_user.tenant_id, current_user.id, payload.name, payload.scopes, payload.expires_at
    )
    return schemas.ApiTokenCreated(**_token_out(token), token=plaintext)


@router.get("/{token_id}", response_model=schemas.ApiTokenOut, summary="Get an API token")
def get_token(
    token_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    token = token_service.get_token(db, current_user.tenant_id, parse_uuid(token_id, "token"))
    return schemas.ApiTokenOut(**_token_out(token))


@router.delete("/{token_id}", response_model=schemas.ApiTokenOut, summary="Revoke an API token")
def revoke_token(
    token_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    token = token_service.revoke_token(db, current_user.tenant_id, parse_uuid(token_id, "token"))
    logger.info("[API_TOKENS] %s revoked token %s", current_user.email, token.id)
    return schemas.ApiTokenOut(**_token_out(token))
