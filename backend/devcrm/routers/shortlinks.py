"""
Shortlinks router
-----------------
Purpose:
- CRUD for campaign shortlinks under `/api/shortlinks`, with click counts.
- Public `GET /c/{key}` redirect that records the click as an activity.
Design choices:
- Visitors are tracked with a first-party `devcrm_anon_id` cookie (1 year).
- A failed click write never blocks the redirect; it is logged and sent to Sentry.
- Targets outside ALLOWED_REDIRECT_HOSTS answer 403 instead of redirecting.
"""

import logging
import uuid
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Cookie, Depends, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_settings, get_tenant_id
from ..exceptions import ForbiddenError, NotFoundError
from ..models import Shortlink
from ..services import shortlinks as shortlink_service
from ..telemetry import capture_exception
from ..tenancy import parse_uuid

logger = logging.getLogger(__name__)

ANON_COOKIE = "devcrm_anon_id"
ANON_COOKIE_MAX_AGE = 365 * 24 * 3600


router = APIRouter(
    prefix="/api/shortlinks",
    tags=["Shortlinks"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
        409: {"model": schemas.ErrorResponse, "description": "Conflict"},
    }
)

redirect_router = APIRouter(tags=["Shortlinks"])


def _shortlink_out(shortlink: Shortlink, clicks: int) -> schemas.ShortlinkOut:
    return schemas.ShortlinkOut(
        id=shortlink.id,
        key=shortlink.key,
        target_url=shortlink.target_url,
        short_url=shortlink_service.short_url(get_settings().SHORTLINK_BASE_URL, shortlink.key),
        campaign_id=shortlink.campaign_id,
        resource_id=shortlink.resource_id,
        attributes=shortlink.attributes,
        click_count=clicks,
        created_at=shortlink.created_at,
        updated_at=shortlink.updated_at,
    )


def _with_clicks(db: Session, shortlink: Shortlink) -> schemas.ShortlinkOut:
    counts = shortlink_service.click_counts(db, shortlink.tenant_id, [shortlink.id])
    return _shortlink_out(shortlink, counts.get(shortlink.id, 0))


@router.get("", response_model=schemas.ShortlinkList, summary="List shortlinks")
def list_shortlinks(
    campaign_id: Optional[str] = Query(None, alias="campaignId"),
    resource_id: Optional[str] = Query(None, alias="resourceId"),
    search: Optional[str] = Query(None, description="Case-insensitive key or target URL match"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    order_by: Literal["key", "targetUrl", "createdAt", "updatedAt", "clickCount"] = Query("createdAt", alias="orderBy"),
    order_direction: Literal["asc", "desc"] = Query("desc", alias="orderDirection"),
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    rows, total = shortlink_service.list_shortlinks(
        db,
        tenant_id,
        campaign_id=parse_uuid(campaign_id, "campaign") if campaign_id else None,
        resource_id=parse_uuid(resource_id, "resource") if resource_id else None,
        search=search,
        limit=limit,
        offset=offset,
        order_by=order_by,
        order_direction=order_direction,
    )
    return schemas.ShortlinkList(shortlinks=[_shortlink_out(link, clicks) for link, clicks in rows], total=total)


@router.post(
    "",
    response_model=schemas.ShortlinkOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a shortlink",
    description="""
    `key` is optional (4-20 characters of `A-Z a-z 0-9 _ -`); an 8-character
    key is generated when omitted. Keys are unique across all tenants.
    """,
)
def create_shortlink(
    payload: schemas.ShortlinkCreate,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    shortlink = shortlink_service.create_shortlink(db, tenant_id, payload.model_dump())
    return _shortlink_out(shortlink, 0)


@router.get("/{shortlink_id}", response_model=schemas.ShortlinkOut, summary="Get a shortlink")
def get_shortlink(
    shortlink_id: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    shortlink = shortlink_service.get_shortlink(db, tenant_id, parse_uuid(shortlink_id, "shortlink"))
    return _with_clicks(db, shortlink)


@router.put("/{shortlink_id}", response_model=schemas.ShortlinkOut, summary="Update a shortlink")
def update_shortlink(
    shortlink_id: str,
    payload: schemas.ShortlinkUpdate,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    shortlink = shortlink_service.update_shortlink(
        db, tenant_id, parse_uuid(shortlink_id, "shortlink"), payload.model_dump(exclude_unset=True)
    )
    return _with_clicks(db, shortlink)


@router.delete("/{shortlink_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a shortlink")
def delete_shortlink(
    shortlink_id: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    shortlink_service.delete_shortlink(db, tenant_id, parse_uuid(shortlink_id, "shortlink"))


# ============================================================================
# Public redirect
# ============================================================================

@redirect_router.get(
    "/c/{key}",
    status_code=status.HTTP_302_FOUND,
    summary="Follow a shortlink",
    responses={
        302: {"description": "Redirect to the target URL"},
        403: {"model": schemas.ErrorResponse, "description": "Target not allowed"},
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
    },
)
def follow_shortlink(
    key: str,
    request: Request,
    anon_cookie: Optional[str] = Cookie(default=None, alias=ANON_COOKIE),
    db: Session = Depends(get_db),
):
    shortlink = shortlink_service.resolve_key(db, key)
    if shortlink is None:
        raise NotFoundError("Shortlink not found")

    if not shortlink_service.is_allowed_redirect(shortlink.target_url, get_settings().ALLOWED_REDIRECT_HOSTS):
        logger.error("[SHORTLINKS] Blocked redirect of %s to %s", shortlink.id, shortlink.target_url)
        raise ForbiddenError("Invalid redirect destination")

    anon_id = anon_cookie or uuid.uuid4().hex
    try:
        shortlink_service.record_click(
            db,
            shortlink,
            anon_id,
            user_agent=request.headers.get("user-agent"),
            referer=request.headers.get("referer"),
            ip_address=request.client.host if request.client else None,
        )
    except Exception as e:
        db.rollback()
        logger.exception("[SHORTLINKS] Failed to record click on %s: %s", shortlink.key, e)
        capture_exception(e, extra={"operation": "record_click", "shortlink_id": str(shortlink.id)})

    response = RedirectResponse(url=shortlink.target_url, status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        ANON_COOKIE,
        anon_id,
        max_age=ANON_COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
    )
    return response
