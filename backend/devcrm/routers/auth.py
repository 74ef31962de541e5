"""Authentication endpoints: register, login, me, logout."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_current_user, get_settings
from ..models import AuthCredential, Tenant, User, UserRoleEnum
from ..security import create_access_token, get_password_hash, verify_password, verify_password_dummy
from ..services.activity_types import seed_default_activity_types
from ..telemetry import clear_user_context, set_user_context


logger = logging.getLogger(__name__)

COOKIE_NAME = "access_token"
COOKIE_MAX_AGE = 7 * 24 * 3600


router = APIRouter(
    prefix="/api/auth",
    tags=["Authentication"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        500: {"model": schemas.ErrorResponse, "description": "Internal Server Error"},
    }
)


def _cookie_kwargs(request: Request) -> dict:
    """Cookie attributes that work for both local dev and production.

    SameSite=None requires Secure, which browsers ignore over plain HTTP,
    so HTTP requests fall back to Lax.
    """
    settings = get_settings()
    kwargs = {
        "key": COOKIE_NAME,
        "httponly": True,
        "samesite": "none",
        "secure": True,
        "path": "/",
    }
    if request.url.scheme == "http":
        kwargs["samesite"] = "lax"
        kwargs["secure"] = False
    if settings.COOKIE_DOMAIN:
        kwargs["domain"] = settings.COOKIE_DOMAIN
    return kwargs


@router.post(
    "/register",
    response_model=schemas.UserOut,
    status_code=status.HTTP_201_CREATED,
    summary="Register a tenant",
    description="""
    Create a new tenant together with its first user.

    This endpoint:
    - Creates the tenant
    - Creates an `admin` user with a bcrypt password credential
    - Seeds the default activity types (click, attend, signup, post, star)
    - Does not log the user in
    """,
    responses={
        400: {
            "model": schemas.ErrorResponse,
            "description": "Email already registered",
            "content": {"application/json": {"example": {"error": "Email already registered"}}},
        }
    }
)
def register_user(payload: schemas.RegisterRequest, db: Session = Depends(get_db)):
    email = payload.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    tenant = Tenant(name=payload.tenant_name)
    db.add(tenant)
    db.flush()  # assign tenant.id without committing yet

    user = User(
        tenant_id=tenant.id,
        email=email,
        display_name=payload.display_name or email.split("@")[0],
        role=UserRoleEnum.admin,
    )
    db.add(user)
    db.flush()

    db.add(AuthCredential(user_id=user.id, password_hash=get_password_hash(payload.password)))
    seed_default_activity_types(db, tenant.id, commit=False)

    db.commit()
    db.refresh(user)
    logger.info("[AUTH] Registered tenant %s with admin %s", tenant.id, user.id)
    return user


@router.post(
    "/login",
    response_model=schemas.LoginResponse,
    summary="Authenticate user",
    description="""
    Authenticate a user with email and password.

    On success an HTTP-only cookie named `access_token` is set with the
    value "Bearer <jwt>", valid for 7 days.
    """,
    responses={
        401: {
            "model": schemas.ErrorResponse,
            "description": "Invalid credentials",
            "content": {"application/json": {"example": {"error": "Invalid credentials"}}},
        }
    }
)
def login_user(
    payload: schemas.LoginRequest,
    response: Response,
    request: Request,
    db: Session = Depends(get_db),
):
    """Authenticate a user and set an HTTP-only JWT cookie.

    Unknown emails still pay for one bcrypt verification so response timing
    does not reveal which emails are registered.
    """
    user = db.query(User).filter(User.email == payload.email.lower()).first()
    if not user:
        verify_password_dummy(payload.password)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    cred = db.query(AuthCredential).filter(AuthCredential.user_id == user.id).first()
    if not cred or not verify_password(payload.password, cred.password_hash) or user.disabled:
        logger.info("[AUTH] Failed login for user %s", user.id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    user.last_login_at = datetime.utcnow()
    db.commit()
    db.refresh(user)

    token = create_access_token(subject=str(user.id), tenant_id=str(user.tenant_id))
    response.set_cookie(value=f"Bearer {token}", max_age=COOKIE_MAX_AGE, **_cookie_kwargs(request))

    set_user_context(
        user_id=str(user.id),
        email=user.email,
        tenant_id=str(user.tenant_id),
    )
    logger.info("[AUTH] User %s logged in", user.id)
    return schemas.LoginResponse(user=schemas.UserOut.model_validate(user))


@router.post(
    "/logout",
    response_model=schemas.SuccessResponse,
    summary="Logout user",
    description="Clear the `access_token` cookie.",
)
def logout_user(response: Response, request: Request):
    kwargs = _cookie_kwargs(request)
    response.delete_cookie(
        key=kwargs["key"],
        path=kwargs["path"],
        domain=kwargs.get("domain"),
        secure=kwargs["secure"],
        httponly=kwargs["httponly"],
        samesite=kwargs["samesite"],
    )
    clear_user_context()
    return schemas.SuccessResponse(message="Logged out")


@router.get(
    "/me",
    response_model=schemas.UserOut,
    summary="Get current user",
    description="Return the user behind the `access_token` cookie.",
)
def get_me(user: User = Depends(get_current_user)):
    return user
