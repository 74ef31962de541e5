"""FastAPI application entrypoint.

Configures middleware, error handlers, routers, the admin panel and a
healthcheck endpoint.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from sqladmin import Admin, ModelView
from starlette.middleware.sessions import SessionMiddleware
import logging
from sqlalchemy.exc import SQLAlchemyError
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .authentication import SimpleAuth
from .database import engine, get_sync_session
from .deps import get_settings
from .errors import register_exception_handlers
from .routers import auth as auth_router
from .routers import activities as activities_router
from .routers import activity_types as activity_types_router
from .routers import campaigns as campaigns_router
from .routers import developers as developers_router
from .routers import funnel as funnel_router
from .routers import organizations as organizations_router
from .routers import overview as overview_router
from .routers import plugins as plugins_router
from .routers import api_tokens as api_tokens_router
from .routers import shortlinks as shortlinks_router
from .services.activity_types import seed_funnel_stages
from .telemetry import init_observability, shutdown_observability
from .workers.arq_enqueue import reset_arq_pool
from . import schemas

# Import models so Alembic can discover metadata
from . import models  # noqa: F401


DEFAULT_ADMIN_SECRET = "supersecretkey-change-this-in-production"
PUBLIC_ENDPOINTS = ["/health", "/api/auth/register", "/api/auth/login", "/c/{key}"]


# SQLAdmin ModelView classes. Display strings come from the __str__ methods in models.py.

class TenantAdmin(ModelView, model=models.Tenant):
    column_list = [models.Tenant.id, models.Tenant.name, models.Tenant.created_at]
    form_columns = ["name"]
    column_searchable_list = ["name"]
    column_sortable_list = ["name", "created_at"]
    name = "Tenant"
    name_plural = "Tenants"
    icon = "fa-solid fa-building"


class UserAdmin(ModelView, model=models.User):
    """Dashboard users. The tenant is picked from a searchable dropdown."""
    column_list = [models.User.id, models.User.email, models.User.display_name, models.User.role, models.User.tenant, models.User.disabled]
    form_columns = ["email", "display_name", "role", "disabled", "tenant"]
    column_searchable_list = ["email", "display_name"]
    column_sortable_list = ["email", "role", "last_login_at"]
    form_ajax_refs = {
        "tenant": {
            "fields": ["name"],
            "order_by": "name",
        }
    }
    name = "User"
    name_plural = "Users"
    icon = "fa-solid fa-user"


class DeveloperAdmin(ModelView, model=models.Developer):
    column_list = [models.Developer.id, models.Developer.display_name, models.Developer.primary_email, models.Developer.organization, models.Developer.tenant_id]
    column_searchable_list = ["display_name", "primary_email"]
    column_sortable_list = ["display_name", "created_at", "updated_at"]
    can_create = False
    name = "Developer"
    name_plural = "Developers"
    icon = "fa-solid fa-code"


class CampaignAdmin(ModelView, model=models.Campaign):
    column_list = [models.Campaign.id, models.Campaign.name, models.Campaign.channel, models.Campaign.start_date, models.Campaign.end_date, models.Campaign.budget_total]
    column_searchable_list = ["name", "channel"]
    column_sortable_list = ["name", "start_date", "end_date"]
    can_create = False
    name = "Campaign"
    name_plural = "Campaigns"
    icon = "fa-solid fa-bullhorn"


class ActivityAdmin(ModelView, model=models.Activity):
    """Read-mostly view over the activity log."""
    column_list = [models.Activity.id, models.Activity.action, models.Activity.source, models.Activity.developer, models.Activity.occurred_at, models.Activity.value]
    column_searchable_list = ["action", "source", "dedup_key"]
    column_sortable_list = ["action", "occurred_at", "ingested_at"]
    can_create = False
    name = "Activity"
    name_plural = "Activities"
    icon = "fa-solid fa-bolt"


class ActivityTypeAdmin(ModelView, model=models.ActivityType):
    column_list = [models.ActivityType.id, models.ActivityType.action, models.ActivityType.stage_key, models.ActivityType.tenant_id]
    column_searchable_list = ["action"]
    column_sortable_list = ["action", "stage_key"]
    can_create = False
    name = "Activity Type"
    name_plural = "Activity Types"
    icon = "fa-solid fa-filter"


class PluginAdmin(ModelView, model=models.Plugin):
    # config is excluded: secret fields are encrypted and edited through the API only
    column_list = [models.Plugin.id, models.Plugin.key, models.Plugin.name, models.Plugin.enabled, models.Plugin.tenant_id]
    form_columns = ["name", "enabled"]
    column_searchable_list = ["key", "name"]
    column_sortable_list = ["key", "name", "enabled"]
    can_create = False
    name = "Plugin"
    name_plural = "Plugins"
    icon = "fa-solid fa-plug"


class PluginRunAdmin(ModelView, model=models.PluginRun):
    column_list = [models.PluginRun.id, models.PluginRun.plugin, models.PluginRun.job_name, models.PluginRun.status, models.PluginRun.started_at, models.PluginRun.completed_at, models.PluginRun.events_processed]
    column_sortable_list = ["job_name", "status", "started_at"]
    can_create = False
    can_edit = False
    name = "Plugin Run"
    name_plural = "Plugin Runs"
    icon = "fa-solid fa-play"


class ShortlinkAdmin(ModelView, model=models.Shortlink):
    column_list = [models.Shortlink.id, models.Shortlink.key, models.Shortlink.target_url, models.Shortlink.campaign, models.Shortlink.tenant_id]
    column_searchable_list = ["key", "target_url"]
    column_sortable_list = ["key", "created_at"]
    can_create = False
    name = "Shortlink"
    name_plural = "Shortlinks"
    icon = "fa-solid fa-link"


class ApiTokenAdmin(ModelView, model=models.ApiToken):
    # token_hash is never shown; revoke through the API
    column_list = [models.ApiToken.id, models.ApiToken.name, models.ApiToken.token_prefix, models.ApiToken.scopes, models.ApiToken.expires_at, models.ApiToken.revoked_at, models.ApiToken.tenant_id]
    column_sortable_list = ["name", "created_at", "last_used_at"]
    can_create = False
    can_edit = False
    name = "API Token"
    name_plural = "API Tokens"
    icon = "fa-solid fa-key"


def create_app() -> FastAPI:
    app = FastAPI(
        title="devcrm API",
        description="""
        devcrm is a multi-tenant developer-relations CRM.

        This API provides endpoints for:
        - User authentication and tenant sign-up
        - Developers, organizations, identifiers and duplicate merging
        - Activities and the activity-type to funnel-stage mapping
        - Funnel statistics, drop rates and time series
        - Campaigns, budgets, attribution and ROI
        - Plugins: configuration, job runs and raw events

        ## Authentication

        The API uses JWT-based authentication with HTTP-only cookies.
        All authenticated endpoints require a valid JWT obtained through the login endpoint.
        Every record is scoped to the tenant of the signed-in user.
        """,
        version="1.0.0",
        license_info={
            "name": "Proprietary",
        },
    )

    # Trust X-Forwarded-Proto from load balancers so request.url.scheme is "https"
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

    settings = get_settings()

    if settings.ADMIN_SECRET_KEY == DEFAULT_ADMIN_SECRET:
        logger.warning("[STARTUP] Using default admin secret key. Set ADMIN_SECRET_KEY for production.")

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.ADMIN_SECRET_KEY
    )

    # BACKEND_CORS_ORIGINS is a comma-separated list: "https://crm.example.com,http://localhost:3000"
    allowed_origins = [origin.strip() for origin in settings.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]
    logger.info("[CORS] Allowed origins: %s", allowed_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(auth_router.router)
    app.include_router(developers_router.router)
    app.include_router(organizations_router.router)
    app.include_router(activities_router.router)
    app.include_router(activity_types_router.router)
    app.include_router(funnel_router.router)
    app.include_router(campaigns_router.router)
    app.include_router(overview_router.router)
    app.include_router(plugins_router.router)
    app.include_router(shortlinks_router.router)
    app.include_router(shortlinks_router.redirect_router)
    app.include_router(api_tokens_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
        description="Unauthenticated liveness check for load balancers.",
    )
    def health():
        return schemas.HealthResponse(status="ok")

    @app.on_event("startup")
    async def startup_event():
        status = init_observability()
        logger.info("[STARTUP] Observability: %s", status)
        try:
            with get_sync_session() as db:
                seed_funnel_stages(db)
        except SQLAlchemyError as e:
            # Migrations may not have run yet; the API still starts
            logger.warning("[STARTUP] Could not seed funnel stages: %s", e)

    @app.on_event("shutdown")
    async def shutdown_event():
        await reset_arq_pool()
        shutdown_observability()

    admin = Admin(
        app,
        engine,
        title="devcrm Admin",
        authentication_backend=SimpleAuth(secret_key=settings.ADMIN_SECRET_KEY),
    )
    admin.add_view(TenantAdmin)
    admin.add_view(UserAdmin)
    admin.add_view(DeveloperAdmin)
    admin.add_view(CampaignAdmin)
    admin.add_view(ActivityAdmin)
    admin.add_view(ActivityTypeAdmin)
    admin.add_view(PluginAdmin)
    admin.add_view(PluginRunAdmin)
    admin.add_view(ShortlinkAdmin)
    admin.add_view(ApiTokenAdmin)

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )

        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "cookieAuth": {
                "type": "apiKey",
                "in": "cookie",
                "name": "access_token",
                "description": "JWT token stored in HTTP-only cookie. Format: 'Bearer <token>'"
            }
        }

        for path, operations in openapi_schema["paths"].items():
            if path in PUBLIC_ENDPOINTS:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"cookieAuth": []}])

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi
    return app


app = create_app()
