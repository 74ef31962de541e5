"""
Plugins router
--------------
Purpose:
- Install, enable/disable and configure plugins (integrations).
- Start plugin jobs on the arq worker and expose run history and logs.
- Ingest raw plugin events and let the dashboard browse them.
Design choices:
- `{plugin_ref}` accepts the plugin UUID or its key.
- Secrets in configuration are write-only: reads return `{"_exists": true}`.
- Event detail masks credential-looking values before they leave the API.
- Registry, configuration and job routes require the tenant admin role.
- Event ingestion also accepts an API token with the `webhook:write` scope.
"""

import logging
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_current_user, require_admin, require_scope
from ..exceptions import NotFoundError
from ..models import Plugin, PluginEventStatusEnum, PluginRun, PluginRunStatusEnum, User
from ..services import plugin_events as event_service
from ..services import plugin_runs as run_service
from ..services import plugins as plugin_service
from ..telemetry import capture_exception
from ..tenancy import parse_uuid
from ..workers.arq_enqueue import enqueue_plugin_job
from ..workers.arq_worker import PLUGIN_JOBS

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/plugins",
    tags=["Plugins"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        403: {"model": schemas.ErrorResponse, "description": "Forbidden"},
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
        409: {"model": schemas.ErrorResponse, "description": "Conflict"},
    }
)


def _plugin_out(plugin: Plugin) -> schemas.PluginOut:
    return schemas.PluginOut(
        id=plugin.id,
        key=plugin.key,
        name=plugin.name,
        enabled=plugin.enabled,
        has_config=plugin_service.plugin_has_config(plugin),
        config_schema=plugin.config_schema or [],
        created_at=plugin.created_at,
        updated_at=plugin.updated_at,
    )


def _run_out(run: PluginRun) -> schemas.PluginRunOut:
    return schemas.PluginRunOut.model_validate(run).model_copy(
        update={"duration_ms": run_service.duration_ms(run)}
    )


# ============================================================================
# Registry
# ============================================================================

@router.get("", response_model=schemas.PluginList, summary="List installed plugins")
def list_plugins(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    plugins = plugin_service.list_plugins(db, current_user.tenant_id)
    return schemas.PluginList(plugins=[_plugin_out(p) for p in plugins])


@router.post(
    "",
    response_model=schemas.PluginOut,
    status_code=status.HTTP_201_CREATED,
    summary="Install a plugin",
)
def install_plugin(
    payload: schemas.PluginInstall,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    plugin = plugin_service.install_plugin(
        db,
        current_user.tenant_id,
        key=payload.key,
        name=payload.name,
        config_schema=[field.model_dump(by_alias=True, exclude_none=True) for field in payload.config_schema],
        enabled=payload.enabled,
    )
    return _plugin_out(plugin)


@router.get("/{plugin_ref}", response_model=schemas.PluginOut, summary="Get a plugin")
def get_plugin(
    plugin_ref: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _plugin_out(plugin_service.get_plugin(db, current_user.tenant_id, plugin_ref))


@router.post("/{plugin_ref}/enable", response_model=schemas.PluginOut, summary="Enable a plugin")
def enable_plugin(
    plugin_ref: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    return _plugin_out(plugin_service.set_plugin_enabled(db, current_user.tenant_id, plugin_ref, True))


@router.post(
    "/{plugin_ref}/disable",
    response_model=schemas.PluginOut,
    summary="Disable a plugin",
    description="Disabling also clears the stored configuration, secrets included.",
)
def disable_plugin(
    plugin_ref: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    return _plugin_out(plugin_service.set_plugin_enabled(db, current_user.tenant_id, plugin_ref, False))


# ============================================================================
# Configuration
# ============================================================================

@router.get(
    "/{plugin_ref}/config",
    response_model=schemas.PluginConfigOut,
    summary="Get plugin configuration",
    description="Secret fields that are set come back as `{\"_exists\": true}`.",
)
def get_plugin_config(
    plugin_ref: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    return plugin_service.get_plugin_config(db, current_user.tenant_id, plugin_ref)


@router.put(
    "/{plugin_ref}/config",
    response_model=schemas.PluginConfigOut,
    summary="Update plugin configuration",
    description="""
    Values are validated against the plugin's config schema; failures answer
    400 with one `{field, message}` entry per problem. Send `{"_exists": true}`
    for a secret to keep its stored value.
    """,
)
def update_plugin_config(
    plugin_ref: str,
    payload: schemas.PluginConfigUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    return plugin_service.update_plugin_config(db, current_user.tenant_id, plugin_ref, payload.config)


# ============================================================================
# Jobs & runs
# ============================================================================

@router.post(
    "/{plugin_ref}/run",
    response_model=schemas.PluginRunAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a plugin job",
    description="Creates a pending run and enqueues it on the worker.",
)
async def run_plugin_job(
    plugin_ref: str,
    payload: schemas.PluginRunRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    tenant_id = current_user.tenant_id
    plugin = plugin_service.get_plugin(db, tenant_id, plugin_ref)
    if payload.job_name not in PLUGIN_JOBS:
        raise NotFoundError(f"Job '{payload.job_name}' not found")
    plugin_service.ensure_enabled(plugin)

    last_success = run_service.get_last_successful_run(db, tenant_id, plugin.id, payload.job_name)
    run = run_service.create_run(
        db,
        tenant_id,
        plugin.id,
        payload.job_name,
        metadata={
            "triggered_by": str(current_user.id),
            "previous_success_at": last_success.completed_at.isoformat() if last_success and last_success.completed_at else None,
        },
    )

    try:
        await enqueue_plugin_job(tenant_id, plugin.id, run.id, payload.job_name)
    except Exception as e:
        logger.exception("[PLUGINS] Failed to enqueue run %s: %s", run.id, e)
        capture_exception(e, extra={"operation": "enqueue_plugin_job", "run_id": str(run.id)})
        run_service.complete_run(db, tenant_id, run.id, PluginRunStatusEnum.failed, 0, "Failed to enqueue job")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Job queue unavailable")

    return schemas.PluginRunAccepted(run_id=run.id, status=run.status)


@router.get("/{plugin_ref}/runs", response_model=schemas.PluginRunList, summary="Run history")
def list_runs(
    plugin_ref: str,
    run_status: Optional[PluginRunStatusEnum] = Query(None, alias="status"),
    job_name: Optional[str] = Query(None, alias="jobName"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    sort: Literal["asc", "desc"] = Query("desc"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    plugin = plugin_service.get_plugin(db, current_user.tenant_id, plugin_ref)
    runs, total = run_service.list_runs(
        db,
        current_user.tenant_id,
        plugin.id,
        status=run_status,
        job_name=job_name,
        limit=limit,
        offset=offset,
        sort=sort,
    )
    return schemas.PluginRunList(
        runs=[_run_out(run) for run in runs],
        total=total,
        summary=run_service.get_run_summary(db, current_user.tenant_id, plugin.id),
    )


@router.get("/{plugin_ref}/runs/{run_id}", response_model=schemas.PluginRunOut, summary="Get a run")
def get_run(
    plugin_ref: str,
    run_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    plugin = plugin_service.get_plugin(db, current_user.tenant_id, plugin_ref)
    run = run_service.get_run(db, current_user.tenant_id, parse_uuid(run_id, "run"), plugin_id=plugin.id)
    return _run_out(run)


@router.get(
    "/{plugin_ref}/logs",
    response_model=schemas.PluginLogList,
    summary="Run logs",
    description="Runs with their status and error messages, newest first.",
)
def list_logs(
    plugin_ref: str,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    plugin = plugin_service.get_plugin(db, current_user.tenant_id, plugin_ref)
    runs, total = run_service.list_runs(db, current_user.tenant_id, plugin.id, limit=limit, offset=offset)
    logs = [
        schemas.PluginLogEntry(
            run_id=run.id,
            job_name=run.job_name,
            status=run.status,
            started_at=run.started_at,
            completed_at=run.completed_at,
            events_processed=run.events_processed or 0,
            error_message=run.error_message,
        )
        for run in runs
    ]
    return schemas.PluginLogList(logs=logs, total=total)


# ============================================================================
# Raw events
# ============================================================================

@router.post(
    "/{plugin_ref}/events",
    response_model=schemas.PluginEventOut,
    status_code=status.HTTP_201_CREATED,
    summary="Ingest a raw event",
)
def ingest_event(
    plugin_ref: str,
    payload: schemas.PluginEventCreate,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(require_scope("webhook:write")),
):
    plugin = plugin_service.get_plugin(db, tenant_id, plugin_ref)
    return event_service.ingest_event(db, tenant_id, plugin.id, payload.event_type, payload.raw_data)


@router.get("/{plugin_ref}/events", response_model=schemas.PluginEventList, summary="Browse raw events")
def list_events(
    plugin_ref: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100, alias="perPage"),
    event_status: Optional[PluginEventStatusEnum] = Query(None, alias="status"),
    event_type: Optional[str] = Query(None, alias="eventType"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    sort: Literal["asc", "desc"] = Query("desc"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    plugin = plugin_service.get_plugin(db, current_user.tenant_id, plugin_ref)
    events, total, total_pages = event_service.list_events(
        db,
        current_user.tenant_id,
        plugin.id,
        page=page,
        per_page=per_page,
        status=event_status,
        event_type=event_type,
        start_date=start_date,
        end_date=end_date,
        sort=sort,
    )
    return schemas.PluginEventList(
        events=events,
        total=total,
        page=page,
        per_page=per_page,
        total_pages=total_pages,
    )


@router.get("/{plugin_ref}/events/stats", response_model=schemas.PluginEventStats, summary="Event counts")
def event_stats(
    plugin_ref: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    plugin = plugin_service.get_plugin(db, current_user.tenant_id, plugin_ref)
    return event_service.get_event_stats(db, current_user.tenant_id, plugin.id)


@router.get(
    "/{plugin_ref}/events/{event_id}",
    response_model=schemas.PluginEventDetail,
    summary="Event detail",
    description="Raw payload with tokens, passwords and credential-looking values masked.",
)
def get_event(
    plugin_ref: str,
    event_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    plugin = plugin_service.get_plugin(db, current_user.tenant_id, plugin_ref)
    return event_service.get_event_detail(db, current_user.tenant_id, plugin.id, parse_uuid(event_id, "event"))


@router.post(
    "/{plugin_ref}/events/{event_id}/reprocess",
    response_model=schemas.PluginEventOut,
    summary="Reprocess an event",
    description="Puts the event back to pending for the next `process_events` run.",
)
def reprocess_event(
    plugin_ref: str,
    event_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    plugin = plugin_service.get_plugin(db, current_user.tenant_id, plugin_ref)
    return event_service.reprocess_event(db, current_user.tenant_id, plugin.id, parse_uuid(event_id, "event"))
