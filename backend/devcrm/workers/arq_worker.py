"""ARQ async worker - plugin job processor.

WHAT:
    Executes plugin jobs enqueued by `POST /api/plugins/{id}/run`. Each job
    run is tracked by a PluginRun row that moves pending -> running ->
    success | failed.

WHY:
    - Plugin jobs can touch many rows; they must not block API requests
    - The run row gives the dashboard history, logs and durations
    - Jobs are looked up in PLUGIN_JOBS so new jobs are one function away

ARCHITECTURE:
    ┌──────────────────┐   enqueue    ┌─────────────────┐   PLUGIN_JOBS   ┌────────────────┐
    │ routers/plugins  │─────────────▶│ run_plugin_job  │────────────────▶│ process_events │
    │ (creates run)    │  arq:queue   │ (orchestrator)  │                 │ (events->acts) │
    └──────────────────┘              └─────────────────┘                 └────────────────┘

USAGE:
    # Start worker
    arq devcrm.workers.arq_worker.WorkerSettings

    # Or use the start script
    python -m devcrm.workers.start_arq_worker

REFERENCES:
    - https://arq-docs.helpmanual.io/
    - devcrm/services/plugin_runs.py
    - devcrm/services/plugin_events.py
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..deps import get_settings
from ..exceptions import ConflictError, DevCrmError
from ..models import IdentifierKindEnum, Plugin, PluginEventRaw, PluginEventStatusEnum, PluginRun, PluginRunStatusEnum
from ..services import plugin_events, plugin_runs
from ..services.activities import create_activity, to_naive_utc
from ..services.identity import resolve_developer_by_identifier
from ..services.plugin_config import decrypt_plugin_config
from ..telemetry import capture_exception, init_observability, set_plugin_run_context, shutdown_observability
from .arq_enqueue import QUEUE_NAME, get_redis_settings

logger = logging.getLogger(__name__)


# =============================================================================
# PLUGIN JOBS
# =============================================================================

def _parse_occurred_at(raw: Dict[str, Any], fallback: datetime) -> datetime:
    value = raw.get("occurredAt") or raw.get("occurred_at") or raw.get("timestamp")
    if isinstance(value, str):
        try:
            return to_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            logger.warning("[ARQ] Unparseable timestamp %r, using ingestion time", value)
    return fallback


def event_to_activity(db: Session, plugin: Plugin, event: PluginEventRaw) -> Dict[str, Any]:
    """Map a raw plugin event onto activity fields.

    The action comes from `rawData.action`, falling back to the event type.
    The developer is resolved by email; unknown people become an anonymous id.
    """
    raw = event.raw_data or {}
    developer = None
    email = raw.get("email")
    if isinstance(email, str) and email.strip():
        developer = resolve_developer_by_identifier(db, event.tenant_id, IdentifierKindEnum.email, email)

    anon_id = None
    if developer is None:
        anon_id = str(raw.get("anonId") or raw.get("anon_id") or raw.get("userId") or f"{plugin.key}:{event.id}")

    return {
        "developer_id": developer.id if developer else None,
        "anon_id": anon_id,
        "action": raw.get("action") or event.event_type,
        "occurred_at": _parse_occurred_at(raw, event.ingested_at),
        "source": f"plugin:{plugin.key}",
        "source_ref": str(event.id),
        "category": raw.get("category"),
        "value": raw.get("value"),
        "metadata": {"plugin": plugin.key, "event_type": event.event_type, "event_id": str(event.id)},
        "dedup_key": f"{plugin.key}:{event.id}",
    }


def _mark_event(db: Session, event_id: UUID, status: PluginEventStatusEnum, error: Optional[str] = None) -> None:
    event = db.get(PluginEventRaw, event_id)
    event.status = status
    event.processed_at = datetime.utcnow()
    event.error_message = error
    db.commit()


def process_events(db: Session, plugin: Plugin, config: Dict[str, Any], run: PluginRun) -> int:
    """Turn one batch of pending raw events into activities.

    Events whose activity already exists (same dedup key) count as
    processed, so reprocessing an event never duplicates its activity.
    Returns the number of events processed.
    """
    batch_size = int(config.get("batchSize") or get_settings().PLUGIN_EVENT_BATCH_SIZE)
    events = plugin_events.pending_events(db, plugin.tenant_id, plugin.id, limit=batch_size)
    logger.info("[ARQ] Run %s: %d pending events for plugin %s", run.id, len(events), plugin.key)

    processed = 0
    failed = 0
    for event_id in [event.id for event in events]:
        event = db.get(PluginEventRaw, event_id)
        try:
            create_activity(db, plugin.tenant_id, event_to_activity(db, plugin, event))
        except ConflictError:
            logger.info("[ARQ] Event %s already converted, marking processed", event_id)
        except DevCrmError as e:
            db.rollback()
            _mark_event(db, event_id, PluginEventStatusEnum.failed, e.message)
            failed += 1
            continue
        _mark_event(db, event_id, PluginEventStatusEnum.processed)
        processed += 1

    if failed:
        logger.warning("[ARQ] Run %s: %d events failed", run.id, failed)
    return processed


PLUGIN_JOBS: Dict[str, Callable[[Session, Plugin, Dict[str, Any], PluginRun], int]] = {
    "process_events": process_events,
}


async def run_plugin_job(
    ctx: Dict,
    tenant_id: str,
    plugin_id: str,
    run_id: str,
    job_name: str,
) -> Dict[str, Any]:
    """Execute one plugin job and record the outcome on its run.

    The job and its run bookkeeping use a sync session, so they run in a
    thread; the event loop stays free for other jobs and arq's health checks.

    Args:
        ctx: ARQ context
        tenant_id: Tenant UUID string
        plugin_id: Plugin UUID string
        run_id: PluginRun UUID string created by the API
        job_name: Key into PLUGIN_JOBS

    Returns:
        Dict with run status and events processed
    """
    logger.info("[ARQ] Starting plugin job %s (run %s)", job_name, run_id)
    return await asyncio.to_thread(_execute_plugin_job, tenant_id, plugin_id, run_id, job_name)


def _execute_plugin_job(tenant_id: str, plugin_id: str, run_id: str, job_name: str) -> Dict[str, Any]:
    # Session is opened, used and closed on the same thread
    db = SessionLocal()
    tenant_uuid = UUID(tenant_id)
    run_uuid = UUID(run_id)
    try:
        run = plugin_runs.start_run(db, tenant_uuid, run_uuid)
        plugin = db.get(Plugin, UUID(plugin_id))
        job = PLUGIN_JOBS.get(job_name)

        if plugin is None or plugin.tenant_id != tenant_uuid:
            raise LookupError(f"Plugin {plugin_id} not found")
        set_plugin_run_context(tenant_id, plugin.key, run_id, job_name)
        if not plugin.enabled:
            raise RuntimeError(f"Plugin '{plugin.key}' is disabled")
        if job is None:
            raise LookupError(f"Unknown job '{job_name}'")

        config = decrypt_plugin_config(plugin.key, plugin.config_schema or [], plugin.config)
        events_processed = job(db, plugin, config, run)

        plugin_runs.complete_run(db, tenant_uuid, run_uuid, PluginRunStatusEnum.success, events_processed)
        logger.info("[ARQ] Plugin job %s complete: %d events", job_name, events_processed)
        return {"status": "success", "events_processed": events_processed}

    except Exception as e:
        logger.exception("[ARQ] Plugin job %s failed for run %s: %s", job_name, run_id, e)
        capture_exception(e, extra={
            "operation": "run_plugin_job",
            "tenant_id": tenant_id,
            "plugin_id": plugin_id,
            "run_id": run_id,
            "job_name": job_name,
        })
        db.rollback()
        plugin_runs.complete_run(db, tenant_uuid, run_uuid, PluginRunStatusEnum.failed, 0, str(e))
        return {"status": "failed", "error": str(e)}
    finally:
        db.close()


# =============================================================================
# WORKER LIFECYCLE
# =============================================================================

async def startup(ctx: Dict) -> None:
    """Worker startup - log config."""
    import platform

    logger.info("=" * 60)
    logger.info("[ARQ] Worker starting up (plugin jobs)")
    logger.info("=" * 60)
    logger.info("[ARQ] Python: %s", platform.python_version())
    logger.info("[ARQ] Host: %s", platform.node())
    logger.info("[ARQ] Queue: %s", WorkerSettings.queue_name)
    logger.info("[ARQ] Jobs: %s", ", ".join(sorted(PLUGIN_JOBS)))
    logger.info("=" * 60)

    ctx["observability"] = init_observability()
    ctx["startup_time"] = datetime.now(timezone.utc)
    ctx["jobs_processed"] = 0


async def shutdown(ctx: Dict) -> None:
    """Worker shutdown - log stats."""
    jobs = ctx.get("jobs_processed", 0)
    uptime = datetime.now(timezone.utc) - ctx.get("startup_time", datetime.now(timezone.utc))

    logger.info("=" * 60)
    logger.info("[ARQ] Worker shutting down")
    logger.info("[ARQ] Jobs processed: %s", jobs)
    logger.info("[ARQ] Uptime: %s", uptime)
    logger.info("=" * 60)

    shutdown_observability()


async def on_job_end(ctx: Dict) -> None:
    """Called after each job completes."""
    ctx["jobs_processed"] = ctx.get("jobs_processed", 0) + 1


# =============================================================================
# WORKER SETTINGS
# =============================================================================

class WorkerSettings:
    """ARQ worker configuration.

    - max_jobs=10: up to 10 plugin runs at once
    - job_timeout=600: 10 minutes per run
    - max_tries=1: a run row is finalised once; rerun from the API instead
    """

    functions = [run_plugin_job]

    cron_jobs = []

    # Lifecycle hooks
    on_startup = startup
    on_shutdown = shutdown
    after_job_end = on_job_end

    redis_settings = get_redis_settings(worker=True)

    max_jobs = 10
    job_timeout = 600
    keep_result = 3600
    retry_jobs = False
    max_tries = 1
    health_check_interval = 30

    queue_name = QUEUE_NAME
