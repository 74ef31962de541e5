"""Plugin run history.

A run goes pending -> running -> success | failed. The API creates the
pending row and enqueues the job; the worker moves it through the rest.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from ..exceptions import NotFoundError
from ..models import PluginRun, PluginRunStatusEnum
from ..tenancy import scoped

logger = logging.getLogger(__name__)

FINAL_STATUSES = (PluginRunStatusEnum.success, PluginRunStatusEnum.failed)


def duration_ms(run: PluginRun) -> Optional[int]:
    if not run.completed_at or not run.started_at:
        return None
    return int((run.completed_at - run.started_at).total_seconds() * 1000)


def create_run(
    db: Session, tenant_id: UUID, plugin_id: UUID, job_name: str, metadata: Optional[dict] = None
) -> PluginRun:
    run = PluginRun(
        tenant_id=tenant_id,
        plugin_id=plugin_id,
        job_name=job_name,
        status=PluginRunStatusEnum.pending,
        started_at=datetime.utcnow(),
        events_processed=0,
        metadata_=metadata,
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    logger.info("[PLUGINS] Created run %s (%s) for plugin %s", run.id, job_name, plugin_id)
    return run


def start_run(db: Session, tenant_id: UUID, run_id: UUID) -> PluginRun:
    run = get_run(db, tenant_id, run_id)
    run.status = PluginRunStatusEnum.running
    run.started_at = datetime.utcnow()
    db.commit()
    db.refresh(run)
    return run


def complete_run(
    db: Session,
    tenant_id: UUID,
    run_id: UUID,
    status: PluginRunStatusEnum,
    events_processed: int = 0,
    error_message: Optional[str] = None,
) -> PluginRun:
    """Mark a run finished with `success` or `failed`."""
    if status not in FINAL_STATUSES:
        raise ValueError(f"Run must complete with success or failed, got {status}")
    run = get_run(db, tenant_id, run_id)
    run.status = status
    run.completed_at = datetime.utcnow()
    run.events_processed = events_processed
    run.error_message = error_message
    db.commit()
    db.refresh(run)
    logger.info(
        "[PLUGINS] Run %s finished: %s (%d events)", run_id, status.value, events_processed,
    )
    return run


def get_run(db: Session, tenant_id: UUID, run_id: UUID, plugin_id: Optional[UUID] = None) -> PluginRun:
    query = scoped(db, PluginRun, tenant_id).filter(PluginRun.id == run_id)
    if plugin_id is not None:
        query = query.filter(PluginRun.plugin_id == plugin_id)
    run = query.first()
    if not run:
        raise NotFoundError("Run not found")
    return run


def list_runs(
    db: Session,
    tenant_id: UUID,
    plugin_id: UUID,
    status: Optional[PluginRunStatusEnum] = None,
    job_name: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    sort: str = "desc",
) -> Tuple[List[PluginRun], int]:
    query = scoped(db, PluginRun, tenant_id).filter(PluginRun.plugin_id == plugin_id)
    if status is not None:
        query = query.filter(PluginRun.status == status)
    if job_name:
        query = query.filter(PluginRun.job_name == job_name)
    total = query.count()
    ordering = PluginRun.started_at.asc() if sort == "asc" else PluginRun.started_at.desc()
    items = query.order_by(ordering).limit(limit).offset(offset).all()
    return items, total


def get_run_summary(db: Session, tenant_id: UUID, plugin_id: UUID) -> dict:
    """Counts per status, mean events processed and mean duration of finished runs."""
    runs = scoped(db, PluginRun, tenant_id).filter(PluginRun.plugin_id == plugin_id).all()

    counts = {status: 0 for status in PluginRunStatusEnum}
    for run in runs:
        counts[PluginRunStatusEnum(run.status)] += 1

    durations = [d for d in (duration_ms(run) for run in runs) if d is not None]
    return {
        "total": len(runs),
        "success": counts[PluginRunStatusEnum.success],
        "failed": counts[PluginRunStatusEnum.failed],
        "running": counts[PluginRunStatusEnum.running],
        "pending": counts[PluginRunStatusEnum.pending],
        "avg_events_processed": (
            round(sum(run.events_processed or 0 for run in runs) / len(runs), 2) if runs else 0.0
        ),
        "avg_duration_ms": round(sum(durations) / len(durations), 2) if durations else None,
    }


def get_last_successful_run(db: Session, tenant_id: UUID, plugin_id: UUID, job_name: Optional[str] = None) -> Optional[PluginRun]:
    query = scoped(db, PluginRun, tenant_id).filter(
        PluginRun.plugin_id == plugin_id,
        PluginRun.status == PluginRunStatusEnum.success,
    )
    if job_name:
        query = query.filter(PluginRun.job_name == job_name)
    return query.order_by(PluginRun.completed_at.desc()).first()
