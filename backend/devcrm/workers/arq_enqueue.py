"""Redis settings and plugin job enqueueing.

WHAT:
    - `get_redis_settings` turns REDIS_URL into ARQ settings for both the
      API (enqueue side) and the worker.
    - `enqueue_plugin_job` puts one PluginRun on the queue.

USAGE:
    from devcrm.workers.arq_enqueue import enqueue_plugin_job

    await enqueue_plugin_job(tenant_id, plugin_id, run_id, "process_events")

REFERENCES:
    - devcrm/routers/plugins.py (POST /api/plugins/{id}/run)
    - devcrm/workers/arq_worker.py (consumer)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse
from uuid import UUID

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from ..deps import get_settings

logger = logging.getLogger(__name__)

QUEUE_NAME = "arq:queue"
JOB_FUNCTION = "run_plugin_job"

_arq_pool: Optional[ArqRedis] = None


def get_redis_settings(worker: bool = False) -> RedisSettings:
    """ARQ settings from REDIS_URL.

    Accepts redis://[user:pass@]host:port/db and rediss:// (TLS). The worker
    retries its connection so it survives a Redis restart; the API fails
    fast and reports 503 instead.
    """
    parsed = urlparse(get_settings().REDIS_URL)
    use_ssl = parsed.scheme == "rediss"
    database = int(parsed.path.lstrip("/")) if parsed.path and parsed.path != "/" else 0

    options: Dict[str, Any] = {}
    if worker:
        options.update(conn_timeout=30, conn_retries=5, conn_retry_delay=1)

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=database,
        ssl=use_ssl,
        ssl_cert_reqs="none" if use_ssl else None,
        **options,
    )


async def get_arq_pool() -> ArqRedis:
    global _arq_pool
    if _arq_pool is None:
        settings = get_redis_settings()
        logger.info("[ARQ-ENQUEUE] Connecting to Redis at %s:%s (db=%s)", settings.host, settings.port, settings.database)
        _arq_pool = await create_pool(settings)
    return _arq_pool


async def reset_arq_pool() -> None:
    """Close the shared pool (API shutdown)."""
    global _arq_pool
    if _arq_pool is not None:
        await _arq_pool.close()
        _arq_pool = None
        logger.info("[ARQ-ENQUEUE] Redis pool closed")


async def enqueue_plugin_job(
    tenant_id: str | UUID,
    plugin_id: str | UUID,
    run_id: str | UUID,
    job_name: str,
) -> Dict[str, Any]:
    """Enqueue one plugin job run.

    The ARQ job id is derived from the run id, so a run can only be
    queued once.

    Returns:
        {"job_id": ..., "status": "enqueued" | "duplicate"}
    """
    pool = await get_arq_pool()

    job = await pool.enqueue_job(
        JOB_FUNCTION,
        str(tenant_id),
        str(plugin_id),
        str(run_id),
        job_name,
        _job_id=f"plugin-run:{run_id}",
        _queue_name=QUEUE_NAME,
    )

    if job is None:
        logger.warning("[ARQ-ENQUEUE] Run %s is already queued", run_id)
        return {"job_id": None, "status": "duplicate"}

    logger.info("[ARQ-ENQUEUE] Queued %s for run %s (job %s)", job_name, run_id, job.job_id)
    return {"job_id": job.job_id, "status": "enqueued"}
