"""
Sentry Error Tracking
=====================

Error tracking for the API and the plugin worker.

Related files:
- devcrm/main.py, devcrm/workers/arq_worker.py: init on startup, flush on shutdown
- devcrm/routers/auth.py: user context after login
- devcrm/errors.py: unhandled API errors
- devcrm/workers/arq_worker.py: failed plugin runs, tagged per plugin

Plugin configs and raw events carry third-party credentials, so every event
passes through `scrub_event` (same masking rules as the raw event API).

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays disabled without it)
- ENVIRONMENT: production / staging / development
- RELEASE_VERSION: release identifier set by CI/CD
- SENTRY_TRACES_SAMPLE_RATE: performance sampling, default 0.1
"""

from __future__ import annotations

import os
import logging
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

_initialized = False


def get_sentry_dsn() -> Optional[str]:
    return os.environ.get("SENTRY_DSN")


def scrub_event(event: Dict[str, Any], hint: Optional[dict] = None) -> Dict[str, Any]:
    """`before_send` hook: mask secrets in request bodies and extras."""
    from devcrm.services.plugin_events import sanitize_raw_data

    request = event.get("request")
    if isinstance(request, dict) and isinstance(request.get("data"), (dict, list)):
        request["data"] = sanitize_raw_data(request["data"])
    if isinstance(event.get("extra"), dict):
        event["extra"] = sanitize_raw_data(event["extra"])
    return event


def init_sentry() -> bool:
    """
    Initialize the Sentry SDK. Safe to call from both the API and the worker.

    Returns:
        True if Sentry is active, False when no DSN is configured or init failed.
    """
    global _initialized

    dsn = get_sentry_dsn()
    if not dsn:
        logger.info("[SENTRY] SENTRY_DSN not set - error tracking disabled")
        return False

    environment = os.environ.get("ENVIRONMENT", "development")

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=os.environ.get("RELEASE_VERSION"),
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                RedisIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            traces_sample_rate=float(os.environ.get("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
            # Developer emails are PII; user context is set explicitly instead
            send_default_pii=False,
            before_send=scrub_event,
        )
    except Exception as e:
        logger.error("[SENTRY] Failed to initialize: %s", e)
        return False

    _initialized = True
    logger.info("[SENTRY] Initialized for %s environment", environment)
    return True


def set_user_context(
    user_id: str,
    email: Optional[str] = None,
    tenant_id: Optional[str] = None
) -> None:
    """
    Attach the authenticated user to subsequent Sentry events.

    Example:
        set_user_context(user_id=str(user.id), tenant_id=str(user.tenant_id))
    """
    if not _initialized:
        return

    sentry_sdk.set_user({
        "id": user_id,
        "email": email,
        "tenant_id": tenant_id,
    })


def clear_user_context() -> None:
    """Clear user context from Sentry (on logout)."""
    if not _initialized:
        return

    sentry_sdk.set_user(None)


def capture_exception(exception: Exception, extra: Optional[dict] = None) -> None:
    """
    Manually capture an exception to Sentry.

    Use this for exceptions that are caught and handled but should still
    be tracked.

    Example:
        try:
            process_event(event)
        except Exception as e:
            capture_exception(e, extra={"event_id": str(event.id)})
            event.status = PluginEventStatusEnum.failed
    """
    if not _initialized:
        logger.error("Exception (Sentry disabled): %s", exception)
        return

    sentry_sdk.capture_exception(exception, extras=extra or {})


def set_plugin_run_context(tenant_id: str, plugin_key: str, run_id: str, job_name: str) -> None:
    """Tag events raised while a plugin job runs so they group per plugin."""
    if not _initialized:
        return

    sentry_sdk.set_tag("tenant_id", tenant_id)
    sentry_sdk.set_tag("plugin", plugin_key)
    sentry_sdk.set_tag("plugin_job", job_name)
    sentry_sdk.set_context("plugin_run", {"run_id": run_id})


def flush(timeout: float = 2.0) -> None:
    """Send queued events before the process exits."""
    if not _initialized:
        return

    sentry_sdk.flush(timeout=timeout)
