"""
Telemetry
=========

Error tracking for the devcrm API and the plugin worker (Sentry).
Logging itself is plain `logging.getLogger(__name__)` in every module.

Environment Variables:
- SENTRY_DSN: enables Sentry when set

Usage:
    from devcrm.telemetry import init_observability, shutdown_observability

    init_observability()      # API startup / worker on_startup
    shutdown_observability()  # API shutdown / worker on_shutdown
"""

from devcrm.telemetry.sentry import (
    init_sentry,
    set_user_context,
    clear_user_context,
    set_plugin_run_context,
    capture_exception,
    flush as flush_sentry,
)


def init_observability() -> dict:
    """Start every configured backend; returns e.g. {"sentry": False}."""
    return {"sentry": init_sentry()}


def shutdown_observability() -> None:
    flush_sentry()


__all__ = [
    "init_observability",
    "shutdown_observability",
    "init_sentry",
    "set_user_context",
    "clear_user_context",
    "set_plugin_run_context",
    "capture_exception",
    "flush_sentry",
]
