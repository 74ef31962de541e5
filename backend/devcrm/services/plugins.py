"""Installed plugins: registry, enable/disable and configuration."""

import logging
from datetime import datetime
from typing import Any, Dict, List
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import ConflictError, InvalidInputError, NotFoundError
from ..models import Plugin
from ..tenancy import scoped
from .plugin_config import (
    mask_plugin_config,
    prepare_config_for_storage,
    validate_plugin_config,
    validate_schema,
)

logger = logging.getLogger(__name__)


def get_plugin(db: Session, tenant_id: UUID, plugin_ref: str) -> Plugin:
    """Look a plugin up by UUID or by key."""
    query = scoped(db, Plugin, tenant_id)
    plugin = None
    try:
        plugin_id = UUID(str(plugin_ref))
    except ValueError:
        plugin_id = None
    if plugin_id is not None:
        plugin = query.filter(Plugin.id == plugin_id).first()
    if plugin is None:
        plugin = query.filter(Plugin.key == str(plugin_ref)).first()
    if plugin is None:
        raise NotFoundError("Plugin not found")
    return plugin


def list_plugins(db: Session, tenant_id: UUID) -> List[Plugin]:
    return scoped(db, Plugin, tenant_id).order_by(Plugin.name.asc()).all()


def install_plugin(
    db: Session,
    tenant_id: UUID,
    key: str,
    name: str,
    config_schema: List[dict],
    enabled: bool = True,
) -> Plugin:
    validate_schema(config_schema)
    if scoped(db, Plugin, tenant_id).filter(Plugin.key == key).first():
        raise ConflictError(f"Plugin '{key}' is already installed")

    plugin = Plugin(
        tenant_id=tenant_id,
        key=key,
        name=name,
        enabled=enabled,
        config=None,
        config_schema=config_schema,
    )
    db.add(plugin)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Plugin '{key}' is already installed")
    db.refresh(plugin)
    logger.info("[PLUGINS] Installed plugin %s for tenant %s", key, tenant_id)
    return plugin


def set_plugin_enabled(db: Session, tenant_id: UUID, plugin_ref: str, enabled: bool) -> Plugin:
    """Enable or disable a plugin. Disabling also clears its stored configuration."""
    plugin = get_plugin(db, tenant_id, plugin_ref)
    plugin.enabled = enabled
    if not enabled:
        plugin.config = None
    plugin.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(plugin)
    logger.info("[PLUGINS] Plugin %s %s", plugin.key, "enabled" if enabled else "disabled")
    return plugin


def get_plugin_config(db: Session, tenant_id: UUID, plugin_ref: str) -> Dict[str, Any]:
    """Schema plus masked stored values."""
    plugin = get_plugin(db, tenant_id, plugin_ref)
    fields = plugin.config_schema or []
    return {
        "plugin_id": plugin.id,
        "key": plugin.key,
        "config_schema": fields,
        "config": mask_plugin_config(fields, plugin.config),
    }


def update_plugin_config(
    db: Session, tenant_id: UUID, plugin_ref: str, config: Dict[str, Any]
) -> Dict[str, Any]:
    """Validate, encrypt and store a new configuration.

    Raises InvalidInputError with field-level details when validation fails.
    """
    plugin = get_plugin(db, tenant_id, plugin_ref)
    fields = plugin.config_schema or []
    stored = plugin.config or {}

    errors = validate_plugin_config(fields, config, stored)
    if errors:
        raise InvalidInputError("Invalid plugin configuration", details=errors)

    plugin.config = prepare_config_for_storage(plugin.key, fields, config, stored)
    plugin.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(plugin)
    logger.info("[PLUGINS] Updated config for plugin %s", plugin.key)
    return get_plugin_config(db, tenant_id, str(plugin.id))


def plugin_has_config(plugin: Plugin) -> bool:
    return bool(plugin.config)


def ensure_enabled(plugin: Plugin) -> None:
    if not plugin.enabled:
        raise InvalidInputError(f"Plugin '{plugin.key}' is disabled")
