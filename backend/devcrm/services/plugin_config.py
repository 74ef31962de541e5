"""Plugin configuration: schema validation, secret encryption and masking.

WHAT:
    - validate_plugin_config(): checks submitted values against the plugin's
      field schema and returns field-level errors
    - prepare_config_for_storage(): encrypts secret fields (Fernet), keeping
      the stored ciphertext when the client sends the `{"_exists": true}` marker
    - mask_plugin_config(): replaces stored secrets with the marker for reads
    - decrypt_plugin_config(): plaintext view for the worker only

WHY:
    Secrets are write-only from the API's point of view. The dashboard can
    tell that a secret is set and can leave it unchanged, but never gets
    the value back.

REFERENCES:
    - devcrm/security.py: encrypt_secret / decrypt_secret (Fernet)
    - devcrm/services/plugins.py: get/update config
    - devcrm/workers/arq_worker.py: decrypts config for jobs
"""

import logging
import math
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..exceptions import InvalidInputError
from ..security import decrypt_secret, encrypt_secret

logger = logging.getLogger(__name__)

STRING_TYPES = ("string", "textarea", "secret", "url", "email")
FIELD_TYPES = STRING_TYPES + ("number", "boolean", "select")

SECRET_MARKER = {"_exists": True}

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_secret_marker(value: Any) -> bool:
    return isinstance(value, dict) and value.get("_exists") is True


def _is_blank(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip() == ""
    return value is None


def _error(field: dict, message: str) -> Dict[str, str]:
    return {"field": field["key"], "message": f"{field.get('label') or field['key']} {message}"}


def validate_schema(fields: List[dict]) -> None:
    """Reject malformed schemas before they are stored."""
    seen = set()
    for field in fields:
        key = field.get("key")
        if not key:
            raise InvalidInputError("Invalid config schema: every field needs a key")
        if key in seen:
            raise InvalidInputError(f"Invalid config schema: duplicate field '{key}'")
        seen.add(key)
        if field.get("type") not in FIELD_TYPES:
            raise InvalidInputError(f"Invalid config schema: unknown type for field '{key}'")
        if field.get("type") == "select" and not field.get("options"):
            raise InvalidInputError(f"Invalid config schema: select field '{key}' must have options")
        pattern = (field.get("validation") or {}).get("pattern")
        if pattern:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise InvalidInputError(f"Invalid regex pattern for field {key}: {exc}")


# ============================================================================
# Field validation
# ============================================================================

def validate_string_field(field: dict, value: Any) -> List[Dict[str, str]]:
    if not isinstance(value, str):
        return [_error(field, "must be a string")]

    errors = []
    rules = field.get("validation") or {}
    min_length = rules.get("minLength", rules.get("min_length"))
    max_length = rules.get("maxLength", rules.get("max_length"))
    if min_length is not None and len(value) < min_length:
        errors.append(_error(field, f"must be at least {min_length} characters"))
    if max_length is not None and len(value) > max_length:
        errors.append(_error(field, f"must be at most {max_length} characters"))
    if rules.get("pattern") and not re.search(rules["pattern"], value):
        errors.append(_error(field, "format is invalid"))

    if field["type"] == "url":
        parsed = urlparse(value)
        if not parsed.scheme or not parsed.netloc:
            errors.append(_error(field, "must be a valid URL"))
    if field["type"] == "email" and not _EMAIL_RE.match(value):
        errors.append(_error(field, "must be a valid email address"))
    return errors


def validate_number_field(field: dict, value: Any) -> List[Dict[str, str]]:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return [_error(field, "must be a number")]
    if isinstance(value, float) and math.isnan(value):
        return [_error(field, "must be a valid number")]

    errors = []
    rules = field.get("validation") or {}
    if rules.get("min") is not None and value < rules["min"]:
        errors.append(_error(field, f"must be at least {rules['min']:g}"))
    if rules.get("max") is not None and value > rules["max"]:
        errors.append(_error(field, f"must be at most {rules['max']:g}"))
    return errors


def validate_boolean_field(field: dict, value: Any) -> List[Dict[str, str]]:
    if not isinstance(value, bool):
        return [_error(field, "must be true or false")]
    return []


def validate_select_field(field: dict, value: Any) -> List[Dict[str, str]]:
    options = field.get("options") or []
    if not options:
        raise InvalidInputError(f"Select field {field['key']} must have options defined")
    allowed = [str(option["value"]) for option in options]
    if str(value) not in allowed:
        return [_error(field, f"must be one of: {', '.join(allowed)}")]
    return []


def validate_field(field: dict, value: Any) -> List[Dict[str, str]]:
    field_type = field.get("type")
    if field_type in STRING_TYPES:
        return validate_string_field(field, value)
    if field_type == "number":
        return validate_number_field(field, value)
    if field_type == "boolean":
        return validate_boolean_field(field, value)
    if field_type == "select":
        return validate_select_field(field, value)
    return [{"field": field.get("key", ""), "message": f"Unknown field type: {field_type}"}]


def validate_plugin_config(
    fields: List[dict],
    config: Dict[str, Any],
    stored: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, str]]:
    """Validate `config` against the schema `fields`.

    Strings are trimmed before the required check. A secret submitted as the
    `{"_exists": true}` marker counts as present when a value is already
    stored and is not re-validated.

    >>> validate_plugin_config([{"key": "token", "label": "API Token", "type": "secret", "required": True}], {})
    [{'field': 'token', 'message': 'API Token is required'}]
    """
    if not isinstance(fields, list):
        raise InvalidInputError("Invalid schema: fields must be a list")
    stored = stored or {}

    errors: List[Dict[str, str]] = []
    for field in fields:
        key = field["key"]
        value = config.get(key)

        if field.get("type") == "secret" and is_secret_marker(value):
            if stored.get(key):
                continue
            value = None

        if _is_blank(value):
            if field.get("required"):
                errors.append(_error(field, "is required"))
            continue

        errors.extend(validate_field(field, value))
    return errors


# ============================================================================
# Storage, masking and decryption
# ============================================================================

def _secret_keys(fields: List[dict]) -> set:
    return {field["key"] for field in fields if field.get("type") == "secret"}


def prepare_config_for_storage(
    plugin_key: str,
    fields: List[dict],
    config: Dict[str, Any],
    stored: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build the dict written to `Plugin.config`.

    Unknown keys are dropped. String values are trimmed. Secret fields are
    encrypted; the `_exists` marker keeps the previous ciphertext and a blank
    secret removes it.
    """
    stored = stored or {}
    secrets = _secret_keys(fields)
    result: Dict[str, Any] = {}
    for field in fields:
        key = field["key"]
        if key not in config:
            if key in secrets and stored.get(key):
                result[key] = stored[key]
            continue
        value = config[key]
        if key in secrets:
            if is_secret_marker(value):
                if stored.get(key):
                    result[key] = stored[key]
                continue
            if _is_blank(value):
                continue
            result[key] = encrypt_secret(value.strip(), context=f"plugin:{plugin_key}:{key}")
            continue
        result[key] = value.strip() if isinstance(value, str) else value
    return result


def mask_plugin_config(fields: List[dict], stored: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Stored config with every secret replaced by `{"_exists": true}`."""
    stored = stored or {}
    secrets = _secret_keys(fields)
    masked: Dict[str, Any] = {}
    for key, value in stored.items():
        if key in secrets:
            if value:
                masked[key] = dict(SECRET_MARKER)
            continue
        masked[key] = value
    return masked


def decrypt_plugin_config(plugin_key: str, fields: List[dict], stored: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Plaintext config for job execution. Never return this from an API route."""
    stored = stored or {}
    secrets = _secret_keys(fields)
    plain: Dict[str, Any] = {}
    for key, value in stored.items():
        if key in secrets and value:
            plain[key] = decrypt_secret(value, context=f"plugin:{plugin_key}:{key}")
        else:
            plain[key] = value
    return plain
