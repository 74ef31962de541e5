"""
Plugin Config & Event Masking Tests (Unit)
==========================================

WHAT: Schema-driven config validation, secret storage and raw-event masking.
WHY: Secrets must never come back out of the API, and validation messages
     are shown verbatim in the dashboard.

REFERENCES:
- backend/devcrm/services/plugin_config.py
- backend/devcrm/services/plugin_events.py
"""

import os

import pytest

os.environ.setdefault("JWT_SECRET", "unit-test-secret")
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from devcrm.exceptions import InvalidInputError
from devcrm.services.plugin_config import (
    decrypt_plugin_config,
    mask_plugin_config,
    prepare_config_for_storage,
    validate_plugin_config,
    validate_schema,
)
from devcrm.services.plugin_events import REDACTED, mask_value, sanitize_raw_data

FIELDS = [
    {"key": "token", "label": "API Token", "type": "secret", "required": True},
    {"key": "endpoint", "label": "Endpoint", "type": "url"},
    {"key": "notify", "label": "Notify address", "type": "email"},
    {"key": "enabled", "label": "Enabled", "type": "boolean"},
    {"key": "limit", "label": "Limit", "type": "number", "validation": {"min": 1, "max": 10}},
    {"key": "repo", "label": "Repository", "type": "string", "validation": {"pattern": r"^[\w-]+/[\w-]+$"}},
]


# ============================================================================
# Validation
# ============================================================================

def test_valid_config_has_no_errors() -> None:
    config = {
        "token": "t0ken",
        "endpoint": "https://api.example.com",
        "notify": "ops@example.com",
        "enabled": True,
        "limit": 5,
        "repo": "acme/widgets",
    }
    assert validate_plugin_config(FIELDS, config) == []


def test_each_rule_reports_its_field() -> None:
    config = {
        "token": "",
        "endpoint": "not a url",
        "notify": "nobody",
        "enabled": "yes",
        "limit": 11,
        "repo": "widgets",
    }

    errors = {e["field"]: e["message"] for e in validate_plugin_config(FIELDS, config)}

    assert errors == {
        "token": "API Token is required",
        "endpoint": "Endpoint must be a valid URL",
        "notify": "Notify address must be a valid email address",
        "enabled": "Enabled must be true or false",
        "limit": "Limit must be at most 10",
        "repo": "Repository format is invalid",
    }


def test_booleans_are_not_numbers() -> None:
    errors = validate_plugin_config(FIELDS, {"token": "x", "limit": True})
    assert errors == [{"field": "limit", "message": "Limit must be a number"}]


def test_exists_marker_counts_only_when_stored() -> None:
    marker = {"token": {"_exists": True}}

    assert validate_plugin_config(FIELDS, marker, stored={"token": "ciphertext"}) == []
    assert validate_plugin_config(FIELDS, marker, stored={}) == [
        {"field": "token", "message": "API Token is required"}
    ]


def test_validate_schema_rejects_bad_patterns_and_duplicates() -> None:
    with pytest.raises(InvalidInputError):
        validate_schema([{"key": "a", "type": "string", "validation": {"pattern": "("}}])
    with pytest.raises(InvalidInputError):
        validate_schema([{"key": "a", "type": "string"}, {"key": "a", "type": "number"}])
    with pytest.raises(InvalidInputError):
        validate_schema([{"key": "a", "type": "color"}])


# ============================================================================
# Storage & masking
# ============================================================================

def test_secret_round_trip_and_masking() -> None:
    stored = prepare_config_for_storage("github", FIELDS, {"token": " s3cret ", "repo": " acme/widgets ", "extra": 1})

    assert set(stored) == {"token", "repo"}
    assert stored["token"] != "s3cret"
    assert stored["repo"] == "acme/widgets"
    assert mask_plugin_config(FIELDS, stored) == {"token": {"_exists": True}, "repo": "acme/widgets"}
    assert decrypt_plugin_config("github", FIELDS, stored)["token"] == "s3cret"


def test_marker_keeps_and_blank_removes_secret() -> None:
    stored = prepare_config_for_storage("github", FIELDS, {"token": "s3cret"})

    kept = prepare_config_for_storage("github", FIELDS, {"token": {"_exists": True}}, stored)
    omitted = prepare_config_for_storage("github", FIELDS, {"repo": "a/b"}, stored)
    cleared = prepare_config_for_storage("github", FIELDS, {"token": "  "}, stored)

    assert kept["token"] == stored["token"]
    assert omitted["token"] == stored["token"]
    assert "token" not in cleared


# ============================================================================
# Raw event masking
# ============================================================================

def test_mask_value() -> None:
    assert mask_value("abcdefghijkl") == "abcd***ijkl"
    assert mask_value("1234567") == REDACTED
    assert mask_value(12345678) == REDACTED


def test_sanitize_raw_data_walks_nested_structures() -> None:
    raw = {
        "user": {"login": "octocat", "Access_Token": "gho_" + "b" * 36},
        "items": [{"client_secret": "tiny"}, {"note": "hello"}],
        "opaque": "Zx9" * 8,
        "count": 3,
    }

    sanitized = sanitize_raw_data(raw)

    assert sanitized["user"] == {"login": "octocat", "Access_Token": "gho_***bbbb"}
    assert sanitized["items"] == [{"client_secret": REDACTED}, {"note": "hello"}]
    assert sanitized["opaque"] == "Zx9Z***9Zx9"
    assert sanitized["count"] == 3
    # input untouched
    assert raw["user"]["Access_Token"].startswith("gho_b")
