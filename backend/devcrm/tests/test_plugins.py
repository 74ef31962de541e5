"""Plugin registry, configuration, job runs and raw events."""

import uuid
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from devcrm.models import Plugin, PluginEventRaw, PluginEventStatusEnum, PluginRun, PluginRunStatusEnum
from devcrm.services.plugin_config import decrypt_plugin_config

CONFIG_SCHEMA = [
    {"key": "apiToken", "label": "API Token", "type": "secret", "required": True},
    {"key": "org", "label": "Organization", "type": "string", "required": True, "validation": {"minLength": 2}},
    {"key": "batchSize", "label": "Batch size", "type": "number", "validation": {"min": 1, "max": 500}},
    {
        "key": "mode",
        "label": "Mode",
        "type": "select",
        "options": [{"label": "Full", "value": "full"}, {"label": "Delta", "value": "delta"}],
    },
]

TOKEN = "ghp_" + "a" * 36


@pytest.fixture
def plugin(admin_client):
    response = admin_client.post(
        "/api/plugins",
        json={"key": "github", "name": "GitHub", "configSchema": CONFIG_SCHEMA},
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def configured_plugin(admin_client, plugin):
    response = admin_client.put(
        "/api/plugins/github/config",
        json={"config": {"apiToken": TOKEN, "org": " acme ", "batchSize": 50, "mode": "delta"}},
    )
    assert response.status_code == 200, response.text
    return plugin


# ============================================================================
# Registry
# ============================================================================

def test_install_and_lookup_by_id_or_key(admin_client, plugin):
    assert plugin["enabled"] is True
    assert plugin["hasConfig"] is False
    assert plugin["configSchema"][1]["validation"]["minLength"] == 2

    by_key = admin_client.get("/api/plugins/github").json()
    by_id = admin_client.get(f"/api/plugins/{plugin['id']}").json()
    assert by_key["id"] == by_id["id"] == plugin["id"]

    listed = admin_client.get("/api/plugins").json()
    assert [p["key"] for p in listed["plugins"]] == ["github"]

    assert admin_client.get("/api/plugins/slack").status_code == 404


def test_install_rejects_duplicates_and_bad_schemas(admin_client, plugin):
    duplicate = admin_client.post("/api/plugins", json={"key": "github", "name": "Again"})
    assert duplicate.status_code == 409

    select_without_options = admin_client.post(
        "/api/plugins",
        json={"key": "slack", "name": "Slack", "configSchema": [{"key": "mode", "label": "Mode", "type": "select"}]},
    )
    assert select_without_options.status_code == 400

    bad_key = admin_client.post("/api/plugins", json={"key": "Not Valid", "name": "x"})
    assert bad_key.status_code == 400


def test_members_can_read_but_not_manage(member_client, plugin):
    assert member_client.get("/api/plugins/github").status_code == 200
    assert member_client.get("/api/plugins/github/config").status_code == 403
    assert member_client.post("/api/plugins/github/disable").status_code == 403


# ============================================================================
# Configuration
# ============================================================================

def test_required_fields_are_reported(admin_client, plugin):
    response = admin_client.put("/api/plugins/github/config", json={"config": {"org": "   "}})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid plugin configuration"
    assert {"field": "apiToken", "message": "API Token is required"} in body["details"]
    assert {"field": "org", "message": "Organization is required"} in body["details"]


def test_field_rules_are_enforced(admin_client, plugin):
    response = admin_client.put(
        "/api/plugins/github/config",
        json={"config": {"apiToken": TOKEN, "org": "a", "batchSize": 0, "mode": "nightly"}},
    )

    details = {d["field"]: d["message"] for d in response.json()["details"]}
    assert details == {
        "org": "Organization must be at least 2 characters",
        "batchSize": "Batch size must be at least 1",
        "mode": "Mode must be one of: full, delta",
    }


def test_secrets_are_encrypted_and_masked(admin_client, test_db_session, configured_plugin):
    body = admin_client.get("/api/plugins/github/config").json()

    assert body["config"]["apiToken"] == {"_exists": True}
    assert body["config"]["org"] == "acme"
    assert body["config"]["batchSize"] == 50

    stored = test_db_session.query(Plugin).filter(Plugin.key == "github").one()
    assert stored.config["apiToken"] != TOKEN
    plain = decrypt_plugin_config("github", stored.config_schema, stored.config)
    assert plain["apiToken"] == TOKEN

    assert admin_client.get("/api/plugins/github").json()["hasConfig"] is True


def test_exists_marker_keeps_stored_secret(admin_client, test_db_session, configured_plugin):
    response = admin_client.put(
        "/api/plugins/github/config",
        json={"config": {"apiToken": {"_exists": True}, "org": "globex"}},
    )

    assert response.status_code == 200
    assert response.json()["config"]["apiToken"] == {"_exists": True}

    test_db_session.expire_all()
    stored = test_db_session.query(Plugin).filter(Plugin.key == "github").one()
    assert decrypt_plugin_config("github", stored.config_schema, stored.config)["apiToken"] == TOKEN


def test_exists_marker_without_stored_secret_is_missing(admin_client, plugin):
    response = admin_client.put(
        "/api/plugins/github/config",
        json={"config": {"apiToken": {"_exists": True}, "org": "acme"}},
    )

    assert response.status_code == 400
    assert response.json()["details"] == [{"field": "apiToken", "message": "API Token is required"}]


def test_disable_clears_configuration(admin_client, configured_plugin):
    disabled = admin_client.post("/api/plugins/github/disable")
    assert disabled.json()["enabled"] is False
    assert disabled.json()["hasConfig"] is False
    assert admin_client.get("/api/plugins/github/config").json()["config"] == {}

    enabled = admin_client.post("/api/plugins/github/enable")
    assert enabled.json()["enabled"] is True


# ============================================================================
# Jobs & runs
# ============================================================================

def test_run_creates_pending_run_and_enqueues(admin_client, test_admin, plugin):
    with patch("devcrm.routers.plugins.enqueue_plugin_job", new=AsyncMock(return_value={"status": "enqueued"})) as enqueue:
        response = admin_client.post("/api/plugins/github/run", json={"jobName": "process_events"})

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "pending"
    enqueue.assert_awaited_once()
    args = enqueue.await_args.args
    assert str(args[1]) == plugin["id"]
    assert str(args[2]) == body["runId"]
    assert args[3] == "process_events"

    run = admin_client.get(f"/api/plugins/github/runs/{body['runId']}").json()
    assert run["jobName"] == "process_events"
    assert run["metadata"]["triggered_by"] == str(test_admin.id)
    assert run["durationMs"] is None


def test_run_rejects_unknown_job_and_disabled_plugin(admin_client, plugin):
    with patch("devcrm.routers.plugins.enqueue_plugin_job", new=AsyncMock()) as enqueue:
        unknown = admin_client.post("/api/plugins/github/run", json={"jobName": "sync_everything"})
        admin_client.post("/api/plugins/github/disable")
        disabled = admin_client.post("/api/plugins/github/run", json={"jobName": "process_events"})

    assert unknown.status_code == 404
    assert unknown.json() == {"error": "Job 'sync_everything' not found"}
    assert disabled.status_code == 400
    enqueue.assert_not_awaited()


def test_queue_outage_fails_the_run(admin_client, plugin):
    with patch("devcrm.routers.plugins.enqueue_plugin_job", new=AsyncMock(side_effect=ConnectionError("redis down"))):
        response = admin_client.post("/api/plugins/github/run", json={"jobName": "process_events"})

    assert response.status_code == 503
    assert response.json() == {"error": "Job queue unavailable"}

    runs = admin_client.get("/api/plugins/github/runs").json()
    assert runs["total"] == 1
    assert runs["runs"][0]["status"] == "failed"
    assert runs["runs"][0]["errorMessage"] == "Failed to enqueue job"
    assert runs["summary"]["failed"] == 1


def test_run_history_summary_and_logs(admin_client, test_db_session, test_tenant, plugin):

    plugin_id = uuid.UUID(plugin["id"])
    start = datetime(2025, 1, 10, 9)
    rows = [
        (PluginRunStatusEnum.success, 10, timedelta(seconds=2), None),
        (PluginRunStatusEnum.success, 20, timedelta(seconds=4), None),
        (PluginRunStatusEnum.failed, 0, timedelta(seconds=1), "boom"),
        (PluginRunStatusEnum.running, 0, None, None),
    ]
    for i, (status, processed, duration, error) in enumerate(rows):
        started = start + timedelta(hours=i)
        test_db_session.add(
            PluginRun(
                tenant_id=test_tenant.id,
                plugin_id=plugin_id,
                job_name="process_events",
                status=status,
                started_at=started,
                completed_at=started + duration if duration else None,
                events_processed=processed,
                error_message=error,
            )
        )
    test_db_session.commit()

    body = admin_client.get("/api/plugins/github/runs").json()
    assert body["total"] == 4
    assert body["runs"][0]["status"] == "running"
    assert body["summary"] == {
        "total": 4,
        "success": 2,
        "failed": 1,
        "running": 1,
        "pending": 0,
        "avgEventsProcessed": 7.5,
        "avgDurationMs": pytest.approx(2333.33, rel=1e-4),
    }

    failed_only = admin_client.get("/api/plugins/github/runs", params={"status": "failed"}).json()
    assert failed_only["total"] == 1

    logs = admin_client.get("/api/plugins/github/logs").json()
    assert logs["total"] == 4
    assert [entry["errorMessage"] for entry in logs["logs"]][1] == "boom"

    assert admin_client.get(f"/api/plugins/github/runs/{uuid.uuid4()}").status_code == 404


# ============================================================================
# Raw events
# ============================================================================

def _ingest(client, event_type="star", **raw):
    response = client.post("/api/plugins/github/events", json={"eventType": event_type, "rawData": raw})
    assert response.status_code == 201, response.text
    return response.json()


def test_event_detail_masks_sensitive_values(admin_client, plugin):
    event = _ingest(
        admin_client,
        login="octocat",
        token="abcd1234efgh",
        apiKey="sk_live_" + "x" * 24,
        installation={"id": 42, "password": "hunter2"},
        headers=[{"Authorization": "Bearer zzzzzzzzzzzz"}],
        deliveryId="A1b2C3d4E5f6G7h8I9j0K1",
    )
    assert event["status"] == "pending"
    assert "rawData" not in event

    detail = admin_client.get(f"/api/plugins/github/events/{event['id']}").json()
    raw = detail["rawData"]
    assert raw["login"] == "octocat"
    assert raw["token"] == "abcd***efgh"
    assert raw["apiKey"] == "sk_l***xxxx"
    assert raw["installation"] == {"id": 42, "password": "***REDACTED***"}
    assert raw["headers"][0]["Authorization"] == "Bear***zzzz"
    assert raw["deliveryId"] == "A1b2***j0K1"


def test_event_listing_pagination_and_filters(admin_client, plugin):
    for event_type in ("star", "star", "fork"):
        _ingest(admin_client, event_type)

    first_page = admin_client.get("/api/plugins/github/events", params={"perPage": 2}).json()
    assert first_page["total"] == 3
    assert first_page["totalPages"] == 2
    assert len(first_page["events"]) == 2

    second_page = admin_client.get("/api/plugins/github/events", params={"perPage": 2, "page": 2}).json()
    assert len(second_page["events"]) == 1

    forks = admin_client.get("/api/plugins/github/events", params={"eventType": "fork"}).json()
    assert forks["total"] == 1

    assert admin_client.get("/api/plugins/github/events", params={"perPage": 101}).status_code == 400
    assert admin_client.get("/api/plugins/github/events", params={"page": 0}).status_code == 400


def test_event_stats_and_reprocess(admin_client, test_db_session, plugin):
    first = _ingest(admin_client)
    _ingest(admin_client)

    event = test_db_session.get(PluginEventRaw, uuid.UUID(first["id"]))
    event.status = PluginEventStatusEnum.failed
    event.error_message = "bad payload"
    test_db_session.commit()

    stats = admin_client.get("/api/plugins/github/events/stats").json()
    assert (stats["total"], stats["pending"], stats["failed"], stats["processed"]) == (2, 1, 1, 0)
    assert stats["latestIngestedAt"] is not None

    reprocessed = admin_client.post(f"/api/plugins/github/events/{first['id']}/reprocess")
    assert reprocessed.status_code == 200
    assert reprocessed.json()["status"] == "pending"
    assert reprocessed.json()["errorMessage"] is None

    assert admin_client.get(f"/api/plugins/github/events/{uuid.uuid4()}").status_code == 404
