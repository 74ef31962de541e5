"""process_events job: raw plugin events become activities."""

import asyncio
import threading
from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy.orm import sessionmaker

from devcrm.models import Activity, PluginEventRaw, PluginEventStatusEnum, PluginRun, PluginRunStatusEnum
from devcrm.services import plugin_events, plugin_runs, plugins
from devcrm.workers.arq_worker import run_plugin_job


@pytest.fixture
def worker_sessions(test_db_engine):
    """Point the worker at the test database with its own sessions."""
    factory = sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)
    with patch("devcrm.workers.arq_worker.SessionLocal", factory):
        yield factory


@pytest.fixture
def github(test_db_session, test_tenant):
    plugin = plugins.install_plugin(test_db_session, test_tenant.id, "github", "GitHub", config_schema=[])
    return plugin


def _run(db, tenant_id, plugin_id, job_name="process_events"):
    run = plugin_runs.create_run(db, tenant_id, plugin_id, job_name)
    result = asyncio.run(run_plugin_job({}, str(tenant_id), str(plugin_id), str(run.id), job_name))
    return run.id, result


def test_events_become_activities(test_db_session, test_tenant, make_developer, github, worker_sessions):
    tenant_id, plugin_id = test_tenant.id, github.id
    alice_id = make_developer("Alice", "alice@example.com").id
    known = plugin_events.ingest_event(
        test_db_session, tenant_id, plugin_id, "star",
        {"email": "Alice@Example.com", "occurredAt": "2025-01-15T09:00:00Z", "value": 300},
    )
    anonymous = plugin_events.ingest_event(
        test_db_session, tenant_id, plugin_id, "webhook", {"action": "fork", "userId": "u-7"},
    )
    known_id, anonymous_id = known.id, anonymous.id

    run_id, result = _run(test_db_session, tenant_id, plugin_id)

    assert result == {"status": "success", "events_processed": 2}
    test_db_session.expire_all()

    star = test_db_session.query(Activity).filter(Activity.developer_id == alice_id).one()
    assert star.action == "star"
    assert star.occurred_at == datetime(2025, 1, 15, 9, 0)
    assert star.source == "plugin:github"
    assert star.dedup_key == f"github:{known_id}"
    assert star.value == 300

    fork = test_db_session.query(Activity).filter(Activity.anon_id == "u-7").one()
    assert fork.action == "fork"
    assert fork.developer_id is None

    statuses = {e.id: e.status for e in test_db_session.query(PluginEventRaw)}
    assert statuses == {known_id: PluginEventStatusEnum.processed, anonymous_id: PluginEventStatusEnum.processed}

    run = test_db_session.get(PluginRun, run_id)
    assert run.status == PluginRunStatusEnum.success
    assert run.events_processed == 2
    assert run.completed_at is not None


def test_bad_event_is_marked_failed(test_db_session, test_tenant, github, worker_sessions):
    tenant_id, plugin_id = test_tenant.id, github.id
    good = plugin_events.ingest_event(test_db_session, tenant_id, plugin_id, "star", {"anonId": "v-1"})
    bad = plugin_events.ingest_event(test_db_session, tenant_id, plugin_id, "star", {"anonId": "v-2", "value": "lots"})
    good_id, bad_id = good.id, bad.id

    _, result = _run(test_db_session, tenant_id, plugin_id)

    assert result == {"status": "success", "events_processed": 1}
    test_db_session.expire_all()
    assert test_db_session.get(PluginEventRaw, good_id).status == PluginEventStatusEnum.processed
    failed = test_db_session.get(PluginEventRaw, bad_id)
    assert failed.status == PluginEventStatusEnum.failed
    assert failed.error_message == "value must be a number"


def test_reprocessing_does_not_duplicate_activities(test_db_session, test_tenant, github, worker_sessions):
    tenant_id, plugin_id = test_tenant.id, github.id
    event_id = plugin_events.ingest_event(test_db_session, tenant_id, plugin_id, "star", {"anonId": "v-1"}).id
    _run(test_db_session, tenant_id, plugin_id)

    plugin_events.reprocess_event(test_db_session, tenant_id, plugin_id, event_id)
    _, result = _run(test_db_session, tenant_id, plugin_id)

    assert result == {"status": "success", "events_processed": 1}
    test_db_session.expire_all()
    assert test_db_session.query(Activity).count() == 1
    assert test_db_session.get(PluginEventRaw, event_id).status == PluginEventStatusEnum.processed


def test_batch_size_from_config(test_db_session, test_tenant, github, worker_sessions):
    tenant_id, plugin_id = test_tenant.id, github.id
    github.config = {"batchSize": 2}
    test_db_session.commit()
    for i in range(3):
        plugin_events.ingest_event(test_db_session, tenant_id, plugin_id, "star", {"anonId": f"v-{i}"})

    _, result = _run(test_db_session, tenant_id, plugin_id)

    assert result["events_processed"] == 2
    test_db_session.expire_all()
    pending = test_db_session.query(PluginEventRaw).filter(PluginEventRaw.status == PluginEventStatusEnum.pending)
    assert pending.count() == 1


def test_disabled_plugin_fails_the_run(test_db_session, test_tenant, github, worker_sessions):
    tenant_id, plugin_id = test_tenant.id, github.id
    plugins.set_plugin_enabled(test_db_session, tenant_id, "github", False)

    run_id, result = _run(test_db_session, tenant_id, plugin_id)

    assert result == {"status": "failed", "error": "Plugin 'github' is disabled"}
    test_db_session.expire_all()
    run = test_db_session.get(PluginRun, run_id)
    assert run.status == PluginRunStatusEnum.failed
    assert run.error_message == "Plugin 'github' is disabled"


def test_unknown_job_fails_the_run(test_db_session, test_tenant, github, worker_sessions):
    run_id, result = _run(test_db_session, test_tenant.id, github.id, job_name="export_everything")

    assert result["status"] == "failed"
    assert "Unknown job 'export_everything'" in result["error"]


def test_job_body_runs_off_the_event_loop(test_db_session, test_tenant, github, worker_sessions):
    loop_ran = threading.Event()
    seen = {}

    def wait_for_loop(db, plugin, config, run):
        # Only completes if the event loop can run other coroutines meanwhile
        seen["loop_was_free"] = loop_ran.wait(timeout=5)
        seen["thread"] = threading.get_ident()
        return 0

    async def run_with_neighbour(run_id):
        async def neighbour():
            await asyncio.sleep(0.01)
            loop_ran.set()

        neighbour_task = asyncio.create_task(neighbour())
        result = await run_plugin_job({}, str(test_tenant.id), str(github.id), str(run_id), "wait_for_loop")
        await neighbour_task
        return result

    run = plugin_runs.create_run(test_db_session, test_tenant.id, github.id, "wait_for_loop")
    with patch.dict("devcrm.workers.arq_worker.PLUGIN_JOBS", {"wait_for_loop": wait_for_loop}):
        result = asyncio.run(run_with_neighbour(run.id))

    assert result == {"status": "success", "events_processed": 0}
    assert seen["loop_was_free"] is True
    assert seen["thread"] != threading.get_ident()
