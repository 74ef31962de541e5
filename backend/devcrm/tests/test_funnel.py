"""Funnel snapshot, per-stage drop rate and time series."""

from datetime import datetime

import pytest

from devcrm.services.activity_types import create_activity_type
from devcrm.services.funnel import get_funnel_stats


@pytest.fixture
def funnel_data(test_db_session, test_tenant, make_developer, make_activity):
    """Three developers at different depths plus noise that must not count.

    alice: click, attend, api_call, star  (all four stages)
    bob:   click, attend
    carol: click
    anonymous click, and dave with an unmapped action only
    """
    create_activity_type(test_db_session, test_tenant.id, "api_call", stage_key="adoption")

    alice = make_developer("Alice", "alice@example.com")
    bob = make_developer("Bob", "bob@example.com")
    carol = make_developer("Carol", "carol@example.com")
    dave = make_developer("Dave", "dave@example.com")

    make_activity("click", alice, datetime(2025, 1, 6, 9))
    make_activity("attend", alice, datetime(2025, 1, 7, 9))
    make_activity("api_call", alice, datetime(2025, 1, 14, 9))
    make_activity("star", alice, datetime(2025, 2, 3, 9))
    make_activity("click", bob, datetime(2025, 1, 6, 10))
    make_activity("click", bob, datetime(2025, 1, 8, 10))
    make_activity("attend", bob, datetime(2025, 1, 8, 11))
    make_activity("click", carol, datetime(2025, 1, 13, 9))
    make_activity("click", None, datetime(2025, 1, 13, 10), anon_id="visitor-42")
    make_activity("pageview", dave, datetime(2025, 1, 6, 9))
    return {"alice": alice, "bob": bob, "carol": carol, "dave": dave}


def _stage(body, key):
    return next(stage for stage in body["stages"] if stage["stageKey"] == key)


def test_empty_tenant_returns_four_zero_stages(admin_client):
    response = admin_client.get("/api/funnel")

    assert response.status_code == 200
    body = response.json()
    assert [s["stageKey"] for s in body["stages"]] == ["awareness", "engagement", "adoption", "advocacy"]
    assert [s["orderNo"] for s in body["stages"]] == [1, 2, 3, 4]
    assert all(s["uniqueDevelopers"] == 0 and s["totalActivities"] == 0 for s in body["stages"])
    assert body["stages"][0]["dropRate"] is None
    assert body["stages"][0]["previousStageCount"] is None
    assert body["stages"][1]["dropRate"] is None
    assert body["totalDevelopers"] == 0
    assert body["overallConversionRate"] == 0


def test_funnel_snapshot_counts_and_drop_rates(admin_client, funnel_data):
    body = admin_client.get("/api/funnel").json()

    awareness = _stage(body, "awareness")
    assert awareness["uniqueDevelopers"] == 3
    # anonymous clicks count as activities but not as developers
    assert awareness["totalActivities"] == 5

    engagement = _stage(body, "engagement")
    assert engagement["uniqueDevelopers"] == 2
    assert engagement["previousStageCount"] == 3
    assert engagement["dropRate"] == pytest.approx(33.3333, rel=1e-3)

    adoption = _stage(body, "adoption")
    assert adoption["uniqueDevelopers"] == 1
    assert adoption["dropRate"] == pytest.approx(50.0)

    advocacy = _stage(body, "advocacy")
    assert advocacy["uniqueDevelopers"] == 1
    assert advocacy["dropRate"] == pytest.approx(0.0)

    # dave only has an unmapped action
    assert body["totalDevelopers"] == 3
    assert body["overallConversionRate"] == pytest.approx(33.3333, rel=1e-3)


def test_drop_rate_is_clamped_when_later_stage_is_larger(test_db_session, test_tenant, make_developer, make_activity):
    alice = make_developer("Alice")
    bob = make_developer("Bob")
    make_activity("click", alice)
    make_activity("attend", alice)
    make_activity("attend", bob)

    stats = get_funnel_stats(test_db_session, test_tenant.id)

    engagement = stats["stages"][1]
    assert engagement["unique_developers"] == 2
    assert engagement["drop_rate"] == 0.0


def test_remapping_an_action_moves_it_between_stages(admin_client, funnel_data):
    response = admin_client.put("/api/activity-types/click", json={"stageKey": None})
    assert response.status_code == 200

    body = admin_client.get("/api/funnel").json()
    assert _stage(body, "awareness")["uniqueDevelopers"] == 0
    assert _stage(body, "engagement")["dropRate"] is None


def test_stage_drop_rate_endpoint(admin_client, funnel_data):
    response = admin_client.get("/api/funnel/stages/adoption/drop-rate")

    assert response.status_code == 200
    assert response.json() == {
        "stageKey": "adoption",
        "previousStageCount": 2,
        "uniqueDevelopers": 1,
        "dropRate": 50.0,
    }


def test_stage_drop_rate_rejects_first_and_unknown_stage(admin_client):
    first = admin_client.get("/api/funnel/stages/awareness/drop-rate")
    assert first.status_code == 400
    assert first.json()["error"] == "Cannot calculate drop rate for the first funnel stage"

    unknown = admin_client.get("/api/funnel/stages/retention/drop-rate")
    assert unknown.status_code == 400


def test_weekly_timeline_buckets_on_monday(admin_client, funnel_data):
    response = admin_client.get(
        "/api/funnel/timeline",
        params={"fromDate": "2025-01-01", "toDate": "2025-01-31", "interval": "weekly"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["granularity"] == "week"
    assert [point["date"] for point in body["timeline"]] == ["2025-01-06", "2025-01-13"]

    first_week = {s["stageKey"]: s for s in body["timeline"][0]["stages"]}
    assert first_week["awareness"]["uniqueDevelopers"] == 2  # alice, bob
    assert first_week["engagement"]["uniqueDevelopers"] == 2
    assert first_week["engagement"]["dropRate"] == 0.0
    assert first_week["awareness"]["dropRate"] is None

    second_week = {s["stageKey"]: s for s in body["timeline"][1]["stages"]}
    assert second_week["awareness"]["uniqueDevelopers"] == 1  # carol; the visitor is anonymous
    assert second_week["adoption"]["uniqueDevelopers"] == 1
    assert second_week["engagement"]["uniqueDevelopers"] == 0


def test_timeline_range_is_inclusive_and_skips_empty_days(admin_client, funnel_data):
    response = admin_client.get(
        "/api/funnel/timeline",
        params={"fromDate": "2025-01-07", "toDate": "2025-01-08", "granularity": "day"},
    )

    dates = [point["date"] for point in response.json()["timeline"]]
    assert dates == ["2025-01-07", "2025-01-08"]


def test_monthly_timeline(admin_client, funnel_data):
    response = admin_client.get(
        "/api/funnel/timeline",
        params={"fromDate": "2025-01-01", "toDate": "2025-02-28", "granularity": "month"},
    )

    timeline = response.json()["timeline"]
    assert [point["date"] for point in timeline] == ["2025-01-01", "2025-02-01"]
    february = {s["stageKey"]: s["uniqueDevelopers"] for s in timeline[1]["stages"]}
    assert february == {"awareness": 0, "engagement": 0, "adoption": 0, "advocacy": 1}


def test_timeline_defaults_window_to_end_date(admin_client, funnel_data):
    response = admin_client.get("/api/funnel/timeline", params={"toDate": "2025-01-08"})

    body = response.json()
    assert body["granularity"] == "day"
    assert body["fromDate"] == "2024-12-10"
    assert body["toDate"] == "2025-01-08"
    assert [point["date"] for point in body["timeline"]] == ["2025-01-06", "2025-01-07", "2025-01-08"]


def test_timeline_rejects_bad_input(admin_client):
    bad_granularity = admin_client.get("/api/funnel/timeline", params={"granularity": "hourly"})
    assert bad_granularity.status_code == 400

    reversed_range = admin_client.get(
        "/api/funnel/timeline",
        params={"fromDate": "2025-02-01", "toDate": "2025-01-01"},
    )
    assert reversed_range.status_code == 400
