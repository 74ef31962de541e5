"""Activity ingestion, filters and corrections."""

from datetime import datetime

from devcrm.models import Activity


def _payload(**overrides):
    payload = {
        "action": "click",
        "occurredAt": "2025-01-15T12:00:00",
        "source": "website",
        "anonId": "visitor-1",
    }
    payload.update(overrides)
    return payload


def test_record_activity_for_developer(admin_client, make_developer):
    alice = make_developer("Alice")

    response = admin_client.post(
        "/api/activities",
        json=_payload(developerId=str(alice.id), anonId=None, metadata={"path": "/docs"}, value="1200.50"),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["developerId"] == str(alice.id)
    assert body["metadata"] == {"path": "/docs"}
    assert body["confidence"] == 1.0
    assert body["recordedAt"] is not None


def test_activity_requires_a_subject(admin_client):
    response = admin_client.post("/api/activities", json=_payload(anonId=None))

    assert response.status_code == 400
    assert response.json()["error"] == "At least one of developerId, accountId, or anonId must be provided"


def test_activity_missing_fields_fail_validation(admin_client):
    response = admin_client.post("/api/activities", json={"anonId": "visitor-1"})

    assert response.status_code == 400
    fields = {detail["field"] for detail in response.json()["details"]}
    assert {"action", "occurredAt", "source"} <= fields


def test_dedup_key_is_unique_per_tenant(admin_client, other_client):
    first = admin_client.post("/api/activities", json=_payload(dedupKey="github:evt-1"))
    again = admin_client.post("/api/activities", json=_payload(dedupKey="github:evt-1"))
    elsewhere = other_client.post("/api/activities", json=_payload(dedupKey="github:evt-1"))

    assert first.status_code == 201
    assert again.status_code == 409
    assert again.json() == {"error": "Activity with dedup key 'github:evt-1' already exists"}
    assert elsewhere.status_code == 201


def test_aware_timestamps_are_stored_as_utc(admin_client, test_db_session):
    response = admin_client.post("/api/activities", json=_payload(occurredAt="2025-01-15T12:00:00+09:00"))
    assert response.status_code == 201

    activity = test_db_session.query(Activity).one()
    assert activity.occurred_at == datetime(2025, 1, 15, 3, 0)


def test_unknown_developer_reference_is_not_found(admin_client, other_tenant, make_developer):
    stranger = make_developer("Stranger", tenant=other_tenant)

    response = admin_client.post("/api/activities", json=_payload(developerId=str(stranger.id)))

    assert response.status_code == 404
    assert response.json() == {"error": "Developer not found"}


def test_list_filters_and_order(admin_client, make_developer, make_activity):
    alice = make_developer("Alice")
    make_activity("click", alice, datetime(2025, 1, 1, 9), source="website")
    make_activity("attend", alice, datetime(2025, 1, 10, 9), source="connpass")
    make_activity("click", None, datetime(2025, 1, 20, 9), source="website")

    everything = admin_client.get("/api/activities").json()
    assert everything["total"] == 3
    assert [a["action"] for a in everything["activities"]] == ["click", "attend", "click"]

    by_developer = admin_client.get("/api/activities", params={"developerId": str(alice.id)}).json()
    assert by_developer["total"] == 2

    clicks = admin_client.get("/api/activities", params={"action": "click", "orderDirection": "asc"}).json()
    assert [a["occurredAt"][:10] for a in clicks["activities"]] == ["2025-01-01", "2025-01-20"]

    window = admin_client.get(
        "/api/activities",
        params={"fromDate": "2025-01-05T00:00:00", "toDate": "2025-01-15T00:00:00"},
    ).json()
    assert [a["source"] for a in window["activities"]] == ["connpass"]

    reversed_window = admin_client.get(
        "/api/activities",
        params={"fromDate": "2025-02-01T00:00:00", "toDate": "2025-01-01T00:00:00"},
    )
    assert reversed_window.status_code == 400


def test_update_activity(admin_client, make_developer, make_activity):
    alice = make_developer("Alice")
    activity = make_activity("click", None, dedup_key="fixed")

    response = admin_client.put(
        f"/api/activities/{activity.id}",
        json={"developerId": str(alice.id), "action": "attend", "confidence": 0.4},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["developerId"] == str(alice.id)
    assert body["action"] == "attend"
    assert body["confidence"] == 0.4
    assert body["dedupKey"] == "fixed"


def test_update_cannot_remove_every_subject(admin_client, test_db_session, make_activity):
    activity = make_activity("click", None, anon_id="visitor-9")

    response = admin_client.put(f"/api/activities/{activity.id}", json={"anonId": None})

    assert response.status_code == 400
    test_db_session.expire_all()
    assert test_db_session.query(Activity).one().anon_id == "visitor-9"


def test_delete_activity(admin_client, make_activity):
    activity = make_activity("click")

    assert admin_client.delete(f"/api/activities/{activity.id}").status_code == 204
    assert admin_client.get(f"/api/activities/{activity.id}").status_code == 404
    assert admin_client.get("/api/activities/not-a-uuid").status_code == 400
