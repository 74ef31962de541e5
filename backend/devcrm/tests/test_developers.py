"""Developers, organizations, identifiers, duplicate detection and merge."""

from datetime import datetime
from decimal import Decimal

import pytest

from devcrm.models import Account, Activity, Developer, DeveloperIdentifier, DeveloperMergeLog


def test_developer_crud(admin_client):
    created = admin_client.post(
        "/api/developers",
        json={"displayName": "Alice", "primaryEmail": "Alice@Example.com", "tags": ["python", "python", "ml"]},
    )
    assert created.status_code == 201
    developer = created.json()
    assert developer["primaryEmail"] == "alice@example.com"
    assert developer["tags"] == ["python", "ml"]
    assert developer["consentAnalytics"] is True

    fetched = admin_client.get(f"/api/developers/{developer['id']}")
    assert fetched.json()["displayName"] == "Alice"

    updated = admin_client.put(f"/api/developers/{developer['id']}", json={"displayName": "Alice Liddell"})
    assert updated.json()["displayName"] == "Alice Liddell"
    assert updated.json()["primaryEmail"] == "alice@example.com"

    assert admin_client.delete(f"/api/developers/{developer['id']}").status_code == 204
    assert admin_client.get(f"/api/developers/{developer['id']}").status_code == 404


def test_primary_email_is_unique_per_tenant(admin_client, make_developer, other_tenant):
    make_developer("Alice", "alice@example.com")
    # same email in another tenant is fine
    make_developer("Other Alice", "alice@example.com", tenant=other_tenant)

    response = admin_client.post("/api/developers", json={"primaryEmail": "ALICE@example.com"})

    assert response.status_code == 409


def test_list_developers_search_and_paging(admin_client, make_developer):
    make_developer("Alice", "alice@example.com")
    make_developer("Bob", "bob@example.com")
    make_developer("Alicia", "alicia@corp.example.com")

    body = admin_client.get("/api/developers", params={"search": "ali", "orderBy": "displayName", "orderDirection": "asc"}).json()
    assert body["total"] == 2
    assert [d["displayName"] for d in body["developers"]] == ["Alice", "Alicia"]

    page = admin_client.get("/api/developers", params={"limit": 1, "offset": 1}).json()
    assert page["total"] == 3
    assert len(page["developers"]) == 1

    assert admin_client.get("/api/developers", params={"limit": 101}).status_code == 400


def test_developer_search_treats_underscore_literally(admin_client, make_developer):
    make_developer("Dana", "dana_k@example.com")
    make_developer("Eve", "eve@example.com")

    body = admin_client.get("/api/developers", params={"search": "_"}).json()

    assert body["total"] == 1
    assert body["developers"][0]["displayName"] == "Dana"


def test_developer_with_unknown_organization_is_rejected(admin_client):
    response = admin_client.post(
        "/api/developers",
        json={"displayName": "Alice", "orgId": "00000000-0000-0000-0000-000000000001"},
    )
    assert response.status_code == 404
    assert response.json() == {"error": "Organization not found"}


def test_organizations(admin_client):
    created = admin_client.post("/api/organizations", json={"name": "Acme", "domainPrimary": "acme.dev"})
    assert created.status_code == 201
    org_id = created.json()["id"]

    assert admin_client.post("/api/organizations", json={"name": "Acme"}).status_code == 409

    developer = admin_client.post("/api/developers", json={"displayName": "Wile", "orgId": org_id}).json()
    assert developer["orgId"] == org_id

    filtered = admin_client.get("/api/developers", params={"orgId": org_id}).json()
    assert filtered["total"] == 1

    listed = admin_client.get("/api/organizations").json()
    assert listed["total"] == 1
    assert listed["organizations"][0]["domainPrimary"] == "acme.dev"


# ============================================================================
# Identifiers
# ============================================================================

def test_identifiers_are_normalized(admin_client, make_developer):
    alice = make_developer("Alice")
    url = f"/api/developers/{alice.id}/identifiers"

    email = admin_client.post(url, json={"kind": "email", "value": "  Alice@Example.COM "})
    phone = admin_client.post(url, json={"kind": "phone", "value": "+81 (90) 1234-5678", "confidence": 0.7})

    assert email.status_code == 201
    assert email.json()["valueNormalized"] == "alice@example.com"
    assert phone.json()["valueNormalized"] == "+819012345678"
    assert phone.json()["confidence"] == pytest.approx(0.7)

    listed = admin_client.get(url).json()
    assert {i["kind"] for i in listed["identifiers"]} == {"email", "phone"}


def test_re_adding_identifier_refreshes_it(admin_client, make_developer, test_db_session):
    alice = make_developer("Alice")
    url = f"/api/developers/{alice.id}/identifiers"

    first = admin_client.post(url, json={"kind": "email", "value": "alice@example.com", "confidence": 0.5}).json()
    second = admin_client.post(url, json={"kind": "email", "value": "ALICE@example.com", "confidence": 0.9}).json()

    assert first["id"] == second["id"]
    assert second["confidence"] == pytest.approx(0.9)
    assert test_db_session.query(DeveloperIdentifier).count() == 1


def test_identifier_owned_by_another_developer_conflicts(admin_client, make_developer):
    alice = make_developer("Alice")
    bob = make_developer("Bob")
    admin_client.post(f"/api/developers/{alice.id}/identifiers", json={"kind": "mlid", "value": "octo"})

    response = admin_client.post(f"/api/developers/{bob.id}/identifiers", json={"kind": "mlid", "value": "octo"})

    assert response.status_code == 409
    assert "Merge the developers" in response.json()["error"]


def test_identifier_validation(admin_client, make_developer):
    alice = make_developer("Alice")
    url = f"/api/developers/{alice.id}/identifiers"

    assert admin_client.post(url, json={"kind": "email", "value": "a@b.c", "confidence": 1.5}).status_code == 400
    assert admin_client.post(url, json={"kind": "fax", "value": "123"}).status_code == 400
    assert admin_client.post(url, json={"kind": "phone", "value": "()-"}).status_code == 400


def test_remove_identifier(admin_client, make_developer):
    alice = make_developer("Alice")
    url = f"/api/developers/{alice.id}/identifiers"
    identifier = admin_client.post(url, json={"kind": "email", "value": "alice@example.com"}).json()

    assert admin_client.delete(f"{url}/{identifier['id']}").status_code == 204
    assert admin_client.delete(f"{url}/{identifier['id']}").status_code == 404
    assert admin_client.get(url).json()["identifiers"] == []


# ============================================================================
# Stats, duplicates & merge
# ============================================================================

def test_developer_stats_by_stage(admin_client, make_developer, make_activity):
    alice = make_developer("Alice")
    make_activity("click", alice, datetime(2025, 1, 1, 9))
    make_activity("click", alice, datetime(2025, 1, 2, 9))
    make_activity("star", alice, datetime(2025, 1, 5, 9))
    make_activity("pageview", alice, datetime(2025, 1, 3, 9))

    body = admin_client.get(f"/api/developers/{alice.id}/stats").json()

    assert body["totalActivities"] == 4
    assert body["stages"] == {"awareness": 2, "engagement": 0, "adoption": 0, "advocacy": 1}
    assert body["unmappedActivities"] == 1
    assert body["firstActivityAt"].startswith("2025-01-01")
    assert body["lastActivityAt"].startswith("2025-01-05")

    activities = admin_client.get(f"/api/developers/{alice.id}/activities").json()
    assert activities["total"] == 4
    assert activities["activities"][0]["action"] == "star"


def test_find_duplicates_combines_signals(admin_client, test_db_session, test_tenant, make_developer):
    alice = make_developer("Alice", "alice@example.com")
    admin_client.post(
        f"/api/developers/{alice.id}/identifiers",
        json={"kind": "email", "value": "alice@work.example.com"},
    )
    twin = make_developer("A. Liddell", "alice@work.example.com")
    test_db_session.add(
        Account(
            tenant_id=test_tenant.id,
            developer_id=twin.id,
            provider="github",
            external_user_id="1001",
            email="Alice@Example.com",
            confidence=Decimal("0.5"),
        )
    )
    make_developer("Bob", "bob@example.com")
    test_db_session.commit()

    body = admin_client.get(f"/api/developers/{alice.id}/duplicates").json()

    assert len(body["candidates"]) == 1
    candidate = body["candidates"][0]
    assert candidate["developerId"] == str(twin.id)
    # 1 - (1 - 0.9) * (1 - 0.5)
    assert candidate["confidence"] == pytest.approx(0.95)
    assert len(candidate["matchedOn"]) == 2


def test_merge_moves_everything_and_logs(admin_client, test_db_session, make_developer, make_activity):
    target = make_developer("Alice", None, tags=["python"])
    source = make_developer("Alice L.", "alice@example.com", tags=["python", "rust"])
    admin_client.post(f"/api/developers/{source.id}/identifiers", json={"kind": "mlid", "value": "ml-alice"})
    make_activity("click", source)
    make_activity("star", source, datetime(2025, 1, 20))
    source_id = source.id

    response = admin_client.post(
        f"/api/developers/{target.id}/merge",
        json={"fromDeveloperId": str(source_id), "reason": "same person"},
    )

    assert response.status_code == 200
    merged = response.json()
    assert merged["tags"] == ["python", "rust"]
    assert merged["primaryEmail"] == "alice@example.com"
    assert merged["displayName"] == "Alice"

    assert test_db_session.query(Developer).filter(Developer.id == source_id).count() == 0
    assert test_db_session.query(Activity).filter(Activity.developer_id == target.id).count() == 2
    identifiers = admin_client.get(f"/api/developers/{target.id}/identifiers").json()["identifiers"]
    assert [i["valueNormalized"] for i in identifiers] == ["ml-alice"]

    log = test_db_session.query(DeveloperMergeLog).one()
    assert log.from_developer_id == source_id
    assert log.reason == "same person"
    assert log.evidence["activities_moved"] == 2


def test_merge_rejects_self_and_unknown_source(admin_client, make_developer):
    alice = make_developer("Alice")
    url = f"/api/developers/{alice.id}/merge"

    same = admin_client.post(url, json={"fromDeveloperId": str(alice.id)})
    assert same.status_code == 400
    assert same.json() == {"error": "Cannot merge developer with itself"}

    missing = admin_client.post(url, json={"fromDeveloperId": "00000000-0000-0000-0000-000000000002"})
    assert missing.status_code == 404
    assert missing.json() == {"error": "Source developer not found"}
