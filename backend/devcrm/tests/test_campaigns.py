"""Campaign CRUD, budgets, attribution and ROI."""

import uuid
from datetime import datetime
from decimal import Decimal

from devcrm.models import Activity, ActivityCampaign, Budget, Resource


def _create_campaign(client, name="DevConf 2025", **extra):
    payload = {"name": name, "channel": "event", "startDate": "2025-01-01", "endDate": "2025-03-31"}
    payload.update(extra)
    response = client.post("/api/campaigns", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _add_budget(client, campaign_id, amount, category="event"):
    response = client.post(
        f"/api/campaigns/{campaign_id}/budgets",
        json={"category": category, "amount": amount, "spentAt": "2025-01-10"},
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_campaign_crud(admin_client):
    campaign = _create_campaign(admin_client)
    assert campaign["name"] == "DevConf 2025"

    listed = admin_client.get("/api/campaigns", params={"search": "devconf"}).json()
    assert listed["total"] == 1
    assert listed["campaigns"][0]["id"] == campaign["id"]

    updated = admin_client.put(f"/api/campaigns/{campaign['id']}", json={"channel": "sponsorship"})
    assert updated.status_code == 200
    assert updated.json()["channel"] == "sponsorship"
    assert updated.json()["name"] == "DevConf 2025"

    assert admin_client.delete(f"/api/campaigns/{campaign['id']}").status_code == 204
    assert admin_client.get(f"/api/campaigns/{campaign['id']}").status_code == 404


def test_campaign_validation(admin_client):
    _create_campaign(admin_client)

    duplicate = admin_client.post("/api/campaigns", json={"name": "DevConf 2025"})
    assert duplicate.status_code == 409

    reversed_dates = admin_client.post(
        "/api/campaigns",
        json={"name": "Backwards", "startDate": "2025-02-01", "endDate": "2025-01-01"},
    )
    assert reversed_dates.status_code == 400

    bad_id = admin_client.get("/api/campaigns/not-a-uuid")
    assert bad_id.status_code == 400
    assert bad_id.json() == {"error": "Invalid campaign ID format"}


def test_budget_lines_default_currency_and_delete(admin_client, test_db_session):
    campaign = _create_campaign(admin_client)
    budget = _add_budget(admin_client, campaign["id"], 600)
    assert budget["currency"] == "JPY"

    usd = admin_client.post(
        f"/api/campaigns/{campaign['id']}/budgets",
        json={"category": "ad", "amount": "25.50", "currency": "usd", "spentAt": "2025-01-12"},
    )
    assert usd.json()["currency"] == "USD"

    listed = admin_client.get(f"/api/campaigns/{campaign['id']}/budgets").json()
    assert listed["total"] == 2

    response = admin_client.delete(f"/api/campaigns/{campaign['id']}/budgets/{budget['id']}")
    assert response.status_code == 204
    assert test_db_session.query(Budget).count() == 1


def test_roi_from_budgets_and_attributed_values(admin_client, make_developer, make_activity):
    developer = make_developer("Alice", "alice@example.com")
    signup = make_activity("signup", developer, value=1500, dedup_key="signup-1")
    star = make_activity("star", developer, value=1000, dedup_key="star-1")
    make_activity("click", developer, value=99999, dedup_key="not-attributed")

    campaign = _create_campaign(admin_client)
    _add_budget(admin_client, campaign["id"], 600)
    _add_budget(admin_client, campaign["id"], 400, category="swag")

    for activity in (signup, star):
        response = admin_client.post(
            f"/api/campaigns/{campaign['id']}/activities",
            json={"activityId": str(activity.id)},
        )
        assert response.status_code == 201
        assert response.json()["weight"] == 1.0

    roi = admin_client.get(f"/api/campaigns/{campaign['id']}/roi")

    assert roi.status_code == 200
    body = roi.json()
    assert body["campaignName"] == "DevConf 2025"
    assert body["totalCost"] == "1000"
    assert body["totalValue"] == "2500"
    assert body["activityCount"] == 2
    assert body["developerCount"] == 1
    assert body["roi"] == 150.0


def test_roi_is_null_without_spend(admin_client):
    campaign = _create_campaign(admin_client)

    body = admin_client.get(f"/api/campaigns/{campaign['id']}/roi").json()

    assert body["totalCost"] == "0"
    assert body["totalValue"] == "0"
    assert body["roi"] is None


def test_attribution_rules(admin_client, make_developer, make_activity):
    developer = make_developer("Alice")
    activity = make_activity("click", developer)
    campaign = _create_campaign(admin_client)
    url = f"/api/campaigns/{campaign['id']}/activities"

    assert admin_client.post(url, json={"activityId": str(activity.id), "weight": 0.5}).status_code == 201
    assert admin_client.post(url, json={"activityId": str(activity.id)}).status_code == 409
    assert admin_client.post(url, json={"activityId": str(activity.id), "weight": 0}).status_code == 400

    listed = admin_client.get(url).json()
    assert listed["total"] == 1
    assert listed["activities"][0]["id"] == str(activity.id)
    assert listed["activities"][0]["weight"] == 0.5

    assert admin_client.delete(f"{url}/{activity.id}").status_code == 204
    assert admin_client.delete(f"{url}/{activity.id}").status_code == 404


def test_deleting_campaign_keeps_activities(admin_client, test_db_session, make_developer, make_activity):
    developer = make_developer("Alice")
    activity = make_activity("click", developer)
    campaign = _create_campaign(admin_client)
    admin_client.post(f"/api/campaigns/{campaign['id']}/activities", json={"activityId": str(activity.id)})
    _add_budget(admin_client, campaign["id"], 100)

    assert admin_client.delete(f"/api/campaigns/{campaign['id']}").status_code == 204

    assert test_db_session.query(Activity).filter(Activity.id == activity.id).count() == 1
    assert test_db_session.query(ActivityCampaign).count() == 0
    assert test_db_session.query(Budget).count() == 0


def test_campaign_resources(admin_client, test_db_session, test_tenant):
    campaign = _create_campaign(admin_client)
    test_db_session.add(
        Resource(
            tenant_id=test_tenant.id,
            category="blog",
            title="Launch post",
            url="https://example.com/launch",
            campaign_id=uuid.UUID(campaign["id"]),
            created_at=datetime(2025, 1, 2),
        )
    )
    test_db_session.commit()

    body = admin_client.get(f"/api/campaigns/{campaign['id']}/resources").json()

    assert body["total"] == 1
    assert body["resources"][0]["title"] == "Launch post"


def test_roi_keeps_sub_cent_amounts(admin_client, make_developer, make_activity):
    developer = make_developer("Alice")
    activity = make_activity("signup", developer, value=Decimal("2500.555"))
    campaign = _create_campaign(admin_client)
    budget = _add_budget(admin_client, campaign["id"], "0.004")
    assert Decimal(budget["amount"]) == Decimal("0.004")
    admin_client.post(f"/api/campaigns/{campaign['id']}/activities", json={"activityId": str(activity.id)})

    body = admin_client.get(f"/api/campaigns/{campaign['id']}/roi").json()

    assert body["totalCost"] == "0.004"
    assert body["totalValue"] == "2500.555"
    assert body["roi"] == 62513775.0


def test_campaign_search_treats_wildcards_literally(admin_client):
    _create_campaign(admin_client, name="spring_launch")
    _create_campaign(admin_client, name="Summer Launch")
    _create_campaign(admin_client, name="100% Uptime")

    underscore = admin_client.get("/api/campaigns", params={"search": "_"}).json()
    percent = admin_client.get("/api/campaigns", params={"search": "%"}).json()

    assert [c["name"] for c in underscore["campaigns"]] == ["spring_launch"]
    assert [c["name"] for c in percent["campaigns"]] == ["100% Uptime"]
