"""Shortlink CRUD, redirect and click tracking."""

import uuid

from devcrm.deps import get_settings
from devcrm.models import Activity, ActivityCampaign


def _create_campaign(client, name="Spring Launch"):
    response = client.post("/api/campaigns", json={"name": name})
    assert response.status_code == 201, response.text
    return response.json()


def _create_shortlink(client, target="https://example.com/blog/launch", **extra):
    response = client.post("/api/shortlinks", json={"targetUrl": target, **extra})
    assert response.status_code == 201, response.text
    return response.json()


def test_shortlink_crud(admin_client):
    campaign = _create_campaign(admin_client)
    link = _create_shortlink(admin_client, key="launch", campaignId=campaign["id"], attributes={"utm_source": "x"})

    assert link["key"] == "launch"
    assert link["shortUrl"] == "http://localhost:8000/c/launch"
    assert link["campaignId"] == campaign["id"]
    assert link["clickCount"] == 0

    generated = _create_shortlink(admin_client)
    assert len(generated["key"]) == 8

    updated = admin_client.put(f"/api/shortlinks/{link['id']}", json={"targetUrl": "https://example.com/v2", "campaignId": None})
    assert updated.status_code == 200
    assert updated.json()["targetUrl"] == "https://example.com/v2"
    assert updated.json()["campaignId"] is None
    assert updated.json()["key"] == "launch"

    listed = admin_client.get("/api/shortlinks", params={"search": "LAUNCH"}).json()
    assert listed["total"] == 1

    assert admin_client.delete(f"/api/shortlinks/{link['id']}").status_code == 204
    assert admin_client.get(f"/api/shortlinks/{link['id']}").status_code == 404


def test_shortlink_validation(admin_client, other_client):
    _create_shortlink(admin_client, key="taken")

    assert admin_client.post("/api/shortlinks", json={"targetUrl": "https://a.example", "key": "taken"}).status_code == 409
    # Keys are global, not per tenant
    assert other_client.post("/api/shortlinks", json={"targetUrl": "https://a.example", "key": "taken"}).status_code == 409

    assert admin_client.post("/api/shortlinks", json={"targetUrl": "https://a.example", "key": "ab"}).status_code == 400
    assert admin_client.post("/api/shortlinks", json={"targetUrl": "https://a.example", "key": "has space"}).status_code == 400
    assert admin_client.post("/api/shortlinks", json={"targetUrl": "ftp://files.example"}).status_code == 400
    assert admin_client.post("/api/shortlinks", json={"targetUrl": "not a url"}).status_code == 400

    missing_campaign = admin_client.post("/api/shortlinks", json={"targetUrl": "https://a.example", "campaignId": str(uuid.uuid4())})
    assert missing_campaign.status_code == 404


def test_redirect_records_click_and_attributes_campaign(admin_client, client, test_db_session):
    campaign = _create_campaign(admin_client)
    link = _create_shortlink(admin_client, key="launch", campaignId=campaign["id"])

    first = client.get("/c/launch", headers={"User-Agent": "pytest", "Referer": "https://news.example"}, follow_redirects=False)

    assert first.status_code == 302
    assert first.headers["location"] == "https://example.com/blog/launch"
    anon_id = first.cookies.get("devcrm_anon_id")
    assert anon_id

    click = test_db_session.query(Activity).one()
    assert click.action == "click"
    assert click.source == "shortlink"
    assert click.source_ref == link["id"]
    assert click.anon_id == anon_id
    assert click.metadata_["campaign_id"] == campaign["id"]
    assert click.metadata_["user_agent"] == "pytest"
    assert click.metadata_["referer"] == "https://news.example"
    assert test_db_session.query(ActivityCampaign).filter(ActivityCampaign.activity_id == click.id).count() == 1

    # The visitor keeps the same anonymous id
    second = client.get("/c/launch", follow_redirects=False)
    assert second.status_code == 302
    assert {a.anon_id for a in test_db_session.query(Activity).all()} == {anon_id}

    assert admin_client.get(f"/api/shortlinks/{link['id']}").json()["clickCount"] == 2
    roi = admin_client.get(f"/api/campaigns/{campaign['id']}/roi").json()
    assert roi["activityCount"] == 2


def test_unknown_key_is_not_found(client, test_db_session):
    response = client.get("/c/nope1234", follow_redirects=False)

    assert response.status_code == 404
    assert response.json() == {"error": "Shortlink not found"}
    assert test_db_session.query(Activity).count() == 0


def test_redirect_allowlist(admin_client, client, monkeypatch, test_db_session):
    _create_shortlink(admin_client, target="https://docs.example.com/start", key="docs")
    _create_shortlink(admin_client, target="https://elsewhere.test/", key="away")
    monkeypatch.setattr(get_settings(), "ALLOWED_REDIRECT_HOSTS", "*.example.com")

    assert client.get("/c/docs", follow_redirects=False).status_code == 302
    blocked = client.get("/c/away", follow_redirects=False)
    assert blocked.status_code == 403
    assert test_db_session.query(Activity).count() == 1


def test_click_counts_order_and_filter(admin_client, client):
    campaign = _create_campaign(admin_client)
    quiet = _create_shortlink(admin_client, key="quiet", campaignId=campaign["id"])
    busy = _create_shortlink(admin_client, key="busy")
    for _ in range(3):
        client.get("/c/busy", follow_redirects=False)
    client.get("/c/quiet", follow_redirects=False)

    ranked = admin_client.get("/api/shortlinks", params={"orderBy": "clickCount"}).json()
    assert [(s["key"], s["clickCount"]) for s in ranked["shortlinks"]] == [("busy", 3), ("quiet", 1)]

    by_campaign = admin_client.get("/api/shortlinks", params={"campaignId": campaign["id"]}).json()
    assert by_campaign["total"] == 1
    assert by_campaign["shortlinks"][0]["id"] == quiet["id"]
    assert busy["id"] != quiet["id"]


def test_shortlinks_are_tenant_scoped(admin_client, other_client):
    link = _create_shortlink(admin_client, key="mine")

    assert other_client.get(f"/api/shortlinks/{link['id']}").status_code == 404
    assert other_client.delete(f"/api/shortlinks/{link['id']}").status_code == 404
    assert other_client.get("/api/shortlinks").json()["total"] == 0
