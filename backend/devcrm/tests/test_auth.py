"""Registration, login and the 401/403 behaviour of protected routes."""

from devcrm.models import ActivityType, AuthCredential, User, UserRoleEnum


def _register(client, email="founder@example.com", password="s3cretpass", tenant="Acme DevRel"):
    return client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "tenantName": tenant},
    )


def test_register_creates_tenant_admin_and_default_activity_types(client, test_db_session):
    response = _register(client, email="Founder@Example.com")

    assert response.status_code == 201
    body = response.json()
    assert body["email"] == "founder@example.com"
    assert body["role"] == "admin"
    assert body["displayName"] == "founder"

    user = test_db_session.query(User).filter(User.email == "founder@example.com").one()
    assert user.role == UserRoleEnum.admin
    assert test_db_session.query(AuthCredential).filter(AuthCredential.user_id == user.id).count() == 1
    actions = {
        row.action
        for row in test_db_session.query(ActivityType).filter(ActivityType.tenant_id == user.tenant_id)
    }
    assert actions == {"click", "attend", "signup", "post", "star"}


def test_register_rejects_existing_email(client, test_admin):
    response = _register(client, email="ADMIN@example.com")

    assert response.status_code == 400
    assert response.json() == {"error": "Email already registered"}


def test_register_validates_body(client):
    response = client.post("/api/auth/register", json={"email": "not-an-email", "password": "short"})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation failed"
    fields = {detail["field"] for detail in body["details"]}
    assert {"email", "password", "tenantName"} <= fields


def test_login_sets_cookie_and_me_returns_user(client, test_admin):
    response = client.post(
        "/api/auth/login",
        json={"email": "admin@example.com", "password": "password123"},
    )

    assert response.status_code == 200
    assert response.json()["user"]["id"] == str(test_admin.id)
    assert "access_token" in response.cookies

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["email"] == "admin@example.com"
    assert me.json()["lastLoginAt"] is not None


def test_login_wrong_password_and_unknown_email_look_the_same(client, test_admin):
    wrong = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "nope-nope"})
    unknown = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "nope-nope"})

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"error": "Invalid credentials"}


def test_disabled_user_cannot_login(client, test_db_session, test_admin):
    test_admin.disabled = True
    test_db_session.commit()

    response = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "password123"})
    assert response.status_code == 401


def test_logout_clears_cookie(client, test_admin):
    client.post("/api/auth/login", json={"email": "admin@example.com", "password": "password123"})

    response = client.post("/api/auth/logout")

    assert response.status_code == 200
    assert response.json() == {"message": "Logged out"}
    assert client.get("/api/auth/me").status_code == 401


def test_protected_routes_require_authentication(client):
    for path in ("/api/developers", "/api/funnel", "/api/campaigns", "/api/plugins", "/api/overview/stats"):
        response = client.get(path)
        assert response.status_code == 401, path
        assert response.json() == {"error": "Unauthorized"}


def test_garbage_token_is_unauthorized(client):
    response = client.get("/api/developers", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_member_cannot_use_admin_routes(member_client):
    response = member_client.post("/api/plugins", json={"key": "github", "name": "GitHub"})

    assert response.status_code == 403
    assert response.json() == {"error": "Admin access required"}


def test_health_is_public(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
