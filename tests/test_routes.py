"""
HTTP-level tests for the dashboard API.
"""
import httpx
import pytest

from dashboard.auth.backend import LocalIdentityBackend, get_identity_backend
from dashboard.models import AdminLog, User
from main import app

from conftest import TEST_PASSWORD


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["service"] == "dashboard-api"


class TestAuthRoutes:
    """Tests for /api/auth."""

    def test_login_returns_token(self, client, regular_user):
        response = client.post("/api/auth/login", json={"email": regular_user.email, "password": TEST_PASSWORD})
        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["id"] == regular_user.id

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
        assert me.status_code == 200
        assert me.json()["email"] == regular_user.email

    def test_login_wrong_password(self, client, regular_user):
        response = client.post("/api/auth/login", json={"email": regular_user.email, "password": "nope-nope"})
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHENTICATED"

    def test_me_requires_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"
        body = response.json()
        assert body["error"] is True
        assert body["code"] == "UNAUTHENTICATED"

    def test_signup(self, client):
        response = client.post("/api/auth/signup", json={
            "email": "fresh@example.com",
            "password": "long-enough-pw",
            "display_name": "Fresh",
            "agent_id_filter": "agent-5",
        })
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "user"
        assert response.json()["user"]["agent_id_filter"] == "agent-5"

    def test_password_reset_always_accepted(self, client, mailer):
        response = client.post("/api/auth/password-reset", json={"email": "nobody@example.com"})
        assert response.status_code == 202
        assert mailer.sent == []

    def test_password_reset_mail_failure_is_typed(self, client, db, regular_user, unreachable_mailer):
        app.dependency_overrides[get_identity_backend] = lambda: LocalIdentityBackend(db, mailer=unreachable_mailer)
        response = client.post("/api/auth/password-reset", json={"email": regular_user.email})
        assert response.status_code == 502
        body = response.json()
        assert body["code"] == "MAIL_DELIVERY_FAILED"
        assert body["message"] == "Mail provider is unreachable"

    def test_update_profile(self, client, regular_user, auth_headers):
        response = client.put("/api/auth/me", json={"business_name": "Acme"}, headers=auth_headers(regular_user))
        assert response.status_code == 200
        assert response.json()["business_name"] == "Acme"


class TestUserRoutes:
    """Tests for /api/users."""

    def test_regular_user_forbidden(self, client, regular_user, auth_headers):
        response = client.get("/api/users", headers=auth_headers(regular_user))
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_admin_lists_users(self, client, admin, regular_user, auth_headers):
        response = client.get("/api/users", headers=auth_headers(admin))
        assert response.status_code == 200
        assert {u["email"] for u in response.json()} == {admin.email, regular_user.email}

    def test_create_user(self, client, db, admin, mailer, auth_headers):
        response = client.post("/api/users", headers=auth_headers(admin), json={
            "email": "created@example.com",
            "display_name": "Created",
            "api_key": "sk_created_key",
            "send_welcome_email": True,
        })
        assert response.status_code == 201
        assert response.json()["created_by"] == admin.id
        assert response.json()["welcome_email_sent"] is True
        assert [to for to, _ in mailer.sent] == ["created@example.com"]

    def test_create_user_mail_failure_still_created(self, client, db, admin, auth_headers, unreachable_mailer):
        app.dependency_overrides[get_identity_backend] = lambda: LocalIdentityBackend(db, mailer=unreachable_mailer)
        response = client.post("/api/users", headers=auth_headers(admin), json={
            "email": "unmailed@example.com",
            "display_name": "Unmailed",
        })
        assert response.status_code == 201
        assert response.json()["welcome_email_sent"] is False
        assert db.query(AdminLog).filter(AdminLog.action == "create_user").count() == 1

    def test_create_user_invalid_email(self, client, admin, auth_headers):
        response = client.post("/api/users", headers=auth_headers(admin), json={
            "email": "bad", "display_name": "Bad",
        })
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_get_missing_user(self, client, admin, auth_headers):
        response = client.get("/api/users/missing", headers=auth_headers(admin))
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_deactivate_user(self, client, db, admin, regular_user, auth_headers):
        response = client.delete(f"/api/users/{regular_user.id}", headers=auth_headers(admin))
        assert response.status_code == 204
        db.expire_all()
        assert db.get(User, regular_user.id).is_active is False
        assert db.query(AdminLog).filter(AdminLog.action == "deactivate_user").count() == 1

        # Deactivated users lose their session
        me = client.get("/api/auth/me", headers=auth_headers(regular_user))
        assert me.status_code == 401

    def test_reset_password(self, client, admin, regular_user, mailer, auth_headers):
        response = client.post(f"/api/users/{regular_user.id}/reset-password", headers=auth_headers(admin))
        assert response.status_code == 202
        assert [to for to, _ in mailer.sent] == [regular_user.email]


class TestApiKeyRoutes:
    """Tests for /api/api-keys."""

    def test_set_and_get_masked(self, client, regular_user, auth_headers):
        headers = auth_headers(regular_user)
        put = client.put("/api/api-keys/me", json={"api_key": "sk_1234567890"}, headers=headers)
        assert put.status_code == 200

        response = client.get("/api/api-keys/me", headers=headers)
        assert response.status_code == 200
        assert response.json()["masked_key"] == "sk_1*****7890"
        assert "sk_1234567890" not in response.text

    def test_missing_key(self, client, regular_user, auth_headers):
        response = client.get("/api/api-keys/me", headers=auth_headers(regular_user))
        assert response.status_code == 409
        assert response.json()["code"] == "CREDENTIAL_MISSING"

    def test_cross_user_forbidden(self, client, make_user, regular_user, auth_headers):
        other = make_user()
        response = client.put(f"/api/api-keys/{other.id}", json={"api_key": "sk_x"}, headers=auth_headers(regular_user))
        assert response.status_code == 403


class TestUsageRoutes:
    """Tests for /api/usage."""

    def test_refresh_and_read(self, client, provider, regular_user, auth_headers):
        headers = auth_headers(regular_user)
        client.put("/api/api-keys/me", json={"api_key": "sk_usage_key"}, headers=headers)
        provider.routes["/v1/user"] = httpx.Response(200, json={
            "subscription": {"character_count": 5000, "character_limit": 10000},
        })

        refreshed = client.post("/api/usage/me/refresh", headers=headers)
        assert refreshed.status_code == 200
        assert refreshed.json()["minutes_remaining"] == 5.0

        stored = client.get("/api/usage/me", headers=headers)
        assert len(stored.json()["history"]) == 1

    def test_provider_failure(self, client, provider, regular_user, auth_headers):
        headers = auth_headers(regular_user)
        client.put("/api/api-keys/me", json={"api_key": "sk_usage_key"}, headers=headers)
        provider.routes["/v1/user"] = httpx.Response(429)

        response = client.post("/api/usage/me/refresh", headers=headers)
        assert response.status_code == 502
        assert response.json()["code"] == "PROVIDER_ERROR"

    def test_admin_updates_usage(self, client, admin, regular_user, auth_headers):
        body = {"minutes_remaining": 75.0, "credits_left": 7}
        assert client.put(f"/api/usage/{regular_user.id}", json=body,
                          headers=auth_headers(regular_user)).status_code == 403

        response = client.put(f"/api/usage/{regular_user.id}", json=body, headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["minutes_remaining"] == 75.0
        assert response.json()["credits_left"] == 7

        stored = client.get("/api/usage/me", headers=auth_headers(regular_user))
        assert stored.json()["credits_left"] == 7

    def test_all_users_admin_only(self, client, admin, regular_user, auth_headers):
        assert client.get("/api/usage", headers=auth_headers(regular_user)).status_code == 403
        response = client.get("/api/usage", headers=auth_headers(admin))
        assert response.status_code == 200
        assert len(response.json()) == 2


class TestConversationRoutes:
    """Tests for /api/conversations."""

    @pytest.fixture
    def headers(self, client, regular_user, auth_headers):
        headers = auth_headers(regular_user)
        client.put("/api/api-keys/me", json={"api_key": "sk_conv_key"}, headers=headers)
        return headers

    def test_list(self, client, provider, headers):
        provider.routes["/v1/convai/conversations"] = httpx.Response(200, json={"conversations": [
            {"conversation_id": "c1", "agent_name": "Sam"},
            {"conversation_id": "c2", "agent_name": "Billing"},
        ]})
        response = client.get("/api/conversations", params={"search": "sam"}, headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total_count"] == 1
        assert data["items"][0]["external_id"] == "c1"

    def test_not_found(self, client, headers):
        response = client.get("/api/conversations/gone", headers=headers)
        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "CONVERSATION_NOT_FOUND"
        assert "permission" in body["detail"]

    def test_audio_download(self, client, provider, headers):
        provider.routes["/v1/convai/conversations/c1/audio"] = httpx.Response(
            200, content=b"ID3audio", headers={"content-type": "audio/mpeg"}
        )
        response = client.get("/api/conversations/c1/audio", headers=headers)
        assert response.status_code == 200
        assert response.content == b"ID3audio"
        assert response.headers["content-type"] == "audio/mpeg"


    def test_audio_locator_never_exposes_key(self, client, provider, regular_user, auth_headers):
        headers = auth_headers(regular_user)
        client.put("/api/api-keys/me", json={"api_key": "sk_super_secret_key_123"}, headers=headers)
        provider.routes["/v1/convai/conversations/c1/audio"] = httpx.Response(
            200, content=b"ID3audio", headers={"content-type": "audio/mpeg"}
        )

        response = client.get("/api/conversations/c1/audio-locator", headers=headers)

        assert response.status_code == 200
        assert "sk_super_secret_key_123" not in response.text
        locator = response.json()
        assert locator["url"].endswith("/api/conversations/c1/audio")
        assert locator["auth_headers"] == headers

        audio = client.get(locator["url"], headers=locator["auth_headers"])
        assert audio.status_code == 200
        assert audio.content == b"ID3audio"

    def test_audio_locator_without_key(self, client, regular_user, auth_headers):
        response = client.get("/api/conversations/c1/audio-locator", headers=auth_headers(regular_user))
        assert response.status_code == 409
        assert response.json()["code"] == "CREDENTIAL_MISSING"


class TestAuditRoutes:
    """Tests for /api/audit."""

    def test_lists_newest_first(self, client, admin, make_user, auth_headers):
        first = make_user()
        second = make_user()
        headers = auth_headers(admin)
        client.delete(f"/api/users/{first.id}", headers=headers)
        client.delete(f"/api/users/{second.id}", headers=headers)

        response = client.get("/api/audit", params={"action": "deactivate_user"}, headers=headers)
        assert response.status_code == 200
        assert [e["target_user_id"] for e in response.json()] == [second.id, first.id]

    def test_regular_user_forbidden(self, client, regular_user, auth_headers):
        assert client.get("/api/audit", headers=auth_headers(regular_user)).status_code == 403
