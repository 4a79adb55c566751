"""
tests/test_api_routes.py -- Integration tests for the auth and admin routes.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> AuthService -> SQLite -> response model serialization. Unit
testing individual route functions would miss middleware, dependency
injection, the error envelope and response model validation -- integration
tests are the right tool here.

Coverage:
  - 401 on protected routes without a session; cookie and Bearer carriers
  - Register / verify / login / logout round trip, cookie attributes
  - AuthResult codes mapped to HTTP statuses inside the {"error": {...}} envelope
  - Admin console: role gate, status, role, bulk, logs, alerts, stats, export
  - Per-IP login rate limit (slowapi) returns 429 with Retry-After

Fixtures used (from conftest.py):
  - api_client: (client, service, sender) over an isolated in-memory store
  - make_account / mailed_token: account factory and mailbox reader
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from auth.models import Role

PASSWORD = "Passw0rd1"
NEW_PASSWORD = "Sunrise-Over-42"


def _login(client: TestClient, email: str, password: str = PASSWORD) -> str:
    """Log in over HTTP and return the raw token; drop the cookie so callers choose the carrier."""
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    client.cookies.clear()
    return resp.json()["session_token"]


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _error(resp) -> dict:
    body = resp.json()
    assert set(body) == {"error"}
    return body["error"]


@pytest.fixture
def admin_token(api_client, make_account) -> str:
    client, _service, _sender = api_client
    make_account("root@corp.com", role=Role.ADMINISTRATOR)
    return _login(client, "root@corp.com")


class TestAuthRequired:
    @pytest.mark.parametrize(
        "method, path",
        [
            ("get", "/api/v1/auth/me"),
            ("get", "/api/v1/auth/sessions"),
            ("post", "/api/v1/auth/session/rotate"),
            ("get", "/api/v1/admin/accounts"),
            ("get", "/api/v1/admin/alerts"),
        ],
    )
    def test_unauthenticated(self, api_client, method: str, path: str) -> None:
        client, _service, _sender = api_client
        resp = getattr(client, method)(path)
        assert resp.status_code == 401
        assert _error(resp)["code"] == "UNAUTHORIZED"

    def test_garbage_bearer_token(self, api_client) -> None:
        client, _service, _sender = api_client
        resp = client.get("/api/v1/auth/me", headers=_bearer("not-a-token"))
        assert resp.status_code == 401


class TestRegistration:
    def test_register_then_verify(self, api_client, mailed_token) -> None:
        client, _service, _sender = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "email": "Ana@Corp.com",
                "password": PASSWORD,
                "given_name": "Ana",
                "family_name": "Lopez",
                "company": "Acme Maps",
                "role": "Personal",
            },
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["account"]["email"] == "ana@corp.com"
        assert body["account"]["role"] == "Personal"
        assert body["account"]["email_verified"] is False
        assert body["data"] == {"verification_required": True}
        assert "password_hash" not in body["account"]

        token = mailed_token("ana@corp.com")
        first = client.post("/api/v1/auth/verify-email", json={"token": token})
        assert first.status_code == 200
        assert first.json()["account"]["email_verified"] is True

        again = client.post("/api/v1/auth/verify-email", json={"token": token})
        assert again.status_code == 400
        assert _error(again) == {"code": "INVALID_TOKEN", "message": "Invalid or expired token", "detail": None}

    def test_weak_password(self, api_client) -> None:
        client, _service, _sender = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "a@b.com", "password": "short", "given_name": "Ana", "family_name": "Lopez"},
        )
        assert resp.status_code == 400
        error = _error(resp)
        assert error["code"] == "INVALID_INPUT"
        assert error["detail"] == "password"

    def test_administrator_cannot_self_register(self, api_client) -> None:
        client, service, _sender = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "email": "a@b.com",
                "password": PASSWORD,
                "given_name": "Ana",
                "family_name": "Lopez",
                "role": "Administrator",
            },
        )
        assert resp.status_code == 400
        assert _error(resp)["detail"] == "role"
        assert service.get_accounts_status() == []

    def test_duplicate_email(self, api_client, make_account) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "A@b.com", "password": PASSWORD, "given_name": "Ana", "family_name": "Lopez"},
        )
        assert resp.status_code == 409
        assert _error(resp)["code"] == "EMAIL_EXISTS"

    def test_malformed_body(self, api_client) -> None:
        client, _service, _sender = api_client
        resp = client.post("/api/v1/auth/register", json={"email": "a@b.com"})
        assert resp.status_code == 422
        assert _error(resp)["code"] == "INVALID_INPUT"

    def test_resend_is_success_shaped(self, api_client) -> None:
        client, _service, _sender = api_client
        resp = client.post("/api/v1/auth/resend-verification", json={"email": "ghost@corp.com"})
        assert resp.status_code == 200


class TestLoginLogout:
    def test_login_sets_cookie_and_me_works(self, api_client, make_account) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        resp = client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        cookie = resp.headers["set-cookie"]
        assert cookie.startswith("session_token=")
        assert "HttpOnly" in cookie
        assert "samesite=strict" in cookie.lower()
        assert "Max-Age=86400" in cookie
        assert len(resp.json()["session_token"]) == 64

        me = client.get("/api/v1/auth/me")
        assert me.status_code == 200
        assert me.json()["email"] == "a@b.com"
        assert me.json()["connected"] is True

    def test_remember_me_cookie_lifetime(self, api_client, make_account) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        resp = client.post(
            "/api/v1/auth/login", json={"email": "a@b.com", "password": PASSWORD, "remember_me": True}
        )
        assert "Max-Age=2592000" in resp.headers["set-cookie"]

    def test_bearer_and_logout(self, api_client, make_account) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        token = _login(client, "a@b.com")
        assert client.get("/api/v1/auth/me", headers=_bearer(token)).status_code == 200

        out = client.post("/api/v1/auth/logout", headers=_bearer(token))
        assert out.status_code == 200
        assert "session_token=" in out.headers["set-cookie"]
        assert client.get("/api/v1/auth/me", headers=_bearer(token)).status_code == 401

    def test_logout_without_session_is_ok(self, api_client) -> None:
        client, _service, _sender = api_client
        assert client.post("/api/v1/auth/logout").status_code == 200

    def test_credential_errors_share_a_message(self, api_client, make_account) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        unknown = client.post("/api/v1/auth/login", json={"email": "who@b.com", "password": PASSWORD})
        wrong = client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": "Wrong-pass-1"})
        assert unknown.status_code == wrong.status_code == 401
        assert _error(unknown) == _error(wrong)
        assert _error(wrong)["code"] == "INVALID_CREDENTIALS"
        assert wrong.headers["cache-control"] == "no-store"

    def test_locked_account_is_423(self, api_client, make_account) -> None:
        client, service, _sender = api_client
        make_account("a@b.com")
        for _ in range(5):
            client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": "Wrong-pass-1"})
        resp = client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": PASSWORD})
        assert resp.status_code == 423
        error = _error(resp)
        assert error["code"] == "USER_BLOCKED"
        assert error["detail"] == service.store.get_account("a@b.com").locked_until.isoformat()

    def test_unverified_is_403(self, api_client, make_account) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com", verified=False)
        resp = client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": PASSWORD})
        assert resp.status_code == 403
        assert _error(resp)["code"] == "EMAIL_NOT_VERIFIED"

    def test_login_rate_limit(self, api_client) -> None:
        client, _service, _sender = api_client
        for _ in range(10):
            resp = client.post("/api/v1/auth/login", json={"email": "who@b.com", "password": "x"})
            assert resp.status_code == 401
        blocked = client.post("/api/v1/auth/login", json={"email": "who@b.com", "password": "x"})
        assert blocked.status_code == 429
        assert _error(blocked)["code"] == "RATE_LIMIT"
        assert "retry-after" in blocked.headers


class TestSessionRoutes:
    def test_sessions_never_expose_digests(self, api_client, make_account) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        token = _login(client, "a@b.com")
        resp = client.get("/api/v1/auth/sessions", headers={**_bearer(token), "User-Agent": "pytest-agent"})
        assert resp.status_code == 200
        sessions = resp.json()
        assert len(sessions) == 1
        assert set(sessions[0]) == {"address", "device", "created_at", "expires_at"}
        assert token not in resp.text

    def test_rotate(self, api_client, make_account) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        old = _login(client, "a@b.com")
        resp = client.post("/api/v1/auth/session/rotate", headers=_bearer(old))
        assert resp.status_code == 200
        new = resp.json()["session_token"]
        client.cookies.clear()
        assert new != old
        assert client.get("/api/v1/auth/me", headers=_bearer(old)).status_code == 401
        assert client.get("/api/v1/auth/me", headers=_bearer(new)).status_code == 200


class TestPasswordRoutes:
    def test_reset_request_looks_the_same_for_everyone(self, api_client, make_account) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        known = client.post("/api/v1/auth/password-reset/request", json={"email": "a@b.com"})
        unknown = client.post("/api/v1/auth/password-reset/request", json={"email": "ghost@b.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_reset_complete_closes_sessions(self, api_client, make_account, mailed_token) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        token = _login(client, "a@b.com")
        client.post("/api/v1/auth/password-reset/request", json={"email": "a@b.com"})

        resp = client.post(
            "/api/v1/auth/password-reset/complete",
            json={"token": mailed_token("a@b.com"), "new_password": NEW_PASSWORD},
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"sessions_closed": 1}
        assert client.get("/api/v1/auth/me", headers=_bearer(token)).status_code == 401
        _login(client, "a@b.com", NEW_PASSWORD)

    def test_change_password(self, api_client, make_account) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        token = _login(client, "a@b.com")

        wrong = client.post(
            "/api/v1/auth/change-password",
            json={"current_password": "Not-mine-123", "new_password": NEW_PASSWORD},
            headers=_bearer(token),
        )
        assert wrong.status_code == 400
        assert _error(wrong)["code"] == "INVALID_CURRENT_PASSWORD"

        ok = client.post(
            "/api/v1/auth/change-password",
            json={"current_password": PASSWORD, "new_password": NEW_PASSWORD},
            headers=_bearer(token),
        )
        assert ok.status_code == 200
        assert client.get("/api/v1/auth/me", headers=_bearer(token)).status_code == 401

    def test_password_strength(self, api_client) -> None:
        client, _service, _sender = api_client
        resp = client.post("/api/v1/auth/password-strength", json={"password": "Sunrise-Over-42-Long"})
        assert resp.status_code == 200
        assert resp.json() == {"score": 95, "suggestions": []}


class TestAdminRoutes:
    def test_non_admin_is_forbidden(self, api_client, make_account) -> None:
        client, _service, _sender = api_client
        make_account("boss@b.com", role=Role.EMPRESA)
        token = _login(client, "boss@b.com")
        resp = client.get("/api/v1/admin/accounts", headers=_bearer(token))
        assert resp.status_code == 403
        assert _error(resp)["code"] == "FORBIDDEN"

    def test_list_and_filter(self, api_client, make_account, admin_token) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        make_account("new@b.com", verified=False)

        everyone = client.get("/api/v1/admin/accounts", params={"order": "email"}, headers=_bearer(admin_token))
        assert everyone.status_code == 200
        assert [a["email"] for a in everyone.json()] == ["a@b.com", "new@b.com", "root@corp.com"]

        unverified = client.get(
            "/api/v1/admin/accounts", params={"state": "unverified"}, headers=_bearer(admin_token)
        )
        assert [a["email"] for a in unverified.json()] == ["new@b.com"]

        bad = client.get("/api/v1/admin/accounts", params={"state": "sleeping"}, headers=_bearer(admin_token))
        assert bad.status_code == 422

    def test_disable_closes_sessions(self, api_client, make_account, admin_token) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        user_token = _login(client, "a@b.com")

        resp = client.patch(
            "/api/v1/admin/accounts/a@b.com/status", json={"active": False}, headers=_bearer(admin_token)
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"sessions_closed": 1}
        assert client.get("/api/v1/auth/me", headers=_bearer(user_token)).status_code == 401

        login = client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": PASSWORD})
        assert login.status_code == 403
        assert _error(login)["code"] == "ACCOUNT_DISABLED"

    def test_admin_cannot_disable_self(self, api_client, admin_token) -> None:
        client, _service, _sender = api_client
        resp = client.patch(
            "/api/v1/admin/accounts/root@corp.com/status", json={"active": False}, headers=_bearer(admin_token)
        )
        assert resp.status_code == 400
        assert _error(resp)["code"] == "CANNOT_DISABLE_SELF"

    def test_unknown_account_is_404(self, api_client, admin_token) -> None:
        client, _service, _sender = api_client
        resp = client.patch(
            "/api/v1/admin/accounts/ghost@b.com/status", json={"active": False}, headers=_bearer(admin_token)
        )
        assert resp.status_code == 404

    def test_role_change(self, api_client, make_account, admin_token) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        resp = client.patch(
            "/api/v1/admin/accounts/a@b.com/role", json={"role": "Empresa"}, headers=_bearer(admin_token)
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "Empresa"

    def test_bulk(self, api_client, make_account, admin_token) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        resp = client.post(
            "/api/v1/admin/accounts/bulk",
            json={"emails": ["a@b.com", "ghost@b.com"], "active": False},
            headers=_bearer(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"updated": ["a@b.com"], "failed": {"ghost@b.com": "NOT_FOUND"}}

        too_many = client.post(
            "/api/v1/admin/accounts/bulk",
            json={"emails": [f"u{i}@b.com" for i in range(51)], "active": False},
            headers=_bearer(admin_token),
        )
        assert too_many.status_code == 422

    def test_logs_alerts_stats_activity(self, api_client, make_account, admin_token) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        _login(client, "a@b.com")
        headers = _bearer(admin_token)

        logs = client.get("/api/v1/admin/accounts/a@b.com/logs", params={"action": "login"}, headers=headers)
        assert logs.status_code == 200
        assert [e["action"] for e in logs.json()] == ["login"]
        assert logs.json()[0]["address"] == "testclient"

        assert client.get("/api/v1/admin/alerts", headers=headers).json() == []
        stats = client.get("/api/v1/admin/stats", headers=headers).json()
        assert stats["accounts"]["total"] == 2
        assert stats["sessions"]["live"] == 2
        online = client.get("/api/v1/admin/online", headers=headers).json()
        assert sorted(a["email"] for a in online) == ["a@b.com", "root@corp.com"]
        activity = client.get("/api/v1/admin/activity", params={"days": 1}, headers=headers).json()
        assert activity[0]["logins_ok"] == 2

    def test_account_detail(self, api_client, make_account, admin_token) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com")
        _login(client, "a@b.com")
        headers = _bearer(admin_token)

        resp = client.get("/api/v1/admin/accounts/A@B.com", headers=headers)
        assert resp.status_code == 200
        detail = resp.json()
        assert detail["account"]["email"] == "a@b.com"
        assert detail["session_count"] == 1
        assert set(detail["active_sessions"][0]) == {"address", "device", "created_at", "expires_at"}
        assert "login" in [e["action"] for e in detail["recent_logs"]]

        missing = client.get("/api/v1/admin/accounts/ghost@b.com", headers=headers)
        assert missing.status_code == 404
        assert _error(missing)["code"] == "NOT_FOUND"

    def test_csv_export(self, api_client, make_account, admin_token) -> None:
        client, _service, _sender = api_client
        make_account("a@b.com", family_name="-Lopez")
        resp = client.get("/api/v1/admin/export", params={"format": "csv"}, headers=_bearer(admin_token))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.headers["content-disposition"] == 'attachment; filename="accounts.csv"'
        assert resp.headers["cache-control"] == "no-store"
        assert "\t-Lopez" in resp.text

    def test_maintenance_and_notify(self, api_client, make_account, admin_token) -> None:
        client, _service, sender = api_client
        make_account("a@b.com")
        headers = _bearer(admin_token)

        maintenance = client.post("/api/v1/admin/maintenance", headers=headers)
        assert maintenance.status_code == 200
        assert set(maintenance.json()["data"]) == {
            "expired_sessions",
            "expired_tokens",
            "old_log_entries",
            "disconnected_accounts",
        }

        sent = client.post(
            "/api/v1/admin/notify",
            json={"email": "a@b.com", "subject": "Planned downtime", "message": "Back at 10:00."},
            headers=headers,
        )
        assert sent.status_code == 200
        assert sender.to("a@b.com")[-1].subject == "Planned downtime"
