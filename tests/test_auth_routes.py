"""
tests/test_auth_routes.py -- Integration tests for /api/v1/auth/*.

Coverage:
  - Login: token + camelCase user body, cookie attributes, lifetimes
  - Login failures are one generic 401 and write nothing
  - Logout revokes the session and is idempotent
  - /me runs the strong path: revoked session -> 401 authenticated=false
  - Registration: role is always `user`, duplicates rejected, feature flag
  - Rate limiting on the credential endpoints
  - Passwords over the 72-byte bcrypt limit are a 422, never a 500
"""

from __future__ import annotations

from api.limiter import limiter
from auth.models import Role, UserStatus
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, USER_EMAIL, AppHarness, bearer, cookie, make_settings, seed_user


def _auth_cookie(resp) -> str:
    return next(h for h in resp.headers.get_list("set-cookie") if h.startswith("auth_token="))


class TestLogin:
    def test_login_returns_token_and_user(self, api_client: AppHarness, login) -> None:
        resp = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD)
        assert resp.status_code == 200
        data = resp.json()
        assert data["token"]
        assert data["user"]["email"] == ADMIN_EMAIL
        assert data["user"]["role"] == "super_admin"
        assert data["user"]["fullName"]
        assert "hashedPassword" not in data["user"]
        assert resp.headers.get("cache-control") == "no-store"

    def test_login_persists_session(self, api_client: AppHarness, login) -> None:
        token = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD).json()["token"]
        assert api_client.session_store.is_live(api_client.admin.id, token)

    def test_login_email_case_insensitive(self, api_client: AppHarness, login) -> None:
        resp = login(api_client.client, ADMIN_EMAIL.upper(), ADMIN_PASSWORD)
        assert resp.status_code == 200

    def test_default_lifetime_one_day(self, api_client: AppHarness, login) -> None:
        resp = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD)
        header = _auth_cookie(resp).lower()
        assert "max-age=86400" in header
        assert "httponly" in header
        assert "samesite=strict" in header
        claims = api_client.codec.verify(resp.json()["token"])
        assert (claims.expires_at - claims.issued_at).total_seconds() == 86400

    def test_remember_me_lifetime_thirty_days(self, api_client: AppHarness, login) -> None:
        resp = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD, remember_me=True)
        assert "max-age=2592000" in _auth_cookie(resp).lower()
        claims = api_client.codec.verify(resp.json()["token"])
        assert (claims.expires_at - claims.issued_at).total_seconds() == 30 * 86400

    def test_login_records_bookkeeping(self, api_client: AppHarness, login) -> None:
        before = api_client.user_store.get_by_id(api_client.admin.id).login_count
        login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD)
        after = api_client.user_store.get_by_id(api_client.admin.id)
        assert after.login_count == before + 1
        assert after.last_login_at is not None

    def test_wrong_password(self, api_client: AppHarness, login) -> None:
        live_before = api_client.session_store.count_live(api_client.admin.id)
        resp = login(api_client.client, ADMIN_EMAIL, "wrong-password")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credentials"
        assert not resp.headers.get_list("set-cookie")
        assert api_client.session_store.count_live(api_client.admin.id) == live_before

    def test_unknown_email_indistinguishable(self, api_client: AppHarness, login) -> None:
        wrong_pw = login(api_client.client, ADMIN_EMAIL, "wrong-password")
        unknown = login(api_client.client, "ghost@barcomp.id", "wrong-password")
        assert unknown.status_code == wrong_pw.status_code == 401
        assert unknown.json() == wrong_pw.json()

    def test_disabled_account_cannot_log_in(self, api_client: AppHarness, login) -> None:
        seed_user(api_client.user_store, "disabled@barcomp.id", "disabledpass1", Role.USER, status=UserStatus.DISABLED)
        resp = login(api_client.client, "disabled@barcomp.id", "disabledpass1")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credentials"

    def test_missing_fields_is_validation_error(self, api_client: AppHarness) -> None:
        resp = api_client.client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestLogoutAndMe:
    def test_me_with_live_session(self, api_client: AppHarness, login) -> None:
        token = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD).json()["token"]
        resp = api_client.client.get("/api/v1/auth/me", headers=bearer(token))
        assert resp.status_code == 200
        assert resp.json()["authenticated"] is True
        assert resp.json()["user"]["email"] == ADMIN_EMAIL

    def test_me_accepts_cookie(self, api_client: AppHarness, login) -> None:
        token = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD).json()["token"]
        resp = api_client.client.get("/api/v1/auth/me", headers=cookie(token))
        assert resp.json()["authenticated"] is True

    def test_me_without_token(self, api_client: AppHarness) -> None:
        resp = api_client.client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json() == {"authenticated": False}

    def test_logout_revokes_session(self, api_client: AppHarness, login) -> None:
        token = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD).json()["token"]
        resp = api_client.client.post("/api/v1/auth/logout", headers=bearer(token))
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert "max-age=0" in _auth_cookie(resp).lower()

        # Signature still fine, session gone: strong path refuses it.
        assert api_client.codec.verify(token).user_id == api_client.admin.id
        me = api_client.client.get("/api/v1/auth/me", headers=bearer(token))
        assert me.status_code == 401
        assert me.json() == {"authenticated": False}

    def test_logout_only_ends_that_session(self, api_client: AppHarness, login) -> None:
        first = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD).json()["token"]
        second = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD, remember_me=True).json()["token"]
        api_client.client.post("/api/v1/auth/logout", headers=bearer(first))
        assert api_client.client.get("/api/v1/auth/me", headers=bearer(second)).status_code == 200

    def test_logout_is_idempotent(self, api_client: AppHarness, login) -> None:
        token = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD).json()["token"]
        assert api_client.client.post("/api/v1/auth/logout", headers=bearer(token)).status_code == 200
        assert api_client.client.post("/api/v1/auth/logout", headers=bearer(token)).status_code == 200

    def test_logout_without_token(self, api_client: AppHarness) -> None:
        assert api_client.client.post("/api/v1/auth/logout").status_code == 200

    def test_logout_with_garbage_token(self, api_client: AppHarness) -> None:
        assert api_client.client.post("/api/v1/auth/logout", headers=bearer("garbage")).status_code == 200


class TestRegister:
    def test_register_creates_user_role(self, api_client: AppHarness, login) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"email": "New.Person@Barcomp.id", "password": "newperson123", "fullName": "New Person"},
        )
        assert resp.status_code == 201
        created = api_client.user_store.get_by_email("new.person@barcomp.id")
        assert created is not None
        assert created.role == Role.USER
        assert login(api_client.client, "new.person@barcomp.id", "newperson123").status_code == 200

    def test_register_ignores_role_in_body(self, api_client: AppHarness) -> None:
        api_client.client.post(
            "/api/v1/auth/register",
            json={"email": "sneaky@barcomp.id", "password": "sneaky12345", "fullName": "Sneaky", "role": "super_admin"},
        )
        assert api_client.user_store.get_by_email("sneaky@barcomp.id").role == Role.USER

    def test_register_duplicate_email(self, api_client: AppHarness) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"email": USER_EMAIL, "password": "another12345", "fullName": "Dup"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "email_taken"

    def test_register_duplicate_username(self, api_client: AppHarness) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"email": "fresh@barcomp.id", "password": "another12345", "fullName": "Dup", "username": "editor"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "username_taken"

    def test_register_short_password(self, api_client: AppHarness) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"email": "short@barcomp.id", "password": "short", "fullName": "Short"},
        )
        assert resp.status_code == 422

    def test_register_disabled(self, api_client: AppHarness, monkeypatch) -> None:
        monkeypatch.setattr(api_client.client.app.state, "settings", make_settings(self_registration_enabled=False))
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"email": "closed@barcomp.id", "password": "closed12345", "fullName": "Closed"},
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "registration_disabled"


class TestRateLimit:
    def test_login_rate_limited(self, api_client: AppHarness, login, monkeypatch) -> None:
        monkeypatch.setattr("api.limiter.get_settings", lambda: make_settings(login_rate_limit="3/minute"))
        limiter.reset()
        statuses = [login(api_client.client, ADMIN_EMAIL, "wrong-password").status_code for _ in range(4)]
        limiter.reset()
        assert statuses[:3] == [401, 401, 401]
        assert statuses[3] == 429


class TestPasswordLength:
    def test_register_rejects_password_over_bcrypt_limit(self, api_client: AppHarness) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"email": "longpw@barcomp.id", "password": "a" * 100, "fullName": "Long Password"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
        assert api_client.user_store.get_by_email("longpw@barcomp.id") is None

    def test_limit_counts_utf8_bytes(self, api_client: AppHarness) -> None:
        """40 characters, 80 bytes."""
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"email": "accents@barcomp.id", "password": "é" * 40, "fullName": "Accents"},
        )
        assert resp.status_code == 422

    def test_password_at_limit_accepted(self, api_client: AppHarness, login) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"email": "exact@barcomp.id", "password": "b" * 72, "fullName": "Exact"},
        )
        assert resp.status_code == 201
        assert login(api_client.client, "exact@barcomp.id", "b" * 72).status_code == 200

    def test_long_login_attempt_is_plain_failure(self, api_client: AppHarness, login) -> None:
        resp = login(api_client.client, ADMIN_EMAIL, "c" * 100)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credentials"
