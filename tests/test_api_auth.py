"""
tests/test_api_auth.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> request model
validation -> SessionEngine -> stores -> response serialization and the
ServiceError handler. Codes are read back from the RecordingNotifier the
engine was built with.

Coverage:
  - register / verify-email / resend-verification, including 409 and 422 envelopes
  - password login: tokens in body, refresh cookie, no-store, remaining attempts, lockout
  - me / password change with Bearer auth; 401 without or with a bad token
  - refresh and logout with body or cookie
  - code login and password reset end to end
  - delivery failure surfaces as a generic 500
  - per-IP rate limit on login
  - router 404/405 responses in the same error envelope

Fixtures used (from conftest.py):
  - api_client: (client, notifier, engine) -- module-scoped, rate limiting off
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from api.limiter import limiter
from auth.models import CodePurpose
from tests.conftest import PASSWORD, RecordingNotifier

NEW_PASSWORD = "Xyz98765?"
BASE = "/api/v1/auth"


def _register_verified(client: TestClient, notifier: RecordingNotifier, email: str) -> None:
    assert client.post(f"{BASE}/register", json={"email": email, "password": PASSWORD}).status_code == 201
    code = notifier.last_code(CodePurpose.VERIFY_EMAIL, email)
    assert client.post(f"{BASE}/verify-email", json={"email": email, "code": code}).status_code == 200


def _login(client: TestClient, email: str, password: str = PASSWORD):
    return client.post(f"{BASE}/login", json={"email": email, "password": password})


class TestRegister:
    """POST /register and the verification endpoints."""

    def test_register_returns_201_with_public_user(self, api_client) -> None:
        client, notifier, _ = api_client
        resp = client.post(
            f"{BASE}/register",
            json={"email": "Reg@Example.com", "password": PASSWORD, "first_name": "Ada", "last_name": "O'Neil"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["user"]["email"] == "reg@example.com"
        assert data["user"]["is_verified"] is False
        assert "hashed_password" not in data["user"]
        assert notifier.last_code(CodePurpose.VERIFY_EMAIL, "reg@example.com")

    def test_duplicate_email_is_409(self, api_client) -> None:
        client, _, _ = api_client
        client.post(f"{BASE}/register", json={"email": "dup@example.com", "password": PASSWORD})
        resp = client.post(f"{BASE}/register", json={"email": "dup@example.com", "password": PASSWORD})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "email_taken"

    def test_weak_password_is_422(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post(f"{BASE}/register", json={"email": "weak@example.com", "password": "password"})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert "password" in error["detail"]

    def test_bad_email_and_name_are_422(self, api_client) -> None:
        client, _, _ = api_client
        assert client.post(f"{BASE}/register", json={"email": "nope", "password": PASSWORD}).status_code == 422
        resp = client.post(
            f"{BASE}/register", json={"email": "name@example.com", "password": PASSWORD, "first_name": "R2D2"}
        )
        assert resp.status_code == 422

    def test_verify_email_wrong_code_is_401(self, api_client) -> None:
        client, _, _ = api_client
        client.post(f"{BASE}/register", json={"email": "wrong@example.com", "password": PASSWORD})
        resp = client.post(f"{BASE}/verify-email", json={"email": "wrong@example.com", "code": "000000"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_code"

    def test_malformed_code_is_422(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post(f"{BASE}/verify-email", json={"email": "wrong@example.com", "code": "12ab56"})
        assert resp.status_code == 422

    def test_resend_verification(self, api_client) -> None:
        client, notifier, _ = api_client
        client.post(f"{BASE}/register", json={"email": "again@example.com", "password": PASSWORD})
        first = notifier.last_code(CodePurpose.VERIFY_EMAIL, "again@example.com")

        resp = client.post(f"{BASE}/resend-verification", json={"email": "again@example.com"})

        assert resp.status_code == 200
        second = notifier.last_code(CodePurpose.VERIFY_EMAIL, "again@example.com")
        stale = client.post(f"{BASE}/verify-email", json={"email": "again@example.com", "code": first})
        if first != second:
            assert stale.status_code == 401
        fresh = client.post(f"{BASE}/verify-email", json={"email": "again@example.com", "code": second})
        assert fresh.status_code == 200

    def test_delivery_failure_is_generic_500(self, api_client) -> None:
        client, notifier, _ = api_client
        notifier.fail = True
        try:
            resp = client.post(f"{BASE}/register", json={"email": "nomail@example.com", "password": PASSWORD})
        finally:
            notifier.fail = False
        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "delivery_failed"
        assert error["detail"] is None


class TestLogin:
    """POST /login, /me, and the lockout policy over HTTP."""

    def test_login_returns_tokens_and_sets_cookie(self, api_client) -> None:
        client, notifier, _ = api_client
        _register_verified(client, notifier, "login@example.com")

        resp = _login(client, "login@example.com")

        assert resp.status_code == 200
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"] and data["refresh_token"]
        assert data["user"]["is_verified"] is True
        assert resp.headers["Cache-Control"] == "no-store"
        cookie = resp.headers["set-cookie"]
        assert cookie.startswith("refresh_token=")
        assert "HttpOnly" in cookie
        assert "Path=/api/v1/auth" in cookie

    def test_wrong_password_reports_remaining_attempts(self, api_client) -> None:
        client, notifier, _ = api_client
        _register_verified(client, notifier, "wrongpw@example.com")

        resp = _login(client, "wrongpw@example.com", "Bad12345!")

        assert resp.status_code == 401
        error = resp.json()["error"]
        assert error["code"] == "bad_credentials"
        assert error["message"] == "Invalid credentials. 4 attempt(s) remaining."
        assert error["detail"] == {"remaining_attempts": 4}

    def test_unknown_email_is_401(self, api_client) -> None:
        client, _, _ = api_client
        resp = _login(client, "nobody@example.com")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_unverified_login_is_403(self, api_client) -> None:
        client, _, _ = api_client
        client.post(f"{BASE}/register", json={"email": "unverified@example.com", "password": PASSWORD})
        resp = _login(client, "unverified@example.com")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "email_not_verified"

    def test_lockout_after_five_failures(self, api_client) -> None:
        client, notifier, _ = api_client
        _register_verified(client, notifier, "locked@example.com")

        statuses = [_login(client, "locked@example.com", "Bad12345!").status_code for _ in range(5)]
        assert statuses == [401, 401, 401, 401, 403]

        resp = _login(client, "locked@example.com")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "account_locked"

    def test_me_requires_bearer_token(self, api_client) -> None:
        client, notifier, _ = api_client
        _register_verified(client, notifier, "me@example.com")
        token = _login(client, "me@example.com").json()["access_token"]

        resp = client.get(f"{BASE}/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["email"] == "me@example.com"
        assert resp.json()["is_active"] is True
        assert resp.json()["last_login"] is not None

        missing = client.get(f"{BASE}/me")
        assert missing.status_code == 401
        assert missing.json()["error"]["code"] == "missing_token"
        assert missing.headers["WWW-Authenticate"] == "Bearer"

        garbage = client.get(f"{BASE}/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert garbage.status_code == 401
        assert garbage.json()["error"]["code"] == "token_invalid"

    def test_docs_require_authentication(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/docs").status_code == 401


class TestSessionRoutes:
    """POST /refresh and /logout, with body and cookie transport."""

    def test_refresh_with_body(self, api_client) -> None:
        client, notifier, _ = api_client
        _register_verified(client, notifier, "rb@example.com")
        refresh_token = _login(client, "rb@example.com").json()["refresh_token"]

        resp = client.post(f"{BASE}/refresh", json={"refresh_token": refresh_token})

        assert resp.status_code == 200
        new_access = resp.json()["access_token"]
        assert client.get(f"{BASE}/me", headers={"Authorization": f"Bearer {new_access}"}).status_code == 200

    def test_refresh_and_logout_with_cookie(self, api_client) -> None:
        client, notifier, _ = api_client
        client.cookies.clear()
        _register_verified(client, notifier, "rc@example.com")
        refresh_token = _login(client, "rc@example.com").json()["refresh_token"]

        assert client.post(f"{BASE}/refresh").status_code == 200
        assert client.post(f"{BASE}/logout").status_code == 200

        resp = client.post(f"{BASE}/refresh", json={"refresh_token": refresh_token})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "refresh_token_revoked"

    def test_refresh_without_token_is_401(self, api_client) -> None:
        client, _, _ = api_client
        client.cookies.clear()
        resp = client.post(f"{BASE}/refresh")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "missing_token"

    def test_logout_without_token_is_ok(self, api_client) -> None:
        client, _, _ = api_client
        client.cookies.clear()
        resp = client.post(f"{BASE}/logout")
        assert resp.status_code == 200
        assert resp.json()["message"] == "Logout successful"


class TestCodeLoginRoutes:
    def test_code_login_end_to_end(self, api_client) -> None:
        client, notifier, _ = api_client
        _register_verified(client, notifier, "otp@example.com")

        assert client.post(f"{BASE}/login/code/request", json={"email": "otp@example.com"}).status_code == 200
        code = notifier.last_code(CodePurpose.LOGIN, "otp@example.com")
        resp = client.post(f"{BASE}/login/code/verify", json={"email": "otp@example.com", "code": code})

        assert resp.status_code == 200
        assert resp.json()["access_token"]
        replay = client.post(f"{BASE}/login/code/verify", json={"email": "otp@example.com", "code": code})
        assert replay.status_code == 401

    def test_code_request_for_unknown_email_is_404(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post(f"{BASE}/login/code/request", json={"email": "ghost@example.com"})
        assert resp.status_code == 404


class TestPasswordRoutes:
    def test_reset_request_is_identical_for_unknown_email(self, api_client) -> None:
        client, notifier, _ = api_client
        _register_verified(client, notifier, "known@example.com")

        known = client.post(f"{BASE}/password/reset/request", json={"email": "known@example.com"})
        unknown = client.post(f"{BASE}/password/reset/request", json={"email": "unknown@example.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_reset_with_code_revokes_old_sessions(self, api_client) -> None:
        client, notifier, _ = api_client
        _register_verified(client, notifier, "reset@example.com")
        old_refresh = _login(client, "reset@example.com").json()["refresh_token"]
        client.post(f"{BASE}/password/reset/request", json={"email": "reset@example.com"})
        code = notifier.last_code(CodePurpose.PASSWORD_RESET, "reset@example.com")

        resp = client.post(
            f"{BASE}/password/reset/verify",
            json={"email": "reset@example.com", "code": code, "new_password": NEW_PASSWORD},
        )

        assert resp.status_code == 200
        assert client.post(f"{BASE}/refresh", json={"refresh_token": old_refresh}).status_code == 401
        assert _login(client, "reset@example.com", NEW_PASSWORD).status_code == 200

    def test_change_password(self, api_client) -> None:
        client, notifier, _ = api_client
        _register_verified(client, notifier, "change@example.com")
        tokens = _login(client, "change@example.com").json()
        headers = {"Authorization": f"Bearer {tokens['access_token']}"}

        mismatch = client.post(
            f"{BASE}/password/change",
            json={"current_password": PASSWORD, "new_password": NEW_PASSWORD, "confirm_password": "Other123!"},
            headers=headers,
        )
        assert mismatch.status_code == 422

        same = client.post(
            f"{BASE}/password/change",
            json={"current_password": PASSWORD, "new_password": PASSWORD, "confirm_password": PASSWORD},
            headers=headers,
        )
        assert same.status_code == 422

        wrong = client.post(
            f"{BASE}/password/change",
            json={"current_password": "Wrong123!", "new_password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
            headers=headers,
        )
        assert wrong.status_code == 401

        ok = client.post(
            f"{BASE}/password/change",
            json={"current_password": PASSWORD, "new_password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
            headers=headers,
        )
        assert ok.status_code == 200
        assert client.post(f"{BASE}/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401
        assert _login(client, "change@example.com", NEW_PASSWORD).status_code == 200

    def test_change_password_requires_auth(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post(
            f"{BASE}/password/change",
            json={"current_password": PASSWORD, "new_password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
        )
        assert resp.status_code == 401


class TestRateLimit:
    def test_login_is_rate_limited_per_client(self, api_client) -> None:
        client, _, _ = api_client
        limiter.reset()
        limiter.enabled = True
        try:
            statuses = [_login(client, "flood@example.com", "Bad12345!").status_code for _ in range(11)]
            last = _login(client, "flood@example.com", "Bad12345!")
        finally:
            limiter.enabled = False
            limiter.reset()

        assert statuses[:10] == [401] * 10
        assert statuses[10] == 429
        assert last.json()["error"]["code"] == "rate_limited"


class TestErrorEnvelope:
    def test_unknown_route_uses_error_envelope(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/v1/nope")
        assert resp.status_code == 404
        assert resp.json() == {"error": {"code": "http_404", "message": "Not Found", "detail": None}}

    def test_wrong_method_uses_error_envelope(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get(f"{BASE}/login")
        assert resp.status_code == 405
        assert resp.json()["error"]["code"] == "http_405"
