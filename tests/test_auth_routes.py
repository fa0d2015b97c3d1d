"""
tests/test_auth_routes.py -- Integration tests for the /auth routes and the HTTP envelope.

These tests exercise the full stack: middleware -> FastAPI routing -> auth
dependency -> UserStore / RedisCache -> response model serialization.

Coverage:
  - Register: 201 envelope with user + token pair, normalization, 409 on duplicates,
    400 VALIDATION_ERROR with per-field details
  - Login: 200 with tokens for valid credentials, identical 401 for wrong
    password and unknown email
  - Refresh: new pair for a refresh token; access tokens and garbage rejected
  - Me: 200 with Bearer token, 401 UNAUTHORIZED / INVALID_TOKEN, 404 for a
    vanished user, cache hit served without the store, cache miss populates SETEX
  - Cross-cutting: Cache-Control no-store on token responses, security headers,
    error envelope for unknown routes, CORS preflight, gzip
  - Rate limits: login and register return 429 RATE_LIMITED with Retry-After
    once the configured per-client budget is spent
  - Unexpected errors: 500 INTERNAL_SERVER_ERROR, generic message outside debug

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- user "testuser@example.com" / "testpass123"
  - redis_mock: MagicMock redis client with call history cleared
  - register:   helper that registers a fresh user and returns the response data
"""

from __future__ import annotations

import json
import time
import uuid

import redis
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.testclient import TestClient
from jose import jwt

from auth.tokens import create_access_token, create_refresh_token, decode_access_token
from core.config import get_settings

TEST_PASSWORD = "testpass123"


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestRegister:
    def test_register_returns_envelope(self, api_client: tuple[TestClient, str, str]) -> None:
        """POST /auth/register returns 201 with {success, data: {user, accessToken, refreshToken}}."""
        client, _token, _uid = api_client
        resp = client.post(
            "/auth/register",
            json={"email": "new-user@example.com", "username": "newuser", "password": "password123"},
        )
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        body = resp.json()
        assert body["success"] is True
        data = body["data"]
        assert data["accessToken"]
        assert data["refreshToken"]
        user = data["user"]
        assert user["email"] == "new-user@example.com"
        assert user["username"] == "newuser"
        assert user["emailVerified"] is False
        assert user["profile"]["preferredUnits"] == "metric"
        assert user["profile"]["currentWeight"] is None
        assert "password" not in user
        assert "passwordHash" not in user

    def test_register_token_names_new_user(self, api_client, register) -> None:
        data = register()
        payload = decode_access_token(data["accessToken"])
        assert payload is not None
        assert payload["sub"] == data["user"]["id"]

    def test_register_normalizes_email_and_username(self, api_client, register) -> None:
        suffix = uuid.uuid4().hex[:6]
        data = register(email=f"  Mixed-{suffix}@Example.COM ", username=f"  mixed_{suffix}  ")
        assert data["user"]["email"] == f"mixed-{suffix}@example.com"
        assert data["user"]["username"] == f"mixed_{suffix}"

    def test_register_sets_no_store(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/auth/register",
            json={"email": "nostore@example.com", "username": "nostore", "password": "password123"},
        )
        assert resp.status_code == 201
        assert resp.headers["cache-control"] == "no-store"

    def test_register_duplicate_email_409(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/auth/register",
            json={"email": "testuser@example.com", "username": "someone_else", "password": "password123"},
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "USER_EXISTS"
        assert client.app.state.user_store.get_by_username("someone_else") is None

    def test_register_duplicate_username_409(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/auth/register",
            json={"email": "fresh-address@example.com", "username": "testuser", "password": "password123"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "USER_EXISTS"
        assert client.app.state.user_store.get_by_email("fresh-address@example.com") is None

    def test_register_validation_error_details(self, api_client) -> None:
        """Invalid fields produce 400 VALIDATION_ERROR with one entry per field."""
        client, _token, _uid = api_client
        resp = client.post(
            "/auth/register",
            json={"email": "not-an-email", "username": "ab", "password": "short"},
        )
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        fields = {d["field"] for d in error["details"]}
        assert fields == {"email", "username", "password"}
        assert all(d["message"] for d in error["details"])

    def test_register_missing_body_field(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/auth/register", json={"email": "x@example.com", "username": "xuser"})
        assert resp.status_code == 400
        assert [d["field"] for d in resp.json()["error"]["details"]] == ["password"]

    def test_register_password_over_72_bytes(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/auth/register",
            json={"email": "long@example.com", "username": "longpw", "password": "p" * 73},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


class TestLogin:
    def test_login_success(self, api_client) -> None:
        client, _token, uid = api_client
        resp = client.post("/auth/login", json={"email": "testuser@example.com", "password": TEST_PASSWORD})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()["data"]
        assert data["user"]["id"] == uid
        assert decode_access_token(data["accessToken"])["sub"] == uid
        assert resp.headers["cache-control"] == "no-store"

    def test_login_email_is_case_insensitive(self, api_client) -> None:
        client, _token, uid = api_client
        resp = client.post("/auth/login", json={"email": "TestUser@Example.com", "password": TEST_PASSWORD})
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["id"] == uid

    def test_login_wrong_password_401(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/auth/login", json={"email": "testuser@example.com", "password": "wrongpass"})
        assert resp.status_code == 401
        assert resp.json() == {
            "success": False,
            "error": {"code": "INVALID_CREDENTIALS", "message": "Invalid email or password"},
        }

    def test_login_unknown_email_same_error(self, api_client) -> None:
        """Unknown email and wrong password are indistinguishable to the client."""
        client, _token, _uid = api_client
        wrong_pw = client.post("/auth/login", json={"email": "testuser@example.com", "password": "wrongpass"})
        unknown = client.post("/auth/login", json={"email": "ghost@example.com", "password": "wrongpass"})
        assert unknown.status_code == wrong_pw.status_code == 401
        assert unknown.json() == wrong_pw.json()

    def test_login_missing_password_400(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/auth/login", json={"email": "testuser@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


class TestRefresh:
    def test_refresh_issues_new_pair(self, api_client) -> None:
        client, _token, uid = api_client
        resp = client.post("/auth/refresh", json={"refreshToken": create_refresh_token(uid)})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()["data"]
        assert data["user"]["id"] == uid
        assert decode_access_token(data["accessToken"])["sub"] == uid
        assert data["refreshToken"]

    def test_refresh_rejects_access_token(self, api_client) -> None:
        client, token, _uid = api_client
        resp = client.post("/auth/refresh", json={"refreshToken": token})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_TOKEN"

    def test_refresh_rejects_garbage(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/auth/refresh", json={"refreshToken": "garbage"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_TOKEN"

    def test_refresh_unknown_user(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/auth/refresh", json={"refreshToken": create_refresh_token(str(uuid.uuid4()))})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_TOKEN"

    def test_refresh_missing_token_400(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/auth/refresh", json={})
        assert resp.status_code == 400


class TestMe:
    def test_me_returns_current_user(self, api_client, redis_mock) -> None:
        client, token, uid = api_client
        resp = client.get("/auth/me", headers=_bearer(token))
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["user"]["id"] == uid
        assert body["data"]["user"]["email"] == "testuser@example.com"

    def test_me_cache_miss_populates_cache(self, api_client, redis_mock) -> None:
        client, token, uid = api_client
        client.get("/auth/me", headers=_bearer(token))
        redis_mock.get.assert_called_once_with(f"user:{uid}")
        redis_mock.setex.assert_called_once()
        key, ttl, value = redis_mock.setex.call_args.args
        assert key == f"user:{uid}"
        assert ttl == 300
        assert json.loads(value)["id"] == uid

    def test_me_cache_hit_skips_store(self, api_client, redis_mock, monkeypatch) -> None:
        client, token, uid = api_client
        cached = {"id": uid, "email": "cached@example.com", "username": "cached", "createdAt": "2024-01-01"}
        monkeypatch.setattr(redis_mock.get, "return_value", json.dumps(cached))
        store = client.app.state.user_store
        def _no_store(_uid):
            raise AssertionError("store must not be queried on a cache hit")

        monkeypatch.setattr(store, "get_by_id", _no_store)

        resp = client.get("/auth/me", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["email"] == "cached@example.com"
        redis_mock.setex.assert_not_called()

    def test_me_survives_redis_outage(self, api_client, redis_mock, monkeypatch) -> None:
        client, token, uid = api_client
        monkeypatch.setattr(redis_mock.get, "side_effect", redis.ConnectionError("down"))
        resp = client.get("/auth/me", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["id"] == uid

    def test_me_without_header_401(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHORIZED"
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_me_non_bearer_scheme_401(self, api_client) -> None:
        client, token, _uid = api_client
        resp = client.get("/auth/me", headers={"Authorization": f"Basic {token}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHORIZED"

    def test_me_tampered_token_401(self, api_client) -> None:
        client, token, _uid = api_client
        resp = client.get("/auth/me", headers=_bearer(token[:-4] + "abcd"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_TOKEN"

    def test_me_expired_token_401(self, api_client) -> None:
        client, _token, uid = api_client
        expired = jwt.encode({"sub": uid, "exp": int(time.time()) - 10}, get_settings().jwt_secret, algorithm="HS256")
        resp = client.get("/auth/me", headers=_bearer(expired))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_TOKEN"

    def test_me_rejects_refresh_token(self, api_client) -> None:
        client, _token, uid = api_client
        resp = client.get("/auth/me", headers=_bearer(create_refresh_token(uid)))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_TOKEN"

    def test_me_unknown_user_404(self, api_client, redis_mock) -> None:
        client, _token, _uid = api_client
        resp = client.get("/auth/me", headers=_bearer(create_access_token(str(uuid.uuid4()))))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "USER_NOT_FOUND"


class TestHttpLayer:
    def test_unknown_route_uses_error_envelope(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/no/such/route")
        assert resp.status_code == 404
        assert resp.json() == {
            "success": False,
            "error": {"code": "NOT_FOUND", "message": "The requested resource was not found"},
        }

    def test_method_not_allowed_envelope(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.delete("/auth/me")
        assert resp.status_code == 405
        assert resp.json()["error"]["code"] == "METHOD_NOT_ALLOWED"

    def test_security_headers_present(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/health")
        assert resp.headers["x-content-type-options"] == "nosniff"
        assert resp.headers["x-frame-options"] == "DENY"
        assert resp.headers["referrer-policy"] == "no-referrer"

    def test_cors_preflight_allows_configured_origin(self, api_client) -> None:
        client, _token, _uid = api_client
        origin = get_settings().cors_origin
        resp = client.options(
            "/auth/login",
            headers={"Origin": origin, "Access-Control-Request-Method": "POST"},
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == origin
        assert resp.headers["access-control-allow-credentials"] == "true"

    def test_large_responses_are_gzipped(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/openapi.json", headers={"Accept-Encoding": "gzip"})
        assert resp.status_code == 200
        assert resp.headers.get("content-encoding") == "gzip"

    def test_small_responses_are_not_gzipped(self, api_client) -> None:
        """Bodies under 1024 bytes go out uncompressed."""
        client, _token, _uid = api_client
        resp = client.get("/health", headers={"Accept-Encoding": "gzip"})
        assert len(resp.content) < 1024
        assert "content-encoding" not in resp.headers

    def test_gzip_threshold_is_one_kibibyte(self, api_client) -> None:
        client, _token, _uid = api_client
        gzip = next(m for m in client.app.user_middleware if m.cls is GZipMiddleware)
        assert gzip.kwargs["minimum_size"] == 1024


def _budget(limit: str) -> int:
    """Request count allowed by a slowapi limit string such as "20/minute"."""
    return int(limit.split("/")[0])


class TestRateLimit:
    """Counters start empty in every test (reset_rate_limits in conftest.py)."""

    def test_login_limited_after_budget(self, api_client) -> None:
        client, _token, _uid = api_client
        body = {"email": "testuser@example.com", "password": "wrongpass"}
        for _ in range(_budget(get_settings().login_rate_limit)):
            assert client.post("/auth/login", json=body).status_code == 401

        resp = client.post("/auth/login", json=body)
        assert resp.status_code == 429
        error = resp.json()["error"]
        assert resp.json()["success"] is False
        assert error["code"] == "RATE_LIMITED"
        assert 1 <= int(resp.headers["retry-after"]) <= 60

    def test_limited_login_rejects_valid_credentials(self, api_client) -> None:
        """Once the budget is spent even a correct password is refused."""
        client, _token, _uid = api_client
        body = {"email": "testuser@example.com", "password": TEST_PASSWORD}
        for _ in range(_budget(get_settings().login_rate_limit)):
            assert client.post("/auth/login", json=body).status_code == 200
        assert client.post("/auth/login", json=body).status_code == 429

    def test_register_limited_after_budget(self, api_client) -> None:
        client, _token, _uid = api_client
        body = {"email": "testuser@example.com", "username": "testuser", "password": "password123"}
        for _ in range(_budget(get_settings().register_rate_limit)):
            assert client.post("/auth/register", json=body).status_code == 409

        resp = client.post("/auth/register", json=body)
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "RATE_LIMITED"
        assert "retry-after" in resp.headers

    def test_refresh_is_not_limited(self, api_client) -> None:
        client, _token, _uid = api_client
        for _ in range(_budget(get_settings().login_rate_limit) + 1):
            assert client.post("/auth/refresh", json={"refreshToken": "garbage"}).status_code == 401


class TestServerError:
    @staticmethod
    def _failing_client(api_client, monkeypatch) -> TestClient:
        client, _token, _uid = api_client

        def _explode(_email):
            raise RuntimeError("store exploded")

        monkeypatch.setattr(client.app.state.user_store, "get_by_email", _explode)
        # Shares app.state with the module client; no lifespan needed.
        return TestClient(client.app, raise_server_exceptions=False)

    def test_unexpected_error_envelope(self, api_client, monkeypatch) -> None:
        failing = self._failing_client(api_client, monkeypatch)
        monkeypatch.setattr(get_settings(), "debug", False)
        resp = failing.post("/auth/login", json={"email": "testuser@example.com", "password": TEST_PASSWORD})
        assert resp.status_code == 500
        assert resp.json() == {
            "success": False,
            "error": {"code": "INTERNAL_SERVER_ERROR", "message": "An error occurred"},
        }

    def test_debug_exposes_exception_text(self, api_client, monkeypatch) -> None:
        failing = self._failing_client(api_client, monkeypatch)
        monkeypatch.setattr(get_settings(), "debug", True)
        resp = failing.post("/auth/login", json={"email": "testuser@example.com", "password": TEST_PASSWORD})
        assert resp.status_code == 500
        assert resp.json()["error"]["message"] == "store exploded"
