from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from app.api.deps import request_identity as request_identity_module
from app.core.config import settings
from app.core.security.jwt_verifier import AuthTokenValidationError
from app.schemas.request_identity import RequestIdentity

SECRET = "order-center-test-secret-0123456789abcdef"


class _FakeVerifier:
    def verify(self, token: str):
        if token == "ok-token":
            return {"sub": "7", "role_id": 1, "email": "JWT@Example.com", "exp": 9999999999}
        if token == "ok-token-user-id":
            return {"sub": "auth|abc", "user_id": "11", "role_id": "3", "exp": 9999999999}
        if token == "ok-token-no-id":
            return {"sub": "auth|abc", "exp": 9999999999}
        raise AuthTokenValidationError("Invalid access token: bad token")


def _build_app() -> FastAPI:
    app = FastAPI()

    @app.get("/whoami")
    def whoami(identity: RequestIdentity = Depends(request_identity_module.get_request_identity)):
        return {
            "user_id": identity.user_id,
            "role_id": identity.role_id,
            "email": identity.email,
            "source": identity.auth_source,
            "sub": identity.subject,
            "admin": identity.is_admin,
        }

    return app


def test_legacy_header_mode_reads_identity_headers(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_MODE", "legacy_header")
    app = _build_app()
    with TestClient(app) as client:
        r = client.get(
            "/whoami",
            headers={"X-User-Id": "5", "X-Role-Id": "1", "X-User-Email": "Legacy@Example.com"},
        )
        assert r.status_code == 200
        payload = r.json()
        assert payload["user_id"] == 5
        assert payload["admin"] is True
        assert payload["email"] == "legacy@example.com"
        assert payload["source"] == "legacy_header"


def test_legacy_header_mode_ignores_bearer_token(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_MODE", "legacy_header")
    monkeypatch.setattr(request_identity_module, "_get_verifier", lambda: _FakeVerifier())
    app = _build_app()
    with TestClient(app) as client:
        r = client.get(
            "/whoami",
            headers={"Authorization": "Bearer ok-token", "X-User-Id": "5", "X-Role-Id": "2"},
        )
        assert r.status_code == 200
        payload = r.json()
        assert payload["user_id"] == 5
        assert payload["admin"] is False
        assert payload["source"] == "legacy_header"


def test_legacy_header_mode_tolerates_garbage_ids(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_MODE", "legacy_header")
    app = _build_app()
    with TestClient(app) as client:
        r = client.get("/whoami", headers={"X-User-Id": "abc", "X-Role-Id": ""})
        assert r.status_code == 200
        assert r.json()["user_id"] is None
        assert r.json()["role_id"] is None


def test_jwt_only_mode_requires_bearer(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_MODE", "jwt_only")
    app = _build_app()
    with TestClient(app) as client:
        r = client.get("/whoami", headers={"X-User-Id": "5"})
        assert r.status_code == 401
        assert r.json()["detail"] == "Missing Bearer access token."


def test_jwt_only_mode_rejects_invalid_token(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_MODE", "jwt_only")
    monkeypatch.setattr(request_identity_module, "_get_verifier", lambda: _FakeVerifier())
    app = _build_app()
    with TestClient(app) as client:
        r = client.get("/whoami", headers={"Authorization": "Bearer nope"})
        assert r.status_code == 401
        assert r.json()["detail"].startswith("Invalid access token")


def test_dual_mode_prefers_bearer(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_MODE", "dual")
    monkeypatch.setattr(request_identity_module, "_get_verifier", lambda: _FakeVerifier())
    app = _build_app()
    with TestClient(app) as client:
        r = client.get(
            "/whoami",
            headers={"Authorization": "Bearer ok-token", "X-User-Id": "5", "X-Role-Id": "2"},
        )
        assert r.status_code == 200
        payload = r.json()
        assert payload["user_id"] == 7
        assert payload["admin"] is True
        assert payload["email"] == "jwt@example.com"
        assert payload["source"] == "jwt"


def test_dual_mode_falls_back_to_headers(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_MODE", "dual")
    app = _build_app()
    with TestClient(app) as client:
        r = client.get("/whoami", headers={"X-User-Id": "5"})
        assert r.status_code == 200
        assert r.json()["source"] == "legacy_header"


def test_user_id_claim_wins_over_subject(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_MODE", "jwt_only")
    monkeypatch.setattr(request_identity_module, "_get_verifier", lambda: _FakeVerifier())
    app = _build_app()
    with TestClient(app) as client:
        r = client.get("/whoami", headers={"Authorization": "Bearer ok-token-user-id"})
        assert r.json()["user_id"] == 11
        assert r.json()["role_id"] == 3
        assert r.json()["sub"] == "auth|abc"

        anonymous = client.get("/whoami", headers={"Authorization": "Bearer ok-token-no-id"})
        assert anonymous.status_code == 200
        assert anonymous.json()["user_id"] is None


def test_real_hs256_token_round_trip(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_MODE", "jwt_only")
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", SECRET)
    monkeypatch.setattr(settings, "AUTH_JWT_ALGORITHMS", "HS256")
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": "9", "role_id": 2, "exp": int((now + timedelta(minutes=5)).timestamp())},
        key=SECRET,
        algorithm="HS256",
    )
    expired = jwt.encode(
        {"sub": "9", "exp": int((now - timedelta(minutes=5)).timestamp())},
        key=SECRET,
        algorithm="HS256",
    )
    app = _build_app()
    with TestClient(app) as client:
        ok = client.get("/whoami", headers={"Authorization": f"Bearer {token}"})
        assert ok.status_code == 200
        assert ok.json()["user_id"] == 9

        stale = client.get("/whoami", headers={"Authorization": f"Bearer {expired}"})
        assert stale.status_code == 401
        assert stale.json()["detail"] == "Access token expired."
