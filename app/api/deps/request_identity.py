from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from app.core.config import settings
from app.core.security.jwt_verifier import AuthTokenValidationError, JWTVerifier
from app.schemas.request_identity import RequestIdentity

logger = logging.getLogger(__name__)


def _normalized_auth_mode() -> str:
    raw = (settings.AUTH_MODE or "legacy_header").strip().lower()
    if raw in {"legacy_header", "dual", "jwt_only"}:
        return raw
    return "legacy_header"


def _get_verifier() -> JWTVerifier:
    algorithms = [
        token.strip().upper()
        for token in (settings.AUTH_JWT_ALGORITHMS or "HS256").split(",")
        if token.strip()
    ]
    return JWTVerifier(
        secret=settings.AUTH_JWT_SECRET,
        algorithms=algorithms or ["HS256"],
        leeway_sec=settings.AUTH_JWT_CLOCK_SKEW_SEC,
    )


def _optional_int(value) -> int | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def _extract_bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization") or ""
    prefix = "Bearer "
    if not header.startswith(prefix):
        return None
    token = header[len(prefix) :].strip()
    return token or None


def _identity_from_legacy_header(request: Request) -> RequestIdentity:
    email = (request.headers.get("X-User-Email") or "").strip().lower()
    return RequestIdentity(
        subject=None,
        user_id=_optional_int(request.headers.get("X-User-Id")),
        role_id=_optional_int(request.headers.get("X-Role-Id")),
        email=email or None,
        auth_source="legacy_header",
        claims={},
    )


def _identity_from_token(token: str) -> RequestIdentity:
    try:
        claims = _get_verifier().verify(token)
    except AuthTokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    subject = claims.get("sub")
    subject_text = str(subject).strip() if subject is not None else None
    user_id = _optional_int(claims.get("user_id"))
    if user_id is None:
        user_id = _optional_int(subject_text)
    if user_id is None:
        logger.warning(
            "jwt_identity_user_id_missing subject=%s claim_keys=%s",
            subject_text or "-",
            sorted(str(k) for k in claims.keys()),
        )
    email = str(claims.get("email") or "").strip().lower()
    return RequestIdentity(
        subject=subject_text or None,
        user_id=user_id,
        role_id=_optional_int(claims.get("role_id")),
        email=email or None,
        auth_source="jwt",
        claims=claims,
    )


def resolve_request_identity(request: Request) -> RequestIdentity:
    token = _extract_bearer_token(request)
    mode = _normalized_auth_mode()
    if mode == "legacy_header":
        return _identity_from_legacy_header(request)

    if mode == "jwt_only":
        if not token:
            raise HTTPException(status_code=401, detail="Missing Bearer access token.")
        return _identity_from_token(token)

    # dual mode: prefer JWT when present, otherwise fallback to legacy header.
    if token:
        return _identity_from_token(token)
    return _identity_from_legacy_header(request)


def get_request_identity(request: Request) -> RequestIdentity:
    return resolve_request_identity(request)
