from __future__ import annotations

from typing import Any

import jwt


class AuthTokenValidationError(Exception):
    pass


class JWTVerifier:
    """Verifies bearer tokens signed with the shared auth-service secret."""

    def __init__(self, *, secret: str, algorithms: list[str], leeway_sec: int = 0):
        self.secret = secret
        self.algorithms = algorithms
        self.leeway_sec = leeway_sec

    def verify(self, token: str) -> dict[str, Any]:
        if not self.secret:
            raise AuthTokenValidationError("Bearer authentication is not configured.")
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=self.algorithms,
                leeway=self.leeway_sec,
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise AuthTokenValidationError("Access token expired.") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthTokenValidationError(f"Invalid access token: {exc}") from exc
