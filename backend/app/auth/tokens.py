"""Signed, time-limited identity tokens (HS256 JWT).

Tokens embed the user id in ``sub`` and expire after a fixed window
(seven days by default). There is no refresh: an expired token forces a new
login. Verification is pure and never touches the store.
"""
from __future__ import annotations

import time
from typing import Any, Dict

import jwt

from app.config import AuthSettings
from app.errors import AuthError


class TokenService:
    """Issues and verifies identity tokens with the application secret."""

    def __init__(self, secret_key: str, settings: AuthSettings) -> None:
        self._secret_key = secret_key
        self._algorithm = settings.algorithm
        self._issuer = settings.issuer
        self._ttl_seconds = settings.token_expire_days * 24 * 60 * 60

    def issue_token(self, user_id: str) -> str:
        now = int(time.time())
        payload: Dict[str, Any] = {
            "sub": user_id,
            "iss": self._issuer,
            "iat": now,
            "exp": now + self._ttl_seconds,
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify_token(self, token: str) -> str:
        """Return the user id embedded in ``token``.

        Raises:
            AuthError: If the token is expired, malformed, or carries no subject.
        """
        if not token:
            raise AuthError("No token provided")
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthError("Token has expired. Please login again") from None
        except jwt.InvalidTokenError:
            raise AuthError("Token is invalid") from None
        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise AuthError("Token is invalid")
        return user_id
