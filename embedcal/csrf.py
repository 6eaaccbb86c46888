"""Anti-forgery tokens bound to a per-session secret.

Tokens follow the Flask-WTF scheme: the raw secret lives in the server-side
session and the client receives it signed with the application key through an
itsdangerous ``URLSafeTimedSerializer``.
"""

from __future__ import annotations

import hmac
import secrets
from typing import Optional

from itsdangerous import BadData, URLSafeTimedSerializer

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
TOKEN_HEADERS = ("x-csrf-token", "csrf-token", "x-xsrf-token")
TOKEN_FIELD = "_csrf"


def generate_secret() -> str:
    return secrets.token_urlsafe(18)


class CSRFTokens:
    """Sign and validate anti-forgery tokens for session secrets."""

    def __init__(self, secret_key: str, *, max_age: Optional[int] = None) -> None:
        if not secret_key:
            raise ValueError("A signing key is required")
        self._serializer = URLSafeTimedSerializer(secret_key, salt="embedcal.csrf-token")
        self._max_age = max_age

    def create_token(self, session_secret: str) -> str:
        return self._serializer.dumps(session_secret)

    def verify_token(self, session_secret: Optional[str], token: Optional[str]) -> bool:
        if not session_secret or not token or not isinstance(token, str):
            return False
        try:
            signed = self._serializer.loads(token, max_age=self._max_age)
        except BadData:
            return False
        if not isinstance(signed, str):
            return False
        return hmac.compare_digest(signed.encode("utf-8"), session_secret.encode("utf-8"))


__all__ = [
    "CSRFTokens",
    "SAFE_METHODS",
    "TOKEN_FIELD",
    "TOKEN_HEADERS",
    "generate_secret",
]
