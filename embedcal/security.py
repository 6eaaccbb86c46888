"""Anti-forgery and authorization guards for the HTTP routes."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import Depends, HTTPException, Request, status

from . import csrf
from .dependencies import current_session, get_csrf_tokens, read_payload
from .models import SessionUser
from .sessions import Session


def _submitted_token(request: Request, payload: Dict[str, Any]) -> str | None:
    for header in csrf.TOKEN_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    value = payload.get(csrf.TOKEN_FIELD)
    return value if isinstance(value, str) else None


async def csrf_protected(
    request: Request,
    session: Session = Depends(current_session),
    payload: Dict[str, Any] = Depends(read_payload),
    tokens: csrf.CSRFTokens = Depends(get_csrf_tokens),
) -> Session:
    """Return the session once a state-changing request proved its token."""

    if request.method.upper() in csrf.SAFE_METHODS:
        return session
    if not tokens.verify_token(session.csrf_secret, _submitted_token(request, payload)):
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Invalid CSRF token")
    return session


def require_login(session: Session = Depends(csrf_protected)) -> SessionUser:
    if session.user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Login required")
    return session.user


def require_admin(session: Session = Depends(csrf_protected)) -> SessionUser:
    # Anonymous and non-admin sessions share one status code.
    if session.user is None or not session.user.is_admin:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return session.user


__all__ = ["csrf_protected", "require_admin", "require_login"]
