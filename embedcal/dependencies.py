"""Request-scoped dependencies shared by the HTTP routes."""

from __future__ import annotations

import json
from typing import Any, Dict
from urllib.parse import parse_qs

from fastapi import Depends, HTTPException, Request, status

from .csrf import CSRFTokens
from .database import Database
from .sessions import Session, SessionManager


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_csrf_tokens(request: Request) -> CSRFTokens:
    return request.app.state.csrf


def current_session(
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
) -> Session:
    """Resolve the session referenced by the request cookie."""

    return manager.load(request.cookies.get(manager.cookie_name))


def _charset(content_type: str) -> str:
    if "charset=" in content_type:
        return content_type.split("charset=", 1)[1].split(";", 1)[0].strip() or "utf-8"
    return "utf-8"


async def read_payload(request: Request) -> Dict[str, Any]:
    """Decode a JSON or form-encoded request body into a flat mapping."""

    cached = getattr(request.state, "payload", None)
    if cached is not None:
        return cached

    body_bytes = await request.body()
    content_type = request.headers.get("content-type", "").lower()
    payload: Dict[str, Any] = {}

    if body_bytes and "json" in content_type:
        try:
            decoded = json.loads(body_bytes.decode(_charset(content_type)))
        except (LookupError, UnicodeDecodeError, ValueError) as exc:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Malformed request body") from exc
        if not isinstance(decoded, dict):
            raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Malformed request body")
        payload = decoded
    elif body_bytes and "application/x-www-form-urlencoded" in content_type:
        try:
            text = body_bytes.decode(_charset(content_type))
        except (LookupError, UnicodeDecodeError):
            text = body_bytes.decode("utf-8", errors="ignore")
        payload = {key: values[0] for key, values in parse_qs(text, keep_blank_values=True).items()}

    request.state.payload = payload
    return payload


__all__ = ["current_session", "get_csrf_tokens", "get_database", "get_session_manager", "read_payload"]
