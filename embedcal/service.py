"""HTTP API for the embed code and calendar events."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ValidationError, field_validator
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from . import csrf
from .bootstrap import ensure_admin
from .config import AppConfig, load_config
from .database import CredentialError, Database, resolve_database_path
from .dependencies import current_session, get_csrf_tokens, get_database, get_session_manager, read_payload
from .headers import SecurityHeadersMiddleware
from .models import SessionUser
from .security import csrf_protected, require_admin
from .sessions import Session, SessionManager

logger = logging.getLogger("embedcal.service")

EMBED_SETTING_KEY = "embed_code"


class EmbedUpdateRequest(BaseModel):
    embed: Optional[str] = None


class EventCreateRequest(BaseModel):
    name: str
    datetime: str

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be empty")
        return stripped

    @field_validator("datetime")
    @classmethod
    def _require_datetime(cls, value: str) -> str:
        if not value:
            raise ValueError("datetime must not be empty")
        return value


class StateResponse(BaseModel):
    embed: str
    events: List[Dict[str, object]]
    user: Optional[Dict[str, object]]
    csrfToken: str


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_app(
    *,
    database: Optional[Database] = None,
    config: Optional[AppConfig] = None,
    initialize_database: bool = True,
    bootstrap_admin: bool = True,
) -> FastAPI:
    """Create the HTTP application.

    When ``database`` is omitted the application opens its own store from the
    configured path and closes it again on shutdown. A caller-supplied
    database stays open for the caller to manage.
    """

    if config is None:
        config = load_config()

    owns_database = database is None
    if database is None:
        database = Database(config.database_path or resolve_database_path(None))
    database.open()
    if initialize_database:
        database.initialize()

    sessions = SessionManager(
        database,
        secret=config.session_secret,
        ttl=config.session_ttl,
        secure_cookies=config.secure_cookies,
    )
    sessions.purge_expired()
    csrf_tokens = csrf.CSRFTokens(config.session_secret, max_age=sessions.cookie_max_age)

    if bootstrap_admin:
        ensure_admin(
            database,
            username=config.admin_username,
            password=config.admin_password,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_database:
            database.close()
            logger.info("Closed database at %s", database.path)

    app = FastAPI(
        title="embedcal",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=config.trusted_proxies)
    app.state.database = database
    app.state.sessions = sessions
    app.state.csrf = csrf_tokens
    app.state.config = config

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        response = _error(exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(sqlite3.Error)
    async def store_error(request: Request, exc: sqlite3.Error) -> JSONResponse:
        logger.exception("Database failure while handling %s %s", request.method, request.url.path)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    @app.post("/login", name="login")
    async def login(
        session: Session = Depends(csrf_protected),
        payload: Dict[str, Any] = Depends(read_payload),
        db: Database = Depends(get_database),
        manager: SessionManager = Depends(get_session_manager),
    ):
        username = payload.get("username")
        password = payload.get("password")
        if not isinstance(username, str) or not isinstance(password, str) or not username or not password:
            return PlainTextResponse("Missing credentials", status_code=status.HTTP_400_BAD_REQUEST)

        try:
            user = await run_in_threadpool(db.authenticate_user, username, password)
        except CredentialError:
            logger.exception("Password verification failed for %s", username)
            return PlainTextResponse("Server error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        if user is None:
            logger.warning("Failed login attempt for %s", username)
            return PlainTextResponse(
                "Invalid username or password", status_code=status.HTTP_401_UNAUTHORIZED
            )

        manager.login(session, user)
        logger.info("User %s signed in", user.id)
        response = RedirectResponse("/?login=success", status_code=status.HTTP_302_FOUND)
        await run_in_threadpool(manager.commit, response, session)
        return response

    @app.post("/logout", name="logout")
    def logout(
        session: Session = Depends(csrf_protected),
        manager: SessionManager = Depends(get_session_manager),
    ):
        if session.user is not None:
            logger.info("User %s signed out", session.user.id)
        manager.destroy(session)
        response = RedirectResponse("/", status_code=status.HTTP_302_FOUND)
        manager.clear_cookie(response)
        return response

    @app.get("/api/state", name="api_state")
    def api_state(
        session: Session = Depends(current_session),
        db: Database = Depends(get_database),
        manager: SessionManager = Depends(get_session_manager),
        tokens: csrf.CSRFTokens = Depends(get_csrf_tokens),
    ):
        token = tokens.create_token(session.ensure_csrf_secret())
        state = StateResponse(
            embed=db.get_setting(EMBED_SETTING_KEY) or "",
            events=[event.to_dict() for event in db.list_events()],
            user=session.user.to_dict() if session.user else None,
            csrfToken=token,
        )
        response = JSONResponse(state.model_dump())
        manager.commit(response, session)
        return response

    @app.post("/api/embed", name="api_set_embed")
    def set_embed(
        user: SessionUser = Depends(require_admin),
        payload: Dict[str, Any] = Depends(read_payload),
        db: Database = Depends(get_database),
    ):
        try:
            request_body = EmbedUpdateRequest.model_validate(payload)
        except ValidationError:
            return _error(status.HTTP_400_BAD_REQUEST, "Invalid embed code")
        db.set_setting(EMBED_SETTING_KEY, request_body.embed or "")
        logger.info("User %s updated the embed code", user.id)
        return {"success": True}

    @app.post("/api/events", name="api_create_event")
    def create_event(
        user: SessionUser = Depends(require_admin),
        payload: Dict[str, Any] = Depends(read_payload),
        db: Database = Depends(get_database),
    ):
        try:
            request_body = EventCreateRequest.model_validate(payload)
        except ValidationError:
            return _error(status.HTTP_400_BAD_REQUEST, "Missing name or datetime")
        event = db.create_event(request_body.name, request_body.datetime)
        logger.info("User %s created event %s", user.id, event.id)
        return {"success": True}

    @app.delete("/api/events/{event_id}", name="api_delete_event")
    def delete_event(
        event_id: str,
        user: SessionUser = Depends(require_admin),
        db: Database = Depends(get_database),
    ):
        if db.delete_event(event_id):
            logger.info("User %s deleted event %s", user.id, event_id)
        return {"success": True}

    static_dir = config.static_dir
    if static_dir is not None and static_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")

    return app


__all__ = ["EMBED_SETTING_KEY", "create_app"]
