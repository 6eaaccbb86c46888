"""Server-side session handling backed by the application database."""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from itsdangerous import BadSignature, TimestampSigner
from starlette.responses import Response

from . import csrf
from .database import Database
from .models import SessionUser, User

logger = logging.getLogger("embedcal.sessions")

SESSION_COOKIE_NAME = "embedcal.sid"


@dataclass
class Session:
    """Request-scoped view of a session record.

    ``modified`` is set whenever the data changes so handlers know whether the
    record has to be written back and the cookie re-issued.
    """

    id: str
    expires_at: datetime
    user: Optional[SessionUser] = None
    csrf_secret: Optional[str] = None
    is_new: bool = True
    modified: bool = False

    def ensure_csrf_secret(self) -> str:
        if not self.csrf_secret:
            self.csrf_secret = csrf.generate_secret()
            self.modified = True
        return self.csrf_secret

    def to_json(self) -> str:
        payload: Dict[str, object] = {
            "user": self.user.to_dict() if self.user else None,
            "csrf_secret": self.csrf_secret,
        }
        return json.dumps(payload)


def _user_from_payload(raw: object) -> Optional[SessionUser]:
    if not isinstance(raw, dict):
        return None
    try:
        return SessionUser(
            id=int(raw["id"]),
            username=str(raw["username"]),
            is_admin=bool(raw["is_admin"]),
        )
    except (KeyError, TypeError, ValueError):
        return None


class SessionManager:
    """Create, load, persist and destroy sessions referenced by a signed cookie."""

    def __init__(
        self,
        database: Database,
        *,
        secret: str,
        ttl: timedelta = timedelta(hours=4),
        secure_cookies: bool = False,
        cookie_name: str = SESSION_COOKIE_NAME,
    ) -> None:
        if not secret:
            raise ValueError("A session secret is required")
        self._database = database
        self._ttl = ttl
        self._secure_cookies = secure_cookies
        self._cookie_name = cookie_name
        self._signer = TimestampSigner(secret, salt="embedcal.session")

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def cookie_name(self) -> str:
        return self._cookie_name

    @property
    def cookie_max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def new_session(self) -> Session:
        return Session(id=secrets.token_urlsafe(32), expires_at=self._now() + self._ttl)

    def load(self, cookie_value: Optional[str]) -> Session:
        """Return the session referenced by ``cookie_value`` or a fresh one.

        Tampered, unknown and expired references all yield an unsaved,
        anonymous session.
        """

        session_id = self._unsign(cookie_value)
        if session_id is None:
            return self.new_session()

        record = self._database.load_session(session_id)
        if record is None:
            return self.new_session()

        data, expires_at = record
        if expires_at <= self._now():
            self._database.delete_session(session_id)
            return self.new_session()

        try:
            payload = json.loads(data)
        except ValueError:
            logger.warning("Discarding unreadable session record %s", session_id[:8])
            self._database.delete_session(session_id)
            return self.new_session()
        if not isinstance(payload, dict):
            payload = {}

        secret = payload.get("csrf_secret")
        return Session(
            id=session_id,
            expires_at=expires_at,
            user=_user_from_payload(payload.get("user")),
            csrf_secret=secret if isinstance(secret, str) else None,
            is_new=False,
        )

    def login(self, session: Session, user: User) -> None:
        """Attach ``user`` to the session and restart its lifetime."""

        session.user = SessionUser.from_user(user)
        session.expires_at = self._now() + self._ttl
        session.modified = True

    def save(self, session: Session) -> None:
        if session.is_new:
            self.purge_expired()
        self._database.save_session(session.id, session.to_json(), session.expires_at)
        session.is_new = False
        session.modified = False

    def destroy(self, session: Session) -> None:
        self._database.delete_session(session.id)
        session.user = None
        session.csrf_secret = None
        session.modified = False

    def purge_expired(self) -> int:
        removed = self._database.purge_expired_sessions(self._now())
        if removed:
            logger.info("Purged %s expired session(s)", removed)
        return removed

    def commit(self, response: Response, session: Session) -> None:
        """Persist a modified session and attach its cookie to ``response``."""

        if not session.modified:
            return
        self.save(session)
        self.issue_cookie(response, session)

    def issue_cookie(self, response: Response, session: Session) -> None:
        remaining = int((session.expires_at - self._now()).total_seconds())
        response.set_cookie(
            self._cookie_name,
            self._signer.sign(session.id).decode("ascii"),
            max_age=max(remaining, 0),
            secure=self._secure_cookies,
            httponly=True,
            samesite="lax",
            path="/",
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(
            self._cookie_name,
            path="/",
            secure=self._secure_cookies,
            httponly=True,
            samesite="lax",
        )

    def _unsign(self, cookie_value: Optional[str]) -> Optional[str]:
        if not cookie_value:
            return None
        try:
            raw = self._signer.unsign(cookie_value, max_age=self.cookie_max_age)
        except BadSignature:
            return None
        return raw.decode("ascii", errors="ignore") or None

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)


__all__ = ["SESSION_COOKIE_NAME", "Session", "SessionManager"]
