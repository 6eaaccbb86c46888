"""SQLite-backed persistence for users, settings, events and sessions."""
from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from passlib.context import CryptContext

from .models import Event, User


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "embedcal.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


_SQLITE_MAX_INTEGER = 2**63 - 1

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)


class CredentialError(RuntimeError):
    """Raised when a stored password hash cannot be checked."""


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except (ValueError, TypeError) as exc:
        raise CredentialError("Stored password hash could not be verified") from exc


class Database:
    """Wrapper around a single SQLite connection shared by the application."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is not None:
                return self._conn
            conn = sqlite3.connect(self._path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._conn = conn
            return conn

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self.open()
            with conn:
                yield conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._transaction() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL,
                    is_admin INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                );

                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    datetime TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_events_datetime ON events(datetime);
                CREATE INDEX IF NOT EXISTS idx_sessions_expires_at ON sessions(expires_at);
                """
            )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(self, username: str, password: str, *, is_admin: bool = False) -> User:
        normalized = username.strip()
        if not normalized:
            raise ValueError("Username must not be empty")
        if not password:
            raise ValueError("Password must not be empty")

        created_at = _current_timestamp()
        password_hash = _hash_password(password)

        with self._transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (username, password_hash, is_admin, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (normalized, password_hash, int(bool(is_admin)), _serialize_datetime(created_at)),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A user with that username already exists") from exc
            user_id = cursor.lastrowid

        return User(id=int(user_id), username=normalized, is_admin=bool(is_admin), created_at=created_at)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> List[User]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(row) for row in rows]

    def has_admin(self) -> bool:
        with self._transaction() as conn:
            row = conn.execute("SELECT 1 FROM users WHERE is_admin = 1 LIMIT 1").fetchone()
        return row is not None

    def authenticate_user(self, username: str, password: str) -> Optional[User]:
        """Return the user when the password matches, ``None`` otherwise.

        Unknown usernames and wrong passwords are indistinguishable to the
        caller. A hash that passlib cannot parse raises :class:`CredentialError`.
        """

        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        if row is None:
            return None
        if not _verify_password(password, str(row["password_hash"])):
            return None
        return self._row_to_user(row)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._transaction() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        return row["value"]

    def set_setting(self, key: str, value: Optional[str]) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def list_events(self) -> List[Event]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM events ORDER BY datetime ASC, id ASC").fetchall()
        return [self._row_to_event(row) for row in rows]

    def create_event(self, name: str, when: str) -> Event:
        normalized = name.strip()
        if not normalized or not when:
            raise ValueError("Events require a name and a datetime")

        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO events (name, datetime) VALUES (?, ?)",
                (normalized, when),
            )
            event_id = cursor.lastrowid
        return Event(id=int(event_id), name=normalized, datetime=when)

    def delete_event(self, event_id: object) -> bool:
        raw = str(event_id)
        if not (raw.isascii() and raw.isdigit()):
            return False
        numeric_id = int(raw)
        if numeric_id > _SQLITE_MAX_INTEGER:
            return False
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM events WHERE id = ?", (numeric_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Session records
    # ------------------------------------------------------------------
    def save_session(self, session_id: str, data: str, expires_at: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO sessions (id, data, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET data = excluded.data, expires_at = excluded.expires_at
                """,
                (session_id, data, _serialize_datetime(expires_at)),
            )

    def load_session(self, session_id: str) -> Optional[Tuple[str, datetime]]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT data, expires_at FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
        if row is None:
            return None
        return str(row["data"]), _parse_datetime(str(row["expires_at"]))

    def delete_session(self, session_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))

    def purge_expired_sessions(self, now: Optional[datetime] = None) -> int:
        cutoff = _serialize_datetime(now or _current_timestamp())
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE expires_at <= ?", (cutoff,))
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            username=str(row["username"]),
            is_admin=bool(row["is_admin"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )

    def _row_to_event(self, row: sqlite3.Row) -> Event:
        return Event(
            id=int(row["id"]),
            name=str(row["name"]),
            datetime=str(row["datetime"]),
        )


__all__ = ["CredentialError", "Database", "resolve_database_path"]
