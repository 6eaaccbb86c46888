"""Environment-driven configuration for the embedcal service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger("embedcal.config")

INSECURE_SESSION_SECRET = "fallback-secret-change-this"
DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "ChangeMe!123"
DEFAULT_SESSION_TTL = timedelta(hours=4)


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _first(env: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = env.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def _trusted_proxy_hosts(raw: Optional[str]) -> list[str] | str:
    if not raw:
        return "*"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "*"


@dataclass(frozen=True)
class AppConfig:
    """Runtime settings shared by the CLI and the application factory."""

    session_secret: str
    host: str = "0.0.0.0"
    port: int = 3000
    database_path: Optional[Path] = None
    static_dir: Optional[Path] = None
    session_ttl: timedelta = DEFAULT_SESSION_TTL
    secure_cookies: bool = False
    trusted_proxies: list[str] | str = "*"
    admin_username: str = DEFAULT_ADMIN_USERNAME
    admin_password: str = DEFAULT_ADMIN_PASSWORD

    @property
    def uses_insecure_secret(self) -> bool:
        return self.session_secret == INSECURE_SESSION_SECRET


def load_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build an :class:`AppConfig` from environment variables.

    ``EMBEDCAL_*`` names win over the bare ``PORT``/``SESSION_SECRET`` names.
    When no session secret is configured a development fallback is used and
    a warning is logged.
    """

    if env is None:
        env = os.environ

    secret = _first(env, "EMBEDCAL_SESSION_SECRET", "SESSION_SECRET")
    if secret is None:
        logger.warning(
            "No session secret configured; using an insecure development fallback. "
            "Set EMBEDCAL_SESSION_SECRET before deploying."
        )
        secret = INSECURE_SESSION_SECRET

    port_raw = _first(env, "EMBEDCAL_PORT", "PORT")
    try:
        port = int(port_raw) if port_raw else 3000
    except ValueError as exc:
        raise ValueError(f"Invalid port: {port_raw!r}") from exc

    ttl_raw = _first(env, "EMBEDCAL_SESSION_TTL")
    if ttl_raw:
        try:
            session_ttl = timedelta(seconds=int(ttl_raw))
        except ValueError as exc:
            raise ValueError(f"Invalid session TTL: {ttl_raw!r}") from exc
        if session_ttl.total_seconds() <= 0:
            raise ValueError("Session TTL must be positive")
    else:
        session_ttl = DEFAULT_SESSION_TTL

    db_raw = _first(env, "EMBEDCAL_DB_PATH")
    static_raw = _first(env, "EMBEDCAL_STATIC_DIR")
    if static_raw:
        static_dir = Path(static_raw).expanduser().resolve(strict=False)
    else:
        static_dir = (Path(__file__).resolve().parent.parent / "public").resolve(strict=False)

    return AppConfig(
        session_secret=secret,
        host=_first(env, "EMBEDCAL_HOST") or "0.0.0.0",
        port=port,
        database_path=Path(db_raw).expanduser().resolve(strict=False) if db_raw else None,
        static_dir=static_dir,
        session_ttl=session_ttl,
        secure_cookies=_env_flag(env.get("EMBEDCAL_SESSION_SECURE"), False),
        trusted_proxies=_trusted_proxy_hosts(env.get("EMBEDCAL_TRUSTED_PROXIES")),
        admin_username=_first(env, "EMBEDCAL_ADMIN_USERNAME") or DEFAULT_ADMIN_USERNAME,
        admin_password=_first(env, "EMBEDCAL_ADMIN_PASSWORD") or DEFAULT_ADMIN_PASSWORD,
    )


__all__ = [
    "AppConfig",
    "DEFAULT_ADMIN_PASSWORD",
    "DEFAULT_ADMIN_USERNAME",
    "DEFAULT_SESSION_TTL",
    "INSECURE_SESSION_SECRET",
    "load_config",
]
