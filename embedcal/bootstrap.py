"""Startup provisioning of the initial admin account."""

from __future__ import annotations

import logging
from typing import Optional

from .config import DEFAULT_ADMIN_PASSWORD, DEFAULT_ADMIN_USERNAME
from .database import Database
from .models import User

logger = logging.getLogger("embedcal.bootstrap")


def ensure_admin(
    database: Database,
    *,
    username: str = DEFAULT_ADMIN_USERNAME,
    password: str = DEFAULT_ADMIN_PASSWORD,
) -> Optional[User]:
    """Create an admin account when none exists and return it.

    The plaintext credentials are logged once so the operator can sign in and
    rotate them. Returns ``None`` when an admin is already present.
    """

    if database.has_admin():
        return None

    user = database.create_user(username, password, is_admin=True)
    logger.warning(
        "Created default admin account: %s / %s (please change)", user.username, password
    )
    return user


__all__ = ["ensure_admin"]
