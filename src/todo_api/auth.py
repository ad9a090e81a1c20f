from __future__ import annotations

import secrets
from typing import Optional

import structlog
from fastapi import Depends
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from .errors import TodoAuthenticationError
from .settings import get_settings

_security = HTTPBasic(auto_error=False)

log = structlog.get_logger()


# PUBLIC_INTERFACE
async def get_current_user(creds: Optional[HTTPBasicCredentials] = Depends(_security)) -> str:
    """
    Resolve the requesting user's id from HTTP Basic credentials.

    Behavior:
    - Credentials are checked against AUTH_USERS; the username is the owner id.
    - Without credentials, AUTH_DEV_USER (outside production) is used when set.
    - Otherwise raises TodoAuthenticationError (401 with WWW-Authenticate: Basic).

    Usage:
        @router.get("/")
        def handler(user_id: str = Depends(get_current_user)): ...
    """
    settings = get_settings()

    if creds is None:
        if settings.auth_dev_user and not settings.is_production:
            structlog.contextvars.bind_contextvars(user=settings.auth_dev_user)
            return settings.auth_dev_user
        raise TodoAuthenticationError("Not authenticated")

    if not settings.auth_users:
        # Misconfiguration: nobody can log in
        raise TodoAuthenticationError("Server authentication not configured")

    expected = settings.auth_users.get(creds.username)
    # Unknown users still go through compare_digest
    password_ok = secrets.compare_digest(
        creds.password.encode("utf-8"), (expected if expected is not None else "\x00").encode("utf-8")
    )
    if expected is None or not password_ok:
        log.warning("authentication_failed", username=creds.username)
        raise TodoAuthenticationError("Invalid authentication credentials")

    structlog.contextvars.bind_contextvars(user=creds.username)
    return creds.username
