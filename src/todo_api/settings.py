from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/todos.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - AUTH_USERS: comma-separated 'username:password' pairs accepted via HTTP Basic
    - AUTH_DEV_USER: when set, requests without credentials act as this user
    - APP_ENV: 'development' (default), 'production' or 'test'
    - LOG_LEVEL: logging threshold, 'INFO' by default
    - STREAM_PING_SECONDS: keep-alive interval for the live stream. Default 15
    """

    persistence_backend: str
    sqlite_db_path: str
    cors_allow_origins: List[str]
    auth_users: Dict[str, str] = field(default_factory=dict)
    auth_dev_user: Optional[str] = None
    app_env: str = "development"
    log_level: str = "INFO"
    stream_ping_seconds: float = 15.0

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        # Star will be handled in main via allow_origins=["*"]
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


def _parse_users(users_value: str) -> Dict[str, str]:
    """
    Parse 'alice:secret,bob:hunter2' into a username -> password mapping.
    Entries without a colon or with an empty username are skipped.
    """
    users: Dict[str, str] = {}
    for entry in users_value.split(","):
        name, sep, password = entry.strip().partition(":")
        name = name.strip()
        if not sep or not name:
            continue
        users[name] = password
    return users


def _parse_float(value: str, default: float) -> float:
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        # Fallback to memory if unsupported
        backend = "memory"

    sqlite_path = _get_env("SQLITE_DB_PATH", "./data/todos.db").strip()
    origins = _parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*"))

    dev_user = os.getenv("AUTH_DEV_USER", "").strip() or None

    app_env = _get_env("APP_ENV", "development").strip().lower()
    if app_env not in {"development", "production", "test"}:
        app_env = "development"

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=sqlite_path,
        cors_allow_origins=origins,
        auth_users=_parse_users(_get_env("AUTH_USERS", "")),
        auth_dev_user=dev_user,
        app_env=app_env,
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
        stream_ping_seconds=_parse_float(_get_env("STREAM_PING_SECONDS", "15"), 15.0),
    )
