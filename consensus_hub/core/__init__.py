"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    build_engine,
    close_db,
    engine,
    get_session,
    get_session_context,
    init_db,
)
from .dependencies import (
    CronSecretDep,
    CurrentUser,
    CurrentUserDep,
    SessionDep,
    SettingsDep,
    get_current_user,
    verify_cron_secret,
)
from .security import create_access_token, decode_token

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "build_engine",
    "async_session_factory",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    # Dependencies
    "CurrentUser",
    "get_current_user",
    "verify_cron_secret",
    "CurrentUserDep",
    "SessionDep",
    "SettingsDep",
    "CronSecretDep",
    # Security
    "create_access_token",
    "decode_token",
]
