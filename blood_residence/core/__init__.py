"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    connect_listener,
    engine,
    get_session,
    make_session_factory,
    init_db,
)
from .dependencies import (
    CurrentUser,
    CurrentUserDep,
    SessionDep,
    get_current_user,
    load_user,
    require_capability,
)
from .permissions import Capability, has_capability, resolve_capabilities
from .security import decode_access_token, verify_bot_secret

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "get_session",
    "make_session_factory",
    "init_db",
    "close_db",
    "connect_listener",
    # Dependencies
    "CurrentUser",
    "get_current_user",
    "load_user",
    "require_capability",
    "CurrentUserDep",
    "SessionDep",
    # Permissions
    "Capability",
    "has_capability",
    "resolve_capabilities",
    # Security
    "decode_access_token",
    "verify_bot_secret",
]
