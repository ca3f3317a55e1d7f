"""
FastAPI dependency utilities for injecting configuration and the session id.
"""

from typing import Annotated, Optional

from fastapi import Depends, Request

from app.core.config import AppSettings, get_settings
from app.services.session_binder import SessionBinder

from .clients import get_session_binder


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return get_settings()


def get_session_id(
    request: Request,
    binder: Annotated[SessionBinder, Depends(get_session_binder)],
) -> Optional[str]:
    """Session id from the sealed cookie, or ``None`` for anonymous callers."""
    return binder.resolve(request)


SettingsDependency = Depends(get_app_settings)
AppSettingsDep = Annotated[AppSettings, SettingsDependency]
SessionIdDep = Annotated[Optional[str], Depends(get_session_id)]

__all__ = [
    "AppSettingsDep",
    "SessionIdDep",
    "SettingsDependency",
    "get_app_settings",
    "get_session_id",
]
