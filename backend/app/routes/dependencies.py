"""Session dependencies shared by the API routers."""
from __future__ import annotations

import os
from typing import Any, Optional

from fastapi import Cookie, Depends

from ... import app_context

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
) -> Any:
    return app_context.get_current_user(session_token=session_token)


def get_optional_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
) -> Optional[Any]:
    return app_context.get_optional_current_user(session_token=session_token)


def get_staff_access(current_user: Optional[Any] = Depends(get_optional_current_user)) -> bool:
    """Resolve whether the caller holds a staff session.

    Waitlist handlers consume only this flag, never the session itself.
    """

    return app_context.is_staff(current_user)


__all__ = ["get_current_user", "get_optional_current_user", "get_staff_access"]
