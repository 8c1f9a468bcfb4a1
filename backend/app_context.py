"""Callables registered by ``main`` for use by modular routers and repositories."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass(frozen=True)
class AppContext:
    get_conn: Callable[[], Any]
    get_current_user: Callable[..., Any]
    get_optional_current_user: Callable[..., Optional[Any]]
    is_staff: Callable[[Any], bool]


_context: Optional[AppContext] = None


def configure(**callables: Callable[..., Any]) -> AppContext:
    """Install the application context; later calls replace it."""

    global _context
    _context = AppContext(**callables)
    return _context


def _current() -> AppContext:
    if _context is None:
        raise RuntimeError("app_context.configure() must run before routers are used")
    return _context


def get_conn() -> Any:
    return _current().get_conn()


def get_current_user(*args: Any, **kwargs: Any) -> Any:
    return _current().get_current_user(*args, **kwargs)


def get_optional_current_user(*args: Any, **kwargs: Any) -> Optional[Any]:
    return _current().get_optional_current_user(*args, **kwargs)


def is_staff(user: Optional[Any]) -> bool:
    # Anonymous callers are never staff, even before a context exists.
    if user is None:
        return False
    return bool(_current().is_staff(user))
