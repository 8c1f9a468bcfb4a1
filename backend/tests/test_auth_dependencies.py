import pathlib
import sys
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest


ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import backend.main as backend_main
from backend import app_context


def test_get_optional_current_user_missing_cookie_returns_none():
    assert backend_main.get_optional_current_user(None) is None


def test_get_optional_current_user_invalid_token_returns_none():
    assert backend_main.get_optional_current_user("not-a-valid-token") is None


def test_get_optional_current_user_expired_token_returns_none(monkeypatch):
    expired_token = backend_main.create_access_token(
        subject="42", expires_delta=timedelta(minutes=-5)
    )

    def _unexpected_get_user_by_id(_uid: int):
        raise AssertionError("get_user_by_id should not be called for expired tokens")

    monkeypatch.setattr(backend_main, "get_user_by_id", _unexpected_get_user_by_id)

    assert backend_main.get_optional_current_user(expired_token) is None


def test_get_optional_current_user_valid_token_returns_user(monkeypatch):
    user = backend_main.UserOut(
        id=123,
        username="alice",
        role="user",
        email="alice@example.com",
        created_utc=datetime.now(timezone.utc),
    )

    monkeypatch.setattr(backend_main, "get_user_by_id", lambda uid: user if uid == 123 else None)

    token = backend_main.create_access_token(subject=str(user.id))

    result = backend_main.get_optional_current_user(token)

    assert result is user

def test_get_optional_current_user_unknown_user_returns_none(monkeypatch):
    monkeypatch.setattr(backend_main, "get_user_by_id", lambda uid: None)

    token = backend_main.create_access_token(subject="404")

    assert backend_main.get_optional_current_user(token) is None


@pytest.mark.parametrize("role, expected", [("staff", True), ("ADMIN", True), ("user", False), (None, False)])
def test_is_staff_matches_configured_roles(role, expected):
    assert backend_main.is_staff(SimpleNamespace(role=role)) is expected


def test_app_context_delegates_to_configured_callables(monkeypatch):
    monkeypatch.setattr(app_context, "_context", None)
    app_context.configure(
        get_conn=lambda: "conn",
        get_current_user=lambda **kwargs: kwargs["session_token"],
        get_optional_current_user=lambda **kwargs: None,
        is_staff=lambda user: user.role == "staff",
    )

    assert app_context.get_conn() == "conn"
    assert app_context.get_current_user(session_token="abc") == "abc"
    assert app_context.get_optional_current_user(session_token="abc") is None
    assert app_context.is_staff(SimpleNamespace(role="staff")) is True
    assert app_context.is_staff(None) is False


def test_app_context_requires_configuration(monkeypatch):
    monkeypatch.setattr(app_context, "_context", None)

    with pytest.raises(RuntimeError, match="configure"):
        app_context.get_conn()
    assert app_context.is_staff(None) is False
