"""Application configuration loaded from environment variables."""
from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple


@dataclass(frozen=True)
class DatabaseConfig:
    host: str
    port: int
    dbname: str
    user: str
    password: str
    connect_timeout: int

    def as_connect_kwargs(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.dbname,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
        }


@dataclass(frozen=True)
class SessionConfig:
    """Settings for the signed session cookie and staff detection."""

    jwt_secret_key: str
    jwt_algorithm: str
    jwt_exp_minutes: int
    cookie_name: str
    cookie_secure: bool
    staff_roles: Tuple[str, ...]


@dataclass(frozen=True)
class BillingConfig:
    """Payment provider credentials and redirect base URL."""

    provider_name: str
    stripe_secret_key: Optional[str]
    stripe_webhook_secret: Optional[str]
    app_base_url: str
    currency: str


@dataclass(frozen=True)
class AppConfig:
    database: DatabaseConfig
    session: SessionConfig
    cors_origins: Tuple[str, ...]


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_list(value: Optional[str], *, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if value is None or not value.strip():
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def load_database_config(env: Optional[Mapping[str, str]] = None) -> DatabaseConfig:
    env_mapping = os.environ if env is None else env
    return DatabaseConfig(
        host=env_mapping.get("DB_HOST", "127.0.0.1"),
        port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        dbname=env_mapping.get("DB_NAME", "restaurant_db"),
        user=env_mapping.get("DB_USER", "restaurant_user"),
        password=env_mapping.get("DB_PASSWORD", "restaurant_pass"),
        connect_timeout=_parse_connect_timeout(env_mapping.get("DB_CONNECT_TIMEOUT", "5")),
    )


def load_session_config(env: Optional[Mapping[str, str]] = None) -> SessionConfig:
    env_mapping = os.environ if env is None else env
    roles = _to_list(env_mapping.get("STAFF_ROLES"), default=("staff", "admin"))
    return SessionConfig(
        jwt_secret_key=env_mapping.get("JWT_SECRET_KEY", "dev-secret-change-me"),
        jwt_algorithm="HS256",
        # default: 7 days
        jwt_exp_minutes=_to_int(env_mapping.get("JWT_EXP_MINUTES"), default=60 * 24 * 7),
        cookie_name=env_mapping.get("SESSION_COOKIE_NAME", "session"),
        cookie_secure=_to_bool(env_mapping.get("SESSION_COOKIE_SECURE"), default=False),
        staff_roles=tuple(role.lower() for role in roles),
    )


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    env_mapping = os.environ if env is None else env
    secret_key = env_mapping.get("STRIPE_SECRET_KEY") or None
    # Without credentials the sandbox provider keeps local development working
    default_provider = "stripe" if secret_key else "sandbox"
    provider_name = (env_mapping.get("BILLING_PROVIDER") or default_provider).strip().lower()
    if provider_name not in {"stripe", "sandbox"}:
        raise ValueError("BILLING_PROVIDER must be 'stripe' or 'sandbox'")
    if provider_name == "stripe" and not secret_key:
        raise ValueError("STRIPE_SECRET_KEY is required when BILLING_PROVIDER=stripe")
    return BillingConfig(
        provider_name=provider_name,
        stripe_secret_key=secret_key,
        stripe_webhook_secret=env_mapping.get("STRIPE_WEBHOOK_SECRET") or None,
        app_base_url=env_mapping.get("APP_BASE_URL", "http://localhost:3000").rstrip("/"),
        currency=(env_mapping.get("BILLING_CURRENCY") or "usd").strip().lower(),
    )


def load_app_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load :class:`AppConfig` from environment variables."""

    env_mapping = os.environ if env is None else env
    return AppConfig(
        database=load_database_config(env_mapping),
        session=load_session_config(env_mapping),
        cors_origins=_to_list(env_mapping.get("CORS_ORIGINS"), default=("http://localhost:3000",)),
    )


__all__ = [
    "AppConfig",
    "BillingConfig",
    "DatabaseConfig",
    "SessionConfig",
    "load_app_config",
    "load_billing_config",
    "load_database_config",
    "load_session_config",
]
