"""Settings for guest notification email."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from ..config import _to_bool, _to_int


@dataclass(frozen=True)
class SMTPSettings:
    host: str
    port: int
    username: Optional[str]
    password: Optional[str]
    use_tls: bool
    timeout: int

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


@dataclass(frozen=True)
class EmailConfig:
    """Sender identity and transport for table-ready messages."""

    provider_name: str
    from_email: str
    reply_to: Optional[str]
    restaurant_name: str
    smtp: SMTPSettings


def load_smtp_settings(env: Optional[Mapping[str, str]] = None) -> SMTPSettings:
    env_mapping = os.environ if env is None else env
    return SMTPSettings(
        host=env_mapping.get("SMTP_HOST", "localhost"),
        port=_to_int(env_mapping.get("SMTP_PORT"), default=587),
        username=env_mapping.get("SMTP_USER") or None,
        password=env_mapping.get("SMTP_PASS") or None,
        use_tls=_to_bool(env_mapping.get("SMTP_USE_TLS"), default=True),
        timeout=max(1, _to_int(env_mapping.get("SMTP_TIMEOUT"), default=30)),
    )


def load_email_config(env: Optional[Mapping[str, str]] = None) -> EmailConfig:
    """Load :class:`EmailConfig` from environment variables."""

    env_mapping = os.environ if env is None else env
    restaurant_name = (env_mapping.get("RESTAURANT_NAME") or "").strip() or "Our Restaurant"
    return EmailConfig(
        provider_name=(env_mapping.get("EMAIL_PROVIDER") or "dev").strip().lower(),
        from_email=env_mapping.get("FROM_EMAIL", "noreply@example.com"),
        reply_to=env_mapping.get("REPLY_TO_EMAIL") or None,
        restaurant_name=restaurant_name,
        smtp=load_smtp_settings(env_mapping),
    )


__all__ = ["EmailConfig", "SMTPSettings", "load_email_config", "load_smtp_settings"]
