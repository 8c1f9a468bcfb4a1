"""Guest email: settings, transports and templates."""

from .config import EmailConfig, SMTPSettings, load_email_config
from .providers import EmailProvider, LogOnlyProvider, OutboundEmail, SMTPProvider, create_email_provider
from .renderer import render_email, render_table_ready

__all__ = [
    "EmailConfig",
    "EmailProvider",
    "LogOnlyProvider",
    "OutboundEmail",
    "SMTPProvider",
    "SMTPSettings",
    "create_email_provider",
    "load_email_config",
    "render_email",
    "render_table_ready",
]
