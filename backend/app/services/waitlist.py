"""Application wiring for the waitlist service."""
from __future__ import annotations

import logging
from functools import lru_cache

from ...mail import EmailProvider, create_email_provider, load_email_config, render_table_ready
from ..waitlist import WaitlistEntry, WaitlistNotifier, WaitlistService
from ..waitlist.repository import PostgresWaitlistRepository

logger = logging.getLogger("waitlist")


class EmailWaitlistNotifier(WaitlistNotifier):
    """Sends the table-ready message to guests who left an email address."""

    def __init__(self, *, provider: EmailProvider, restaurant_name: str) -> None:
        self.provider = provider
        self.restaurant_name = restaurant_name

    def notify_table_ready(self, entry: WaitlistEntry, position: int) -> None:
        if not entry.customer_email:
            logger.info(
                "Waitlist entry %s has no email address, table-ready notice left to staff",
                entry.entry_id,
            )
            return

        email = render_table_ready(
            entry.customer_email,
            {
                "customer_name": entry.customer_name,
                "party_size": entry.party_size,
                "restaurant_name": self.restaurant_name,
                "position": position,
                "date": entry.date.isoformat(),
                "time": entry.time,
            },
        )
        try:
            self.provider.send(email)
        except Exception:
            # The entry is already marked notified; staff can still call the party.
            logger.exception(
                "Failed to send table-ready email",
                extra={"waitlist_entry_id": entry.entry_id, **self.provider.describe()},
            )
            return
        logger.info(
            "Table-ready email sent",
            extra={"waitlist_entry_id": entry.entry_id, **self.provider.describe()},
        )


@lru_cache(maxsize=1)
def get_waitlist_service() -> WaitlistService:
    email_config = load_email_config()
    notifier = EmailWaitlistNotifier(
        provider=create_email_provider(email_config),
        restaurant_name=email_config.restaurant_name,
    )
    return WaitlistService(repository=PostgresWaitlistRepository(), notifier=notifier)


__all__ = ["EmailWaitlistNotifier", "get_waitlist_service"]
