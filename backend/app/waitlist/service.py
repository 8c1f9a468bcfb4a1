"""Service coordinating waitlist entries and their promotion to reservations."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional, Protocol, Sequence

from .models import (
    BusinessHours,
    Reservation,
    WaitlistChanges,
    WaitlistEntry,
    WaitlistFilters,
    WaitlistJoinResult,
    WaitlistPosition,
    WaitlistStatus,
    WaitlistUpdateResult,
    normalize_time,
)

logger = logging.getLogger("waitlist")

MINUTES_PER_PARTY_PAIR = 15


class WaitlistAuthenticationError(PermissionError):
    """Raised when neither a staff session nor a phone number was supplied."""


class WaitlistAuthorizationError(PermissionError):
    """Raised when the supplied phone number does not match the entry."""


class WaitlistConflictError(ValueError):
    """Raised when an entry was promoted concurrently by another request."""


class WaitlistRepository(Protocol):
    """Persistence operations required by the waitlist service."""

    def create_entry(
        self,
        *,
        customer_name: str,
        customer_phone: str,
        customer_email: Optional[str],
        party_size: int,
        date: date,
        time: str,
        special_requests: Optional[str],
        estimated_wait_time: int,
    ) -> WaitlistEntry:
        ...

    def get_entry(self, entry_id: int) -> Optional[WaitlistEntry]:
        ...

    def list_entries(self, filters: WaitlistFilters) -> Sequence[WaitlistEntry]:
        ...

    def list_waiting_by_phone(self, phone: str, *, from_date: date) -> Sequence[WaitlistEntry]:
        ...

    def count_waiting(self, *, date: date, time: str, before_entry_id: Optional[int] = None) -> int:
        ...

    def update_entry(self, entry_id: int, changes: WaitlistChanges) -> Optional[WaitlistEntry]:
        ...

    def promote_to_reservation(
        self, entry_id: int, changes: WaitlistChanges
    ) -> Optional[WaitlistUpdateResult]:
        """Apply ``changes`` and insert the reservation in one transaction.

        Returns ``None`` when the entry is already seated or no longer exists.
        """

    def delete_entry(self, entry_id: int) -> bool:
        ...

    def get_business_hours(self, day_of_week: int) -> Optional[BusinessHours]:
        ...


class WaitlistNotifier(Protocol):
    """Tells a waiting party that their table is ready."""

    def notify_table_ready(self, entry: WaitlistEntry, position: int) -> None:
        ...


def estimate_wait_minutes(parties_ahead: int) -> int:
    """Estimate the wait for a new party given how many are already waiting."""

    return math.ceil(parties_ahead / 2) * MINUTES_PER_PARTY_PAIR


def weekday_index(day: date) -> int:
    """Return the weekday with Sunday as ``0``, as stored in reservation settings."""

    return day.isoweekday() % 7


@dataclass
class WaitlistService:
    """Applies the waitlist access policy and the seating promotion rule."""

    repository: WaitlistRepository
    notifier: WaitlistNotifier
    clock: Optional[Callable[[], datetime]] = None

    def _now(self) -> datetime:
        return self.clock() if self.clock else datetime.now()

    def join(
        self,
        *,
        customer_name: str,
        customer_phone: str,
        party_size: int,
        date: date,
        time: str,
        customer_email: Optional[str] = None,
        special_requests: Optional[str] = None,
    ) -> WaitlistJoinResult:
        if not customer_name.strip() or not customer_phone.strip():
            raise ValueError("Name, phone, party size, date, and time are required")
        if party_size < 1:
            raise ValueError("party_size must be >= 1")
        time = normalize_time(time)

        requested = datetime.combine(date, datetime.strptime(time, "%H:%M").time())
        if requested <= self._now():
            raise ValueError("Waitlist date and time must be in the future")

        hours = self.repository.get_business_hours(weekday_index(date))
        if hours is None:
            raise ValueError("Reservations are not available for this day")
        if not hours.contains(time):
            raise ValueError("Waitlist time is outside of business hours")

        waiting = self.repository.count_waiting(date=date, time=time)
        estimated = estimate_wait_minutes(waiting)
        entry = self.repository.create_entry(
            customer_name=customer_name.strip(),
            customer_phone=customer_phone.strip(),
            customer_email=customer_email,
            party_size=party_size,
            date=date,
            time=time,
            special_requests=special_requests,
            estimated_wait_time=estimated,
        )
        logger.info(
            "Waitlist entry %s created for %s %s party=%s position=%s",
            entry.entry_id,
            entry.date,
            entry.time,
            entry.party_size,
            waiting + 1,
        )
        return WaitlistJoinResult(entry=entry, position=waiting + 1, estimated_wait_time=estimated)

    def list_entries(self, filters: Optional[WaitlistFilters] = None) -> Sequence[WaitlistEntry]:
        return self.repository.list_entries(filters or WaitlistFilters())

    def check_by_phone(self, phone: str) -> Sequence[WaitlistPosition]:
        if not phone or not phone.strip():
            raise ValueError("Phone number is required")

        entries = self.repository.list_waiting_by_phone(phone.strip(), from_date=self._now().date())
        if not entries:
            raise LookupError("No active waitlist entries found for this phone number")
        return [WaitlistPosition(entry=entry, position=self._position(entry)) for entry in entries]

    def get_entry(self, entry_id: int, *, is_staff: bool, phone: Optional[str] = None) -> WaitlistEntry:
        return self._authorize(entry_id, is_staff=is_staff, phone=phone)

    def update_entry(
        self,
        entry_id: int,
        changes: WaitlistChanges,
        *,
        is_staff: bool,
        phone: Optional[str] = None,
    ) -> WaitlistUpdateResult:
        current = self._authorize(entry_id, is_staff=is_staff, phone=phone)

        if not is_staff:
            updated = self.repository.update_entry(entry_id, changes.customer_editable())
            if updated is None:
                raise LookupError("Waitlist entry not found")
            return WaitlistUpdateResult(entry=updated)

        if changes.status == WaitlistStatus.SEATED and not current.is_seated:
            result = self.repository.promote_to_reservation(entry_id, changes)
            if result is None:
                raise WaitlistConflictError("Waitlist entry has already been seated")
            logger.info(
                "Waitlist entry %s seated and converted to reservation %s",
                entry_id,
                result.reservation.reservation_id if result.reservation else None,
            )
            return result

        updated = self.repository.update_entry(entry_id, changes)
        if updated is None:
            raise LookupError("Waitlist entry not found")
        return WaitlistUpdateResult(entry=updated)

    def delete_entry(self, entry_id: int, *, is_staff: bool, phone: Optional[str] = None) -> None:
        self._authorize(entry_id, is_staff=is_staff, phone=phone)
        if not self.repository.delete_entry(entry_id):
            raise LookupError("Waitlist entry not found")
        logger.info("Waitlist entry %s removed staff=%s", entry_id, is_staff)

    def notify_entry(self, entry_id: int) -> WaitlistPosition:
        """Mark a waiting party as notified and tell them their table is ready."""

        entry = self.repository.get_entry(entry_id)
        if entry is None:
            raise LookupError("Waitlist entry not found")
        if entry.status != WaitlistStatus.WAITING:
            raise ValueError("Only waiting entries can be notified")

        updated = self.repository.update_entry(entry_id, WaitlistChanges(notified=True))
        if updated is None:
            raise LookupError("Waitlist entry not found")

        position = self._position(updated)
        self.notifier.notify_table_ready(updated, position)
        return WaitlistPosition(entry=updated, position=position)

    def _position(self, entry: WaitlistEntry) -> int:
        ahead = self.repository.count_waiting(
            date=entry.date, time=entry.time, before_entry_id=entry.entry_id
        )
        return ahead + 1

    def _authorize(self, entry_id: int, *, is_staff: bool, phone: Optional[str]) -> WaitlistEntry:
        if not is_staff and not (phone and phone.strip()):
            raise WaitlistAuthenticationError("Unauthorized")

        entry = self.repository.get_entry(entry_id)
        if entry is None:
            raise LookupError("Waitlist entry not found")
        if not is_staff and not entry.phone_matches(phone):
            raise WaitlistAuthorizationError("Unauthorized")
        return entry


__all__ = [
    "WaitlistAuthenticationError",
    "WaitlistAuthorizationError",
    "WaitlistConflictError",
    "WaitlistNotifier",
    "WaitlistRepository",
    "WaitlistService",
    "estimate_wait_minutes",
    "weekday_index",
]
