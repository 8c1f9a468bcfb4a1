"""Waitlist domain package: entries, access policy and promotion to reservations."""

from .models import (
    BusinessHours,
    Reservation,
    ReservationStatus,
    WaitlistChanges,
    WaitlistEntry,
    WaitlistFilters,
    WaitlistJoinResult,
    WaitlistPosition,
    WaitlistStatus,
    WaitlistUpdateResult,
)
from .service import (
    WaitlistAuthenticationError,
    WaitlistAuthorizationError,
    WaitlistConflictError,
    WaitlistNotifier,
    WaitlistRepository,
    WaitlistService,
)

__all__ = [
    "BusinessHours",
    "Reservation",
    "ReservationStatus",
    "WaitlistAuthenticationError",
    "WaitlistAuthorizationError",
    "WaitlistChanges",
    "WaitlistConflictError",
    "WaitlistEntry",
    "WaitlistFilters",
    "WaitlistJoinResult",
    "WaitlistNotifier",
    "WaitlistPosition",
    "WaitlistRepository",
    "WaitlistService",
    "WaitlistStatus",
    "WaitlistUpdateResult",
]
