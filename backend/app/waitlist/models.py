"""Domain models for the waitlist and reservation workflow."""
from __future__ import annotations

from datetime import date as date_type
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_TIME_FORMAT = "%H:%M"


class WaitlistStatus(str, Enum):
    """Lifecycle status of a waitlist entry."""

    WAITING = "waiting"
    SEATED = "seated"
    CANCELLED = "cancelled"


class ReservationStatus(str, Enum):
    CONFIRMED = "confirmed"


def normalize_time(value: str) -> str:
    """Return ``value`` as a zero padded ``HH:MM`` string.

    Raises
    ------
    ValueError
        If ``value`` is not a valid 24-hour clock time.
    """

    text = str(value).strip()
    # Postgres TIME columns come back as HH:MM:SS
    if len(text) == 8 and text.count(":") == 2:
        text = text[:5]
    try:
        parsed = datetime.strptime(text, _TIME_FORMAT)
    except ValueError as exc:
        raise ValueError("Invalid time format. Use HH:MM 24-hour format") from exc
    return parsed.strftime(_TIME_FORMAT)


class WaitlistEntry(BaseModel):
    """A party waiting to be seated."""

    entry_id: int
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    party_size: int = Field(ge=1)
    date: date_type
    time: str
    special_requests: Optional[str] = None
    status: WaitlistStatus = WaitlistStatus.WAITING
    estimated_wait_time: int = Field(default=0, ge=0)
    notified: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("time", mode="before")
    @classmethod
    def _normalize_time(cls, value: object) -> str:
        if hasattr(value, "strftime"):
            return value.strftime(_TIME_FORMAT)
        return normalize_time(str(value))

    @property
    def is_seated(self) -> bool:
        return self.status == WaitlistStatus.SEATED

    def phone_matches(self, phone: Optional[str]) -> bool:
        """Return ``True`` when ``phone`` identifies the party on this entry."""

        if not phone:
            return False
        return phone.strip() == self.customer_phone.strip()


class WaitlistChanges(BaseModel):
    """Field values proposed by an update request.

    ``None`` means "leave unchanged" for every field.
    """

    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    party_size: Optional[int] = Field(default=None, ge=1)
    date: Optional[date_type] = None
    time: Optional[str] = None
    special_requests: Optional[str] = None
    status: Optional[WaitlistStatus] = None
    estimated_wait_time: Optional[int] = Field(default=None, ge=0)
    notified: Optional[bool] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("time")
    @classmethod
    def _normalize_time(cls, value: Optional[str]) -> Optional[str]:
        return normalize_time(value) if value is not None else None

    def customer_editable(self) -> "WaitlistChanges":
        """Drop every field a customer is not allowed to change."""

        return WaitlistChanges(
            customer_name=self.customer_name,
            customer_email=self.customer_email,
            party_size=self.party_size,
            special_requests=self.special_requests,
        )

    def as_updates(self) -> Dict[str, object]:
        return {key: value for key, value in self.model_dump().items() if value is not None}

    def apply_to(self, entry: WaitlistEntry) -> WaitlistEntry:
        return entry.model_copy(update=self.as_updates())


class Reservation(BaseModel):
    """A confirmed table booking created from a seated waitlist entry."""

    reservation_id: int
    name: str
    email: Optional[str] = None
    phone_number: str
    party_size: int = Field(ge=1)
    date: date_type
    time: str
    special_instructions: Optional[str] = None
    status: ReservationStatus = ReservationStatus.CONFIRMED
    source_waitlist_entry_id: Optional[int] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("time", mode="before")
    @classmethod
    def _normalize_time(cls, value: object) -> str:
        if hasattr(value, "strftime"):
            return value.strftime(_TIME_FORMAT)
        return normalize_time(str(value))


class BusinessHours(BaseModel):
    """Opening window for one weekday, as configured in reservation settings."""

    day_of_week: int = Field(ge=0, le=6, description="0 is Sunday")
    open_time: str
    close_time: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("open_time", "close_time", mode="before")
    @classmethod
    def _normalize_time(cls, value: object) -> str:
        if hasattr(value, "strftime"):
            return value.strftime(_TIME_FORMAT)
        return normalize_time(str(value))

    def contains(self, slot: str) -> bool:
        return self.open_time <= slot < self.close_time


class WaitlistJoinResult(BaseModel):
    entry: WaitlistEntry
    position: int
    estimated_wait_time: int

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class WaitlistPosition(BaseModel):
    """An entry together with its place in the queue for its slot."""

    entry: WaitlistEntry
    position: int

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class WaitlistUpdateResult(BaseModel):
    entry: WaitlistEntry
    reservation: Optional[Reservation] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def promoted(self) -> bool:
        return self.reservation is not None


class WaitlistFilters(BaseModel):
    date: Optional[date_type] = None
    status: Optional[WaitlistStatus] = None
    search: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


__all__ = [
    "BusinessHours",
    "Reservation",
    "ReservationStatus",
    "WaitlistChanges",
    "WaitlistEntry",
    "WaitlistFilters",
    "WaitlistJoinResult",
    "WaitlistPosition",
    "WaitlistStatus",
    "WaitlistUpdateResult",
    "normalize_time",
]
