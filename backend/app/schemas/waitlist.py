"""API schemas for waitlist endpoints."""
from __future__ import annotations

from datetime import date as date_type
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ..waitlist import (
    Reservation,
    WaitlistChanges,
    WaitlistEntry,
    WaitlistPosition,
    WaitlistStatus,
)
from ..waitlist.models import normalize_time


class WaitlistEntryOut(BaseModel):
    id: int
    customer_name: str = Field(alias="customerName")
    customer_email: Optional[str] = Field(alias="customerEmail", default=None)
    customer_phone: str = Field(alias="customerPhone")
    party_size: int = Field(alias="partySize")
    date: date_type
    time: str
    special_requests: Optional[str] = Field(alias="specialRequests", default=None)
    status: WaitlistStatus
    estimated_wait_time: int = Field(alias="estimatedWaitTime")
    notified: bool
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_entry(cls, entry: WaitlistEntry) -> "WaitlistEntryOut":
        return cls(
            id=entry.entry_id,
            customer_name=entry.customer_name,
            customer_email=entry.customer_email,
            customer_phone=entry.customer_phone,
            party_size=entry.party_size,
            date=entry.date,
            time=entry.time,
            special_requests=entry.special_requests,
            status=entry.status,
            estimated_wait_time=entry.estimated_wait_time,
            notified=entry.notified,
            created_at=entry.created_at,
        )


class ReservationOut(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    phone_number: str = Field(alias="phoneNumber")
    party_size: int = Field(alias="partySize")
    date: date_type
    time: str
    special_instructions: Optional[str] = Field(alias="specialInstructions", default=None)
    status: str
    source_waitlist_entry_id: Optional[int] = Field(alias="sourceWaitlistEntryId", default=None)
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_reservation(cls, reservation: Reservation) -> "ReservationOut":
        return cls(
            id=reservation.reservation_id,
            name=reservation.name,
            email=reservation.email,
            phone_number=reservation.phone_number,
            party_size=reservation.party_size,
            date=reservation.date,
            time=reservation.time,
            special_instructions=reservation.special_instructions,
            status=reservation.status.value,
            source_waitlist_entry_id=reservation.source_waitlist_entry_id,
            created_at=reservation.created_at,
        )


class WaitlistJoinRequest(BaseModel):
    customer_name: str = Field(alias="customerName", min_length=1, max_length=255)
    customer_phone: str = Field(alias="customerPhone", min_length=1, max_length=50)
    customer_email: Optional[EmailStr] = Field(alias="customerEmail", default=None)
    party_size: int = Field(alias="partySize", ge=1, le=50)
    date: date_type
    time: str
    special_requests: Optional[str] = Field(alias="specialRequests", default=None, max_length=1000)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("time")
    @classmethod
    def _validate_time(cls, value: str) -> str:
        return normalize_time(value)


class WaitlistJoinResponse(BaseModel):
    message: str
    waitlist_entry: WaitlistEntryOut = Field(alias="waitlistEntry")
    position: int
    estimated_wait_time: int = Field(alias="estimatedWaitTime")

    model_config = ConfigDict(populate_by_name=True)


class WaitlistUpdateRequest(BaseModel):
    """Proposed changes to an entry.

    ``phone`` is the credential a customer without a staff session presents;
    it is never written to the entry. Staff change the stored number through
    ``customerPhone``.
    """

    customer_name: Optional[str] = Field(alias="customerName", default=None, min_length=1, max_length=255)
    customer_email: Optional[EmailStr] = Field(alias="customerEmail", default=None)
    customer_phone: Optional[str] = Field(alias="customerPhone", default=None, min_length=1, max_length=50)
    party_size: Optional[int] = Field(alias="partySize", default=None, ge=1, le=50)
    date: Optional[date_type] = None
    time: Optional[str] = None
    special_requests: Optional[str] = Field(alias="specialRequests", default=None, max_length=1000)
    status: Optional[WaitlistStatus] = None
    estimated_wait_time: Optional[int] = Field(alias="estimatedWaitTime", default=None, ge=0)
    notified: Optional[bool] = None
    phone: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("time")
    @classmethod
    def _validate_time(cls, value: Optional[str]) -> Optional[str]:
        return normalize_time(value) if value is not None else None

    def to_changes(self) -> WaitlistChanges:
        return WaitlistChanges(
            customer_name=self.customer_name,
            customer_email=str(self.customer_email) if self.customer_email else None,
            customer_phone=self.customer_phone,
            party_size=self.party_size,
            date=self.date,
            time=self.time,
            special_requests=self.special_requests,
            status=self.status,
            estimated_wait_time=self.estimated_wait_time,
            notified=self.notified,
        )


class WaitlistEntryResponse(BaseModel):
    waitlist_entry: WaitlistEntryOut = Field(alias="waitlistEntry")

    model_config = ConfigDict(populate_by_name=True)


class WaitlistUpdateResponse(BaseModel):
    message: str
    waitlist_entry: WaitlistEntryOut = Field(alias="waitlistEntry")
    reservation: Optional[ReservationOut] = None

    model_config = ConfigDict(populate_by_name=True)


class WaitlistDeleteResponse(BaseModel):
    success: bool = True
    message: str = "Waitlist entry deleted"

    model_config = ConfigDict(populate_by_name=True)


class WaitlistListResponse(BaseModel):
    waitlist: List[WaitlistEntryOut]

    model_config = ConfigDict(populate_by_name=True)


class WaitlistQueueItem(BaseModel):
    """Public view of an entry returned to a customer checking their place."""

    id: int
    customer_name: str = Field(alias="customerName")
    party_size: int = Field(alias="partySize")
    date: date_type
    time: str
    estimated_wait_time: int = Field(alias="estimatedWaitTime")
    position: int
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_position(cls, item: WaitlistPosition) -> "WaitlistQueueItem":
        entry = item.entry
        return cls(
            id=entry.entry_id,
            customer_name=entry.customer_name,
            party_size=entry.party_size,
            date=entry.date,
            time=entry.time,
            estimated_wait_time=entry.estimated_wait_time,
            position=item.position,
            created_at=entry.created_at,
        )


class WaitlistCheckResponse(BaseModel):
    success: bool = True
    entries: List[WaitlistQueueItem]

    model_config = ConfigDict(populate_by_name=True)


class WaitlistNotifyResponse(BaseModel):
    success: bool = True
    message: str
    waitlist_entry: WaitlistEntryOut = Field(alias="waitlistEntry")
    position: int

    model_config = ConfigDict(populate_by_name=True)
