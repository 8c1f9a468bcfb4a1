"""API routes for the restaurant waitlist."""
from __future__ import annotations

from datetime import date as date_type
from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..schemas.waitlist import (
    ReservationOut,
    WaitlistCheckResponse,
    WaitlistDeleteResponse,
    WaitlistEntryOut,
    WaitlistEntryResponse,
    WaitlistJoinRequest,
    WaitlistJoinResponse,
    WaitlistListResponse,
    WaitlistNotifyResponse,
    WaitlistQueueItem,
    WaitlistUpdateRequest,
    WaitlistUpdateResponse,
)
from ..services import waitlist as waitlist_services
from ..waitlist import (
    WaitlistAuthenticationError,
    WaitlistAuthorizationError,
    WaitlistConflictError,
    WaitlistFilters,
    WaitlistStatus,
)
from .dependencies import get_staff_access

router = APIRouter(prefix="/api/waitlist", tags=["waitlist"])


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, WaitlistAuthenticationError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized") from exc
    if isinstance(exc, WaitlistAuthorizationError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized") from exc
    if isinstance(exc, WaitlistConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, LookupError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


def _require_staff(is_staff: bool) -> None:
    if not is_staff:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("", response_model=WaitlistJoinResponse, status_code=status.HTTP_201_CREATED)
def join_waitlist(payload: WaitlistJoinRequest) -> WaitlistJoinResponse:
    service = waitlist_services.get_waitlist_service()
    try:
        result = service.join(
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            customer_email=str(payload.customer_email) if payload.customer_email else None,
            party_size=payload.party_size,
            date=payload.date,
            time=payload.time,
            special_requests=payload.special_requests,
        )
    except (LookupError, ValueError) as exc:
        _raise_http(exc)
    return WaitlistJoinResponse(
        message="Added to waitlist successfully",
        waitlist_entry=WaitlistEntryOut.from_entry(result.entry),
        position=result.position,
        estimated_wait_time=result.estimated_wait_time,
    )


@router.get("", response_model=WaitlistListResponse)
def list_waitlist(
    date: Optional[date_type] = Query(None),
    status_filter: Optional[WaitlistStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100),
    *,
    is_staff: bool = Depends(get_staff_access),
) -> WaitlistListResponse:
    _require_staff(is_staff)
    service = waitlist_services.get_waitlist_service()
    entries = service.list_entries(WaitlistFilters(date=date, status=status_filter, search=search))
    return WaitlistListResponse(waitlist=[WaitlistEntryOut.from_entry(entry) for entry in entries])


@router.get("/check", response_model=WaitlistCheckResponse)
def check_waitlist(phone: str = Query(..., min_length=1)) -> WaitlistCheckResponse:
    service = waitlist_services.get_waitlist_service()
    try:
        positions = service.check_by_phone(phone)
    except (LookupError, ValueError) as exc:
        _raise_http(exc)
    return WaitlistCheckResponse(entries=[WaitlistQueueItem.from_position(item) for item in positions])


@router.get("/{entry_id}", response_model=WaitlistEntryResponse)
def get_waitlist_entry(
    entry_id: int,
    phone: Optional[str] = Query(None),
    *,
    is_staff: bool = Depends(get_staff_access),
) -> WaitlistEntryResponse:
    service = waitlist_services.get_waitlist_service()
    try:
        entry = service.get_entry(entry_id, is_staff=is_staff, phone=phone)
    except (PermissionError, LookupError, ValueError) as exc:
        _raise_http(exc)
    return WaitlistEntryResponse(waitlist_entry=WaitlistEntryOut.from_entry(entry))


@router.put("/{entry_id}", response_model=WaitlistUpdateResponse)
def update_waitlist_entry(
    entry_id: int,
    payload: WaitlistUpdateRequest,
    phone: Optional[str] = Query(None),
    *,
    is_staff: bool = Depends(get_staff_access),
) -> WaitlistUpdateResponse:
    service = waitlist_services.get_waitlist_service()
    try:
        result = service.update_entry(
            entry_id,
            payload.to_changes(),
            is_staff=is_staff,
            phone=payload.phone or phone,
        )
    except (PermissionError, LookupError, ValueError) as exc:
        _raise_http(exc)

    if result.promoted:
        message = "Waitlist entry updated and converted to reservation"
    else:
        message = "Waitlist entry updated successfully"
    return WaitlistUpdateResponse(
        message=message,
        waitlist_entry=WaitlistEntryOut.from_entry(result.entry),
        reservation=ReservationOut.from_reservation(result.reservation) if result.reservation else None,
    )


@router.delete("/{entry_id}", response_model=WaitlistDeleteResponse)
def delete_waitlist_entry(
    entry_id: int,
    phone: Optional[str] = Query(None),
    *,
    is_staff: bool = Depends(get_staff_access),
) -> WaitlistDeleteResponse:
    service = waitlist_services.get_waitlist_service()
    try:
        service.delete_entry(entry_id, is_staff=is_staff, phone=phone)
    except (PermissionError, LookupError, ValueError) as exc:
        _raise_http(exc)
    return WaitlistDeleteResponse()


@router.post("/{entry_id}/notify", response_model=WaitlistNotifyResponse)
def notify_waitlist_entry(
    entry_id: int,
    *,
    is_staff: bool = Depends(get_staff_access),
) -> WaitlistNotifyResponse:
    _require_staff(is_staff)
    service = waitlist_services.get_waitlist_service()
    try:
        result = service.notify_entry(entry_id)
    except (LookupError, ValueError) as exc:
        _raise_http(exc)
    return WaitlistNotifyResponse(
        message="Customer notified that their table is ready",
        waitlist_entry=WaitlistEntryOut.from_entry(result.entry),
        position=result.position,
    )
