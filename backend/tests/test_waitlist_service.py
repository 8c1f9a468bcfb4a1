"""Unit tests for the waitlist service."""
from __future__ import annotations

from datetime import date, datetime

import pytest

from backend.app.waitlist import (
    WaitlistAuthenticationError,
    WaitlistAuthorizationError,
    WaitlistChanges,
    WaitlistConflictError,
    WaitlistStatus,
)
from backend.app.waitlist.service import estimate_wait_minutes, weekday_index

NOW = datetime(2024, 6, 3, 12, 0)
TOMORROW = date(2024, 6, 4)


def test_estimate_wait_minutes_rounds_up_per_pair():
    assert estimate_wait_minutes(0) == 0
    assert estimate_wait_minutes(1) == 15
    assert estimate_wait_minutes(2) == 15
    assert estimate_wait_minutes(3) == 30


def test_weekday_index_counts_from_sunday():
    assert weekday_index(date(2024, 6, 2)) == 0
    assert weekday_index(date(2024, 6, 8)) == 6


def test_join_returns_position_and_estimate(waitlist_components):
    service, repository, _ = waitlist_components
    repository.add(customer_phone="555-0001")
    repository.add(customer_phone="555-0002")

    result = service.join(
        customer_name="Grace",
        customer_phone="555-0199",
        party_size=4,
        date=TOMORROW,
        time="19:00",
    )

    assert result.position == 3
    assert result.estimated_wait_time == 15
    assert result.entry.status == WaitlistStatus.WAITING
    assert result.entry.estimated_wait_time == 15


def test_join_rejects_past_slot(waitlist_components):
    service, _, _ = waitlist_components
    with pytest.raises(ValueError, match="future"):
        service.join(
            customer_name="Grace",
            customer_phone="555-0199",
            party_size=2,
            date=NOW.date(),
            time="11:30",
        )


def test_join_rejects_time_outside_business_hours(waitlist_components):
    service, _, _ = waitlist_components
    with pytest.raises(ValueError, match="business hours"):
        service.join(
            customer_name="Grace",
            customer_phone="555-0199",
            party_size=2,
            date=TOMORROW,
            time="23:30",
        )


def test_join_rejects_closed_day(waitlist_components):
    service, repository, _ = waitlist_components
    del repository.hours[weekday_index(TOMORROW)]
    with pytest.raises(ValueError, match="not available"):
        service.join(
            customer_name="Grace",
            customer_phone="555-0199",
            party_size=2,
            date=TOMORROW,
            time="19:00",
        )


def test_join_rejects_malformed_time(waitlist_components):
    service, _, _ = waitlist_components
    with pytest.raises(ValueError, match="HH:MM"):
        service.join(
            customer_name="Grace",
            customer_phone="555-0199",
            party_size=2,
            date=TOMORROW,
            time="7pm",
        )


def test_customer_update_without_phone_is_unauthenticated(waitlist_components):
    service, repository, _ = waitlist_components
    entry = repository.add()

    with pytest.raises(WaitlistAuthenticationError):
        service.update_entry(entry.entry_id, WaitlistChanges(party_size=6), is_staff=False)

    assert repository.entries[entry.entry_id] == entry


def test_customer_update_with_wrong_phone_leaves_entry_unchanged(waitlist_components):
    service, repository, _ = waitlist_components
    entry = repository.add()

    with pytest.raises(WaitlistAuthorizationError):
        service.update_entry(
            entry.entry_id,
            WaitlistChanges(party_size=6),
            is_staff=False,
            phone="555-9999",
        )

    assert repository.entries[entry.entry_id] == entry
    assert repository.reservations == []


def test_customer_update_ignores_staff_only_fields(waitlist_components):
    service, repository, _ = waitlist_components
    entry = repository.add()

    result = service.update_entry(
        entry.entry_id,
        WaitlistChanges(party_size=3, status=WaitlistStatus.SEATED, customer_phone="555-7777"),
        is_staff=False,
        phone=" 555-0100 ",
    )

    assert result.entry.party_size == 3
    assert result.entry.status == WaitlistStatus.WAITING
    assert result.entry.customer_phone == "555-0100"
    assert result.reservation is None
    assert repository.reservations == []


def test_staff_seating_creates_exactly_one_reservation(waitlist_components):
    service, repository, _ = waitlist_components
    entry = repository.add(special_requests="window seat")

    result = service.update_entry(
        entry.entry_id,
        WaitlistChanges(status=WaitlistStatus.SEATED, party_size=5),
        is_staff=True,
    )

    assert result.promoted
    assert result.entry.status == WaitlistStatus.SEATED
    assert repository.entries[entry.entry_id].status == WaitlistStatus.SEATED
    assert len(repository.reservations) == 1
    reservation = repository.reservations[0]
    assert reservation.name == entry.customer_name
    assert reservation.phone_number == entry.customer_phone
    assert reservation.email == entry.customer_email
    assert reservation.party_size == 5
    assert reservation.date == entry.date
    assert reservation.time == entry.time
    assert reservation.special_instructions == "window seat"
    assert reservation.source_waitlist_entry_id == entry.entry_id


def test_seating_an_already_seated_entry_does_not_promote_again(waitlist_components):
    service, repository, _ = waitlist_components
    entry = repository.add()
    service.update_entry(entry.entry_id, WaitlistChanges(status=WaitlistStatus.SEATED), is_staff=True)

    result = service.update_entry(
        entry.entry_id,
        WaitlistChanges(status=WaitlistStatus.SEATED, special_requests="high chair"),
        is_staff=True,
    )

    assert not result.promoted
    assert result.entry.special_requests == "high chair"
    assert len(repository.reservations) == 1


def test_concurrent_promotion_is_reported_as_conflict(waitlist_components):
    service, repository, _ = waitlist_components
    entry = repository.add()

    # Another request seats the entry after this one read it as waiting
    original_get = repository.get_entry

    def stale_get(entry_id: int):
        current = original_get(entry_id)
        repository.entries[entry_id] = current.model_copy(update={"status": WaitlistStatus.SEATED})
        return current

    repository.get_entry = stale_get

    with pytest.raises(WaitlistConflictError):
        service.update_entry(entry.entry_id, WaitlistChanges(status=WaitlistStatus.SEATED), is_staff=True)

    assert repository.reservations == []


def test_failed_reservation_insert_leaves_entry_waiting(waitlist_components):
    service, repository, _ = waitlist_components
    entry = repository.add()
    repository.fail_reservation_insert = True

    with pytest.raises(RuntimeError):
        service.update_entry(entry.entry_id, WaitlistChanges(status=WaitlistStatus.SEATED), is_staff=True)

    assert repository.entries[entry.entry_id].status == WaitlistStatus.WAITING
    assert repository.reservations == []


def test_phone_authorized_get_returns_only_that_entry(waitlist_components):
    service, repository, _ = waitlist_components
    mine = repository.add(customer_phone="555-0100")
    repository.add(customer_phone="555-0200")

    entry = service.get_entry(mine.entry_id, is_staff=False, phone="555-0100")

    assert entry == mine


def test_get_missing_entry_raises_lookup_error(waitlist_components):
    service, _, _ = waitlist_components
    with pytest.raises(LookupError):
        service.get_entry(404, is_staff=True)


def test_get_with_mismatched_phone_is_forbidden(waitlist_components):
    service, repository, _ = waitlist_components
    entry = repository.add(customer_phone="555-0100")

    with pytest.raises(WaitlistAuthorizationError):
        service.get_entry(entry.entry_id, is_staff=False, phone="555-0200")


def test_check_by_phone_reports_positions(waitlist_components):
    service, repository, _ = waitlist_components
    repository.add(customer_phone="555-0001")
    mine = repository.add(customer_phone="555-0100")
    repository.add(customer_phone="555-0002")

    positions = service.check_by_phone("555-0100")

    assert [(item.entry.entry_id, item.position) for item in positions] == [(mine.entry_id, 2)]


def test_check_by_phone_without_entries_raises_lookup_error(waitlist_components):
    service, _, _ = waitlist_components
    with pytest.raises(LookupError):
        service.check_by_phone("555-0100")


def test_customer_can_delete_own_entry(waitlist_components):
    service, repository, _ = waitlist_components
    entry = repository.add()

    service.delete_entry(entry.entry_id, is_staff=False, phone="555-0100")

    assert entry.entry_id not in repository.entries


def test_notify_marks_entry_and_calls_notifier(waitlist_components):
    service, repository, notifier = waitlist_components
    repository.add(customer_phone="555-0001")
    entry = repository.add()

    result = service.notify_entry(entry.entry_id)

    assert result.entry.notified is True
    assert result.position == 2
    assert notifier.notified == [(entry.entry_id, 2)]


def test_notify_rejects_seated_entry(waitlist_components):
    service, repository, notifier = waitlist_components
    entry = repository.add(status=WaitlistStatus.SEATED)

    with pytest.raises(ValueError):
        service.notify_entry(entry.entry_id)
    assert notifier.notified == []
