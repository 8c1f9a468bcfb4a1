"""Persistence layer for waitlist entries and the reservations they become."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from typing import Dict, Iterator, List, Optional, Tuple

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..db import managed_connection
from .models import (
    BusinessHours,
    Reservation,
    ReservationStatus,
    WaitlistChanges,
    WaitlistEntry,
    WaitlistFilters,
    WaitlistStatus,
    WaitlistUpdateResult,
)

# WaitlistChanges field -> waitlist column
_COLUMNS: Dict[str, str] = {
    "customer_name": "name",
    "customer_email": "customer_email",
    "customer_phone": "phone_number",
    "party_size": "party_size",
    "date": "date",
    "time": "time",
    "special_requests": "special_requests",
    "status": "status",
    "estimated_wait_time": "estimated_wait_time",
    "notified": "notified",
}


def _row_to_entry(row: dict) -> WaitlistEntry:
    return WaitlistEntry(
        entry_id=row["id"],
        customer_name=row["name"],
        customer_phone=row["phone_number"],
        customer_email=row.get("customer_email"),
        party_size=int(row["party_size"]),
        date=row["date"],
        time=row["time"],
        special_requests=row.get("special_requests"),
        status=WaitlistStatus(row["status"]),
        estimated_wait_time=int(row.get("estimated_wait_time") or 0),
        notified=bool(row.get("notified")),
        created_at=row["created_at"],
    )


def _row_to_reservation(row: dict) -> Reservation:
    return Reservation(
        reservation_id=row["id"],
        name=row["name"],
        email=row.get("email"),
        phone_number=row["phone_number"],
        party_size=int(row["party_size"]),
        date=row["date"],
        time=row["time"],
        special_instructions=row.get("special_instructions"),
        status=ReservationStatus(row["status"]),
        source_waitlist_entry_id=row.get("source_waitlist_entry_id"),
        created_at=row["created_at"],
    )


def _set_clause(changes: WaitlistChanges) -> Tuple[str, Dict[str, object]]:
    assignments: List[str] = []
    params: Dict[str, object] = {}
    for field, value in changes.as_updates().items():
        column = _COLUMNS[field]
        assignments.append(f"{column} = %({field})s")
        params[field] = value.value if isinstance(value, WaitlistStatus) else value
    assignments.append("updated_at = NOW()")
    return ", ".join(assignments), params


class PostgresWaitlistRepository:
    """Concrete repository persisting waitlist entries in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        with managed_connection(self._conn) as (connection, _managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
            finally:
                cursor.close()

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
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO waitlist (
                    name,
                    customer_email,
                    phone_number,
                    party_size,
                    date,
                    time,
                    special_requests,
                    status,
                    estimated_wait_time
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    customer_name,
                    customer_email,
                    customer_phone,
                    party_size,
                    date,
                    time,
                    special_requests,
                    WaitlistStatus.WAITING.value,
                    estimated_wait_time,
                ),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist waitlist entry")
            return _row_to_entry(row)

    def get_entry(self, entry_id: int) -> Optional[WaitlistEntry]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM waitlist WHERE id = %s", (entry_id,))
            row = cursor.fetchone()
            return _row_to_entry(row) if row else None

    def list_entries(self, filters: WaitlistFilters) -> List[WaitlistEntry]:
        clauses: List[str] = []
        params: List[object] = []
        if filters.date is not None:
            clauses.append("date = %s")
            params.append(filters.date)
        if filters.status is not None:
            clauses.append("status = %s")
            params.append(filters.status.value)
        if filters.search:
            pattern = f"%{filters.search}%"
            clauses.append("(name ILIKE %s OR phone_number ILIKE %s OR customer_email ILIKE %s)")
            params.extend([pattern, pattern, pattern])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT * FROM waitlist {where} ORDER BY date, time, created_at",
                params,
            )
            rows = cursor.fetchall() or []
            return [_row_to_entry(row) for row in rows]

    def list_waiting_by_phone(self, phone: str, *, from_date: date) -> List[WaitlistEntry]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM waitlist
                WHERE phone_number = %s
                  AND status = %s
                  AND date >= %s
                ORDER BY date, time
                """,
                (phone, WaitlistStatus.WAITING.value, from_date),
            )
            rows = cursor.fetchall() or []
            return [_row_to_entry(row) for row in rows]

    def count_waiting(self, *, date: date, time: str, before_entry_id: Optional[int] = None) -> int:
        query = "SELECT COUNT(*) AS count FROM waitlist WHERE date = %s AND time = %s AND status = %s"
        params: List[object] = [date, time, WaitlistStatus.WAITING.value]
        if before_entry_id is not None:
            query += " AND id < %s"
            params.append(before_entry_id)
        with self._cursor() as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
            return int(row["count"]) if row else 0

    def update_entry(self, entry_id: int, changes: WaitlistChanges) -> Optional[WaitlistEntry]:
        assignments, params = _set_clause(changes)
        with self._cursor() as cursor:
            cursor.execute(
                f"UPDATE waitlist SET {assignments} WHERE id = %(entry_id)s RETURNING *",
                {**params, "entry_id": entry_id},
            )
            row = cursor.fetchone()
            return _row_to_entry(row) if row else None

    def promote_to_reservation(
        self, entry_id: int, changes: WaitlistChanges
    ) -> Optional[WaitlistUpdateResult]:
        assignments, params = _set_clause(changes)
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE waitlist
                SET {assignments}
                WHERE id = %(entry_id)s AND status <> %(seated)s
                RETURNING *
                """,
                {**params, "entry_id": entry_id, "seated": WaitlistStatus.SEATED.value},
            )
            row = cursor.fetchone()
            if not row:
                return None
            entry = _row_to_entry(row)

            cursor.execute(
                """
                INSERT INTO reservations (
                    name,
                    email,
                    phone_number,
                    party_size,
                    date,
                    time,
                    special_instructions,
                    status,
                    source_waitlist_entry_id
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    entry.customer_name,
                    entry.customer_email,
                    entry.customer_phone,
                    entry.party_size,
                    entry.date,
                    entry.time,
                    entry.special_requests,
                    ReservationStatus.CONFIRMED.value,
                    entry.entry_id,
                ),
            )
            reservation_row = cursor.fetchone()
            if not reservation_row:
                raise RuntimeError("Failed to persist reservation")
            return WaitlistUpdateResult(entry=entry, reservation=_row_to_reservation(reservation_row))

    def delete_entry(self, entry_id: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM waitlist WHERE id = %s RETURNING id", (entry_id,))
            return cursor.fetchone() is not None

    def get_business_hours(self, day_of_week: int) -> Optional[BusinessHours]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT day_of_week, open_time, close_time
                FROM reservation_settings
                WHERE day_of_week = %s AND is_active = TRUE
                LIMIT 1
                """,
                (day_of_week,),
            )
            row = cursor.fetchone()
            if not row:
                return None
            return BusinessHours(
                day_of_week=row["day_of_week"],
                open_time=row["open_time"],
                close_time=row["close_time"],
            )


__all__ = ["PostgresWaitlistRepository"]
