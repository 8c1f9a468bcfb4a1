"""Connection and transaction helpers shared by the PostgreSQL repositories."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from psycopg2.extensions import connection as PgConnection

from ..app_context import get_conn


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None) -> Iterator[Tuple[PgConnection, bool]]:
    """Context manager that manages transaction boundaries for optional connections.

    When ``conn`` is supplied the caller owns the transaction and nothing is
    committed here. Otherwise a fresh connection is opened, committed when the
    block succeeds, rolled back when it raises and always closed.
    """

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


__all__ = ["managed_connection"]
