"""
Statement execution on a single connection.

``PsycopgDriver`` uses psycopg raw cursors, so queries keep PostgreSQL's
native ``$1, $2, ...`` placeholders as produced by ``bind_template``.
"""

from __future__ import annotations

import itertools
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeAlias

from psycopg import AsyncConnection, AsyncRawCursor, AsyncRawServerCursor

Row: TypeAlias = Any


@dataclass(frozen=True, slots=True)
class DriverResult:
    """Everything the driver reports about one statement."""

    row_count: int
    rows: list[Row] = field(default_factory=list)
    status: str | None = None


class Driver(Protocol):
    """Database operations on an already leased connection."""

    async def execute(
        self, connection: Any, sql: str, values: Sequence[Any] | None = None
    ) -> DriverResult:
        """Run one statement and collect its rows."""
        ...

    async def open_cursor(
        self, connection: Any, sql: str, values: Sequence[Any] | None = None
    ) -> Any:
        """Open a server-side cursor over ``sql``."""
        ...

    async def fetch(self, cursor: Any, size: int) -> list[Row]:
        """Fetch up to ``size`` rows. An empty list means no more rows."""
        ...

    async def close_cursor(self, cursor: Any) -> None:
        """Close the cursor and end whatever it opened on the connection."""
        ...


class PsycopgDriver:
    """``Driver`` for psycopg 3 async connections."""

    def __init__(self, cursor_prefix: str = 'pooled_sql_cursor'):
        self._cursor_prefix = cursor_prefix
        self._cursor_ids = itertools.count(1)

    async def execute(
        self,
        connection: AsyncConnection,
        sql: str,
        values: Sequence[Any] | None = None,
    ) -> DriverResult:
        async with AsyncRawCursor(connection) as cursor:
            await cursor.execute(sql, _params(values))
            # DDL/DML без RETURNING не возвращают result set
            rows = await cursor.fetchall() if cursor.description is not None else []
            return DriverResult(row_count=cursor.rowcount, rows=rows, status=cursor.statusmessage)

    async def open_cursor(
        self,
        connection: AsyncConnection,
        sql: str,
        values: Sequence[Any] | None = None,
    ) -> AsyncRawServerCursor:
        """
        Declare a server-side cursor inside its own transaction block.

        Pool connections are in autocommit mode, where ``DECLARE`` is not
        allowed, so a ``BEGIN`` is issued first. ``close_cursor`` ends it.
        """
        await connection.execute('BEGIN')
        cursor = AsyncRawServerCursor(connection, f'{self._cursor_prefix}_{next(self._cursor_ids)}')
        await cursor.execute(sql, _params(values))
        return cursor

    async def fetch(self, cursor: AsyncRawServerCursor, size: int) -> list[Row]:
        return await cursor.fetchmany(size)

    async def close_cursor(self, cursor: AsyncRawServerCursor) -> None:
        await cursor.close()
        # Курсор только читает, фиксировать нечего
        await cursor.connection.execute('ROLLBACK')


def _params(values: Sequence[Any] | None) -> Sequence[Any] | None:
    if not values:
        return None
    return tuple(values)
