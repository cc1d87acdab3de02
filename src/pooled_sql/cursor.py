"""
Streaming of large result sets through server-side cursors.

A ``Cursor`` owns one leased connection for its whole life and gives it
back exactly once: when a read returns no rows, when a read fails, or
when the cursor is closed early.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from enum import StrEnum
from types import TracebackType
from typing import Any

from pooled_sql.driver import Driver, Row
from pooled_sql.errors import ProtocolMisuseError, wrap_driver_errors
from pooled_sql.logger import get_logger
from pooled_sql.pool import ConnectionPool, Lease


class CursorState(StrEnum):
    OPEN = 'open'
    EXHAUSTED = 'exhausted'
    FAILED = 'failed'
    CLOSED = 'closed'


class Cursor:
    """
    Pull-based reader over a query's result set.

    The caller decides when to ask for the next batch and how big it is,
    which bounds memory use for result sets of any size. Batches are not
    restartable: once a read returns ``[]`` the stream is over and the
    connection is back in the pool.

    Example:
        >>> async with await client.open_cursor('SELECT * FROM events') as cursor:  # doctest: +SKIP
        ...     async for batch in cursor.iter_batches(500):
        ...         handle(batch)
    """

    def __init__(self, lease: Lease, driver: Driver, driver_cursor: Any, query: str):
        self._lease = lease
        self._driver = driver
        self._driver_cursor = driver_cursor
        self.query = query
        self._state = CursorState.OPEN
        self._lock = asyncio.Lock()
        self._logger = get_logger('cursor')

    @property
    def state(self) -> CursorState:
        return self._state

    @property
    def exhausted(self) -> bool:
        return self._state is CursorState.EXHAUSTED

    @property
    def connection(self) -> Any:
        return self._lease.connection

    async def read(self, batch_size: int) -> list[Row]:
        """
        Fetch up to ``batch_size`` rows.

        Returns:
            The next rows, or ``[]`` once the result set is drained. The
            empty batch is terminal: the lease has been released and any
            further read raises ``ProtocolMisuseError``.

        Raises:
            ValueError: ``batch_size`` is lower than 1.
            ProtocolMisuseError: The cursor is no longer open.
            DriverError: The fetch failed; the lease is released first.
        """
        if batch_size < 1:
            raise ValueError(f'batch_size must be at least 1, got {batch_size}')

        async with self._lock:
            if self._state is not CursorState.OPEN:
                raise ProtocolMisuseError(f'Cannot read from a {self._state} cursor')

            try:
                with wrap_driver_errors(self.query, self._logger):
                    rows = await self._driver.fetch(self._driver_cursor, batch_size)
            except BaseException as e:
                self._state = CursorState.FAILED
                await self._lease.release(e)
                raise

            if rows:
                return list(rows)

            self._state = CursorState.EXHAUSTED
            self._logger.debug('Cursor drained, releasing connection')
            await self._finish()
            return []

    async def iter_batches(self, batch_size: int) -> AsyncIterator[list[Row]]:
        """Yield non-empty batches until the cursor is drained."""
        while rows := await self.read(batch_size):
            yield rows

    async def close(self) -> None:
        """Stop streaming early. Does nothing if the cursor is already done."""
        async with self._lock:
            if self._state is not CursorState.OPEN:
                return
            self._state = CursorState.CLOSED
            await self._finish()

    async def _finish(self) -> None:
        try:
            with wrap_driver_errors(self.query, self._logger):
                await self._driver.close_cursor(self._driver_cursor)
        except BaseException as e:
            await self._lease.release(e)
            raise
        await self._lease.release()

    async def __aenter__(self) -> Cursor:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


async def open_cursor(
    pool: ConnectionPool,
    driver: Driver,
    query: str,
    values: Sequence[Any] | None = None,
) -> Cursor:
    """
    Lease a connection and open a server-side cursor on it.

    If the cursor cannot be opened the lease is released (and the
    connection discarded) before the error propagates.
    """
    logger = get_logger('cursor')
    lease = await pool.lease()
    try:
        with wrap_driver_errors(query, logger):
            driver_cursor = await driver.open_cursor(lease.connection, query, values)
    except BaseException as e:
        await lease.release(e)
        raise
    logger.debug('Cursor opened: %s', query)
    return Cursor(lease, driver, driver_cursor, query)
