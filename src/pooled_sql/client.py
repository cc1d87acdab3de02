"""
Logical client over a shared connection pool.

``PooledSqlClient`` routes every statement either to a fresh lease from
the pool (one lease per call, always released) or, once a transaction is
started, to the connection pinned for that transaction.

Example:
    >>> client = PooledSqlClient(pool)  # doctest: +SKIP
    >>> await client.execute('SELECT * FROM users WHERE id = $1', [42])
    >>> async with client.transaction() as tx:
    ...     await tx.execute('UPDATE users SET name = $1 WHERE id = $2', ['Ann', 42])
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from pooled_sql.cursor import Cursor, open_cursor
from pooled_sql.driver import Driver, DriverResult, PsycopgDriver, Row
from pooled_sql.errors import ProtocolMisuseError, wrap_driver_errors
from pooled_sql.logger import get_logger, log_exception
from pooled_sql.pool import ConnectionPool, Lease
from pooled_sql.template import (
    QueryDescriptor,
    SubstitutionContext,
    bind_template,
    compile_template,
)


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Row count and rows of one statement."""

    row_count: int
    rows: list[Row] = field(default_factory=list)

    @classmethod
    def from_driver(cls, result: DriverResult) -> QueryResult:
        return cls(row_count=result.row_count, rows=list(result.rows))


class PooledSqlClient:
    """
    Query, transaction and cursor entry point bound to one pool.

    A client created with ``PooledSqlClient(pool)`` is idle: each
    ``execute`` takes its own lease, so concurrent calls never share a
    connection. ``transaction_start()`` returns a new handle pinned to one
    connection until ``commit()`` or ``rollback()``; calls on that handle
    run on the pinned connection one after another, in the order issued.
    """

    bind_template = staticmethod(bind_template)

    def __init__(self, pool: ConnectionPool, driver: Driver | None = None):
        self._pool = pool
        self._driver: Driver = driver if driver is not None else PsycopgDriver()
        self._lease: Lease | None = None
        self._lock = asyncio.Lock()
        self._logger = get_logger('client')

    @property
    def in_transaction(self) -> bool:
        return self._lease is not None

    @property
    def pinned_connection(self) -> Any:
        return self._lease.connection if self._lease is not None else None

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    async def execute(self, query: str, values: Sequence[Any] | None = None) -> QueryResult:
        """
        Run one statement.

        Inside a transaction the pinned connection is used and left pinned,
        even when the statement fails; deciding to roll back is up to the
        caller. Otherwise a connection is leased for this call only and
        released on every exit path before the result or error is returned.

        Raises:
            LeaseError: No connection could be leased.
            DriverError: The statement failed.
        """
        bound = tuple(values) if values else ()
        if self._lease is not None:
            async with self._lock:
                # Транзакция могла завершиться, пока ждали lock
                if self._lease is not None:
                    return await self._run(self._lease.connection, query, bound)

        lease = await self._pool.lease()
        try:
            return await self._run(lease.connection, query, bound)
        finally:
            await lease.release()

    async def query_template(
        self,
        descriptor: QueryDescriptor,
        context: SubstitutionContext | None = None,
    ) -> QueryResult:
        """Expand trusted ``{{markers}}`` (when ``context`` is given) and execute."""
        if context is not None:
            descriptor = compile_template(descriptor, context)
        return await self.execute(descriptor.query, descriptor.values)

    async def _run(self, connection: Any, query: str, values: tuple[Any, ...]) -> QueryResult:
        with wrap_driver_errors(query, self._logger):
            result = await self._driver.execute(connection, query, values)
        return QueryResult.from_driver(result)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def transaction_start(self) -> PooledSqlClient:
        """
        Lease a connection, issue ``BEGIN`` and return a handle pinned to it.

        Raises:
            ProtocolMisuseError: This handle is already in a transaction.
            LeaseError: No connection could be leased.
            DriverError: ``BEGIN`` failed; the connection was discarded.
        """
        if self.in_transaction:
            raise ProtocolMisuseError('A transaction is already in progress on this handle')

        lease = await self._pool.lease()
        try:
            with wrap_driver_errors('BEGIN', self._logger):
                await self._driver.execute(lease.connection, 'BEGIN')
        except BaseException as e:
            await lease.release(e)
            raise

        handle = PooledSqlClient(self._pool, self._driver)
        handle._lease = lease
        self._logger.debug('Transaction started')
        return handle

    async def commit(self) -> QueryResult:
        """Issue ``COMMIT``, then release the pinned connection."""
        return await self._end_transaction('COMMIT')

    async def rollback(self) -> QueryResult:
        """Issue ``ROLLBACK``, then release the pinned connection."""
        return await self._end_transaction('ROLLBACK')

    async def _end_transaction(self, statement: str) -> QueryResult:
        async with self._lock:
            lease = self._lease
            if lease is None:
                raise ProtocolMisuseError(f'{statement} called on a handle with no transaction')

            error: BaseException | None = None
            try:
                return await self._run(lease.connection, statement, ())
            except BaseException as e:
                error = e
                raise
            finally:
                try:
                    await lease.release(error)
                finally:
                    self._lease = None
                    self._logger.debug('Transaction ended with %s', statement)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PooledSqlClient]:
        """
        Run a block inside a transaction.

        Commits when the block exits normally, rolls back when it raises.
        The block's own exception always wins over a failed rollback.
        """
        handle = await self.transaction_start()
        try:
            yield handle
        except BaseException:
            if handle.in_transaction:
                try:
                    await handle.rollback()
                except Exception:
                    log_exception(self._logger, 'Rollback after a failed transaction block failed')
            raise
        if handle.in_transaction:
            await handle.commit()

    # ------------------------------------------------------------------
    # Cursors
    # ------------------------------------------------------------------

    async def open_cursor(self, query: str, values: Sequence[Any] | None = None) -> Cursor:
        """Open a streaming cursor on its own lease, never on a pinned connection."""
        return await open_cursor(self._pool, self._driver, query, tuple(values) if values else ())

    async def open_cursor_template(
        self,
        descriptor: QueryDescriptor,
        context: SubstitutionContext | None = None,
    ) -> Cursor:
        """Expand trusted ``{{markers}}`` (when ``context`` is given) and open a cursor."""
        if context is not None:
            descriptor = compile_template(descriptor, context)
        return await self.open_cursor(descriptor.query, descriptor.values)
