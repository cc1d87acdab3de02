"""Конфигурация pytest: фейковые пул и драйвер для тестов без БД."""

from __future__ import annotations

import asyncio
import itertools
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

# Пакет лежит в src/
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / 'src'))

from pooled_sql.driver import DriverResult  # noqa: E402
from pooled_sql.errors import LeaseError  # noqa: E402
from pooled_sql.pool import Lease  # noqa: E402


class FakeConnection:
    """Physical connection stand-in that remembers what ran on it."""

    _ids = itertools.count(1)

    def __init__(self) -> None:
        self.id = next(self._ids)
        self.statements: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def __repr__(self) -> str:
        return f'FakeConnection({self.id})'


class FakePool:
    """Pool that counts leases and records every release."""

    def __init__(self) -> None:
        self.idle: list[FakeConnection] = []
        self.active = 0
        self.leases_taken = 0
        self.releases: list[tuple[FakeConnection, BaseException | None]] = []
        self.discarded: list[FakeConnection] = []
        self.lease_error: Exception | None = None

    async def lease(self) -> Lease:
        await asyncio.sleep(0)
        if self.lease_error is not None:
            raise LeaseError('pool exhausted', self.lease_error)

        connection = self.idle.pop() if self.idle else FakeConnection()
        self.active += 1
        self.leases_taken += 1

        async def release(error: BaseException | None) -> None:
            self.active -= 1
            self.releases.append((connection, error))
            if error is None:
                self.idle.append(connection)
            else:
                self.discarded.append(connection)

        return Lease(connection, release)

    def releases_of(self, connection: FakeConnection) -> list[BaseException | None]:
        return [error for conn, error in self.releases if conn is connection]


class FakeServerCursor:
    def __init__(self, connection: FakeConnection, sql: str, values: Sequence[Any] | None):
        self.connection = connection
        self.sql = sql
        self.values = values
        self.fetch_sizes: list[int] = []
        self.closed = False


class FakeDriver:
    """
    Driver that never touches a database.

    ``results`` maps SQL text to a ``DriverResult``, ``failures`` maps SQL
    text to the exception to raise. ``batches`` is what the next cursor
    will hand out, one item per fetch; an exception item is raised.
    """

    def __init__(self, delay: float = 0) -> None:
        self.delay = delay
        self.results: dict[str, DriverResult] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[FakeConnection, str, tuple[Any, ...]]] = []
        self.batches: list[list[Any] | Exception] = []
        self.cursors: list[FakeServerCursor] = []
        self.open_error: Exception | None = None
        self.close_error: Exception | None = None

    async def execute(
        self,
        connection: FakeConnection,
        sql: str,
        values: Sequence[Any] | None = None,
    ) -> DriverResult:
        connection.in_flight += 1
        connection.max_in_flight = max(connection.max_in_flight, connection.in_flight)
        try:
            self.calls.append((connection, sql, tuple(values or ())))
            connection.statements.append(sql)
            await asyncio.sleep(self.delay)
            if sql in self.failures:
                raise self.failures[sql]
            return self.results.get(sql, DriverResult(row_count=0, rows=[], status='OK'))
        finally:
            connection.in_flight -= 1

    async def open_cursor(
        self,
        connection: FakeConnection,
        sql: str,
        values: Sequence[Any] | None = None,
    ) -> FakeServerCursor:
        await asyncio.sleep(0)
        if self.open_error is not None:
            raise self.open_error
        connection.statements.append(f'DECLARE {sql}')
        cursor = FakeServerCursor(connection, sql, values)
        self.cursors.append(cursor)
        return cursor

    async def fetch(self, cursor: FakeServerCursor, size: int) -> list[Any]:
        await asyncio.sleep(0)
        cursor.fetch_sizes.append(size)
        batch = self.batches.pop(0) if self.batches else []
        if isinstance(batch, Exception):
            raise batch
        return batch

    async def close_cursor(self, cursor: FakeServerCursor) -> None:
        await asyncio.sleep(0)
        if self.close_error is not None:
            raise self.close_error
        cursor.closed = True
        cursor.connection.statements.append('CLOSE')


class FakeSqlError(Exception):
    """Driver-level error carrying a SQLSTATE, like psycopg errors do."""

    def __init__(self, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate


@pytest.fixture
def pool() -> FakePool:
    return FakePool()


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def client(pool: FakePool, driver: FakeDriver):
    from pooled_sql.client import PooledSqlClient

    return PooledSqlClient(pool, driver)


@pytest.fixture
def reset_environment(monkeypatch):
    """Очищает переменные окружения, кроме критичных, на время теста."""
    import os

    critical_vars = ['PATH', 'HOME', 'USER', 'PYTHONPATH']
    for key in list(os.environ.keys()):
        if key not in critical_vars:
            monkeypatch.delenv(key, raising=False)
    yield
