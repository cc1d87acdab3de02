"""
Connection pool adapter.

The rest of the package only relies on ``ConnectionPool.lease()``, which
hands out a ``Lease``: a connection plus the callback returning it.
``PsycopgPool`` implements that over ``psycopg_pool.AsyncConnectionPool``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias

from psycopg import AsyncConnection
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from pooled_sql.errors import LeaseError, ProtocolMisuseError
from pooled_sql.logger import get_logger, log_execution_time

if TYPE_CHECKING:
    from pooled_sql.env_config import Settings

ReleaseCallback: TypeAlias = Callable[[BaseException | None], Awaitable[None]]


class Lease:
    """
    Temporary exclusive right to use one pooled connection.

    ``release`` must be awaited exactly once. Passing an error asks the
    pool to discard the connection instead of recycling it.
    """

    __slots__ = ('connection', '_release', '_released')

    def __init__(self, connection: Any, release: ReleaseCallback):
        self.connection = connection
        self._release = release
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def release(self, error: BaseException | None = None) -> None:
        if self._released:
            raise ProtocolMisuseError('Lease already released')
        self._released = True
        await self._release(error)


class ConnectionPool(Protocol):
    """Anything able to lease connections."""

    async def lease(self) -> Lease:
        """Return a leased connection. Raises ``LeaseError`` on failure."""
        ...


class PsycopgPool:
    """``ConnectionPool`` backed by a psycopg ``AsyncConnectionPool``."""

    def __init__(self, pool: AsyncConnectionPool):
        self._pool = pool
        self._logger = get_logger('pool')

    @property
    def raw(self) -> AsyncConnectionPool:
        return self._pool

    async def lease(self) -> Lease:
        try:
            connection = await self._pool.getconn()
        except Exception as e:
            self._logger.error('Не удалось получить подключение из пула %r: %s', self._pool.name, e)
            message = f'Could not lease a connection from pool {self._pool.name!r}: {e}'
            raise LeaseError(message, e) from e

        async def release(error: BaseException | None) -> None:
            if error is not None:
                # Закрытое подключение пул выбрасывает, а не переиспользует
                self._logger.debug('Discarding connection after error: %s', error)
                try:
                    await connection.close()
                finally:
                    await self._pool.putconn(connection)
                return
            await self._pool.putconn(connection)

        return Lease(connection, release)

    async def close(self) -> None:
        await self._pool.close()


def build_conninfo(settings: Settings) -> str:
    """Build a libpq conninfo string from the configured connection URL."""
    params = settings.connection_params()
    return make_conninfo(
        host=params['host'],
        port=params['port'],
        user=params['user'],
        password=params['password'],
        dbname=params['database'],
    )


def _log_reconnect_failure(pool: AsyncConnectionPool) -> None:
    get_logger('pool').error('Pool %r could not reconnect to the database', pool.name)


@log_execution_time
async def create_pool(settings: Settings) -> PsycopgPool:
    """
    Open a connection pool from configuration.

    Connections run in autocommit mode so that an explicit ``BEGIN`` starts
    a transaction, and return rows as dicts.
    """
    logger = get_logger('pool')
    logger.info(
        'Opening pool %r (min=%d, max=%d) for %s',
        settings.pool_name,
        settings.pool_min_size,
        settings.pool_max_size,
        settings.mask_connection_string(settings.db_connect_uri),
    )
    pool: AsyncConnectionPool = AsyncConnectionPool(
        build_conninfo(settings),
        connection_class=AsyncConnection,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
        timeout=settings.pool_timeout,
        name=settings.pool_name,
        kwargs={'autocommit': True, 'row_factory': dict_row},
        reconnect_failed=_log_reconnect_failure,
        open=False,
    )
    await pool.open(wait=True)
    return PsycopgPool(pool)
