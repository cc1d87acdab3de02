# errors.py
"""Error taxonomy of the pooled SQL access layer."""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager


class PooledSqlError(Exception):
    """Base error. Keeps the underlying exception, if any."""

    def __init__(self, message: str, original_error: BaseException | None = None):
        super().__init__(message)
        self.original_error = original_error


class LeaseError(PooledSqlError):
    """The pool could not hand out a connection."""


class DriverError(PooledSqlError):
    """A statement or cursor operation failed on the database side."""

    def __init__(
        self,
        message: str,
        original_error: BaseException | None = None,
        *,
        query: str | None = None,
    ):
        super().__init__(message, original_error)
        self.query = query
        self.sqlstate: str | None = getattr(original_error, 'sqlstate', None)


class ProtocolMisuseError(PooledSqlError):
    """A handle, lease or cursor was used outside its allowed state."""


class UndefinedTemplateMarker(PooledSqlError, KeyError):
    """A ``{{name}}`` marker has no entry in the substitution context."""

    def __init__(self, name: str):
        super().__init__(f'Template marker {{{{{name}}}}} is not defined in the context')
        self.name = name

    def __str__(self) -> str:
        # KeyError would otherwise render the message with quotes
        return self.args[0]


class TemplateExpansionIncomplete(UserWarning):
    """Markers were still present after the last substitution pass."""


def handle_driver_error(error: BaseException, query: str | None) -> DriverError:
    """
    Wrap a driver exception into ``DriverError`` with the failing query.

    Args:
        error: Exception raised by the driver.
        query: SQL text that was being executed.

    Returns:
        ``error`` itself when it already is a ``DriverError``,
        otherwise a new ``DriverError`` pointing at it.
    """
    if isinstance(error, DriverError):
        return error

    sqlstate = getattr(error, 'sqlstate', None)
    prefix = f'Query failed [{sqlstate}]' if sqlstate else 'Query failed'
    return DriverError(f'{prefix}: {error} (query: {_shorten(query)})', error, query=query)


@contextmanager
def wrap_driver_errors(query: str | None, logger: logging.Logger) -> Generator[None]:
    """
    Context manager turning driver exceptions into ``DriverError``.

    The failure is logged with the query that caused it and re-raised;
    the original exception stays available as ``__cause__``.

    Example:
        >>> with wrap_driver_errors(sql, logger):  # doctest: +SKIP
        ...     await driver.execute(connection, sql, values)
    """
    try:
        yield
    except Exception as e:
        error = handle_driver_error(e, query)
        logger.error('%s', error)
        if error is e:
            raise
        raise error from e


def _shorten(query: str | None, limit: int = 200) -> str:
    if query is None:
        return '<none>'
    flat = ' '.join(query.split())
    return flat if len(flat) <= limit else f'{flat[: limit - 3]}...'
