"""
Pooled SQL.

Transaction-aware access layer over a PostgreSQL connection pool:
pooled and pinned execution, safe parameter binding and streaming
cursors that always give their connection back.
"""

from __future__ import annotations

from pooled_sql.client import PooledSqlClient, QueryResult
from pooled_sql.cursor import Cursor
from pooled_sql.errors import (
    DriverError,
    LeaseError,
    PooledSqlError,
    ProtocolMisuseError,
    TemplateExpansionIncomplete,
    UndefinedTemplateMarker,
)
from pooled_sql.template import QueryDescriptor, bind_template, compile_template

__version__ = '1.0.0'

__all__ = [
    'Cursor',
    'DriverError',
    'LeaseError',
    'PooledSqlClient',
    'PooledSqlError',
    'ProtocolMisuseError',
    'QueryDescriptor',
    'QueryResult',
    'TemplateExpansionIncomplete',
    'UndefinedTemplateMarker',
    'bind_template',
    'compile_template',
]
