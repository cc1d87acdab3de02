"""
SQL building helpers.

Two separate mechanisms live here and must not be confused:

* ``compile_template`` does raw text substitution of ``{{name}}`` markers.
  It is only for trusted SQL fragments written by the application
  (optional clauses, column lists). It performs no escaping at all.
* ``bind_template`` turns literal fragments and values into a ``$1, $2, ...``
  query. Values never become part of the SQL text.
"""

from __future__ import annotations

import re
import warnings
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, TypeAlias

from pooled_sql.errors import TemplateExpansionIncomplete, UndefinedTemplateMarker
from pooled_sql.logger import get_logger

MAX_SUBSTITUTION_PASSES: int = 5

MARKER_PATTERN = re.compile(r'{{([\s\S]+?)}}')

SubstitutionContext: TypeAlias = Mapping[str, object]


@dataclass(frozen=True, slots=True)
class QueryDescriptor:
    """SQL text plus the values bound to its positional placeholders."""

    query: str
    values: tuple[Any, ...] = field(default=())

    def __post_init__(self) -> None:
        # Списки от вызывающего кода приводим к кортежу
        if not isinstance(self.values, tuple):
            object.__setattr__(self, 'values', tuple(self.values))


def compile_template(
    descriptor: QueryDescriptor,
    context: SubstitutionContext,
) -> QueryDescriptor:
    """
    Expand ``{{name}}`` markers in ``descriptor.query`` from ``context``.

    Substituted text may itself contain markers, so expansion is repeated
    until no ``{{`` is left or ``MAX_SUBSTITUTION_PASSES`` passes were made.
    Hitting the bound is not an error: the remaining markers stay in the
    query verbatim and a ``TemplateExpansionIncomplete`` warning is issued.
    ``values`` are never touched.

    Args:
        descriptor: Query to expand.
        context: Marker name to trusted SQL text. ``None`` renders as ''.

    Returns:
        A new descriptor with the expanded query.

    Raises:
        UndefinedTemplateMarker: A marker name is missing from ``context``.

    Example:
        >>> compile_template(QueryDescriptor('SELECT {{cols}} FROM t'), {'cols': 'a, b'}).query
        'SELECT a, b FROM t'
    """
    query = descriptor.query
    passes = 0
    while passes < MAX_SUBSTITUTION_PASSES and '{{' in query:
        query = MARKER_PATTERN.sub(lambda match: _render_marker(match, context), query)
        passes += 1

    if MARKER_PATTERN.search(query):
        logger = get_logger('template')
        logger.warning(
            'Template markers left after %d passes, query sent as is: %s',
            MAX_SUBSTITUTION_PASSES,
            query,
        )
        warnings.warn(
            f'Template markers left after {MAX_SUBSTITUTION_PASSES} passes',
            TemplateExpansionIncomplete,
            stacklevel=2,
        )

    if query == descriptor.query:
        return descriptor
    return replace(descriptor, query=query)


def _render_marker(match: re.Match[str], context: SubstitutionContext) -> str:
    name = match.group(1).strip()
    if name not in context:
        raise UndefinedTemplateMarker(name)
    value = context[name]
    return '' if value is None else str(value)


def bind_template(fragments: Sequence[str], *values: Any) -> QueryDescriptor:
    """
    Build a ``$n`` placeholder query from literal fragments and values.

    ``fragments`` interleave with ``values`` the way a tagged template does:
    ``fragments[0] $1 fragments[1] $2 ... fragments[n]``.

    Args:
        fragments: Literal SQL pieces, one more than ``values``
            (or exactly as many, with an empty trailing piece).
        *values: Values to bind, in placeholder order.

    Returns:
        Query descriptor with ``values`` in the given order.

    Raises:
        ValueError: Fewer fragments than values, or more than one extra.

    Example:
        >>> bind_template(['SELECT * FROM t WHERE a=', ' AND b='], 1, 'x')
        QueryDescriptor(query='SELECT * FROM t WHERE a=$1 AND b=$2', values=(1, 'x'))
    """
    if isinstance(fragments, str):
        raise TypeError('fragments must be a sequence of strings, not a single string')
    if not len(values) <= len(fragments) <= len(values) + 1:
        raise ValueError(
            f'{len(values)} values need {len(values)} or {len(values) + 1} fragments, '
            f'got {len(fragments)}'
        )

    parts: list[str] = []
    for index in range(len(values)):
        parts.append(f'{fragments[index]}${index + 1}')
    if len(fragments) > len(values):
        parts.append(fragments[len(values)])

    return QueryDescriptor(query=''.join(parts), values=values)
