"""
Тесты для модуля template.py: подстановка маркеров и биндинг параметров.
"""

from __future__ import annotations

import warnings

import pytest

from pooled_sql.errors import TemplateExpansionIncomplete, UndefinedTemplateMarker
from pooled_sql.template import (
    MAX_SUBSTITUTION_PASSES,
    QueryDescriptor,
    bind_template,
    compile_template,
)


class TestCompileTemplate:
    def test_substitutes_marker(self) -> None:
        result = compile_template(QueryDescriptor('SELECT {{cols}} FROM t'), {'cols': 'a, b'})
        assert result.query == 'SELECT a, b FROM t'

    def test_nested_markers_expand(self) -> None:
        context = {
            'where': 'WHERE {{cond}}',
            'cond': 'a = $1 AND {{extra}}',
            'extra': 'b IS NOT NULL',
        }
        result = compile_template(QueryDescriptor('SELECT * FROM t {{where}}', (5,)), context)
        assert result.query == 'SELECT * FROM t WHERE a = $1 AND b IS NOT NULL'

    def test_values_are_untouched(self) -> None:
        descriptor = QueryDescriptor('SELECT * FROM t WHERE a = $1 {{order}}', ('{{order}}',))
        result = compile_template(descriptor, {'order': 'ORDER BY a'})
        assert result.values == ('{{order}}',)
        assert result.query == 'SELECT * FROM t WHERE a = $1 ORDER BY a'

    def test_original_descriptor_not_mutated(self) -> None:
        descriptor = QueryDescriptor('SELECT {{cols}} FROM t')
        compile_template(descriptor, {'cols': 'a'})
        assert descriptor.query == 'SELECT {{cols}} FROM t'

    def test_self_referencing_marker_stops_after_bound(self) -> None:
        with pytest.warns(TemplateExpansionIncomplete):
            result = compile_template(QueryDescriptor('SELECT {{loop}} FROM t'), {'loop': '{{loop}}'})
        assert result.query == 'SELECT {{loop}} FROM t'

    def test_growing_expansion_is_bounded(self) -> None:
        with pytest.warns(TemplateExpansionIncomplete):
            result = compile_template(QueryDescriptor('{{x}}'), {'x': 'a{{x}}'})
        assert result.query == 'a' * MAX_SUBSTITUTION_PASSES + '{{x}}'

    def test_whitespace_inside_marker(self) -> None:
        result = compile_template(QueryDescriptor('SELECT {{ cols }} FROM t'), {'cols': 'id'})
        assert result.query == 'SELECT id FROM t'

    def test_none_renders_empty(self) -> None:
        result = compile_template(QueryDescriptor('SELECT * FROM t {{where}}'), {'where': None})
        assert result.query == 'SELECT * FROM t '

    def test_undefined_marker_raises(self) -> None:
        with pytest.raises(UndefinedTemplateMarker) as exc_info:
            compile_template(QueryDescriptor('SELECT {{missing}} FROM t'), {})
        assert exc_info.value.name == 'missing'
        assert isinstance(exc_info.value, KeyError)

    def test_no_markers_returns_same_descriptor(self) -> None:
        descriptor = QueryDescriptor('SELECT 1')
        with warnings.catch_warnings():
            warnings.simplefilter('error')
            assert compile_template(descriptor, {'unused': 'x'}) is descriptor

    def test_unclosed_braces_left_alone(self) -> None:
        with warnings.catch_warnings():
            warnings.simplefilter('error')
            result = compile_template(QueryDescriptor("SELECT '{{' AS s"), {})
        assert result.query == "SELECT '{{' AS s"


class TestBindTemplate:
    def test_numbered_placeholders(self) -> None:
        result = bind_template(['SELECT * FROM t WHERE a=', ' AND b='], 1, 'x')
        assert result == QueryDescriptor('SELECT * FROM t WHERE a=$1 AND b=$2', (1, 'x'))

    def test_trailing_fragment_kept(self) -> None:
        result = bind_template(['SELECT * FROM t WHERE a = ', ' LIMIT 10'], 7)
        assert result.query == 'SELECT * FROM t WHERE a = $1 LIMIT 10'
        assert result.values == (7,)

    def test_value_never_embedded(self) -> None:
        hostile = "'; DROP TABLE users; --"
        result = bind_template(['SELECT * FROM users WHERE name = ', ''], hostile)
        assert hostile not in result.query
        assert result.values == (hostile,)

    def test_no_values(self) -> None:
        result = bind_template(['SELECT 1'])
        assert result == QueryDescriptor('SELECT 1', ())

    def test_as_many_fragments_as_values(self) -> None:
        result = bind_template(['a=', ' b='], 1, 2)
        assert result.query == 'a=$1 b=$2'

    def test_too_few_fragments(self) -> None:
        with pytest.raises(ValueError):
            bind_template(['a='], 1, 2)

    def test_too_many_fragments(self) -> None:
        with pytest.raises(ValueError):
            bind_template(['SELECT * FROM t WHERE a = ', ' AND b = 1', ' AND c = 2'], 7)

    def test_single_string_rejected(self) -> None:
        with pytest.raises(TypeError):
            bind_template('SELECT 1')  # type: ignore[arg-type]

    def test_bound_query_can_be_templated(self) -> None:
        bound = bind_template(['SELECT {{cols}} FROM t WHERE id = ', ''], 3)
        result = compile_template(bound, {'cols': 'id, name'})
        assert result == QueryDescriptor('SELECT id, name FROM t WHERE id = $1', (3,))


def test_descriptor_values_normalized_to_tuple() -> None:
    descriptor = QueryDescriptor('SELECT $1', [1])  # type: ignore[arg-type]
    assert descriptor.values == (1,)
