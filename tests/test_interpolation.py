"""Tests for variable interpolation and condition expressions."""

from __future__ import annotations

from typing import Any

import pytest

from litestar_continuations.core.interpolation import (
    compile_condition,
    evaluate_condition,
    interpolate,
    lookup,
    reference_roots,
)
from litestar_continuations.exceptions import ExpressionError, InterpolationError

SCOPE: dict[str, Any] = {
    "params": {"term": "foo", "mode": "fix"},
    "search": {"matches": [{"file": "a.py", "line": 3}, {"file": "b.py", "line": 7}], "count": 2, "empty": []},
    "item": "b.py",
}


@pytest.mark.unit
class TestLookup:
    """Tests for resolving reference paths."""

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("params.term", "foo"),
            ("search.count", 2),
            ("search.matches[0].file", "a.py"),
            ("search.matches[-1].line", 7),
            ("search.matches.length", 2),
            ("params.length", 2),
            ("item", "b.py"),
        ],
    )
    def test_accessors(self, path: str, expected: Any) -> None:
        """Field projection, indexing and length all resolve."""
        assert lookup(path, SCOPE) == expected

    @pytest.mark.parametrize(
        ("path", "message"),
        [
            ("missing.field", "Unknown reference 'missing'"),
            ("search.nothing", "Field 'nothing' not found"),
            ("search.matches[5]", "out of range"),
            ("search.count[0]", "Cannot index int"),
            ("params.term[0]", "Cannot index str"),
            ("search..count", "Invalid accessor"),
            ("1search", "Invalid reference"),
        ],
    )
    def test_unresolvable_paths(self, path: str, message: str) -> None:
        """Broken references raise InterpolationError naming the problem."""
        with pytest.raises(InterpolationError, match=message):
            lookup(path, SCOPE)


@pytest.mark.unit
class TestInterpolate:
    """Tests for template substitution."""

    def test_whole_reference_keeps_type(self) -> None:
        """A string that is exactly one reference evaluates to the value itself."""
        assert interpolate("${search.matches}", SCOPE) == SCOPE["search"]["matches"]
        assert interpolate("${ search.count }", SCOPE) == 2

    def test_embedded_references_are_rendered(self) -> None:
        """References inside longer strings are rendered as text."""
        assert interpolate("Found ${search.count} for ${params.term}", SCOPE) == "Found 2 for foo"
        assert interpolate("empty=${search.empty}", SCOPE) == "empty=[]"

    def test_nested_structures(self) -> None:
        """Mappings and lists are processed recursively."""
        template = {"file": "${search.matches[0].file}", "tags": ["${params.mode}", 3], "fixed": True}

        assert interpolate(template, SCOPE) == {"file": "a.py", "tags": ["fix", 3], "fixed": True}

    def test_template_is_not_modified(self) -> None:
        """Interpolation never rewrites the stored template."""
        template = {"term": "${params.term}"}
        interpolate(template, SCOPE)

        assert template == {"term": "${params.term}"}

    def test_non_strings_pass_through(self) -> None:
        """Numbers and None are returned unchanged."""
        assert interpolate(5, SCOPE) == 5
        assert interpolate(None, SCOPE) is None

    def test_reference_roots(self) -> None:
        """Root names are collected from nested templates."""
        template = {"a": "${search.count} ${params.term}", "b": ["${item}"], "c": 1}

        assert reference_roots(template) == {"search", "params", "item"}


@pytest.mark.unit
class TestConditions:
    """Tests for boolean condition expressions."""

    @pytest.mark.parametrize(
        ("expression", "expected"),
        [
            ("${search.count} > 0", True),
            ("${search.count} == 0", False),
            ('${params.mode} == "fix" and ${search.count} >= 2', True),
            ("${search.empty.length} > 0 or ${search.count} < 1", False),
            ("not ${search.empty}", True),
            ('"a.py" in ["a.py", "b.py"]', True),
            ("${item} not in ['a.py']", True),
            ("0 < ${search.count} < 3", True),
            ("true", True),
            ("${params.term} != null", True),
        ],
    )
    def test_evaluate(self, expression: str, expected: bool) -> None:
        """Comparisons, boolean operators and literals evaluate as expected."""
        assert evaluate_condition(expression, SCOPE) is expected

    @pytest.mark.parametrize(
        "expression",
        [
            "",
            "${search.count} >",
            "__import__('os')",
            "count > 0",
            "${search.count} + 1 > 0",
            "[x for x in [1]]",
        ],
    )
    def test_rejected_expressions(self, expression: str) -> None:
        """Empty, unparsable and unsupported expressions are rejected up front."""
        with pytest.raises(ExpressionError):
            compile_condition(expression)

    def test_compile_collects_paths(self) -> None:
        """Reference paths are returned in order of appearance."""
        _, paths = compile_condition("${a.b} > ${c[0]}")

        assert paths == ["a.b", "c[0]"]

    def test_incomparable_operands(self) -> None:
        """Type errors during comparison surface as ExpressionError."""
        with pytest.raises(ExpressionError, match="Cannot evaluate"):
            evaluate_condition("${params.term} > 1", SCOPE)

    @pytest.mark.parametrize("expression", ["__ref5 == 1", "__refx > 0", "${search.count} > __ref0"])
    def test_hand_written_placeholder_names(self, expression: str) -> None:
        """Only placeholders generated for ${...} references are accepted as names."""
        with pytest.raises(ExpressionError, match="Unknown name"):
            evaluate_condition(expression, SCOPE)

    def test_reference_text_inside_expression(self) -> None:
        """A reference path containing the placeholder prefix still resolves."""
        assert evaluate_condition("${__ref.count} == 1", {"__ref": {"count": 1}}) is True

    @pytest.mark.parametrize(
        ("expression", "expected"),
        [
            ('${s.first} != null and ${s.first.file} == "x"', False),
            ('${s.first} == null or ${s.first.file} == "x"', True),
        ],
    )
    def test_boolean_operators_guard_references(self, expression: str, expected: bool) -> None:
        """References behind a short-circuited and/or are never resolved."""
        assert evaluate_condition(expression, {"s": {"first": None}}) is expected

    def test_unguarded_missing_field(self) -> None:
        """A reference that is actually evaluated must still resolve."""
        with pytest.raises(InterpolationError):
            evaluate_condition('${s.first.file} == "x"', {"s": {"first": None}})
