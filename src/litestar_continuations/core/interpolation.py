"""Variable interpolation and condition expressions.

Workflow step fields may reference earlier results with ``${stepId.field}``
templates. References are resolved lazily against the live bindings each time
they are used, never expanded into the stored definition.

Supported accessors:
    - field projection: ``${search.summary.count}``
    - array indexing (negative allowed): ``${search.matches[0].file}``
    - ``length`` on lists, strings and mappings: ``${search.matches.length}``

A string consisting of a single reference evaluates to the referenced value
itself (keeping its type); references embedded in longer strings are rendered
with ``str()`` (``json`` for mappings and lists).

Condition expressions are Python-like boolean expressions over references and
literals: ``${search.count} > 0 and ${params.mode} == "fix"``. Only literals,
comparisons, ``and``/``or``/``not`` and list literals are accepted.
"""

from __future__ import annotations

import ast
import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

from litestar_continuations.exceptions import ExpressionError, InterpolationError

__all__ = [
    "compile_condition",
    "evaluate_condition",
    "interpolate",
    "lookup",
    "reference_roots",
]

_REFERENCE = re.compile(r"\$\{\s*([^${}]+?)\s*\}")
_ROOT = re.compile(r"[A-Za-z_][\w-]*")
_ACCESSOR = re.compile(r"\.([A-Za-z_][\w-]*)|\[(-?\d+)\]")

_LITERAL_NAMES = {"true": True, "false": False, "null": None, "True": True, "False": False, "None": None}

_COMPARATORS = {
    ast.Eq: lambda left, right: left == right,
    ast.NotEq: lambda left, right: left != right,
    ast.Lt: lambda left, right: left < right,
    ast.LtE: lambda left, right: left <= right,
    ast.Gt: lambda left, right: left > right,
    ast.GtE: lambda left, right: left >= right,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
    ast.Is: lambda left, right: left is right,
    ast.IsNot: lambda left, right: left is not right,
}


def _parse_path(path: str) -> tuple[str, list[str | int]]:
    root_match = _ROOT.match(path)
    if root_match is None:
        msg = f"Invalid reference '${{{path}}}'"
        raise InterpolationError(msg)
    accessors: list[str | int] = []
    position = root_match.end()
    while position < len(path):
        match = _ACCESSOR.match(path, position)
        if match is None:
            msg = f"Invalid accessor in reference '${{{path}}}' at offset {position}"
            raise InterpolationError(msg)
        name, index = match.groups()
        accessors.append(name if name is not None else int(index))
        position = match.end()
    return root_match.group(0), accessors


def lookup(path: str, scope: Mapping[str, Any]) -> Any:
    """Resolve a dotted/indexed reference path against a scope.

    Args:
        path: Reference without the ``${}`` wrapper, e.g. ``search.matches[0]``.
        scope: Mapping of root names to values.

    Returns:
        The referenced value.

    Raises:
        InterpolationError: If any segment of the path cannot be resolved.
    """
    root, accessors = _parse_path(path)
    if root not in scope:
        msg = f"Unknown reference '{root}' in '${{{path}}}'"
        raise InterpolationError(msg)
    value = scope[root]
    for accessor in accessors:
        if isinstance(accessor, int):
            if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
                msg = f"Cannot index {type(value).__name__} in '${{{path}}}'"
                raise InterpolationError(msg)
            try:
                value = value[accessor]
            except IndexError as e:
                msg = f"Index {accessor} out of range in '${{{path}}}'"
                raise InterpolationError(msg) from e
        elif isinstance(value, Mapping) and accessor in value:
            value = value[accessor]
        elif accessor == "length" and isinstance(value, (Sequence, Mapping)):
            value = len(value)
        else:
            msg = f"Field '{accessor}' not found in '${{{path}}}'"
            raise InterpolationError(msg)
    return value


def _render(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (Mapping, list, tuple, bool)) or value is None:
        return json.dumps(value)
    return str(value)


def interpolate(value: Any, scope: Mapping[str, Any]) -> Any:
    """Substitute ``${...}`` references in a value.

    Strings, and strings nested inside mappings and lists, are processed;
    other values are returned unchanged.

    Args:
        value: Template value.
        scope: Mapping of root names (step ids, ``params``, ``item`` ...) to values.

    Returns:
        The value with every reference substituted.

    Raises:
        InterpolationError: If a reference cannot be resolved.
    """
    if isinstance(value, str):
        whole = _REFERENCE.fullmatch(value)
        if whole is not None:
            return lookup(whole.group(1), scope)
        return _REFERENCE.sub(lambda match: _render(lookup(match.group(1), scope)), value)
    if isinstance(value, Mapping):
        return {key: interpolate(item, scope) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate(item, scope) for item in value]
    return value


def reference_roots(value: Any) -> set[str]:
    """Collect the root names referenced anywhere inside a template value."""
    roots: set[str] = set()
    if isinstance(value, str):
        for match in _REFERENCE.finditer(value):
            root = _ROOT.match(match.group(1))
            if root is not None:
                roots.add(root.group(0))
    elif isinstance(value, Mapping):
        for item in value.values():
            roots |= reference_roots(item)
    elif isinstance(value, list):
        for item in value:
            roots |= reference_roots(item)
    return roots


def _placeholder_prefix(expression: str) -> str:
    prefix = "__ref"
    while prefix in expression:
        prefix += "_"
    return prefix


def compile_condition(expression: str) -> tuple[ast.Expression, list[str]]:
    """Parse a condition expression and check it only uses supported syntax.

    Args:
        expression: The condition text.

    Returns:
        The parsed tree and the reference paths, indexed by placeholder number.

    Raises:
        ExpressionError: If the expression is empty, unparsable or uses unsupported syntax.
    """
    paths: list[str] = []
    prefix = _placeholder_prefix(expression)

    def placeholder(match: re.Match[str]) -> str:
        paths.append(match.group(1))
        return f"{prefix}{len(paths) - 1}"

    source = _REFERENCE.sub(placeholder, expression).strip()
    if not source:
        msg = "Empty condition expression"
        raise ExpressionError(msg)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        msg = f"Invalid condition expression '{expression}': {e.msg}"
        raise ExpressionError(msg) from e

    placeholders = {f"{prefix}{index}" for index in range(len(paths))}
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and node.id not in _LITERAL_NAMES and node.id not in placeholders:
            msg = f"Unknown name '{node.id}' in condition '{expression}' (use ${{...}} references)"
            raise ExpressionError(msg)
        if not isinstance(
            node,
            (
                ast.Expression,
                ast.BoolOp,
                ast.And,
                ast.Or,
                ast.UnaryOp,
                ast.Not,
                ast.USub,
                ast.Compare,
                ast.Constant,
                ast.Name,
                ast.Load,
                ast.List,
                ast.Tuple,
                *_COMPARATORS,
            ),
        ):
            msg = f"Unsupported syntax '{type(node).__name__}' in condition '{expression}'"
            raise ExpressionError(msg)
    return tree, paths


def evaluate_condition(expression: str, scope: Mapping[str, Any]) -> bool:
    """Evaluate a boolean condition against the bindings.

    Args:
        expression: The condition text.
        scope: Mapping of root names to values.

    Returns:
        The truth value of the expression.

    Raises:
        ExpressionError: If the expression is invalid or a comparison is not supported for the operand types.
        InterpolationError: If a reference cannot be resolved.
    """
    tree, paths = compile_condition(expression)
    prefix = _placeholder_prefix(expression)

    def evaluate(node: ast.AST) -> Any:
        if isinstance(node, ast.Expression):
            return evaluate(node.body)
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            if node.id in _LITERAL_NAMES:
                return _LITERAL_NAMES[node.id]
            # looked up on use; and/or short-circuit past unresolvable references
            return lookup(paths[int(node.id[len(prefix) :])], scope)
        if isinstance(node, (ast.List, ast.Tuple)):
            return [evaluate(element) for element in node.elts]
        if isinstance(node, ast.UnaryOp):
            operand = evaluate(node.operand)
            return not operand if isinstance(node.op, ast.Not) else -operand
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                return all(evaluate(value) for value in node.values)
            return any(evaluate(value) for value in node.values)
        if isinstance(node, ast.Compare):
            left = evaluate(node.left)
            for operator, comparator in zip(node.ops, node.comparators):
                right = evaluate(comparator)
                if not _COMPARATORS[type(operator)](left, right):
                    return False
                left = right
            return True
        msg = f"Unsupported syntax '{type(node).__name__}'"
        raise ExpressionError(msg)

    try:
        return bool(evaluate(tree))
    except TypeError as e:
        msg = f"Cannot evaluate condition '{expression}': {e}"
        raise ExpressionError(msg) from e
