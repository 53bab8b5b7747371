"""Compilation of filter expressions into build predicates.

A filter is type-checked as it is compiled, so every error a filter can
contain (unknown fields, mismatched operand types, bad regular expressions)
surfaces from make_predicate() at set-up time. Applying a compiled filter to
a Build never raises.

Example:
    ```python
    predicate = make_predicate(
        'build.status in [Build.Status.SUCCESS, Build.Status.FAILURE] && '
        'build.substitutions["BRANCH_NAME"] == "main"'
    )
    if predicate.apply(build):
        ...
    ```
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from build_notifiers.errors import FilterSyntaxError
from build_notifiers.filters.lexer import TokenKind
from build_notifiers.filters.parser import (
    Binary,
    Call,
    Index,
    ListLiteral,
    Literal,
    Name,
    Node,
    Select,
    Unary,
    parse,
)
from build_notifiers.models import Build, BuildStatus

logger = logging.getLogger(__name__)

Evaluator = Callable[[Build], Any]


class ValueType(Enum):
    """Static types of filter expressions."""

    BOOL = "bool"
    STRING = "string"
    LIST = "list(string)"
    MAP = "map(string, string)"


@dataclass(frozen=True)
class _Typed:
    type: ValueType
    evaluate: Evaluator


BUILD_FIELDS: dict[str, _Typed] = {
    "id": _Typed(ValueType.STRING, lambda b: b.id),
    "project_id": _Typed(ValueType.STRING, lambda b: b.project_id),
    "status": _Typed(ValueType.STRING, lambda b: b.status.value),
    "build_trigger_id": _Typed(ValueType.STRING, lambda b: b.build_trigger_id),
    "log_url": _Typed(ValueType.STRING, lambda b: b.log_url),
    "substitutions": _Typed(ValueType.MAP, lambda b: b.substitutions),
    "tags": _Typed(ValueType.LIST, lambda b: b.tags),
}

_STRING_METHODS: dict[str, Callable[[str, str], bool]] = {
    "startsWith": str.startswith,
    "endsWith": str.endswith,
    "contains": lambda s, sub: sub in s,
}


def _const(value: Any) -> Evaluator:
    return lambda _build: value


def _dotted_name(node: Node) -> str | None:
    """Return ``a.b.c`` for a chain of selects on a bare name, else None."""
    parts: list[str] = []
    while isinstance(node, Select):
        parts.append(node.field)
        node = node.operand
    if not isinstance(node, Name):
        return None
    parts.append(node.name)
    return ".".join(reversed(parts))


def _map_lookup(operand: Evaluator, key: Evaluator) -> Evaluator:
    return lambda b: operand(b).get(key(b), "")


class _Compiler:
    def compile(self, node: Node) -> _Typed:
        method = getattr(self, f"_compile_{type(node).__name__.lower()}")
        result: _Typed = method(node)
        return result

    def _expect(self, node: Node, *types: ValueType) -> _Typed:
        typed = self.compile(node)
        if typed.type not in types:
            wanted = " or ".join(t.value for t in types)
            raise FilterSyntaxError(
                f"expected {wanted} but expression has type {typed.type.value}",
                node.position,
            )
        return typed

    def _compile_literal(self, node: Literal) -> _Typed:
        kind = ValueType.BOOL if isinstance(node.value, bool) else ValueType.STRING
        return _Typed(kind, _const(node.value))

    def _compile_listliteral(self, node: ListLiteral) -> _Typed:
        elements = [self._expect(e, ValueType.STRING).evaluate for e in node.elements]
        return _Typed(ValueType.LIST, lambda b: tuple(e(b) for e in elements))

    def _compile_name(self, node: Name) -> _Typed:
        if node.name in ("build", "Build"):
            raise FilterSyntaxError(
                f"{node.name!r} cannot be used as a value, select a field", node.position
            )
        raise FilterSyntaxError(f"undeclared reference {node.name!r}", node.position)

    def _compile_select(self, node: Select) -> _Typed:
        dotted = _dotted_name(node)
        if dotted is not None:
            head, _, rest = dotted.partition(".")
            if head == "build" and "." not in rest:
                field = BUILD_FIELDS.get(rest)
                if field is None:
                    raise FilterSyntaxError(
                        f"unknown build field {rest!r}, expected one of "
                        f"{', '.join(sorted(BUILD_FIELDS))}",
                        node.position,
                    )
                return field
            if head == "Build":
                return self._status_constant(rest, node)

        operand = self.compile(node.operand)
        if operand.type is ValueType.MAP:
            return _Typed(ValueType.STRING, _map_lookup(operand.evaluate, _const(node.field)))
        raise FilterSyntaxError(
            f"cannot select field {node.field!r} from {operand.type.value}", node.position
        )

    def _status_constant(self, path: str, node: Node) -> _Typed:
        prefix, _, name = path.partition(".")
        if prefix != "Status" or not name or "." in name:
            raise FilterSyntaxError(
                f"undeclared reference 'Build.{path}', expected Build.Status.<NAME>",
                node.position,
            )
        if name not in BuildStatus.__members__:
            raise FilterSyntaxError(f"unknown build status {name!r}", node.position)
        return _Typed(ValueType.STRING, _const(BuildStatus[name].value))

    def _compile_index(self, node: Index) -> _Typed:
        operand = self._expect(node.operand, ValueType.MAP)
        key = self._expect(node.key, ValueType.STRING)
        return _Typed(ValueType.STRING, _map_lookup(operand.evaluate, key.evaluate))

    def _compile_call(self, node: Call) -> _Typed:
        receiver = self._expect(node.receiver, ValueType.STRING).evaluate
        if len(node.args) != 1:
            raise FilterSyntaxError(
                f"{node.method}() takes exactly one argument", node.position
            )
        arg_node = node.args[0]

        if node.method == "matches":
            if not isinstance(arg_node, Literal) or not isinstance(arg_node.value, str):
                raise FilterSyntaxError(
                    "matches() requires a string literal pattern", arg_node.position
                )
            try:
                pattern = re.compile(arg_node.value)
            except re.error as e:
                raise FilterSyntaxError(
                    f"invalid regular expression {arg_node.value!r}: {e}",
                    arg_node.position,
                ) from e
            return _Typed(ValueType.BOOL, lambda b: pattern.search(receiver(b)) is not None)

        func = _STRING_METHODS.get(node.method)
        if func is None:
            raise FilterSyntaxError(f"unknown method {node.method!r}", node.position)
        arg = self._expect(arg_node, ValueType.STRING).evaluate
        return _Typed(ValueType.BOOL, lambda b: func(receiver(b), arg(b)))

    def _compile_unary(self, node: Unary) -> _Typed:
        operand = self._expect(node.operand, ValueType.BOOL).evaluate
        return _Typed(ValueType.BOOL, lambda b: not operand(b))

    def _compile_binary(self, node: Binary) -> _Typed:
        if node.op in (TokenKind.AND, TokenKind.OR):
            left = self._expect(node.left, ValueType.BOOL).evaluate
            right = self._expect(node.right, ValueType.BOOL).evaluate
            if node.op is TokenKind.AND:
                return _Typed(ValueType.BOOL, lambda b: bool(left(b) and right(b)))
            return _Typed(ValueType.BOOL, lambda b: bool(left(b) or right(b)))

        if node.op is TokenKind.IN:
            needle = self._expect(node.left, ValueType.STRING).evaluate
            haystack = self._expect(node.right, ValueType.LIST, ValueType.MAP).evaluate
            return _Typed(ValueType.BOOL, lambda b: needle(b) in haystack(b))

        lhs = self.compile(node.left)
        rhs = self.compile(node.right)
        if lhs.type is not rhs.type:
            raise FilterSyntaxError(
                f"cannot compare {lhs.type.value} with {rhs.type.value}", node.position
            )
        if lhs.type is ValueType.MAP:
            raise FilterSyntaxError("maps cannot be compared", node.position)
        left, right = lhs.evaluate, rhs.evaluate
        if node.op is TokenKind.EQ:
            return _Typed(ValueType.BOOL, lambda b: left(b) == right(b))
        return _Typed(ValueType.BOOL, lambda b: left(b) != right(b))


class EventFilter:
    """A compiled, reusable build predicate.

    Instances hold no mutable state and may be shared between concurrent
    notifications.
    """

    def __init__(self, source: str, evaluate: Evaluator) -> None:
        self._source = source
        self._evaluate = evaluate

    @property
    def source(self) -> str:
        """Return the filter expression this predicate was compiled from."""
        return self._source

    def apply(self, build: Build) -> bool:
        """Return True if the build matches the filter."""
        return bool(self._evaluate(build))

    def __repr__(self) -> str:
        return f"EventFilter({self._source!r})"


def make_predicate(source: str) -> EventFilter:
    """Compile a filter expression.

    Args:
        source: Filter expression text.

    Returns:
        The compiled EventFilter.

    Raises:
        FilterSyntaxError: If the expression is empty, malformed, references
            unknown fields, is not a boolean expression or is nested too
            deeply.
    """
    if not source or not source.strip():
        raise FilterSyntaxError("filter expression is empty")

    try:
        typed = _Compiler().compile(parse(source))
    except RecursionError as e:
        raise FilterSyntaxError("filter expression is nested too deeply") from e
    if typed.type is not ValueType.BOOL:
        raise FilterSyntaxError(
            f"filter must be a bool expression, got {typed.type.value}"
        )

    logger.debug("Compiled filter %r", source)
    return EventFilter(source, typed.evaluate)
