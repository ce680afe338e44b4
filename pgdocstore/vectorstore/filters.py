"""
Metadata filter compilation.

A filter expression is a mapping from metadata key to either a scalar
(equality) or an operator object such as ``{"in": [100, 300]}``. Keys are
ANDed together, as are several operators on the same key:

    {"a": 1, "b": {"in": ["x", "y"]}, "c": {"gte": 2, "lt": 10}}

compile() turns the expression into a Predicate tree. Every node can render
itself as parameterised SQL over a jsonb column and evaluate itself against
a Python mapping; both renderings share the same comparison rules:

- booleans only equal booleans, numbers only equal numbers (1 == 1.0),
  strings only equal strings, null only equals null
- a key absent from the row never matches, whatever the operator
- an empty or absent filter matches every row
"""

import json
import math
import operator
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from functools import partial
from typing import Any

from pgdocstore.vectorstore.errors import FilterError, ValidationError

Scalar = str | int | float | bool | None
FilterExpression = Mapping[str, Any]


class SqlParams:
    """
    Collects bind parameters while a predicate renders itself.

    Usage:
        params = SqlParams(start=2)   # $1 is already taken by the query vector
        where = predicate.to_sql('"metadata"', params)
        await db.fetch(sql, query_vector, *params.values)
    """

    def __init__(self, start: int = 1):
        self._start = start
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        """Register a value and return its placeholder."""
        self.values.append(value)
        return f"${self._start + len(self.values) - 1}"

    @property
    def next_index(self) -> int:
        """Index the next placeholder would get."""
        return self._start + len(self.values)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def json_equal(left: Any, right: Any) -> bool:
    """Compare two JSON values the way jsonb equality does."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) or _is_number(right):
        return _is_number(left) and _is_number(right) and left == right
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, str) or isinstance(right, str):
        return isinstance(left, str) and isinstance(right, str) and left == right
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        return left.keys() == right.keys() and all(
            json_equal(left[k], right[k]) for k in left
        )
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(
            json_equal(a, b) for a, b in zip(left, right)
        )
    return False


class Predicate(ABC):
    """A compiled boolean condition over a row's metadata."""

    is_match_all = False

    @abstractmethod
    def to_sql(self, column: str, params: SqlParams) -> str:
        """Render as a SQL boolean expression over the jsonb column."""
        ...

    @abstractmethod
    def matches(self, metadata: Mapping[str, Any]) -> bool:
        """Evaluate against an in-memory metadata mapping."""
        ...


@dataclass(frozen=True)
class MatchAll(Predicate):
    """Tautology produced by an empty or absent filter."""

    is_match_all = True

    def to_sql(self, column: str, params: SqlParams) -> str:
        return "TRUE"

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        return True


MATCH_ALL = MatchAll()


@dataclass(frozen=True)
class And(Predicate):
    clauses: tuple[Predicate, ...]

    def to_sql(self, column: str, params: SqlParams) -> str:
        return "(" + " AND ".join(c.to_sql(column, params) for c in self.clauses) + ")"

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        return all(c.matches(metadata) for c in self.clauses)


@dataclass(frozen=True)
class Equals(Predicate):
    key: str
    value: Scalar

    def to_sql(self, column: str, params: SqlParams) -> str:
        key = f"{params.add(self.key)}::text"
        value = params.add(json.dumps(self.value))
        return f"{column} -> {key} = {value}::jsonb"

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        return self.key in metadata and json_equal(metadata[self.key], self.value)


@dataclass(frozen=True)
class NotEquals(Predicate):
    key: str
    value: Scalar

    def to_sql(self, column: str, params: SqlParams) -> str:
        key = f"{params.add(self.key)}::text"
        value = params.add(json.dumps(self.value))
        return f"({column} -> {key} IS NOT NULL AND {column} -> {key} <> {value}::jsonb)"

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        return self.key in metadata and not json_equal(metadata[self.key], self.value)


@dataclass(frozen=True)
class In(Predicate):
    key: str
    values: tuple[Scalar, ...]

    def to_sql(self, column: str, params: SqlParams) -> str:
        key = f"{params.add(self.key)}::text"
        members = ", ".join(f"{params.add(json.dumps(v))}::jsonb" for v in self.values)
        return f"{column} -> {key} IN ({members})"

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        if self.key not in metadata:
            return False
        return any(json_equal(metadata[self.key], v) for v in self.values)


@dataclass(frozen=True)
class NotIn(Predicate):
    key: str
    values: tuple[Scalar, ...]

    def to_sql(self, column: str, params: SqlParams) -> str:
        key = f"{params.add(self.key)}::text"
        members = ", ".join(f"{params.add(json.dumps(v))}::jsonb" for v in self.values)
        return f"({column} -> {key} IS NOT NULL AND {column} -> {key} NOT IN ({members}))"

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        if self.key not in metadata:
            return False
        return not any(json_equal(metadata[self.key], v) for v in self.values)


_COMPARISONS: dict[str, tuple[str, Callable[[Any, Any], bool]]] = {
    "gt": (">", operator.gt),
    "gte": (">=", operator.ge),
    "lt": ("<", operator.lt),
    "lte": ("<=", operator.le),
}


@dataclass(frozen=True)
class Compare(Predicate):
    """Numeric range comparison; non-numeric stored values never match."""

    key: str
    op: str
    value: int | float

    def to_sql(self, column: str, params: SqlParams) -> str:
        symbol, _ = _COMPARISONS[self.op]
        key = f"{params.add(self.key)}::text"
        value = params.add(str(self.value))
        # CASE keeps the cast from running on non-numeric values
        return (
            f"(CASE WHEN jsonb_typeof({column} -> {key}) = 'number' "
            f"THEN ({column} ->> {key})::numeric {symbol} {value}::numeric "
            f"ELSE FALSE END)"
        )

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        stored = metadata.get(self.key)
        if not _is_number(stored):
            return False
        _, fn = _COMPARISONS[self.op]
        return fn(stored, self.value)


@dataclass(frozen=True)
class ArrayContains(Predicate):
    """Stored value is a list holding the operand."""

    key: str
    value: Scalar

    def to_sql(self, column: str, params: SqlParams) -> str:
        key = f"{params.add(self.key)}::text"
        value = params.add(json.dumps([self.value]))
        return (
            f"(jsonb_typeof({column} -> {key}) = 'array' "
            f"AND {column} -> {key} @> {value}::jsonb)"
        )

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        stored = metadata.get(self.key)
        if not isinstance(stored, list):
            return False
        return any(json_equal(item, self.value) for item in stored)


OperatorFactory = Callable[[str, Any], Predicate]


def _require_scalar(key: str, op: str, operand: Any) -> Scalar:
    if isinstance(operand, float) and not math.isfinite(operand):
        raise FilterError(
            f"Operand for '{op}' on key '{key}' must be a finite number",
            key=key,
            operator=op,
        )
    if operand is None or isinstance(operand, (str, int, float, bool)):
        return operand
    raise FilterError(
        f"Operand for '{op}' on key '{key}' must be a scalar, "
        f"got {type(operand).__name__}",
        key=key,
        operator=op,
    )


def _require_scalar_list(key: str, op: str, operand: Any) -> tuple[Scalar, ...]:
    if isinstance(operand, (str, bytes)) or not isinstance(operand, Sequence):
        raise FilterError(
            f"Operand for '{op}' on key '{key}' must be a list of scalars, "
            f"got {type(operand).__name__}",
            key=key,
            operator=op,
        )
    if len(operand) == 0:
        raise ValidationError(f"Operand for '{op}' on key '{key}' must not be empty")
    return tuple(_require_scalar(key, op, item) for item in operand)


def _build_eq(key: str, operand: Any) -> Predicate:
    return Equals(key, _require_scalar(key, "eq", operand))


def _build_ne(key: str, operand: Any) -> Predicate:
    return NotEquals(key, _require_scalar(key, "ne", operand))


def _build_in(key: str, operand: Any) -> Predicate:
    return In(key, _require_scalar_list(key, "in", operand))


def _build_not_in(key: str, operand: Any) -> Predicate:
    return NotIn(key, _require_scalar_list(key, "not_in", operand))


def _build_compare(op: str, key: str, operand: Any) -> Predicate:
    if not _is_number(operand) or (isinstance(operand, float) and not math.isfinite(operand)):
        raise FilterError(
            f"Operand for '{op}' on key '{key}' must be a finite number, "
            f"got {operand!r}",
            key=key,
            operator=op,
        )
    return Compare(key, op, operand)


def _build_array_contains(key: str, operand: Any) -> Predicate:
    return ArrayContains(key, _require_scalar(key, "array_contains", operand))


DEFAULT_OPERATORS: dict[str, OperatorFactory] = {
    "eq": _build_eq,
    "ne": _build_ne,
    "in": _build_in,
    "not_in": _build_not_in,
    "gt": partial(_build_compare, "gt"),
    "gte": partial(_build_compare, "gte"),
    "lt": partial(_build_compare, "lt"),
    "lte": partial(_build_compare, "lte"),
    "array_contains": _build_array_contains,
}


class FilterCompiler:
    """
    Compiles filter expressions into Predicate trees.

    Extra operators can be registered per instance; a factory receives the
    metadata key and the raw operand and returns a Predicate:

        compiler = FilterCompiler()
        compiler.register_operator("prefix", build_prefix_predicate)
    """

    def __init__(self, operators: Mapping[str, OperatorFactory] | None = None):
        self._operators: dict[str, OperatorFactory] = dict(DEFAULT_OPERATORS)
        if operators:
            self._operators.update(operators)

    @property
    def operators(self) -> frozenset[str]:
        """Names of the operators this compiler understands."""
        return frozenset(self._operators)

    def register_operator(self, name: str, factory: OperatorFactory) -> None:
        """Add or replace an operator."""
        if not name:
            raise ValueError("Operator name must be non-empty")
        self._operators[name] = factory

    def compile(self, expression: FilterExpression | None) -> Predicate:
        """
        Compile a filter expression.

        Raises:
            FilterError: unknown operator, non-mapping expression, bad operand type
            ValidationError: empty operator object or empty list operand
        """
        if expression is None:
            return MATCH_ALL
        if not isinstance(expression, Mapping):
            raise FilterError(
                f"Filter must be a mapping, got {type(expression).__name__}"
            )
        if not expression:
            return MATCH_ALL

        clauses: list[Predicate] = []
        for key, condition in expression.items():
            if not isinstance(key, str) or not key:
                raise FilterError(f"Filter keys must be non-empty strings, got {key!r}")
            if isinstance(condition, Mapping):
                clauses.extend(self._compile_operators(key, condition))
            else:
                clauses.append(Equals(key, _require_scalar(key, "eq", condition)))

        if len(clauses) == 1:
            return clauses[0]
        return And(tuple(clauses))

    def _compile_operators(
        self, key: str, condition: Mapping[str, Any]
    ) -> list[Predicate]:
        if not condition:
            raise ValidationError(f"Operator object for key '{key}' is empty")

        clauses = []
        for op, operand in condition.items():
            factory = self._operators.get(op)
            if factory is None:
                raise FilterError(
                    f"Unknown filter operator '{op}' for key '{key}'. "
                    f"Supported: {sorted(self._operators)}",
                    key=key,
                    operator=op,
                )
            clauses.append(factory(key, operand))
        return clauses


_default_compiler = FilterCompiler()


def compile_filter(expression: FilterExpression | None) -> Predicate:
    """Compile with the default operator set."""
    return _default_compiler.compile(expression)
