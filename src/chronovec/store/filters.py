"""Filter AST: provider-agnostic payload predicates, a Pinecone compiler and an in-process evaluator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

# ------------------------------------------------------------------
# Enums
# ------------------------------------------------------------------


class FilterOp(Enum):
    """Comparison operators for payload filtering."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"


class LogicalOp(Enum):
    """Logical combinators for grouping filter expressions."""

    AND = "and"
    OR = "or"


# ------------------------------------------------------------------
# AST nodes
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Comparison:
    """A single field comparison (e.g. ``field == value``).

    Attributes:
        field: Payload field name.
        op: Comparison operator.
        value: Value to compare against.  For ``EXISTS``, this is a bool.
    """

    field: str
    op: FilterOp
    value: Any


@dataclass(frozen=True, slots=True)
class LogicalGroup:
    """A logical combination of filter expressions.

    Attributes:
        op: Logical operator (AND / OR).
        expressions: Child expressions to combine.
    """

    op: LogicalOp
    expressions: list[FilterExpression]


FilterExpression = Comparison | LogicalGroup
"""Union type for the filter AST: either a leaf :class:`Comparison` or a
:class:`LogicalGroup` combining sub-expressions."""


# ------------------------------------------------------------------
# Builder helpers
# ------------------------------------------------------------------


def eq(field: str, value: Any) -> Comparison:
    """``field == value``."""
    return Comparison(field=field, op=FilterOp.EQ, value=value)


def ne(field: str, value: Any) -> Comparison:
    """``field != value``."""
    return Comparison(field=field, op=FilterOp.NE, value=value)


def gt(field: str, value: Any) -> Comparison:
    """``field > value``."""
    return Comparison(field=field, op=FilterOp.GT, value=value)


def gte(field: str, value: Any) -> Comparison:
    """``field >= value``."""
    return Comparison(field=field, op=FilterOp.GTE, value=value)


def lt(field: str, value: Any) -> Comparison:
    """``field < value``."""
    return Comparison(field=field, op=FilterOp.LT, value=value)


def lte(field: str, value: Any) -> Comparison:
    """``field <= value``."""
    return Comparison(field=field, op=FilterOp.LTE, value=value)


def in_(field: str, values: list[Any]) -> Comparison:
    """``field IN values``."""
    return Comparison(field=field, op=FilterOp.IN, value=values)


def not_in(field: str, values: list[Any]) -> Comparison:
    """``field NOT IN values``."""
    return Comparison(field=field, op=FilterOp.NOT_IN, value=values)


def exists(field: str, *, exists: bool = True) -> Comparison:
    """``field EXISTS`` (or ``NOT EXISTS`` if ``exists=False``)."""
    return Comparison(field=field, op=FilterOp.EXISTS, value=exists)


def and_(*exprs: FilterExpression) -> LogicalGroup:
    """Combine expressions with AND."""
    return LogicalGroup(op=LogicalOp.AND, expressions=list(exprs))


def or_(*exprs: FilterExpression) -> LogicalGroup:
    """Combine expressions with OR."""
    return LogicalGroup(op=LogicalOp.OR, expressions=list(exprs))


def is_active(value: bool = True) -> Comparison:
    """Shorthand for the engine's activity flag."""
    return eq("is_active", value)


# ------------------------------------------------------------------
# Compilers
# ------------------------------------------------------------------

_PINECONE_OPS: dict[FilterOp, str] = {
    FilterOp.EQ: "$eq",
    FilterOp.NE: "$ne",
    FilterOp.GT: "$gt",
    FilterOp.GTE: "$gte",
    FilterOp.LT: "$lt",
    FilterOp.LTE: "$lte",
    FilterOp.IN: "$in",
    FilterOp.NOT_IN: "$nin",
    FilterOp.EXISTS: "$exists",
}


def compile_pinecone(expr: FilterExpression) -> dict[str, Any]:
    """Compile a ``FilterExpression`` to Pinecone's MongoDB-style filter dict.

    Examples::

        compile_pinecone(eq("group_id", "g1"))
        # {"group_id": {"$eq": "g1"}}

        compile_pinecone(and_(eq("group_id", "g1"), eq("is_active", True)))
        # {"$and": [{"group_id": {"$eq": "g1"}}, {"is_active": {"$eq": True}}]}
    """
    if isinstance(expr, Comparison):
        op_str = _PINECONE_OPS[expr.op]
        return {expr.field: {op_str: expr.value}}

    logical_key = "$and" if expr.op == LogicalOp.AND else "$or"
    return {logical_key: [compile_pinecone(child) for child in expr.expressions]}


# ------------------------------------------------------------------
# In-process evaluation (local stores)
# ------------------------------------------------------------------

_MISSING = object()


def matches(payload: dict[str, Any], expr: FilterExpression) -> bool:
    """Evaluate *expr* against a payload dict.

    Ordering comparisons against a missing field are false.
    """
    if isinstance(expr, LogicalGroup):
        results = (matches(payload, child) for child in expr.expressions)
        return all(results) if expr.op == LogicalOp.AND else any(results)

    value = payload.get(expr.field, _MISSING)
    op = expr.op
    if op == FilterOp.EXISTS:
        return (value is not _MISSING) == bool(expr.value)
    if op == FilterOp.EQ:
        return value is not _MISSING and value == expr.value
    if op == FilterOp.NE:
        return value is _MISSING or value != expr.value
    if op == FilterOp.IN:
        return value is not _MISSING and value in expr.value
    if op == FilterOp.NOT_IN:
        return value is _MISSING or value not in expr.value
    if value is _MISSING or value is None:
        return False
    if op == FilterOp.GT:
        return value > expr.value
    if op == FilterOp.GTE:
        return value >= expr.value
    if op == FilterOp.LT:
        return value < expr.value
    return value <= expr.value
