"""Filter AST — store-agnostic payload predicates with a compiler per store."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from qdrant_client import models as qmodels

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
    """A single payload field comparison (e.g. ``folder_id == value``).

    Attributes:
        field: Payload key.
        op: Comparison operator.
        value: Value to compare against.  For ``EXISTS``, this is a bool.
    """

    field: str
    op: FilterOp
    value: Any


@dataclass(frozen=True, slots=True)
class LogicalGroup:
    """A logical combination of filter expressions."""

    op: LogicalOp
    expressions: list[FilterExpression]


FilterExpression = Comparison | LogicalGroup
"""Either a leaf :class:`Comparison` or a :class:`LogicalGroup`."""


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
    return Comparison(field=field, op=FilterOp.GT, value=value)


def gte(field: str, value: Any) -> Comparison:
    return Comparison(field=field, op=FilterOp.GTE, value=value)


def lt(field: str, value: Any) -> Comparison:
    return Comparison(field=field, op=FilterOp.LT, value=value)


def lte(field: str, value: Any) -> Comparison:
    return Comparison(field=field, op=FilterOp.LTE, value=value)


def in_(field: str, values: list[Any]) -> Comparison:
    """``field IN values``."""
    return Comparison(field=field, op=FilterOp.IN, value=list(values))


def not_in(field: str, values: list[Any]) -> Comparison:
    """``field NOT IN values``."""
    return Comparison(field=field, op=FilterOp.NOT_IN, value=list(values))


def exists(field: str, *, exists: bool = True) -> Comparison:
    """``field EXISTS`` (or ``NOT EXISTS`` if ``exists=False``)."""
    return Comparison(field=field, op=FilterOp.EXISTS, value=exists)


def and_(*exprs: FilterExpression) -> LogicalGroup:
    """Combine expressions with AND."""
    return LogicalGroup(op=LogicalOp.AND, expressions=list(exprs))


def or_(*exprs: FilterExpression) -> LogicalGroup:
    """Combine expressions with OR."""
    return LogicalGroup(op=LogicalOp.OR, expressions=list(exprs))


# ------------------------------------------------------------------
# Qdrant
# ------------------------------------------------------------------

_RANGE_KWARG: dict[FilterOp, str] = {
    FilterOp.GT: "gt",
    FilterOp.GTE: "gte",
    FilterOp.LT: "lt",
    FilterOp.LTE: "lte",
}


def compile_qdrant(expr: FilterExpression) -> qmodels.Filter:
    """Compile a ``FilterExpression`` to a Qdrant ``Filter``.

    Examples::

        compile_qdrant(eq("folder_id", "f1"))
        # Filter(must=[FieldCondition(key="folder_id", match=MatchValue(value="f1"))])

        compile_qdrant(or_(eq("language", "go"), eq("language", "python")))
        # Filter(should=[Filter(must=[...]), Filter(must=[...])])
    """
    if isinstance(expr, Comparison):
        return _compile_qdrant_comparison(expr)

    children = [compile_qdrant(child) for child in expr.expressions]
    if expr.op == LogicalOp.AND:
        return qmodels.Filter(must=children)
    return qmodels.Filter(should=children)


def _compile_qdrant_comparison(expr: Comparison) -> qmodels.Filter:
    key = expr.field
    if expr.op == FilterOp.EQ:
        return qmodels.Filter(
            must=[qmodels.FieldCondition(key=key, match=qmodels.MatchValue(value=expr.value))]
        )
    if expr.op == FilterOp.NE:
        return qmodels.Filter(
            must_not=[qmodels.FieldCondition(key=key, match=qmodels.MatchValue(value=expr.value))]
        )
    if expr.op == FilterOp.IN:
        return qmodels.Filter(
            must=[qmodels.FieldCondition(key=key, match=qmodels.MatchAny(any=expr.value))]
        )
    if expr.op == FilterOp.NOT_IN:
        return qmodels.Filter(
            must_not=[qmodels.FieldCondition(key=key, match=qmodels.MatchAny(any=expr.value))]
        )
    if expr.op == FilterOp.EXISTS:
        empty = qmodels.IsEmptyCondition(is_empty=qmodels.PayloadField(key=key))
        if expr.value:
            return qmodels.Filter(must_not=[empty])
        return qmodels.Filter(must=[empty])

    range_kwargs = {_RANGE_KWARG[expr.op]: expr.value}
    return qmodels.Filter(
        must=[qmodels.FieldCondition(key=key, range=qmodels.Range(**range_kwargs))]
    )


# ------------------------------------------------------------------
# In-process evaluation (local store)
# ------------------------------------------------------------------

_MISSING = object()


def matches(expr: FilterExpression, payload: dict[str, Any]) -> bool:
    """Evaluate *expr* against a payload dict.

    Missing keys never satisfy a comparison, except ``NE``/``NOT_IN`` (which
    hold) and ``EXISTS(False)``.
    """
    if isinstance(expr, LogicalGroup):
        results = (matches(child, payload) for child in expr.expressions)
        return all(results) if expr.op == LogicalOp.AND else any(results)

    value = payload.get(expr.field, _MISSING)
    op = expr.op
    if op == FilterOp.EXISTS:
        present = value is not _MISSING and value is not None
        return present == bool(expr.value)
    if op == FilterOp.NE:
        return value is _MISSING or value != expr.value
    if op == FilterOp.NOT_IN:
        return value is _MISSING or value not in expr.value
    if value is _MISSING:
        return False
    if op == FilterOp.EQ:
        return value == expr.value
    if op == FilterOp.IN:
        return value in expr.value
    try:
        if op == FilterOp.GT:
            return value > expr.value
        if op == FilterOp.GTE:
            return value >= expr.value
        if op == FilterOp.LT:
            return value < expr.value
        return value <= expr.value
    except TypeError:
        return False
