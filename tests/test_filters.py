"""Tests for the payload filter AST, its compilers and the in-process evaluator."""

from __future__ import annotations

import pytest

from chronovec.store.filters import (
    Comparison,
    FilterOp,
    LogicalGroup,
    LogicalOp,
    and_,
    compile_pinecone,
    eq,
    exists,
    gt,
    gte,
    in_,
    is_active,
    lt,
    lte,
    matches,
    ne,
    not_in,
    or_,
)

_PAYLOAD = {"group_id": "g1", "is_active": True, "chunk_index": 3, "source_doc_id": "a.md"}


# =========================================================================
# Builders
# =========================================================================


class TestBuilders:
    def test_eq(self) -> None:
        assert eq("group_id", "g1") == Comparison(field="group_id", op=FilterOp.EQ, value="g1")

    def test_is_active_shorthand(self) -> None:
        assert is_active() == eq("is_active", True)
        assert is_active(False) == eq("is_active", False)

    def test_and_or(self) -> None:
        expr = and_(eq("a", 1), or_(eq("b", 2), eq("c", 3)))
        assert isinstance(expr, LogicalGroup)
        assert expr.op == LogicalOp.AND
        assert isinstance(expr.expressions[1], LogicalGroup)
        assert expr.expressions[1].op == LogicalOp.OR


# =========================================================================
# Compilers
# =========================================================================


class TestCompilePinecone:
    def test_comparison(self) -> None:
        assert compile_pinecone(eq("group_id", "g1")) == {"group_id": {"$eq": "g1"}}
        assert compile_pinecone(not_in("x", [1])) == {"x": {"$nin": [1]}}

    def test_nested(self) -> None:
        expr = and_(eq("group_id", "g1"), is_active())
        assert compile_pinecone(expr) == {
            "$and": [{"group_id": {"$eq": "g1"}}, {"is_active": {"$eq": True}}]
        }


# =========================================================================
# Evaluation
# =========================================================================


class TestMatches:
    @pytest.mark.parametrize(
        ("expr", "expected"),
        [
            (eq("group_id", "g1"), True),
            (eq("group_id", "g2"), False),
            (ne("group_id", "g2"), True),
            (gt("chunk_index", 2), True),
            (gte("chunk_index", 3), True),
            (lt("chunk_index", 3), False),
            (lte("chunk_index", 3), True),
            (in_("source_doc_id", ["a.md", "b.md"]), True),
            (not_in("source_doc_id", ["a.md"]), False),
            (exists("commit_hash"), False),
            (exists("commit_hash", exists=False), True),
            (is_active(), True),
        ],
    )
    def test_single_comparisons(self, expr, expected: bool) -> None:
        assert matches(_PAYLOAD, expr) is expected

    def test_missing_field_ordering_is_false(self) -> None:
        assert matches(_PAYLOAD, gt("missing", 0)) is False
        assert matches(_PAYLOAD, ne("missing", 0)) is True

    def test_logical_groups(self) -> None:
        assert matches(_PAYLOAD, and_(eq("group_id", "g1"), is_active()))
        assert not matches(_PAYLOAD, and_(eq("group_id", "g1"), is_active(False)))
        assert matches(_PAYLOAD, or_(eq("group_id", "nope"), gt("chunk_index", 0)))
