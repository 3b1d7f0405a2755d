"""
Where-Mapping and Placeholder Tests

🔎 Backend-neutral filters and positional bind rewriting.
"""

import pytest

from polydb.persistence.adapters.interface import (
    PoolStatus, QueryOperator, match_where, parse_where,
)
from polydb.persistence.adapters.sql import convert_placeholders, is_table_name
from polydb.persistence.errors import ErrorCode, QueryError


class TestParseWhere:

    def test_plain_values_are_equality(self):
        filters = parse_where({"status": "active"})
        assert filters[0].operator == QueryOperator.EQUALS
        assert filters[0].value == "active"

    def test_operator_mappings(self):
        filters = parse_where({"age": {"$gte": 18, "$lt": 65}})
        assert [f.operator for f in filters] == [
            QueryOperator.GREATER_THAN_OR_EQUAL, QueryOperator.LESS_THAN
        ]

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            parse_where({"age": {"$regex": "x"}})

    def test_in_requires_sequence(self):
        with pytest.raises(ValueError):
            parse_where({"id": {"$in": 5}})


class TestMatchWhere:

    def test_string_and_numeric_ids_match(self):
        assert match_where({"id": 7}, {"id": "7"})

    def test_operators(self):
        record = {"age": 30, "role": "admin"}
        assert match_where(record, {"age": {"$gt": 18}, "role": {"$in": ["admin", "owner"]}})
        assert not match_where(record, {"role": {"$ne": "admin"}})
        assert match_where(record, {"deleted": {"$ne": True}})
        assert not match_where(record, {"age": {"$lt": "x"}})


class TestConvertPlaceholders:

    def test_positional_binds(self):
        sql, params = convert_placeholders("SELECT * FROM t WHERE a = ? AND b = ?", [1, "x"])
        assert sql == "SELECT * FROM t WHERE a = :p0 AND b = :p1"
        assert params == {"p0": 1, "p1": "x"}

    def test_quoted_question_marks_are_kept(self):
        sql, params = convert_placeholders("SELECT '?' AS q, a FROM t WHERE a = ?", [3])
        assert sql == "SELECT '?' AS q, a FROM t WHERE a = :p0"
        assert params == {"p0": 3}

    def test_mapping_params_pass_through(self):
        sql, params = convert_placeholders("SELECT :a", {"a": 1})
        assert sql == "SELECT :a"
        assert params == {"a": 1}

    def test_count_mismatch(self):
        with pytest.raises(QueryError) as exc_info:
            convert_placeholders("SELECT ?, ?", [1])
        assert exc_info.value.code == ErrorCode.QUERY_PARAM_ERROR

    def test_table_names(self):
        assert is_table_name("users")
        assert is_table_name("public.users")
        assert not is_table_name("SELECT * FROM users")


def test_pool_status_is_clamped():
    status = PoolStatus(total=2, active=3, idle=4, waiting=-1)
    assert status.active + status.idle <= status.total
    assert status.waiting == 0
