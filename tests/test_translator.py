"""
Tests for constraint folding and index resolution.
"""

import pytest

from shelfdb.exceptions import DataError, NotFoundError, ValidationError
from shelfdb.engine.key_range import KeyRange
from shelfdb.query.translator import PRIMARY_KEY, build_key_range, normalize_constraints, translate, where

INDEXES = ["email", "age", "last-first"]


class TestTranslate:

    def test_no_constraints_is_full_primary_scan(self):
        query = translate(None, "id", INDEXES)
        assert query.uses_primary_key
        assert query.key_range is None

    def test_primary_key_field(self):
        query = translate(where("id", ">=", 1), "id", INDEXES)
        assert query.index_name == PRIMARY_KEY
        assert query.key_range == KeyRange(lower=1)

    def test_index_field(self):
        query = translate(where("email", "==", "a@x.com"), "id", INDEXES)
        assert query.index_name == "email"
        assert query.key_range == KeyRange.only("a@x.com")

    def test_composite_index_name(self):
        query = translate(where("last-first", "==", ["Lovelace", "Ada"]), "id", INDEXES)
        assert query.index_name == "last-first"
        assert query.key_range.is_single_point

    def test_unknown_index(self):
        with pytest.raises(NotFoundError, match="Index 'nickname' not found"):
            translate(where("nickname", "==", "x"), "id", INDEXES)

    def test_one_field_per_query(self):
        with pytest.raises(ValidationError):
            translate([where("age", ">", 1), where("email", "==", "a")], "id", INDEXES)

    def test_dict_constraints(self):
        query = translate([{"field": "age", "op": "<=", "value": 30}], "id", INDEXES)
        assert query.index_name == "age"
        assert query.key_range == KeyRange(upper=30)


class TestFolding:
    """Constraints on one field fold into one range."""

    def test_bounded_range(self):
        key_range = build_key_range([where("age", ">=", 18), where("age", "<", 65)])
        assert key_range == KeyRange(lower=18, upper=65, upper_open=True)

    def test_exclusive_lower(self):
        assert build_key_range([where("age", ">", 18)]) == KeyRange(lower=18, lower_open=True)

    def test_exact_wins_over_bounds(self):
        key_range = build_key_range([where("age", ">", 1), where("age", "==", 3), where("age", "<", 2)])
        assert key_range == KeyRange.only(3)

    def test_repeated_operator_last_write_wins(self):
        key_range = build_key_range([where("age", ">=", 1), where("age", ">=", 5)])
        assert key_range == KeyRange(lower=5)

    def test_inclusive_value_with_exclusive_flag(self):
        key_range = build_key_range([where("age", ">=", 1), where("age", ">", 2)])
        assert key_range == KeyRange(lower=1, lower_open=True)

    def test_empty_constraint_list(self):
        assert build_key_range([]) is None

    def test_inverted_bounds(self):
        with pytest.raises(DataError):
            build_key_range([where("age", ">", 10), where("age", "<", 5)])

    def test_falsy_values_are_keys(self):
        assert build_key_range([where("age", "==", 0)]) == KeyRange.only(0)
        assert build_key_range([where("name", ">=", "")]) == KeyRange(lower="")

    def test_missing_value(self):
        with pytest.raises(ValidationError):
            build_key_range([where("age", "==", None)])

    def test_invalid_key_value(self):
        with pytest.raises(DataError):
            build_key_range([where("age", "==", True)])


class TestConstraintBuilder:

    def test_operators(self):
        for op in ("==", ">", ">=", "<", "<="):
            assert where("f", op, 1).operator == op

    def test_unknown_operator(self):
        with pytest.raises(ValidationError):
            where("f", "!=", 1)

    def test_empty_field(self):
        with pytest.raises(ValidationError):
            where("", "==", 1)

    def test_normalize(self):
        assert normalize_constraints(None) == []
        assert len(normalize_constraints(where("a", "==", 1))) == 1
        with pytest.raises(ValidationError):
            normalize_constraints([("a", "==", 1)])
