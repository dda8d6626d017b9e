import pytest

from fastapi_querybuilder.filters import (
    Filter,
    FilterOperator,
    Multiple,
    OperatorCategory,
    Range,
    Single,
    build_filter_value,
    filter_value_to_python,
    parse_filter_params,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("eq", FilterOperator.EQ),
        ("=", FilterOperator.EQ),
        ("!=", FilterOperator.NE),
        ("neq", FilterOperator.NE),
        (">=", FilterOperator.GTE),
        ("NotIn", FilterOperator.NOT_IN),
        ("isnull", FilterOperator.IS_NULL),
        ("notnull", FilterOperator.IS_NOT_NULL),
        (" starts_with ", FilterOperator.STARTS_WITH),
    ],
)
def test_operator_parse_accepts_names_and_aliases(text, expected):
    assert FilterOperator.parse(text) is expected


def test_operator_parse_unknown_returns_none():
    assert FilterOperator.parse("regex") is None


def test_operator_categories():
    assert FilterOperator.BETWEEN.category is OperatorCategory.RANGE
    assert FilterOperator.ILIKE.category is OperatorCategory.PATTERN
    assert FilterOperator.NOT_IN.category is OperatorCategory.SET
    assert FilterOperator.JSON_HAS_KEY.category is OperatorCategory.JSON
    assert FilterOperator.CONTAINS.to_sql() == "ILIKE"


def test_filter_constructors():
    assert Filter.eq("name", "John") == Filter("name", FilterOperator.EQ, Single("John"))
    assert Filter.in_values("id", [1, 2]).value == Multiple((1, 2))
    assert Filter.between("age", 18, 30).value == Range(18, 30)
    assert Filter.is_null("deleted_at").operator is FilterOperator.IS_NULL


def test_or_returns_tagged_copy():
    original = Filter.eq("name", "John")
    tagged = original.or_()

    assert tagged.is_or
    assert not original.is_or
    assert tagged.field == original.field


def test_build_filter_value_splits_lists():
    assert build_filter_value(FilterOperator.IN, "1, 2,3") == Multiple(["1", "2", "3"])
    assert build_filter_value(FilterOperator.NOT_IN, ["a", "b"]) == Multiple(["a", "b"])


def test_build_filter_value_range():
    assert build_filter_value(FilterOperator.BETWEEN, "10,20") == Range("10", "20")
    assert build_filter_value(FilterOperator.BETWEEN, [1, 2]) == Range(1, 2)


def test_build_filter_value_range_with_one_value_is_not_a_range():
    value = build_filter_value(FilterOperator.BETWEEN, "10")
    assert not isinstance(value, Range)
    assert filter_value_to_python(value) == ["10"]


def test_build_filter_value_repeated_eq_becomes_multiple():
    assert build_filter_value(FilterOperator.EQ, ["a", "b"]) == Multiple(["a", "b"])


def test_parse_nested_shape():
    filters, warnings = parse_filter_params({"name": {"eq": "John"}, "age": {"gte": "18", "lt": "65"}})

    assert warnings == []
    assert filters == [
        Filter("name", FilterOperator.EQ, Single("John")),
        Filter("age", FilterOperator.GTE, Single("18")),
        Filter("age", FilterOperator.LT, Single("65")),
    ]


def test_parse_flat_and_bare_shapes():
    filters, _ = parse_filter_params({"age[gte]": 18, "status": "active"})

    assert Filter("age", FilterOperator.GTE, Single(18)) in filters
    assert Filter("status", FilterOperator.EQ, Single("active")) in filters


def test_parse_drops_unknown_operator_with_warning():
    filters, warnings = parse_filter_params({"name": {"soundex": "jon", "eq": "John"}, "age[near]": "3"})

    assert filters == [Filter("name", FilterOperator.EQ, Single("John"))]
    assert len(warnings) == 2
    assert "soundex" in warnings[0]
