# fastapi_querybuilder/operators.py

from sqlalchemy import and_, or_, cast, literal_column, not_
from sqlalchemy.sql import operators
from sqlalchemy.dialects.postgresql import JSONB

from .filters import FilterOperator
from .utils import day_range, is_jsonb_column


def always_false():
    return literal_column("1") == literal_column("0")


def always_true():
    return literal_column("1") == literal_column("1")


def _eq_operator(column, value):
    if value is None:
        return column.is_(None)
    bounds = day_range(column, value)
    if bounds is not None:
        return and_(column >= bounds[0], column < bounds[1])
    return column == value


def _ne_operator(column, value):
    if value is None:
        return column.is_not(None)
    bounds = day_range(column, value)
    if bounds is not None:
        return or_(column < bounds[0], column >= bounds[1])
    return column != value


def _gt_operator(column, value):
    bounds = day_range(column, value)
    return operators.ge(column, bounds[1]) if bounds else operators.gt(column, value)


def _lte_operator(column, value):
    bounds = day_range(column, value)
    return operators.lt(column, bounds[1]) if bounds else operators.le(column, value)


def _contains_operator(column, value):
    # JSONB containment, the @> operator
    return column.contains(cast(value, JSONB))


def _contained_by_operator(column, value):
    return column.contained_by(cast(value, JSONB))


def _has_key_operator(column, key):
    # maps to the SQL '?' operator
    return column.has_key(key)


# array-of-keys operators: ?| and ?&
def _has_any_operator(column, keys):
    return column.has_any(list(keys))


def _has_all_operator(column, keys):
    return column.has_all(list(keys))


COMPARISON_OPERATORS = {
    FilterOperator.EQ: _eq_operator,
    FilterOperator.NE: _ne_operator,
    FilterOperator.GT: _gt_operator,
    FilterOperator.GTE: operators.ge,
    FilterOperator.LT: operators.lt,
    FilterOperator.LTE: _lte_operator,
    FilterOperator.LIKE: lambda col, v: col.like(v),
    FilterOperator.ILIKE: lambda col, v: col.ilike(v),
    FilterOperator.NOT_LIKE: lambda col, v: col.not_like(v),
    FilterOperator.NOT_ILIKE: lambda col, v: col.not_ilike(v),
    # wildcards in the operand are matched literally
    FilterOperator.CONTAINS: lambda col, v: col.icontains(str(v), autoescape=True),
    FilterOperator.STARTS_WITH: lambda col, v: col.istartswith(str(v), autoescape=True),
    FilterOperator.ENDS_WITH: lambda col, v: col.iendswith(str(v), autoescape=True),
    FilterOperator.FULL_TEXT: lambda col, v: col.match(v),
}

SET_OPERATORS = {
    FilterOperator.IN: lambda col, values: col.in_(values),
    FilterOperator.NOT_IN: lambda col, values: col.not_in(values),
}

NULL_OPERATORS = {
    FilterOperator.IS_NULL: lambda col: col.is_(None),
    FilterOperator.IS_NOT_NULL: lambda col: col.is_not(None),
}

RANGE_OPERATORS = {
    FilterOperator.BETWEEN: lambda col, low, high: col.between(low, high),
    FilterOperator.NOT_BETWEEN: lambda col, low, high: not_(col.between(low, high)),
}

# JSONB-specific
JSON_OPERATORS = {
    FilterOperator.JSON_CONTAINS: _contains_operator,
    FilterOperator.JSON_CONTAINED_BY: _contained_by_operator,
    FilterOperator.JSON_HAS_KEY: _has_key_operator,
    FilterOperator.JSON_HAS_ANY_KEY: _has_any_operator,
    FilterOperator.JSON_HAS_ALL_KEYS: _has_all_operator,
}

# Operators usable on a path inside a JSON document, e.g. attributes.city
JSON_PATH_OPERATORS = {
    FilterOperator.EQ, FilterOperator.NE,
    FilterOperator.GT, FilterOperator.GTE, FilterOperator.LT, FilterOperator.LTE,
    FilterOperator.IN, FilterOperator.NOT_IN,
    FilterOperator.CONTAINS, FilterOperator.STARTS_WITH, FilterOperator.ENDS_WITH,
    FilterOperator.IS_NULL, FilterOperator.IS_NOT_NULL,
}


def json_path_filter(column, path: str, operator: FilterOperator, operand):
    """
    Apply a filter to a value inside a JSON column using path notation.

    Args:
        column: The JSON or JSONB column
        path: Dot-separated path (e.g., "address.city")
        operator: One of JSON_PATH_OPERATORS
        operand: The value to compare against

    Returns:
        SQLAlchemy expression
    """
    keys = path.split(".")
    expr = column[keys[0]] if len(keys) == 1 else column[tuple(keys)]

    # JSONB exposes ->> as .astext, plain JSON goes through the dialect's extract function
    text = expr.astext if is_jsonb_column(column) else expr.as_string()
    number = expr.as_float()

    operator_map = {
        FilterOperator.EQ: lambda val: operators.eq(text, str(val)),
        FilterOperator.NE: lambda val: operators.ne(text, str(val)),
        FilterOperator.GT: lambda val: operators.gt(number, float(val)),
        FilterOperator.GTE: lambda val: operators.ge(number, float(val)),
        FilterOperator.LT: lambda val: operators.lt(number, float(val)),
        FilterOperator.LTE: lambda val: operators.le(number, float(val)),
        FilterOperator.IN: lambda val: text.in_([str(v) for v in val]),
        FilterOperator.NOT_IN: lambda val: text.not_in([str(v) for v in val]),
        FilterOperator.CONTAINS: lambda val: text.icontains(str(val), autoescape=True),
        FilterOperator.STARTS_WITH: lambda val: text.istartswith(str(val), autoescape=True),
        FilterOperator.ENDS_WITH: lambda val: text.iendswith(str(val), autoescape=True),
        FilterOperator.IS_NULL: lambda val: text.is_(None),
        FilterOperator.IS_NOT_NULL: lambda val: text.is_not(None),
    }
    if operator not in operator_map:
        raise ValueError(f"Operator '{operator.value}' is not supported for JSON path filtering")
    return operator_map[operator](operand)
