# fastapi_querybuilder/filters.py

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, List, Literal, Mapping, Optional, Tuple, Union

log = logging.getLogger(__name__)


class OperatorCategory(str, Enum):
    EQUALITY = "equality"
    RANGE = "range"
    SET = "set"
    PATTERN = "pattern"
    NULL = "null"
    JSON = "json"
    FULL_TEXT = "full_text"


class FilterOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    NOT_LIKE = "not_like"
    NOT_ILIKE = "not_ilike"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN = "in"
    NOT_IN = "not_in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    BETWEEN = "between"
    NOT_BETWEEN = "not_between"
    JSON_CONTAINS = "json_contains"
    JSON_CONTAINED_BY = "json_contained_by"
    JSON_HAS_KEY = "json_has_key"
    JSON_HAS_ANY_KEY = "json_has_any_key"
    JSON_HAS_ALL_KEYS = "json_has_all_keys"
    FULL_TEXT = "full_text"

    @classmethod
    def parse(cls, text: str) -> Optional["FilterOperator"]:
        """Resolve an operator name or alias (case-insensitive). Returns None if unknown."""
        key = text.strip().lower()
        if key in _ALIASES:
            return _ALIASES[key]
        try:
            return cls(key)
        except ValueError:
            return None

    @property
    def category(self) -> OperatorCategory:
        return _CATEGORIES[self]

    def to_sql(self) -> str:
        return _SQL_TOKENS[self]


_ALIASES = {
    "=": FilterOperator.EQ,
    "!=": FilterOperator.NE,
    "<>": FilterOperator.NE,
    "neq": FilterOperator.NE,
    ">": FilterOperator.GT,
    ">=": FilterOperator.GTE,
    "<": FilterOperator.LT,
    "<=": FilterOperator.LTE,
    "notlike": FilterOperator.NOT_LIKE,
    "notilike": FilterOperator.NOT_ILIKE,
    "startswith": FilterOperator.STARTS_WITH,
    "endswith": FilterOperator.ENDS_WITH,
    "notin": FilterOperator.NOT_IN,
    "isnull": FilterOperator.IS_NULL,
    "null": FilterOperator.IS_NULL,
    "isnotnull": FilterOperator.IS_NOT_NULL,
    "notnull": FilterOperator.IS_NOT_NULL,
    "not_null": FilterOperator.IS_NOT_NULL,
    "notbetween": FilterOperator.NOT_BETWEEN,
    "jsoncontains": FilterOperator.JSON_CONTAINS,
    "jsoncontainedby": FilterOperator.JSON_CONTAINED_BY,
    "jsonhaskey": FilterOperator.JSON_HAS_KEY,
    "jsonhasanykey": FilterOperator.JSON_HAS_ANY_KEY,
    "jsonhasallkeys": FilterOperator.JSON_HAS_ALL_KEYS,
    "fulltext": FilterOperator.FULL_TEXT,
}

_CATEGORIES = {
    FilterOperator.EQ: OperatorCategory.EQUALITY,
    FilterOperator.NE: OperatorCategory.EQUALITY,
    FilterOperator.GT: OperatorCategory.RANGE,
    FilterOperator.GTE: OperatorCategory.RANGE,
    FilterOperator.LT: OperatorCategory.RANGE,
    FilterOperator.LTE: OperatorCategory.RANGE,
    FilterOperator.BETWEEN: OperatorCategory.RANGE,
    FilterOperator.NOT_BETWEEN: OperatorCategory.RANGE,
    FilterOperator.IN: OperatorCategory.SET,
    FilterOperator.NOT_IN: OperatorCategory.SET,
    FilterOperator.LIKE: OperatorCategory.PATTERN,
    FilterOperator.ILIKE: OperatorCategory.PATTERN,
    FilterOperator.NOT_LIKE: OperatorCategory.PATTERN,
    FilterOperator.NOT_ILIKE: OperatorCategory.PATTERN,
    FilterOperator.CONTAINS: OperatorCategory.PATTERN,
    FilterOperator.STARTS_WITH: OperatorCategory.PATTERN,
    FilterOperator.ENDS_WITH: OperatorCategory.PATTERN,
    FilterOperator.IS_NULL: OperatorCategory.NULL,
    FilterOperator.IS_NOT_NULL: OperatorCategory.NULL,
    FilterOperator.JSON_CONTAINS: OperatorCategory.JSON,
    FilterOperator.JSON_CONTAINED_BY: OperatorCategory.JSON,
    FilterOperator.JSON_HAS_KEY: OperatorCategory.JSON,
    FilterOperator.JSON_HAS_ANY_KEY: OperatorCategory.JSON,
    FilterOperator.JSON_HAS_ALL_KEYS: OperatorCategory.JSON,
    FilterOperator.FULL_TEXT: OperatorCategory.FULL_TEXT,
}

_SQL_TOKENS = {
    FilterOperator.EQ: "=",
    FilterOperator.NE: "!=",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
    FilterOperator.LIKE: "LIKE",
    FilterOperator.ILIKE: "ILIKE",
    FilterOperator.NOT_LIKE: "NOT LIKE",
    FilterOperator.NOT_ILIKE: "NOT ILIKE",
    FilterOperator.CONTAINS: "ILIKE",
    FilterOperator.STARTS_WITH: "ILIKE",
    FilterOperator.ENDS_WITH: "ILIKE",
    FilterOperator.IN: "IN",
    FilterOperator.NOT_IN: "NOT IN",
    FilterOperator.IS_NULL: "IS NULL",
    FilterOperator.IS_NOT_NULL: "IS NOT NULL",
    FilterOperator.BETWEEN: "BETWEEN",
    FilterOperator.NOT_BETWEEN: "NOT BETWEEN",
    FilterOperator.JSON_CONTAINS: "@>",
    FilterOperator.JSON_CONTAINED_BY: "<@",
    FilterOperator.JSON_HAS_KEY: "?",
    FilterOperator.JSON_HAS_ANY_KEY: "?|",
    FilterOperator.JSON_HAS_ALL_KEYS: "?&",
    FilterOperator.FULL_TEXT: "@@",
}

# Operators whose value arrives as a list (or comma-separated string)
LIST_OPERATORS = {
    FilterOperator.IN,
    FilterOperator.NOT_IN,
    FilterOperator.JSON_HAS_ANY_KEY,
    FilterOperator.JSON_HAS_ALL_KEYS,
}
RANGE_OPERATORS = {FilterOperator.BETWEEN, FilterOperator.NOT_BETWEEN}


# ───── Filter values ─────────────────────────────

@dataclass(frozen=True)
class Single:
    value: Any


@dataclass(frozen=True)
class Multiple:
    values: Tuple[Any, ...]

    def __init__(self, values):
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class Range:
    start: Any
    end: Any


FilterValue = Union[Single, Multiple, Range]


def filter_value_to_python(value: FilterValue) -> Any:
    """Plain representation used for display and debugging."""
    match value:
        case Single(value=v):
            return v
        case Multiple(values=vs):
            return list(vs)
        case Range(start=start, end=end):
            return [start, end]


# ───── Filter ────────────────────────────────────

@dataclass(frozen=True)
class Filter:
    field: str
    operator: FilterOperator
    value: FilterValue
    conjunction: Literal["and", "or"] = "and"

    @classmethod
    def eq(cls, field: str, value: Any) -> "Filter":
        return cls(field, FilterOperator.EQ, Single(value))

    @classmethod
    def ne(cls, field: str, value: Any) -> "Filter":
        return cls(field, FilterOperator.NE, Single(value))

    @classmethod
    def gt(cls, field: str, value: Any) -> "Filter":
        return cls(field, FilterOperator.GT, Single(value))

    @classmethod
    def gte(cls, field: str, value: Any) -> "Filter":
        return cls(field, FilterOperator.GTE, Single(value))

    @classmethod
    def lt(cls, field: str, value: Any) -> "Filter":
        return cls(field, FilterOperator.LT, Single(value))

    @classmethod
    def lte(cls, field: str, value: Any) -> "Filter":
        return cls(field, FilterOperator.LTE, Single(value))

    @classmethod
    def like(cls, field: str, pattern: str) -> "Filter":
        return cls(field, FilterOperator.LIKE, Single(pattern))

    @classmethod
    def ilike(cls, field: str, pattern: str) -> "Filter":
        return cls(field, FilterOperator.ILIKE, Single(pattern))

    @classmethod
    def contains(cls, field: str, text: str) -> "Filter":
        return cls(field, FilterOperator.CONTAINS, Single(text))

    @classmethod
    def starts_with(cls, field: str, text: str) -> "Filter":
        return cls(field, FilterOperator.STARTS_WITH, Single(text))

    @classmethod
    def ends_with(cls, field: str, text: str) -> "Filter":
        return cls(field, FilterOperator.ENDS_WITH, Single(text))

    @classmethod
    def in_values(cls, field: str, values) -> "Filter":
        return cls(field, FilterOperator.IN, Multiple(values))

    @classmethod
    def not_in(cls, field: str, values) -> "Filter":
        return cls(field, FilterOperator.NOT_IN, Multiple(values))

    @classmethod
    def is_null(cls, field: str) -> "Filter":
        return cls(field, FilterOperator.IS_NULL, Single(None))

    @classmethod
    def is_not_null(cls, field: str) -> "Filter":
        return cls(field, FilterOperator.IS_NOT_NULL, Single(None))

    @classmethod
    def between(cls, field: str, start: Any, end: Any) -> "Filter":
        return cls(field, FilterOperator.BETWEEN, Range(start, end))

    def or_(self) -> "Filter":
        return replace(self, conjunction="or")

    @property
    def is_or(self) -> bool:
        return self.conjunction == "or"


# ───── Parsing ───────────────────────────────────

_FLAT_KEY = re.compile(r"^(?P<field>[^\[\]]+)\[(?P<operator>[^\[\]]+)\]$")


def _split_csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def build_filter_value(operator: FilterOperator, raw: Any) -> FilterValue:
    """Shape a raw wire value for the given operator."""
    if operator in LIST_OPERATORS:
        if isinstance(raw, (list, tuple)):
            return Multiple(raw)
        if isinstance(raw, str):
            return Multiple(_split_csv(raw))
        return Single(raw)

    if operator in RANGE_OPERATORS:
        if isinstance(raw, str):
            raw = _split_csv(raw)
        if isinstance(raw, (list, tuple)):
            if len(raw) >= 2:
                return Range(raw[0], raw[1])
            return Multiple(raw)
        return Single(raw)

    # a repeated key, e.g. filter[status][eq]=a&filter[status][eq]=b
    if isinstance(raw, (list, tuple)):
        return Multiple(raw)
    return Single(raw)


def parse_filter_params(params: Mapping[str, Any]) -> Tuple[List[Filter], List[str]]:
    """
    Parse filter parameters into Filter objects.

    Accepts the nested shape produced by ``filter[name][gte]=3``
    (``{"name": {"gte": "3"}}``), the flat shape (``{"name[gte]": "3"}``)
    and bare values (``{"name": "John"}``, meaning ``eq``).

    Returns:
        The parsed filters and a list of warnings for entries that were dropped.
    """
    filters: List[Filter] = []
    warnings: List[str] = []

    for key, value in params.items():
        if isinstance(value, dict):
            for operator_name, operand in value.items():
                operator = FilterOperator.parse(str(operator_name))
                if operator is None:
                    log.debug("Dropping filter on %r: unknown operator %r", key, operator_name)
                    warnings.append(f"Unknown filter operator '{operator_name}' for field '{key}' was ignored")
                    continue
                filters.append(Filter(key, operator, build_filter_value(operator, operand)))
            continue

        match = _FLAT_KEY.match(key)
        if match:
            field = match.group("field")
            operator = FilterOperator.parse(match.group("operator"))
            if operator is None:
                log.debug("Dropping filter %r: unknown operator", key)
                warnings.append(f"Unknown filter operator '{match.group('operator')}' for field '{field}' was ignored")
                continue
            filters.append(Filter(field, operator, build_filter_value(operator, value)))
        else:
            filters.append(Filter(key, FilterOperator.EQ, build_filter_value(FilterOperator.EQ, value)))

    return filters, warnings

