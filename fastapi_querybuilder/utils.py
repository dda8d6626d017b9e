# fastapi_querybuilder/utils.py

import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum, String
from sqlalchemy.dialects.postgresql import JSONB

_ZERO_VALUES = {int: 0, float: 0.0, Decimal: Decimal(0), bool: False}
_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_enum_column(column):
    """Check if a column is an enum type"""
    return isinstance(column.type, Enum)


def is_string_column(column):
    """Check if a column is a string type"""
    return isinstance(column.type, String) and not isinstance(column.type, Enum)


def is_integer_column(column):
    """Check if a column is an integer type"""
    return python_type(column.type) is int


def is_boolean_column(column):
    """Check if a column is a boolean type"""
    return isinstance(column.type, Boolean)


def is_json_column(column):
    return isinstance(column.type, (JSON, JSONB))


def is_jsonb_column(column):
    return isinstance(column.type, JSONB)


def python_type(type_) -> Optional[type]:
    """The Python type a SQLAlchemy type binds, or None when it has none (NullType and friends)."""
    try:
        return type_.python_type
    except NotImplementedError:
        return None


def zero_value(type_) -> Any:
    """The value substituted for a malformed operand, or None if the type has no zero."""
    return _ZERO_VALUES.get(python_type(type_))


def coerce_value(type_, raw: Any) -> Any:
    """
    Convert a wire value to the Python type bound by ``type_``.

    Raises:
        ValueError: if ``raw`` can not be read as that type.
    """
    if raw is None:
        return None

    target = python_type(type_)
    if target is bool:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in ("true", "1", "yes"):
            return True
        if text in ("false", "0", "no"):
            return False
        raise ValueError(f"{raw!r} is not a boolean")
    if target is int:
        if isinstance(raw, bool):
            raise ValueError(f"{raw!r} is not an integer")
        if isinstance(raw, int):
            return raw
        return int(str(raw).strip())
    if target is float:
        return float(str(raw).strip())
    if target is Decimal:
        try:
            return Decimal(str(raw).strip())
        except InvalidOperation as exc:
            raise ValueError(f"{raw!r} is not a number") from exc
    if isinstance(type_, DateTime) and not isinstance(raw, datetime):
        return datetime.fromisoformat(str(raw).strip())
    if isinstance(type_, Date) and not isinstance(raw, date):
        return date.fromisoformat(str(raw).strip())
    return raw


def day_range(column, value) -> Optional[Tuple[datetime, datetime]]:
    """
    Widen a date-only operand on a DateTime column to the whole day.

    ``created_at = 2024-01-05`` should match every timestamp on that day,
    so it becomes ``[2024-01-05 00:00, 2024-01-06 00:00)``.
    """
    if not isinstance(column.type, DateTime):
        return None
    if isinstance(value, datetime):
        if value.hour or value.minute or value.second or value.microsecond:
            return None
        start = value
    elif isinstance(value, date):
        start = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and _DATE_ONLY.match(value.strip()):
        start = datetime.fromisoformat(value.strip())
    else:
        return None
    return start, start + timedelta(days=1)


def snake_case(name: str) -> str:
    """``createdBy`` -> ``created_by``"""
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return name.replace("-", "_").lower()


def singularize(word: str) -> str:
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if word.endswith(("sses", "shes", "ches", "xes")):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def is_plural(word: str) -> bool:
    return singularize(word) != word
