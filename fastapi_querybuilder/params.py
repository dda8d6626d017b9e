# fastapi_querybuilder/params.py

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .includes import Include, parse_include_string
from .pagination import PaginationType
from .sorts import Sort, parse_sort_string

_KEY = re.compile(r"^(?P<name>\w+)(?P<brackets>(?:\[[^\[\]]*\])*)$")
_BRACKET = re.compile(r"\[([^\[\]]*)\]")


class QueryParams:
    """
    Query parameters as they arrive on the wire, before any whitelisting.

    ``filter`` is nested per field and operator (``{"name": {"eq": "John"}}``),
    ``fields`` and ``append`` are keyed by table name and append key.
    """

    def __init__(
        self,
        filter: Optional[Dict[str, Any]] = None,
        sort: Optional[str] = None,
        include: Optional[str] = None,
        fields: Optional[Dict[str, str]] = None,
        page: Optional[int] = None,
        per_page: Optional[int] = None,
        pagination_type: Optional[str] = None,
        cursor: Optional[str] = None,
        append: Optional[Dict[str, str]] = None,
        search: Optional[str] = None,
        warnings: Optional[List[str]] = None,
    ):
        self.filter = filter or {}
        self.sort = sort
        self.include = include
        self.fields = fields or {}
        self.page = page
        self.per_page = per_page
        self.pagination_type = pagination_type
        self.cursor = cursor
        self.append = append or {}
        self.search = search
        self.warnings = warnings or []

    def __repr__(self) -> str:
        return f"QueryParams({self.to_dict()!r})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filter": self.filter,
            "sort": self.sort,
            "include": self.include,
            "fields": self.fields,
            "page": self.page,
            "per_page": self.per_page,
            "pagination_type": self.pagination_type,
            "cursor": self.cursor,
            "append": self.append,
            "search": self.search,
        }

    def to_query_items(self) -> List[Tuple[str, Any]]:
        """
        The query as query-string pairs, the reverse of ``from_query_items``.

        ``page``, ``per_page`` and ``cursor`` are left out; navigation links
        set those themselves.
        """
        items: List[Tuple[str, Any]] = []
        for field, value in self.filter.items():
            if isinstance(value, dict):
                for operator, operand in value.items():
                    items.extend((f"filter[{field}][{operator}]", v) for v in _as_list(operand))
            else:
                items.extend((f"filter[{field}]", v) for v in _as_list(value))
        for name in ("sort", "include", "pagination_type", "search"):
            value = getattr(self, name)
            if value:
                items.append((name, value))
        items.extend((f"fields[{table}]", value) for table, value in self.fields.items())
        items.extend((f"append[{key}]", value) for key, value in self.append.items())
        return items

    def get_sorts(self) -> List[Sort]:
        return parse_sort_string(self.sort) if self.sort else []

    def get_includes(self) -> List[Include]:
        return parse_include_string(self.include) if self.include else []

    def get_fields(self, table: str) -> Optional[List[str]]:
        value = self.fields.get(table)
        if not value:
            return None
        return [field.strip() for field in value.split(",") if field.strip()]

    @classmethod
    def from_query_items(cls, items: Iterable[Tuple[str, str]]) -> "QueryParams":
        """
        Parse raw query-string pairs, e.g. ``request.query_params.multi_items()``.

        Understands ``filter[field][op]=v``, ``filter[field]=v`` (eq),
        ``fields[table]=a,b``, ``append[key]=v``, ``sort``, ``include``,
        ``page``, ``per_page``, ``pagination_type``, ``cursor`` and ``search``.
        Repeated filter keys collect into a list; repeated sort and include
        values are joined. Anything unparseable is skipped with a warning.
        """
        params = cls()
        sorts: List[str] = []
        includes: List[str] = []

        for key, value in items:
            match = _KEY.match(key)
            if not match:
                params.warnings.append(f"Unrecognised query parameter '{key}' was ignored")
                continue
            name = match.group("name")
            path = _BRACKET.findall(match.group("brackets"))

            if name == "filter" and path:
                field = path[0].strip()
                if not field or len(path) > 2:
                    params.warnings.append(f"Malformed filter parameter '{key}' was ignored")
                    continue
                if len(path) == 1:
                    params.filter[field] = _collect(params.filter.get(field), value)
                else:
                    operators = params.filter.get(field)
                    if not isinstance(operators, dict):
                        # filter[name]=x followed by filter[name][op]=y
                        operators = {} if operators is None else {"eq": operators}
                        params.filter[field] = operators
                    operator = path[1].strip()
                    operators[operator] = _collect(operators.get(operator), value)
            elif name == "fields" and len(path) == 1:
                params.fields[path[0]] = value
            elif name == "append" and len(path) == 1:
                params.append[path[0]] = value
            elif path:
                params.warnings.append(f"Unrecognised query parameter '{key}' was ignored")
            elif name == "sort":
                sorts.append(value)
            elif name == "include":
                includes.append(value)
            elif name in ("page", "per_page"):
                number = _to_int(value)
                if number is None:
                    params.warnings.append(f"Invalid {name} '{value}' was ignored")
                else:
                    setattr(params, name, number)
            elif name == "pagination_type":
                mode = value.strip().lower()
                if mode in (PaginationType.CURSOR.value, PaginationType.OFFSET.value):
                    params.pagination_type = mode
                else:
                    params.warnings.append(f"Unknown pagination_type '{value}' was ignored")
            elif name == "cursor":
                params.cursor = value or None
            elif name == "search":
                params.search = value or None

        params.sort = ",".join(sorts) or None
        params.include = ",".join(includes) or None
        return params


def _collect(existing: Any, value: str) -> Any:
    if existing is None:
        return value
    if isinstance(existing, list):
        return [*existing, value]
    return [existing, value]


def _to_int(value: str) -> Optional[int]:
    try:
        return int(value.strip())
    except ValueError:
        return None


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else [value]
