# fastapi_querybuilder/builder.py

import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from sqlalchemy import Float

from .config import MalformedValuePolicy, QueryBuilderSettings, get_settings
from .exceptions import QueryValidationError
from .filters import (
    Filter,
    FilterOperator,
    FilterValue,
    Multiple,
    OperatorCategory,
    Range,
    Single,
    build_filter_value,
    parse_filter_params,
)
from .includes import Include, parse_include_string
from .operators import JSON_PATH_OPERATORS
from .pagination import (
    CursorPagination,
    OffsetPagination,
    Pagination,
    PaginationState,
    PaginationType,
    Unset,
    clamp_per_page,
    with_cursor,
    with_page,
    with_per_page,
)
from .sorts import Sort, SortDirection, parse_sort_string
from .utils import coerce_value, is_json_column, is_jsonb_column, zero_value

log = logging.getLogger(__name__)

# operands of these categories are converted to the column's Python type
_COERCED_CATEGORIES = {OperatorCategory.EQUALITY, OperatorCategory.RANGE, OperatorCategory.SET}
_NUMERIC_PATH_OPERATORS = {FilterOperator.GT, FilterOperator.GTE, FilterOperator.LT, FilterOperator.LTE}
_JSON_DOCUMENT_OPERATORS = {FilterOperator.JSON_CONTAINS, FilterOperator.JSON_CONTAINED_BY}


@dataclass(frozen=True)
class QueryInfo:
    filters_count: int
    sorts_count: int
    includes_count: int
    has_field_selection: bool
    fields_selected: int
    pagination_type: Optional[PaginationType]


class QueryBuilder:
    """
    Accumulates a validated query against one entity.

    Every method returns a new builder; the receiver is never modified.
    Names missing from the entity's whitelists are ignored, so the call
    succeeds and has no effect.

        builder = (
            Permission.query()
            .where_eq("guard_name", "api")
            .order_by_desc("created_at")
            .include("roles")
            .offset_paginate(page=2, per_page=20)
        )
    """

    def __init__(self, entity, settings: Optional[QueryBuilderSettings] = None):
        self.entity = entity
        self.settings = settings or get_settings()
        self._filters: Tuple[Filter, ...] = ()
        self._sorts: Tuple[Sort, ...] = ()
        self._includes: Tuple[Include, ...] = ()
        self._fields: Optional[Tuple[str, ...]] = None
        self._pagination: PaginationState = Unset()
        self._appends: Dict[str, str] = {}
        self._with_trashed = False
        self._only_trashed = False
        self._search: Optional[str] = None
        self._warnings: Tuple[str, ...] = ()

    def _copy(self, **changes) -> "QueryBuilder":
        clone = copy.copy(self)
        for name, value in changes.items():
            setattr(clone, f"_{name}", value)
        return clone

    def _warn(self, message: str) -> "QueryBuilder":
        return self._copy(warnings=self._warnings + (message,))

    # ───── Validation ────────────────────────────

    def _check_filter(self, filter: Filter) -> Tuple[Optional[Filter], Optional[str]]:
        """Return the accepted (and coerced) filter, or None and the reason it was dropped."""
        entity = self.entity
        if not entity.is_filter_allowed(filter.field):
            return None, f"Filter on '{filter.field}' is not allowed and was ignored"

        if "." in filter.field:
            root, _ = filter.field.split(".", 1)
            root_column = entity.column(root)
            if root_column is not None and is_json_column(root_column):
                if filter.operator not in JSON_PATH_OPERATORS:
                    return None, f"Operator '{filter.operator.value}' is not supported on '{filter.field}'"
                if filter.operator in _NUMERIC_PATH_OPERATORS:
                    return self._coerce(filter, Float())
                return filter, None

        column = entity.column(filter.field)
        if column is None:
            return None, f"Filter on '{filter.field}' does not match a column and was ignored"
        if filter.operator.category == OperatorCategory.JSON and not is_jsonb_column(column):
            return None, f"Operator '{filter.operator.value}' needs a JSONB column, '{filter.field}' is not one"
        if filter.operator in _JSON_DOCUMENT_OPERATORS:
            return self._check_json_document(filter)
        if filter.operator.category in _COERCED_CATEGORIES:
            return self._coerce(filter, column.type)
        return filter, None

    def _coerce(self, filter: Filter, type_) -> Tuple[Optional[Filter], Optional[str]]:
        policy = self.settings.malformed_value_policy
        if self.settings.strict:
            policy = MalformedValuePolicy.STRICT

        def convert(raw):
            try:
                return coerce_value(type_, raw)
            except (TypeError, ValueError):
                message = f"Malformed value {raw!r} for '{filter.field}'"
                if policy == MalformedValuePolicy.STRICT:
                    raise QueryValidationError.single(filter.field, message)
                zero = zero_value(type_)
                if policy == MalformedValuePolicy.DROP or zero is None:
                    raise _Dropped(f"{message}, filter ignored")
                log.debug("%s, using %r", message, zero)
                return zero

        try:
            value = _map_value(filter.value, convert)
        except _Dropped as dropped:
            return None, str(dropped)
        return Filter(filter.field, filter.operator, value, filter.conjunction), None

    def _check_json_document(self, filter: Filter) -> Tuple[Optional[Filter], Optional[str]]:
        """String operands of ``@>`` / ``<@`` must be JSON documents."""

        def check(raw):
            if not isinstance(raw, str):
                return raw
            try:
                json.loads(raw)
            except ValueError:
                message = f"Malformed JSON document {raw!r} for '{filter.field}'"
                if self.settings.strict:
                    raise QueryValidationError.single(filter.field, message)
                raise _Dropped(f"{message}, filter ignored")
            return raw

        try:
            _map_value(filter.value, check)
        except _Dropped as dropped:
            return None, str(dropped)
        return filter, None

    # ───── Filters ───────────────────────────────

    def filter(self, filter: Filter) -> "QueryBuilder":
        accepted, reason = self._check_filter(filter)
        if accepted is None:
            log.debug("Dropping filter %s %s: %s", filter.field, filter.operator.value, reason)
            return self
        return self._copy(filters=self._filters + (accepted,))

    def filters(self, filters: Iterable[Filter]) -> "QueryBuilder":
        builder = self
        for item in filters:
            builder = builder.filter(item)
        return builder

    def where_eq(self, field: str, value: Any) -> "QueryBuilder":
        return self.filter(Filter.eq(field, value))

    def where_ne(self, field: str, value: Any) -> "QueryBuilder":
        return self.filter(Filter.ne(field, value))

    def where_gt(self, field: str, value: Any) -> "QueryBuilder":
        return self.filter(Filter.gt(field, value))

    def where_gte(self, field: str, value: Any) -> "QueryBuilder":
        return self.filter(Filter.gte(field, value))

    def where_lt(self, field: str, value: Any) -> "QueryBuilder":
        return self.filter(Filter.lt(field, value))

    def where_lte(self, field: str, value: Any) -> "QueryBuilder":
        return self.filter(Filter.lte(field, value))

    def where_like(self, field: str, pattern: str) -> "QueryBuilder":
        return self.filter(Filter.like(field, pattern))

    def where_ilike(self, field: str, pattern: str) -> "QueryBuilder":
        return self.filter(Filter.ilike(field, pattern))

    def where_contains(self, field: str, text: str) -> "QueryBuilder":
        return self.filter(Filter.contains(field, text))

    def where_starts_with(self, field: str, text: str) -> "QueryBuilder":
        return self.filter(Filter.starts_with(field, text))

    def where_ends_with(self, field: str, text: str) -> "QueryBuilder":
        return self.filter(Filter.ends_with(field, text))

    def where_in(self, field: str, values: Iterable[Any]) -> "QueryBuilder":
        return self.filter(Filter.in_values(field, values))

    def where_not_in(self, field: str, values: Iterable[Any]) -> "QueryBuilder":
        return self.filter(Filter.not_in(field, values))

    def where_null(self, field: str) -> "QueryBuilder":
        return self.filter(Filter.is_null(field))

    def where_not_null(self, field: str) -> "QueryBuilder":
        return self.filter(Filter.is_not_null(field))

    def where_between(self, field: str, start: Any, end: Any) -> "QueryBuilder":
        return self.filter(Filter.between(field, start, end))

    def or_where(self, field: str, operator: Union[str, FilterOperator], value: Any = None) -> "QueryBuilder":
        """Add a filter to the OR group, e.g. ``or_where("name", "contains", "admin")``."""
        if not isinstance(operator, FilterOperator):
            parsed = FilterOperator.parse(operator)
            if parsed is None:
                log.debug("Dropping or_where on %r: unknown operator %r", field, operator)
                return self
            operator = parsed
        return self.filter(Filter(field, operator, build_filter_value(operator, value)).or_())

    def search(self, term: Optional[str]) -> "QueryBuilder":
        """Case-insensitive match of ``term`` across the entity's searchable fields."""
        term = term.strip() if term else None
        return self._copy(search=term or None)

    # ───── Sorts ─────────────────────────────────

    def sort(self, field: str, direction: Union[str, SortDirection] = SortDirection.ASC) -> "QueryBuilder":
        if not self.entity.is_sort_allowed(field):
            log.debug("Dropping sort on %r: not allowed", field)
            return self
        if not isinstance(direction, SortDirection):
            direction = SortDirection.parse(direction)
        return self._copy(sorts=self._sorts + (Sort(field, direction),))

    def sorts(self, sorts: Iterable[Sort]) -> "QueryBuilder":
        builder = self
        for item in sorts:
            builder = builder.sort(item.field, item.direction)
        return builder

    def order_by(self, field: str) -> "QueryBuilder":
        return self.sort(field, SortDirection.ASC)

    def order_by_desc(self, field: str) -> "QueryBuilder":
        return self.sort(field, SortDirection.DESC)

    def order_by_string(self, sort_string: str) -> "QueryBuilder":
        return self.sorts(parse_sort_string(sort_string))

    # ───── Includes and fields ───────────────────

    def include(self, relation: Union[str, Include]) -> "QueryBuilder":
        include = relation if isinstance(relation, Include) else Include(relation.strip())
        if not self.entity.is_include_allowed(include.relation):
            log.debug("Dropping include %r: not allowed", include.relation)
            return self
        if include in self._includes:
            return self
        return self._copy(includes=self._includes + (include,))

    def includes(self, relations: Iterable[Union[str, Include]]) -> "QueryBuilder":
        builder = self
        for relation in relations:
            builder = builder.include(relation)
        return builder

    def with_(self, *relations: Union[str, Include]) -> "QueryBuilder":
        return self.includes(relations)

    def select(self, fields: Iterable[str]) -> "QueryBuilder":
        selected: List[str] = []
        for field in fields:
            field = field.strip()
            if not self.entity.is_field_allowed(field):
                log.debug("Dropping field %r: not allowed", field)
            elif field not in selected:
                selected.append(field)
        if not selected:
            return self
        return self._copy(fields=tuple(selected))

    def fields(self, fields: Mapping[str, Union[str, Iterable[str]]]) -> "QueryBuilder":
        """Per-table selection as sent in ``fields[permissions]=id,name``; other tables are ignored."""
        requested = fields.get(self.entity.table_name())
        if requested is None:
            return self
        if isinstance(requested, str):
            requested = requested.split(",")
        return self.select(requested)

    def append(self, key: str, value: str) -> "QueryBuilder":
        appends = dict(self._appends)
        appends[key] = value
        return self._copy(appends=appends)

    # ───── Pagination ────────────────────────────

    def _clamp(self, per_page: int) -> int:
        return clamp_per_page(per_page, self.settings.max_per_page)

    def paginate(self, pagination: Pagination) -> "QueryBuilder":
        return self._copy(pagination=pagination)

    def offset_paginate(self, page: int = 1, per_page: Optional[int] = None) -> "QueryBuilder":
        per_page = self.settings.default_per_page if per_page is None else per_page
        return self._copy(pagination=OffsetPagination(page, self._clamp(per_page)))

    def cursor_paginate(self, per_page: Optional[int] = None, cursor: Optional[str] = None) -> "QueryBuilder":
        per_page = self.settings.default_per_page if per_page is None else per_page
        return self._copy(pagination=CursorPagination(cursor, self._clamp(per_page)))

    def per_page(self, per_page: int) -> "QueryBuilder":
        return self._copy(pagination=with_per_page(self._pagination, self._clamp(per_page)))

    def page(self, page: int) -> "QueryBuilder":
        return self._copy(pagination=with_page(self._pagination, page))

    def cursor(self, cursor: Optional[str]) -> "QueryBuilder":
        return self._copy(pagination=with_cursor(self._pagination, cursor))

    # ───── Scopes and resets ─────────────────────

    def with_trashed(self) -> "QueryBuilder":
        return self._copy(with_trashed=True, only_trashed=False)

    def only_trashed(self) -> "QueryBuilder":
        return self._copy(with_trashed=False, only_trashed=True)

    def clear_filters(self) -> "QueryBuilder":
        return self._copy(filters=())

    def clear_sorts(self) -> "QueryBuilder":
        return self._copy(sorts=())

    def clear_includes(self) -> "QueryBuilder":
        return self._copy(includes=())

    def reset(self) -> "QueryBuilder":
        return QueryBuilder(self.entity, self.settings)

    def apply_default_sort(self) -> "QueryBuilder":
        default = self.entity.default_sort()
        if self._sorts or default is None:
            return self
        return self.sort(default.field, default.direction)

    def apply_default_fields(self) -> "QueryBuilder":
        return self._copy(fields=tuple(self.entity.default_fields()))

    def clone(self) -> "QueryBuilder":
        return self._copy()

    # ───── Getters ───────────────────────────────

    def get_filters(self) -> List[Filter]:
        return list(self._filters)

    def get_sorts(self) -> List[Sort]:
        return list(self._sorts)

    def get_includes(self) -> List[Include]:
        return list(self._includes)

    def get_fields(self) -> Optional[List[str]]:
        return None if self._fields is None else list(self._fields)

    def get_pagination(self) -> PaginationState:
        return self._pagination

    def get_limit(self) -> Optional[int]:
        if isinstance(self._pagination, Unset):
            return None
        return self._pagination.limit

    def get_offset(self) -> Optional[int]:
        if isinstance(self._pagination, OffsetPagination):
            return self._pagination.offset
        return None

    def get_cursor(self) -> Optional[str]:
        if isinstance(self._pagination, CursorPagination):
            return self._pagination.cursor
        return None

    def get_appends(self) -> Dict[str, str]:
        return dict(self._appends)

    def get_search(self) -> Optional[str]:
        return self._search

    def get_warnings(self) -> List[str]:
        return list(self._warnings)

    def is_cursor_pagination(self) -> bool:
        return isinstance(self._pagination, CursorPagination)

    def is_offset_pagination(self) -> bool:
        return isinstance(self._pagination, OffsetPagination)

    def is_with_trashed(self) -> bool:
        return self._with_trashed

    def is_only_trashed(self) -> bool:
        return self._only_trashed

    def effective_pagination(self) -> Pagination:
        """The pagination used at execution time; an unset state follows the configured default."""
        if not isinstance(self._pagination, Unset):
            return self._pagination
        per_page = self._clamp(self.settings.default_per_page)
        if self.settings.default_pagination_type == PaginationType.OFFSET.value:
            return OffsetPagination(1, per_page)
        return CursorPagination(None, per_page)

    def query_info(self) -> QueryInfo:
        pagination_type = None
        if not isinstance(self._pagination, Unset):
            pagination_type = self._pagination.pagination_type
        return QueryInfo(
            filters_count=len(self._filters),
            sorts_count=len(self._sorts),
            includes_count=len(self._includes),
            has_field_selection=self._fields is not None,
            fields_selected=len(self._fields) if self._fields is not None else 0,
            pagination_type=pagination_type,
        )

    def __repr__(self) -> str:
        return (
            f"<QueryBuilder {self.entity.table_name()} filters={len(self._filters)} "
            f"sorts={len(self._sorts)} includes={len(self._includes)} pagination={self._pagination!r}>"
        )

    # ───── From request parameters ───────────────

    @classmethod
    def from_params(cls, entity, params, settings: Optional[QueryBuilderSettings] = None) -> "QueryBuilder":
        """
        Build a query from parsed request parameters (a ``QueryParams``).

        Each dropped parameter is recorded as a warning. With
        ``settings.strict`` the dropped parameters are collected and raised
        together as a QueryValidationError instead.
        """
        builder = cls(entity, settings)
        settings = builder.settings
        errors: Dict[str, List[str]] = {}

        def reject(builder: "QueryBuilder", field: str, message: str) -> "QueryBuilder":
            log.debug("Dropping parameter %s: %s", field, message)
            errors.setdefault(field, []).append(message)
            return builder._warn(message)

        for message in getattr(params, "warnings", None) or ():
            builder = builder._warn(message)

        filters, filter_warnings = parse_filter_params(params.filter or {})
        for message in filter_warnings:
            builder = reject(builder, "filter", message)
        for item in filters:
            accepted, reason = builder._check_filter(item)
            if accepted is None:
                builder = reject(builder, f"filter[{item.field}]", reason)
            else:
                builder = builder._copy(filters=builder._filters + (accepted,))

        if params.sort:
            for item in parse_sort_string(params.sort):
                if entity.is_sort_allowed(item.field):
                    builder = builder.sort(item.field, item.direction)
                else:
                    builder = reject(builder, "sort", f"Sort on '{item.field}' is not allowed and was ignored")

        if params.include:
            for include in parse_include_string(params.include):
                if entity.is_include_allowed(include.relation):
                    builder = builder.include(include)
                else:
                    builder = reject(builder, "include", f"Include '{include.relation}' is not allowed and was ignored")

        requested = (params.fields or {}).get(entity.table_name())
        if requested:
            if isinstance(requested, str):
                requested = requested.split(",")
            requested = [field.strip() for field in requested if field.strip()]
            for field in requested:
                if not entity.is_field_allowed(field):
                    builder = reject(builder, "fields", f"Field '{field}' is not allowed and was ignored")
            builder = builder.select(requested)

        if params.search:
            builder = builder.search(params.search)
        for key, value in (params.append or {}).items():
            builder = builder.append(key, value)

        per_page = params.per_page if params.per_page is not None else settings.default_per_page
        mode = params.pagination_type
        if mode is None:
            if params.cursor is not None:
                mode = PaginationType.CURSOR.value
            elif params.page is not None:
                mode = PaginationType.OFFSET.value
            else:
                mode = settings.default_pagination_type
        if mode == PaginationType.OFFSET.value:
            builder = builder.offset_paginate(params.page or 1, per_page)
        else:
            builder = builder.cursor_paginate(per_page, params.cursor)

        if settings.strict and errors:
            raise QueryValidationError(errors)
        return builder


class _Dropped(Exception):
    pass


def _map_value(value: FilterValue, fn) -> FilterValue:
    match value:
        case Single(value=v):
            return Single(fn(v))
        case Multiple(values=vs):
            return Multiple(fn(v) for v in vs)
        case Range(start=start, end=end):
            return Range(fn(start), fn(end))
