# fastapi_querybuilder/response.py

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .builder import QueryInfo
from .filters import Filter, filter_value_to_python
from .includes import Include
from .pagination import PaginationInfo, PaginationResult, PaginationType, navigation_url
from .sorts import Sort

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CacheStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"
    STALE = "stale"
    DISABLED = "disabled"


# -------------------
# Links
# -------------------

class Link(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    href: str
    method: str = "GET"
    type_: str = Field(default="application/json", alias="type")
    title: Optional[str] = None


class ResponseLinks(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    self_: Link = Field(alias="self")
    first: Optional[Link] = None
    prev: Optional[Link] = None
    next: Optional[Link] = None
    last: Optional[Link] = None
    related: Dict[str, Link] = Field(default_factory=dict)

    @classmethod
    def from_pagination(
        cls,
        base_url: str,
        current_page: int,
        total_pages: int,
        per_page: int,
        query: Sequence[Tuple[str, Any]] = (),
    ) -> "ResponseLinks":
        def page_link(page: int, title: str) -> Link:
            return Link(href=navigation_url(base_url, query, page=page, per_page=per_page), title=title)

        last_page = max(total_pages, 1)
        return cls(
            self_=page_link(current_page, "Current page"),
            first=page_link(1, "First page"),
            prev=page_link(current_page - 1, "Previous page") if current_page > 1 else None,
            next=page_link(current_page + 1, "Next page") if current_page < total_pages else None,
            last=page_link(last_page, "Last page"),
        )

    @classmethod
    def from_cursor(
        cls,
        base_url: str,
        per_page: int,
        cursor: Optional[str] = None,
        next_cursor: Optional[str] = None,
        query: Sequence[Tuple[str, Any]] = (),
    ) -> "ResponseLinks":
        """``query`` carries the filters and sort the cursor was encoded under."""

        def cursor_link(value: Optional[str], title: str) -> Link:
            return Link(href=navigation_url(base_url, query, cursor=value, per_page=per_page), title=title)

        return cls(
            self_=cursor_link(cursor, "Current page"),
            first=cursor_link(None, "First page"),
            next=cursor_link(next_cursor, "Next page") if next_cursor else None,
        )


# -------------------
# Meta
# -------------------

def calculate_complexity(info: QueryInfo) -> int:
    """
    Heuristic 0-100 score, for diagnostics only.

    Base 10; +5 per filter (max 25), +3 per sort (max 15), +8 per include
    (max 30); -5 for field selection, -5 for cursor and +5 for offset pagination.
    """
    score = 10
    score += min(info.filters_count * 5, 25)
    score += min(info.sorts_count * 3, 15)
    score += min(info.includes_count * 8, 30)
    if info.has_field_selection:
        score -= 5
    if info.pagination_type == PaginationType.CURSOR:
        score -= 5
    elif info.pagination_type == PaginationType.OFFSET:
        score += 5
    return max(0, min(score, 100))


class QueryMeta(BaseModel):
    execution_time_ms: float = 0.0
    filters_applied: int = 0
    sorts_applied: int = 0
    includes_applied: int = 0
    field_selection_used: bool = False
    fields_selected: int = 0
    complexity_score: int = 0
    cache_status: CacheStatus = CacheStatus.DISABLED
    api_version: str = "1.0"
    request_timestamp: datetime = Field(default_factory=_now)
    optimized: bool = False
    warnings: List[str] = Field(default_factory=list)

    @classmethod
    def from_query_info(cls, info: QueryInfo, execution_time_ms: float = 0.0, api_version: str = "1.0") -> "QueryMeta":
        return cls(
            execution_time_ms=execution_time_ms,
            filters_applied=info.filters_count,
            sorts_applied=info.sorts_count,
            includes_applied=info.includes_count,
            field_selection_used=info.has_field_selection,
            fields_selected=info.fields_selected,
            complexity_score=calculate_complexity(info),
            api_version=api_version,
            # keyset pagination with a narrowed projection
            optimized=info.pagination_type == PaginationType.CURSOR and info.has_field_selection,
        )


# -------------------
# Responses
# -------------------

class QueryResponse(BaseModel, Generic[T]):
    data: List[T]
    pagination: PaginationInfo
    meta: QueryMeta = Field(default_factory=QueryMeta)
    links: Optional[ResponseLinks] = None
    included: Dict[str, Dict[Any, List[Dict[str, Any]]]] = Field(default_factory=dict)

    @classmethod
    def from_pagination_result(cls, result: PaginationResult[T]) -> "QueryResponse[T]":
        meta = QueryMeta(warnings=list(result.warnings))
        return cls(data=result.data, pagination=result.pagination, meta=meta, included=result.included)

    def with_meta(self, meta: QueryMeta) -> "QueryResponse[T]":
        return self.model_copy(update={"meta": meta})

    def with_links(self, links: ResponseLinks) -> "QueryResponse[T]":
        return self.model_copy(update={"links": links})

    def with_included(self, included: Dict[str, Dict[Any, List[Dict[str, Any]]]]) -> "QueryResponse[T]":
        return self.model_copy(update={"included": included})

    def add_warning(self, warning: str) -> "QueryResponse[T]":
        meta = self.meta.model_copy(update={"warnings": [*self.meta.warnings, warning]})
        return self.model_copy(update={"meta": meta})

    @staticmethod
    def calculate_complexity(info: QueryInfo) -> int:
        return calculate_complexity(info)


class SimpleMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: datetime = Field(default_factory=_now)
    api_version: str = "1.0"
    type_: str = Field(default="single", alias="type")


class DataResponse(BaseModel, Generic[T]):
    data: T
    meta: SimpleMeta = Field(default_factory=SimpleMeta)
    links: Optional[ResponseLinks] = None


class ErrorContext(BaseModel):
    timestamp: datetime = Field(default_factory=_now)
    request_id: Optional[str] = None
    endpoint: Optional[str] = None
    query_params: Optional[Dict[str, Any]] = None


class QueryErrorResponse(BaseModel):
    error: str
    message: str
    code: int
    errors: Optional[Dict[str, List[str]]] = None
    context: Optional[ErrorContext] = None


# -------------------
# Applied parameters (debug output)
# -------------------

class AppliedFilter(BaseModel):
    field: str
    operator: str
    value: Any = None
    conjunction: str = "and"


class AppliedSort(BaseModel):
    field: str
    direction: str
    priority: int


class AppliedInclude(BaseModel):
    relation: str
    depth: int
    nested: bool


def filters_to_applied(filters: Iterable[Filter]) -> List[AppliedFilter]:
    return [
        AppliedFilter(
            field=item.field,
            operator=item.operator.value,
            value=filter_value_to_python(item.value),
            conjunction=item.conjunction,
        )
        for item in filters
    ]


def sorts_to_applied(sorts: Iterable[Sort]) -> List[AppliedSort]:
    return [
        AppliedSort(field=sort.field, direction=str(getattr(sort.direction, "value", sort.direction)), priority=priority)
        for priority, sort in enumerate(sorts, start=1)
    ]


def includes_to_applied(includes: Iterable[Include]) -> List[AppliedInclude]:
    return [
        AppliedInclude(relation=include.relation, depth=include.depth, nested=include.is_nested)
        for include in includes
    ]
