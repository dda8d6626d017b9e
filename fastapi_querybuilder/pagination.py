# fastapi_querybuilder/pagination.py

import base64
import binascii
import json
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar, Union
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field

log = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 15
MAX_PER_PAGE = 100

_NAVIGATION_KEYS = ("page", "per_page", "cursor")

T = TypeVar("T")
U = TypeVar("U")


class PaginationType(str, Enum):
    OFFSET = "offset"
    CURSOR = "cursor"


def clamp_per_page(per_page: int, max_per_page: int = MAX_PER_PAGE) -> int:
    return max(1, min(int(per_page), max_per_page))


# ───── Pagination state ──────────────────────────

@dataclass(frozen=True)
class Unset:
    pass


@dataclass(frozen=True)
class OffsetPagination:
    page: int = 1
    per_page: int = DEFAULT_PER_PAGE

    def __post_init__(self):
        object.__setattr__(self, "page", max(1, int(self.page)))
        object.__setattr__(self, "per_page", clamp_per_page(self.per_page))

    @property
    def limit(self) -> int:
        return self.per_page

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @property
    def pagination_type(self) -> PaginationType:
        return PaginationType.OFFSET


@dataclass(frozen=True)
class CursorPagination:
    cursor: Optional[str] = None
    per_page: int = DEFAULT_PER_PAGE

    def __post_init__(self):
        object.__setattr__(self, "per_page", clamp_per_page(self.per_page))

    @property
    def limit(self) -> int:
        return self.per_page

    @property
    def pagination_type(self) -> PaginationType:
        return PaginationType.CURSOR


PaginationState = Union[Unset, OffsetPagination, CursorPagination]
Pagination = Union[OffsetPagination, CursorPagination]


def with_per_page(state: PaginationState, per_page: int) -> Pagination:
    match state:
        case OffsetPagination(page=page):
            return OffsetPagination(page, per_page)
        case CursorPagination(cursor=cursor):
            return CursorPagination(cursor, per_page)
        case Unset():
            return CursorPagination(None, per_page)


def with_page(state: PaginationState, page: int) -> Pagination:
    """Only meaningful in offset mode; a cursor state is returned unchanged."""
    match state:
        case OffsetPagination(per_page=per_page):
            return OffsetPagination(page, per_page)
        case CursorPagination():
            return state
        case Unset():
            return OffsetPagination(page, DEFAULT_PER_PAGE)


def with_cursor(state: PaginationState, cursor: Optional[str]) -> Pagination:
    """Only meaningful in cursor mode; an offset state is returned unchanged."""
    match state:
        case CursorPagination(per_page=per_page):
            return CursorPagination(cursor, per_page)
        case OffsetPagination():
            return state
        case Unset():
            return CursorPagination(cursor, DEFAULT_PER_PAGE)


# ───── Cursor codec ──────────────────────────────

def encode_cursor(values: Dict[str, Any]) -> str:
    """Encode ordering-key values of the last row as an opaque URL-safe token."""
    payload = json.dumps(values, separators=(",", ":"), sort_keys=True, default=str)
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Optional[Dict[str, Any]]:
    """Return the decoded key values, or None if the token is malformed."""
    if not cursor:
        return None
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("ascii"))
        values = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        log.debug("Could not decode cursor %r", cursor)
        return None
    if not isinstance(values, dict):
        return None
    return values


# ───── Results ───────────────────────────────────

class PaginationInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pagination_type: PaginationType
    current_page: Optional[int] = None
    per_page: int
    total: Optional[int] = None
    total_pages: Optional[int] = None
    from_: Optional[int] = Field(default=None, alias="from")
    to: Optional[int] = None
    has_more_pages: bool = False
    prev_page: Optional[int] = None
    next_page: Optional[int] = None
    # the cursor of the current page, not a backward cursor
    prev_cursor: Optional[str] = None
    next_cursor: Optional[str] = None
    first_page_url: Optional[str] = None
    last_page_url: Optional[str] = None
    prev_page_url: Optional[str] = None
    next_page_url: Optional[str] = None
    path: str = "/"


class PaginationResult(BaseModel, Generic[T]):
    data: List[T]
    pagination: PaginationInfo
    # relation path -> parent key -> related rows
    included: Dict[str, Dict[Any, List[Dict[str, Any]]]] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list, exclude=True)

    def __len__(self) -> int:
        return len(self.data)

    def is_empty(self) -> bool:
        return not self.data

    def map(self, fn: Callable[[List[T]], List[U]]) -> "PaginationResult[U]":
        return PaginationResult(
            data=fn(self.data), pagination=self.pagination, included=self.included, warnings=self.warnings
        )

    def with_path(self, path: str, query: Sequence[Tuple[str, Any]] = ()) -> "PaginationResult[T]":
        """
        Rebase the navigation URLs on ``path``.

        ``query`` holds the request's other parameters (filters, sort,
        includes, fields) so every link repeats the same query.
        """
        info = self.pagination.model_copy(update={"path": path})
        per_page = info.per_page
        if info.pagination_type == PaginationType.OFFSET:
            info.first_page_url = navigation_url(path, query, page=1, per_page=per_page)
            info.last_page_url = navigation_url(path, query, page=info.total_pages or 1, per_page=per_page)
            if info.prev_page is not None:
                info.prev_page_url = navigation_url(path, query, page=info.prev_page, per_page=per_page)
            if info.next_page is not None:
                info.next_page_url = navigation_url(path, query, page=info.next_page, per_page=per_page)
        else:
            if info.next_cursor:
                info.next_page_url = navigation_url(path, query, cursor=info.next_cursor, per_page=per_page)
            if info.prev_cursor:
                info.prev_page_url = navigation_url(path, query, cursor=info.prev_cursor, per_page=per_page)
        return self.model_copy(update={"pagination": info})


def navigation_url(path: str, query: Sequence[Tuple[str, Any]] = (), **navigation) -> str:
    """
    ``path`` with the request's query items, replacing ``page``, ``per_page``
    and ``cursor`` by ``navigation`` (None values are left out).
    """
    items = [(key, value) for key, value in query if key not in _NAVIGATION_KEYS]
    items.extend((key, value) for key, value in navigation.items() if value is not None)
    return f"{path}?{urlencode(items, safe='[],')}"


def _page_url(page: int, per_page: int) -> str:
    return navigation_url("", page=page, per_page=per_page)


def paginate_offset(state: OffsetPagination, total: int, data: List[T]) -> PaginationResult[T]:
    total_pages = math.ceil(total / state.per_page) if total else 0
    has_more = state.page < total_pages

    info = PaginationInfo(
        pagination_type=PaginationType.OFFSET,
        current_page=state.page,
        per_page=state.per_page,
        total=total,
        total_pages=total_pages,
        from_=state.offset + 1 if total > 0 and data else None,
        to=min(state.offset + len(data), total) if total > 0 and data else None,
        has_more_pages=has_more,
        prev_page=state.page - 1 if state.page > 1 else None,
        next_page=state.page + 1 if has_more else None,
        first_page_url=_page_url(1, state.per_page),
        last_page_url=_page_url(max(total_pages, 1), state.per_page),
        prev_page_url=_page_url(state.page - 1, state.per_page) if state.page > 1 else None,
        next_page_url=_page_url(state.page + 1, state.per_page) if has_more else None,
    )
    return PaginationResult(data=data, pagination=info)


def paginate_cursor(state: CursorPagination, data: List[T], next_cursor: Optional[str]) -> PaginationResult[T]:
    """
    ``data`` must already be trimmed to ``per_page`` rows.

    ``prev_cursor`` is the cursor this page was requested with, so following
    it reloads the current page. Keyset cursors only walk forward.
    """
    info = PaginationInfo(
        pagination_type=PaginationType.CURSOR,
        per_page=state.per_page,
        has_more_pages=next_cursor is not None,
        prev_cursor=state.cursor,
        next_cursor=next_cursor,
        next_page_url=navigation_url("", cursor=next_cursor, per_page=state.per_page) if next_cursor else None,
    )
    return PaginationResult(data=data, pagination=info)
