# fastapi_querybuilder/executor.py

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from .builder import QueryBuilder
from .config import QueryBuilderSettings, get_settings
from .core import CompiledQuery, compile_query, fold_row, next_cursor, strip_hidden
from .exceptions import QueryExecutionError
from .pagination import CursorPagination, PaginationResult, paginate_cursor, paginate_offset

log = logging.getLogger(__name__)

Record = Dict[str, Any]


@contextmanager
def translate_errors(entity):
    """Re-raise driver errors as QueryExecutionError. Nothing is retried."""
    try:
        yield
    except SQLAlchemyError as exc:
        log.error("Query on %s failed: %s", entity.table_name(), exc)
        raise QueryExecutionError(
            f"Query on {entity.table_name()} failed: {exc}",
            statement=getattr(exc, "statement", None),
            params=getattr(exc, "params", None),
        ) from exc


def _fetch(conn: Connection, compiled: CompiledQuery) -> List[Record]:
    return [fold_row(dict(row._mapping), compiled.joins) for row in conn.execute(compiled.select)]


def _load_included(conn: Connection, builder: QueryBuilder, rows: List[Record]):
    includes = builder.get_includes()
    if not includes or not rows:
        return {}
    primary_key = builder.entity.primary_key()
    ids = [row[primary_key] for row in rows]
    return builder.entity.load_relationships(ids, includes, conn)


def _attach(rows: List[Record], builder: QueryBuilder, included) -> None:
    """Put loaded relations on each row under the include path (used by the non-paginated calls)."""
    primary_key = builder.entity.primary_key()
    for row in rows:
        for path, grouped in included.items():
            row[path] = grouped.get(row[primary_key], [])


def run_paginated(conn: Connection, builder: QueryBuilder, settings: QueryBuilderSettings) -> PaginationResult[Record]:
    """Count (offset mode only) then data, on one connection."""
    compiled = compile_query(builder, settings)
    pagination = compiled.pagination

    if isinstance(pagination, CursorPagination):
        rows = _fetch(conn, compiled)
        has_more = len(rows) > pagination.per_page
        rows = rows[:pagination.per_page]
        cursor = next_cursor(rows, compiled) if has_more else None
        included = _load_included(conn, builder, rows)
        result = paginate_cursor(pagination, [strip_hidden(row, compiled) for row in rows], cursor)
    else:
        total = conn.execute(compiled.count).scalar_one()
        rows = _fetch(conn, compiled)
        included = _load_included(conn, builder, rows)
        result = paginate_offset(pagination, total, [strip_hidden(row, compiled) for row in rows])

    return result.model_copy(update={"included": included, "warnings": compiled.warnings})


def run_all(conn: Connection, builder: QueryBuilder, settings: QueryBuilderSettings, limit: Optional[int] = None) -> List[Record]:
    compiled = compile_query(builder, settings, paginate=False)
    if limit is not None:
        compiled.select = compiled.select.limit(limit)
    rows = _fetch(conn, compiled)
    _attach(rows, builder, _load_included(conn, builder, rows))
    return [strip_hidden(row, compiled) for row in rows]


def run_first(conn: Connection, builder: QueryBuilder, settings: QueryBuilderSettings) -> Optional[Record]:
    rows = run_all(conn, builder, settings, limit=1)
    return rows[0] if rows else None


def run_count(conn: Connection, builder: QueryBuilder, settings: QueryBuilderSettings) -> int:
    return conn.execute(compile_query(builder, settings, paginate=False).count).scalar_one()


class QueryExecutor:
    """
    Runs builders against a SQLAlchemy ``Engine``.

    Each call checks out one pooled connection and returns it on every path.
    The count and data queries of a paginated call run back to back without
    a shared transaction, so under concurrent writes they may see slightly
    different snapshots.
    """

    def __init__(self, engine: Engine, settings: Optional[QueryBuilderSettings] = None):
        self.engine = engine
        self.settings = settings or get_settings()

    def execute_paginated(self, builder: QueryBuilder) -> PaginationResult[Record]:
        with translate_errors(builder.entity):
            with self.engine.connect() as conn:
                return run_paginated(conn, builder, self.settings)

    def execute_all(self, builder: QueryBuilder) -> List[Record]:
        with translate_errors(builder.entity):
            with self.engine.connect() as conn:
                return run_all(conn, builder, self.settings)

    def execute_first(self, builder: QueryBuilder) -> Optional[Record]:
        with translate_errors(builder.entity):
            with self.engine.connect() as conn:
                return run_first(conn, builder, self.settings)

    def execute_count(self, builder: QueryBuilder) -> int:
        with translate_errors(builder.entity):
            with self.engine.connect() as conn:
                return run_count(conn, builder, self.settings)

    def to_sql(self, builder: QueryBuilder, literal: bool = False) -> str:
        """The data query as SQL text, for debugging. ``literal=True`` inlines the bound values."""
        stmt = compile_query(builder, self.settings).select
        return str(stmt.compile(dialect=self.engine.dialect, compile_kwargs={"literal_binds": literal}))


class AsyncQueryExecutor:
    """Same API as QueryExecutor for an ``AsyncEngine``; the pipeline runs through ``run_sync``."""

    def __init__(self, engine: AsyncEngine, settings: Optional[QueryBuilderSettings] = None):
        self.engine = engine
        self.settings = settings or get_settings()

    async def execute_paginated(self, builder: QueryBuilder) -> PaginationResult[Record]:
        with translate_errors(builder.entity):
            async with self.engine.connect() as conn:
                return await conn.run_sync(run_paginated, builder, self.settings)

    async def execute_all(self, builder: QueryBuilder) -> List[Record]:
        with translate_errors(builder.entity):
            async with self.engine.connect() as conn:
                return await conn.run_sync(run_all, builder, self.settings)

    async def execute_first(self, builder: QueryBuilder) -> Optional[Record]:
        with translate_errors(builder.entity):
            async with self.engine.connect() as conn:
                return await conn.run_sync(run_first, builder, self.settings)

    async def execute_count(self, builder: QueryBuilder) -> int:
        with translate_errors(builder.entity):
            async with self.engine.connect() as conn:
                return await conn.run_sync(run_count, builder, self.settings)

    def to_sql(self, builder: QueryBuilder, literal: bool = False) -> str:
        stmt = compile_query(builder, self.settings).select
        return str(stmt.compile(dialect=self.engine.dialect, compile_kwargs={"literal_binds": literal}))
