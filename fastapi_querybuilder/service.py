# fastapi_querybuilder/service.py

import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .builder import QueryBuilder
from .config import QueryBuilderSettings, get_settings
from .executor import AsyncQueryExecutor, QueryExecutor
from .pagination import PaginationResult, PaginationType
from .params import QueryParams
from .response import DataResponse, QueryMeta, QueryResponse, ResponseLinks, SimpleMeta

log = logging.getLogger(__name__)

Record = Dict[str, Any]


def build_query_response(
    builder: QueryBuilder,
    result: PaginationResult[Record],
    execution_time_ms: float,
    path: str,
    settings: QueryBuilderSettings,
    query: Sequence[Tuple[str, Any]] = (),
) -> QueryResponse[Record]:
    """Wrap a page with meta, links and warnings. Links repeat ``query``."""
    info = builder.query_info()
    meta = QueryMeta.from_query_info(info, round(execution_time_ms, 3), settings.api_version)
    meta.warnings = [*builder.get_warnings(), *result.warnings]
    if meta.complexity_score > settings.complexity_warning_threshold:
        meta.warnings.append(
            f"Query complexity score {meta.complexity_score} exceeds {settings.complexity_warning_threshold}"
        )

    pagination = result.pagination
    if pagination.pagination_type == PaginationType.OFFSET:
        links = ResponseLinks.from_pagination(
            path, pagination.current_page or 1, pagination.total_pages or 0, pagination.per_page, query
        )
    else:
        links = ResponseLinks.from_cursor(
            path, pagination.per_page, pagination.prev_cursor, pagination.next_cursor, query
        )

    return QueryResponse(
        data=result.data,
        pagination=pagination,
        meta=meta,
        links=links,
        included=result.included,
    )


class QueryService:
    """
    Runs list and detail queries for one entity from request parameters.

        service = QueryService(Permission, QueryExecutor(engine))
        response = service.index(params, path="/permissions")
    """

    def __init__(self, entity, executor: QueryExecutor, settings: Optional[QueryBuilderSettings] = None):
        self.entity = entity
        self.executor = executor
        self.settings = settings or executor.settings or get_settings()

    def builder(self, params: QueryParams) -> QueryBuilder:
        return QueryBuilder.from_params(self.entity, params, self.settings)

    def index(self, params: QueryParams, path: str = "/") -> QueryResponse[Record]:
        started = time.perf_counter()
        builder = self.builder(params)
        query = params.to_query_items()
        result = self.executor.execute_paginated(builder).with_path(path, query)
        elapsed = (time.perf_counter() - started) * 1000
        log.debug("%s index: %d rows in %.1f ms", self.entity.table_name(), len(result), elapsed)
        return build_query_response(builder, result, elapsed, path, self.settings, query)

    def all(self, params: QueryParams) -> List[Record]:
        return self.executor.execute_all(self.builder(params))

    def first(self, params: QueryParams) -> Optional[DataResponse[Record]]:
        record = self.executor.execute_first(self.builder(params))
        if record is None:
            return None
        return DataResponse(data=record, meta=SimpleMeta(api_version=self.settings.api_version))

    def count(self, params: QueryParams) -> int:
        return self.executor.execute_count(self.builder(params))


class AsyncQueryService:
    def __init__(self, entity, executor: AsyncQueryExecutor, settings: Optional[QueryBuilderSettings] = None):
        self.entity = entity
        self.executor = executor
        self.settings = settings or executor.settings or get_settings()

    def builder(self, params: QueryParams) -> QueryBuilder:
        return QueryBuilder.from_params(self.entity, params, self.settings)

    async def index(self, params: QueryParams, path: str = "/") -> QueryResponse[Record]:
        started = time.perf_counter()
        builder = self.builder(params)
        query = params.to_query_items()
        result = (await self.executor.execute_paginated(builder)).with_path(path, query)
        elapsed = (time.perf_counter() - started) * 1000
        log.debug("%s index: %d rows in %.1f ms", self.entity.table_name(), len(result), elapsed)
        return build_query_response(builder, result, elapsed, path, self.settings, query)

    async def all(self, params: QueryParams) -> List[Record]:
        return await self.executor.execute_all(self.builder(params))

    async def first(self, params: QueryParams) -> Optional[DataResponse[Record]]:
        record = await self.executor.execute_first(self.builder(params))
        if record is None:
            return None
        return DataResponse(data=record, meta=SimpleMeta(api_version=self.settings.api_version))

    async def count(self, params: QueryParams) -> int:
        return await self.executor.execute_count(self.builder(params))
