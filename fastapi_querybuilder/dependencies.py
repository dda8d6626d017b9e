# fastapi_querybuilder/dependencies.py

import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .builder import QueryBuilder
from .config import QueryBuilderSettings
from .exceptions import QueryExecutionError, QueryValidationError
from .params import QueryParams
from .response import ErrorContext, QueryErrorResponse

log = logging.getLogger(__name__)


def get_query_params(
    request: Request,
    sort: Optional[str] = Query(None, description="e.g. name,-created_at or name:asc,created_at:desc"),
    include: Optional[str] = Query(None, description="Comma-separated relations, e.g. roles,createdBy.organizations"),
    page: Optional[str] = Query(None, description="Page number, selects offset pagination"),
    per_page: Optional[str] = Query(None, description="Rows per page, clamped to 1..100"),
    pagination_type: Optional[str] = Query(None, description="cursor or offset"),
    cursor: Optional[str] = Query(None, description="next_cursor from a previous page"),
    search: Optional[str] = Query(None, description="A string for global search across searchable fields."),
) -> QueryParams:
    """
    The plain parameters are declared for the OpenAPI schema only.
    ``filter[field][op]``, ``fields[table]`` and ``append[key]`` have no fixed
    names, so everything is parsed from the raw query string.
    """
    return QueryParams.from_query_items(request.query_params.multi_items())


def QueryBuilderDependency(entity, settings: Optional[QueryBuilderSettings] = None):
    """
    A ``Depends`` yielding a validated QueryBuilder for ``entity``.

        @app.get("/permissions")
        def index(query: QueryBuilder = QueryBuilderDependency(Permission)):
            ...

    In strict mode rejected parameters answer 400.
    """
    def wrapper(params: QueryParams = Depends(get_query_params)) -> QueryBuilder:
        try:
            return QueryBuilder.from_params(entity, params, settings)
        except QueryValidationError as e:
            raise HTTPException(status_code=400, detail={"message": str(e), "errors": e.errors})
    return Depends(wrapper)


def _error_context(request: Request) -> ErrorContext:
    return ErrorContext(
        request_id=request.headers.get("x-request-id"),
        endpoint=request.url.path,
        query_params=dict(request.query_params),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Answer QueryExecutionError with a 500 and QueryValidationError with a 400, as QueryErrorResponse bodies."""

    @app.exception_handler(QueryExecutionError)
    async def handle_execution_error(request: Request, exc: QueryExecutionError):
        log.error("Query failed on %s: %s", request.url.path, exc)
        body = QueryErrorResponse(
            error="query_execution_error",
            message="The query could not be executed",
            code=500,
            context=_error_context(request),
        )
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))

    @app.exception_handler(QueryValidationError)
    async def handle_validation_error(request: Request, exc: QueryValidationError):
        body = QueryErrorResponse(
            error="query_validation_error",
            message=str(exc),
            code=400,
            errors=exc.errors,
            context=_error_context(request),
        )
        return JSONResponse(status_code=400, content=body.model_dump(mode="json"))
