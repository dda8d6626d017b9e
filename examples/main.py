import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
import uvicorn

from fastapi_querybuilder.builder import QueryBuilder
from fastapi_querybuilder.dependencies import QueryBuilderDependency, get_query_params, register_exception_handlers
from fastapi_querybuilder.executor import AsyncQueryExecutor
from fastapi_querybuilder.params import QueryParams
from fastapi_querybuilder.response import DataResponse, QueryResponse
from fastapi_querybuilder.service import AsyncQueryService

from examples.database import metadata, roles, seed
from examples.entities import Organization, Permission, User
from examples.schemas import CountResponse, PermissionResponse, SqlResponse, UserResponse

# ───── App & DB Setup ───────────────────────────

DATABASE_URL = os.getenv("EXAMPLE_DATABASE_URL", "sqlite+aiosqlite:///./test.db")


def create_app(engine: AsyncEngine) -> FastAPI:
    executor = AsyncQueryExecutor(engine)
    permissions = AsyncQueryService(Permission, executor)
    users = AsyncQueryService(User, executor)

    # ───── Lifespan / Seed Data ─────────────────

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
            seeded = (await conn.execute(select(func.count()).select_from(roles))).scalar_one()
            if not seeded:
                await conn.run_sync(seed)
        yield
        await engine.dispose()

    # ───── FastAPI App ──────────────────────────

    app = FastAPI(lifespan=lifespan)
    register_exception_handlers(app)

    @app.get("/permissions", response_model=QueryResponse[PermissionResponse], response_model_exclude_none=True)
    async def list_permissions(request: Request, params: QueryParams = Depends(get_query_params)):
        """
        Examples:

            /permissions?filter[guard_name][eq]=web&sort=-created_at&page=1&per_page=2
            /permissions?filter[attributes.weight][gte]=5&include=roles
            /permissions?include=createdBy.organizations.position.level&per_page=3
        """
        return await permissions.index(params, path=request.url.path)

    @app.get("/permissions/first", response_model=DataResponse[PermissionResponse], response_model_exclude_none=True)
    async def first_permission(params: QueryParams = Depends(get_query_params)):
        response = await permissions.first(params)
        if response is None:
            raise HTTPException(status_code=404, detail="No permission matches the query")
        return response

    @app.get("/permissions/count", response_model=CountResponse)
    async def count_permissions(params: QueryParams = Depends(get_query_params)):
        return CountResponse(count=await permissions.count(params))

    @app.get("/permissions/sql", response_model=SqlResponse)
    async def permissions_sql(query: QueryBuilder = QueryBuilderDependency(Permission)):
        return SqlResponse(sql=executor.to_sql(query, literal=True), warnings=query.get_warnings())

    @app.get("/users", response_model=QueryResponse[UserResponse], response_model_exclude_none=True)
    async def list_users(request: Request, params: QueryParams = Depends(get_query_params)):
        return await users.index(params, path=request.url.path)

    @app.get("/organizations")
    async def list_organizations(query: QueryBuilder = QueryBuilderDependency(Organization)):
        return await executor.execute_all(query)

    return app


app = create_app(create_async_engine(DATABASE_URL, echo=True))

# ───── Run Server ────────────────────────────────

if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    uvicorn.run("examples.main:app", host="0.0.0.0", port=8000, reload=True)
