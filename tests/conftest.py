"""Pytest configuration and fixtures."""

import re

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from examples.database import create_schema
from fastapi_querybuilder.config import QueryBuilderSettings
from fastapi_querybuilder.executor import QueryExecutor


@pytest.fixture
def engine():
    """In-memory SQLite database with the example schema and seed rows."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        create_schema(conn)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def settings():
    return QueryBuilderSettings(_env_file=None)


@pytest.fixture
def executor(engine, settings):
    return QueryExecutor(engine, settings)


def render_sql(stmt) -> str:
    text = str(stmt.compile(compile_kwargs={"literal_binds": True}))
    return re.sub(r"\s+", " ", text).strip()


@pytest.fixture
def sql():
    """Compile a statement with inlined values and collapse whitespace."""
    return render_sql
