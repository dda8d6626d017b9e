# fastapi_querybuilder/exceptions.py

from typing import Any, Dict, List, Optional


class QueryBuilderError(Exception):
    """Base class for every error raised by the query builder."""


class QueryValidationError(QueryBuilderError):
    """Raised for rejected query input. Only used when strict mode is enabled."""

    def __init__(self, errors: Dict[str, List[str]]):
        self.errors = errors
        detail = "; ".join(
            f"{field}: {', '.join(messages)}" for field, messages in errors.items()
        )
        super().__init__(f"Invalid query parameters: {detail}")

    @classmethod
    def single(cls, field: str, message: str) -> "QueryValidationError":
        return cls({field: [message]})


class QueryExecutionError(QueryBuilderError):
    """A database error raised while running the count or data query."""

    def __init__(self, message: str, statement: Optional[str] = None, params: Any = None):
        self.statement = statement
        self.params = params
        super().__init__(message)
