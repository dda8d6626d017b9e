# fastapi_querybuilder/config.py

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MalformedValuePolicy(str, Enum):
    COERCE = "coerce"  # substitute the type's zero value
    DROP = "drop"
    STRICT = "strict"


class QueryBuilderSettings(BaseSettings):
    """
    Query builder settings.

    Environment variables use the QUERYBUILDER_ prefix, e.g.
    QUERYBUILDER_DEFAULT_PER_PAGE=25 or QUERYBUILDER_STRICT=true.
    """

    model_config = SettingsConfigDict(
        env_prefix="QUERYBUILDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    default_per_page: int = Field(default=15, ge=1)
    max_per_page: int = Field(default=100, ge=1)
    default_pagination_type: str = Field(default="cursor", pattern="^(cursor|offset)$")

    # Reject disallowed parameters instead of dropping them
    strict: bool = False
    malformed_value_policy: MalformedValuePolicy = MalformedValuePolicy.COERCE

    api_version: str = "1.0"
    complexity_warning_threshold: int = Field(default=70, ge=0, le=100)
    log_sql: bool = False


@lru_cache
def get_settings() -> QueryBuilderSettings:
    return QueryBuilderSettings()
