import datetime

import pytest

from examples.entities import Permission, Role, User
from fastapi_querybuilder.builder import QueryBuilder, QueryInfo
from fastapi_querybuilder.config import MalformedValuePolicy, QueryBuilderSettings
from fastapi_querybuilder.exceptions import QueryValidationError
from fastapi_querybuilder.filters import Filter, FilterOperator, Multiple, Range, Single
from fastapi_querybuilder.includes import Include
from fastapi_querybuilder.pagination import CursorPagination, OffsetPagination, PaginationType, Unset
from fastapi_querybuilder.params import QueryParams
from fastapi_querybuilder.response import calculate_complexity
from fastapi_querybuilder.sorts import Sort


@pytest.fixture
def builder(settings):
    return QueryBuilder(Permission, settings)


# ───── Whitelists ────────────────────────────────

def test_disallowed_names_are_ignored(builder):
    result = (
        builder.where_eq("password", "x")
        .order_by("secret")
        .include("tokens")
        .select(["password"])
    )

    assert result.get_filters() == []
    assert result.get_sorts() == []
    assert result.get_includes() == []
    assert result.get_fields() is None


def test_allowed_names_are_kept(builder):
    result = builder.where_eq("name", "users.view").order_by_desc("created_at").include("roles").select(["id", "name"])

    assert result.get_filters() == [Filter("name", FilterOperator.EQ, Single("users.view"))]
    assert result.get_sorts() == [Sort.desc("created_at")]
    assert result.get_includes() == [Include("roles")]
    assert result.get_fields() == ["id", "name"]


def test_select_drops_disallowed_fields_and_duplicates(builder):
    result = builder.select(["id", "password", "name", "id"])

    assert result.get_fields() == ["id", "name"]


def test_fields_mapping_uses_entity_table(builder):
    result = builder.fields({"permissions": "id,module", "roles": "name"})

    assert result.get_fields() == ["id", "module"]


def test_include_is_deduplicated(builder):
    result = builder.include("roles").with_("roles", "createdBy")

    assert [str(include) for include in result.get_includes()] == ["roles", "createdBy"]


# ───── Copy on write ─────────────────────────────

def test_builder_methods_do_not_modify_receiver(builder):
    filtered = builder.where_eq("name", "users.view")
    sorted_ = filtered.order_by("name")
    paged = sorted_.offset_paginate(2, 10)

    assert builder.get_filters() == []
    assert filtered.get_sorts() == []
    assert isinstance(sorted_.get_pagination(), Unset)
    assert paged.get_offset() == 10


def test_clone_is_independent(builder):
    original = builder.where_eq("name", "a")
    clone = original.clone().where_eq("module", "b")

    assert len(original.get_filters()) == 1
    assert len(clone.get_filters()) == 2


def test_reset_and_clear(builder):
    full = builder.where_eq("name", "a").order_by("name").include("roles").offset_paginate(2)

    assert full.clear_filters().get_filters() == []
    assert full.clear_sorts().get_sorts() == []
    assert full.clear_includes().get_includes() == []
    assert isinstance(full.reset().get_pagination(), Unset)
    assert full.reset().get_filters() == []


def test_default_sort_and_fields(builder):
    assert builder.apply_default_sort().get_sorts() == [Sort.asc("name")]
    assert builder.order_by("id").apply_default_sort().get_sorts() == [Sort.asc("id")]
    assert builder.apply_default_fields().get_fields() == ["id", "name", "guard_name", "module"]


def test_role_default_fields_follow_declaration_order():
    assert Role.default_fields() == ("id", "name", "guard_name")
    assert User.default_fields() == ("id", "name", "email", "organization_id", "created_at")


# ───── Filters ───────────────────────────────────

def test_or_where_tags_filter(builder):
    result = builder.where_eq("module", "users").or_where("name", "contains", "view")

    filters = result.get_filters()
    assert not filters[0].is_or
    assert filters[1].is_or
    assert filters[1].operator is FilterOperator.CONTAINS


def test_or_where_with_unknown_operator_is_ignored(builder):
    assert builder.or_where("name", "sounds_like", "x").get_filters() == []


def test_search_term_is_trimmed(builder):
    assert builder.search("  users ").get_search() == "users"
    assert builder.search("   ").get_search() is None


def test_json_path_filter_is_allowed_when_whitelisted(builder):
    result = builder.where_gte("attributes.weight", "5").where_eq("attributes.scope", "read")

    assert result.get_filters() == [
        Filter("attributes.weight", FilterOperator.GTE, Single(5.0)),
        Filter("attributes.scope", FilterOperator.EQ, Single("read")),
    ]


def test_json_path_filter_rejects_unsupported_operator(builder):
    assert builder.where_between("attributes.weight", 1, 3).get_filters() == []


def test_json_operator_requires_jsonb(builder):
    # attributes is plain JSON, and not whitelisted as a whole anyway
    assert builder.filter(Filter("attributes", FilterOperator.JSON_HAS_KEY, Single("scope"))).get_filters() == []


def test_values_are_coerced_to_column_type(builder):
    result = (
        builder.where_in("id", ["1", "2"])
        .where_between("created_by_id", "1", "3")
        .where_gte("created_at", "2024-01-03")
    )

    assert result.get_filters() == [
        Filter("id", FilterOperator.IN, Multiple((1, 2))),
        Filter("created_by_id", FilterOperator.BETWEEN, Range(1, 3)),
        Filter("created_at", FilterOperator.GTE, Single(datetime.datetime(2024, 1, 3))),
    ]


def test_malformed_value_is_coerced_to_zero(settings):
    builder = QueryBuilder(Permission, settings)

    assert builder.where_eq("id", "abc").get_filters() == [Filter("id", FilterOperator.EQ, Single(0))]


def test_malformed_date_is_dropped_under_coerce(settings):
    builder = QueryBuilder(Permission, settings)

    assert builder.where_gte("created_at", "yesterday").get_filters() == []


def test_malformed_value_is_dropped_under_drop_policy():
    settings = QueryBuilderSettings(_env_file=None, malformed_value_policy=MalformedValuePolicy.DROP)
    builder = QueryBuilder(Permission, settings)

    assert builder.where_eq("id", "abc").get_filters() == []


def test_malformed_value_raises_under_strict_policy():
    settings = QueryBuilderSettings(_env_file=None, malformed_value_policy=MalformedValuePolicy.STRICT)
    builder = QueryBuilder(Permission, settings)

    with pytest.raises(QueryValidationError) as exc_info:
        builder.where_eq("id", "abc")
    assert "id" in exc_info.value.errors


def test_pattern_operands_are_not_coerced(builder):
    result = builder.where_contains("name", 5)

    assert result.get_filters()[0].value == Single(5)


# ───── Pagination ────────────────────────────────

def test_offset_paginate(builder):
    result = builder.offset_paginate(page=3, per_page=25)

    assert result.is_offset_pagination()
    assert result.get_limit() == 25
    assert result.get_offset() == 50
    assert result.get_cursor() is None


def test_cursor_paginate(builder):
    result = builder.cursor_paginate(per_page=20, cursor="abc")

    assert result.is_cursor_pagination()
    assert result.get_limit() == 20
    assert result.get_offset() is None
    assert result.get_cursor() == "abc"


def test_per_page_is_clamped(builder):
    assert builder.offset_paginate(1, 500).get_limit() == 100
    assert builder.cursor_paginate(0).get_limit() == 1


def test_settings_max_per_page_lowers_the_cap():
    settings = QueryBuilderSettings(_env_file=None, max_per_page=50)

    assert QueryBuilder(Permission, settings).offset_paginate(1, 80).get_limit() == 50


def test_page_is_ignored_in_cursor_mode(builder):
    result = builder.cursor_paginate(20, "c1").page(5)

    assert result.get_pagination() == CursorPagination("c1", 20)


def test_cursor_is_ignored_in_offset_mode(builder):
    result = builder.offset_paginate(2, 20).cursor("x")

    assert result.get_pagination() == OffsetPagination(2, 20)


def test_mutators_on_unset_state(builder):
    assert builder.per_page(30).get_pagination() == CursorPagination(None, 30)
    assert builder.page(3).get_pagination() == OffsetPagination(3, 15)
    assert builder.cursor("abc").get_pagination() == CursorPagination("abc", 15)


def test_effective_pagination_follows_settings():
    cursor_default = QueryBuilder(Permission, QueryBuilderSettings(_env_file=None))
    offset_default = QueryBuilder(
        Permission, QueryBuilderSettings(_env_file=None, default_pagination_type="offset", default_per_page=5)
    )

    assert cursor_default.effective_pagination() == CursorPagination(None, 15)
    assert offset_default.effective_pagination() == OffsetPagination(1, 5)


# ───── Query info ────────────────────────────────

def test_query_info(builder):
    result = (
        builder.where_eq("name", "a")
        .where_eq("module", "b")
        .order_by("name")
        .include("roles")
        .select(["id", "name"])
        .cursor_paginate(10)
    )

    assert result.query_info() == QueryInfo(
        filters_count=2,
        sorts_count=1,
        includes_count=1,
        has_field_selection=True,
        fields_selected=2,
        pagination_type=PaginationType.CURSOR,
    )


def test_query_info_is_deterministic(builder):
    first = builder.where_eq("name", "a").include("roles").offset_paginate(1, 10)
    second = builder.where_eq("name", "a").include("roles").offset_paginate(1, 10)

    assert first.query_info() == second.query_info()
    assert calculate_complexity(first.query_info()) == calculate_complexity(second.query_info())


# ───── From request parameters ───────────────────

def test_from_params_applies_allowed_and_warns_about_the_rest(settings):
    params = QueryParams(
        filter={"name": {"eq": "users.view"}, "password": {"eq": "x"}},
        sort="name,-secret",
        include="roles,tokens",
        fields={"permissions": "id,name,password"},
        page=1,
        per_page=10,
    )

    builder = QueryBuilder.from_params(Permission, params, settings)

    assert builder.get_filters() == [Filter("name", FilterOperator.EQ, Single("users.view"))]
    assert builder.get_sorts() == [Sort.asc("name")]
    assert builder.get_includes() == [Include("roles")]
    assert builder.get_fields() == ["id", "name"]
    assert builder.get_pagination() == OffsetPagination(1, 10)

    warnings = " ".join(builder.get_warnings())
    for name in ("password", "secret", "tokens"):
        assert name in warnings


def test_from_params_keeps_parse_warnings(settings):
    params = QueryParams(filter={"name": {"regex": "x"}}, warnings=["Invalid page 'x' was ignored"])

    builder = QueryBuilder.from_params(Permission, params, settings)

    assert builder.get_filters() == []
    assert builder.get_warnings()[0] == "Invalid page 'x' was ignored"
    assert "regex" in builder.get_warnings()[1]


@pytest.mark.parametrize(
    "params, expected",
    [
        (QueryParams(), CursorPagination(None, 15)),
        (QueryParams(cursor="abc", per_page=5), CursorPagination("abc", 5)),
        (QueryParams(page=2), OffsetPagination(2, 15)),
        (QueryParams(pagination_type="offset", cursor="abc"), OffsetPagination(1, 15)),
        (QueryParams(pagination_type="cursor", page=3), CursorPagination(None, 15)),
    ],
)
def test_from_params_pagination_mode(settings, params, expected):
    assert QueryBuilder.from_params(Permission, params, settings).get_pagination() == expected


def test_from_params_strict_mode_raises():
    settings = QueryBuilderSettings(_env_file=None, strict=True)
    params = QueryParams(filter={"password": {"eq": "x"}}, sort="secret")

    with pytest.raises(QueryValidationError) as exc_info:
        QueryBuilder.from_params(Permission, params, settings)

    assert set(exc_info.value.errors) == {"filter[password]", "sort"}


def test_from_params_search_and_append(settings):
    params = QueryParams(search="users", append={"full_name": "1"})

    builder = QueryBuilder.from_params(Permission, params, settings)

    assert builder.get_search() == "users"
    assert builder.get_appends() == {"full_name": "1"}


def test_entity_from_params_shortcut(settings):
    builder = Permission.from_params(QueryParams(sort="-name"), settings)

    assert builder.get_sorts() == [Sort.desc("name")]
