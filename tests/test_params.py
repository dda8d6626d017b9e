from fastapi_querybuilder.includes import Include
from fastapi_querybuilder.params import QueryParams
from fastapi_querybuilder.sorts import Sort


def test_from_query_items():
    params = QueryParams.from_query_items([
        ("filter[name][eq]", "John"),
        ("filter[age][gte]", "18"),
        ("filter[status]", "active"),
        ("sort", "name"),
        ("sort", "-age"),
        ("include", "roles,createdBy"),
        ("fields[permissions]", "id, name"),
        ("append[full_name]", "1"),
        ("page", "2"),
        ("per_page", "25"),
        ("pagination_type", "Offset"),
        ("search", "admin"),
    ])

    assert params.filter == {"name": {"eq": "John"}, "age": {"gte": "18"}, "status": "active"}
    assert params.sort == "name,-age"
    assert params.include == "roles,createdBy"
    assert params.fields == {"permissions": "id, name"}
    assert params.append == {"full_name": "1"}
    assert params.page == 2
    assert params.per_page == 25
    assert params.pagination_type == "offset"
    assert params.search == "admin"
    assert params.warnings == []


def test_repeated_filter_keys_collect_into_a_list():
    params = QueryParams.from_query_items([
        ("filter[id][in]", "1"),
        ("filter[id][in]", "2"),
        ("filter[id][in]", "3"),
        ("filter[status]", "a"),
        ("filter[status]", "b"),
    ])

    assert params.filter == {"id": {"in": ["1", "2", "3"]}, "status": ["a", "b"]}


def test_bare_filter_followed_by_operator():
    params = QueryParams.from_query_items([("filter[name]", "John"), ("filter[name][ne]", "Jane")])

    assert params.filter == {"name": {"eq": "John", "ne": "Jane"}}


def test_invalid_values_are_skipped_with_warnings():
    params = QueryParams.from_query_items([
        ("page", "two"),
        ("per_page", ""),
        ("pagination_type", "keyset"),
        ("filter[a][b][c]", "x"),
        ("sort[name]", "asc"),
        ("weird-key", "1"),
    ])

    assert params.page is None
    assert params.per_page is None
    assert params.pagination_type is None
    assert params.filter == {}
    assert len(params.warnings) == 6


def test_unknown_plain_parameters_are_ignored():
    params = QueryParams.from_query_items([("utm_source", "mail"), ("cursor", "abc")])

    assert params.cursor == "abc"
    assert params.warnings == []


def test_accessors():
    params = QueryParams(sort="name,-id", include="roles,roles", fields={"permissions": "id,,name "})

    assert params.get_sorts() == [Sort.asc("name"), Sort.desc("id")]
    assert params.get_includes() == [Include("roles")]
    assert params.get_fields("permissions") == ["id", "name"]
    assert params.get_fields("roles") is None
    assert QueryParams().get_sorts() == []


def test_to_dict():
    params = QueryParams(filter={"name": "x"}, page=1)

    assert params.to_dict()["filter"] == {"name": "x"}
    assert params.to_dict()["page"] == 1
    assert "warnings" not in params.to_dict()


def test_to_query_items_leaves_navigation_out():
    params = QueryParams(
        filter={"name": {"eq": "John"}, "id": {"in": ["1", "2"]}, "status": "active"},
        sort="-name",
        include="roles",
        fields={"permissions": "id,name"},
        page=3,
        per_page=10,
        cursor="abc",
    )

    assert params.to_query_items() == [
        ("filter[name][eq]", "John"),
        ("filter[id][in]", "1"),
        ("filter[id][in]", "2"),
        ("filter[status]", "active"),
        ("sort", "-name"),
        ("include", "roles"),
        ("fields[permissions]", "id,name"),
    ]


def test_to_query_items_reverses_from_query_items():
    items = [("filter[id][in]", "1"), ("filter[id][in]", "2"), ("sort", "name"), ("search", "admin")]

    assert QueryParams.from_query_items(items).to_query_items() == items
