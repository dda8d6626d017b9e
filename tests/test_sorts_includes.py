from fastapi_querybuilder.includes import Include, parse_include_string, relation_paths
from fastapi_querybuilder.sorts import Sort, SortDirection, parse_sort_string, sorts_to_string


def test_parse_sort_string_prefix_and_suffix_forms():
    assert parse_sort_string("name,-created_at") == [Sort.asc("name"), Sort.desc("created_at")]
    assert parse_sort_string("name:asc,email:desc") == [Sort.asc("name"), Sort.desc("email")]


def test_parse_sort_string_skips_blank_entries():
    assert parse_sort_string(" name , , -") == [Sort.asc("name")]


def test_unknown_direction_falls_back_to_ascending():
    assert parse_sort_string("name:sideways") == [Sort.asc("name")]
    assert SortDirection.parse("DESC") is SortDirection.DESC


def test_sorts_to_string():
    assert sorts_to_string([Sort.asc("name"), Sort.desc("id")]) == "name,-id"
    assert SortDirection.DESC.to_sql() == "DESC"


def test_include_properties():
    include = Include("createdBy.organizations.position")

    assert include.segments == ("createdBy", "organizations", "position")
    assert include.root == "createdBy"
    assert include.depth == 3
    assert include.is_nested
    assert include.parent == "createdBy.organizations"
    assert Include("roles").parent is None


def test_parse_include_string_dedupes_and_trims():
    includes = parse_include_string("roles, createdBy . organizations,roles,,a..b")

    assert [str(include) for include in includes] == ["roles", "createdBy.organizations"]


def test_relation_paths_expands_prefixes():
    paths = relation_paths([Include("a.b.c"), Include("a.d"), Include("e")])

    assert paths == ["a", "a.b", "a.b.c", "a.d", "e"]
