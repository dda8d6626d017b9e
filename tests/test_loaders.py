import pytest

from examples.entities import Organization, Permission, Role, User
from fastapi_querybuilder.includes import Include
from fastapi_querybuilder.loaders import AuditRelationshipLoader, RelationshipLoader


@pytest.fixture
def conn(engine):
    with engine.connect() as conn:
        yield conn


def names(rows):
    return sorted(row["name"] for row in rows)


# ───── Relation metadata ─────────────────────────

@pytest.mark.parametrize(
    "entity, relation, expected",
    [
        (Permission, "createdBy", "created_by_id"),
        (Permission, "organizations", "organization_id"),
        (Permission, "categories", "category_id"),
        (Permission, "user", "user_id"),
        (Organization, "users", "organization_id"),
    ],
)
def test_foreign_key_inference(entity, relation, expected):
    assert entity.get_foreign_key(relation) == expected


def test_join_clause_for_belongs_to():
    join = User.build_join_clause("organization")

    assert str(join) == "LEFT JOIN organizations AS organization ON sys_users.organization_id = organization.id"
    assert join.columns == ("id", "name", "code")
    assert join.label("name") == "organization__name"


def test_join_clause_only_for_single_row_relations():
    assert Organization.build_join_clause("users") is None
    assert User.build_join_clause("unknown") is None


def test_should_eager_load():
    assert User.should_eager_load("organization")
    assert not User.should_eager_load("organizations")
    assert not Permission.should_eager_load("roles")


def test_validate_includes():
    includes = [Include("roles"), Include("secrets"), Include("createdBy.organizations")]

    assert Permission.validate_includes(includes) == [Include("roles"), Include("createdBy.organizations")]


# ───── Generic loader ────────────────────────────

def test_has_many_query(sql):
    stmt = RelationshipLoader(Organization).build_query("users", [1, 2])

    assert sql(stmt) == (
        "SELECT sys_users.id, sys_users.name, sys_users.email, sys_users.organization_id AS parent_key "
        "FROM sys_users WHERE sys_users.organization_id IN (1, 2)"
    )


def test_belongs_to_many_query(sql):
    text = sql(RelationshipLoader(Permission).build_query("roles", [5]))

    assert "role_permissions.permission_id AS parent_key" in text
    assert "JOIN role_permissions ON role_permissions.role_id = roles.id" in text
    assert "WHERE role_permissions.permission_id IN (5)" in text


def test_belongs_to_query(sql):
    text = sql(RelationshipLoader(User).build_query("organization", [1, 3]))

    assert "sys_users.id AS parent_key" in text
    assert "JOIN organizations ON sys_users.organization_id = organizations.id" in text


def test_unknown_relation_has_no_query():
    assert RelationshipLoader(Permission).build_query("secrets", [1]) is None


def test_load_groups_by_parent(conn):
    grouped = RelationshipLoader(Permission).load([1, 4], "roles", conn)

    assert names(grouped[1]) == ["admin", "viewer"]
    assert names(grouped[4]) == ["admin", "editor"]


def test_load_belongs_to(conn):
    grouped = RelationshipLoader(User).load([1, 2, 3], "organization", conn)

    assert grouped[1] == [{"id": 1, "name": "Acme", "code": "ACME"}]
    assert names(grouped[2]) == ["Globex"]
    assert 3 not in grouped


def test_load_with_no_ids_skips_the_query(conn):
    assert RelationshipLoader(Permission).load([], "roles", conn) == {}


def test_nested_paths_load_hop_by_hop(conn):
    loaded = RelationshipLoader(Permission).load_paths([2], ["roles", "roles.permissions"], conn)

    assert names(loaded["roles"][2]) == ["admin", "editor"]
    # role 1 (admin) and role 2 (editor) are the parents of the second hop
    assert set(loaded["roles.permissions"]) == {1, 2}
    assert names(loaded["roles.permissions"][2]) == ["posts.edit", "users.edit"]


def test_belongs_to_many_through_user_pivot(conn):
    grouped = RelationshipLoader(User).load([2], "organizations", conn)

    assert names(grouped[2]) == ["Acme", "Globex"]


# ───── Audit loader ──────────────────────────────

@pytest.mark.parametrize(
    "path, handled",
    [
        ("createdBy", True),
        ("updatedBy.organizations", True),
        ("deletedBy.organizations.position.level", True),
        ("createdBy.position", False),
        ("roles", False),
        ("createdBy.organizations.level", False),
    ],
)
def test_audit_handles(path, handled):
    assert AuditRelationshipLoader.handles(path) is handled


def test_audit_query_depths(sql):
    loader = AuditRelationshipLoader("permissions")

    first = sql(loader.build_query("createdBy", [1]))
    deepest = sql(loader.build_query("createdBy.organizations.position.level", [1]))

    assert "permissions.id AS record_id" in first
    assert "LEFT OUTER JOIN sys_users AS u ON permissions.created_by_id = u.id" in first
    assert first.count("LEFT OUTER JOIN") == 1
    assert deepest.count("LEFT OUTER JOIN") == 5
    assert "l.level AS level_order" in deepest


def test_audit_created_by(conn):
    loaded = AuditRelationshipLoader("permissions").load([1, 3, 5], ["createdBy"], conn)

    assert loaded["createdBy"][1] == [{"id": 1, "name": "Alice", "email": "alice@example.com"}]
    assert loaded["createdBy"][3][0]["name"] == "Bob"
    assert loaded["createdBy"][5][0]["name"] == "Carol"


def test_audit_rows_without_actor_are_skipped(conn):
    loaded = AuditRelationshipLoader("permissions").load([1, 2], ["updatedBy"], conn)

    assert loaded["updatedBy"] == {1: [{"id": 2, "name": "Bob", "email": "bob@example.com"}]}


def test_audit_organizations(conn):
    loaded = AuditRelationshipLoader("permissions").load([3, 5], ["createdBy.organizations"], conn)
    organizations = loaded["createdBy.organizations"]

    assert sorted(row["org_name"] for row in organizations[3]) == ["Acme", "Globex"]
    # Carol belongs to no organization
    assert 5 not in organizations


def test_audit_position_and_level(conn):
    paths = ["createdBy.organizations.position", "createdBy.organizations.position.level"]

    loaded = AuditRelationshipLoader("permissions").load([1], paths, conn)

    assert loaded["createdBy.organizations.position"][1] == [{"position_id": 1, "position_name": "CTO"}]
    assert loaded["createdBy.organizations.position.level"][1] == [
        {
            "user_id": 1,
            "user_name": "Alice",
            "user_email": "alice@example.com",
            "org_id": 1,
            "org_name": "Acme",
            "position_id": 1,
            "position_name": "CTO",
            "level_id": 1,
            "level_name": "Executive",
            "level_order": 1,
        }
    ]


def test_load_relationships_mixes_audit_and_generic_paths(conn):
    includes = [Include("createdBy.organizations"), Include("roles")]

    loaded = Permission.load_relationships([1], includes, conn)

    assert set(loaded) == {"createdBy", "createdBy.organizations", "roles"}
    assert loaded["createdBy"][1][0]["name"] == "Alice"
    assert names(loaded["roles"][1]) == ["admin", "viewer"]


def test_load_relationships_skips_eager_joins(conn):
    assert User.load_relationships([1], [Include("organization")], conn) == {}


def test_role_permissions_relation(conn):
    grouped = Role.load_relationship([3], "permissions", conn)

    assert names(grouped[3]) == ["posts.view", "users.view"]
