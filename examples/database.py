from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, MetaData, String, Table, insert

# ───── Schema ────────────────────────────────────

metadata = MetaData()

organization_position_levels = Table(
    "organization_position_levels", metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String, nullable=False),
    Column("level", Integer, nullable=False),
)

organization_positions = Table(
    "organization_positions", metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String, nullable=False),
    Column("organization_position_level_id", ForeignKey("organization_position_levels.id")),
)

organizations = Table(
    "organizations", metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String, nullable=False),
    Column("code", String, nullable=False),
)

sys_users = Table(
    "sys_users", metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String, nullable=False),
    Column("email", String, unique=True, nullable=False),
    Column("organization_id", ForeignKey("organizations.id"), nullable=True),
    Column("created_at", DateTime, nullable=False),
)

user_organizations = Table(
    "user_organizations", metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", ForeignKey("sys_users.id"), nullable=False),
    Column("organization_id", ForeignKey("organizations.id"), nullable=False),
    Column("organization_position_id", ForeignKey("organization_positions.id"), nullable=True),
)

roles = Table(
    "roles", metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String, unique=True, nullable=False),
    Column("guard_name", String, nullable=False),
)

permissions = Table(
    "permissions", metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String, unique=True, nullable=False),
    Column("guard_name", String, nullable=False),
    Column("module", String, nullable=False),
    Column("description", String, nullable=True),
    Column("attributes", JSON, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=True),
    Column("deleted_at", DateTime, nullable=True),
    Column("created_by_id", ForeignKey("sys_users.id"), nullable=True),
    Column("updated_by_id", ForeignKey("sys_users.id"), nullable=True),
    Column("deleted_by_id", ForeignKey("sys_users.id"), nullable=True),
)

role_permissions = Table(
    "role_permissions", metadata,
    Column("role_id", ForeignKey("roles.id"), primary_key=True),
    Column("permission_id", ForeignKey("permissions.id"), primary_key=True),
)


# ───── Seed Data ─────────────────────────────────

def _at(day: int, hour: int = 10) -> datetime:
    return datetime(2024, 1, day, hour, 0, 0)


SEED = {
    organization_position_levels: [
        {"id": 1, "name": "Executive", "level": 1},
        {"id": 2, "name": "Staff", "level": 3},
    ],
    organization_positions: [
        {"id": 1, "name": "CTO", "organization_position_level_id": 1},
        {"id": 2, "name": "Engineer", "organization_position_level_id": 2},
    ],
    organizations: [
        {"id": 1, "name": "Acme", "code": "ACME"},
        {"id": 2, "name": "Globex", "code": "GLBX"},
    ],
    sys_users: [
        {"id": 1, "name": "Alice", "email": "alice@example.com", "organization_id": 1, "created_at": _at(1)},
        {"id": 2, "name": "Bob", "email": "bob@example.com", "organization_id": 2, "created_at": _at(2)},
        {"id": 3, "name": "Carol", "email": "carol@example.com", "organization_id": None, "created_at": _at(3)},
    ],
    user_organizations: [
        {"id": 1, "user_id": 1, "organization_id": 1, "organization_position_id": 1},
        {"id": 2, "user_id": 2, "organization_id": 2, "organization_position_id": 2},
        {"id": 3, "user_id": 2, "organization_id": 1, "organization_position_id": 2},
    ],
    roles: [
        {"id": 1, "name": "admin", "guard_name": "web"},
        {"id": 2, "name": "editor", "guard_name": "web"},
        {"id": 3, "name": "viewer", "guard_name": "api"},
    ],
    permissions: [
        {"id": 1, "name": "users.view", "guard_name": "web", "module": "users", "description": "View users",
         "attributes": {"scope": "read", "weight": 1}, "created_at": _at(1),
         "updated_at": _at(10), "deleted_at": None, "created_by_id": 1, "updated_by_id": 2, "deleted_by_id": None},
        {"id": 2, "name": "users.edit", "guard_name": "web", "module": "users", "description": "Edit users",
         "attributes": {"scope": "write", "weight": 5}, "created_at": _at(2),
         "updated_at": None, "deleted_at": None, "created_by_id": 1, "updated_by_id": None, "deleted_by_id": None},
        {"id": 3, "name": "posts.view", "guard_name": "api", "module": "posts", "description": "View posts",
         "attributes": {"scope": "read", "weight": 2}, "created_at": _at(3),
         "updated_at": None, "deleted_at": None, "created_by_id": 2, "updated_by_id": None, "deleted_by_id": None},
        {"id": 4, "name": "posts.edit", "guard_name": "api", "module": "posts", "description": "Edit 100% of posts",
         "attributes": {"scope": "write", "weight": 8}, "created_at": _at(4),
         "updated_at": None, "deleted_at": None, "created_by_id": 2, "updated_by_id": None, "deleted_by_id": None},
        {"id": 5, "name": "reports.view", "guard_name": "web", "module": "reports", "description": "View reports",
         "attributes": {"scope": "read", "weight": 3}, "created_at": _at(5),
         "updated_at": None, "deleted_at": None, "created_by_id": 3, "updated_by_id": None, "deleted_by_id": None},
        {"id": 6, "name": "legacy.admin", "guard_name": "web", "module": "legacy", "description": "Old admin access",
         "attributes": {"scope": "admin", "weight": 10}, "created_at": _at(6),
         "updated_at": None, "deleted_at": _at(20), "created_by_id": 1, "updated_by_id": None, "deleted_by_id": 1},
    ],
    role_permissions: [
        {"role_id": 1, "permission_id": 1},
        {"role_id": 1, "permission_id": 2},
        {"role_id": 1, "permission_id": 3},
        {"role_id": 1, "permission_id": 4},
        {"role_id": 1, "permission_id": 5},
        {"role_id": 2, "permission_id": 2},
        {"role_id": 2, "permission_id": 4},
        {"role_id": 3, "permission_id": 1},
        {"role_id": 3, "permission_id": 3},
    ],
}


def seed(conn) -> None:
    """Insert the demo rows; ``conn`` is a sync Connection (use ``run_sync`` from async code)."""
    for table in metadata.sorted_tables:
        rows = SEED.get(table)
        if rows:
            conn.execute(insert(table), rows)


def create_schema(conn) -> None:
    metadata.create_all(conn)
    seed(conn)
