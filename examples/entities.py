from sqlalchemy import JSON, DateTime, Integer, String

from fastapi_querybuilder.contracts import Filterable, Includable, Queryable, Sortable
from fastapi_querybuilder.relations import Relation, RelationKind
from fastapi_querybuilder.sorts import Sort, SortDirection


class Entity(Queryable, Filterable, Sortable, Includable):
    pass


class Organization(Entity):
    __tablename__ = "organizations"

    filter_fields = frozenset({"id", "name", "code"})
    sort_fields = frozenset({"id", "name", "code"})
    select_fields = frozenset({"id", "name", "code"})
    include_paths = frozenset({"users"})
    default_sorting = Sort("name", SortDirection.ASC)
    search_fields = ("name", "code")

    column_types = {"id": Integer(), "name": String(), "code": String()}


class User(Entity):
    __tablename__ = "sys_users"

    filter_fields = frozenset({"id", "name", "email", "organization_id", "created_at"})
    sort_fields = frozenset({"id", "name", "email", "created_at"})
    select_fields = frozenset({"id", "name", "email", "organization_id", "created_at"})
    include_paths = frozenset({"organization", "organizations"})
    default_sorting = Sort("id", SortDirection.ASC)
    search_fields = ("name", "email")

    column_types = {
        "id": Integer(),
        "name": String(),
        "email": String(),
        "organization_id": Integer(),
        "created_at": DateTime(),
    }

    relations = {
        # direct parent lookup, joined into the primary query
        "organization": Relation("organizations", RelationKind.BELONGS_TO, columns=("id", "name", "code"), eager=True),
        "organizations": Relation(
            "organizations",
            RelationKind.BELONGS_TO_MANY,
            columns=("id", "name", "code"),
            pivot="user_organizations",
            pivot_foreign_key="user_id",
            target=Organization,
        ),
    }


class Role(Entity):
    __tablename__ = "roles"

    filter_fields = frozenset({"id", "name", "guard_name"})
    sort_fields = frozenset({"id", "name"})
    select_fields = frozenset({"id", "name", "guard_name"})
    include_paths = frozenset({"permissions"})
    default_sorting = Sort("id", SortDirection.ASC)

    column_types = {"id": Integer(), "name": String(), "guard_name": String()}


class Permission(Entity):
    __tablename__ = "permissions"

    filter_fields = frozenset({
        "id", "name", "guard_name", "module", "description", "created_at", "updated_at",
        "created_by_id", "attributes.scope", "attributes.weight",
    })
    sort_fields = frozenset({"id", "name", "guard_name", "module", "created_at", "updated_at"})
    select_fields = frozenset({"id", "name", "guard_name", "module", "description", "created_at", "updated_at"})
    include_paths = frozenset({
        "roles",
        "roles.permissions",
        "createdBy",
        "createdBy.organizations",
        "createdBy.organizations.position",
        "createdBy.organizations.position.level",
        "updatedBy",
        "updatedBy.organizations",
        "deletedBy",
    })
    default_sorting = Sort("name", SortDirection.ASC)
    default_selection = ("id", "name", "guard_name", "module")
    search_fields = ("name", "description", "module")
    soft_delete = "deleted_at"

    column_types = {
        "id": Integer(),
        "name": String(),
        "guard_name": String(),
        "module": String(),
        "description": String(),
        "attributes": JSON(),
        "created_at": DateTime(),
        "updated_at": DateTime(),
        "deleted_at": DateTime(),
        "created_by_id": Integer(),
    }

    relations = {
        "roles": Relation(
            "roles",
            RelationKind.BELONGS_TO_MANY,
            pivot="role_permissions",
            pivot_foreign_key="permission_id",
            target=Role,
        ),
    }


Role.relations = {
    "permissions": Relation(
        "permissions",
        RelationKind.BELONGS_TO_MANY,
        columns=("id", "name", "guard_name"),
        pivot="role_permissions",
        pivot_foreign_key="role_id",
        target=Permission,
    ),
}

Organization.relations = {
    "users": Relation("sys_users", RelationKind.HAS_MANY, foreign_key="organization_id", columns=("id", "name", "email")),
}
