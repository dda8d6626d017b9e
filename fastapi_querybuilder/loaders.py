# fastapi_querybuilder/loaders.py

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import Select, column, select, table

from .relations import Relation, RelationKind
from .utils import singularize, snake_case

log = logging.getLogger(__name__)

PARENT_KEY = "parent_key"

Grouped = Dict[Any, List[Dict[str, Any]]]


def _unique(names: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for name in names:
        if name not in seen:
            seen.append(name)
    return seen


def _group(rows, key: str, skip_empty: Optional[str] = None) -> Grouped:
    grouped: Grouped = {}
    for row in rows:
        record = dict(row._mapping)
        parent = record.pop(key)
        if skip_empty is not None and record.get(skip_empty) is None:
            continue
        grouped.setdefault(parent, []).append(record)
    return grouped


class RelationshipLoader:
    """
    Batched loading of declared relations.

    One query per relation hop, keyed by the parent ids of the previous hop:
    ``role.permissions`` loads the roles of the primary rows, then the
    permissions of those roles.
    """

    def __init__(self, entity):
        self.entity = entity

    def build_query(self, name: str, ids: Sequence[Any], entity=None) -> Optional[Select]:
        entity = entity or self.entity
        relation: Optional[Relation] = entity.relations.get(name)
        if relation is None:
            return None

        foreign_key = entity.get_foreign_key(name)
        columns = list(relation.related_columns())
        if relation.target is not None:
            columns = _unique([relation.target.primary_key(), *columns])

        match relation.kind:
            case RelationKind.HAS_MANY | RelationKind.HAS_ONE:
                related = table(relation.table, *[column(c) for c in _unique([*columns, foreign_key])])
                return (
                    select(*[related.c[c] for c in columns], related.c[foreign_key].label(PARENT_KEY))
                    .where(related.c[foreign_key].in_(list(ids)))
                )

            case RelationKind.BELONGS_TO:
                related = table(relation.table, *[column(c) for c in _unique([*columns, relation.owner_key])])
                parent = entity.table()
                primary_key = parent.c[entity.primary_key()]
                return (
                    select(*[related.c[c] for c in columns], primary_key.label(PARENT_KEY))
                    .select_from(parent.join(related, parent.c[foreign_key] == related.c[relation.owner_key]))
                    .where(primary_key.in_(list(ids)))
                )

            case RelationKind.BELONGS_TO_MANY:
                if relation.pivot is None:
                    log.debug("Relation %r has no pivot table", name)
                    return None
                pivot_foreign_key = relation.pivot_foreign_key or f"{singularize(snake_case(entity.table_name()))}_id"
                pivot_related_key = relation.pivot_related_key or foreign_key
                related = table(relation.table, *[column(c) for c in _unique([*columns, relation.owner_key])])
                pivot = table(relation.pivot, column(pivot_foreign_key), column(pivot_related_key))
                return (
                    select(*[related.c[c] for c in columns], pivot.c[pivot_foreign_key].label(PARENT_KEY))
                    .select_from(related.join(pivot, pivot.c[pivot_related_key] == related.c[relation.owner_key]))
                    .where(pivot.c[pivot_foreign_key].in_(list(ids)))
                )
        return None

    def load(self, ids: Sequence[Any], name: str, conn, entity=None) -> Grouped:
        """Load one relation of ``entity`` for the given parent ids, grouped by parent id."""
        if not ids:
            return {}
        stmt = self.build_query(name, ids, entity)
        if stmt is None:
            log.debug("No loader for relation %r", name)
            return {}
        log.debug("Loading relation %r for %d parents", name, len(ids))
        return _group(conn.execute(stmt), PARENT_KEY)

    def load_paths(self, ids: Sequence[Any], paths: Iterable[str], conn) -> Dict[str, Grouped]:
        """
        Load every path hop by hop. A nested hop needs the relation before it
        to declare a ``target`` entity; paths that can't be resolved are skipped.
        """
        loaded: Dict[str, Grouped] = {}
        for path in paths:
            entity = self.entity
            keys = list(ids)
            segments = path.split(".")
            for depth, name in enumerate(segments, start=1):
                prefix = ".".join(segments[:depth])
                relation = entity.relations.get(name)
                if relation is None:
                    log.debug("Unknown relation %r in include %r", name, path)
                    break
                if prefix not in loaded:
                    loaded[prefix] = self.load(keys, name, conn, entity)
                if depth == len(segments):
                    break
                if relation.target is None:
                    log.debug("Relation %r has no target entity, can't load %r", name, path)
                    break
                entity = relation.target
                key = entity.primary_key()
                keys = _unique(
                    row[key] for rows in loaded[prefix].values() for row in rows if row.get(key) is not None
                )
        return loaded


class AuditRelationshipLoader:
    """
    Fast path for the audit chains ``createdBy``, ``updatedBy`` and ``deletedBy``
    through ``.organizations``, ``.organizations.position`` and
    ``.organizations.position.level``.

    Each path is a single query with LEFT JOINs from the record table, instead
    of one query per hop. Results are grouped by the record id.
    """

    users_table = "sys_users"
    user_organizations_table = "user_organizations"
    organizations_table = "organizations"
    positions_table = "organization_positions"
    levels_table = "organization_position_levels"

    actor_columns = {
        "createdBy": "created_by_id",
        "updatedBy": "updated_by_id",
        "deletedBy": "deleted_by_id",
    }
    chain = ("organizations", "position", "level")

    # the column that must be non-null for a row to count at each depth
    _present = {1: "id", 2: "org_id", 3: "position_id", 4: "user_id"}

    def __init__(self, table_name: str, primary_key: str = "id"):
        self.table_name = table_name
        self.primary_key = primary_key

    @classmethod
    def handles(cls, path: str) -> bool:
        segments = path.split(".")
        if segments[0] not in cls.actor_columns:
            return False
        rest = tuple(segments[1:])
        return rest == cls.chain[:len(rest)]

    def build_query(self, path: str, ids: Sequence[Any]) -> Select:
        segments = path.split(".")
        actor = self.actor_columns[segments[0]]
        depth = len(segments)

        record = table(self.table_name, column(self.primary_key), column(actor))
        u = table(self.users_table, column("id"), column("name"), column("email")).alias("u")
        uo = table(
            self.user_organizations_table,
            column("user_id"), column("organization_id"), column("organization_position_id"),
        ).alias("uo")
        o = table(self.organizations_table, column("id"), column("name")).alias("o")
        p = table(self.positions_table, column("id"), column("name"), column("organization_position_level_id")).alias("p")
        lv = table(self.levels_table, column("id"), column("name"), column("level")).alias("l")

        joined = record.outerjoin(u, record.c[actor] == u.c.id)
        if depth == 1:
            columns = [u.c.id, u.c.name, u.c.email]
        elif depth == 2:
            joined = joined.outerjoin(uo, u.c.id == uo.c.user_id).outerjoin(o, uo.c.organization_id == o.c.id)
            columns = [o.c.id.label("org_id"), o.c.name.label("org_name")]
        elif depth == 3:
            joined = (
                joined.outerjoin(uo, u.c.id == uo.c.user_id)
                .outerjoin(p, uo.c.organization_position_id == p.c.id)
            )
            columns = [p.c.id.label("position_id"), p.c.name.label("position_name")]
        else:
            joined = (
                joined.outerjoin(uo, u.c.id == uo.c.user_id)
                .outerjoin(o, uo.c.organization_id == o.c.id)
                .outerjoin(p, uo.c.organization_position_id == p.c.id)
                .outerjoin(lv, p.c.organization_position_level_id == lv.c.id)
            )
            columns = [
                u.c.id.label("user_id"), u.c.name.label("user_name"), u.c.email.label("user_email"),
                o.c.id.label("org_id"), o.c.name.label("org_name"),
                p.c.id.label("position_id"), p.c.name.label("position_name"),
                lv.c.id.label("level_id"), lv.c.name.label("level_name"), lv.c.level.label("level_order"),
            ]

        return (
            select(record.c[self.primary_key].label("record_id"), *columns)
            .select_from(joined)
            .where(record.c[self.primary_key].in_(list(ids)))
        )

    def load(self, ids: Sequence[Any], paths: Iterable[str], conn) -> Dict[str, Grouped]:
        results: Dict[str, Grouped] = {}
        if not ids:
            return results
        for path in paths:
            if not self.handles(path):
                log.debug("Unknown audit relationship: %s", path)
                continue
            log.debug("Loading audit relationship %r for %d records", path, len(ids))
            depth = len(path.split("."))
            rows = conn.execute(self.build_query(path, ids))
            results[path] = _group(rows, "record_id", skip_empty=self._present[depth])
        return results
