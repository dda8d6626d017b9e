# fastapi_querybuilder/relations.py

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple


class RelationKind(str, Enum):
    BELONGS_TO = "belongs_to"      # foreign key on the parent row
    HAS_ONE = "has_one"            # foreign key on the related row
    HAS_MANY = "has_many"
    BELONGS_TO_MANY = "belongs_to_many"  # through a pivot table


@dataclass(frozen=True)
class Relation:
    """
    A relationship an entity exposes through ``include``.

    ``foreign_key`` is inferred from the relation name when omitted.
    ``target`` is the related entity class and is required to load nested
    paths such as ``role.permissions`` through this relation.
    """

    table: str
    kind: RelationKind
    foreign_key: Optional[str] = None
    owner_key: str = "id"
    columns: Optional[Tuple[str, ...]] = None
    eager: bool = False
    target: Any = None
    pivot: Optional[str] = None
    pivot_foreign_key: Optional[str] = None
    pivot_related_key: Optional[str] = None

    def related_columns(self) -> Tuple[str, ...]:
        if self.columns is not None:
            return tuple(self.columns)
        if self.target is not None:
            return tuple(self.target.default_fields())
        return (self.owner_key,)


@dataclass(frozen=True)
class JoinClause:
    table: str
    alias: str
    left: str   # "<table>.<column>" on the primary side
    right: str  # "<alias>.<column>" on the joined side
    columns: Tuple[str, ...] = ()

    @property
    def left_column(self) -> str:
        return self.left.split(".", 1)[1]

    @property
    def right_column(self) -> str:
        return self.right.split(".", 1)[1]

    def label(self, column: str) -> str:
        return f"{self.alias}__{column}"

    def __str__(self) -> str:
        return f"LEFT JOIN {self.table} AS {self.alias} ON {self.left} = {self.right}"
