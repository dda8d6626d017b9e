# fastapi_querybuilder/sorts.py

from enum import Enum
from typing import Iterable, List, NamedTuple


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

    def to_sql(self) -> str:
        return self.value.upper()

    @classmethod
    def parse(cls, text: str) -> "SortDirection":
        """Unknown directions fall back to ascending."""
        return cls.DESC if text.strip().lower() == "desc" else cls.ASC


class Sort(NamedTuple):
    field: str
    direction: SortDirection = SortDirection.ASC

    @classmethod
    def asc(cls, field: str) -> "Sort":
        return cls(field, SortDirection.ASC)

    @classmethod
    def desc(cls, field: str) -> "Sort":
        return cls(field, SortDirection.DESC)

    def __str__(self) -> str:
        return f"-{self.field}" if self.direction == SortDirection.DESC else self.field


def parse_sort_string(sort_string: str) -> List[Sort]:
    """
    Parse a sort string such as ``name,-created_at`` or ``name:asc,email:desc``.

    ``-field`` sorts descending, ``field:direction`` uses the given direction
    and a bare ``field`` sorts ascending. Blank entries are skipped.
    """
    sorts: List[Sort] = []
    for part in sort_string.split(","):
        part = part.strip()
        if not part:
            continue

        if ":" in part:
            field, direction = part.split(":", 1)
            field = field.strip()
            if field:
                sorts.append(Sort(field, SortDirection.parse(direction)))
        elif part.startswith("-"):
            field = part[1:].strip()
            if field:
                sorts.append(Sort.desc(field))
        else:
            sorts.append(Sort.asc(part))
    return sorts


def sorts_to_string(sorts: Iterable[Sort]) -> str:
    return ",".join(str(sort) for sort in sorts)
