# fastapi_querybuilder/includes.py

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class Include:
    """A relationship path to eager load, e.g. ``createdBy.organizations``."""

    relation: str

    @property
    def segments(self) -> Tuple[str, ...]:
        return tuple(self.relation.split("."))

    @property
    def root(self) -> str:
        return self.segments[0]

    @property
    def depth(self) -> int:
        return len(self.segments)

    @property
    def is_nested(self) -> bool:
        return self.depth > 1

    @property
    def parent(self) -> Optional[str]:
        if not self.is_nested:
            return None
        return ".".join(self.segments[:-1])

    def __str__(self) -> str:
        return self.relation


def parse_include_string(include_string: str) -> List[Include]:
    """Split ``user,organization.positions`` into Include objects, keeping order and dropping duplicates."""
    seen = set()
    includes = []
    for part in include_string.split(","):
        path = ".".join(segment.strip() for segment in part.split("."))
        if not path.strip(".") or any(not segment for segment in path.split(".")):
            continue
        if path not in seen:
            seen.add(path)
            includes.append(Include(path))
    return includes


def relation_paths(includes: Iterable[Include]) -> List[str]:
    """Every prefix path of every include: ``a.b.c`` yields ``a``, ``a.b`` and ``a.b.c``."""
    paths: List[str] = []
    for include in includes:
        segments = include.segments
        for i in range(1, len(segments) + 1):
            path = ".".join(segments[:i])
            if path not in paths:
                paths.append(path)
    return paths
