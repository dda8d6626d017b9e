# fastapi_querybuilder/core.py

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import String, and_, cast, column, func, or_, select, table
from sqlalchemy.sql import Select

from .builder import QueryBuilder
from .config import QueryBuilderSettings
from .pagination import CursorPagination, OffsetPagination, Pagination, decode_cursor, encode_cursor
from .relations import JoinClause
from .sorts import Sort, SortDirection
from .utils import coerce_value, is_boolean_column, is_enum_column, is_integer_column, is_string_column

log = logging.getLogger(__name__)


@dataclass
class CompiledQuery:
    select: Select
    count: Select
    pagination: Pagination
    key_columns: List[str] = field(default_factory=list)
    hidden_columns: List[str] = field(default_factory=list)
    joins: List[Tuple[str, JoinClause]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def build_search(entity, term: str) -> List[Any]:
    """Case-insensitive match of ``term`` across the entity's searchable columns."""
    search_expr = []
    for name in entity.searchable_fields():
        column = entity.column(name)
        if column is None:
            continue
        if is_enum_column(column):
            search_expr.append(cast(column, String).icontains(term, autoescape=True))
        elif is_string_column(column):
            search_expr.append(column.icontains(term, autoescape=True))
        elif is_integer_column(column):
            if term.isdigit():
                search_expr.append(column == int(term))
        elif is_boolean_column(column):
            if term.lower() in ("true", "false"):
                search_expr.append(column == (term.lower() == "true"))
        else:
            search_expr.append(cast(column, String).icontains(term, autoescape=True))
    return search_expr


def build_where(builder: QueryBuilder) -> List[Any]:
    """
    AND-tagged filters are ANDed; OR-tagged filters form one OR group that
    is ANDed with the rest. Soft-delete scope and search come last.
    """
    entity = builder.entity
    and_expr, or_expr = [], []
    for item in builder.get_filters():
        expr = entity.apply_filter(item)
        if expr is None:
            continue
        (or_expr if item.is_or else and_expr).append(expr)
    if or_expr:
        and_expr.append(or_(*or_expr))

    soft_delete = entity.soft_delete_column()
    if soft_delete:
        deleted = entity.column(soft_delete)
        if builder.is_only_trashed():
            and_expr.append(deleted.is_not(None))
        elif not builder.is_with_trashed():
            and_expr.append(deleted.is_(None))

    term = builder.get_search()
    if term:
        search_expr = build_search(entity, term)
        if search_expr:
            and_expr.append(or_(*search_expr))
    return and_expr


def ordering(builder: QueryBuilder) -> List[Sort]:
    sorts = builder.get_sorts()
    if not sorts:
        default = builder.entity.default_sort()
        sorts = [default] if default is not None else []
    return [sort for sort in sorts if builder.entity.column(sort.field) is not None]


def _same(column, value):
    return column.is_(None) if value is None else column == value


def keyset_predicate(entity, keys: List[Sort], values: Dict[str, Any]):
    """
    ``(a, b) > (x, y)`` expanded for mixed directions:
    ``a > x OR (a = x AND b > y)``, with ``<`` for descending keys.

    Keys other than the primary key may be NULL and sort last in both
    directions, so ``a > x`` also admits ``a IS NULL`` and a NULL cursor
    value is only followed by rows where ``a IS NULL``.
    """
    primary_key = entity.primary_key()
    branches = []
    for i, key in enumerate(keys):
        value = values[key.field]
        if value is None:
            continue
        terms = [_same(entity.column(prev.field), values[prev.field]) for prev in keys[:i]]
        column = entity.column(key.field)
        if SortDirection(key.direction) == SortDirection.DESC:
            after = column < value
        else:
            after = column > value
        if key.field != primary_key:
            after = or_(after, column.is_(None))
        terms.append(after)
        branches.append(and_(*terms))
    return or_(*branches)


def _decode_keys(entity, cursor: str, keys: List[Sort]) -> Optional[Dict[str, Any]]:
    decoded = decode_cursor(cursor)
    if decoded is None or any(key.field not in decoded for key in keys):
        return None
    values = {}
    for key in keys:
        try:
            values[key.field] = coerce_value(entity.column(key.field).type, decoded[key.field])
        except (TypeError, ValueError):
            return None
    if values.get(entity.primary_key()) is None:
        return None
    return values


def compile_query(
    builder: QueryBuilder,
    settings: Optional[QueryBuilderSettings] = None,
    paginate: bool = True,
) -> CompiledQuery:
    """
    Compile the builder into the data query and the count query.

    With ``paginate=False`` no LIMIT, OFFSET or keyset predicate is applied
    (used by ``execute_all`` and ``execute_first``).
    """
    entity = builder.entity
    settings = settings or builder.settings
    base = entity.table()
    primary_key = entity.primary_key()
    pagination = builder.effective_pagination()
    warnings: List[str] = []

    fields = builder.get_fields() or list(entity.default_fields())
    fields = [name for name in fields if entity.column(name) is not None]

    sorts = ordering(builder)
    keys: List[Sort] = []
    if paginate and isinstance(pagination, CursorPagination):
        keys = list(sorts)
        if primary_key not in [sort.field for sort in keys]:
            keys.append(Sort(primary_key, SortDirection.ASC))
        sorts = keys

    hidden: List[str] = []
    required = [key.field for key in keys]
    if builder.get_includes():
        required.insert(0, primary_key)
    for name in required:
        if name not in fields and name not in hidden:
            hidden.append(name)

    projection = [base.c[name] for name in fields + hidden]
    from_clause = base
    joins: List[Tuple[str, JoinClause]] = []
    for include in builder.get_includes():
        if not entity.should_eager_load(include.relation):
            continue
        join = entity.build_join_clause(include.relation)
        if join is None:
            continue
        target = table(
            join.table, *[column(name) for name in dict.fromkeys([*join.columns, join.right_column])]
        ).alias(join.alias)
        from_clause = from_clause.outerjoin(target, base.c[join.left_column] == target.c[join.right_column])
        projection.extend(target.c[name].label(join.label(name)) for name in join.columns)
        joins.append((include.relation, join))

    where = build_where(builder)
    stmt = select(*projection).select_from(from_clause).where(*where)
    count = select(func.count()).select_from(base).where(*where)

    order = entity.apply_multi_sort(sorts)
    if keys:
        # the keyset predicate assumes NULL keys sort last
        order = [
            clause if key.field == primary_key else clause.nulls_last()
            for key, clause in zip(keys, order)
        ]
    stmt = stmt.order_by(*order)

    if paginate:
        match pagination:
            case OffsetPagination(per_page=per_page):
                stmt = stmt.limit(per_page).offset(pagination.offset)
            case CursorPagination(cursor=cursor, per_page=per_page):
                if cursor:
                    values = _decode_keys(entity, cursor, keys)
                    if values is None:
                        log.warning("Ignoring undecodable cursor %r for %s", cursor, entity.table_name())
                        warnings.append("The cursor could not be decoded and was ignored")
                    else:
                        stmt = stmt.where(keyset_predicate(entity, keys, values))
                # one extra row tells whether another page exists
                stmt = stmt.limit(per_page + 1)

    if settings.log_sql:
        log.debug("Compiled query for %s: %s", entity.table_name(), stmt)

    return CompiledQuery(
        select=stmt,
        count=count,
        pagination=pagination,
        key_columns=[key.field for key in keys],
        hidden_columns=hidden,
        joins=joins,
        warnings=warnings,
    )


def fold_row(row: Dict[str, Any], joins: List[Tuple[str, JoinClause]]) -> Dict[str, Any]:
    """Move ``alias__column`` values of eager joins into a nested dict per relation."""
    for relation, join in joins:
        nested = {name: row.pop(join.label(name)) for name in join.columns}
        row[relation] = nested if any(value is not None for value in nested.values()) else None
    return row


def next_cursor(rows: List[Dict[str, Any]], compiled: CompiledQuery) -> Optional[str]:
    if not rows:
        return None
    last = rows[-1]
    return encode_cursor({name: last[name] for name in compiled.key_columns})


def strip_hidden(row: Dict[str, Any], compiled: CompiledQuery) -> Dict[str, Any]:
    for name in compiled.hidden_columns:
        row.pop(name, None)
    return row
