# fastapi_querybuilder/contracts.py

import json
import logging
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import Select, asc, column, desc, table
from sqlalchemy.sql import TableClause

from .filters import Filter, FilterOperator, FilterValue, Multiple, OperatorCategory, Range, Single
from .includes import Include, relation_paths
from .loaders import AuditRelationshipLoader, Grouped, RelationshipLoader
from .operators import (
    COMPARISON_OPERATORS,
    JSON_OPERATORS,
    NULL_OPERATORS,
    RANGE_OPERATORS,
    SET_OPERATORS,
    always_false,
    always_true,
    json_path_filter,
)
from .relations import JoinClause, Relation, RelationKind
from .sorts import Sort, SortDirection, parse_sort_string
from .utils import is_json_column, is_plural, singularize, snake_case

log = logging.getLogger(__name__)


class Queryable:
    """
    Declares what a client may touch on an entity.

    Entities are plain classes that are never instantiated::

        class Permission(Queryable, Filterable, Sortable, Includable):
            __tablename__ = "permissions"
            filter_fields = frozenset({"name", "guard_name"})
            sort_fields = frozenset({"name", "created_at"})
            ...

    Every name a client sends is checked against these whitelists before
    it reaches SQL.
    """

    __tablename__: ClassVar[str]

    filter_fields: ClassVar[FrozenSet[str]] = frozenset()
    sort_fields: ClassVar[FrozenSet[str]] = frozenset()
    select_fields: ClassVar[FrozenSet[str]] = frozenset()
    include_paths: ClassVar[FrozenSet[str]] = frozenset()

    default_sorting: ClassVar[Optional[Sort]] = None
    default_selection: ClassVar[Optional[Tuple[str, ...]]] = None
    search_fields: ClassVar[Tuple[str, ...]] = ()

    primary_key_column: ClassVar[str] = "id"
    soft_delete: ClassVar[Optional[str]] = None

    # field -> SQLAlchemy type; untyped fields bind as NullType
    column_types: ClassVar[Dict[str, Any]] = {}

    @classmethod
    def table_name(cls) -> str:
        return cls.__tablename__

    @classmethod
    def allowed_filters(cls) -> FrozenSet[str]:
        return cls.filter_fields

    @classmethod
    def allowed_sorts(cls) -> FrozenSet[str]:
        return cls.sort_fields

    @classmethod
    def allowed_fields(cls) -> FrozenSet[str]:
        return cls.select_fields

    @classmethod
    def allowed_includes(cls) -> FrozenSet[str]:
        return cls.include_paths

    @classmethod
    def default_sort(cls) -> Optional[Sort]:
        return cls.default_sorting

    @classmethod
    def default_fields(cls) -> Tuple[str, ...]:
        if cls.default_selection is not None:
            return tuple(cls.default_selection)
        return cls.ordered_fields(cls.allowed_fields())

    @classmethod
    def primary_key(cls) -> str:
        return cls.primary_key_column

    @classmethod
    def soft_delete_column(cls) -> Optional[str]:
        return cls.soft_delete

    @classmethod
    def searchable_fields(cls) -> Tuple[str, ...]:
        return cls.search_fields

    @classmethod
    def is_filter_allowed(cls, field: str) -> bool:
        return field in cls.allowed_filters()

    @classmethod
    def is_sort_allowed(cls, field: str) -> bool:
        return field in cls.allowed_sorts()

    @classmethod
    def is_field_allowed(cls, field: str) -> bool:
        return field in cls.allowed_fields()

    @classmethod
    def is_include_allowed(cls, relation: str) -> bool:
        return relation in cls.allowed_includes()

    @classmethod
    def ordered_fields(cls, fields: Iterable[str]) -> Tuple[str, ...]:
        """Declaration order of ``column_types`` first, the rest alphabetically."""
        fields = set(fields)
        declared = [name for name in cls.column_types if name in fields]
        return tuple(declared + sorted(fields.difference(declared)))

    @classmethod
    def table(cls) -> TableClause:
        """A lightweight ``TableClause`` declaring every column the entity can reference."""
        cached = cls.__dict__.get("_table_clause")
        if cached is not None:
            return cached

        names = set(cls.allowed_fields()) | set(cls.allowed_sorts()) | set(cls.searchable_fields())
        names |= {field.split(".", 1)[0] for field in cls.allowed_filters()}
        names.add(cls.primary_key())
        if cls.soft_delete_column():
            names.add(cls.soft_delete_column())
        for name, relation in getattr(cls, "relations", {}).items():
            if relation.kind == RelationKind.BELONGS_TO:
                names.add(cls.get_foreign_key(name))

        columns = [column(name, cls.column_types.get(name)) for name in cls.ordered_fields(names)]
        clause = table(cls.table_name(), *columns)
        setattr(cls, "_table_clause", clause)
        return clause

    @classmethod
    def column(cls, name: str):
        return cls.table().c.get(name)

    @classmethod
    def query(cls):
        from .builder import QueryBuilder

        return QueryBuilder(cls)

    @classmethod
    def from_params(cls, params, settings=None):
        from .builder import QueryBuilder

        return QueryBuilder.from_params(cls, params, settings)


class Filterable:
    """
    Compiles filters to SQL expressions. Values are always bound parameters.

    Override ``apply_basic_filter`` to cast or normalise values for a
    particular entity.
    """

    @classmethod
    def apply_filter(cls, filter: Filter):
        field = filter.field
        if "." in field:
            root, path = field.split(".", 1)
            root_column = cls.column(root)
            if root_column is not None and is_json_column(root_column):
                operand = _values(filter.value) if filter.operator.category == OperatorCategory.SET else _operand(filter.value)
                return json_path_filter(root_column, path, filter.operator, operand)

        column = cls.column(field)
        if column is None:
            log.debug("Filter field %r has no column on %s", field, cls.table_name())
            return None

        match filter.operator.category:
            case OperatorCategory.EQUALITY:
                return cls.apply_equality_filter(column, filter.operator, filter.value)
            case OperatorCategory.RANGE:
                return cls.apply_range_filter(column, filter.operator, filter.value)
            case OperatorCategory.SET:
                return cls.apply_in_filter(
                    column, _values(filter.value), negate=filter.operator == FilterOperator.NOT_IN
                )
            case OperatorCategory.PATTERN:
                return cls.apply_pattern_filter(column, filter.operator, _operand(filter.value))
            case OperatorCategory.NULL:
                return cls.apply_null_filter(column, filter.operator)
            case OperatorCategory.JSON:
                return cls.apply_json_filter(column, filter.operator, filter.value)
            case OperatorCategory.FULL_TEXT:
                return cls.apply_full_text_filter(column, _operand(filter.value))

    @classmethod
    def apply_basic_filter(cls, column, operator: FilterOperator, value):
        return COMPARISON_OPERATORS[operator](column, value)

    @classmethod
    def apply_equality_filter(cls, column, operator: FilterOperator, value: FilterValue):
        # eq with a list means IN
        if isinstance(value, Multiple):
            return cls.apply_in_filter(column, value.values, negate=operator == FilterOperator.NE)
        return cls.apply_basic_filter(column, operator, _operand(value))

    @classmethod
    def apply_range_filter(cls, column, operator: FilterOperator, value: FilterValue):
        if operator in RANGE_OPERATORS:
            if not isinstance(value, Range):
                return column.is_not(None)
            return RANGE_OPERATORS[operator](column, value.start, value.end)
        return cls.apply_basic_filter(column, operator, _operand(value))

    @classmethod
    def apply_in_filter(cls, column, values: Sequence[Any], negate: bool = False):
        values = list(values)
        if not values:
            return always_true() if negate else always_false()
        return SET_OPERATORS[FilterOperator.NOT_IN if negate else FilterOperator.IN](column, values)

    @classmethod
    def apply_pattern_filter(cls, column, operator: FilterOperator, value):
        return cls.apply_basic_filter(column, operator, value)

    @classmethod
    def apply_null_filter(cls, column, operator: FilterOperator):
        return NULL_OPERATORS[operator](column)

    @classmethod
    def apply_json_filter(cls, column, operator: FilterOperator, value: FilterValue):
        if operator in (FilterOperator.JSON_HAS_ANY_KEY, FilterOperator.JSON_HAS_ALL_KEYS):
            return JSON_OPERATORS[operator](column, _values(value))
        operand = _operand(value)
        if operator in (FilterOperator.JSON_CONTAINS, FilterOperator.JSON_CONTAINED_BY) and isinstance(operand, str):
            operand = json.loads(operand)
        return JSON_OPERATORS[operator](column, operand)

    @classmethod
    def apply_full_text_filter(cls, column, value):
        return COMPARISON_OPERATORS[FilterOperator.FULL_TEXT](column, value)


class Sortable:
    @classmethod
    def apply_basic_sort(cls, column, direction: SortDirection):
        return desc(column) if direction == SortDirection.DESC else asc(column)

    @classmethod
    def apply_multi_sort(cls, sorts: Iterable[Sort]) -> List[Any]:
        clauses = []
        for sort in sorts:
            column = cls.column(sort.field)
            if column is not None:
                clauses.append(cls.apply_basic_sort(column, SortDirection(sort.direction)))
        return clauses

    @classmethod
    def apply_validated_sort(cls, sorts: Iterable[Sort]) -> List[Any]:
        return cls.apply_multi_sort(sort for sort in sorts if cls.is_sort_allowed(sort.field))

    @classmethod
    def parse_sort_string(cls, sort_string: str) -> List[Sort]:
        """Parse and keep only whitelisted sorts."""
        return [sort for sort in parse_sort_string(sort_string) if cls.is_sort_allowed(sort.field)]


class Includable:
    relations: ClassVar[Dict[str, Relation]] = {}

    # audit chains are loaded through AuditRelationshipLoader before the generic loader
    audit_loader_class: ClassVar[type] = AuditRelationshipLoader

    @classmethod
    def get_foreign_key(cls, relation: str) -> str:
        """
        The join column for a relation, unless the Relation names one:
        ``organizations`` -> ``organization_id``, ``createdBy`` -> ``created_by_id``.
        """
        declared = cls.relations.get(relation)
        if declared is not None and declared.foreign_key:
            return declared.foreign_key
        name = snake_case(relation.split(".")[-1])
        if is_plural(name):
            return f"{singularize(name)}_id"
        return f"{name}_id"

    @classmethod
    def should_eager_load(cls, relation: str) -> bool:
        declared = cls.relations.get(relation)
        return (
            declared is not None
            and declared.eager
            and declared.kind in (RelationKind.BELONGS_TO, RelationKind.HAS_ONE)
        )

    @classmethod
    def validate_includes(cls, includes: Iterable[Include]) -> List[Include]:
        return [include for include in includes if cls.is_include_allowed(include.relation)]

    @classmethod
    def build_join_clause(cls, relation: str, table_name: Optional[str] = None) -> Optional[JoinClause]:
        declared = cls.relations.get(relation)
        if declared is None:
            return None
        table_name = table_name or cls.table_name()
        alias = snake_case(relation)
        foreign_key = cls.get_foreign_key(relation)
        columns = tuple(declared.related_columns())

        match declared.kind:
            case RelationKind.BELONGS_TO:
                return JoinClause(
                    declared.table, alias,
                    f"{table_name}.{foreign_key}", f"{alias}.{declared.owner_key}", columns,
                )
            case RelationKind.HAS_ONE:
                return JoinClause(
                    declared.table, alias,
                    f"{table_name}.{declared.owner_key}", f"{alias}.{foreign_key}", columns,
                )
        return None

    @classmethod
    def build_relationship_query(cls, relation: str, ids: Sequence[Any]) -> Optional[Select]:
        return RelationshipLoader(cls).build_query(relation, ids)

    @classmethod
    def load_relationship(cls, ids: Sequence[Any], relation: str, conn) -> Grouped:
        return RelationshipLoader(cls).load(ids, relation, conn)

    @classmethod
    def load_relationships(cls, ids: Sequence[Any], includes: Iterable[Include], conn) -> Dict[str, Grouped]:
        """
        Load every include (and every prefix of a nested include) for the
        given primary keys. Audit chains take the fast path, relations joined
        eagerly into the primary query are skipped, the rest are batched.
        """
        paths = [path for path in relation_paths(includes) if not cls.should_eager_load(path)]
        if not ids or not paths:
            return {}

        audit_paths = [path for path in paths if cls.audit_loader_class.handles(path)]
        other_paths = [path for path in paths if path not in audit_paths]

        included: Dict[str, Grouped] = {}
        if audit_paths:
            loader = cls.audit_loader_class(cls.table_name(), cls.primary_key())
            included.update(loader.load(ids, audit_paths, conn))
        if other_paths:
            included.update(RelationshipLoader(cls).load_paths(ids, other_paths, conn))
        return included


def _operand(value: FilterValue) -> Any:
    match value:
        case Single(value=v):
            return v
        case Multiple(values=vs):
            return vs[0] if vs else None
        case Range(start=start):
            return start


def _values(value: FilterValue) -> List[Any]:
    match value:
        case Single(value=v):
            return [] if v is None else [v]
        case Multiple(values=vs):
            return list(vs)
        case Range(start=start, end=end):
            return [start, end]
