"""
Entity metadata for querykit.

Describes which entities can be queried, which fields they have, and
what each field can be used for. Metadata is read once from the
SQLAlchemy mapper when an entity is registered; after that, field
references carry a fixed capability set and every operator checks it
when the expression is created:

    from querykit.query import entity_path
    from querykit.models import Member

    m = entity_path(Member)          # alias 'member'
    m.username.eq("member1")         # ok
    m.username.sum()                 # CapabilityError: not numeric

An EntityPath is an entity under an alias. The same entity can appear
twice in one query under two aliases (entity_path(Member, 'other')).
"""

import logging
import threading
from dataclasses import dataclass
from enum import Flag, auto
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, Union, TYPE_CHECKING

from sqlalchemy import inspect as sa_inspect
from sqlalchemy import types as sqltypes
from sqlalchemy.exc import NoInspectionAvailable

from .aggregate import AggregateExpr, AggregateFunction
from .errors import CapabilityError, FieldMismatchError
from .expr import Between, Comparison, Equals, In, IsNull, Like, Predicate
from .ordering import Direction, OrderSpecifier

if TYPE_CHECKING:
    from .executor import QueryCompiler

logger = logging.getLogger(__name__)


# =============================================================================
# Capabilities
# =============================================================================

class Capability(Flag):
    """Operations a field supports."""
    NONE = 0
    EQUALITY = auto()   # eq, ne, in, count distinct
    ORDERING = auto()   # gt/lt/between, asc/desc, max/min
    NUMERIC = auto()    # sum, avg
    TEXT = auto()       # like, contains, starts_with, ends_with

    @classmethod
    def for_column_type(cls, column_type: Any) -> "Capability":
        """Derive capabilities from a SQLAlchemy column type."""
        if isinstance(column_type, sqltypes.Boolean):
            return cls.EQUALITY
        if isinstance(column_type, (sqltypes.Integer, sqltypes.Numeric, sqltypes.Float)):
            return cls.EQUALITY | cls.ORDERING | cls.NUMERIC
        if isinstance(column_type, sqltypes.String):
            return cls.EQUALITY | cls.ORDERING | cls.TEXT
        if isinstance(column_type, (sqltypes.Date, sqltypes.DateTime,
                                    sqltypes.Time, sqltypes.Interval)):
            return cls.EQUALITY | cls.ORDERING
        return cls.NONE


_CAPABILITY_WORDS = {
    Capability.EQUALITY: "comparable",
    Capability.ORDERING: "orderable",
    Capability.NUMERIC: "numeric",
    Capability.TEXT: "textual",
}


@dataclass(frozen=True)
class FieldSpec:
    """Static description of one entity field."""
    name: str
    python_type: type
    capabilities: Capability
    nullable: bool = True
    primary_key: bool = False


@dataclass(frozen=True)
class RelationSpec:
    """Static description of a relation to another entity."""
    name: str
    target: type
    uselist: bool = False


class EntityMeta:
    """
    Static description of a queryable entity type.

    Attributes:
        entity: The mapped class
        name: Lowercase name used for default aliases and query definitions
        fields: Field specs by attribute name
        relations: Relation specs by attribute name
        primary_key: Names of the primary key fields
    """

    def __init__(self, entity: type, name: str, fields: Dict[str, FieldSpec],
                 relations: Dict[str, RelationSpec], primary_key: Tuple[str, ...]):
        self.entity = entity
        self.name = name
        self.fields = fields
        self.relations = relations
        self.primary_key = primary_key

    @classmethod
    def from_mapper(cls, entity: type, name: Optional[str] = None,
                    capabilities: Optional[Dict[str, Capability]] = None) -> "EntityMeta":
        """
        Read metadata from the entity's SQLAlchemy mapper.

        Args:
            entity: Mapped class
            name: Override for the entity name (defaults to lowercase class name)
            capabilities: Per-field capability overrides
        """
        try:
            mapper = sa_inspect(entity)
        except NoInspectionAvailable:
            raise ValueError(f"{entity!r} is not a mapped entity")

        capabilities = capabilities or {}
        fields: Dict[str, FieldSpec] = {}
        primary_key: List[str] = []

        for prop in mapper.column_attrs:
            column = prop.columns[0]
            try:
                python_type = column.type.python_type
            except NotImplementedError:
                python_type = object

            caps = capabilities.get(prop.key, Capability.for_column_type(column.type))
            fields[prop.key] = FieldSpec(
                name=prop.key,
                python_type=python_type,
                capabilities=caps,
                nullable=bool(column.nullable) and not column.primary_key,
                primary_key=bool(column.primary_key),
            )
            if column.primary_key:
                primary_key.append(prop.key)

        unknown = set(capabilities) - set(fields)
        if unknown:
            raise ValueError(f"Capability overrides for unknown fields: {sorted(unknown)}")

        relations = {
            rel.key: RelationSpec(name=rel.key, target=rel.mapper.class_, uselist=bool(rel.uselist))
            for rel in mapper.relationships
        }

        return cls(
            entity=entity,
            name=(name or entity.__name__).lower().strip(),
            fields=fields,
            relations=relations,
            primary_key=tuple(primary_key),
        )

    def __repr__(self):
        return f"EntityMeta({self.name}: {', '.join(self.fields)})"


# =============================================================================
# Field and relation references
# =============================================================================

@dataclass(frozen=True)
class FieldRef:
    """
    A field of one entity alias.

    Operators check the field's capabilities and raise CapabilityError
    before any query is built.
    """
    alias: str
    entity: type
    spec: FieldSpec

    is_aggregate = False

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def path(self) -> str:
        return f"{self.alias}.{self.spec.name}"

    @property
    def capabilities(self) -> Capability:
        return self.spec.capabilities

    def supports(self, capability: Capability) -> bool:
        return capability in self.spec.capabilities

    def _require(self, capability: Capability, operation: str) -> None:
        if not self.supports(capability):
            raise CapabilityError(self.path, operation, _CAPABILITY_WORDS[capability])

    def fields(self) -> Tuple["FieldRef", ...]:
        return (self,)

    def to_sql(self, compiler: "QueryCompiler"):
        return compiler.column(self)

    # Equality

    def eq(self, value: Any) -> Predicate:
        self._require(Capability.EQUALITY, 'eq')
        return Equals(self, value)

    def ne(self, value: Any) -> Predicate:
        self._require(Capability.EQUALITY, 'ne')
        if value is None:
            return IsNull(self, negated=True)
        return Comparison(self, 'ne', value)

    def in_(self, values: Iterable[Any]) -> Predicate:
        self._require(Capability.EQUALITY, 'in')
        return In(self, tuple(values))

    def not_in(self, values: Iterable[Any]) -> Predicate:
        self._require(Capability.EQUALITY, 'not in')
        return In(self, tuple(values), negated=True)

    def is_null(self) -> Predicate:
        return IsNull(self)

    def is_not_null(self) -> Predicate:
        return IsNull(self, negated=True)

    # Ordering comparisons

    def gt(self, value: Any) -> Predicate:
        self._require(Capability.ORDERING, 'gt')
        return Comparison(self, 'gt', value)

    def goe(self, value: Any) -> Predicate:
        self._require(Capability.ORDERING, 'goe')
        return Comparison(self, 'goe', value)

    def lt(self, value: Any) -> Predicate:
        self._require(Capability.ORDERING, 'lt')
        return Comparison(self, 'lt', value)

    def loe(self, value: Any) -> Predicate:
        self._require(Capability.ORDERING, 'loe')
        return Comparison(self, 'loe', value)

    def between(self, low: Any, high: Any) -> Predicate:
        self._require(Capability.ORDERING, 'between')
        return Between(self, low, high)

    # Strings

    def like(self, pattern: str, ignore_case: bool = False) -> Predicate:
        self._require(Capability.TEXT, 'like')
        return Like(self, pattern, 'like', ignore_case)

    def contains(self, text: str, ignore_case: bool = False) -> Predicate:
        self._require(Capability.TEXT, 'contains')
        return Like(self, text, 'contains', ignore_case)

    def starts_with(self, text: str, ignore_case: bool = False) -> Predicate:
        self._require(Capability.TEXT, 'starts_with')
        return Like(self, text, 'starts_with', ignore_case)

    def ends_with(self, text: str, ignore_case: bool = False) -> Predicate:
        self._require(Capability.TEXT, 'ends_with')
        return Like(self, text, 'ends_with', ignore_case)

    # Ordering terms

    def asc(self) -> OrderSpecifier:
        self._require(Capability.ORDERING, 'asc')
        return OrderSpecifier(self, Direction.ASC)

    def desc(self) -> OrderSpecifier:
        self._require(Capability.ORDERING, 'desc')
        return OrderSpecifier(self, Direction.DESC)

    # Aggregates

    def count(self) -> AggregateExpr:
        return AggregateExpr(AggregateFunction.COUNT, self)

    def count_distinct(self) -> AggregateExpr:
        self._require(Capability.EQUALITY, 'count_distinct')
        return AggregateExpr(AggregateFunction.COUNT_DISTINCT, self)

    def sum(self) -> AggregateExpr:
        self._require(Capability.NUMERIC, 'sum')
        return AggregateExpr(AggregateFunction.SUM, self)

    def avg(self) -> AggregateExpr:
        self._require(Capability.NUMERIC, 'avg')
        return AggregateExpr(AggregateFunction.AVG, self)

    def max(self) -> AggregateExpr:
        self._require(Capability.ORDERING, 'max')
        return AggregateExpr(AggregateFunction.MAX, self)

    def min(self) -> AggregateExpr:
        self._require(Capability.ORDERING, 'min')
        return AggregateExpr(AggregateFunction.MIN, self)

    def __str__(self):
        return self.path

    def __repr__(self):
        return f"FieldRef({self.path!r})"


@dataclass(frozen=True)
class RelationRef:
    """A relation of one entity alias, usable as a join source."""
    alias: str
    entity: type
    spec: RelationSpec

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def target(self) -> type:
        return self.spec.target

    @property
    def path(self) -> str:
        return f"{self.alias}.{self.spec.name}"

    def __repr__(self):
        return f"RelationRef({self.path!r} -> {self.target.__name__})"


class EntityPath:
    """
    An entity under an alias.

    Fields and relations are exposed as attributes (m.username, m.team)
    unless their name clashes with an attribute of the path itself
    (alias, entity, meta, count); field() and relation() always work.
    """

    def __init__(self, meta: EntityMeta, alias: Optional[str] = None):
        self.meta = meta
        self.entity = meta.entity
        self.alias = alias or meta.name
        self._fields = {
            name: FieldRef(self.alias, meta.entity, spec)
            for name, spec in meta.fields.items()
        }
        self._relations = {
            name: RelationRef(self.alias, meta.entity, spec)
            for name, spec in meta.relations.items()
        }
        for name, ref in list(self._fields.items()) + list(self._relations.items()):
            if name.startswith('_') or name in vars(self) or hasattr(type(self), name):
                continue
            setattr(self, name, ref)

    def field(self, name: str) -> FieldRef:
        if name not in self._fields:
            raise FieldMismatchError(f"{self.meta.entity.__name__} has no field '{name}'")
        return self._fields[name]

    def relation(self, name: str) -> RelationRef:
        if name not in self._relations:
            raise FieldMismatchError(f"{self.meta.entity.__name__} has no relation '{name}'")
        return self._relations[name]

    def has_field(self, name: str) -> bool:
        return name in self._fields

    def has_relation(self, name: str) -> bool:
        return name in self._relations

    @property
    def primary_key(self) -> Tuple[FieldRef, ...]:
        return tuple(self._fields[name] for name in self.meta.primary_key)

    def fields(self) -> Tuple[FieldRef, ...]:
        return self.primary_key

    def count(self) -> AggregateExpr:
        """Row count of this alias."""
        if not self.meta.primary_key:
            raise CapabilityError(self.alias, 'count', "an entity with a primary key")
        return AggregateExpr(AggregateFunction.COUNT, entity_path=self)

    def to_sql(self, compiler: "QueryCompiler"):
        return compiler.entity(self)

    def __eq__(self, other):
        if not isinstance(other, EntityPath):
            return NotImplemented
        return self.entity is other.entity and self.alias == other.alias

    def __hash__(self):
        return hash((self.entity, self.alias))

    def __str__(self):
        return self.alias

    def __repr__(self):
        return f"EntityPath({self.entity.__name__} as {self.alias!r})"


# =============================================================================
# Registry
# =============================================================================

class MetadataRegistry:
    """
    Registry of queryable entities.

    Entities are registered explicitly with register() or implicitly the
    first time path() is asked for them.
    """

    def __init__(self):
        self._by_entity: Dict[type, EntityMeta] = {}
        self._by_name: Dict[str, EntityMeta] = {}
        self._lock = threading.Lock()

    def register(self, entity: type, name: Optional[str] = None,
                 capabilities: Optional[Dict[str, Capability]] = None) -> EntityMeta:
        """Register an entity, replacing any earlier registration of it."""
        meta = EntityMeta.from_mapper(entity, name=name, capabilities=capabilities)
        with self._lock:
            existing = self._by_name.get(meta.name)
            if existing is not None and existing.entity is not entity:
                raise ValueError(
                    f"Entity name '{meta.name}' already used by {existing.entity.__name__}"
                )
            previous = self._by_entity.get(entity)
            if previous is not None:
                self._by_name.pop(previous.name, None)
            self._by_entity[entity] = meta
            self._by_name[meta.name] = meta
        logger.debug(f"Registered entity {meta.name} with fields {list(meta.fields)}")
        return meta

    def get(self, entity: Union[type, str]) -> EntityMeta:
        """Get metadata by class (registering it on first use) or by name."""
        if isinstance(entity, str):
            key = entity.lower().strip()
            if key not in self._by_name:
                raise KeyError(f"Unknown entity: {entity}")
            return self._by_name[key]

        meta = self._by_entity.get(entity)
        if meta is None:
            meta = self.register(entity)
        return meta

    def path(self, entity: Union[type, str], alias: Optional[str] = None) -> EntityPath:
        """Create an entity path, with the entity name as default alias."""
        return EntityPath(self.get(entity), alias)

    def has(self, entity: Union[type, str]) -> bool:
        if isinstance(entity, str):
            return entity.lower().strip() in self._by_name
        return entity in self._by_entity

    def list(self) -> List[str]:
        return list(self._by_name.keys())

    def clear(self) -> None:
        with self._lock:
            self._by_entity.clear()
            self._by_name.clear()


# Global registry instance
_default_metadata: Optional[MetadataRegistry] = None


def get_metadata() -> MetadataRegistry:
    """Get the default metadata registry."""
    global _default_metadata
    if _default_metadata is None:
        _default_metadata = MetadataRegistry()
    return _default_metadata


def reset_metadata() -> None:
    """Reset the default metadata registry."""
    global _default_metadata
    _default_metadata = None


def entity_path(entity: Union[Type[Any], str], alias: Optional[str] = None) -> EntityPath:
    """Create an entity path using the default registry."""
    return get_metadata().path(entity, alias)
