"""
Query AST for querykit.

A Query is an immutable description of what to read: a root entity,
a projection, joins that bring related entities into scope, a
predicate, an ordering, grouping, and a pagination window. Queries
are assembled with QueryBuilder and executed by QueryExecutor in one
of its fetch modes.

Example query structure:
    Query(
        root=EntityPath(Member as 'member'),
        projection=(team.name, member.age.avg()),
        joins=(Join(member.team, team),),
        group_by=(team.name,),
    )
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

from .aggregate import AggregateExpr
from .errors import FieldMismatchError, InvalidQueryError, QueryError
from .expr import Predicate, conjunction
from .metadata import EntityPath, FieldRef, RelationRef, get_metadata
from .ordering import OrderSpecifier

if TYPE_CHECKING:
    from .executor import QueryExecutor
    from .results import ResultPage


# =============================================================================
# Joins
# =============================================================================

@dataclass(frozen=True)
class Join:
    """A relation traversal that adds target to the query scope."""
    relation: RelationRef
    target: EntityPath
    outer: bool = False

    def __repr__(self):
        kind = "left join" if self.outer else "join"
        return f"Join({kind} {self.relation.path} as {self.target.alias})"


# =============================================================================
# Query
# =============================================================================

@dataclass(frozen=True)
class Query:
    """
    A complete, validated query.

    Built once by QueryBuilder.build() and never mutated afterwards, so
    the same Query can be executed repeatedly and shared across threads.
    """

    root: EntityPath

    # Empty projection selects the root entity
    projection: Tuple[Any, ...] = ()

    joins: Tuple[Join, ...] = ()
    where: Optional[Predicate] = None
    order_by: Tuple[OrderSpecifier, ...] = ()

    # Aggregation
    group_by: Tuple[FieldRef, ...] = ()
    having: Optional[Predicate] = None

    # Pagination
    offset: Optional[int] = None
    limit: Optional[int] = None

    distinct: bool = False
    name: Optional[str] = None

    @property
    def selections(self) -> Tuple[Any, ...]:
        return self.projection or (self.root,)

    @property
    def is_aggregate(self) -> bool:
        """Check if this query groups or aggregates rows."""
        return bool(self.group_by) or any(
            getattr(item, 'is_aggregate', False) for item in self.selections
        )

    @property
    def selects_entity(self) -> bool:
        """Check if results are entity instances."""
        selections = self.selections
        return len(selections) == 1 and isinstance(selections[0], EntityPath)

    @property
    def is_paginated(self) -> bool:
        return self.offset is not None or self.limit is not None

    @property
    def scope(self) -> Dict[str, EntityPath]:
        """Entity paths in scope by alias."""
        scope = {self.root.alias: self.root}
        for join in self.joins:
            scope[join.target.alias] = join.target
        return scope

    def __repr__(self):
        parts = [f"root={self.root.alias}"]
        if self.projection:
            parts.append(f"select={[str(p) for p in self.projection]}")
        if self.joins:
            parts.append(f"joins={list(self.joins)}")
        if self.where is not None:
            parts.append(f"where={self.where!r}")
        if self.order_by:
            parts.append(f"order_by={list(self.order_by)}")
        if self.group_by:
            parts.append(f"group_by={[str(f) for f in self.group_by]}")
        if self.offset is not None:
            parts.append(f"offset={self.offset}")
        if self.limit is not None:
            parts.append(f"limit={self.limit}")
        return f"Query({', '.join(parts)})"


# =============================================================================
# Query Builder (Fluent API)
# =============================================================================

class QueryBuilder:
    """
    Fluent builder for constructing queries.

    Example:
        m = entity_path(Member)
        q = (query()
            .select_from(m)
            .where(m.username.eq("member1"), m.age.eq(10))
            .order_by(m.age.desc(), m.username.asc().nulls_last())
            .offset(1)
            .limit(2)
            .build())

    Builders created by QueryFactory are bound to an executor and can
    run themselves with fetch_one(), fetch_first(), fetch(),
    fetch_results() and fetch_count(). Each of those builds first, so
    validation errors are raised before anything reaches the store.
    """

    def __init__(self, executor: Optional["QueryExecutor"] = None):
        self._executor = executor
        self._root: Optional[EntityPath] = None
        self._projection: List[Any] = []
        self._joins: List[Join] = []
        self._where: Optional[Predicate] = None
        self._order_by: List[OrderSpecifier] = []
        self._group_by: List[FieldRef] = []
        self._having: Optional[Predicate] = None
        self._offset: Optional[int] = None
        self._limit: Optional[int] = None
        self._distinct = False
        self._name: Optional[str] = None

    def select(self, *exprs: Any) -> "QueryBuilder":
        """Set the projection: entity paths, fields or aggregates."""
        for item in exprs:
            if not isinstance(item, (EntityPath, FieldRef, AggregateExpr)):
                raise TypeError(f"Cannot select {item!r}")
        self._projection = list(exprs)
        return self

    def from_(self, path: EntityPath) -> "QueryBuilder":
        """Set the root entity."""
        self._root = path
        return self

    def select_from(self, path: EntityPath) -> "QueryBuilder":
        """Select and read from the same entity."""
        self._projection = [path]
        self._root = path
        return self

    def join(self, relation: RelationRef, target: Optional[EntityPath] = None) -> "QueryBuilder":
        """
        Inner join through a relation.

        Args:
            relation: Relation of an entity already in scope (m.team)
            target: Alias for the joined entity; defaults to the
                relation's target under the relation's name
        """
        self._joins.append(Join(relation, self._join_target(relation, target)))
        return self

    def left_join(self, relation: RelationRef, target: Optional[EntityPath] = None) -> "QueryBuilder":
        """Left outer join through a relation."""
        self._joins.append(Join(relation, self._join_target(relation, target), outer=True))
        return self

    @staticmethod
    def _join_target(relation: RelationRef, target: Optional[EntityPath]) -> EntityPath:
        if target is not None:
            return target
        return get_metadata().path(relation.target, relation.name)

    def where(self, *fragments: Optional[Predicate]) -> "QueryBuilder":
        """AND the given fragments into the filter; None fragments are skipped."""
        self._where = conjunction(self._where, *fragments)
        return self

    def order_by(self, *specs: Any) -> "QueryBuilder":
        """Append ordering terms; bare fields order ascending."""
        for spec in specs:
            if isinstance(spec, (FieldRef, AggregateExpr)):
                spec = spec.asc()
            if not isinstance(spec, OrderSpecifier):
                raise TypeError(f"Cannot order by {spec!r}")
            self._order_by.append(spec)
        return self

    def group_by(self, *fields: FieldRef) -> "QueryBuilder":
        for f in fields:
            if not isinstance(f, FieldRef):
                raise TypeError(f"Cannot group by {f!r}")
        self._group_by.extend(fields)
        return self

    def having(self, *fragments: Optional[Predicate]) -> "QueryBuilder":
        """AND the given fragments into the post-group filter."""
        self._having = conjunction(self._having, *fragments)
        return self

    def offset(self, n: int) -> "QueryBuilder":
        self._offset = n
        return self

    def limit(self, n: int) -> "QueryBuilder":
        self._limit = n
        return self

    def distinct(self) -> "QueryBuilder":
        self._distinct = True
        return self

    def name(self, name: str) -> "QueryBuilder":
        self._name = name
        return self

    def build(self) -> Query:
        """Validate and return an immutable Query. Performs no I/O."""
        root = self._resolve_root()
        scope = self._build_scope(root)

        def check(field: FieldRef, clause: str) -> None:
            owner = scope.get(field.alias)
            if owner is None or owner.entity is not field.entity:
                raise FieldMismatchError(
                    f"{field.path} ({field.entity.__name__}) used in {clause} is not in scope; "
                    f"aliases in scope: {sorted(scope)}"
                )

        for item in self._projection:
            if isinstance(item, EntityPath) and scope.get(item.alias) != item:
                raise FieldMismatchError(f"Entity {item!r} selected but not in scope")
            for f in item.fields():
                check(f, 'select')

        if self._where is not None:
            if self._where.has_aggregates():
                raise InvalidQueryError("Aggregates cannot be used in where(); use having()")
            for f in self._where.fields():
                check(f, 'where')

        for spec in self._order_by:
            for f in spec.fields():
                check(f, 'order_by')

        for f in self._group_by:
            check(f, 'group_by')

        if self._having is not None:
            for f in self._having.fields():
                check(f, 'having')

        self._check_pagination()

        query = Query(
            root=root,
            projection=tuple(self._projection),
            joins=tuple(self._joins),
            where=self._where,
            order_by=tuple(self._order_by),
            group_by=tuple(self._group_by),
            having=self._having,
            offset=self._offset,
            limit=self._limit,
            distinct=self._distinct,
            name=self._name,
        )
        self._check_aggregation(query)
        return query

    def _resolve_root(self) -> EntityPath:
        if self._root is not None:
            return self._root
        if len(self._projection) == 1 and isinstance(self._projection[0], EntityPath):
            return self._projection[0]
        raise InvalidQueryError("Query has no root entity; call from_() or select_from()")

    def _build_scope(self, root: EntityPath) -> Dict[str, EntityPath]:
        scope = {root.alias: root}
        for join in self._joins:
            relation = join.relation
            source = scope.get(relation.alias)
            if source is None or source.entity is not relation.entity:
                raise FieldMismatchError(
                    f"Cannot join through {relation.path}: '{relation.alias}' is not in scope"
                )
            if join.target.entity is not relation.target:
                raise FieldMismatchError(
                    f"Cannot join {relation.path} ({relation.target.__name__}) "
                    f"as {join.target.entity.__name__}"
                )
            if join.target.alias in scope:
                raise FieldMismatchError(f"Alias '{join.target.alias}' is already in scope")
            scope[join.target.alias] = join.target
        return scope

    def _check_pagination(self) -> None:
        if self._offset is not None and (not _is_int(self._offset) or self._offset < 0):
            raise InvalidQueryError(f"offset must be a non-negative integer, got {self._offset!r}")
        if self._limit is not None and (not _is_int(self._limit) or self._limit <= 0):
            raise InvalidQueryError(f"limit must be a positive integer, got {self._limit!r}")

    @staticmethod
    def _check_aggregation(query: Query) -> None:
        if query.is_aggregate:
            for item in query.projection:
                if isinstance(item, EntityPath):
                    raise InvalidQueryError(
                        f"Cannot select entity {item.alias} in an aggregate query"
                    )
                if isinstance(item, FieldRef) and item not in query.group_by:
                    raise InvalidQueryError(
                        f"{item.path} must appear in group_by to be selected with aggregates"
                    )
            for spec in query.order_by:
                if isinstance(spec.target, FieldRef) and spec.target not in query.group_by:
                    raise InvalidQueryError(
                        f"{spec.target.path} must appear in group_by to order grouped rows"
                    )
            if query.having is not None:
                for operand in query.having.operands():
                    if isinstance(operand, FieldRef) and operand not in query.group_by:
                        raise InvalidQueryError(
                            f"{operand.path} must appear in group_by to be used in having"
                        )
        else:
            if query.having is not None:
                raise InvalidQueryError("having() requires an aggregate query")
            for spec in query.order_by:
                if spec.is_aggregate:
                    raise InvalidQueryError(f"Cannot order by {spec.target} without aggregation")

    # Execution through a bound executor

    def _bound(self) -> "QueryExecutor":
        if self._executor is None:
            raise QueryError("Query builder is not bound to a store; use QueryFactory")
        return self._executor

    def fetch_one(self) -> Any:
        return self._bound().fetch_one(self.build())

    def fetch_first(self) -> Any:
        return self._bound().fetch_first(self.build())

    def fetch(self) -> List[Any]:
        return self._bound().fetch(self.build())

    def fetch_results(self) -> "ResultPage":
        return self._bound().fetch_results(self.build())

    def fetch_count(self) -> int:
        return self._bound().fetch_count(self.build())


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def query() -> QueryBuilder:
    """Create a new, unbound query builder."""
    return QueryBuilder()
