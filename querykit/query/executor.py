"""
Query execution engine for querykit.

Compiles Query AST into SQLAlchemy statements and runs them on a Store
in one of the fetch modes:

- fetch_one: at most one result; NonUniqueResultError on more
- fetch_first: first result per ordering, or None
- fetch: all results, honoring pagination
- fetch_results: a ResultPage with the unpaginated total
- fetch_count: the total alone

Every fetch mode is read-only. The executor keeps no state between
calls; transactional scope comes from the Store it is given.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import MultipleResultsFound
from sqlalchemy.orm import aliased
from sqlalchemy.sql import Select

from querykit.config import QueryKitConfig, get_config

from .ast import Query, QueryBuilder
from .errors import FieldMismatchError, NonUniqueResultError
from .metadata import EntityPath, FieldRef
from .results import AggregateRow, ResultPage

if TYPE_CHECKING:
    from querykit.db import Store

logger = logging.getLogger(__name__)


class FetchMode(Enum):
    ONE = "one"
    FIRST = "first"
    ALL = "all"
    RESULTS = "results"
    COUNT = "count"

    @classmethod
    def from_string(cls, s: str) -> "FetchMode":
        s = s.lower().strip()
        mapping = {
            'one': cls.ONE,
            'fetch_one': cls.ONE,
            'first': cls.FIRST,
            'fetch_first': cls.FIRST,
            'all': cls.ALL,
            'fetch': cls.ALL,
            'list': cls.ALL,
            'results': cls.RESULTS,
            'fetch_results': cls.RESULTS,
            'page': cls.RESULTS,
            'count': cls.COUNT,
            'fetch_count': cls.COUNT,
        }
        if s in mapping:
            return mapping[s]
        raise ValueError(f"Unknown fetch mode: {s}")


# =============================================================================
# Compiler
# =============================================================================

class QueryCompiler:
    """
    Compiles one Query into SQLAlchemy statements.

    Every entity in scope is aliased under its query alias, so the same
    entity can be joined more than once.
    """

    def __init__(self, query: Query, stable_ordering: bool = True):
        self.query = query
        self.stable_ordering = stable_ordering
        self._aliases: Dict[str, Any] = {
            alias: aliased(path.entity, name=alias)
            for alias, path in query.scope.items()
        }

    def entity(self, path: EntityPath):
        """Aliased entity for an entity path."""
        try:
            return self._aliases[path.alias]
        except KeyError:
            raise FieldMismatchError(f"Entity alias '{path.alias}' is not in scope")

    def column(self, field: FieldRef):
        """Aliased column attribute for a field reference."""
        try:
            return getattr(self._aliases[field.alias], field.name)
        except KeyError:
            raise FieldMismatchError(f"{field.path} is not in scope")

    def _base(self) -> Select:
        """SELECT ... FROM ... JOIN ... WHERE ... GROUP BY ... HAVING, no ordering or window."""
        q = self.query
        stmt = select(*[item.to_sql(self) for item in q.selections])
        stmt = stmt.select_from(self._aliases[q.root.alias])

        for join in q.joins:
            source = self._aliases[join.relation.alias]
            target = self._aliases[join.target.alias]
            onclause = getattr(source, join.relation.name).of_type(target)
            stmt = stmt.join(onclause, isouter=join.outer)

        if q.where is not None:
            stmt = stmt.where(q.where.to_sql(self))

        if q.group_by:
            stmt = stmt.group_by(*[f.to_sql(self) for f in q.group_by])

        if q.having is not None:
            stmt = stmt.having(q.having.to_sql(self))

        if q.distinct:
            stmt = stmt.distinct()

        return stmt

    def order_terms(self) -> List[Any]:
        """ORDER BY elements, with tie-breakers when stable ordering is on."""
        q = self.query
        terms = [spec.to_sql(self) for spec in q.order_by]

        if self.stable_ordering and not q.distinct:
            ordered = {spec.target for spec in q.order_by}
            if q.is_aggregate:
                tie_breakers = q.group_by
            else:
                # A joined row is identified by the keys of every alias it spans
                tie_breakers = tuple(q.root.primary_key) + tuple(
                    f for join in q.joins for f in join.target.primary_key
                )
            terms.extend(
                f.to_sql(self).asc() for f in tie_breakers if f not in ordered
            )

        return terms

    def compile(self, limit: Optional[int] = None) -> Select:
        """
        Compile the page statement.

        Args:
            limit: Overrides the query's own limit (used by fetch_first)
        """
        q = self.query
        stmt = self._base().order_by(*self.order_terms())

        if q.offset is not None:
            stmt = stmt.offset(q.offset)

        effective_limit = limit if limit is not None else q.limit
        if effective_limit is not None:
            stmt = stmt.limit(effective_limit)

        return stmt

    def compile_count(self) -> Select:
        """Count of all rows the page statement would read, ignoring the window."""
        return select(func.count()).select_from(self._base().subquery())


# =============================================================================
# Query Executor
# =============================================================================

class QueryExecutor:
    """
    Executes queries against a Store.

    Args:
        store: Store to read from; its session is the transaction scope
        config: Configuration (defaults to the global configuration)
    """

    def __init__(self, store: "Store", config: Optional[QueryKitConfig] = None):
        self.store = store
        self.config = config or get_config()

    def compiler(self, query: Query) -> QueryCompiler:
        return QueryCompiler(query, stable_ordering=self.config.stable_ordering)

    def execute(self, query: Query, mode: FetchMode = FetchMode.ALL) -> Any:
        """Execute a query in the given fetch mode."""
        if isinstance(mode, str):
            mode = FetchMode.from_string(mode)

        if mode == FetchMode.ONE:
            return self.fetch_one(query)
        elif mode == FetchMode.FIRST:
            return self.fetch_first(query)
        elif mode == FetchMode.ALL:
            return self.fetch(query)
        elif mode == FetchMode.RESULTS:
            return self.fetch_results(query)
        elif mode == FetchMode.COUNT:
            return self.fetch_count(query)
        raise ValueError(f"Unsupported fetch mode: {mode}")

    def fetch_one(self, query: Query) -> Any:
        """Single result or None; raises NonUniqueResultError on several."""
        result = self._run(query, self.compiler(query).compile())
        try:
            if self._is_single_column(query):
                return result.scalar_one_or_none()
            row = result.one_or_none()
        except MultipleResultsFound as exc:
            raise NonUniqueResultError(
                f"Expected at most one result, found several for {query!r}"
            ) from exc
        return None if row is None else AggregateRow(query.selections, tuple(row))

    def fetch_first(self, query: Query) -> Any:
        """First result by the query's ordering, or None."""
        result = self._run(query, self.compiler(query).compile(limit=1))
        if self._is_single_column(query):
            return result.scalars().first()
        row = result.first()
        return None if row is None else AggregateRow(query.selections, tuple(row))

    def fetch(self, query: Query) -> List[Any]:
        """All results, honoring the pagination window."""
        result = self._run(query, self.compiler(query).compile())
        return self._materialize(query, result)

    def fetch_results(self, query: Query) -> ResultPage:
        """
        A page of results with the total number of matching rows.

        Both reads are compiled from the same base statement and run on
        the same store session, so they agree unless another
        transaction writes in between.
        """
        compiler = self.compiler(query)
        total = self._run(query, compiler.compile_count()).scalar_one()
        results = self._materialize(query, self._run(query, compiler.compile()))
        return ResultPage(results=results, total=total, offset=query.offset, limit=query.limit)

    def fetch_count(self, query: Query) -> int:
        """Number of matching rows, ignoring pagination."""
        return self._run(query, self.compiler(query).compile_count()).scalar_one()

    def _run(self, query: Query, statement: Select):
        logger.debug(f"Executing {query!r}: {statement}")
        return self.store.execute(statement)

    @staticmethod
    def _is_single_column(query: Query) -> bool:
        return len(query.selections) == 1

    def _materialize(self, query: Query, result) -> List[Any]:
        if self._is_single_column(query):
            return list(result.scalars().all())
        return [AggregateRow(query.selections, tuple(row)) for row in result.all()]


# =============================================================================
# Query Factory
# =============================================================================

class QueryFactory:
    """
    Entry point for building queries bound to a store.

    Example:
        factory = QueryFactory(store)
        m = entity_path(Member)
        member = factory.select_from(m).where(m.username.eq("member1")).fetch_one()
    """

    def __init__(self, store: "Store", config: Optional[QueryKitConfig] = None):
        self.executor = QueryExecutor(store, config)

    def query(self) -> QueryBuilder:
        return QueryBuilder(self.executor)

    def select(self, *exprs: Any) -> QueryBuilder:
        return QueryBuilder(self.executor).select(*exprs)

    def select_from(self, path: EntityPath) -> QueryBuilder:
        return QueryBuilder(self.executor).select_from(path)


# =============================================================================
# Convenience Functions
# =============================================================================

def execute_query(store: "Store", query: Query, mode: Any = FetchMode.ALL,
                  config: Optional[QueryKitConfig] = None) -> Any:
    """Execute a query against a store."""
    executor = QueryExecutor(store, config)
    return executor.execute(query, mode)
