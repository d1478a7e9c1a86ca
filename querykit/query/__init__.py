"""
querykit query layer - typed, composable queries over SQLAlchemy entities.

This module provides:
- Entity metadata with capability-checked field references
- A predicate algebra (eq, and_, or_, comparisons, string matching)
- Ordering with explicit null placement
- Joins, grouping and aggregates
- Four fetch modes: fetch_one, fetch_first, fetch, fetch_results

Example usage:

    from querykit import Database
    from querykit.models import Member, Team
    from querykit.query import QueryFactory, entity_path

    db = Database('app.db')
    m = entity_path(Member)
    t = entity_path(Team)

    with db.session() as store:
        factory = QueryFactory(store)

        member = (factory.select_from(m)
            .where(m.username.eq("member1"), m.age.eq(10))
            .fetch_one())

        page = (factory.select_from(m)
            .order_by(m.age.desc(), m.username.asc().nulls_last())
            .offset(1)
            .limit(2)
            .fetch_results())

        rows = (factory.select(t.name, m.age.avg())
            .from_(m)
            .join(m.team, t)
            .group_by(t.name)
            .fetch())

    # Or from YAML
    from querykit.query import parse_query, execute_query

    q = parse_query({
        'from': 'member',
        'where': {'age': '>= 20'},
        'order': 'username desc nulls last',
        'limit': 10,
    })
"""

# Errors
from .errors import (
    QueryError,
    QueryBuildError,
    FieldMismatchError,
    CapabilityError,
    InvalidQueryError,
    NonUniqueResultError,
    ExecutionError,
)

# Predicates
from .expr import (
    Predicate,
    Equals,
    Comparison,
    Between,
    In,
    IsNull,
    Like,
    And,
    Or,
    Not,
    conjunction,
    all_of,
    any_of,
)

# Ordering
from .ordering import (
    Direction,
    NullHandling,
    OrderSpecifier,
)

# Aggregates
from .aggregate import (
    AggregateFunction,
    AggregateExpr,
)

# Entity metadata
from .metadata import (
    Capability,
    FieldSpec,
    RelationSpec,
    EntityMeta,
    FieldRef,
    RelationRef,
    EntityPath,
    MetadataRegistry,
    get_metadata,
    reset_metadata,
    entity_path,
)

# Query AST
from .ast import (
    Join,
    Query,
    QueryBuilder,
    query,
)

# Results
from .results import (
    ResultPage,
    AggregateRow,
)

# Executor
from .executor import (
    FetchMode,
    QueryCompiler,
    QueryExecutor,
    QueryFactory,
    execute_query,
)

# Parser
from .parser import (
    ParseError,
    QueryParser,
    parse_query,
    parse_queries_file,
    parse_queries_string,
    QueryRegistry,
    get_registry,
    reset_registry,
)

__all__ = [
    # Errors
    'QueryError',
    'QueryBuildError',
    'FieldMismatchError',
    'CapabilityError',
    'InvalidQueryError',
    'NonUniqueResultError',
    'ExecutionError',

    # Predicates
    'Predicate',
    'Equals',
    'Comparison',
    'Between',
    'In',
    'IsNull',
    'Like',
    'And',
    'Or',
    'Not',
    'conjunction',
    'all_of',
    'any_of',

    # Ordering
    'Direction',
    'NullHandling',
    'OrderSpecifier',

    # Aggregates
    'AggregateFunction',
    'AggregateExpr',

    # Metadata
    'Capability',
    'FieldSpec',
    'RelationSpec',
    'EntityMeta',
    'FieldRef',
    'RelationRef',
    'EntityPath',
    'MetadataRegistry',
    'get_metadata',
    'reset_metadata',
    'entity_path',

    # Query AST
    'Join',
    'Query',
    'QueryBuilder',
    'query',

    # Results
    'ResultPage',
    'AggregateRow',

    # Executor
    'FetchMode',
    'QueryCompiler',
    'QueryExecutor',
    'QueryFactory',
    'execute_query',

    # Parser
    'ParseError',
    'QueryParser',
    'parse_query',
    'parse_queries_file',
    'parse_queries_string',
    'QueryRegistry',
    'get_registry',
    'reset_registry',
]
