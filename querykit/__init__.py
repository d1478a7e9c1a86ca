"""
querykit - typed query construction and execution over SQLAlchemy.

Design Principles:
- Queries are immutable values, validated before they touch the store
- Field references carry their capabilities; misuse fails at build time
- Two equivalent ways to combine predicates: explicit and_() or
  multiple where() fragments
- Explicit fetch modes with checked uniqueness and paired counts

Example Usage:
    >>> from querykit import Database, QueryFactory, entity_path
    >>> from querykit.models import Member
    >>> db = Database("app.db")
    >>> m = entity_path(Member)
    >>> with db.session() as store:
    ...     members = QueryFactory(store).select_from(m).where(m.age.goe(20)).fetch()
"""

__version__ = "0.3.0"
__author__ = "querykit Contributors"

# Store
from querykit.db import Database, Store, get_db

# Configuration
from querykit.config import QueryKitConfig, get_config, init_config, setup_logging

# Query layer
from querykit.query import (
    QueryFactory,
    QueryExecutor,
    QueryBuilder,
    Query,
    ResultPage,
    AggregateRow,
    entity_path,
    get_metadata,
    query,
    parse_query,
    execute_query,
    QueryError,
    FieldMismatchError,
    CapabilityError,
    InvalidQueryError,
    NonUniqueResultError,
    ExecutionError,
)

__all__ = [
    # Store
    "Database",
    "Store",
    "get_db",
    # Config
    "QueryKitConfig",
    "get_config",
    "init_config",
    "setup_logging",
    # Query layer
    "QueryFactory",
    "QueryExecutor",
    "QueryBuilder",
    "Query",
    "ResultPage",
    "AggregateRow",
    "entity_path",
    "get_metadata",
    "query",
    "parse_query",
    "execute_query",
    # Errors
    "QueryError",
    "FieldMismatchError",
    "CapabilityError",
    "InvalidQueryError",
    "NonUniqueResultError",
    "ExecutionError",
]
