"""
YAML parser for querykit query definitions.

Parses YAML (or plain dict) definitions into built Query objects. The
definitions go through QueryBuilder, so they are validated exactly like
queries written in Python.

Example YAML:

    member_by_name:
      from: member
      where:
        username: member1
        age: 10

    paged_members:
      from: member
      join:
        team: team
      where:
        age: ">= 20"
        team.name: [teamA, teamB]
      order: username desc nulls last
      offset: 1
      limit: 2

    team_average:
      select: [team.name, avg(member.age)]
      from: member
      join: {team: team}
      group: team.name
      having:
        count(): ">= 2"

Field paths are 'alias.field', or a bare field name of the root entity.
Condition values:
    scalar              equality
    null                is null
    [a, b]              in
    ">= 10"             comparison (=, !=, <>, >, >=, <, <=)
    contains "x"        also starts_with, ends_with, like
    exists / missing    is not null / is null
    {between: [a, b]}   any FieldRef operator as a key
"""

import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .ast import Query, QueryBuilder
from .errors import QueryError
from .expr import Predicate, conjunction
from .metadata import EntityPath, MetadataRegistry, get_metadata
from .ordering import OrderSpecifier

logger = logging.getLogger(__name__)


class ParseError(QueryError):
    """Error parsing query definition."""
    pass


_CALL_RE = re.compile(r'^(\w+)\(\s*([\w.]*)\s*\)$')
_COMPARISON_RE = re.compile(r'^(>=|<=|!=|<>|>|<|=)\s*(.+)$')
_STRING_OP_RE = re.compile(r'^(contains|starts_with|ends_with|like)\s+(.+)$')

_COMPARISON_METHODS = {
    '=': 'eq',
    '!=': 'ne',
    '<>': 'ne',
    '>': 'gt',
    '>=': 'goe',
    '<': 'lt',
    '<=': 'loe',
}

_AGGREGATE_FUNCS = ('count', 'count_distinct', 'sum', 'avg', 'max', 'min')

# Keys allowed in dict-style conditions, mapped to operator methods
_CONDITION_KEYS = {
    'eq': 'eq',
    'ne': 'ne',
    'gt': 'gt',
    'goe': 'goe',
    'gte': 'goe',
    'lt': 'lt',
    'loe': 'loe',
    'lte': 'loe',
    'in': 'in_',
    'not_in': 'not_in',
    'between': 'between',
    'like': 'like',
    'contains': 'contains',
    'starts_with': 'starts_with',
    'ends_with': 'ends_with',
}


class QueryParser:
    """
    Parser for YAML query definitions.

    Converts definition dictionaries into Query objects.
    """

    def __init__(self, metadata: Optional[MetadataRegistry] = None):
        """
        Initialize parser.

        Args:
            metadata: Registry used to resolve entity names (defaults to the global one)
        """
        self.metadata = metadata or get_metadata()

    def parse(self, definition: Dict[str, Any], name: Optional[str] = None) -> Query:
        """
        Parse a single query definition.

        Args:
            definition: Dictionary containing query definition
            name: Optional name for the query

        Returns:
            Built Query object
        """
        if not isinstance(definition, dict):
            raise ParseError(f"Query definition must be a dictionary, got {type(definition)}")

        if 'from' not in definition:
            raise ParseError("Query definition needs a 'from' entity")

        root = self._entity(definition['from'])
        scope: Dict[str, EntityPath] = {root.alias: root}
        builder = QueryBuilder().from_(root)

        # Joins must be resolved before any field path that uses them
        for key, outer in (('join', False), ('left_join', True)):
            if key in definition:
                for relation_path, alias in self._pairs(definition[key], key):
                    self._parse_join(builder, scope, relation_path, alias, outer)

        if 'select' in definition:
            items = definition['select']
            if isinstance(items, str):
                items = [part.strip() for part in items.split(',')]
            builder.select(*[self._selectable(item, scope) for item in items])

        if 'where' in definition:
            builder.where(self._parse_conditions(definition['where'], scope))

        if 'group' in definition or 'group_by' in definition:
            group_def = definition.get('group', definition.get('group_by'))
            if isinstance(group_def, str):
                group_def = [part.strip() for part in group_def.split(',')]
            builder.group_by(*[self._field(str(path), scope) for path in group_def])

        if 'having' in definition:
            builder.having(self._parse_conditions(definition['having'], scope))

        if 'order' in definition or 'order_by' in definition:
            order_def = definition.get('order', definition.get('order_by'))
            builder.order_by(*self._parse_order(order_def, scope))

        if 'offset' in definition:
            builder.offset(self._int(definition['offset'], 'offset'))

        if 'limit' in definition:
            builder.limit(self._int(definition['limit'], 'limit'))

        if definition.get('distinct'):
            builder.distinct()

        if name:
            builder.name(name)

        return builder.build()

    # Resolution

    def _entity(self, spec: Any) -> EntityPath:
        """Entity from 'member' or {'member': 'alias'}."""
        if isinstance(spec, dict) and len(spec) == 1:
            entity_name, alias = next(iter(spec.items()))
        elif isinstance(spec, str):
            entity_name, alias = spec, None
        else:
            raise ParseError(f"Invalid 'from' definition: {spec!r}")
        try:
            return self.metadata.path(str(entity_name), alias)
        except KeyError:
            raise ParseError(f"Unknown entity: {entity_name}")

    def _parse_join(self, builder: QueryBuilder, scope: Dict[str, EntityPath],
                    relation_path: str, alias: Optional[str], outer: bool) -> None:
        owner, _, relation_name = relation_path.rpartition('.')
        source = scope.get(owner) if owner else next(iter(scope.values()))
        if source is None:
            raise ParseError(f"Unknown alias '{owner}' in join {relation_path!r}")
        if not source.has_relation(relation_name):
            raise ParseError(f"{source.entity.__name__} has no relation '{relation_name}'")

        relation = source.relation(relation_name)
        target = self.metadata.path(relation.target, alias or relation_name)
        scope[target.alias] = target
        if outer:
            builder.left_join(relation, target)
        else:
            builder.join(relation, target)

    def _field(self, path: str, scope: Dict[str, EntityPath]):
        alias, _, name = path.rpartition('.')
        owner = scope.get(alias) if alias else next(iter(scope.values()))
        if owner is None:
            raise ParseError(f"Unknown alias '{alias}' in field {path!r}")
        if not owner.has_field(name):
            raise ParseError(f"{owner.entity.__name__} has no field '{name}'")
        return owner.field(name)

    def _expression(self, text: str, scope: Dict[str, EntityPath]):
        """Field path or aggregate call such as 'avg(member.age)' or 'count()'."""
        match = _CALL_RE.match(text.strip())
        if not match:
            return self._field(text.strip(), scope)

        func, arg = match.group(1).lower(), match.group(2)
        if func not in _AGGREGATE_FUNCS:
            raise ParseError(f"Unknown aggregate function: {func}")

        if func == 'count' and (not arg or arg in scope):
            path = scope[arg] if arg else next(iter(scope.values()))
            return path.count()

        if not arg:
            raise ParseError(f"{func}() needs a field")
        return getattr(self._field(arg, scope), func)()

    def _selectable(self, item: Any, scope: Dict[str, EntityPath]):
        text = str(item).strip()
        if text in scope:
            return scope[text]
        return self._expression(text, scope)

    # Conditions

    def _parse_conditions(self, conditions: Any, scope: Dict[str, EntityPath]) -> Optional[Predicate]:
        """Parse a mapping (or list of mappings) of path -> condition, AND-ed together."""
        if isinstance(conditions, list):
            return conjunction(*[self._parse_conditions(item, scope) for item in conditions])

        if not isinstance(conditions, dict):
            raise ParseError(f"Invalid condition block: {conditions!r}")

        return conjunction(*[
            self._parse_condition(self._expression(str(path), scope), value)
            for path, value in conditions.items()
        ])

    def _parse_condition(self, target: Any, value: Any) -> Predicate:
        if value is None:
            return self._call(target, 'is_null')

        if isinstance(value, list):
            return self._call(target, 'in_', value)

        if isinstance(value, dict):
            parts = []
            for key, arg in value.items():
                method = _CONDITION_KEYS.get(str(key).lower())
                if method is None:
                    raise ParseError(f"Unknown condition operator: {key}")
                if method == 'between':
                    if not isinstance(arg, list) or len(arg) != 2:
                        raise ParseError(f"between needs two values, got {arg!r}")
                    parts.append(self._call(target, method, *arg))
                else:
                    parts.append(self._call(target, method, arg))
            return conjunction(*parts)

        if isinstance(value, str):
            text = value.strip()
            if text == 'exists':
                return self._call(target, 'is_not_null')
            if text == 'missing':
                return self._call(target, 'is_null')

            match = _COMPARISON_RE.match(text)
            if match:
                method = _COMPARISON_METHODS[match.group(1)]
                return self._call(target, method, _literal(match.group(2)))

            match = _STRING_OP_RE.match(text)
            if match:
                return self._call(target, match.group(1), _unquote(match.group(2)))

        return self._call(target, 'eq', value)

    @staticmethod
    def _call(target: Any, method: str, *args: Any) -> Predicate:
        func = getattr(target, method, None)
        if func is None:
            raise ParseError(f"Operator '{method}' is not available on {target}")
        return func(*args)

    # Ordering

    def _parse_order(self, order_def: Any, scope: Dict[str, EntityPath]) -> List[OrderSpecifier]:
        def resolve(text: str):
            return self._expression(text, scope)

        try:
            if isinstance(order_def, str):
                return OrderSpecifier.parse_list(order_def, resolve)
            if isinstance(order_def, list):
                specs = []
                for item in order_def:
                    specs.extend(OrderSpecifier.parse_list(str(item), resolve))
                return specs
        except ValueError as e:
            raise ParseError(str(e))

        raise ParseError(f"Invalid order definition: {order_def!r}")

    # Helpers

    @staticmethod
    def _pairs(spec: Any, key: str) -> List[tuple]:
        """Join specs as (relation_path, alias) pairs."""
        if isinstance(spec, str):
            return [(spec, None)]
        if isinstance(spec, dict):
            return [(str(k), v) for k, v in spec.items()]
        if isinstance(spec, list):
            pairs = []
            for item in spec:
                pairs.extend(QueryParser._pairs(item, key))
            return pairs
        raise ParseError(f"Invalid {key} definition: {spec!r}")

    @staticmethod
    def _int(value: Any, key: str) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ParseError(f"{key} must be an integer, got {value!r}")


def _literal(text: str) -> Any:
    """Scalar from the right-hand side of a comparison ('10' -> 10, '"a b"' -> 'a b')."""
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def _unquote(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ('"', "'"):
        return text[1:-1]
    return text


def parse_query(definition: Dict[str, Any], name: Optional[str] = None,
                metadata: Optional[MetadataRegistry] = None) -> Query:
    """
    Parse a single query definition.

    Convenience function that creates a parser and parses.
    """
    return QueryParser(metadata).parse(definition, name)


def parse_queries_string(yaml_string: str, metadata: Optional[MetadataRegistry] = None) -> Dict[str, Query]:
    """
    Parse a YAML string containing multiple query definitions.

    Returns:
        Dictionary mapping query names to Query objects
    """
    try:
        data = yaml.safe_load(yaml_string)
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid YAML: {e}")

    if not isinstance(data, dict):
        raise ParseError(f"YAML must contain a dictionary, got {type(data)}")

    parser = QueryParser(metadata)
    return {
        str(name): parser.parse(definition, str(name))
        for name, definition in data.items()
    }


def parse_queries_file(path: Union[str, Path], metadata: Optional[MetadataRegistry] = None) -> Dict[str, Query]:
    """Parse a YAML file containing multiple query definitions."""
    path = Path(path)

    if not path.exists():
        raise ParseError(f"Queries file not found: {path}")

    with open(path) as f:
        return parse_queries_string(f.read(), metadata)


# =============================================================================
# Query Registry
# =============================================================================

class QueryRegistry:
    """
    Registry for named queries.

    Stores built queries and supports loading definitions from files.
    """

    def __init__(self, metadata: Optional[MetadataRegistry] = None):
        self.metadata = metadata
        self._queries: Dict[str, Query] = {}
        self._sources: Dict[str, Path] = {}  # Track where queries came from

    def register(self, name: str, query: Query, source: Optional[Path] = None) -> None:
        """Register a query under a name."""
        self._queries[name] = replace(query, name=name)
        if source:
            self._sources[name] = source

    def get(self, name: str) -> Query:
        """Get a query by name."""
        if name not in self._queries:
            raise KeyError(f"Unknown query: {name}")
        return self._queries[name]

    def has(self, name: str) -> bool:
        return name in self._queries

    def source(self, name: str) -> Optional[Path]:
        return self._sources.get(name)

    def list(self) -> List[str]:
        return list(self._queries.keys())

    def all(self) -> Dict[str, Query]:
        return dict(self._queries)

    def load_file(self, path: Union[str, Path]) -> int:
        """
        Load queries from a YAML file.

        Returns number of queries loaded.
        """
        path = Path(path)
        queries = parse_queries_file(path, self.metadata)

        for name, query in queries.items():
            self.register(name, query, source=path)

        logger.info(f"Loaded {len(queries)} queries from {path}")
        return len(queries)

    def load_string(self, yaml_string: str) -> int:
        """
        Load queries from a YAML string.

        Returns number of queries loaded.
        """
        queries = parse_queries_string(yaml_string, self.metadata)

        for name, query in queries.items():
            self.register(name, query)

        return len(queries)

    def clear(self) -> None:
        """Remove all registered queries."""
        self._queries.clear()
        self._sources.clear()


# Global registry instance
_default_registry: Optional[QueryRegistry] = None


def get_registry() -> QueryRegistry:
    """Get the default query registry, loading config.queries_file if set."""
    from querykit.config import get_config

    global _default_registry
    if _default_registry is None:
        _default_registry = QueryRegistry()
        queries_file = get_config().queries_file
        if queries_file:
            _default_registry.load_file(queries_file)
    return _default_registry


def reset_registry() -> None:
    """Reset the default registry."""
    global _default_registry
    _default_registry = None
