"""
Result types for querykit.

- ResultPage[T]: one page of results plus the unpaginated total
- AggregateRow: one row of a multi-column projection, addressable by
  expression, by position, or by label
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar, Union

# Type variable for generic results
T = TypeVar('T')


# =============================================================================
# Result Page
# =============================================================================

@dataclass
class ResultPage(Generic[T]):
    """
    A page of query results.

    Attributes:
        results: Items on this page, in query order
        total: Number of rows matching the predicate, ignoring pagination
        offset: Offset the page was read with (None if unset)
        limit: Limit the page was read with (None if unset)
    """
    results: List[T] = field(default_factory=list)
    total: int = 0
    offset: Optional[int] = None
    limit: Optional[int] = None

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self) -> Iterator[T]:
        return iter(self.results)

    def __getitem__(self, idx: Union[int, slice]) -> Union[T, List[T]]:
        return self.results[idx]

    @property
    def is_empty(self) -> bool:
        return not self.results

    @property
    def has_more(self) -> bool:
        """Check if rows exist beyond this page."""
        return (self.offset or 0) + len(self.results) < self.total

    def first(self) -> Optional[T]:
        """Get the first item, or None if empty."""
        return self.results[0] if self.results else None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            'results': [self._serialize_item(item) for item in self.results],
            'total': self.total,
            'offset': self.offset,
            'limit': self.limit,
        }

    @staticmethod
    def _serialize_item(item: Any) -> Any:
        if hasattr(item, 'to_dict'):
            return item.to_dict()
        return item

    @classmethod
    def empty(cls, offset: Optional[int] = None, limit: Optional[int] = None) -> "ResultPage[T]":
        return cls(results=[], total=0, offset=offset, limit=limit)


# =============================================================================
# Aggregate Rows
# =============================================================================

class AggregateRow:
    """
    One row of a multi-column projection.

    Columns are keyed by the projected expressions themselves, so the
    same expression written again finds its value:

        row.get(team.name)
        row.get(member.age.avg())
        row[0], row['avg(member.age)']
    """

    def __init__(self, expressions: Sequence[Any], values: Sequence[Any]):
        if len(expressions) != len(values):
            raise ValueError(
                f"Row has {len(values)} values for {len(expressions)} expressions"
            )
        self._expressions: Tuple[Any, ...] = tuple(expressions)
        self._values: Tuple[Any, ...] = tuple(values)

    def get(self, expression: Any, default: Any = None) -> Any:
        """Value of a projected expression, or default if not projected."""
        for expr, value in zip(self._expressions, self._values):
            if expr == expression:
                return value
        return default

    def __getitem__(self, key: Any) -> Any:
        if isinstance(key, int):
            return self._values[key]
        if isinstance(key, str):
            for expr, value in zip(self._expressions, self._values):
                if _label(expr) == key:
                    return value
            raise KeyError(key)
        for expr, value in zip(self._expressions, self._values):
            if expr == key:
                return value
        raise KeyError(key)

    def __contains__(self, expression: Any) -> bool:
        return any(expr == expression for expr in self._expressions)

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __eq__(self, other):
        if not isinstance(other, AggregateRow):
            return NotImplemented
        return self._expressions == other._expressions and self._values == other._values

    def __hash__(self):
        return hash(self._values)

    @property
    def columns(self) -> List[str]:
        return [_label(expr) for expr in self._expressions]

    def values(self) -> Tuple[Any, ...]:
        return self._values

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a label -> value dictionary."""
        return dict(zip(self.columns, self._values))

    def __repr__(self):
        items = ', '.join(f"{k}={v!r}" for k, v in self.to_dict().items())
        return f"AggregateRow({items})"


def _label(expression: Any) -> str:
    label = getattr(expression, 'label', None)
    if isinstance(label, str):
        return label
    path = getattr(expression, 'path', None)
    if isinstance(path, str):
        return path
    return str(expression)
