"""
Predicate algebra for querykit.

Predicates are immutable expression trees over field references
(and, inside HAVING clauses, over aggregate expressions). They are
built through the methods on FieldRef and AggregateExpr:

    member.username.eq("member1").and_(member.age.eq(10))
    member.age.between(10, 30) | member.username.is_null()

and compiled to SQLAlchemy clauses by the executor's QueryCompiler.

The builder's where(*fragments) is sugar over conjunction(): fragments
are folded left to right with And, and None fragments are skipped, so
both construction styles produce the same tree.
"""

import operator
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple, TYPE_CHECKING

from sqlalchemy import and_, or_, not_

if TYPE_CHECKING:
    from .executor import QueryCompiler


# =============================================================================
# Base
# =============================================================================

class Predicate(ABC):
    """Base class for all boolean expressions."""

    @abstractmethod
    def operands(self) -> Tuple[Any, ...]:
        """Field or aggregate expressions this predicate reads."""
        pass

    @abstractmethod
    def to_sql(self, compiler: "QueryCompiler"):
        """Compile to a SQLAlchemy boolean clause."""
        pass

    def fields(self) -> Tuple[Any, ...]:
        """All field references reachable from this predicate."""
        result = []
        for operand in self.operands():
            result.extend(operand.fields())
        return tuple(result)

    def has_aggregates(self) -> bool:
        return any(getattr(op, 'is_aggregate', False) for op in self.operands())

    def and_(self, other: Optional["Predicate"]) -> "Predicate":
        """Conjunction; an absent right-hand side leaves this predicate as is."""
        if other is None:
            return self
        return And(self, other)

    def or_(self, other: Optional["Predicate"]) -> "Predicate":
        if other is None:
            return self
        return Or(self, other)

    def not_(self) -> "Predicate":
        return Not(self)

    def __and__(self, other: "Predicate") -> "Predicate":
        return self.and_(other)

    def __or__(self, other: "Predicate") -> "Predicate":
        return self.or_(other)

    def __invert__(self) -> "Predicate":
        return self.not_()


def conjunction(*fragments: Optional[Predicate]) -> Optional[Predicate]:
    """
    Fold predicate fragments with AND.

    None fragments are identity elements and are skipped. Returns None
    when no fragment is present.
    """
    result: Optional[Predicate] = None
    for fragment in fragments:
        if fragment is None:
            continue
        result = fragment if result is None else result.and_(fragment)
    return result


# =============================================================================
# Leaf predicates
# =============================================================================

@dataclass(frozen=True)
class Equals(Predicate):
    """target = value; a None value means IS NULL."""
    target: Any
    value: Any

    def operands(self):
        return (self.target,)

    def to_sql(self, compiler):
        column = self.target.to_sql(compiler)
        if self.value is None:
            return column.is_(None)
        return column == self.value

    def __repr__(self):
        return f"Equals({self.target} = {self.value!r})"


@dataclass(frozen=True)
class Comparison(Predicate):
    """Binary comparison: ne, gt, goe, lt, loe (and eq for aggregates)."""
    target: Any
    op: str
    value: Any

    _OPS = {
        'eq': ('=', operator.eq),
        'ne': ('!=', operator.ne),
        'gt': ('>', operator.gt),
        'goe': ('>=', operator.ge),
        'lt': ('<', operator.lt),
        'loe': ('<=', operator.le),
    }

    def __post_init__(self):
        if self.op not in self._OPS:
            raise ValueError(f"Unknown comparison operator: {self.op}")

    def operands(self):
        return (self.target,)

    def to_sql(self, compiler):
        _, func = self._OPS[self.op]
        return func(self.target.to_sql(compiler), self.value)

    def __repr__(self):
        symbol, _ = self._OPS[self.op]
        return f"Comparison({self.target} {symbol} {self.value!r})"


@dataclass(frozen=True)
class Between(Predicate):
    """low <= target <= high"""
    target: Any
    low: Any
    high: Any

    def operands(self):
        return (self.target,)

    def to_sql(self, compiler):
        return self.target.to_sql(compiler).between(self.low, self.high)

    def __repr__(self):
        return f"Between({self.target} {self.low!r}..{self.high!r})"


@dataclass(frozen=True)
class In(Predicate):
    """Membership in a fixed set of values."""
    target: Any
    values: Tuple[Any, ...]
    negated: bool = False

    def operands(self):
        return (self.target,)

    def to_sql(self, compiler):
        column = self.target.to_sql(compiler)
        if self.negated:
            return column.not_in(self.values)
        return column.in_(self.values)

    def __repr__(self):
        op = "not in" if self.negated else "in"
        return f"In({self.target} {op} {list(self.values)!r})"


@dataclass(frozen=True)
class IsNull(Predicate):
    target: Any
    negated: bool = False

    def operands(self):
        return (self.target,)

    def to_sql(self, compiler):
        column = self.target.to_sql(compiler)
        return column.is_not(None) if self.negated else column.is_(None)

    def __repr__(self):
        return f"IsNull({self.target}{' not' if self.negated else ''})"


@dataclass(frozen=True)
class Like(Predicate):
    """
    String matching.

    Modes: 'like' (raw SQL pattern), 'contains', 'starts_with', 'ends_with'.
    The last three escape their argument, so '%' and '_' match literally.
    """
    target: Any
    pattern: str
    mode: str = "like"
    ignore_case: bool = False

    _MODES = ('like', 'contains', 'starts_with', 'ends_with')

    def __post_init__(self):
        if self.mode not in self._MODES:
            raise ValueError(f"Unknown string match mode: {self.mode}")

    def operands(self):
        return (self.target,)

    def to_sql(self, compiler):
        column = self.target.to_sql(compiler)
        if self.mode == 'like':
            return column.ilike(self.pattern) if self.ignore_case else column.like(self.pattern)
        if self.mode == 'contains':
            return column.icontains(self.pattern, autoescape=True) if self.ignore_case \
                else column.contains(self.pattern, autoescape=True)
        if self.mode == 'starts_with':
            return column.istartswith(self.pattern, autoescape=True) if self.ignore_case \
                else column.startswith(self.pattern, autoescape=True)
        return column.iendswith(self.pattern, autoescape=True) if self.ignore_case \
            else column.endswith(self.pattern, autoescape=True)

    def __repr__(self):
        return f"Like({self.target} {self.mode} {self.pattern!r})"


# =============================================================================
# Compound predicates
# =============================================================================

@dataclass(frozen=True)
class And(Predicate):
    left: Predicate
    right: Predicate

    def operands(self):
        return self.left.operands() + self.right.operands()

    def to_sql(self, compiler):
        return and_(self.left.to_sql(compiler), self.right.to_sql(compiler))

    def __repr__(self):
        return f"And({self.left!r}, {self.right!r})"


@dataclass(frozen=True)
class Or(Predicate):
    left: Predicate
    right: Predicate

    def operands(self):
        return self.left.operands() + self.right.operands()

    def to_sql(self, compiler):
        return or_(self.left.to_sql(compiler), self.right.to_sql(compiler))

    def __repr__(self):
        return f"Or({self.left!r}, {self.right!r})"


@dataclass(frozen=True)
class Not(Predicate):
    operand: Predicate

    def operands(self):
        return self.operand.operands()

    def to_sql(self, compiler):
        return not_(self.operand.to_sql(compiler))

    def not_(self) -> Predicate:
        return self.operand

    def __repr__(self):
        return f"Not({self.operand!r})"


def all_of(predicates: Iterable[Optional[Predicate]]) -> Optional[Predicate]:
    """conjunction() over an iterable."""
    return conjunction(*predicates)


def any_of(predicates: Iterable[Optional[Predicate]]) -> Optional[Predicate]:
    """Fold with OR, skipping None."""
    result: Optional[Predicate] = None
    for predicate in predicates:
        if predicate is None:
            continue
        result = predicate if result is None else result.or_(predicate)
    return result
