"""
Aggregate expressions for querykit.

Examples:
    member_path.count()        -> COUNT(member.id)
    member_path.age.sum()      -> COALESCE(SUM(member.age), 0)
    member_path.age.avg()      -> CAST(AVG(member.age) AS FLOAT)
    member_path.age.max()      -> MAX(member.age)

AggregateExpr values are frozen and compare by value, so the same
expression written twice identifies the same column of an AggregateRow:

    row.get(member_path.age.avg())
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple, TYPE_CHECKING

from sqlalchemy import Float, cast, distinct, func

from .expr import Comparison, Predicate
from .ordering import Direction, OrderSpecifier

if TYPE_CHECKING:
    from .executor import QueryCompiler
    from .metadata import FieldRef


class AggregateFunction(Enum):
    COUNT = "count"
    COUNT_DISTINCT = "count_distinct"
    SUM = "sum"
    AVG = "avg"
    MAX = "max"
    MIN = "min"


@dataclass(frozen=True)
class AggregateExpr:
    """
    An aggregate over a field, or a row count over an entity alias.

    Attributes:
        func: The aggregate function
        target: Field being aggregated (None for entity row counts)
        entity_path: Entity path counted when target is None
    """
    func: AggregateFunction
    target: Optional["FieldRef"] = None
    entity_path: Any = None

    is_aggregate = True

    def fields(self) -> Tuple["FieldRef", ...]:
        if self.target is not None:
            return (self.target,)
        return tuple(self.entity_path.primary_key)

    @property
    def label(self) -> str:
        if self.target is None:
            return f"count({self.entity_path.alias})"
        return f"{self.func.value}({self.target.path})"

    def to_sql(self, compiler: "QueryCompiler"):
        if self.target is None:
            # Count rows of the alias through its primary key
            return func.count(self.entity_path.primary_key[0].to_sql(compiler))

        column = self.target.to_sql(compiler)
        if self.func == AggregateFunction.COUNT:
            return func.count(column)
        if self.func == AggregateFunction.COUNT_DISTINCT:
            return func.count(distinct(column))
        if self.func == AggregateFunction.SUM:
            return func.coalesce(func.sum(column), 0)
        if self.func == AggregateFunction.AVG:
            return cast(func.avg(column), Float)
        if self.func == AggregateFunction.MAX:
            return func.max(column)
        return func.min(column)

    # Ordering by aggregates

    def asc(self) -> OrderSpecifier:
        return OrderSpecifier(self, Direction.ASC)

    def desc(self) -> OrderSpecifier:
        return OrderSpecifier(self, Direction.DESC)

    # HAVING predicates

    def eq(self, value: Any) -> Predicate:
        return Comparison(self, 'eq', value)

    def ne(self, value: Any) -> Predicate:
        return Comparison(self, 'ne', value)

    def gt(self, value: Any) -> Predicate:
        return Comparison(self, 'gt', value)

    def goe(self, value: Any) -> Predicate:
        return Comparison(self, 'goe', value)

    def lt(self, value: Any) -> Predicate:
        return Comparison(self, 'lt', value)

    def loe(self, value: Any) -> Predicate:
        return Comparison(self, 'loe', value)

    def __str__(self):
        return self.label

    def __repr__(self):
        return f"AggregateExpr({self.label})"
