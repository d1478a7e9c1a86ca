"""
Ordering terms for querykit queries.

An ordering is a sequence of OrderSpecifier terms; earlier terms take
priority. Each term carries its own null placement:

    member.age.desc(), member.username.asc().nulls_last()

NullHandling.DEFAULT emits no NULLS clause and leaves placement to the
store (SQLite and MySQL put nulls first when ascending, PostgreSQL puts
them last).
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, List, TYPE_CHECKING

if TYPE_CHECKING:
    from .executor import QueryCompiler


class Direction(Enum):
    ASC = "asc"
    DESC = "desc"


class NullHandling(Enum):
    DEFAULT = "default"
    FIRST = "first"
    LAST = "last"


@dataclass(frozen=True)
class OrderSpecifier:
    """
    One ordering term.

    Attributes:
        target: FieldRef or AggregateExpr to order by
        direction: Direction.ASC or Direction.DESC
        nulls: where rows with a null target go
    """
    target: Any
    direction: Direction = Direction.ASC
    nulls: NullHandling = NullHandling.DEFAULT

    def nulls_first(self) -> "OrderSpecifier":
        return replace(self, nulls=NullHandling.FIRST)

    def nulls_last(self) -> "OrderSpecifier":
        return replace(self, nulls=NullHandling.LAST)

    def fields(self):
        return self.target.fields()

    @property
    def is_aggregate(self) -> bool:
        return getattr(self.target, 'is_aggregate', False)

    @classmethod
    def parse(cls, s: str, resolve: Callable[[str], Any]) -> "OrderSpecifier":
        """
        Parse a term like 'age desc' or 'username asc nulls last'.

        Args:
            s: Term text; the first word names the target
            resolve: Maps the target name to a FieldRef or AggregateExpr

        The target's own asc()/desc() is used, so capability checks apply.
        """
        parts = s.split()
        if not parts:
            raise ValueError("Empty ordering term")

        target = resolve(parts[0])
        direction = "asc"
        nulls = NullHandling.DEFAULT

        words = [p.lower() for p in parts[1:]]
        for i, part in enumerate(words):
            if part in ('asc', 'desc'):
                direction = part
            elif part == 'nulls':
                if i + 1 >= len(words) or words[i + 1] not in ('first', 'last'):
                    raise ValueError(f"Expected 'nulls first' or 'nulls last' in: {s!r}")
                nulls = NullHandling(words[i + 1])
            elif part in ('first', 'last') and i > 0 and words[i - 1] == 'nulls':
                continue
            else:
                raise ValueError(f"Unexpected word {part!r} in ordering term: {s!r}")

        spec = target.desc() if direction == 'desc' else target.asc()
        return replace(spec, nulls=nulls)

    @classmethod
    def parse_list(cls, s: str, resolve: Callable[[str], Any]) -> List["OrderSpecifier"]:
        """Parse comma-separated ordering terms."""
        return [cls.parse(part.strip(), resolve) for part in s.split(',') if part.strip()]

    def to_sql(self, compiler: "QueryCompiler"):
        """Compile to a SQLAlchemy ORDER BY element."""
        column = self.target.to_sql(compiler)
        clause = column.desc() if self.direction == Direction.DESC else column.asc()
        if self.nulls == NullHandling.LAST:
            clause = clause.nulls_last()
        elif self.nulls == NullHandling.FIRST:
            clause = clause.nulls_first()
        return clause

    def __repr__(self):
        text = f"{self.target} {self.direction.value}"
        if self.nulls != NullHandling.DEFAULT:
            text += f" nulls {self.nulls.value}"
        return f"OrderSpecifier({text})"
