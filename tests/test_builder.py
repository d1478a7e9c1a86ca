"""
Tests for QueryBuilder and the Query AST.

Every validation error here must be raised by build(), before any
statement reaches a store.
"""

from unittest.mock import MagicMock

import pytest

from querykit.models import Member, Team
from querykit.query import (
    FieldMismatchError,
    InvalidQueryError,
    Join,
    Query,
    QueryBuildError,
    QueryError,
    QueryFactory,
    QueryBuilder,
    entity_path,
    query,
)


class TestQueryConstruction:
    """Building valid queries."""

    def test_select_from(self, m):
        q = query().select_from(m).build()
        assert isinstance(q, Query)
        assert q.root == m
        assert q.projection == (m,)
        assert q.selects_entity
        assert not q.is_aggregate
        assert not q.is_paginated

    def test_root_defaults_to_single_selected_entity(self, m):
        q = query().select(m).build()
        assert q.root == m

    def test_select_fields_from(self, m):
        q = query().select(m.username, m.age).from_(m).build()
        assert q.selections == (m.username, m.age)
        assert not q.selects_entity

    def test_where_fragments_equal_explicit_and(self, m):
        a = m.username.eq("member1")
        b = m.age.eq(10)
        fragments = query().select_from(m).where(a, b).build()
        explicit = query().select_from(m).where(a.and_(b)).build()
        assert fragments.where == explicit.where

    def test_repeated_where_calls_conjoin(self, m):
        a = m.username.eq("member1")
        b = m.age.eq(10)
        q = query().select_from(m).where(a).where(b).build()
        assert q.where == a.and_(b)

    def test_where_skips_none(self, m):
        q = query().select_from(m).where(None).build()
        assert q.where is None
        q = query().select_from(m).where(None, m.age.eq(10), None).build()
        assert q.where == m.age.eq(10)

    def test_order_by_bare_field_is_ascending(self, m):
        q = query().select_from(m).order_by(m.age).build()
        assert q.order_by == (m.age.asc(),)

    def test_order_by_rejects_non_terms(self, m):
        with pytest.raises(TypeError):
            query().select_from(m).order_by("age")

    def test_select_rejects_non_expressions(self, m):
        with pytest.raises(TypeError):
            query().select("username")

    def test_pagination(self, m):
        q = query().select_from(m).offset(1).limit(2).build()
        assert q.offset == 1
        assert q.limit == 2
        assert q.is_paginated

    def test_offset_zero_allowed(self, m):
        assert query().select_from(m).offset(0).build().offset == 0

    def test_name_and_distinct(self, m):
        q = query().select(m.age).from_(m).distinct().name("ages").build()
        assert q.distinct
        assert q.name == "ages"

    def test_query_is_immutable(self, m):
        q = query().select_from(m).build()
        with pytest.raises(AttributeError):
            q.limit = 5

    def test_build_twice_gives_equal_queries(self, m):
        builder = query().select_from(m).where(m.age.gt(10)).order_by(m.age.desc())
        assert builder.build() == builder.build()


class TestJoins:
    """Joins bring related entities into scope."""

    def test_join_adds_scope(self, m, t):
        q = query().select_from(m).join(m.team, t).build()
        assert q.joins == (Join(m.team, t),)
        assert set(q.scope) == {"member", "team"}

    def test_left_join(self, m, t):
        q = query().select_from(m).left_join(m.team, t).build()
        assert q.joins[0].outer

    def test_default_join_target_uses_relation_name(self, m):
        q = query().select_from(m).join(m.team).build()
        assert q.joins[0].target == entity_path(Team, "team")

    def test_join_from_joined_entity(self, t):
        member = entity_path(Member, "player")
        home = entity_path(Team, "home")
        q = (query()
             .select_from(t)
             .join(t.members, member)
             .join(member.team, home)
             .build())
        assert set(q.scope) == {"team", "player", "home"}

    def test_join_target_of_wrong_entity(self, m):
        with pytest.raises(FieldMismatchError, match="Cannot join"):
            query().select_from(m).join(m.team, entity_path(Member, "x")).build()

    def test_join_through_relation_not_in_scope(self, m, t):
        other = entity_path(Member, "other")
        with pytest.raises(FieldMismatchError, match="not in scope"):
            query().select_from(m).join(t.members, other).build()

    def test_duplicate_alias_rejected(self, m):
        with pytest.raises(FieldMismatchError, match="already in scope"):
            query().select_from(m).join(m.team, entity_path(Team, "member")).build()


class TestScopeValidation:
    """Field references must belong to an entity path in scope."""

    def test_field_of_unjoined_entity_in_where(self, m, t):
        with pytest.raises(FieldMismatchError, match="team.name"):
            query().select_from(m).where(t.name.eq("teamA")).build()

    def test_field_of_other_alias_in_where(self, m):
        other = entity_path(Member, "other")
        with pytest.raises(FieldMismatchError):
            query().select_from(m).where(other.age.eq(10)).build()

    def test_field_of_unjoined_entity_in_select(self, m, t):
        with pytest.raises(FieldMismatchError):
            query().select(t.name).from_(m).build()

    def test_field_of_unjoined_entity_in_order_by(self, m, t):
        with pytest.raises(FieldMismatchError):
            query().select_from(m).order_by(t.name.asc()).build()

    def test_entity_not_in_scope_in_select(self, m, t):
        with pytest.raises(FieldMismatchError):
            query().select(m, t).from_(m).build()

    def test_mismatch_is_a_build_error(self, m, t):
        with pytest.raises(QueryBuildError):
            query().select_from(m).where(t.name.eq("teamA")).build()

    def test_joined_field_is_accepted(self, m, t):
        q = query().select_from(m).join(m.team, t).where(t.name.eq("teamA")).build()
        assert q.where.fields() == (t.name,)


class TestStructuralValidation:
    """Root, pagination and aggregation rules."""

    def test_missing_root(self, m):
        with pytest.raises(InvalidQueryError, match="no root"):
            query().build()
        with pytest.raises(InvalidQueryError):
            query().select(m.username).build()

    @pytest.mark.parametrize("offset", [-1, "1", 1.5, True])
    def test_invalid_offset(self, m, offset):
        with pytest.raises(InvalidQueryError, match="offset"):
            query().select_from(m).offset(offset).build()

    @pytest.mark.parametrize("limit", [0, -2, "3", True, False])
    def test_invalid_limit(self, m, limit):
        with pytest.raises(InvalidQueryError, match="limit"):
            query().select_from(m).limit(limit).build()

    def test_aggregate_in_where(self, m):
        with pytest.raises(InvalidQueryError, match="having"):
            query().select(m.count()).from_(m).where(m.count().gt(1)).build()

    def test_ungrouped_field_with_aggregate(self, m):
        with pytest.raises(InvalidQueryError, match="group_by"):
            query().select(m.username, m.age.avg()).from_(m).build()

    def test_ungrouped_field_in_order_by(self, m, t):
        with pytest.raises(InvalidQueryError, match="group_by"):
            (query()
             .select(t.name, m.count())
             .from_(m)
             .join(m.team, t)
             .group_by(t.name)
             .order_by(m.username)
             .build())

    def test_ungrouped_field_in_having(self, m, t):
        with pytest.raises(InvalidQueryError, match="group_by"):
            (query()
             .select(t.name, m.count())
             .from_(m)
             .join(m.team, t)
             .group_by(t.name)
             .having(m.age.gt(10))
             .build())

    def test_grouped_field_in_order_by_and_having(self, m, t):
        q = (query()
             .select(t.name, m.count())
             .from_(m)
             .join(m.team, t)
             .group_by(t.name)
             .having(t.name.ne("teamC"), m.count().goe(1))
             .order_by(t.name.desc())
             .build())
        assert q.order_by == (t.name.desc(),)

    def test_entity_in_aggregate_query(self, m):
        with pytest.raises(InvalidQueryError):
            query().select(m, m.count()).from_(m).build()

    def test_having_without_aggregation(self, m):
        with pytest.raises(InvalidQueryError, match="having"):
            query().select_from(m).having(m.count().gt(1)).build()

    def test_order_by_aggregate_without_aggregation(self, m):
        with pytest.raises(InvalidQueryError):
            query().select_from(m).order_by(m.age.avg().desc()).build()

    def test_grouped_query(self, m, t):
        q = (query()
             .select(t.name, m.age.avg())
             .from_(m)
             .join(m.team, t)
             .group_by(t.name)
             .having(m.count().goe(2))
             .order_by(m.age.avg().desc())
             .build())
        assert q.is_aggregate
        assert q.group_by == (t.name,)

    def test_group_by_rejects_non_fields(self, m):
        with pytest.raises(TypeError):
            query().select_from(m).group_by(m.count())


class TestBoundBuilder:
    """Builders from a QueryFactory run through its executor."""

    def test_unbound_builder_cannot_fetch(self, m):
        with pytest.raises(QueryError, match="not bound"):
            query().select_from(m).fetch()

    def test_validation_happens_before_store_access(self, m, t, config):
        store = MagicMock()
        factory = QueryFactory(store, config)

        with pytest.raises(FieldMismatchError):
            factory.select_from(m).where(t.name.eq("teamA")).fetch()
        with pytest.raises(InvalidQueryError):
            factory.select_from(m).limit(0).fetch_results()

        store.execute.assert_not_called()

    def test_factory_builders_are_independent(self, m, config):
        factory = QueryFactory(MagicMock(), config)
        first = factory.select_from(m).where(m.age.eq(10))
        second = factory.select_from(m)
        assert isinstance(first, QueryBuilder)
        assert second.build().where is None
