"""
Tests for querykit/db.py: the Database and its session-scoped Store.
"""
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from querykit import db as db_module
from querykit.config import QueryKitConfig
from querykit.db import Database, Store, get_db
from querykit.models import Member, Team
from querykit.query import ExecutionError


class TestDatabase:
    """Engine and schema setup."""

    def test_creates_file_and_parent_directories(self, tmp_path, config):
        path = tmp_path / "nested" / "app.db"
        database = Database(path=path, config=config)
        try:
            assert database.url == f"sqlite:///{path}"
            assert path.parent.exists()
        finally:
            database.dispose()

    def test_url_overrides_path(self, config):
        database = Database(path="ignored.db", url="sqlite://", config=config)
        try:
            assert database.url == "sqlite://"
            assert database.path is None
        finally:
            database.dispose()

    def test_path_from_config(self, tmp_path):
        config = QueryKitConfig(database=str(tmp_path / "from_config.db"))
        database = Database(config=config)
        try:
            assert database.path == tmp_path / "from_config.db"
        finally:
            database.dispose()

    def test_foreign_keys_enforced(self, db):
        with pytest.raises(ExecutionError):
            with db.session() as store:
                member = Member("orphan", 1)
                member.team_id = 999
                store.persist(member)
                store.flush()

    def test_get_db_is_cached(self, tmp_path, monkeypatch):
        monkeypatch.setattr(db_module, "_db", None)
        monkeypatch.setattr(db_module, "get_config", lambda: QueryKitConfig(database=str(tmp_path / "global.db")))
        first = get_db()
        try:
            assert get_db() is first
        finally:
            first.dispose()


class TestSession:
    """One session scope is one transaction."""

    def test_commit_on_success(self, db):
        with db.session() as store:
            store.persist(Team("committed"))

        with db.session() as store:
            names = store.execute(select(Team.name)).scalars().all()
        assert names == ["committed"]

    def test_rollback_on_error(self, db):
        with pytest.raises(RuntimeError):
            with db.session() as store:
                store.persist(Team("discarded"))
                store.flush()
                raise RuntimeError("boom")

        with db.session() as store:
            assert store.execute(select(Team)).scalars().all() == []

    def test_detached_access_without_expiry(self, db):
        with db.session(expire_on_commit=False) as store:
            team = Team("kept")
            store.persist(team)
        assert team.name == "kept"


class TestStore:
    """Write primitives and the read primitive."""

    def test_flush_assigns_ids(self, db):
        with db.session() as store:
            team = Team("teamA")
            member = Member("member1", 10, team)
            store.persist(member)
            store.flush()
            assert member.id is not None
            assert team.id is not None
            assert member.team_id == team.id

    def test_clear_detaches(self, db):
        with db.session() as store:
            team = Team("teamA")
            store.persist(team)
            store.flush()
            store.clear()
            assert team not in store.session

            reloaded = store.execute(select(Team)).scalars().one()
            assert reloaded is not team
            assert reloaded.name == "teamA"

    def test_execute_wraps_store_errors(self):
        session = MagicMock()
        session.execute.side_effect = IntegrityError("INSERT", {}, Exception("constraint"))
        with pytest.raises(ExecutionError) as exc_info:
            Store(session).execute(select(Team))
        assert isinstance(exc_info.value.__cause__, IntegrityError)

    def test_flush_wraps_store_errors(self):
        session = MagicMock()
        session.flush.side_effect = IntegrityError("INSERT", {}, Exception("constraint"))
        with pytest.raises(ExecutionError):
            Store(session).flush()


class TestModels:
    """Sample schema behaviour."""

    def test_change_team_syncs_both_sides(self):
        team_a = Team("teamA")
        team_b = Team("teamB")
        member = Member("member1", 10, team_a)
        assert member in team_a.members

        member.change_team(team_b)
        assert member.team is team_b
        assert member in team_b.members
        assert member not in team_a.members

    def test_member_without_team(self):
        member = Member(None)
        assert member.team is None
        assert member.age == 0
