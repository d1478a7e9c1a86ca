import pytest

from querykit.config import QueryKitConfig
from querykit.db import Database
from querykit.models import Member, Team
from querykit.query import QueryFactory, entity_path, reset_metadata, reset_registry


@pytest.fixture(autouse=True)
def fresh_registries():
    """Every test starts with empty entity and query registries."""
    reset_metadata()
    reset_registry()
    yield
    reset_metadata()
    reset_registry()


@pytest.fixture
def config():
    """Default configuration, independent of any config file on the machine."""
    return QueryKitConfig()


@pytest.fixture
def db(tmp_path, config):
    """Empty SQLite database in a temporary directory."""
    database = Database(path=tmp_path / "querykit_test.db", config=config)
    yield database
    database.dispose()


@pytest.fixture
def store(db):
    """
    Store seeded with two teams and four members:

        teamA: member1 (10), member2 (20)
        teamB: member3 (30), member4 (40)
    """
    with db.session() as store:
        team_a = Team("teamA")
        team_b = Team("teamB")
        store.persist(team_a)
        store.persist(team_b)

        store.persist(Member("member1", 10, team_a))
        store.persist(Member("member2", 20, team_a))
        store.persist(Member("member3", 30, team_b))
        store.persist(Member("member4", 40, team_b))

        store.flush()
        store.clear()
        yield store


@pytest.fixture
def factory(store, config):
    return QueryFactory(store, config)


@pytest.fixture
def m():
    return entity_path(Member)


@pytest.fixture
def t():
    return entity_path(Team)
