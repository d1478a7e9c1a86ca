"""
Tests for ResultPage and AggregateRow.
"""

import pytest

from querykit.query import AggregateRow, ResultPage


class TestResultPage:
    """Page helpers."""

    def test_sequence_protocol(self):
        page = ResultPage(results=["a", "b"], total=5, offset=0, limit=2)
        assert len(page) == 2
        assert list(page) == ["a", "b"]
        assert page[1] == "b"
        assert page[:1] == ["a"]

    def test_has_more(self):
        assert ResultPage(results=["a", "b"], total=5, offset=0, limit=2).has_more
        assert ResultPage(results=["e"], total=5, offset=4, limit=2).has_more is False
        assert ResultPage(results=["a"], total=1).has_more is False

    def test_first(self):
        assert ResultPage(results=["a", "b"], total=2).first() == "a"
        assert ResultPage.empty().first() is None

    def test_empty(self):
        page = ResultPage.empty(offset=10, limit=5)
        assert page.is_empty
        assert page.total == 0
        assert page.offset == 10

    def test_to_dict_serializes_rows(self):
        row = AggregateRow(["count(member)"], [4])
        page = ResultPage(results=[row], total=1)
        assert page.to_dict() == {
            'results': [{'count(member)': 4}],
            'total': 1,
            'offset': None,
            'limit': None,
        }


class TestAggregateRow:
    """Rows addressable by expression, position and label."""

    def test_lookup(self, m, t):
        row = AggregateRow([t.name, m.age.avg()], ["teamA", 15.0])
        assert row.get(t.name) == "teamA"
        assert row[m.age.avg()] == 15.0
        assert row[0] == "teamA"
        assert row["team.name"] == "teamA"
        assert row["avg(member.age)"] == 15.0

    def test_missing_keys(self, m, t):
        row = AggregateRow([t.name], ["teamA"])
        assert row.get(m.age.avg()) is None
        with pytest.raises(KeyError):
            row["avg(member.age)"]
        with pytest.raises(KeyError):
            row[m.age.max()]

    def test_length_mismatch(self, m):
        with pytest.raises(ValueError):
            AggregateRow([m.age.avg()], [1, 2])

    def test_equality(self, m):
        assert AggregateRow([m.count()], [4]) == AggregateRow([m.count()], [4])
        assert AggregateRow([m.count()], [4]) != AggregateRow([m.count()], [5])

    def test_iteration_and_dict(self, m, t):
        row = AggregateRow([t.name, m.count()], ["teamB", 2])
        assert list(row) == ["teamB", 2]
        assert row.to_dict() == {"team.name": "teamB", "count(member)": 2}
        assert "team.name='teamB'" in repr(row)
