"""
Tests for the SQLite feed repository.
"""

from datetime import datetime, timedelta, timezone

import pytest

from feedengine.core.exceptions import DuplicateFeedNameError, VersionConflictError
from feedengine.filters.base import FilterBlock
from feedengine.store import FeedDefinition, FeedDefinitionStore, SqliteFeedRepository
from tests.conftest import block


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_feed(feed_id="f1", owner_id="u1", name="Daily", minutes=0, **kwargs):
    moment = T0 + timedelta(minutes=minutes)
    return FeedDefinition(id=feed_id, owner_id=owner_id, name=name, created_at=moment, updated_at=moment, **kwargs)


@pytest.fixture
def repository(tmp_path):
    repo = SqliteFeedRepository(tmp_path / "nested" / "feeds.db", max_connections=2)
    yield repo
    repo.close()


class TestSqliteFeedRepository:
    """Test row storage and compare-and-swap."""

    def test_insert_and_get(self, repository):
        blocks = (FilterBlock.from_dict(block("tag", "contains", ["art"], group_id=2), index=0),)
        feed = make_feed(filter_blocks=blocks, description="d", is_default=True)
        repository.insert(feed)

        loaded = repository.get("f1")
        assert loaded == feed
        assert loaded.filter_blocks[0].group_id == 2

    def test_missing(self, repository):
        assert repository.get("nope") is None

    def test_unique_name_per_owner(self, repository):
        repository.insert(make_feed())
        with pytest.raises(DuplicateFeedNameError):
            repository.insert(make_feed(feed_id="f2", name="DAILY"))
        repository.insert(make_feed(feed_id="f3", owner_id="u2"))

    def test_list_oldest_first(self, repository):
        repository.insert(make_feed("b", name="B", minutes=5))
        repository.insert(make_feed("a", name="A", minutes=1))
        assert [f.id for f in repository.list_for_owner("u1")] == ["a", "b"]

    def test_compare_and_swap(self, repository):
        feed = make_feed()
        repository.insert(feed)

        assert repository.compare_and_swap([(feed.bumped(name="Weekly"), 1)]) is True
        assert repository.compare_and_swap([(feed.bumped(name="Monthly"), 1)]) is False
        assert repository.get("f1").name == "Weekly"

    def test_multi_row_swap_is_atomic(self, repository):
        first, second = make_feed("a", name="A"), make_feed("b", name="B")
        repository.insert(first)
        repository.insert(second)

        ok = repository.compare_and_swap([
            (first.bumped(is_default=True), 1),
            (second.bumped(is_default=False), 7),
        ])
        assert ok is False
        assert repository.get("a").is_default is False

    def test_delete_checks_version(self, repository):
        repository.insert(make_feed())
        assert repository.delete("f1", expected_version=2) is False
        assert repository.delete("f1", expected_version=1) is True
        assert repository.get("f1") is None

    def test_mark_needs_author_prune(self, repository):
        repository.insert(make_feed())
        assert repository.mark_needs_author_prune("f1") is True
        stored = repository.get("f1")
        assert stored.needs_author_prune is True
        assert stored.version == 1
        assert repository.mark_needs_author_prune("missing") is False

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "feeds.db"
        first = SqliteFeedRepository(path)
        first.insert(make_feed())
        first.close()

        second = SqliteFeedRepository(path)
        try:
            assert second.get("f1").name == "Daily"
        finally:
            second.close()


class TestStoreOnSqlite:
    """The store's rules hold on the SQLite backend too."""

    def test_conflict_and_default(self, repository):
        store = FeedDefinitionStore(repository)
        default = store.register_owner("u1")
        feed = store.create("u1", "Art", [block("tag", "equals", "art")])

        store.update_filters(feed.id, "u1", [], base_version=1)
        with pytest.raises(VersionConflictError):
            store.update_filters(feed.id, "u1", [], base_version=1)

        store.set_default(feed.id, "u1")
        assert repository.get(default.id).is_default is False
        assert repository.get(feed.id).is_default is True

    def test_update_with_rename(self, repository):
        store = FeedDefinitionStore(repository)
        feed = store.create("u1", "Art")
        store.create("u1", "Pictures")

        with pytest.raises(DuplicateFeedNameError):
            store.update_filters(feed.id, "u1", [block("tag", "equals", "art")], base_version=1, name="PICTURES")
        assert repository.get(feed.id).version == 1

        store.update_filters(feed.id, "u1", [block("tag", "equals", "art")], base_version=1, name="Pics")
        loaded = repository.get(feed.id)
        assert (loaded.version, loaded.name) == (2, "Pics")
