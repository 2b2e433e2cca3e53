"""
Tests for FeedDefinitionStore: naming rules, default feed protection and
optimistic concurrency.
"""

import threading
from unittest.mock import Mock

import pytest

from feedengine.core.events import EventEmitter, FeedChangedEvent, FeedDeletedEvent
from feedengine.core.exceptions import (
    CannotDeleteDefaultFeedError,
    CannotDeleteLastFeedError,
    DuplicateFeedNameError,
    FeedNotFoundError,
    InvalidFeedNameError,
    InvalidValueShapeError,
    StoreUnavailableError,
    VersionConflictError,
)
from feedengine.store import DEFAULT_FEED_NAME, FeedDefinitionStore, InMemoryFeedRepository
from tests.conftest import block


@pytest.fixture
def events():
    return EventEmitter()


@pytest.fixture
def store(events):
    return FeedDefinitionStore(InMemoryFeedRepository(), events=events)


@pytest.fixture
def received(events):
    captured = []
    events.subscribe("*", captured.append)
    return captured


class TestRegisterOwner:
    """Test default feed creation."""

    def test_creates_default(self, store):
        feed = store.register_owner("u1")
        assert feed.is_default is True
        assert feed.name == DEFAULT_FEED_NAME
        assert feed.filter_blocks == ()
        assert feed.version == 1

    def test_idempotent(self, store):
        first = store.register_owner("u1")
        assert store.register_owner("u1").id == first.id
        assert len(store.list_for_owner("u1")) == 1


class TestCreateAndRename:
    """Test naming rules."""

    def test_create(self, store, received):
        feed = store.create("u1", "  Art  ", [block("tag", "equals", ["art"])], description="pretty")
        assert feed.name == "Art"
        assert feed.description == "pretty"
        assert feed.filter_blocks[0].order == 0
        assert isinstance(received[-1], FeedChangedEvent)
        assert received[-1].change == "created"

    def test_duplicate_name_ignores_case(self, store):
        store.create("u1", "Daily")
        with pytest.raises(DuplicateFeedNameError):
            store.create("u1", "daily")

    def test_same_name_different_owners(self, store):
        store.create("u1", "Daily")
        assert store.create("u2", "Daily").owner_id == "u2"

    @pytest.mark.parametrize("name", ["", "   ", "x" * 101])
    def test_invalid_names(self, store, name):
        with pytest.raises(InvalidFeedNameError):
            store.create("u1", name)

    def test_name_length_limit_inclusive(self, store):
        assert len(store.create("u1", "x" * 100).name) == 100

    def test_malformed_blocks_rejected(self, store):
        with pytest.raises(InvalidValueShapeError):
            store.create("u1", "Bad", [{"kind": "tag"}])

    def test_rename(self, store, received):
        feed = store.create("u1", "Daily")
        renamed = store.rename(feed.id, "u1", "Weekly")
        assert renamed.name == "Weekly"
        assert renamed.version == 2
        assert received[-1].change == "renamed"

    def test_rename_case_only_change(self, store):
        """A feed can change the case of its own name."""
        feed = store.create("u1", "daily")
        assert store.rename(feed.id, "u1", "Daily").name == "Daily"

    def test_rename_to_taken_name(self, store):
        store.create("u1", "Daily")
        other = store.create("u1", "Weekly")
        with pytest.raises(DuplicateFeedNameError):
            store.rename(other.id, "u1", "DAILY")

    def test_rename_same_name_is_noop(self, store):
        feed = store.create("u1", "Daily")
        assert store.rename(feed.id, "u1", " Daily ").version == 1

    def test_create_as_default(self, store):
        old_default = store.register_owner("u1")
        feed = store.create("u1", "Main", is_default=True)
        assert feed.is_default is True
        assert store.get(old_default.id).is_default is False


class TestDelete:
    """Test the default and last-feed protections."""

    def test_default_cannot_be_deleted(self, store):
        default = store.register_owner("u1")
        store.create("u1", "Other")
        with pytest.raises(CannotDeleteDefaultFeedError):
            store.delete(default.id, "u1")

    def test_only_feed_is_default(self, store):
        """The default check runs first, even for the last feed."""
        default = store.register_owner("u1")
        with pytest.raises(CannotDeleteDefaultFeedError):
            store.delete(default.id, "u1")

    def test_last_feed_cannot_be_deleted(self, store):
        feed = store.create("u1", "Only")
        with pytest.raises(CannotDeleteLastFeedError):
            store.delete(feed.id, "u1")

    def test_delete(self, store, received):
        store.register_owner("u1")
        feed = store.create("u1", "Temp")
        store.delete(feed.id, "u1")

        assert isinstance(received[-1], FeedDeletedEvent)
        with pytest.raises(FeedNotFoundError):
            store.get(feed.id)

    def test_delete_other_owners_feed(self, store):
        store.register_owner("u1")
        feed = store.create("u1", "Mine")
        with pytest.raises(FeedNotFoundError):
            store.delete(feed.id, "intruder")


class TestVersioning:
    """Test optimistic concurrency."""

    def test_update_filters_bumps_version(self, store, received):
        feed = store.create("u1", "Art")
        updated = store.update_filters(feed.id, "u1", [block("post-type", "equals", "image")], base_version=1)
        assert updated.version == 2
        assert updated.filter_blocks[0].value is not None
        assert received[-1].change == "filters_updated"
        assert received[-1].version == 2

    def test_stale_base_version(self, store):
        """Two devices edit version 3; the second save conflicts."""
        feed = store.create("u1", "Art")
        store.rename(feed.id, "u1", "Art 2")
        store.rename(feed.id, "u1", "Art 3")

        store.update_filters(feed.id, "u1", [block("tag", "equals", "a")], base_version=3)
        with pytest.raises(VersionConflictError) as exc_info:
            store.update_filters(feed.id, "u1", [block("tag", "equals", "b")], base_version=3)

        assert exc_info.value.expected_version == 3
        assert exc_info.value.actual_version == 4
        assert store.get(feed.id).filter_blocks[0].value.tags == frozenset({"a"})

    def test_update_with_rename_is_one_write(self, store, received):
        feed = store.create("u1", "Art")
        updated = store.update_filters(
            feed.id, "u1", [block("tag", "equals", "art")], base_version=1, name="Pictures"
        )
        assert updated.version == 2
        assert updated.name == "Pictures"
        assert [e.change for e in received].count("filters_updated") == 1

    def test_update_with_taken_name_writes_nothing(self, store, received):
        feed = store.create("u1", "Art")
        store.create("u1", "Pictures")
        before = len(received)

        with pytest.raises(DuplicateFeedNameError):
            store.update_filters(feed.id, "u1", [block("tag", "equals", "art")], base_version=1, name="pictures")

        stored = store.get(feed.id)
        assert stored.version == 1
        assert stored.name == "Art"
        assert stored.filter_blocks == ()
        assert len(received) == before

    def test_update_with_invalid_name_writes_nothing(self, store):
        feed = store.create("u1", "Art")
        with pytest.raises(InvalidFeedNameError):
            store.update_filters(feed.id, "u1", [block("tag", "equals", "art")], base_version=1, name="   ")
        assert store.get(feed.id).version == 1

    def test_update_clears_prune_flag(self, store):
        feed = store.create("u1", "Art", [block("author", "equals", ["ghost"])])
        store.mark_needs_author_prune(feed.id)
        flagged = store.get(feed.id)
        assert flagged.needs_author_prune is True
        assert flagged.version == 1

        updated = store.update_filters(feed.id, "u1", [], base_version=1)
        assert updated.needs_author_prune is False

    def test_description_version_check(self, store):
        feed = store.create("u1", "Art")
        assert store.update_description(feed.id, "u1", "new").description == "new"
        with pytest.raises(VersionConflictError):
            store.update_description(feed.id, "u1", "newer", base_version=1)

    def test_set_default_moves_flag(self, store, received):
        old = store.register_owner("u1")
        new = store.create("u1", "Art")
        store.set_default(new.id, "u1")

        feeds = store.list_for_owner("u1")
        assert [f.id for f in feeds if f.is_default] == [new.id]
        assert feeds[0].id == new.id
        assert store.get(old.id).version == 2
        assert {e.feed_id for e in received if getattr(e, "change", "") == "default_changed"} == {old.id, new.id}

    def test_concurrent_updates_one_wins(self, store):
        feed = store.create("u1", "Race")
        outcomes = []
        barrier = threading.Barrier(8, timeout=5)

        def save(tag):
            barrier.wait()
            try:
                store.update_filters(feed.id, "u1", [block("tag", "equals", tag)], base_version=1)
                outcomes.append("saved")
            except VersionConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=save, args=(f"t{i}",)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert outcomes.count("saved") == 1
        assert outcomes.count("conflict") == 7
        assert store.get(feed.id).version == 2
        assert len(store._feed_locks) == 0
        assert len(store._owner_locks) == 0

    def test_locks_released_for_unknown_feeds(self, store):
        for i in range(20):
            with pytest.raises(FeedNotFoundError):
                store.rename(f"missing-{i}", "u1", "Anything")
        assert len(store._feed_locks) == 0


class TestFailures:
    """Backend failures surface as retryable store errors."""

    def test_backend_failure_wrapped(self):
        repository = Mock()
        repository.list_for_owner.side_effect = OSError("disk gone")
        store = FeedDefinitionStore(repository)

        with pytest.raises(StoreUnavailableError) as exc_info:
            store.create("u1", "Daily")
        assert exc_info.value.recoverable is True

    def test_events_after_write(self, store, events):
        """Observers see the stored state when notified."""
        seen = []
        events.subscribe(FeedChangedEvent, lambda e: seen.append(store.get(e.feed_id).version))
        feed = store.create("u1", "Art")
        store.rename(feed.id, "u1", "Art!")
        assert seen == [1, 2]
