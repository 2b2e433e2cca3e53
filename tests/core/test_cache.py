"""
Tests for the sharded single-flight result cache.
"""

import threading
import time

import pytest

from feedengine.core.cache import CacheKey, ResultCache
from feedengine.core.config.models import CacheConfig
from feedengine.core.exceptions import CorpusUnavailableError
from feedengine.models import ResultPage
from tests.conftest import make_entry


def key(feed_id="feed-1", viewer_id="viewer", cursor=None, version=1, limit=20):
    return CacheKey(feed_id, viewer_id, cursor, version, limit)


def page(*ids, degraded=False):
    return ResultPage(items=[make_entry(entry_id) for entry_id in ids], degraded=degraded)


class FakeTimer:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestGetOrCompute:
    """Test memoization."""

    def test_miss_then_hit(self):
        cache = ResultCache()
        calls = []

        def compute():
            calls.append(1)
            return page("a")

        first = cache.get_or_compute(key(), compute)
        second = cache.get_or_compute(key(), compute)

        assert first is second
        assert len(calls) == 1
        stats = cache.get_stats()
        assert (stats.misses, stats.hits, stats.stores) == (1, 1, 1)

    def test_key_includes_viewer_and_version(self):
        """Different viewers and versions never share a page."""
        cache = ResultCache()
        cache.get_or_compute(key(), lambda: page("a"))

        assert cache.get(key(viewer_id="other")) is None
        assert cache.get(key(version=2)) is None
        assert cache.get(key(cursor="abc")) is None
        assert cache.get(key(limit=5)) is None

    def test_degraded_pages_not_stored(self):
        """A degraded page is returned but the next call recomputes."""
        cache = ResultCache()
        degraded = cache.get_or_compute(key(), lambda: page("a", degraded=True))

        assert degraded.degraded is True
        assert cache.get(key()) is None
        assert cache.get_stats().skipped_stores == 1

    def test_ttl_expiry(self):
        timer = FakeTimer()
        cache = ResultCache(CacheConfig(ttl_seconds=10), timer=timer)
        cache.get_or_compute(key(), lambda: page("a"))

        timer.now = 11
        assert cache.get(key()) is None

    def test_errors_propagate_and_are_not_cached(self):
        cache = ResultCache()

        def failing():
            raise CorpusUnavailableError("down")

        with pytest.raises(CorpusUnavailableError):
            cache.get_or_compute(key(), failing)
        assert cache.get_or_compute(key(), lambda: page("b")).item_ids == ["b"]


class TestSingleFlight:
    """Concurrent callers for one key share one computation."""

    def test_concurrent_callers_share_one_computation(self):
        cache = ResultCache()
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_compute():
            calls.append(1)
            started.set()
            release.wait(5)
            return page("a")

        results = []

        def fetch():
            results.append(cache.get_or_compute(key(), slow_compute))

        leader = threading.Thread(target=fetch)
        leader.start()
        started.wait(5)
        waiters = [threading.Thread(target=fetch) for _ in range(5)]
        for thread in waiters:
            thread.start()
        # Let the waiters reach the in-flight future
        time.sleep(0.05)
        release.set()
        for thread in [leader] + waiters:
            thread.join(5)

        assert len(calls) == 1
        assert len(results) == 6
        assert all(result is results[0] for result in results)

    def test_waiters_receive_leader_error(self):
        cache = ResultCache()
        started = threading.Event()
        release = threading.Event()

        def failing():
            started.set()
            release.wait(5)
            raise CorpusUnavailableError("down")

        errors = []

        def fetch():
            try:
                cache.get_or_compute(key(), failing)
            except CorpusUnavailableError as e:
                errors.append(e)

        threads = [threading.Thread(target=fetch)]
        threads[0].start()
        started.wait(5)
        threads += [threading.Thread(target=fetch) for _ in range(3)]
        for thread in threads[1:]:
            thread.start()
        time.sleep(0.05)
        release.set()
        for thread in threads:
            thread.join(5)

        assert len(errors) == 4

    def test_waiter_timeout(self):
        """Waiters give up on a stuck computation with a retryable error."""
        cache = ResultCache(CacheConfig(wait_timeout_seconds=0.05))
        started = threading.Event()
        release = threading.Event()

        def stuck():
            started.set()
            release.wait(5)
            return page("a")

        leader = threading.Thread(target=lambda: cache.get_or_compute(key(), stuck))
        leader.start()
        started.wait(5)
        try:
            with pytest.raises(CorpusUnavailableError):
                cache.get_or_compute(key(), stuck)
        finally:
            release.set()
            leader.join(5)


class TestInvalidation:
    """Test feed and author invalidation."""

    def test_invalidate_feed(self):
        cache = ResultCache()
        cache.get_or_compute(key(), lambda: page("a"))
        cache.get_or_compute(key(viewer_id="other"), lambda: page("a"))
        cache.get_or_compute(key(feed_id="feed-2"), lambda: page("a"))

        assert cache.invalidate_feed("feed-1") == 2
        assert cache.get(key(feed_id="feed-2")) is not None
        assert len(cache) == 1

    def test_invalidation_during_computation_skips_store(self):
        """A page computed across an invalidation is shared but not stored."""
        cache = ResultCache()

        def compute():
            cache.invalidate_feed("feed-1")
            return page("old")

        assert cache.get_or_compute(key(), compute).item_ids == ["old"]
        assert cache.get(key()) is None

    def test_invalidate_for_author(self):
        cache = ResultCache()
        cache.watch_authors("art-feed", ["alice"])
        cache.watch_authors("bob-feed", ["bob"])
        cache.watch_authors("open-feed", None)

        assert cache.invalidate_for_author("alice") == {"art-feed", "open-feed"}
        assert cache.invalidate_for_author("zed") == {"open-feed"}

    def test_rewatch_replaces_scope(self):
        cache = ResultCache()
        cache.watch_authors("feed", ["alice"])
        cache.watch_authors("feed", ["bob"])
        assert cache.invalidate_for_author("alice") == set()

        cache.unwatch("feed")
        assert cache.invalidate_for_author("bob") == set()

    def test_clear(self):
        cache = ResultCache(CacheConfig(shards=4))
        for feed_id in ("a", "b", "c"):
            cache.get_or_compute(key(feed_id=feed_id), lambda: page("x"))
        cache.clear()
        assert len(cache) == 0

    def test_clear_during_computation_skips_store(self):
        """A page computed across a clear is shared but not stored."""
        cache = ResultCache()

        def compute():
            cache.clear()
            return page("old")

        assert cache.get_or_compute(key(), compute).item_ids == ["old"]
        assert cache.get(key()) is None
        assert cache.get_stats().skipped_stores == 1

    def test_idle_feeds_leave_no_generation_behind(self):
        cache = ResultCache(CacheConfig(shards=2))
        for i in range(50):
            cache.get_or_compute(key(feed_id=f"feed-{i}"), lambda: page("x"))
            cache.invalidate_feed(f"feed-{i}")

        def compute():
            cache.invalidate_feed("busy")
            return page("y")

        cache.get_or_compute(key(feed_id="busy"), compute)
        cache.clear()
        assert all(not shard.generations for shard in cache._shards)
