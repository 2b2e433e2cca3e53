"""
Result Cache

Memoizes evaluated pages per (feed, viewer, cursor, feed version) with a
short TTL, and guarantees that at most one computation runs per key at a
time: the first caller for a cold key computes, every concurrent caller for
the same key waits on that caller's future.

Storage and the in-flight registry are split into independently locked
shards by feed id. No lock is held while a page is computed.
"""

import logging
import threading
import time
import zlib
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Set

from cachetools import TTLCache

from feedengine.core.config.models import CacheConfig
from feedengine.core.exceptions import CorpusUnavailableError
from feedengine.core.monitoring.metrics import get_metrics_collector
from feedengine.models import ResultPage


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheKey:
    """
    Identity of one cached page.

    The viewer is part of the key because pages are filtered per viewer by
    the safety predicate; the version makes any feed edit a cache miss.
    """
    feed_id: str
    viewer_id: str
    cursor: Optional[str]
    feed_version: int
    limit: int = 20


@dataclass
class CacheStats:
    """Cache performance statistics."""
    hits: int = 0
    misses: int = 0
    coalesced: int = 0
    stores: int = 0
    skipped_stores: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses + self.coalesced
        return (self.hits + self.coalesced) / total if total > 0 else 0.0


@dataclass
class _Shard:
    lock: threading.Lock
    pages: TTLCache
    inflight: Dict[CacheKey, Future] = field(default_factory=dict)
    generations: Dict[str, int] = field(default_factory=dict)


class ResultCache:
    """
    Sharded single-flight page cache.

    Degraded pages are handed to every caller waiting on the computation
    that produced them but are never stored, so the next request retries a
    complete evaluation.
    """

    def __init__(self, config: Optional[CacheConfig] = None, timer: Callable[[], float] = time.monotonic):
        """
        Initialize the cache.

        Args:
            config: TTL, size, shard count and waiter timeout
            timer: Clock used for TTL expiry
        """
        self.config = config or CacheConfig()
        per_shard = max(1, self.config.max_entries // self.config.shards)
        self._shards = [
            _Shard(lock=threading.Lock(), pages=TTLCache(maxsize=per_shard, ttl=self.config.ttl_seconds, timer=timer))
            for _ in range(self.config.shards)
        ]
        self.stats = CacheStats()
        self._stats_lock = threading.Lock()

        # Author watch index, consulted only on content-created events.
        self._watch_lock = threading.Lock()
        self._feed_authors: Dict[str, Optional[FrozenSet[str]]] = {}
        self._author_index: Dict[str, Set[str]] = {}
        self._open_feeds: Set[str] = set()

        self._metrics_collector = get_metrics_collector()
        self._metrics_collector.counter("cache.hits", "Cache hits")
        self._metrics_collector.counter("cache.misses", "Cache misses")
        self._metrics_collector.counter("cache.coalesced", "Callers that joined an in-flight computation")
        self._metrics_collector.counter("cache.invalidations", "Feed invalidations")

    def _shard_for(self, feed_id: str) -> _Shard:
        return self._shards[zlib.crc32(feed_id.encode("utf-8")) % len(self._shards)]

    def _count(self, name: str) -> None:
        with self._stats_lock:
            setattr(self.stats, name, getattr(self.stats, name) + 1)

    def get(self, key: CacheKey) -> Optional[ResultPage]:
        """Cached page for a key, without computing."""
        shard = self._shard_for(key.feed_id)
        with shard.lock:
            return shard.pages.get(key)

    def get_or_compute(self, key: CacheKey, compute: Callable[[], ResultPage]) -> ResultPage:
        """
        Return the cached page for `key`, computing it at most once.

        Args:
            key: Page identity
            compute: Zero-argument callable producing the page

        Returns:
            The cached, shared, or freshly computed page

        Raises:
            Whatever `compute` raised, for the leader and every waiter
            CorpusUnavailableError: If a waiter gives up on a stuck computation
        """
        shard = self._shard_for(key.feed_id)
        with shard.lock:
            page = shard.pages.get(key)
            if page is not None:
                leader = False
                future = None
            else:
                future = shard.inflight.get(key)
                leader = future is None
                if leader:
                    future = Future()
                    shard.inflight[key] = future
                    generation = shard.generations.get(key.feed_id, 0)

        if page is not None:
            self._count("hits")
            self._metrics_collector.increment("cache.hits")
            return page

        if not leader:
            self._count("coalesced")
            self._metrics_collector.increment("cache.coalesced")
            try:
                return future.result(timeout=self.config.wait_timeout_seconds)
            except FutureTimeoutError as e:
                raise CorpusUnavailableError(
                    f"Timed out waiting for the in-flight evaluation of feed {key.feed_id}",
                    cause=e
                ) from e

        self._count("misses")
        self._metrics_collector.increment("cache.misses")
        try:
            page = compute()
        except BaseException as e:
            with shard.lock:
                shard.inflight.pop(key, None)
                self._retire_generation(shard, key.feed_id)
            future.set_exception(e)
            raise

        with shard.lock:
            shard.inflight.pop(key, None)
            stale = shard.generations.get(key.feed_id, 0) != generation
            self._retire_generation(shard, key.feed_id)
            if not page.degraded and not stale:
                shard.pages[key] = page
        if page.degraded or stale:
            self._count("skipped_stores")
            logger.debug(f"Not caching page for feed {key.feed_id} (degraded={page.degraded}, stale={stale})")
        else:
            self._count("stores")
        future.set_result(page)
        return page

    @staticmethod
    def _retire_generation(shard: _Shard, feed_id: str) -> None:
        # A generation is only compared against by computations in flight for its feed.
        if not any(key.feed_id == feed_id for key in shard.inflight):
            shard.generations.pop(feed_id, None)

    def invalidate_feed(self, feed_id: str) -> int:
        """
        Drop every cached page of a feed.

        Computations already in flight for the feed finish and are shared
        with their waiters but are not stored.

        Returns:
            Number of pages removed
        """
        shard = self._shard_for(feed_id)
        with shard.lock:
            shard.generations[feed_id] = shard.generations.get(feed_id, 0) + 1
            self._retire_generation(shard, feed_id)
            doomed = [key for key in list(shard.pages.keys()) if key.feed_id == feed_id]
            for key in doomed:
                shard.pages.pop(key, None)
        self._count("invalidations")
        self._metrics_collector.increment("cache.invalidations")
        logger.debug(f"Invalidated {len(doomed)} cached page(s) for feed {feed_id}")
        return len(doomed)

    def watch_authors(self, feed_id: str, authors: Optional[Iterable[str]]) -> None:
        """
        Record which authors can affect a feed.

        Args:
            feed_id: Feed to watch for
            authors: Finite author set, or None when any author may match
        """
        scope = None if authors is None else frozenset(authors)
        with self._watch_lock:
            self._remove_watch(feed_id)
            self._feed_authors[feed_id] = scope
            if scope is None:
                self._open_feeds.add(feed_id)
            else:
                for author_id in scope:
                    self._author_index.setdefault(author_id, set()).add(feed_id)

    def unwatch(self, feed_id: str) -> None:
        with self._watch_lock:
            self._remove_watch(feed_id)

    def _remove_watch(self, feed_id: str) -> None:
        previous = self._feed_authors.pop(feed_id, None)
        self._open_feeds.discard(feed_id)
        for author_id in previous or ():
            feeds = self._author_index.get(author_id)
            if feeds is not None:
                feeds.discard(feed_id)
                if not feeds:
                    del self._author_index[author_id]

    def invalidate_for_author(self, author_id: str) -> Set[str]:
        """
        Invalidate every feed a new entry by `author_id` could appear in.

        Returns:
            Ids of the invalidated feeds
        """
        with self._watch_lock:
            feeds = set(self._open_feeds) | set(self._author_index.get(author_id, ()))
        for feed_id in feeds:
            self.invalidate_feed(feed_id)
        return feeds

    def clear(self) -> None:
        """
        Drop all cached pages.

        Computations in flight when this is called finish and are shared
        with their waiters but are not stored.
        """
        for shard in self._shards:
            with shard.lock:
                shard.pages.clear()
                shard.generations = {
                    feed_id: shard.generations.get(feed_id, 0) + 1
                    for feed_id in {key.feed_id for key in shard.inflight}
                }

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.pages)
        return total

    def get_stats(self) -> CacheStats:
        """Get a snapshot of cache statistics."""
        with self._stats_lock:
            return CacheStats(**vars(self.stats))
