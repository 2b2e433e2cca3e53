"""
Feed Repositories

Durable row storage for feed definitions. Repositories know nothing about
naming rules or default flags; they store rows and perform an atomic
compare-and-swap on the version column. Owner-wide rules live in
FeedDefinitionStore.
"""

import logging
import threading
from dataclasses import replace
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

from feedengine.core.exceptions import DuplicateFeedNameError
from feedengine.store.models import FeedDefinition


logger = logging.getLogger(__name__)

# (new row, version the stored row must still have)
VersionedWrite = Tuple[FeedDefinition, int]


class FeedRepository(ABC):
    """Persistence interface for feed definitions."""

    @abstractmethod
    def get(self, feed_id: str) -> Optional[FeedDefinition]:
        """Stored feed, or None."""

    @abstractmethod
    def list_for_owner(self, owner_id: str) -> List[FeedDefinition]:
        """Feeds of an owner, oldest first."""

    @abstractmethod
    def insert(self, feed: FeedDefinition) -> None:
        """
        Store a new feed.

        Raises:
            DuplicateFeedNameError: If the owner already has a feed with this name
        """

    @abstractmethod
    def compare_and_swap(self, writes: Sequence[VersionedWrite]) -> bool:
        """
        Replace several rows atomically.

        Each row is written only if the stored version still equals the
        expected one; if any check fails nothing is written.

        Returns:
            True if every row was written
        """

    @abstractmethod
    def delete(self, feed_id: str, expected_version: int) -> bool:
        """Delete a row if its version is unchanged."""

    @abstractmethod
    def mark_needs_author_prune(self, feed_id: str) -> bool:
        """Flag a feed whose filters reference deleted authors. Does not bump the version."""

    def close(self) -> None:
        """Release backend resources."""


class InMemoryFeedRepository(FeedRepository):
    """Thread-safe dictionary-backed repository."""

    def __init__(self):
        self._lock = threading.Lock()
        self._feeds: Dict[str, FeedDefinition] = {}

    def get(self, feed_id: str) -> Optional[FeedDefinition]:
        with self._lock:
            return self._feeds.get(feed_id)

    def list_for_owner(self, owner_id: str) -> List[FeedDefinition]:
        with self._lock:
            feeds = [f for f in self._feeds.values() if f.owner_id == owner_id]
        return sorted(feeds, key=lambda f: (f.created_at, f.id))

    def insert(self, feed: FeedDefinition) -> None:
        with self._lock:
            if feed.id in self._feeds:
                raise ValueError(f"Feed {feed.id} already exists")
            for existing in self._feeds.values():
                if existing.owner_id == feed.owner_id and existing.name_key == feed.name_key:
                    raise DuplicateFeedNameError(feed.name, owner_id=feed.owner_id)
            self._feeds[feed.id] = feed

    def compare_and_swap(self, writes: Sequence[VersionedWrite]) -> bool:
        with self._lock:
            for feed, expected in writes:
                stored = self._feeds.get(feed.id)
                if stored is None or stored.version != expected:
                    return False
            for feed, _ in writes:
                self._feeds[feed.id] = feed
            return True

    def delete(self, feed_id: str, expected_version: int) -> bool:
        with self._lock:
            stored = self._feeds.get(feed_id)
            if stored is None or stored.version != expected_version:
                return False
            del self._feeds[feed_id]
            return True

    def mark_needs_author_prune(self, feed_id: str) -> bool:
        with self._lock:
            stored = self._feeds.get(feed_id)
            if stored is None:
                return False
            if not stored.needs_author_prune:
                self._feeds[feed_id] = replace(stored, needs_author_prune=True)
            return True
