"""
External collaborator interfaces.

The engine reads content and social-graph facts only through these narrow
interfaces and never writes to them. The in-memory implementations back the
test suite and the CLI fixtures; a host application supplies its own.
"""

import bisect
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from feedengine.models import ContentEntry, CursorPosition


logger = logging.getLogger(__name__)


class SocialContext(ABC):
    """Read-only view of follow and block relationships."""

    @abstractmethod
    def is_following(self, viewer_id: str, author_id: str) -> bool:
        """Whether `viewer_id` follows `author_id`."""

    @abstractmethod
    def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        """Whether `blocker_id` has blocked `blocked_id` (one direction only)."""

    @abstractmethod
    def resolve_author(self, author_id: str) -> bool:
        """Whether the author still exists."""


class CorpusReader(ABC):
    """Read-only, restartable stream of content candidates."""

    @abstractmethod
    def stream_candidates(
        self,
        viewer_id: str,
        since: Optional[CursorPosition] = None
    ) -> Iterator[ContentEntry]:
        """
        Yield candidates newest first.

        Args:
            viewer_id: The user the feed is evaluated for
            since: Only yield entries strictly older than this position

        Returns:
            Lazy iterator ordered by `(created_at, id)` descending
        """


class InMemorySocialGraph(SocialContext):
    """Thread-safe in-memory social graph."""

    def __init__(self):
        self._lock = threading.RLock()
        self._users: Set[str] = set()
        self._follows: Dict[str, Set[str]] = {}
        self._blocks: Set[Tuple[str, str]] = set()

    def add_user(self, *user_ids: str) -> None:
        with self._lock:
            self._users.update(user_ids)

    def remove_user(self, user_id: str) -> None:
        """Delete a user; references to them become stale."""
        with self._lock:
            self._users.discard(user_id)
            self._follows.pop(user_id, None)
            for followed in self._follows.values():
                followed.discard(user_id)

    def follow(self, follower_id: str, author_id: str) -> None:
        with self._lock:
            self._users.update((follower_id, author_id))
            self._follows.setdefault(follower_id, set()).add(author_id)

    def unfollow(self, follower_id: str, author_id: str) -> None:
        with self._lock:
            self._follows.get(follower_id, set()).discard(author_id)

    def block(self, blocker_id: str, blocked_id: str) -> None:
        with self._lock:
            self._users.update((blocker_id, blocked_id))
            self._blocks.add((blocker_id, blocked_id))

    def unblock(self, blocker_id: str, blocked_id: str) -> None:
        with self._lock:
            self._blocks.discard((blocker_id, blocked_id))

    def is_following(self, viewer_id: str, author_id: str) -> bool:
        with self._lock:
            return author_id in self._follows.get(viewer_id, ())

    def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        with self._lock:
            return (blocker_id, blocked_id) in self._blocks

    def resolve_author(self, author_id: str) -> bool:
        with self._lock:
            return author_id in self._users


class InMemoryCorpus(CorpusReader):
    """
    Thread-safe in-memory corpus kept in `(created_at, id)` order.

    Streams iterate over a snapshot taken when the stream starts, so entries
    added mid-iteration never disturb an evaluation in progress.
    """

    def __init__(self, entries: Optional[Iterable[ContentEntry]] = None):
        self._lock = threading.Lock()
        self._keys: List[Tuple] = []
        self._entries: List[ContentEntry] = []
        self.streams_opened = 0
        for entry in entries or ():
            self.add(entry)

    def add(self, entry: ContentEntry) -> None:
        """Insert an entry at its sorted position."""
        key = (entry.created_at, entry.id)
        with self._lock:
            index = bisect.bisect_left(self._keys, key)
            if index < len(self._keys) and self._keys[index] == key:
                raise ValueError(f"Duplicate corpus entry {entry.id}")
            self._keys.insert(index, key)
            self._entries.insert(index, entry)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stream_candidates(
        self,
        viewer_id: str,
        since: Optional[CursorPosition] = None
    ) -> Iterator[ContentEntry]:
        with self._lock:
            self.streams_opened += 1
            if since is None:
                end = len(self._entries)
            else:
                end = bisect.bisect_left(self._keys, (since.created_at, since.entry_id))
            snapshot = self._entries[:end]
        return reversed(snapshot)
