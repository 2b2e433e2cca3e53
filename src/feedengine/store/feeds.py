"""
Feed Definition Store

Owner-facing feed CRUD on top of a FeedRepository. Enforces the rules that
span several rows: names are unique per owner ignoring case, every owner
keeps exactly one default feed, and the default feed cannot be deleted.

Writes are serialised per feed id, and per owner where an owner-wide rule is
involved; the repository's compare-and-swap on `version` backs this up for
writers outside this process.
"""

import logging
import threading
import uuid
from contextlib import ExitStack, contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from feedengine.core.events.emitter import EventEmitter
from feedengine.core.events.types import FeedChangedEvent, FeedDeletedEvent
from feedengine.core.exceptions import (
    CannotDeleteDefaultFeedError,
    CannotDeleteLastFeedError,
    DuplicateFeedNameError,
    FeedEngineError,
    FeedNotFoundError,
    StoreUnavailableError,
    VersionConflictError,
)
from feedengine.core.monitoring.metrics import get_metrics_collector
from feedengine.filters.base import FilterBlock
from feedengine.filters.factory import FilterFactory
from feedengine.store.models import DEFAULT_FEED_NAME, FeedDefinition, name_key, normalize_feed_name
from feedengine.store.repository import FeedRepository, InMemoryFeedRepository


logger = logging.getLogger(__name__)

BlockInput = Iterable[Union[FilterBlock, Mapping[str, Any]]]


class _LockRegistry:
    """
    Named locks that exist only while some thread holds or waits on them.

    Each entry counts its users; the last one out removes it, so ids that
    are no longer touched leave nothing behind.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List[Any]] = {}  # name -> [RLock, users]

    @contextmanager
    def hold(self, name: str):
        with self._guard:
            entry = self._locks.get(name)
            if entry is None:
                entry = self._locks[name] = [threading.RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[name]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class FeedDefinitionStore:
    """
    Feed definitions with optimistic concurrency.

    Every successful mutation bumps the feed's version and emits a
    FeedChangedEvent (or FeedDeletedEvent) after the write is durable.
    """

    def __init__(
        self,
        repository: Optional[FeedRepository] = None,
        events: Optional[EventEmitter] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        """
        Initialize the store.

        Args:
            repository: Row storage (in-memory if omitted)
            events: Emitter for change events
            clock: Source of created/updated timestamps
        """
        self.repository = repository or InMemoryFeedRepository()
        self.events = events or EventEmitter()
        self.clock = clock
        self._owner_locks = _LockRegistry()
        self._feed_locks = _LockRegistry()
        self._metrics = get_metrics_collector()

    # -- plumbing ---------------------------------------------------------

    @contextmanager
    def _locked(self, owner_id: Optional[str] = None, feed_id: Optional[str] = None):
        # Owner lock always before feed lock.
        with ExitStack() as stack:
            if owner_id is not None:
                stack.enter_context(self._owner_locks.hold(owner_id))
            if feed_id is not None:
                stack.enter_context(self._feed_locks.hold(feed_id))
            yield

    def _call(self, operation: str, fn: Callable, *args):
        """Run a repository call, wrapping unexpected backend failures."""
        try:
            return fn(*args)
        except FeedEngineError:
            raise
        except Exception as e:
            self._metrics.increment("store.errors")
            raise StoreUnavailableError(f"Feed store failed during {operation}: {e}", cause=e) from e

    def _emit_changed(self, feed: FeedDefinition, change: str) -> None:
        self._metrics.increment("store.mutations")
        self.events.emit(FeedChangedEvent(
            feed_id=feed.id, owner_id=feed.owner_id, version=feed.version, change=change
        ))

    def _owned(self, feed_id: str, owner_id: str) -> FeedDefinition:
        feed = self._call("get", self.repository.get, feed_id)
        if feed is None or feed.owner_id != owner_id:
            raise FeedNotFoundError(f"Feed {feed_id} not found", feed_id=feed_id, owner_id=owner_id)
        return feed

    def _check_unique(self, owner_id: str, name: str, exclude_id: Optional[str] = None) -> None:
        key = name_key(name)
        for feed in self._call("list", self.repository.list_for_owner, owner_id):
            if feed.id != exclude_id and feed.name_key == key:
                raise DuplicateFeedNameError(name, owner_id=owner_id)

    def _swap(self, writes: List[Tuple[FeedDefinition, int]], operation: str) -> None:
        if not self._call(operation, self.repository.compare_and_swap, writes):
            feed, expected = writes[0]
            current = self._call("get", self.repository.get, feed.id)
            self._metrics.increment("store.conflicts")
            raise VersionConflictError(feed.id, expected, current.version if current else -1)

    # -- operations -------------------------------------------------------

    def register_owner(self, owner_id: str) -> FeedDefinition:
        """
        Give a new owner their default feed.

        Idempotent: an owner who already has feeds gets their current default back.

        Returns:
            The owner's default feed
        """
        with self._locked(owner_id=owner_id):
            existing = self._call("list", self.repository.list_for_owner, owner_id)
            for feed in existing:
                if feed.is_default:
                    return feed

            now = self.clock()
            feed = FeedDefinition(
                id=uuid.uuid4().hex,
                owner_id=owner_id,
                name=DEFAULT_FEED_NAME,
                description="Everyone you follow, newest first",
                is_default=True,
                created_at=now,
                updated_at=now,
            )
            self._call("insert", self.repository.insert, feed)
            logger.info(f"Registered owner {owner_id} with default feed {feed.id}")
        self._emit_changed(feed, "created")
        return feed

    def create(
        self,
        owner_id: str,
        name: str,
        filter_blocks: BlockInput = (),
        description: str = "",
        is_default: bool = False
    ) -> FeedDefinition:
        """
        Create a feed.

        Args:
            owner_id: Owning user
            name: Display name (trimmed, 1-100 characters)
            filter_blocks: Blocks or raw block mappings
            description: Free text
            is_default: Make this the owner's default feed

        Returns:
            The stored feed at version 1

        Raises:
            InvalidFeedNameError: If the name is empty or too long
            DuplicateFeedNameError: If the owner already has a feed with this name
            InvalidValueShapeError: If a raw block is malformed
        """
        clean_name = normalize_feed_name(name)
        blocks = tuple(FilterFactory.create_blocks(filter_blocks))

        with self._locked(owner_id=owner_id):
            self._check_unique(owner_id, clean_name)
            now = self.clock()
            feed = FeedDefinition(
                id=uuid.uuid4().hex,
                owner_id=owner_id,
                name=clean_name,
                description=description or "",
                filter_blocks=blocks,
                created_at=now,
                updated_at=now,
            )
            self._call("insert", self.repository.insert, feed)
            logger.info(f"Created feed {feed.id} for owner {owner_id}")

        self._emit_changed(feed, "created")
        if is_default:
            feed = self.set_default(feed.id, owner_id)
        return feed

    def rename(self, feed_id: str, owner_id: str, new_name: str) -> FeedDefinition:
        """
        Rename a feed.

        Raises:
            FeedNotFoundError: If the owner has no such feed
            InvalidFeedNameError: If the name is empty or too long
            DuplicateFeedNameError: If another feed of the owner has this name
        """
        clean_name = normalize_feed_name(new_name)
        with self._locked(owner_id=owner_id, feed_id=feed_id):
            feed = self._owned(feed_id, owner_id)
            if feed.name == clean_name:
                return feed
            self._check_unique(owner_id, clean_name, exclude_id=feed_id)
            updated = feed.bumped(name=clean_name, updated_at=self.clock())
            self._swap([(updated, feed.version)], "rename")
        self._emit_changed(updated, "renamed")
        return updated

    def update_filters(
        self,
        feed_id: str,
        owner_id: str,
        filter_blocks: BlockInput,
        base_version: int,
        name: Optional[str] = None
    ) -> FeedDefinition:
        """
        Replace a feed's filter blocks if nobody else changed it first.

        A new `name` is written in the same compare-and-swap, so either both
        changes land under one version bump or neither does.

        Args:
            feed_id: Feed to update
            owner_id: Caller, must own the feed
            filter_blocks: New blocks or raw block mappings
            base_version: Version the caller's edit is based on
            name: Optional new display name

        Returns:
            The stored feed with its version incremented

        Raises:
            FeedNotFoundError: If the owner has no such feed
            VersionConflictError: If the stored version is not `base_version`
            InvalidFeedNameError, DuplicateFeedNameError: If `name` cannot be used
        """
        blocks = tuple(FilterFactory.create_blocks(filter_blocks))
        clean_name = normalize_feed_name(name) if name is not None else None
        with self._locked(owner_id=owner_id, feed_id=feed_id):
            feed = self._owned(feed_id, owner_id)
            if feed.version != base_version:
                self._metrics.increment("store.conflicts")
                logger.info(f"Version conflict on feed {feed_id}: stored {feed.version}, base {base_version}")
                raise VersionConflictError(feed_id, base_version, feed.version)
            changes = {"filter_blocks": blocks, "needs_author_prune": False}
            if clean_name is not None and clean_name != feed.name:
                self._check_unique(owner_id, clean_name, exclude_id=feed_id)
                changes["name"] = clean_name
            updated = feed.bumped(updated_at=self.clock(), **changes)
            self._swap([(updated, base_version)], "update_filters")
        self._emit_changed(updated, "filters_updated")
        return updated

    def update_description(
        self,
        feed_id: str,
        owner_id: str,
        description: str,
        base_version: Optional[int] = None
    ) -> FeedDefinition:
        """Replace a feed's description; `base_version` is checked when given."""
        with self._locked(feed_id=feed_id):
            feed = self._owned(feed_id, owner_id)
            if base_version is not None and feed.version != base_version:
                raise VersionConflictError(feed_id, base_version, feed.version)
            updated = feed.bumped(description=description or "", updated_at=self.clock())
            self._swap([(updated, feed.version)], "update_description")
        self._emit_changed(updated, "description_updated")
        return updated

    def set_default(self, feed_id: str, owner_id: str) -> FeedDefinition:
        """
        Move the owner's default flag to `feed_id`.

        Both the old and the new default are written in one compare-and-swap.
        """
        with self._locked(owner_id=owner_id, feed_id=feed_id):
            feed = self._owned(feed_id, owner_id)
            if feed.is_default:
                return feed
            now = self.clock()
            writes = [(feed.bumped(is_default=True, updated_at=now), feed.version)]
            for other in self._call("list", self.repository.list_for_owner, owner_id):
                if other.is_default and other.id != feed_id:
                    writes.append((other.bumped(is_default=False, updated_at=now), other.version))
            self._swap(writes, "set_default")
        for written, _ in writes:
            self._emit_changed(written, "default_changed")
        return writes[0][0]

    def delete(self, feed_id: str, owner_id: str) -> None:
        """
        Delete a feed.

        Raises:
            FeedNotFoundError: If the owner has no such feed
            CannotDeleteDefaultFeedError: If the feed is the owner's default
            CannotDeleteLastFeedError: If it is the owner's only feed
        """
        with self._locked(owner_id=owner_id, feed_id=feed_id):
            feed = self._owned(feed_id, owner_id)
            if feed.is_default:
                raise CannotDeleteDefaultFeedError(
                    "The default feed cannot be deleted; rename or edit it instead",
                    feed_id=feed_id, owner_id=owner_id
                )
            if len(self._call("list", self.repository.list_for_owner, owner_id)) <= 1:
                raise CannotDeleteLastFeedError(
                    "Every account keeps at least one feed",
                    feed_id=feed_id, owner_id=owner_id
                )
            if not self._call("delete", self.repository.delete, feed_id, feed.version):
                current = self._call("get", self.repository.get, feed_id)
                raise VersionConflictError(feed_id, feed.version, current.version if current else -1)
            logger.info(f"Deleted feed {feed_id}")
        self._metrics.increment("store.mutations")
        self.events.emit(FeedDeletedEvent(feed_id=feed_id, owner_id=owner_id))

    def mark_needs_author_prune(self, feed_id: str) -> None:
        """Flag a feed whose filters reference deleted authors."""
        self._call("mark_needs_author_prune", self.repository.mark_needs_author_prune, feed_id)

    def get(self, feed_id: str, owner_id: Optional[str] = None) -> FeedDefinition:
        """
        Fetch a feed.

        Raises:
            FeedNotFoundError: If the feed does not exist or `owner_id` does not own it
        """
        feed = self._call("get", self.repository.get, feed_id)
        if feed is None or (owner_id is not None and feed.owner_id != owner_id):
            raise FeedNotFoundError(f"Feed {feed_id} not found", feed_id=feed_id, owner_id=owner_id)
        return feed

    def list_for_owner(self, owner_id: str) -> List[FeedDefinition]:
        """Feeds of an owner, default first, then oldest first."""
        feeds = self._call("list", self.repository.list_for_owner, owner_id)
        return sorted(feeds, key=lambda f: (not f.is_default, f.created_at, f.id))
