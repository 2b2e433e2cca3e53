"""
Builder Session

State machine for an in-progress edit of a feed definition. Edits mark the
session dirty and schedule a debounced, cancellable live preview; saving
uses optimistic concurrency and never merges silently. A save that hits a
version conflict keeps the user's edits as a detached draft, and a save
that cannot reach the store is queued for replay.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, FrozenSet, List, Mapping, Optional, Tuple, Union

from feedengine.builder.offline import OfflineQueue, QueuedEdit
from feedengine.core.concurrency.limiters import Debouncer
from feedengine.core.events.emitter import EventEmitter
from feedengine.core.events.types import PreviewCompletedEvent
from feedengine.core.exceptions import (
    CompileError,
    CorpusUnavailableError,
    EvaluationCancelledError,
    FeedEngineError,
    InvalidSessionStateError,
    StoreUnavailableError,
    UnsavedChangesError,
    VersionConflictError,
)
from feedengine.engine.evaluator import CancellationToken
from feedengine.filters.base import FilterBlock
from feedengine.models import ResultPage
from feedengine.store.feeds import FeedDefinitionStore
from feedengine.store.models import FeedDefinition, normalize_feed_name


logger = logging.getLogger(__name__)

BlockLike = Union[FilterBlock, Mapping[str, Any]]


class BuilderState(Enum):
    """Builder session states."""
    EDITING = "editing"
    PREVIEWING = "previewing"
    SAVING = "saving"
    SAVED = "saved"
    CONFLICT_DETECTED = "conflict_detected"
    QUEUED_OFFLINE = "queued_offline"
    DISCARDED = "discarded"


TERMINAL_STATES = frozenset({BuilderState.SAVED, BuilderState.DISCARDED})
EDITABLE_STATES = frozenset({BuilderState.EDITING, BuilderState.PREVIEWING})


class ConflictResolution(Enum):
    """User choices after a version conflict."""
    DISCARD = "discard"
    RETRY_ON_LATEST = "retry_on_latest"
    SAVE_AS_NEW = "save_as_new"


@dataclass
class PreviewResult:
    """Live preview handed back to the builder UI."""
    page: ResultPage
    performance_warning: bool = False
    author_pruned: bool = False
    pruned_authors: FrozenSet[str] = frozenset()
    notices: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class DetachedDraft:
    """
    Edits preserved after a version conflict.

    Attributes:
        feed_id: Feed the edits were meant for
        name: Feed name in the session
        blocks: The user's working blocks
        base_version: Version the edits were based on
        server_version: Version found in the store
    """
    feed_id: Optional[str]
    name: str
    blocks: Tuple[FilterBlock, ...]
    base_version: Optional[int]
    server_version: Optional[int]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


PreviewFunction = Callable[[Tuple[FilterBlock, ...], str, CancellationToken], PreviewResult]


def _to_block(block: BlockLike, index: int) -> FilterBlock:
    if isinstance(block, FilterBlock):
        return block
    return FilterBlock.from_dict(block, index=index)


class BuilderSession:
    """
    One user's in-progress edit of a feed.

    All public methods are thread-safe. Previews run on the debouncer's timer
    thread (or the caller's thread for `preview_now`) without holding the
    session lock.
    """

    def __init__(
        self,
        owner_id: str,
        store: FeedDefinitionStore,
        preview_fn: PreviewFunction,
        feed: Optional[FeedDefinition] = None,
        viewer_id: Optional[str] = None,
        debounce_seconds: float = 0.25,
        offline_queue: Optional[OfflineQueue] = None,
        events: Optional[EventEmitter] = None,
        clock: Callable[[], float] = time.monotonic,
        session_id: Optional[str] = None,
        validate_fn: Optional[Callable[[Tuple[FilterBlock, ...]], None]] = None
    ):
        """
        Initialize a session.

        Args:
            owner_id: User editing the feed
            store: Feed store used for saving
            preview_fn: Compiles and evaluates working blocks for previews
            feed: Feed being edited, None when creating a new one
            viewer_id: Viewer for previews (the owner by default)
            debounce_seconds: Quiet period before a preview runs
            offline_queue: Where saves go when the store is unavailable
            events: Emitter for preview events
            clock: Monotonic clock used for idle expiry
            session_id: Explicit id (generated if omitted)
            validate_fn: Raises CompileError for blocks that must not be saved
        """
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.owner_id = owner_id
        self.viewer_id = viewer_id or owner_id
        self.store = store
        self.offline_queue = offline_queue or OfflineQueue()
        self.events = events
        self._preview_fn = preview_fn
        self._validate_fn = validate_fn
        self._clock = clock
        self._lock = threading.RLock()
        self._debouncer = Debouncer(debounce_seconds, name="builder.preview")

        self.feed_id = feed.id if feed else None
        self.base_version = feed.version if feed else None
        self._saved_name = feed.name if feed else None
        self.name = feed.name if feed else ""
        self._blocks: List[FilterBlock] = list(feed.filter_blocks) if feed else []

        self.state = BuilderState.EDITING
        self.is_dirty = False
        self.draft: Optional[DetachedDraft] = None
        self.last_preview: Optional[PreviewResult] = None
        self.last_preview_error: Optional[FeedEngineError] = None
        self.last_preview_at: Optional[datetime] = None
        self.last_activity = clock()
        self._preview_token: Optional[CancellationToken] = None
        self.previews_run = 0

    # -- state helpers ----------------------------------------------------

    @property
    def working_blocks(self) -> Tuple[FilterBlock, ...]:
        with self._lock:
            return tuple(self._blocks)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def _require(self, allowed, action: str) -> None:
        if self.state not in allowed:
            raise InvalidSessionStateError(f"Cannot {action} while the session is {self.state.value}")

    def _touch(self) -> None:
        self.last_activity = self._clock()

    def is_expired(self, timeout_seconds: float) -> bool:
        """Whether the session has been idle for longer than `timeout_seconds`."""
        return self._clock() - self.last_activity > timeout_seconds

    # -- edits ------------------------------------------------------------

    def _mutate(self, change: Callable[[List[FilterBlock]], None]) -> None:
        with self._lock:
            self._require(EDITABLE_STATES, "edit")
            blocks = list(self._blocks)
            change(blocks)
            self._blocks = [replace(b, order=i) if b.order != i else b for i, b in enumerate(blocks)]
            self.is_dirty = True
            self._touch()
            self._cancel_inflight_preview()
        self._debouncer.trigger(self._run_preview)

    def add_block(self, block: BlockLike) -> None:
        self._mutate(lambda blocks: blocks.append(_to_block(block, len(blocks))))

    def replace_block(self, index: int, block: BlockLike) -> None:
        def change(blocks: List[FilterBlock]) -> None:
            blocks[index] = _to_block(block, index)
        self._mutate(change)

    def remove_block(self, index: int) -> None:
        self._mutate(lambda blocks: blocks.pop(index))

    def move_block(self, from_index: int, to_index: int) -> None:
        def change(blocks: List[FilterBlock]) -> None:
            blocks.insert(to_index, blocks.pop(from_index))
        self._mutate(change)

    def set_blocks(self, blocks: List[BlockLike]) -> None:
        def change(current: List[FilterBlock]) -> None:
            current[:] = [_to_block(b, i) for i, b in enumerate(blocks)]
        self._mutate(change)

    def set_name(self, name: str) -> None:
        """Change the feed name; validated now, uniqueness checked on save."""
        clean = normalize_feed_name(name)
        with self._lock:
            self._require(EDITABLE_STATES, "rename")
            self.name = clean
            self.is_dirty = True
            self._touch()

    # -- previews ---------------------------------------------------------

    def _cancel_inflight_preview(self) -> None:
        if self._preview_token is not None:
            self._preview_token.cancel()
            self._preview_token = None

    def _run_preview(self) -> Optional[PreviewResult]:
        with self._lock:
            if self.state not in EDITABLE_STATES:
                return None
            self._cancel_inflight_preview()
            token = CancellationToken()
            self._preview_token = token
            blocks = tuple(self._blocks)
            self.state = BuilderState.PREVIEWING

        started = time.perf_counter()
        result = None
        error = None
        try:
            result = self._preview_fn(blocks, self.viewer_id, token)
        except EvaluationCancelledError:
            logger.debug(f"Preview for session {self.session_id} superseded")
        except (CompileError, CorpusUnavailableError) as e:
            error = e
        duration = time.perf_counter() - started

        with self._lock:
            if self._preview_token is token:
                self._preview_token = None
            if self.state == BuilderState.PREVIEWING and self._preview_token is None:
                self.state = BuilderState.EDITING
            if token.cancelled:
                return None
            self.previews_run += 1
            self.last_preview_at = datetime.now(timezone.utc)
            self.last_preview_error = error
            if result is not None:
                result.duration_seconds = duration
                self.last_preview = result

        if result is not None and self.events is not None:
            self.events.emit(PreviewCompletedEvent(
                session_id=self.session_id,
                feed_id=self.feed_id,
                item_count=len(result.page.items),
                degraded=result.page.degraded,
                duration_seconds=duration,
            ))
        return result

    def preview_now(self) -> Optional[PreviewResult]:
        """
        Run a preview immediately on the calling thread.

        Returns:
            The preview, or None if it failed to compile (see `last_preview_error`)
        """
        self._debouncer.cancel()
        with self._lock:
            self._touch()
        return self._run_preview()

    def flush_preview(self) -> bool:
        """Run a pending debounced preview now. Returns False if none was pending."""
        return self._debouncer.flush()

    @property
    def preview_pending(self) -> bool:
        return self._debouncer.pending

    # -- saving -----------------------------------------------------------

    def _snapshot_draft(self, server_version: Optional[int]) -> DetachedDraft:
        return DetachedDraft(
            feed_id=self.feed_id,
            name=self.name,
            blocks=tuple(self._blocks),
            base_version=self.base_version,
            server_version=server_version,
        )

    def save(self) -> Optional[FeedDefinition]:
        """
        Persist the working blocks.

        Returns:
            The saved feed, or None if the store was unreachable and the
            edit was queued for replay

        Raises:
            VersionConflictError: The feed changed since the session started;
                the session moves to CONFLICT_DETECTED and keeps a draft
            DuplicateFeedNameError, InvalidFeedNameError: The session stays editable
        """
        with self._lock:
            self._require(EDITABLE_STATES, "save")
            self._debouncer.cancel()
            self._cancel_inflight_preview()
            self.state = BuilderState.SAVING
            self._touch()
            blocks = tuple(self._blocks)
            name = self.name

        try:
            feed = self._persist(name, blocks)
        except VersionConflictError as e:
            with self._lock:
                self.state = BuilderState.CONFLICT_DETECTED
                self.draft = self._snapshot_draft(e.actual_version)
            logger.info(f"Session {self.session_id} hit a version conflict on feed {self.feed_id}")
            raise
        except StoreUnavailableError:
            with self._lock:
                self.offline_queue.enqueue(QueuedEdit(
                    session_id=self.session_id,
                    owner_id=self.owner_id,
                    feed_id=self.feed_id,
                    name=name,
                    blocks=blocks,
                    base_version=self.base_version,
                ))
                self.state = BuilderState.QUEUED_OFFLINE
            logger.warning(f"Feed store unavailable; session {self.session_id} queued its save")
            return None
        except FeedEngineError:
            with self._lock:
                self.state = BuilderState.EDITING
            raise

        self.mark_saved(feed)
        return feed

    def _persist(self, name: str, blocks: Tuple[FilterBlock, ...]) -> FeedDefinition:
        if self._validate_fn is not None:
            self._validate_fn(blocks)
        if self.feed_id is None:
            return self.store.create(self.owner_id, name, blocks)
        new_name = name if name and name != self._saved_name else None
        return self.store.update_filters(self.feed_id, self.owner_id, blocks, self.base_version, name=new_name)

    def mark_saved(self, feed: FeedDefinition) -> None:
        """Record a successful save (directly or through offline replay)."""
        with self._lock:
            self.feed_id = feed.id
            self.base_version = feed.version
            self.name = feed.name
            self._saved_name = feed.name
            self.is_dirty = False
            self.state = BuilderState.SAVED
            self._touch()
        self._debouncer.cancel()
        logger.info(f"Session {self.session_id} saved feed {feed.id} at version {feed.version}")

    def mark_conflict(self, server_version: Optional[int]) -> DetachedDraft:
        """Record a conflict found while replaying a queued save."""
        with self._lock:
            self.state = BuilderState.CONFLICT_DETECTED
            self.draft = self._snapshot_draft(server_version)
            return self.draft

    def mark_replay_failed(self) -> None:
        """Reopen the session for editing after a queued save was rejected."""
        with self._lock:
            if self.state == BuilderState.QUEUED_OFFLINE:
                self.state = BuilderState.EDITING

    def resolve_conflict(
        self,
        resolution: ConflictResolution,
        name: Optional[str] = None
    ) -> Optional[FeedDefinition]:
        """
        Act on the user's choice after a conflict.

        Args:
            resolution: Discard, re-apply on the latest version, or save as a new feed
            name: Name of the new feed for SAVE_AS_NEW

        Returns:
            The saved feed, or None for DISCARD

        Raises:
            InvalidSessionStateError: If there is no conflict to resolve
            VersionConflictError: If RETRY_ON_LATEST loses another race
        """
        with self._lock:
            self._require({BuilderState.CONFLICT_DETECTED}, "resolve a conflict")
            draft = self.draft

        if resolution == ConflictResolution.DISCARD:
            with self._lock:
                self.is_dirty = False
                self.state = BuilderState.DISCARDED
            self._debouncer.cancel()
            return None

        if resolution == ConflictResolution.SAVE_AS_NEW:
            new_name = normalize_feed_name(name if name is not None else f"{draft.name} (copy)")
            if self._validate_fn is not None:
                self._validate_fn(draft.blocks)
            feed = self.store.create(self.owner_id, new_name, draft.blocks)
            self.mark_saved(feed)
            return feed

        latest = self.store.get(self.feed_id, self.owner_id)
        with self._lock:
            self.base_version = latest.version
            self._saved_name = latest.name
            self.state = BuilderState.EDITING
        return self.save()

    # -- leaving ----------------------------------------------------------

    def discard(self, confirm: bool = False) -> None:
        """
        Leave the builder.

        Raises:
            UnsavedChangesError: If the session is dirty and `confirm` is False
        """
        with self._lock:
            if self.state == BuilderState.DISCARDED:
                return
            if self.is_dirty and not confirm and self.state != BuilderState.SAVED:
                raise UnsavedChangesError("The feed has unsaved changes; confirm to discard them")
            self._cancel_inflight_preview()
            self.state = BuilderState.DISCARDED
        self._debouncer.cancel()

    def close(self) -> None:
        """Stop any pending preview timer."""
        self._debouncer.cancel()
        with self._lock:
            self._cancel_inflight_preview()
