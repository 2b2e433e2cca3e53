"""
Feed Service

Public facade wiring the feed store, compiler, evaluation engine, result
cache and builder sessions into one object the host application talks to.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union

from feedengine.builder.offline import OfflineQueue, QueuedEdit
from feedengine.builder.session import BuilderSession, BuilderState, PreviewResult
from feedengine.compiler.compiler import CompileResult, FilterTreeCompiler
from feedengine.core.cache.manager import CacheKey, ResultCache
from feedengine.core.concurrency.pools import EvaluationPool
from feedengine.core.config.models import EngineConfig
from feedengine.core.events.emitter import EventEmitter
from feedengine.core.events.types import ContentCreatedEvent, FeedChangedEvent, FeedDeletedEvent
from feedengine.core.exceptions import (
    FeedEngineError,
    InvalidPageSizeError,
    SessionNotFoundError,
    StoreUnavailableError,
    VersionConflictError,
)
from feedengine.core.monitoring.metrics import get_metrics_collector
from feedengine.engine.evaluator import CancellationToken, EvaluationEngine
from feedengine.filters.base import FilterBlock
from feedengine.models import ContentEntry, ResultPage
from feedengine.providers import CorpusReader, SocialContext
from feedengine.store.feeds import FeedDefinitionStore
from feedengine.store.models import FeedDefinition
from feedengine.store.repository import FeedRepository, InMemoryFeedRepository
from feedengine.store.sqlite import SqliteFeedRepository


logger = logging.getLogger(__name__)

BlockInput = Iterable[Union[FilterBlock, Mapping[str, Any]]]


@dataclass
class ReplayReport:
    """Outcome of one offline queue replay."""
    saved: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    requeued: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        """Whether the store accepted or rejected every queued edit."""
        return not self.requeued


def build_repository(config: EngineConfig) -> FeedRepository:
    """Create the repository selected by the store configuration."""
    if config.store.backend == "sqlite":
        return SqliteFeedRepository(config.store.db_path, max_connections=config.store.max_connections)
    return InMemoryFeedRepository()


class FeedService:
    """
    Entry point for feed management and evaluation.

    Compilation runs on every evaluation so author pruning always reflects
    the current social graph; only evaluated pages are cached.
    """

    def __init__(
        self,
        corpus: CorpusReader,
        social: SocialContext,
        config: Optional[EngineConfig] = None,
        repository: Optional[FeedRepository] = None,
        events: Optional[EventEmitter] = None
    ):
        """
        Initialize the service.

        Args:
            corpus: Content source
            social: Follow, block and account-existence lookups
            config: Engine configuration (defaults if omitted)
            repository: Feed storage; built from `config.store` if omitted
            events: Shared event emitter
        """
        self.config = config or EngineConfig()
        self.corpus = corpus
        self.social = social
        self.events = events or EventEmitter()

        self.store = FeedDefinitionStore(repository or build_repository(self.config), events=self.events)
        self.compiler = FilterTreeCompiler(self.config.compiler)
        self.engine = EvaluationEngine(corpus, social, default_budget=self.config.page_budget_seconds())
        self.cache = ResultCache(self.config.cache)
        self.pool = EvaluationPool(max_workers=self.config.workers.max_workers)
        self.offline_queue = OfflineQueue()

        self._sessions: Dict[str, BuilderSession] = {}
        self._sessions_lock = threading.Lock()

        self.events.subscribe(FeedChangedEvent, self._on_feed_changed)
        self.events.subscribe(FeedDeletedEvent, self._on_feed_deleted)
        self.events.subscribe(ContentCreatedEvent, self._on_content_event)

    # -- event observers --------------------------------------------------

    def _on_feed_changed(self, event: FeedChangedEvent) -> None:
        self.cache.invalidate_feed(event.feed_id)

    def _on_feed_deleted(self, event: FeedDeletedEvent) -> None:
        self.cache.invalidate_feed(event.feed_id)
        self.cache.unwatch(event.feed_id)

    def _on_content_event(self, event: ContentCreatedEvent) -> None:
        self.on_content_created(event)

    # -- feed management --------------------------------------------------

    def validate_blocks(self, blocks: BlockInput) -> CompileResult:
        """Compile blocks without the social graph; raises CompileError if unsavable."""
        return self.compiler.compile(blocks)

    def register_owner(self, owner_id: str) -> FeedDefinition:
        return self.store.register_owner(owner_id)

    def create_feed(
        self,
        owner_id: str,
        name: str,
        filter_blocks: BlockInput = (),
        description: str = "",
        is_default: bool = False
    ) -> FeedDefinition:
        """
        Create a feed after checking that its blocks compile.

        Raises:
            CompileError: If the blocks are invalid or too many
            InvalidFeedNameError, DuplicateFeedNameError: On name problems
        """
        blocks = self.validate_blocks(filter_blocks).blocks
        return self.store.create(owner_id, name, blocks, description=description, is_default=is_default)

    def rename_feed(self, feed_id: str, owner_id: str, new_name: str) -> FeedDefinition:
        return self.store.rename(feed_id, owner_id, new_name)

    def update_filters(
        self,
        feed_id: str,
        owner_id: str,
        filter_blocks: BlockInput,
        base_version: int,
        name: Optional[str] = None
    ) -> FeedDefinition:
        """
        Replace a feed's blocks, and optionally its name, under optimistic concurrency.

        Raises:
            CompileError: If the blocks are invalid or too many
            VersionConflictError: If the feed moved past `base_version`
            InvalidFeedNameError, DuplicateFeedNameError: If `name` cannot be used
        """
        blocks = self.validate_blocks(filter_blocks).blocks
        return self.store.update_filters(feed_id, owner_id, blocks, base_version, name=name)

    def update_description(
        self,
        feed_id: str,
        owner_id: str,
        description: str,
        base_version: Optional[int] = None
    ) -> FeedDefinition:
        return self.store.update_description(feed_id, owner_id, description, base_version)

    def set_default_feed(self, feed_id: str, owner_id: str) -> FeedDefinition:
        return self.store.set_default(feed_id, owner_id)

    def delete_feed(self, feed_id: str, owner_id: str) -> None:
        self.store.delete(feed_id, owner_id)

    def get_feed(self, feed_id: str, owner_id: Optional[str] = None) -> FeedDefinition:
        return self.store.get(feed_id, owner_id)

    def list_feeds(self, owner_id: str) -> List[FeedDefinition]:
        return self.store.list_for_owner(owner_id)

    # -- evaluation -------------------------------------------------------

    def _check_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.config.evaluation.default_page_size
        if limit < 1 or limit > self.config.evaluation.max_page_size:
            raise InvalidPageSizeError(
                f"Page size must be between 1 and {self.config.evaluation.max_page_size}, got {limit}"
            )
        return limit

    def evaluate(
        self,
        feed_id: str,
        viewer_id: str,
        cursor: Optional[str] = None,
        limit: Optional[int] = None
    ) -> ResultPage:
        """
        Fetch one page of a saved feed.

        Args:
            feed_id: Feed to evaluate
            viewer_id: The user reading the feed
            cursor: Token from the previous page
            limit: Page size (configured default if None)

        Returns:
            ResultPage, possibly served from the cache

        Raises:
            FeedNotFoundError: If the viewer has no feed with this id
            InvalidPageSizeError: If limit is outside the allowed range
            InvalidCursorError: If the cursor cannot be decoded
            CorpusUnavailableError: If the corpus or social context fails
        """
        limit = self._check_limit(limit)
        feed = self.store.get(feed_id, viewer_id)

        compiled = self.compiler.compile(feed.filter_blocks, social=self.social)
        if compiled.author_pruned and not feed.needs_author_prune:
            self.store.mark_needs_author_prune(feed.id)
            logger.info(f"Feed {feed.id} references {len(compiled.pruned_authors)} deleted author(s)")

        expression = compiled.expression
        self.cache.watch_authors(feed.id, expression.author_scope())

        key = CacheKey(
            feed_id=feed.id, viewer_id=viewer_id, cursor=cursor, feed_version=feed.version, limit=limit
        )
        budget = self.config.page_budget_seconds()
        return self.cache.get_or_compute(
            key,
            lambda: self.pool.run(self.engine.evaluate, expression, viewer_id, cursor, limit, budget)
        )

    def preview(
        self,
        blocks: BlockInput,
        viewer_id: str,
        cancel_token: Optional[CancellationToken] = None,
        limit: Optional[int] = None
    ) -> PreviewResult:
        """
        Evaluate unsaved blocks under the preview budget. Never cached.

        Raises:
            CompileError: If the blocks do not compile
            EvaluationCancelledError: If `cancel_token` was cancelled
            CorpusUnavailableError: If the corpus or social context fails
        """
        compiled = self.compiler.compile(blocks, social=self.social)
        page = self.pool.run(
            self.engine.evaluate,
            compiled.expression,
            viewer_id,
            None,
            limit or self.config.builder.preview_page_size,
            self.config.preview_budget_seconds(),
            cancel_token,
        )
        return PreviewResult(
            page=page,
            performance_warning=compiled.performance_warning,
            author_pruned=compiled.author_pruned,
            pruned_authors=compiled.pruned_authors,
            notices=list(compiled.notices),
        )

    def on_content_created(self, content: Union[ContentEntry, ContentCreatedEvent]) -> Set[str]:
        """
        Invalidate cached pages a new entry could appear in.

        Returns:
            Ids of the invalidated feeds
        """
        feeds = self.cache.invalidate_for_author(content.author_id)
        if feeds:
            logger.debug(f"New content by {content.author_id} invalidated {len(feeds)} feed(s)")
        return feeds

    # -- builder sessions -------------------------------------------------

    def open_builder(
        self,
        owner_id: str,
        feed_id: Optional[str] = None,
        viewer_id: Optional[str] = None
    ) -> BuilderSession:
        """
        Start editing an existing feed, or a new one when `feed_id` is None.

        Raises:
            FeedNotFoundError: If the owner has no such feed
        """
        feed = self.store.get(feed_id, owner_id) if feed_id is not None else None
        session = BuilderSession(
            owner_id=owner_id,
            store=self.store,
            preview_fn=lambda blocks, viewer, token: self.preview(blocks, viewer, cancel_token=token),
            feed=feed,
            viewer_id=viewer_id,
            debounce_seconds=self.config.builder.preview_debounce_ms / 1000.0,
            offline_queue=self.offline_queue,
            events=self.events,
            validate_fn=self.validate_blocks,
        )
        with self._sessions_lock:
            self._sessions[session.session_id] = session
        logger.debug(f"Opened builder session {session.session_id} for owner {owner_id}")
        return session

    def get_session(self, session_id: str) -> BuilderSession:
        with self._sessions_lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Builder session {session_id} not found")
        return session

    def close_session(self, session_id: str) -> None:
        with self._sessions_lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            session.close()

    def expire_idle_sessions(self) -> List[str]:
        """
        Discard sessions idle for longer than the configured timeout.

        Sessions with a queued offline save are kept until replay settles them.

        Returns:
            Ids of the expired sessions
        """
        timeout = self.config.builder.session_timeout_seconds
        with self._sessions_lock:
            expired = [
                sid for sid, session in self._sessions.items()
                if session.state != BuilderState.QUEUED_OFFLINE and session.is_expired(timeout)
            ]
            sessions = [self._sessions.pop(sid) for sid in expired]
        for session in sessions:
            if session.is_dirty and not session.is_terminal:
                logger.info(f"Builder session {session.session_id} expired with unsaved changes")
            session.discard(confirm=True)
            session.close()
        return expired

    # -- offline replay ---------------------------------------------------

    def _replay_one(self, edit: QueuedEdit) -> FeedDefinition:
        if edit.feed_id is None:
            return self.store.create(edit.owner_id, edit.name, edit.blocks)
        return self.store.update_filters(
            edit.feed_id, edit.owner_id, edit.blocks, edit.base_version, name=edit.name or None
        )

    def replay_offline_queue(self) -> ReplayReport:
        """
        Retry queued builder saves, oldest first.

        A stale edit becomes a conflict on its session instead of
        overwriting newer work. Replay stops at the first store outage and
        puts the remaining edits back.

        Returns:
            ReplayReport listing edit ids by outcome
        """
        report = ReplayReport()
        edits = self.offline_queue.drain()

        for index, edit in enumerate(edits):
            with self._sessions_lock:
                session = self._sessions.get(edit.session_id)
            edit.attempts += 1
            try:
                feed = self._replay_one(edit)
            except VersionConflictError as e:
                report.conflicts.append(edit.edit_id)
                if session is not None:
                    session.mark_conflict(e.actual_version)
                logger.info(f"Queued edit {edit.edit_id} conflicts with feed version {e.actual_version}")
                continue
            except StoreUnavailableError:
                remaining = edits[index:]
                self.offline_queue.requeue_front(remaining)
                report.requeued.extend(e.edit_id for e in remaining)
                logger.warning(f"Feed store still unavailable; {len(remaining)} edit(s) stay queued")
                break
            except FeedEngineError as e:
                report.rejected.append(edit.edit_id)
                if session is not None:
                    session.mark_replay_failed()
                logger.warning(f"Queued edit {edit.edit_id} rejected: {e}")
                continue

            report.saved.append(edit.edit_id)
            if session is not None and session.state == BuilderState.QUEUED_OFFLINE:
                session.mark_saved(feed)

        return report

    # -- lifecycle --------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Operational snapshot: cache, pool, events, sessions and metric summaries."""
        cache_stats = self.cache.get_stats()
        with self._sessions_lock:
            open_sessions = len(self._sessions)
        return {
            "cache": {**vars(cache_stats), "hit_rate": cache_stats.hit_rate, "entries": len(self.cache)},
            "pool": vars(self.pool.get_metrics()).copy(),
            "events": self.events.get_stats(),
            "sessions": open_sessions,
            "offline_queue": len(self.offline_queue),
            "metrics": {name: summary.to_dict() for name, summary in get_metrics_collector().summaries().items()},
        }

    def shutdown(self) -> None:
        """Stop sessions and worker threads and close the repository."""
        with self._sessions_lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
        self.pool.shutdown()
        self.store.repository.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False
