"""
Evaluation Engine

Walks the corpus newest first, applies the safety predicate and then the
compiled expression to each candidate, and assembles one page of results.
Evaluation is bounded by a wall-clock budget and can be cancelled between
candidates; neither condition is an error.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from feedengine.compiler.expression import CompiledExpression
from feedengine.core.exceptions import (
    CorpusUnavailableError,
    EvaluationCancelledError,
    InvalidPageSizeError,
)
from feedengine.core.monitoring.metrics import get_metrics_collector
from feedengine.engine.cursor import PageCursor
from feedengine.models import ContentEntry, CursorPosition, ResultPage
from feedengine.providers import CorpusReader, SocialContext
from feedengine.safety import SafetyPredicate


logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag checked between candidates."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise EvaluationCancelledError("Evaluation was superseded by a newer request")


class EvaluationContext:
    """
    Social facts for one evaluation call.

    Answers are memoised for the lifetime of this object only, which is a
    single `evaluate` call; nothing survives into the next evaluation.
    Provider failures surface as CorpusUnavailableError.
    """

    def __init__(self, viewer_id: str, social: SocialContext):
        self.viewer_id = viewer_id
        self._social = social
        self._following: Dict[Tuple[str, str], bool] = {}
        self._blocked: Dict[Tuple[str, str], bool] = {}

    def _ask(self, question: Callable[[str, str], bool], a: str, b: str) -> bool:
        try:
            return bool(question(a, b))
        except Exception as e:
            raise CorpusUnavailableError(f"Social context failed: {e}", cause=e) from e

    def is_following(self, viewer_id: str, author_id: str) -> bool:
        key = (viewer_id, author_id)
        if key not in self._following:
            self._following[key] = self._ask(self._social.is_following, viewer_id, author_id)
        return self._following[key]

    def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        key = (blocker_id, blocked_id)
        if key not in self._blocked:
            self._blocked[key] = self._ask(self._social.is_blocked, blocker_id, blocked_id)
        return self._blocked[key]

    def follows(self, author_id: str) -> bool:
        """Whether the viewer follows `author_id`."""
        return self.is_following(self.viewer_id, author_id)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EvaluationEngine:
    """
    Evaluates compiled expressions against the corpus.

    The engine holds no per-request state and no locks; one instance serves
    every worker thread of the evaluation pool.
    """

    def __init__(
        self,
        corpus: CorpusReader,
        social: SocialContext,
        default_budget: Optional[float] = 2.0,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize the engine.

        Args:
            corpus: Source of candidates
            social: Follow and block relationships
            default_budget: Wall-clock budget in seconds when the caller passes none
            clock: Source of the snapshot marker for first pages
        """
        self.corpus = corpus
        self.social = social
        self.default_budget = default_budget
        self.clock = clock
        self._collector = get_metrics_collector()

    def evaluate(
        self,
        expression: CompiledExpression,
        viewer_id: str,
        cursor: Optional[str] = None,
        limit: int = 20,
        budget: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> ResultPage:
        """
        Produce one page of a feed.

        Args:
            expression: Compiled filter tree
            viewer_id: The user the feed is evaluated for
            cursor: Token from a previous page, None for the first page
            limit: Maximum number of items on the page
            budget: Wall-clock budget in seconds (engine default if None)
            cancel_token: Checked between candidates

        Returns:
            ResultPage; `degraded` is set when the budget ran out

        Raises:
            InvalidCursorError: If the cursor cannot be decoded
            InvalidPageSizeError: If limit is below 1
            EvaluationCancelledError: If the token was cancelled
            CorpusUnavailableError: If the corpus or social context fails
        """
        if limit < 1:
            raise InvalidPageSizeError(f"Page size must be at least 1, got {limit}")

        if cursor:
            page_cursor = PageCursor.decode(cursor)
        else:
            page_cursor = PageCursor(position=None, snapshot_at=self.clock())

        budget = self.default_budget if budget is None else budget
        deadline = None if budget is None else time.monotonic() + budget

        with self._collector.time_operation("engine.evaluate"):
            page = self._scan(expression, viewer_id, page_cursor, limit, deadline, cancel_token)

        self._collector.increment("engine.evaluations")
        self._collector.increment("engine.scanned", page.scanned)
        if page.degraded:
            self._collector.increment("engine.degraded")
            logger.warning(
                f"Evaluation budget exhausted after {page.scanned} candidates; "
                f"returning {len(page.items)} item(s) as a degraded page"
            )
        return page

    def _open_stream(self, viewer_id: str, since: Optional[CursorPosition]) -> Iterator[ContentEntry]:
        try:
            return iter(self.corpus.stream_candidates(viewer_id, since))
        except Exception as e:
            raise CorpusUnavailableError(f"Corpus reader failed: {e}", cause=e) from e

    def _scan(
        self,
        expression: CompiledExpression,
        viewer_id: str,
        page_cursor: PageCursor,
        limit: int,
        deadline: Optional[float],
        cancel_token: Optional[CancellationToken]
    ) -> ResultPage:
        context = EvaluationContext(viewer_id, self.social)
        safety = SafetyPredicate(context)
        snapshot_at = page_cursor.snapshot_at
        candidates = self._open_stream(viewer_id, page_cursor.position)

        items: List[ContentEntry] = []
        scanned = 0
        last_scanned = page_cursor.position

        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            if deadline is not None and time.monotonic() >= deadline:
                if len(items) == limit:
                    # Page is complete; only the look-ahead was cut short.
                    return self._page(items, True, snapshot_at, scanned)
                resume = PageCursor(position=last_scanned, snapshot_at=snapshot_at)
                return ResultPage(
                    items=items,
                    next_cursor=resume.encode(),
                    has_more=True,
                    degraded=True,
                    scanned=scanned,
                )

            try:
                entry = next(candidates)
            except StopIteration:
                return self._page(items, False, snapshot_at, scanned)
            except Exception as e:
                raise CorpusUnavailableError(f"Corpus reader failed: {e}", cause=e) from e

            scanned += 1
            last_scanned = entry.position

            if entry.created_at > snapshot_at:
                continue
            if not safety.is_eligible(entry, viewer_id):
                continue
            if not expression.matches(entry, context):
                continue

            if len(items) == limit:
                return self._page(items, True, snapshot_at, scanned)
            items.append(entry)

    @staticmethod
    def _page(items: List[ContentEntry], has_more: bool, snapshot_at: datetime, scanned: int) -> ResultPage:
        if not has_more or not items:
            return ResultPage(items=items, next_cursor=None, has_more=False, scanned=scanned)
        resume = PageCursor(position=items[-1].position, snapshot_at=snapshot_at)
        return ResultPage(items=items, next_cursor=resume.encode(), has_more=True, scanned=scanned)
