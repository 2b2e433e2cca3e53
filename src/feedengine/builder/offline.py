"""
Offline Queue

Holds builder saves that could not reach the feed store. Entries keep the
version they were based on, so replaying a stale edit surfaces a conflict
instead of overwriting newer work.
"""

import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Tuple

from feedengine.filters.base import FilterBlock


logger = logging.getLogger(__name__)


@dataclass
class QueuedEdit:
    """
    A save waiting for the store to come back.

    Attributes:
        session_id: Builder session that produced the edit
        owner_id: Feed owner
        feed_id: Target feed, None when the edit creates a new feed
        name: Feed name at save time
        blocks: Working blocks at save time
        base_version: Version the edit is based on (None for new feeds)
        queued_at: Epoch seconds when the edit was queued
        attempts: Replay attempts so far
    """
    session_id: str
    owner_id: str
    feed_id: Optional[str]
    name: str
    blocks: Tuple[FilterBlock, ...]
    base_version: Optional[int] = None
    queued_at: float = field(default_factory=time.time)
    attempts: int = 0
    edit_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class OfflineQueue:
    """Thread-safe FIFO of queued edits, bounded by `max_size`."""

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._lock = threading.Lock()
        self._edits: Deque[QueuedEdit] = deque()

    def enqueue(self, edit: QueuedEdit) -> None:
        """Append an edit; a later edit from the same session replaces an earlier one."""
        with self._lock:
            self._edits = deque(e for e in self._edits if e.session_id != edit.session_id)
            if len(self._edits) >= self.max_size:
                dropped = self._edits.popleft()
                logger.warning(f"Offline queue full; dropped edit {dropped.edit_id} from session {dropped.session_id}")
            self._edits.append(edit)
        logger.info(f"Queued offline edit {edit.edit_id} for feed {edit.feed_id or '(new)'}")

    def drain(self) -> List[QueuedEdit]:
        """Remove and return every queued edit, oldest first."""
        with self._lock:
            edits = list(self._edits)
            self._edits.clear()
        return edits

    def requeue_front(self, edits: List[QueuedEdit]) -> None:
        """Put edits back at the head of the queue, keeping their order."""
        with self._lock:
            for edit in reversed(edits):
                self._edits.appendleft(edit)

    def pending(self) -> List[QueuedEdit]:
        with self._lock:
            return list(self._edits)

    def __len__(self) -> int:
        with self._lock:
            return len(self._edits)
