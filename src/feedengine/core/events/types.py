"""
Event Types for feedengine

Events decouple the feed store and the corpus ingestion path from the
result cache: the store announces mutations, the host application announces
new content, and the cache invalidates in response.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class BaseEvent:
    """
    Base class for all engine events.

    Provides common fields for event identification and timing.
    """
    timestamp: float = field(default_factory=time.time)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4())[:12])

    @property
    def datetime(self) -> datetime:
        """Get event timestamp as datetime object."""
        return datetime.fromtimestamp(self.timestamp)

    @property
    def event_type(self) -> str:
        """Get the event type name."""
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            'event_type': self.event_type,
            'timestamp': self.timestamp,
            'event_id': self.event_id,
            **{k: v for k, v in self.__dict__.items()
               if k not in ['timestamp', 'event_id']}
        }


@dataclass
class FeedChangedEvent(BaseEvent):
    """
    Emitted after every persisted feed mutation.

    `change` names the operation (created, renamed, filters_updated,
    description_updated, default_changed).
    """
    feed_id: str = ""
    owner_id: str = ""
    version: int = 0
    change: str = ""


@dataclass
class FeedDeletedEvent(BaseEvent):
    """Emitted after a feed is deleted."""
    feed_id: str = ""
    owner_id: str = ""


@dataclass
class ContentCreatedEvent(BaseEvent):
    """Emitted by the host application when the corpus gains an entry."""
    entry_id: str = ""
    author_id: str = ""


@dataclass
class PreviewCompletedEvent(BaseEvent):
    """Emitted when a builder session receives a live preview."""
    session_id: str = ""
    feed_id: Optional[str] = None
    item_count: int = 0
    degraded: bool = False
    duration_seconds: float = 0.0
