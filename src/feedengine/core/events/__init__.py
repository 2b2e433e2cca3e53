"""
Event System

Synchronous, thread-safe event delivery between the feed store, the host
application's content ingestion and the result cache.
"""

from feedengine.core.events.types import (
    BaseEvent,
    FeedChangedEvent,
    FeedDeletedEvent,
    ContentCreatedEvent,
    PreviewCompletedEvent,
)
from feedengine.core.events.emitter import EventEmitter

__all__ = [
    'BaseEvent',
    'FeedChangedEvent',
    'FeedDeletedEvent',
    'ContentCreatedEvent',
    'PreviewCompletedEvent',
    'EventEmitter',
]
