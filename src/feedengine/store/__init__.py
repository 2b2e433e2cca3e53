"""
Feed Definition Store

Persisted feed metadata with per-owner naming rules, a protected default
feed, and optimistic concurrency on every edit.
"""

from .models import DEFAULT_FEED_NAME, MAX_FEED_NAME_LENGTH, FeedDefinition, normalize_feed_name
from .repository import FeedRepository, InMemoryFeedRepository
from .sqlite import SqliteFeedRepository
from .feeds import FeedDefinitionStore

__all__ = [
    'DEFAULT_FEED_NAME',
    'MAX_FEED_NAME_LENGTH',
    'FeedDefinition',
    'normalize_feed_name',
    'FeedRepository',
    'InMemoryFeedRepository',
    'SqliteFeedRepository',
    'FeedDefinitionStore',
]
