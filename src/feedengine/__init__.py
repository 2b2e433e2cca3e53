"""
feedengine

User-defined feed filters: compiles ordered filter blocks into boolean
expression trees and evaluates them against a content corpus with
cursor pagination, safety rules, time budgets and a single-flight cache.
"""

__version__ = "0.1.0"

from feedengine.models import ContentEntry, CursorPosition, PostType, ResultPage, Visibility
from feedengine.providers import CorpusReader, InMemoryCorpus, InMemorySocialGraph, SocialContext
from feedengine.core.config import EngineConfig
from feedengine.core.exceptions import FeedEngineError
from feedengine.service import FeedService, ReplayReport

__all__ = [
    '__version__',
    'ContentEntry',
    'CursorPosition',
    'PostType',
    'ResultPage',
    'Visibility',
    'CorpusReader',
    'InMemoryCorpus',
    'InMemorySocialGraph',
    'SocialContext',
    'EngineConfig',
    'FeedEngineError',
    'FeedService',
    'ReplayReport',
]
