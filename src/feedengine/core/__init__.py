"""
Core feedengine Package

Infrastructure shared by the compiler, engine and store: exceptions,
configuration, events, metrics, caching and concurrency.
"""

from feedengine.core.exceptions import (
    FeedEngineError,
    CompileError,
    StoreError,
    EvaluationError,
    BuilderError,
    ConfigurationError,
    ErrorCode,
    ErrorContext,
    RecoverySuggestion,
)

__all__ = [
    'FeedEngineError',
    'CompileError',
    'StoreError',
    'EvaluationError',
    'BuilderError',
    'ConfigurationError',
    'ErrorCode',
    'ErrorContext',
    'RecoverySuggestion',
]
