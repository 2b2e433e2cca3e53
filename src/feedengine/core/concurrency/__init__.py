"""
Core Concurrency Module

Provides the shared evaluation worker pool and the debouncer used by
builder sessions.
"""

from .pools import EvaluationPool, PoolMetrics
from .limiters import Debouncer

__all__ = [
    'EvaluationPool',
    'PoolMetrics',
    'Debouncer',
]
