"""
Core Cache Module

Single-flight, TTL-bounded cache of evaluated feed pages.
"""

from .manager import CacheKey, CacheStats, ResultCache

__all__ = [
    'CacheKey',
    'CacheStats',
    'ResultCache',
]
