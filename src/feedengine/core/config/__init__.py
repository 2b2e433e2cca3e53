"""
Configuration Management Package

Provides Pydantic-based configuration models and management for feedengine.
"""

from feedengine.core.config.models import (
    EngineConfig,
    CompilerConfig,
    EvaluationConfig,
    CacheConfig,
    StoreConfig,
    BuilderConfig,
    WorkerConfig,
)
from feedengine.core.config.manager import ConfigManager

__all__ = [
    "EngineConfig",
    "CompilerConfig",
    "EvaluationConfig",
    "CacheConfig",
    "StoreConfig",
    "BuilderConfig",
    "WorkerConfig",
    "ConfigManager",
]
