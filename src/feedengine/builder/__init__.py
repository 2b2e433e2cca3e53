"""
Feed Builder

Interactive editing sessions with debounced live previews, conflict
detection on save, and an offline queue for saves the store could not take.
"""

from .offline import OfflineQueue, QueuedEdit
from .session import (
    BuilderSession,
    BuilderState,
    ConflictResolution,
    DetachedDraft,
    PreviewResult,
)

__all__ = [
    'OfflineQueue',
    'QueuedEdit',
    'BuilderSession',
    'BuilderState',
    'ConflictResolution',
    'DetachedDraft',
    'PreviewResult',
]
