"""
Evaluation Engine

Cursor-paginated, budgeted evaluation of compiled feeds behind the safety
predicate.
"""

from .cursor import PageCursor
from .evaluator import CancellationToken, EvaluationContext, EvaluationEngine

__all__ = [
    'PageCursor',
    'CancellationToken',
    'EvaluationContext',
    'EvaluationEngine',
]
