"""
Engagement-threshold filtering.

Compares one engagement metric of an entry against numeric bounds. The
default metric is the aggregate engagement score; likes, comments, reposts
and views read from the entry's per-metric counts.
"""

from feedengine.core.exceptions import InvalidValueShapeError
from feedengine.filters.base import Filter, FilterKind, FilterOperator
from feedengine.filters.values import SUPPORTED_OPERATORS, EngagementValue
from feedengine.models import ContentEntry


class EngagementFilter(Filter):
    """
    Filter entries by engagement.

    - greater-than: metric > threshold
    - less-than: metric < threshold
    - in-range: threshold <= metric <= upper
    """

    kind = FilterKind.ENGAGEMENT_THRESHOLD
    supported_operators = SUPPORTED_OPERATORS[FilterKind.ENGAGEMENT_THRESHOLD]
    base_cost = 2.0

    def __init__(self, operator: FilterOperator, value: EngagementValue):
        super().__init__(operator, value)
        if operator == FilterOperator.IN_RANGE and value.upper is None:
            raise InvalidValueShapeError("in-range engagement filters need an upper bound")
        self.metric = value.metric
        self.threshold = value.threshold
        self.upper = value.upper

    @property
    def name(self) -> str:
        return "Engagement Filter"

    @property
    def description(self) -> str:
        if self.operator == FilterOperator.GREATER_THAN:
            return f"Posts with {self.metric} > {self.threshold:g}"
        if self.operator == FilterOperator.LESS_THAN:
            return f"Posts with {self.metric} < {self.threshold:g}"
        return f"Posts with {self.metric} between {self.threshold:g} and {self.upper:g}"

    def apply(self, entry: ContentEntry) -> bool:
        observed = entry.metric(self.metric)
        if self.operator == FilterOperator.GREATER_THAN:
            return observed > self.threshold
        if self.operator == FilterOperator.LESS_THAN:
            return observed < self.threshold
        return self.threshold <= observed <= self.upper
