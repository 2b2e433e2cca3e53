"""
Date-range filtering.

Filters entries on their creation time. Bounds are inclusive and parsed
with dateutil when the block is built, so evaluation is a plain comparison.
"""

from feedengine.filters.base import Filter, FilterKind, FilterOperator
from feedengine.filters.values import SUPPORTED_OPERATORS, DateRangeValue
from feedengine.models import ContentEntry


class DateRangeFilter(Filter):
    """
    Filter entries by creation date.

    - in-range: start <= created_at <= end
    - greater-than: created_at >= start
    - less-than: created_at <= end
    """

    kind = FilterKind.DATE_RANGE
    supported_operators = SUPPORTED_OPERATORS[FilterKind.DATE_RANGE]
    base_cost = 2.5

    def __init__(self, operator: FilterOperator, value: DateRangeValue):
        super().__init__(operator, value)
        self.start = value.start if operator != FilterOperator.LESS_THAN else None
        self.end = value.end if operator != FilterOperator.GREATER_THAN else None

    @property
    def name(self) -> str:
        return "Date Filter"

    @property
    def description(self) -> str:
        criteria = []
        if self.start:
            criteria.append(f"from {self.start.strftime('%Y-%m-%d')}")
        if self.end:
            criteria.append(f"to {self.end.strftime('%Y-%m-%d')}")
        if criteria:
            return f"Posts created {' '.join(criteria)}"
        return "No date filtering (all posts pass)"

    def apply(self, entry: ContentEntry) -> bool:
        if self.start is not None and entry.created_at < self.start:
            return False
        if self.end is not None and entry.created_at > self.end:
            return False
        return True
