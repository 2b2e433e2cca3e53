"""
Tag filtering.

Exact tag matches use the entry's tag set; `contains` is a free-text
substring scan over every tag and is the most expensive leaf.
"""

from feedengine.filters.base import Filter, FilterKind, FilterOperator
from feedengine.filters.values import SUPPORTED_OPERATORS, TagValue
from feedengine.models import ContentEntry


class TagFilter(Filter):
    """
    Filter entries by hashtag.

    - equals: the entry carries at least one of the tags
    - not-equals: the entry carries none of the tags
    - contains: some entry tag contains one of the values as a substring

    Tags are compared lowercase without a leading '#'.
    """

    kind = FilterKind.TAG
    supported_operators = SUPPORTED_OPERATORS[FilterKind.TAG]

    def __init__(self, operator: FilterOperator, value: TagValue):
        super().__init__(operator, value)
        self.tags = value.tags

    @property
    def name(self) -> str:
        return "Tag Filter"

    @property
    def description(self) -> str:
        tags = ", ".join(f"#{t}" for t in sorted(self.tags))
        if self.operator == FilterOperator.NOT_EQUALS:
            return f"Posts without {tags}"
        if self.operator == FilterOperator.CONTAINS:
            return f"Posts with a tag containing {tags}"
        return f"Posts tagged {tags}"

    @property
    def estimated_cost(self) -> float:
        return 5.0 if self.operator == FilterOperator.CONTAINS else 3.0

    def apply(self, entry: ContentEntry) -> bool:
        if self.operator == FilterOperator.CONTAINS:
            return any(needle in tag for tag in entry.tags for needle in self.tags)
        matched = not self.tags.isdisjoint(entry.tags)
        if self.operator == FilterOperator.NOT_EQUALS:
            return not matched
        return matched
