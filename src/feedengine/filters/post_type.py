"""
Post-type filtering.

Matches entries by their kind (text, image, gallery, video, song). This is
an indexed equality check and the cheapest leaf the compiler can schedule.
"""

from feedengine.filters.base import Filter, FilterKind, FilterOperator
from feedengine.filters.values import SUPPORTED_OPERATORS, PostTypeValue
from feedengine.models import ContentEntry


class PostTypeFilter(Filter):
    """
    Filter entries by post type.

    - equals / contains / in-range: the entry's type is one of the listed types
    - not-equals: the entry's type is none of the listed types
    """

    kind = FilterKind.POST_TYPE
    supported_operators = SUPPORTED_OPERATORS[FilterKind.POST_TYPE]
    base_cost = 1.0

    def __init__(self, operator: FilterOperator, value: PostTypeValue):
        super().__init__(operator, value)
        self.types = value.types

    @property
    def name(self) -> str:
        return "Post Type Filter"

    @property
    def description(self) -> str:
        types = ", ".join(sorted(t.value for t in self.types))
        if self.operator == FilterOperator.NOT_EQUALS:
            return f"Posts that are not {types}"
        return f"Posts of type {types}"

    def apply(self, entry: ContentEntry) -> bool:
        matched = entry.kind in self.types
        if self.operator == FilterOperator.NOT_EQUALS:
            return not matched
        return matched
