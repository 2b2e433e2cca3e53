"""
Author-set filtering.

Matches entries by author id. The referenced authors are the only part of a
filter tree that can go stale (users get deleted), so this filter also
reports its author scope for targeted cache invalidation.
"""

from typing import FrozenSet, Optional

from feedengine.filters.base import Filter, FilterKind, FilterOperator
from feedengine.filters.values import SUPPORTED_OPERATORS, AuthorSetValue
from feedengine.models import ContentEntry


class AuthorSetFilter(Filter):
    """
    Filter entries by author.

    - equals / contains / in-range: the author is in the set
    - not-equals: the author is not in the set

    An empty set (all authors pruned) matches nothing for equals and
    everything for not-equals.
    """

    kind = FilterKind.AUTHOR_SET
    supported_operators = SUPPORTED_OPERATORS[FilterKind.AUTHOR_SET]
    base_cost = 1.5

    def __init__(self, operator: FilterOperator, value: AuthorSetValue):
        super().__init__(operator, value)
        self.author_ids = value.author_ids

    @property
    def name(self) -> str:
        return "Author Filter"

    @property
    def description(self) -> str:
        count = len(self.author_ids)
        if self.operator == FilterOperator.NOT_EQUALS:
            return f"Posts not written by {count} selected author(s)"
        return f"Posts written by {count} selected author(s)"

    @property
    def excludes(self) -> bool:
        return self.operator == FilterOperator.NOT_EQUALS

    def apply(self, entry: ContentEntry) -> bool:
        matched = entry.author_id in self.author_ids
        return not matched if self.excludes else matched

    def author_scope(self) -> Optional[FrozenSet[str]]:
        if self.excludes:
            return None
        return self.author_ids
