"""
Filter Value Model

The vocabulary of user-authored filter blocks and the leaf filters they
compile into:

- FilterBlock: One stored block (kind, operator, value, grouping, connective)
- Value variants: Typed per-kind values, parsed by `parse_filter_value`
- Filter: Abstract base class for leaf predicates
- FilterFactory: Registry mapping kinds to filter implementations
"""

from .base import Connective, Filter, FilterBlock, FilterKind, FilterOperator
from .values import (
    AuthorSetValue,
    DateRangeValue,
    EngagementValue,
    PostTypeValue,
    TagValue,
    parse_filter_value,
)
from .factory import FilterFactory
from .post_type import PostTypeFilter
from .author import AuthorSetFilter
from .tag import TagFilter
from .date import DateRangeFilter
from .engagement import EngagementFilter

__all__ = [
    "Connective",
    "Filter",
    "FilterBlock",
    "FilterKind",
    "FilterOperator",
    "AuthorSetValue",
    "DateRangeValue",
    "EngagementValue",
    "PostTypeValue",
    "TagValue",
    "parse_filter_value",
    "FilterFactory",
    "PostTypeFilter",
    "AuthorSetFilter",
    "TagFilter",
    "DateRangeFilter",
    "EngagementFilter",
]
