"""
Filter Factory for creating filter instances from blocks.

Provides the registry that maps each filter kind to its implementation and
turns FilterBlocks, or raw block payloads, into leaf filters.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type, Union

from feedengine.core.exceptions import InvalidValueShapeError, UnknownFilterKindError
from feedengine.filters.author import AuthorSetFilter
from feedengine.filters.base import Filter, FilterBlock, FilterKind, FilterOperator
from feedengine.filters.date import DateRangeFilter
from feedengine.filters.engagement import EngagementFilter
from feedengine.filters.post_type import PostTypeFilter
from feedengine.filters.tag import TagFilter
from feedengine.filters.values import SUPPORTED_OPERATORS, parse_filter_value


logger = logging.getLogger(__name__)


class FilterFactory:
    """
    Factory class for creating leaf filters.

    Every value passes through `parse_filter_value` before a filter is
    built, so a block whose value does not match its kind never reaches
    evaluation.
    """

    # Registry of available filter kinds
    FILTER_REGISTRY: Dict[FilterKind, Type[Filter]] = {
        FilterKind.POST_TYPE: PostTypeFilter,
        FilterKind.AUTHOR_SET: AuthorSetFilter,
        FilterKind.TAG: TagFilter,
        FilterKind.DATE_RANGE: DateRangeFilter,
        FilterKind.ENGAGEMENT_THRESHOLD: EngagementFilter,
    }

    @classmethod
    def create_filter(
        cls,
        kind: Union[str, FilterKind],
        operator: Union[str, FilterOperator],
        value: Any,
        block_index: Optional[int] = None
    ) -> Filter:
        """
        Create a single filter instance.

        Args:
            kind: Filter kind (enum or name)
            operator: Operator (enum or name)
            value: Typed value or raw payload
            block_index: Position of the block, reported in errors

        Returns:
            Filter instance

        Raises:
            UnknownFilterKindError: If no filter is registered for the kind
            InvalidValueShapeError: If the value or operator does not fit the kind
        """
        kind = FilterKind.parse(kind, block_index=block_index)
        operator = FilterOperator.parse(operator, block_index=block_index)

        filter_class = cls.FILTER_REGISTRY.get(kind)
        if filter_class is None:
            raise UnknownFilterKindError(kind.value, block_index=block_index)

        typed_value = parse_filter_value(kind, operator, value, block_index=block_index)
        try:
            return filter_class(operator, typed_value)
        except InvalidValueShapeError as e:
            if e.context.block_index is None:
                e.context.block_index = block_index
            raise

    @classmethod
    def create_from_block(cls, block: FilterBlock, block_index: Optional[int] = None) -> Filter:
        """Create the leaf filter for a block."""
        return cls.create_filter(block.kind, block.operator, block.value, block_index=block_index)

    @classmethod
    def create_blocks(cls, raw_blocks: Iterable[Union[FilterBlock, Mapping[str, Any]]]) -> List[FilterBlock]:
        """
        Normalise a list of blocks or raw block mappings into FilterBlocks.

        Raises:
            InvalidValueShapeError: If a raw block is malformed
            UnknownFilterKindError: If a raw block names an unknown kind
        """
        blocks = []
        for index, raw in enumerate(raw_blocks):
            if isinstance(raw, FilterBlock):
                blocks.append(raw)
            else:
                blocks.append(FilterBlock.from_dict(raw, index=index))
        return blocks

    @classmethod
    def get_available_filters(cls) -> Dict[str, Dict[str, Any]]:
        """
        Get information about all available filter kinds.

        Returns:
            Dictionary mapping kind names to their class and operators
        """
        return {
            kind.value: {
                'name': filter_class.__name__,
                'operators': sorted(op.value for op in SUPPORTED_OPERATORS[kind]),
                'cost': filter_class.base_cost,
            }
            for kind, filter_class in cls.FILTER_REGISTRY.items()
        }

    @classmethod
    def register_filter(cls, kind: FilterKind, filter_class: Type[Filter]) -> None:
        """
        Register an implementation for a filter kind.

        Args:
            kind: Filter kind to serve
            filter_class: Filter class to register
        """
        if not issubclass(filter_class, Filter):
            raise ValueError("Filter class must inherit from Filter")

        logger.debug(f"Registering {filter_class.__name__} for {kind.value}")
        cls.FILTER_REGISTRY[kind] = filter_class

    @classmethod
    def unregister_filter(cls, kind: FilterKind) -> None:
        """Remove the implementation for a filter kind."""
        cls.FILTER_REGISTRY.pop(kind, None)
