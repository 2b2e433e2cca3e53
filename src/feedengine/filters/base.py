"""
Abstract Filter Base Classes

Defines the filter vocabulary shared by the compiler and the builder: the
kinds, operators and connectives a user can pick, the FilterBlock a feed
definition stores, and the Filter interface every leaf predicate implements.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Union

from feedengine.core.exceptions import (
    InvalidValueShapeError,
    UnknownFilterKindError,
    UnsupportedOperatorError,
)
from feedengine.models import ContentEntry


class FilterKind(Enum):
    """What a filter block inspects."""
    POST_TYPE = "post-type"
    AUTHOR_SET = "author-set"
    TAG = "tag"
    DATE_RANGE = "date-range"
    ENGAGEMENT_THRESHOLD = "engagement-threshold"

    @classmethod
    def parse(cls, value: Union[str, "FilterKind"], block_index: Optional[int] = None) -> "FilterKind":
        """
        Parse a kind name, accepting underscores and the short aliases.

        Raises:
            UnknownFilterKindError: If the name matches no kind
        """
        if isinstance(value, FilterKind):
            return value
        normalized = str(value).strip().lower().replace("_", "-")
        normalized = _KIND_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise UnknownFilterKindError(value, block_index=block_index) from None


_KIND_ALIASES = {
    "author": "author-set",
    "authors": "author-set",
    "engagement": "engagement-threshold",
    "date": "date-range",
    "type": "post-type",
}


class FilterOperator(Enum):
    """How a block compares the entry against its value."""
    EQUALS = "equals"
    NOT_EQUALS = "not-equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater-than"
    LESS_THAN = "less-than"
    IN_RANGE = "in-range"

    @classmethod
    def parse(cls, value: Union[str, "FilterOperator"], block_index: Optional[int] = None) -> "FilterOperator":
        if isinstance(value, FilterOperator):
            return value
        normalized = str(value).strip().lower().replace("_", "-")
        try:
            return cls(normalized)
        except ValueError:
            raise UnsupportedOperatorError(
                f"Unknown operator '{value}'", block_index=block_index
            ) from None


class Connective(Enum):
    """
    Joins a block with the block that follows it.

    NOT reads as "AND NOT next".
    """
    AND = "AND"
    OR = "OR"
    NOT = "NOT"

    @classmethod
    def parse(cls, value: Union[str, "Connective"], block_index: Optional[int] = None) -> "Connective":
        if isinstance(value, Connective):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise InvalidValueShapeError(
                f"Unknown connective '{value}'", block_index=block_index
            ) from None


@dataclass(frozen=True)
class FilterBlock:
    """
    One user-authored filter block.

    Attributes:
        kind: What the block inspects
        operator: Comparison to apply
        value: Typed filter value; must match `kind` (checked at compile time)
        group_id: Consecutive blocks with the same group form a parenthesised group
        connective: Joins this block with the next one
        order: Display position, also the tie-break for equal-cost siblings
        negate: Leading NOT applied to this block alone
    """
    kind: FilterKind
    operator: FilterOperator
    value: Any
    group_id: int = 0
    connective: Connective = Connective.AND
    order: int = 0
    negate: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], index: Optional[int] = None) -> "FilterBlock":
        """
        Build a block from a raw mapping (YAML, JSON or API payload).

        Args:
            data: Mapping with kind/operator/value and optional layout keys
            index: Position of the block in its list, used as the default order

        Returns:
            FilterBlock with a parsed, typed value

        Raises:
            UnknownFilterKindError: If the kind is unknown
            InvalidValueShapeError: If a key is missing or the value is malformed
        """
        from feedengine.filters.values import parse_filter_value

        if not isinstance(data, Mapping):
            raise InvalidValueShapeError(
                f"Filter block must be a mapping, got {type(data).__name__}",
                block_index=index
            )

        raw_kind = data.get("kind", data.get("type"))
        if raw_kind is None:
            raise InvalidValueShapeError("Filter block is missing 'kind'", block_index=index)
        if "operator" not in data:
            raise InvalidValueShapeError("Filter block is missing 'operator'", block_index=index)
        if "value" not in data:
            raise InvalidValueShapeError("Filter block is missing 'value'", block_index=index)

        kind = FilterKind.parse(raw_kind, block_index=index)
        operator = FilterOperator.parse(data["operator"], block_index=index)

        try:
            group_id = int(data.get("group_id", data.get("group", 0)))
            order = int(data.get("order", index if index is not None else 0))
        except (TypeError, ValueError) as e:
            raise InvalidValueShapeError(f"Invalid block layout: {e}", block_index=index) from e

        return cls(
            kind=kind,
            operator=operator,
            value=parse_filter_value(kind, operator, data["value"], block_index=index),
            group_id=group_id,
            connective=Connective.parse(data.get("connective", "AND"), block_index=index),
            order=order,
            negate=bool(data.get("negate", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        value = self.value.to_dict() if hasattr(self.value, "to_dict") else self.value
        return {
            "kind": self.kind.value,
            "operator": self.operator.value,
            "value": value,
            "group_id": self.group_id,
            "connective": self.connective.value,
            "order": self.order,
            "negate": self.negate,
        }


class Filter(ABC):
    """
    Abstract base class for leaf predicates over content entries.

    Filters are immutable once built and hold no per-evaluation state, so
    one compiled tree can be evaluated from many threads at once.
    """

    kind: FilterKind
    supported_operators: FrozenSet[FilterOperator] = frozenset()
    base_cost: float = 3.0

    def __init__(self, operator: FilterOperator, value: Any):
        """
        Initialize the filter.

        Args:
            operator: Comparison to apply
            value: Typed value of the matching kind

        Raises:
            UnsupportedOperatorError: If the operator is not meaningful here
        """
        if operator not in self.supported_operators:
            allowed = ", ".join(sorted(op.value for op in self.supported_operators))
            raise UnsupportedOperatorError(
                f"Operator '{operator.value}' is not supported by {self.kind.value} filters "
                f"(supported: {allowed})"
            )
        self.operator = operator
        self.value = value
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of the filter."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of what the filter does."""
        pass

    @abstractmethod
    def apply(self, entry: ContentEntry) -> bool:
        """
        Test an entry against the filter.

        Args:
            entry: Corpus entry to test

        Returns:
            True if the entry matches
        """
        pass

    @property
    def estimated_cost(self) -> float:
        """Relative cost of one evaluation; cheaper leaves run first."""
        return self.base_cost

    def author_scope(self) -> Optional[FrozenSet[str]]:
        """
        Authors this filter can possibly match.

        Returns:
            Finite author set, or None when any author may match
        """
        return None

    def __str__(self) -> str:
        return f"{self.name}: {self.description}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(operator={self.operator.value}, value={self.value!r})"
