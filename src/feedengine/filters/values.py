"""
Filter Values

Typed value variants, one per filter kind, and the parser that turns raw
payloads into them. A value that does not match its kind is rejected here
rather than coerced.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from feedengine.core.exceptions import InvalidValueShapeError, UnsupportedOperatorError
from feedengine.filters.base import FilterKind, FilterOperator
from feedengine.models import PostType, normalize_tag, parse_datetime


ENGAGEMENT_METRICS = ("score", "likes", "comments", "reposts", "views")

# in-range on post types and authors is set membership, same as contains.
SUPPORTED_OPERATORS: Dict[FilterKind, FrozenSet[FilterOperator]] = {
    FilterKind.POST_TYPE: frozenset({
        FilterOperator.EQUALS, FilterOperator.NOT_EQUALS, FilterOperator.CONTAINS, FilterOperator.IN_RANGE,
    }),
    FilterKind.AUTHOR_SET: frozenset({
        FilterOperator.EQUALS, FilterOperator.NOT_EQUALS, FilterOperator.CONTAINS, FilterOperator.IN_RANGE,
    }),
    FilterKind.TAG: frozenset({
        FilterOperator.EQUALS, FilterOperator.NOT_EQUALS, FilterOperator.CONTAINS,
    }),
    FilterKind.DATE_RANGE: frozenset({
        FilterOperator.IN_RANGE, FilterOperator.GREATER_THAN, FilterOperator.LESS_THAN,
    }),
    FilterKind.ENGAGEMENT_THRESHOLD: frozenset({
        FilterOperator.GREATER_THAN, FilterOperator.LESS_THAN, FilterOperator.IN_RANGE,
    }),
}


@dataclass(frozen=True)
class PostTypeValue:
    types: FrozenSet[PostType]

    def to_dict(self) -> Dict[str, Any]:
        return {"types": sorted(t.value for t in self.types)}


@dataclass(frozen=True)
class AuthorSetValue:
    author_ids: FrozenSet[str]

    def without(self, stale: Iterable[str]) -> "AuthorSetValue":
        """Copy of this value with the given authors removed."""
        return AuthorSetValue(self.author_ids - frozenset(stale))

    def to_dict(self) -> Dict[str, Any]:
        return {"author_ids": sorted(self.author_ids)}


@dataclass(frozen=True)
class TagValue:
    tags: FrozenSet[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"tags": sorted(self.tags)}


@dataclass(frozen=True)
class DateRangeValue:
    """Inclusive bounds on `created_at`; either side may be open."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


@dataclass(frozen=True)
class EngagementValue:
    """
    Threshold on an engagement metric.

    `threshold` is the bound for greater-than / less-than and the lower
    bound for in-range; `upper` is only used by in-range.
    """
    threshold: float
    upper: Optional[float] = None
    metric: str = "score"

    def to_dict(self) -> Dict[str, Any]:
        return {"threshold": self.threshold, "upper": self.upper, "metric": self.metric}


VALUE_TYPES = {
    FilterKind.POST_TYPE: PostTypeValue,
    FilterKind.AUTHOR_SET: AuthorSetValue,
    FilterKind.TAG: TagValue,
    FilterKind.DATE_RANGE: DateRangeValue,
    FilterKind.ENGAGEMENT_THRESHOLD: EngagementValue,
}


def check_operator(kind: FilterKind, operator: FilterOperator, block_index: Optional[int] = None) -> None:
    """
    Raises:
        UnsupportedOperatorError: If `operator` is not meaningful for `kind`
    """
    if operator not in SUPPORTED_OPERATORS[kind]:
        raise UnsupportedOperatorError(
            f"Operator '{operator.value}' cannot be used with {kind.value} filters",
            block_index=block_index
        )


def _string_list(raw: Any, key: str, block_index: Optional[int], allow_empty: bool = False) -> FrozenSet[str]:
    if isinstance(raw, Mapping):
        if key not in raw:
            raise InvalidValueShapeError(f"Expected a '{key}' entry", block_index=block_index)
        raw = raw[key]
    if isinstance(raw, (str, int)) and not isinstance(raw, bool):
        raw = [raw]
    if not isinstance(raw, (list, tuple, set, frozenset)):
        raise InvalidValueShapeError(
            f"Expected a string or list for '{key}', got {type(raw).__name__}",
            block_index=block_index
        )
    items = []
    for item in raw:
        if not isinstance(item, (str, int)) or isinstance(item, bool):
            raise InvalidValueShapeError(f"Invalid {key} entry {item!r}", block_index=block_index)
        text = str(item).strip()
        if text:
            items.append(text)
    if not items and not allow_empty:
        raise InvalidValueShapeError(f"'{key}' must not be empty", block_index=block_index)
    return frozenset(items)


def _number(raw: Any, label: str, block_index: Optional[int]) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        raise InvalidValueShapeError(f"{label} must be a number, got {raw!r}", block_index=block_index)
    try:
        return float(raw)
    except ValueError:
        raise InvalidValueShapeError(f"{label} must be a number, got {raw!r}", block_index=block_index) from None


def _timestamp(raw: Any, label: str, block_index: Optional[int]) -> Optional[datetime]:
    if raw is None:
        return None
    try:
        return parse_datetime(raw)
    except ValueError as e:
        raise InvalidValueShapeError(f"Invalid {label}: {e}", block_index=block_index) from e


def _parse_post_types(raw: Any, block_index: Optional[int]) -> PostTypeValue:
    names = _string_list(raw, "types", block_index)
    try:
        return PostTypeValue(frozenset(PostType.parse(name) for name in names))
    except ValueError as e:
        allowed = ", ".join(t.value for t in PostType)
        raise InvalidValueShapeError(
            f"Unknown post type in {sorted(names)} (allowed: {allowed})",
            block_index=block_index
        ) from e


def _parse_authors(raw: Any, block_index: Optional[int]) -> AuthorSetValue:
    # An explicit empty mapping is what pruning every author leaves behind.
    allow_empty = isinstance(raw, Mapping)
    return AuthorSetValue(_string_list(raw, "author_ids", block_index, allow_empty=allow_empty))


def _parse_tags(raw: Any, block_index: Optional[int]) -> TagValue:
    tags = frozenset(normalize_tag(t) for t in _string_list(raw, "tags", block_index))
    tags = frozenset(t for t in tags if t)
    if not tags:
        raise InvalidValueShapeError("'tags' must contain at least one tag", block_index=block_index)
    return TagValue(tags)


def _parse_date_range(operator: FilterOperator, raw: Any, block_index: Optional[int]) -> DateRangeValue:
    if isinstance(raw, Mapping):
        start = _timestamp(raw.get("start"), "start date", block_index)
        end = _timestamp(raw.get("end"), "end date", block_index)
    elif isinstance(raw, (list, tuple)) and len(raw) == 2:
        start = _timestamp(raw[0], "start date", block_index)
        end = _timestamp(raw[1], "end date", block_index)
    elif operator == FilterOperator.GREATER_THAN:
        start, end = _timestamp(raw, "start date", block_index), None
    elif operator == FilterOperator.LESS_THAN:
        start, end = None, _timestamp(raw, "end date", block_index)
    else:
        raise InvalidValueShapeError(
            "Date range needs {start, end} or a [start, end] pair",
            block_index=block_index
        )

    if operator == FilterOperator.IN_RANGE and (start is None or end is None):
        raise InvalidValueShapeError("in-range needs both start and end", block_index=block_index)
    if operator == FilterOperator.GREATER_THAN and start is None:
        raise InvalidValueShapeError("greater-than needs a start date", block_index=block_index)
    if operator == FilterOperator.LESS_THAN and end is None:
        raise InvalidValueShapeError("less-than needs an end date", block_index=block_index)
    if start is not None and end is not None and start > end:
        raise InvalidValueShapeError("Date range start is after its end", block_index=block_index)
    return DateRangeValue(start=start, end=end)


def _parse_engagement(operator: FilterOperator, raw: Any, block_index: Optional[int]) -> EngagementValue:
    metric = "score"
    upper = None
    if isinstance(raw, Mapping):
        metric = str(raw.get("metric", "score")).strip().lower()
        if "threshold" not in raw:
            raise InvalidValueShapeError("Engagement value needs a 'threshold'", block_index=block_index)
        threshold = _number(raw["threshold"], "threshold", block_index)
        if raw.get("upper") is not None:
            upper = _number(raw["upper"], "upper", block_index)
    elif isinstance(raw, (list, tuple)) and len(raw) == 2:
        threshold = _number(raw[0], "threshold", block_index)
        upper = _number(raw[1], "upper", block_index)
    else:
        threshold = _number(raw, "threshold", block_index)

    if metric not in ENGAGEMENT_METRICS:
        raise InvalidValueShapeError(
            f"Unknown engagement metric '{metric}' (allowed: {', '.join(ENGAGEMENT_METRICS)})",
            block_index=block_index
        )
    if operator == FilterOperator.IN_RANGE:
        if upper is None:
            raise InvalidValueShapeError("in-range needs an 'upper' bound", block_index=block_index)
        if threshold > upper:
            raise InvalidValueShapeError("Engagement range is inverted", block_index=block_index)
    return EngagementValue(threshold=threshold, upper=upper, metric=metric)


def parse_filter_value(
    kind: FilterKind,
    operator: FilterOperator,
    raw: Any,
    block_index: Optional[int] = None
) -> Any:
    """
    Turn a raw payload into the typed value for `kind`.

    Already-typed values are accepted when their variant matches `kind`.

    Args:
        kind: Filter kind of the block
        operator: Operator of the block
        raw: Raw payload or typed value
        block_index: Position of the block, reported in errors

    Returns:
        One of the value dataclasses in this module

    Raises:
        InvalidValueShapeError: If the payload does not fit the kind
        UnsupportedOperatorError: If the operator does not fit the kind
    """
    check_operator(kind, operator, block_index)

    expected = VALUE_TYPES[kind]
    if isinstance(raw, tuple(VALUE_TYPES.values())):
        if not isinstance(raw, expected):
            raise InvalidValueShapeError(
                f"{kind.value} filters take {expected.__name__}, got {type(raw).__name__}",
                block_index=block_index
            )
        return raw
    if raw is None:
        raise InvalidValueShapeError(f"{kind.value} filter has no value", block_index=block_index)

    if kind == FilterKind.POST_TYPE:
        return _parse_post_types(raw, block_index)
    if kind == FilterKind.AUTHOR_SET:
        return _parse_authors(raw, block_index)
    if kind == FilterKind.TAG:
        return _parse_tags(raw, block_index)
    if kind == FilterKind.DATE_RANGE:
        return _parse_date_range(operator, raw, block_index)
    return _parse_engagement(operator, raw, block_index)
