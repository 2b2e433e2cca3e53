"""
Feed Definition Models

The persisted shape of a feed: name, filter blocks, default flag and the
version counter used for optimistic concurrency.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Tuple

from feedengine.core.exceptions import InvalidFeedNameError
from feedengine.filters.base import FilterBlock
from feedengine.models import parse_datetime


MAX_FEED_NAME_LENGTH = 100
DEFAULT_FEED_NAME = "Following"


def normalize_feed_name(name: str) -> str:
    """
    Trim a feed name and check its length.

    Raises:
        InvalidFeedNameError: If the trimmed name is empty or too long
    """
    if not isinstance(name, str):
        raise InvalidFeedNameError("Feed name must be a string")
    trimmed = name.strip()
    if not trimmed:
        raise InvalidFeedNameError("Feed name is required")
    if len(trimmed) > MAX_FEED_NAME_LENGTH:
        raise InvalidFeedNameError(f"Feed name must be at most {MAX_FEED_NAME_LENGTH} characters")
    return trimmed


def name_key(name: str) -> str:
    """Case-insensitive comparison key for feed names."""
    return name.strip().casefold()


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FeedDefinition:
    """
    A stored feed.

    Attributes:
        id: Feed identifier
        owner_id: Owning user
        name: Display name, unique per owner ignoring case
        description: Free text
        filter_blocks: Ordered filter blocks; empty means "everyone I follow"
        is_default: Exactly one feed per owner carries this flag
        version: Bumped on every persisted edit
        created_at: Creation time
        updated_at: Time of the last edit
        needs_author_prune: Some referenced authors no longer exist
    """
    id: str
    owner_id: str
    name: str
    description: str = ""
    filter_blocks: Tuple[FilterBlock, ...] = ()
    is_default: bool = False
    version: int = 1
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    needs_author_prune: bool = False

    @property
    def name_key(self) -> str:
        return name_key(self.name)

    def bumped(self, **changes: Any) -> "FeedDefinition":
        """Copy with `changes` applied, the version incremented and `updated_at` refreshed."""
        changes.setdefault("updated_at", _now())
        return replace(self, version=self.version + 1, **changes)

    def blocks_to_list(self) -> List[Dict[str, Any]]:
        return [block.to_dict() for block in self.filter_blocks]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "filter_blocks": self.blocks_to_list(),
            "is_default": self.is_default,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "needs_author_prune": self.needs_author_prune,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeedDefinition":
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            name=data["name"],
            description=data.get("description") or "",
            filter_blocks=tuple(
                FilterBlock.from_dict(raw, index=i) for i, raw in enumerate(data.get("filter_blocks") or ())
            ),
            is_default=bool(data.get("is_default", False)),
            version=int(data.get("version", 1)),
            created_at=parse_datetime(data["created_at"]),
            updated_at=parse_datetime(data["updated_at"]),
            needs_author_prune=bool(data.get("needs_author_prune", False)),
        )
