"""
Domain models shared by every layer of the engine.

ContentEntry is owned by the content corpus collaborator and is read-only
here; ResultPage is what the engine hands back to the presentation layer.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Union

from dateutil import parser as date_parser


class PostType(Enum):
    """Kinds of content a corpus entry can be."""
    TEXT = "text"
    IMAGE = "image"
    GALLERY = "gallery"
    VIDEO = "video"
    SONG = "song"

    @classmethod
    def parse(cls, value: Union[str, "PostType"]) -> "PostType":
        """
        Parse a post type, accepting the storage aliases.

        Raises:
            ValueError: If the value names no post type
        """
        if isinstance(value, PostType):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        normalized = _POST_TYPE_ALIASES.get(normalized, normalized)
        return cls(normalized)


_POST_TYPE_ALIASES = {
    "text_short": "text",
    "text_long": "text",
    "image_single": "image",
    "image_gallery": "gallery",
}


class Visibility(Enum):
    """Who may see an entry, before any user filter runs."""
    PUBLIC = "public"
    FOLLOWERS_ONLY = "followers-only"
    PRIVATE = "private"

    @classmethod
    def parse(cls, value: Union[str, "Visibility"]) -> "Visibility":
        if isinstance(value, Visibility):
            return value
        normalized = str(value).strip().lower().replace("_", "-")
        if normalized == "followers":
            normalized = "followers-only"
        return cls(normalized)


def normalize_tag(tag: str) -> str:
    """Lowercase a tag and drop a leading '#'."""
    return str(tag).strip().lstrip("#").lower()


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_datetime(value: Union[str, int, float, datetime]) -> datetime:
    """
    Parse an ISO string, epoch seconds or datetime into an aware datetime.

    Raises:
        ValueError: If the value cannot be interpreted as a point in time
    """
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, bool):
        raise ValueError(f"Not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return ensure_aware(date_parser.parse(value))
        except (date_parser.ParserError, OverflowError) as e:
            raise ValueError(f"Unparseable date {value!r}: {e}") from e
    raise ValueError(f"Not a timestamp: {value!r}")


@dataclass(frozen=True, order=True)
class CursorPosition:
    """Sort key of a corpus entry: `(created_at, id)`, compared lexicographically."""
    created_at: datetime
    entry_id: str


@dataclass(frozen=True)
class ContentEntry:
    """
    A single piece of content from the corpus.

    Attributes:
        id: Corpus-wide unique identifier
        author_id: Identifier of the authoring user
        kind: Post type
        tags: Normalised hashtags
        created_at: Creation time (timezone-aware)
        engagement_score: Aggregate engagement used by threshold filters
        visibility: Audience restriction enforced by the safety predicate
        engagement: Per-metric counts (likes, comments, reposts, views)
    """
    id: str
    author_id: str
    kind: PostType
    created_at: datetime
    tags: FrozenSet[str] = frozenset()
    engagement_score: float = 0.0
    visibility: Visibility = Visibility.PUBLIC
    engagement: Mapping[str, int] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "kind", PostType.parse(self.kind))
        object.__setattr__(self, "visibility", Visibility.parse(self.visibility))
        object.__setattr__(self, "created_at", ensure_aware(self.created_at))
        object.__setattr__(self, "tags", frozenset(normalize_tag(t) for t in self.tags if normalize_tag(t)))

    @property
    def position(self) -> CursorPosition:
        """This entry's place in the reverse-chronological ordering."""
        return CursorPosition(self.created_at, self.id)

    def metric(self, name: str) -> float:
        """Engagement value for a named metric; 'score' is the aggregate."""
        if name == "score":
            return self.engagement_score
        return float(self.engagement.get(name, 0))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContentEntry":
        """Build an entry from a plain mapping (fixtures, JSON payloads)."""
        return cls(
            id=str(data["id"]),
            author_id=str(data["author_id"]),
            kind=PostType.parse(data.get("kind", "text")),
            created_at=parse_datetime(data["created_at"]),
            tags=frozenset(data.get("tags", ())),
            engagement_score=float(data.get("engagement_score", 0.0)),
            visibility=Visibility.parse(data.get("visibility", "public")),
            engagement=dict(data.get("engagement", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author_id": self.author_id,
            "kind": self.kind.value,
            "created_at": self.created_at.isoformat(),
            "tags": sorted(self.tags),
            "engagement_score": self.engagement_score,
            "visibility": self.visibility.value,
            "engagement": dict(self.engagement),
        }


@dataclass
class ResultPage:
    """
    One page of a feed.

    Attributes:
        items: Matching entries, newest first
        next_cursor: Opaque token for the following page, None when exhausted
        has_more: Whether another page may hold matches
        degraded: The time budget ran out before the page was complete
        scanned: Number of corpus candidates examined
    """
    items: List[ContentEntry] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False
    degraded: bool = False
    scanned: int = 0

    @classmethod
    def empty(cls) -> "ResultPage":
        return cls(items=[], next_cursor=None, has_more=False)

    @property
    def item_ids(self) -> List[str]:
        return [item.id for item in self.items]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "next_cursor": self.next_cursor,
            "has_more": self.has_more,
            "degraded": self.degraded,
        }


def sort_newest_first(entries: Iterable[ContentEntry]) -> List[ContentEntry]:
    """Order entries by `(created_at, id)` descending."""
    return sorted(entries, key=lambda e: (e.created_at, e.id), reverse=True)


