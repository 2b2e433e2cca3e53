"""
Shared Test Configuration and Fixtures

Sample corpora, social graphs and block builders used across the suite.
"""

import itertools
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

import pytest

# Rich wraps CLI output at 80 columns when no terminal is attached; keep long
# paths on one line so output assertions do not depend on the tmp path length.
os.environ.setdefault("COLUMNS", "200")

from feedengine.core.config.models import EngineConfig
from feedengine.core.monitoring.metrics import get_metrics_collector
from feedengine.models import ContentEntry, PostType, Visibility
from feedengine.providers import InMemoryCorpus, InMemorySocialGraph


BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

_ids = itertools.count(1)


def make_entry(
    entry_id: Optional[str] = None,
    author_id: str = "author",
    kind: Any = PostType.TEXT,
    minutes: int = 0,
    tags: Iterable[str] = (),
    score: float = 0.0,
    visibility: Any = Visibility.PUBLIC,
    engagement: Optional[Dict[str, int]] = None,
) -> ContentEntry:
    """Build a content entry `minutes` after BASE_TIME."""
    return ContentEntry(
        id=entry_id or f"e{next(_ids):04d}",
        author_id=author_id,
        kind=kind,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        tags=frozenset(tags),
        engagement_score=score,
        visibility=visibility,
        engagement=engagement or {},
    )


def block(kind: str, operator: str, value: Any, **layout: Any) -> Dict[str, Any]:
    """Raw block mapping as a client would send it."""
    data = {"kind": kind, "operator": operator, "value": value}
    data.update(layout)
    return data


class FrozenClock:
    """Settable clock for snapshot markers."""

    def __init__(self, now: datetime = BASE_TIME + timedelta(days=1)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(autouse=True)
def reset_metrics():
    """Keep the process-wide metrics collector from leaking between tests."""
    get_metrics_collector().clear_all()
    yield


@pytest.fixture
def social():
    """Social graph: viewer follows alice and bob, viewer blocked mallory."""
    graph = InMemorySocialGraph()
    graph.add_user("viewer", "alice", "bob", "carol", "mallory")
    graph.follow("viewer", "alice")
    graph.follow("viewer", "bob")
    graph.block("viewer", "mallory")
    return graph


@pytest.fixture
def corpus():
    return InMemoryCorpus()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def five_post_corpus():
    """Two art images by a followed author, plus three entries that must not match."""
    return InMemoryCorpus([
        make_entry("art-1", "alice", PostType.IMAGE, minutes=10, tags=["art"]),
        make_entry("art-2", "alice", PostType.IMAGE, minutes=20, tags=["#Art", "sketch"]),
        make_entry("blocked-art", "mallory", PostType.IMAGE, minutes=30, tags=["art"]),
        make_entry("video-art", "alice", PostType.VIDEO, minutes=40, tags=["art"]),
        make_entry("travel", "alice", PostType.IMAGE, minutes=50, tags=["travel"]),
    ])


@pytest.fixture
def image_art_blocks():
    return [
        block("post-type", "equals", ["image"]),
        block("tag", "contains", ["art"]),
    ]


@pytest.fixture
def fast_config():
    """Engine config with no preview debounce and a single cache shard."""
    return EngineConfig(
        builder={"preview_debounce_ms": 0},
        cache={"shards": 1},
        workers={"max_workers": 4},
    )
