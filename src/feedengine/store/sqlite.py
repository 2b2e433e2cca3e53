"""
SQLite Feed Repository

WAL-mode SQLite persistence for feed definitions with a small connection
pool. Version checks run inside the UPDATE statement itself
(`... WHERE id = ? AND version = ?`), so the compare-and-swap is atomic even
across processes sharing the database file.
"""

import json
import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Sequence, Union

from feedengine.core.exceptions import DuplicateFeedNameError, StoreUnavailableError
from feedengine.core.monitoring.metrics import get_metrics_collector, time_operation
from feedengine.store.models import FeedDefinition
from feedengine.store.repository import FeedRepository, VersionedWrite


logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS feeds (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL,
    name_key TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    filter_blocks TEXT NOT NULL DEFAULT '[]',
    is_default INTEGER NOT NULL DEFAULT 0,
    version INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    needs_author_prune INTEGER NOT NULL DEFAULT 0
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_feeds_owner_name ON feeds (owner_id, name_key);
CREATE INDEX IF NOT EXISTS idx_feeds_owner ON feeds (owner_id, created_at);
"""


class ConnectionPool:
    """
    Thread-safe connection pool for SQLite database connections.
    """

    def __init__(self, db_path: Path, max_connections: int = 5):
        """
        Initialize connection pool.

        Args:
            db_path: Database file path
            max_connections: Maximum number of connections in pool
        """
        self.db_path = db_path
        self.max_connections = max_connections
        self._pool = queue.Queue(maxsize=max_connections)
        self._created_connections = 0
        self._lock = threading.Lock()

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new database connection."""
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=30.0,
            check_same_thread=False,
            isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    @contextmanager
    def get_connection(self):
        """Get connection from pool."""
        connection = None
        try:
            try:
                connection = self._pool.get_nowait()
            except queue.Empty:
                with self._lock:
                    create = self._created_connections < self.max_connections
                    if create:
                        self._created_connections += 1
                if create:
                    connection = self._create_connection()
                else:
                    connection = self._pool.get(timeout=5.0)

            yield connection

        finally:
            if connection is not None:
                try:
                    self._pool.put_nowait(connection)
                except queue.Full:
                    connection.close()
                    with self._lock:
                        self._created_connections -= 1

    def close_all(self):
        """Close all connections in the pool."""
        while True:
            try:
                conn = self._pool.get_nowait()
            except queue.Empty:
                break
            conn.close()

        with self._lock:
            self._created_connections = 0


class SqliteFeedRepository(FeedRepository):
    """
    Feed repository backed by a SQLite database file.

    Every backend failure is raised as StoreUnavailableError so callers can
    queue the write and retry later.
    """

    def __init__(self, db_path: Union[str, Path], max_connections: int = 5):
        """
        Initialize the repository and create the schema if needed.

        Args:
            db_path: Path to the database file; parent directories are created
            max_connections: Maximum pooled connections
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection_pool = ConnectionPool(self.db_path, max_connections)

        self._metrics = get_metrics_collector()
        self._metrics.counter("store.operations", "Feed store operations")
        self._metrics.timer("store.operation_time", "Feed store operation time")

        with self._connection() as conn:
            conn.executescript(SCHEMA)
        logger.info(f"Feed store opened at {self.db_path}")

    def close(self) -> None:
        """Close all database connections."""
        self._connection_pool.close_all()

    @contextmanager
    def _transaction(self):
        """Context manager for atomic database operations with metrics."""
        with time_operation("store.operation_time"):
            try:
                with self._connection_pool.get_connection() as conn:
                    conn.execute("BEGIN IMMEDIATE")
                    try:
                        yield conn
                        conn.execute("COMMIT")
                        self._metrics.increment("store.operations")
                    except BaseException:
                        conn.execute("ROLLBACK")
                        self._metrics.increment("store.errors")
                        raise
            except sqlite3.IntegrityError:
                raise
            except (sqlite3.Error, queue.Empty) as e:
                raise StoreUnavailableError(f"Feed database unavailable: {e}", cause=e) from e

    @contextmanager
    def _connection(self):
        with time_operation("store.operation_time"):
            try:
                with self._connection_pool.get_connection() as conn:
                    yield conn
            except (sqlite3.Error, queue.Empty) as e:
                raise StoreUnavailableError(f"Feed database unavailable: {e}", cause=e) from e

    @staticmethod
    def _row_to_feed(row: sqlite3.Row) -> FeedDefinition:
        data = dict(row)
        data["filter_blocks"] = json.loads(data["filter_blocks"])
        return FeedDefinition.from_dict(data)

    @staticmethod
    def _feed_params(feed: FeedDefinition) -> dict:
        return {
            "id": feed.id,
            "owner_id": feed.owner_id,
            "name": feed.name,
            "name_key": feed.name_key,
            "description": feed.description,
            "filter_blocks": json.dumps(feed.blocks_to_list(), sort_keys=True),
            "is_default": int(feed.is_default),
            "version": feed.version,
            "created_at": feed.created_at.isoformat(),
            "updated_at": feed.updated_at.isoformat(),
            "needs_author_prune": int(feed.needs_author_prune),
        }

    def get(self, feed_id: str) -> Optional[FeedDefinition]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,)).fetchone()
        return self._row_to_feed(row) if row else None

    def list_for_owner(self, owner_id: str) -> List[FeedDefinition]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM feeds WHERE owner_id = ? ORDER BY created_at, id",
                (owner_id,)
            ).fetchall()
        return [self._row_to_feed(row) for row in rows]

    def insert(self, feed: FeedDefinition) -> None:
        try:
            with self._transaction() as conn:
                conn.execute("""
                    INSERT INTO feeds (
                        id, owner_id, name, name_key, description, filter_blocks,
                        is_default, version, created_at, updated_at, needs_author_prune
                    ) VALUES (
                        :id, :owner_id, :name, :name_key, :description, :filter_blocks,
                        :is_default, :version, :created_at, :updated_at, :needs_author_prune
                    )
                """, self._feed_params(feed))
        except sqlite3.IntegrityError as e:
            raise DuplicateFeedNameError(feed.name, owner_id=feed.owner_id, cause=e) from e

    def compare_and_swap(self, writes: Sequence[VersionedWrite]) -> bool:
        try:
            with self._transaction() as conn:
                for feed, expected in writes:
                    params = self._feed_params(feed)
                    params["expected_version"] = expected
                    cursor = conn.execute("""
                        UPDATE feeds SET
                            name = :name, name_key = :name_key, description = :description,
                            filter_blocks = :filter_blocks, is_default = :is_default,
                            version = :version, updated_at = :updated_at,
                            needs_author_prune = :needs_author_prune
                        WHERE id = :id AND version = :expected_version
                    """, params)
                    if cursor.rowcount != 1:
                        raise _VersionMismatch()
        except _VersionMismatch:
            return False
        except sqlite3.IntegrityError as e:
            feed = writes[0][0]
            raise DuplicateFeedNameError(feed.name, owner_id=feed.owner_id, cause=e) from e
        return True

    def delete(self, feed_id: str, expected_version: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM feeds WHERE id = ? AND version = ?",
                (feed_id, expected_version)
            )
            return cursor.rowcount == 1

    def mark_needs_author_prune(self, feed_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE feeds SET needs_author_prune = 1 WHERE id = ?",
                (feed_id,)
            )
            return cursor.rowcount == 1


class _VersionMismatch(Exception):
    """Rolls back a compare-and-swap transaction when a row has moved on."""
