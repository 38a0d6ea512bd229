"""
Per-owner SQLite database for VoltHome projects.

This module manages the SQLite files that hold every owner's projects:
- Projects with their version counters
- Rooms, groups and devices (soft-deleted, never removed)
- Partial unique indexes that back idempotent create-or-find upserts

Invariants:
    - One SQLite file per owner
    - Write transactions take the writer lock up front (BEGIN IMMEDIATE)
    - Every sqlite3 error leaving this module is translated to a SyncError
    - Work on one connection is bounded by the statement timeout

How to change safely:
    - Schema migrations must be backward compatible
    - Keep the partial unique indexes in sync with the resolver conflict targets
    - Use transactions for all write operations

Table schema:
    projects:
        - id TEXT PRIMARY KEY (UUID)
        - owner_id TEXT
        - name TEXT, note TEXT
        - version INTEGER (>= 1)
        - created_at, updated_at INTEGER (Unix ms)
        - is_deleted INTEGER

    rooms / "groups" / devices:
        - id TEXT PRIMARY KEY (UUID)
        - project_id TEXT -> projects
        - room_id TEXT -> rooms (groups only)
        - group_id TEXT -> "groups" (devices only)
        - name TEXT, name_key TEXT (casefolded name)
        - keyed INTEGER (1 when the row is matched by name, not by id)
        - meta_json TEXT
        - updated_at INTEGER (Unix ms)
        - is_deleted INTEGER
        - UNIQUE (project_id, [parent,] name_key) WHERE is_deleted = 0 AND keyed = 1
"""

from __future__ import annotations

import hashlib
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import NotFoundError, from_sqlite_error

logger = logging.getLogger(__name__)

# Rows between progress handler calls
_PROGRESS_STEPS = 1000


def first_row(cursor: sqlite3.Cursor) -> sqlite3.Row | None:
    """Drain a cursor and return its first row.

    A RETURNING statement stays open until it is fully stepped, and an
    open statement blocks COMMIT.
    """
    rows = cursor.fetchall()
    return rows[0] if rows else None


class ProjectDatabase:
    """Opens connections and transactions against per-owner SQLite files.

    Thread safety:
        A connection is created per operation and closed afterwards.
        SQLite serializes writers on the file lock; WAL mode lets readers
        proceed while a batch is being applied.

    Example:
        >>> db = ProjectDatabase("/var/lib/volthome")
        >>> with db.transaction("user-42", create=True) as conn:
        ...     conn.execute("SELECT 1")
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        statement_timeout_ms: int = 8000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the database manager.

        Args:
            data_dir: Directory for SQLite database files
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: How long to wait for the writer lock
            statement_timeout_ms: Upper bound on work done over one connection
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.data_dir = Path(data_dir)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.statement_timeout_ms = statement_timeout_ms
        self.cache_size_pages = cache_size_pages

    def _get_db_path(self, owner_id: str) -> Path:
        """Get database file path for an owner."""
        # Sanitize owner_id to prevent path traversal; the digest keeps
        # distinct owners apart after sanitizing
        safe_id = "".join(c for c in owner_id if c.isalnum() or c in "-_")[:64]
        digest = hashlib.sha256(owner_id.encode("utf-8")).hexdigest()[:12]
        return self.data_dir / f"owner_{safe_id}_{digest}.db"

    def exists(self, owner_id: str) -> bool:
        return self._get_db_path(owner_id).exists()

    @contextmanager
    def connect(self, owner_id: str, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Get a database connection for an owner.

        Args:
            owner_id: Authenticated user identifier
            create: Whether to create the database if it does not exist

        Yields:
            SQLite connection in autocommit mode

        Raises:
            NotFoundError: If the database doesn't exist and create=False
            TransientStoreError: On lock timeout or statement timeout
            ConstraintError: On schema constraint violations
        """
        db_path = self._get_db_path(owner_id)
        is_new = not db_path.exists()

        if not create and is_new:
            raise NotFoundError("Project not found")

        db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                str(db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise from_sqlite_error(e) from e

        conn.row_factory = sqlite3.Row
        deadline = time.monotonic() + self.statement_timeout_ms / 1000.0
        conn.set_progress_handler(lambda: int(time.monotonic() > deadline), _PROGRESS_STEPS)

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")
            if create:
                self._create_schema(conn)
                if is_new:
                    logger.info("Created owner database", extra={"path": str(db_path)})

            yield conn

        except sqlite3.Error as e:
            raise from_sqlite_error(e) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self,
        owner_id: str,
        create: bool = False,
        write: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """Run a block inside one transaction.

        Commits when the block exits normally and rolls back on any
        exception, including cancellation of the calling task.

        Args:
            owner_id: Authenticated user identifier
            create: Whether to create the database if it does not exist
            write: Take the writer lock immediately (BEGIN IMMEDIATE)

        Yields:
            SQLite connection with an open transaction
        """
        with self.connect(owner_id, create=create) as conn:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            try:
                yield conn
            except BaseException:
                # An interrupted statement may already have rolled back
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            -- Schema version tracking
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                name TEXT NOT NULL,
                note TEXT,
                version INTEGER NOT NULL DEFAULT 1 CHECK (version >= 1),
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_projects_owner_updated
                ON projects(owner_id, updated_at);

            CREATE TABLE IF NOT EXISTS rooms (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL REFERENCES projects(id),
                name TEXT,
                name_key TEXT,
                keyed INTEGER NOT NULL DEFAULT 0,
                meta_json TEXT,
                updated_at INTEGER NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_rooms_delta ON rooms(project_id, updated_at);
            CREATE UNIQUE INDEX IF NOT EXISTS ux_rooms_project_name_alive
                ON rooms(project_id, name_key)
                WHERE is_deleted = 0 AND keyed = 1;

            CREATE TABLE IF NOT EXISTS "groups" (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL REFERENCES projects(id),
                room_id TEXT NOT NULL REFERENCES rooms(id),
                name TEXT,
                name_key TEXT,
                keyed INTEGER NOT NULL DEFAULT 0,
                meta_json TEXT,
                updated_at INTEGER NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_groups_delta ON "groups"(project_id, updated_at);
            CREATE UNIQUE INDEX IF NOT EXISTS ux_groups_room_name_alive
                ON "groups"(project_id, room_id, name_key)
                WHERE is_deleted = 0 AND keyed = 1;

            CREATE TABLE IF NOT EXISTS devices (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL REFERENCES projects(id),
                group_id TEXT NOT NULL REFERENCES "groups"(id),
                name TEXT,
                name_key TEXT,
                keyed INTEGER NOT NULL DEFAULT 0,
                meta_json TEXT,
                updated_at INTEGER NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_devices_delta ON devices(project_id, updated_at);
            CREATE UNIQUE INDEX IF NOT EXISTS ux_devices_group_name_alive
                ON devices(project_id, group_id, name_key)
                WHERE is_deleted = 0 AND keyed = 1;

            -- Record schema version
            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)


__all__ = ["ProjectDatabase", "first_row"]
