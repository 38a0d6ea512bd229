"""
Versioned project store.

The project row is the single source of truth for optimistic concurrency.
Its version counter advances by exactly one per accepted batch or metadata
change, always through a single conditional UPDATE ... RETURNING.

Invariants:
    - version starts at 1 and only ever increases
    - updated_at never moves backwards for a project
    - Missing and foreign projects are indistinguishable (NotFoundError)

How to change safely:
    - Never split the version bump into a read followed by a write
    - Keep every query filtered on owner_id
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from ..errors import NotFoundError
from .database import ProjectDatabase, first_row
from .models import Device, Group, Project, ProjectTree, Room, new_id, now_ms

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 200

_PROJECT_COLUMNS = "id, owner_id, name, note, version, created_at, updated_at, is_deleted"


class VersionedProjectStore:
    """Project lifecycle and version counter.

    Every method takes an optional open connection so that the batch
    coordinator can run it inside its own transaction. Without one, the
    method opens and commits its own transaction.
    """

    def __init__(
        self,
        database: ProjectDatabase,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.database = database
        self.clock = clock

    @contextmanager
    def _use(
        self,
        owner_id: str,
        conn: sqlite3.Connection | None,
        write: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.database.transaction(owner_id, write=write) as own:
            yield own

    def create_project(
        self,
        owner_id: str,
        name: str,
        note: str | None = None,
        project_id: str | None = None,
    ) -> Project:
        """Create a project at version 1.

        Args:
            owner_id: Authenticated user identifier
            name: Display name
            note: Optional note
            project_id: Optional client-chosen id (generated if not provided)

        Returns:
            Created Project

        Raises:
            ConstraintError: If the id is already taken
        """
        project_id = project_id or new_id()
        now = self.clock()

        with self.database.transaction(owner_id, create=True) as conn:
            row = first_row(conn.execute(
                f"""
                INSERT INTO projects (id, owner_id, name, note, version,
                                      created_at, updated_at, is_deleted)
                VALUES (?, ?, ?, ?, 1, ?, ?, 0)
                RETURNING {_PROJECT_COLUMNS}
                """,
                (project_id, owner_id, name, note, now, now),
            ))

        project = Project.from_row(row)
        logger.info(
            "Created project",
            extra={"owner_id": owner_id, "project_id": project.id},
        )
        return project

    def list_projects(
        self,
        owner_id: str,
        since: int | None = None,
        limit: int = 100,
    ) -> list[Project]:
        """List an owner's projects, tombstoned ones included.

        Args:
            owner_id: Authenticated user identifier
            since: Only projects updated strictly after this (Unix ms)
            limit: Page size, clamped to 1..200

        Returns:
            Projects ordered by updated_at ascending
        """
        limit = max(1, min(int(limit), MAX_LIST_LIMIT))
        if not self.database.exists(owner_id):
            return []

        with self.database.transaction(owner_id, write=False) as conn:
            rows = conn.execute(
                f"""
                SELECT {_PROJECT_COLUMNS} FROM projects
                WHERE owner_id = ? AND (? IS NULL OR updated_at > ?)
                ORDER BY updated_at ASC, id ASC
                LIMIT ?
                """,
                (owner_id, since, since, limit),
            ).fetchall()
        return [Project.from_row(row) for row in rows]

    def get_meta(
        self,
        owner_id: str,
        project_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> Project:
        """Load a project owned by the caller.

        Raises:
            NotFoundError: If the project is missing or owned by someone else
        """
        with self._use(owner_id, conn, write=False) as c:
            row = first_row(c.execute(
                f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = ? AND owner_id = ?",
                (project_id, owner_id),
            ))
        if row is None:
            raise NotFoundError("Project not found", resource_id=project_id)
        return Project.from_row(row)

    def update_meta(
        self,
        owner_id: str,
        project_id: str,
        name: str | None = None,
        note: str | None = None,
    ) -> Project:
        """Change name and/or note. Null fields keep their stored values."""
        with self.database.transaction(owner_id) as conn:
            row = first_row(conn.execute(
                f"""
                UPDATE projects
                SET name = COALESCE(?, name),
                    note = COALESCE(?, note),
                    version = version + 1,
                    updated_at = MAX(updated_at, ?)
                WHERE id = ? AND owner_id = ? AND is_deleted = 0
                RETURNING {_PROJECT_COLUMNS}
                """,
                (name, note, self.clock(), project_id, owner_id),
            ))
        if row is None:
            raise NotFoundError("Project not found", resource_id=project_id)
        return Project.from_row(row)

    def bump_version(
        self,
        owner_id: str,
        project_id: str,
        conn: sqlite3.Connection | None = None,
        now: int | None = None,
    ) -> int:
        """Atomically increment the version and return the new value.

        Args:
            owner_id: Authenticated user identifier
            project_id: Project identifier
            conn: Open write transaction to run in
            now: Mutation timestamp (defaults to the store clock)

        Returns:
            Post-increment version

        Raises:
            NotFoundError: If the project is missing, foreign or tombstoned
        """
        now = self.clock() if now is None else now
        with self._use(owner_id, conn) as c:
            row = first_row(c.execute(
                """
                UPDATE projects
                SET version = version + 1, updated_at = MAX(updated_at, ?)
                WHERE id = ? AND owner_id = ? AND is_deleted = 0
                RETURNING version
                """,
                (now, project_id, owner_id),
            ))
        if row is None:
            raise NotFoundError("Project not found", resource_id=project_id)
        return row["version"]

    def soft_delete(self, owner_id: str, project_id: str) -> Project:
        """Tombstone a project and bump its version."""
        with self.database.transaction(owner_id) as conn:
            row = first_row(conn.execute(
                f"""
                UPDATE projects
                SET is_deleted = 1,
                    version = version + 1,
                    updated_at = MAX(updated_at, ?)
                WHERE id = ? AND owner_id = ?
                RETURNING {_PROJECT_COLUMNS}
                """,
                (self.clock(), project_id, owner_id),
            ))
        if row is None:
            raise NotFoundError("Project not found", resource_id=project_id)

        logger.info(
            "Deleted project",
            extra={"owner_id": owner_id, "project_id": project_id, "version": row["version"]},
        )
        return Project.from_row(row)

    def get_tree(self, owner_id: str, project_id: str) -> ProjectTree:
        """Snapshot of the live hierarchy.

        Groups under tombstoned rooms and devices under hidden groups are
        left out even when their own rows are live.
        """
        with self.database.transaction(owner_id, write=False) as conn:
            project = self.get_meta(owner_id, project_id, conn=conn)
            if project.is_deleted:
                raise NotFoundError("Project not found", resource_id=project_id)

            rooms = conn.execute(
                """
                SELECT * FROM rooms
                WHERE project_id = ? AND is_deleted = 0
                ORDER BY updated_at ASC, id ASC
                """,
                (project_id,),
            ).fetchall()
            groups = conn.execute(
                """
                SELECT g.* FROM "groups" g
                JOIN rooms r ON r.id = g.room_id AND r.is_deleted = 0
                WHERE g.project_id = ? AND g.is_deleted = 0
                ORDER BY g.updated_at ASC, g.id ASC
                """,
                (project_id,),
            ).fetchall()
            devices = conn.execute(
                """
                SELECT d.* FROM devices d
                JOIN "groups" g ON g.id = d.group_id AND g.is_deleted = 0
                JOIN rooms r ON r.id = g.room_id AND r.is_deleted = 0
                WHERE d.project_id = ? AND d.is_deleted = 0
                ORDER BY d.updated_at ASC, d.id ASC
                """,
                (project_id,),
            ).fetchall()

        return ProjectTree(
            project=project,
            rooms=[Room.from_row(row) for row in rooms],
            groups=[Group.from_row(row) for row in groups],
            devices=[Device.from_row(row) for row in devices],
        )


__all__ = ["VersionedProjectStore", "MAX_LIST_LIMIT"]
