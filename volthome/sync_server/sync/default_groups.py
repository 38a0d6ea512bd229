"""
Default group resolution.

Devices submitted with a room hint but no group are attached to the room's
reserved default group. This module guarantees that exactly one live
default group exists per (project, room).

Invariants:
    - At most one live default group per (project, room)
    - Resolving the same room twice returns the same group id
    - Reusing an existing default group does not touch its updated_at

How to change safely:
    - The find-or-create must stay a single INSERT ... ON CONFLICT against
      ux_groups_room_name_alive; a SELECT followed by an INSERT races
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable

from ..store.database import first_row
from ..store.models import EntityKind, name_key, new_id
from .lookups import require_live

logger = logging.getLogger(__name__)

DEFAULT_GROUP_NAME = "__default__"


class DefaultGroupResolver:
    """Finds or creates the reserved default group of a room.

    Example:
        >>> resolver = DefaultGroupResolver()
        >>> resolver.resolve(conn, project_id, [room_id], now)
        {'3f2c...': '9a41...'}
    """

    def __init__(self, group_name: str = DEFAULT_GROUP_NAME) -> None:
        if not name_key(group_name):
            raise ValueError("Default group name must not be blank")
        self.group_name = group_name
        self.group_key = name_key(group_name)

    def check_rooms(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        room_ids: Iterable[str],
        reason: str | None = None,
    ) -> None:
        """Raise ReferentialError unless every room is live in the project."""
        references = [("devices", None, room_id) for room_id in sorted(set(room_ids))]
        if references:
            require_live(conn, EntityKind.ROOMS, project_id, references, reason=reason)

    def resolve(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        room_ids: Iterable[str],
        now: int,
    ) -> dict[str, str]:
        """Map each room to its default group, creating groups that are missing.

        Args:
            conn: Open write transaction
            project_id: Project the rooms belong to
            room_ids: Rooms needing a default group
            now: Timestamp for newly created groups (Unix ms)

        Returns:
            Mapping of room id to default group id

        Raises:
            ReferentialError: If a room is not a live room of the project
        """
        rooms = sorted(set(room_ids))
        self.check_rooms(conn, project_id, rooms)

        resolved: dict[str, str] = {}
        for room_id in rooms:
            minted = new_id()
            row = first_row(
                conn.execute(
                    """
                    INSERT INTO "groups" (id, project_id, room_id, name, name_key, keyed,
                                          meta_json, updated_at, is_deleted)
                    VALUES (?, ?, ?, ?, ?, 1, NULL, ?, 0)
                    ON CONFLICT (project_id, room_id, name_key)
                    WHERE is_deleted = 0 AND keyed = 1
                    DO UPDATE SET is_deleted = 0
                    RETURNING id
                    """,
                    (minted, project_id, room_id, self.group_name, self.group_key, now),
                )
            )
            resolved[room_id] = row["id"]
            if row["id"] == minted:
                logger.debug(
                    "Created default group",
                    extra={"project_id": project_id, "room_id": room_id, "group_id": minted},
                )

        return resolved
