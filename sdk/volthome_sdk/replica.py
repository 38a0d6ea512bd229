"""
Local replica of one project, kept current through delta pulls.

A replica holds the rows a client has seen, the project version they
correspond to, and the ``since`` cursor for the next pull. Deltas are
inclusive of the cursor, so the same row may arrive twice; applying it
again is harmless because rows are keyed by id.

Invariants:
    - The cursor never moves backwards
    - Tombstones remove rows but do not move the cursor
"""

from __future__ import annotations

import logging
from typing import Any

from .client import Batch, BatchResult, SyncClient

logger = logging.getLogger(__name__)

KINDS = ("rooms", "groups", "devices")


class LocalReplica:
    """In-memory mirror of a project's live hierarchy.

    Example:
        >>> replica = LocalReplica(project_id)
        >>> await replica.pull(client)
        >>> await replica.push(client, Batch().upsert_room("Hall"))
    """

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        self.rooms: dict[str, dict[str, Any]] = {}
        self.groups: dict[str, dict[str, Any]] = {}
        self.devices: dict[str, dict[str, Any]] = {}
        self.version = 0
        self.cursor: str | None = None

    def table(self, kind: str) -> dict[str, dict[str, Any]]:
        return getattr(self, kind)

    def apply_delta(self, delta: dict[str, Any]) -> int:
        """Merge a delta response into the replica.

        Args:
            delta: Body returned by the delta endpoint

        Returns:
            Number of rows upserted or removed
        """
        changed = 0
        for kind in KINDS:
            section = delta.get(kind) or {}
            rows = self.table(kind)
            for row in section.get("upsert", []):
                rows[row["id"]] = row
                changed += 1
                # ISO-8601 with a fixed format sorts chronologically
                if self.cursor is None or row["updatedAt"] > self.cursor:
                    self.cursor = row["updatedAt"]
            for row_id in section.get("delete", []):
                if rows.pop(row_id, None) is not None:
                    changed += 1

        self.version = max(self.version, delta.get("version", 0))
        return changed

    async def pull(self, client: SyncClient) -> int:
        """Fetch and apply everything changed since the cursor."""
        delta = await client.delta(self.project_id, since=self.cursor)
        changed = self.apply_delta(delta)
        logger.debug(
            "Pulled delta",
            extra={"project_id": self.project_id, "changed": changed, "version": self.version},
        )
        return changed

    async def push(self, client: SyncClient, batch: Batch) -> BatchResult:
        """Apply a batch built against the replica's version, then pull.

        A replica that has never pulled sends no base version.
        """
        result = await client.apply_batch(
            self.project_id, batch, base_version=self.version or None
        )
        if result.conflicts:
            logger.info(
                "Batch applied over a stale base",
                extra={"project_id": self.project_id, "conflicts": len(result.conflicts)},
            )
        await self.pull(client)
        return result

    def children(self, kind: str, parent_id: str) -> list[dict[str, Any]]:
        """Groups of a room, or devices of a group."""
        parent_key = {"groups": "roomId", "devices": "groupId"}[kind]
        return [row for row in self.table(kind).values() if row.get(parent_key) == parent_id]
