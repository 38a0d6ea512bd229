"""
Batch apply coordinator for VoltHome sync.

The coordinator applies one client batch to one project as a single
SQLite write transaction:

1. Load the project (missing, foreign or tombstoned -> NotFoundError)
2. Soft-delete devices, then groups, then rooms
3. Upsert rooms, then groups, then devices (default groups resolved first)
4. Bump the project version once
5. Commit, then report staleness against the submitted baseVersion

Invariants:
    - A batch is all-or-nothing; any error rolls back every kind
    - The version advances by exactly one per applied batch
    - Every row written by a batch gets the same timestamp, never earlier
      than the project's previous updated_at
    - Staleness is reported, never enforced (last writer wins)

How to change safely:
    - Keep deletes child-to-parent and upserts parent-to-child
    - Do not move the version bump out of the batch transaction
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..errors import NotFoundError, SyncError
from ..store.database import ProjectDatabase
from ..store.models import EntityKind
from ..store.project_store import VersionedProjectStore
from .default_groups import DefaultGroupResolver
from .records import BatchRequest
from .resolvers import DeviceResolver, EntityUpsertResolver, GroupResolver, RoomResolver

logger = logging.getLogger(__name__)

STALE_REASON = "stale baseVersion; server applied anyway"

# Parent-to-child; deletes walk it backwards
APPLY_ORDER = (EntityKind.ROOMS, EntityKind.GROUPS, EntityKind.DEVICES)


@dataclass
class Conflict:
    """Informational staleness entry for one submitted item."""

    entity: str
    id: str
    reason: str = STALE_REASON

    def to_dict(self) -> dict[str, str]:
        return {"entity": self.entity, "id": self.id, "reason": self.reason}


@dataclass
class BatchResult:
    """Outcome of an applied batch.

    Attributes:
        new_version: Project version after this batch
        conflicts: Staleness entries (empty unless baseVersion was behind)
        upserted: Resolved ids of upserted rows, per kind
        deleted: Ids that were tombstoned, per kind
    """

    new_version: int
    conflicts: list[Conflict] = field(default_factory=list)
    upserted: dict[str, list[str]] = field(default_factory=dict)
    deleted: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "newVersion": self.new_version,
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
        }


class BatchApplyCoordinator:
    """Applies client batches atomically.

    Thread safety:
        Each call opens its own connection. Concurrent batches against the
        same owner serialize on the SQLite writer lock (BEGIN IMMEDIATE).

    Example:
        >>> coordinator = BatchApplyCoordinator(database, projects)
        >>> result = coordinator.apply_batch("user-42", project_id, {
        ...     "baseVersion": 1,
        ...     "ops": {"rooms": {"upsert": [{"name": "Kitchen"}]}},
        ... })
        >>> result.new_version
        2
    """

    def __init__(
        self,
        database: ProjectDatabase,
        projects: VersionedProjectStore,
        default_groups: DefaultGroupResolver | None = None,
        max_batch_items: int | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            database: Per-owner database manager
            projects: Project version store
            default_groups: Default group resolver for room-hinted devices
            max_batch_items: Upper bound on items per batch (None = unbounded)
            clock: Time source in Unix ms (defaults to the project store's)
        """
        self.database = database
        self.projects = projects
        self.max_batch_items = max_batch_items
        self.clock = clock or projects.clock
        self.resolvers: dict[EntityKind, EntityUpsertResolver] = {
            EntityKind.ROOMS: RoomResolver(),
            EntityKind.GROUPS: GroupResolver(),
            EntityKind.DEVICES: DeviceResolver(default_groups or DefaultGroupResolver()),
        }

        # Batches for different owners run on concurrent worker threads
        self._stats_lock = threading.Lock()
        self._applied_count = 0
        self._failed_count = 0
        self._stale_count = 0

    def apply_batch(
        self,
        owner_id: str,
        project_id: str,
        batch: BatchRequest | dict[str, Any],
    ) -> BatchResult:
        """Apply a batch to a project.

        Args:
            owner_id: Authenticated user identifier
            project_id: Target project
            batch: Parsed BatchRequest or the raw request body

        Returns:
            BatchResult with the new version and any staleness conflicts

        Raises:
            ValidationError: Malformed request
            ReferentialError: Bad cross-entity reference
            GroupUnresolvedError: Device without a resolvable group
            NotFoundError: Project missing, foreign or tombstoned
            TransientStoreError: Store busy or timed out (safe to retry)
            ConstraintError: Store constraint violation
        """
        if not isinstance(batch, BatchRequest):
            batch = BatchRequest.from_dict(batch, max_items=self.max_batch_items)

        try:
            result = self._apply(owner_id, project_id, batch)
        except SyncError:
            with self._stats_lock:
                self._failed_count += 1
            raise

        with self._stats_lock:
            self._applied_count += 1
            if result.conflicts:
                self._stale_count += 1
        if result.conflicts:
            logger.warning(
                "Applied stale batch",
                extra={
                    "owner_id": owner_id,
                    "project_id": project_id,
                    "base_version": batch.base_version,
                    "new_version": result.new_version,
                    "conflicts": len(result.conflicts),
                },
            )
        return result

    def _apply(self, owner_id: str, project_id: str, batch: BatchRequest) -> BatchResult:
        upserted: dict[str, list[str]] = {}
        deleted: dict[str, list[str]] = {}

        with self.database.transaction(owner_id) as conn:
            project = self.projects.get_meta(owner_id, project_id, conn=conn)
            if project.is_deleted:
                raise NotFoundError("Project not found", resource_id=project_id)

            now = max(self.clock(), project.updated_at)

            for kind in reversed(APPLY_ORDER):
                deleted[kind.value] = self.resolvers[kind].soft_delete(
                    conn, project_id, batch.ops(kind).delete, now
                )

            for kind in APPLY_ORDER:
                rows = self.resolvers[kind].upsert(conn, project_id, batch.ops(kind).upsert, now)
                upserted[kind.value] = [row.id for row in rows]

            new_version = self.projects.bump_version(owner_id, project_id, conn=conn, now=now)

        return BatchResult(
            new_version=new_version,
            conflicts=self._conflicts(batch, new_version, upserted),
            upserted=upserted,
            deleted=deleted,
        )

    def _conflicts(
        self,
        batch: BatchRequest,
        new_version: int,
        upserted: dict[str, list[str]],
    ) -> list[Conflict]:
        if batch.base_version is None or batch.base_version >= new_version - 1:
            return []

        conflicts = []
        for kind in APPLY_ORDER:
            for entity_id in upserted[kind.value]:
                conflicts.append(Conflict(entity=kind.value, id=entity_id))
            for entity_id in batch.ops(kind).delete:
                conflicts.append(Conflict(entity=kind.value, id=entity_id))
        return conflicts

    def get_stats(self) -> dict[str, int]:
        with self._stats_lock:
            return {
                "applied": self._applied_count,
                "failed": self._failed_count,
                "stale": self._stale_count,
            }
