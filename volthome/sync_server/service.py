"""
Async facade over the sync engine.

The store is synchronous SQLite. Each operation runs on a worker thread
via asyncio.to_thread, which also decouples transactions from request
cancellation: if the awaiting request is cancelled (client disconnect),
the worker thread still runs its transaction to commit or rollback.

Invariants:
    - No SQLite call runs on the event loop thread
    - One operation is one transaction, whatever happens to the caller
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .config import ServerConfig
from .store.database import ProjectDatabase
from .store.models import Project, ProjectTree, now_ms
from .store.project_store import VersionedProjectStore
from .sync.coordinator import BatchApplyCoordinator, BatchResult
from .sync.default_groups import DefaultGroupResolver
from .sync.delta import DeltaQueryEngine, DeltaResult
from .sync.records import BatchRequest

logger = logging.getLogger(__name__)


class ProjectSyncService:
    """Project lifecycle, batch application and delta retrieval.

    Example:
        >>> service = ProjectSyncService(ServerConfig())
        >>> project = await service.create_project("user-42", "Home")
        >>> result = await service.apply_batch("user-42", project.id, body)
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config or ServerConfig()
        storage = self.config.storage

        self.database = ProjectDatabase(
            storage.data_dir,
            wal_mode=storage.wal_mode,
            busy_timeout_ms=storage.busy_timeout_ms,
            statement_timeout_ms=storage.statement_timeout_ms,
            cache_size_pages=storage.cache_size_pages,
        )
        self.projects = VersionedProjectStore(self.database, clock=clock)
        self.coordinator = BatchApplyCoordinator(
            self.database,
            self.projects,
            default_groups=DefaultGroupResolver(self.config.sync.default_group_name),
            max_batch_items=self.config.sync.max_batch_items,
        )
        self.deltas = DeltaQueryEngine(self.database, self.projects)

    async def create_project(
        self,
        owner_id: str,
        name: str,
        note: str | None = None,
        project_id: str | None = None,
    ) -> Project:
        return await asyncio.to_thread(
            self.projects.create_project, owner_id, name, note, project_id
        )

    async def list_projects(
        self,
        owner_id: str,
        since: int | None = None,
        limit: int = 100,
    ) -> list[Project]:
        return await asyncio.to_thread(self.projects.list_projects, owner_id, since, limit)

    async def get_project(self, owner_id: str, project_id: str) -> Project:
        return await asyncio.to_thread(self.projects.get_meta, owner_id, project_id)

    async def update_project(
        self,
        owner_id: str,
        project_id: str,
        name: str | None = None,
        note: str | None = None,
    ) -> Project:
        return await asyncio.to_thread(
            self.projects.update_meta, owner_id, project_id, name, note
        )

    async def delete_project(self, owner_id: str, project_id: str) -> Project:
        return await asyncio.to_thread(self.projects.soft_delete, owner_id, project_id)

    async def get_tree(self, owner_id: str, project_id: str) -> ProjectTree:
        return await asyncio.to_thread(self.projects.get_tree, owner_id, project_id)

    async def apply_batch(
        self,
        owner_id: str,
        project_id: str,
        batch: BatchRequest | dict[str, Any],
    ) -> BatchResult:
        """Validate and apply a batch.

        Validation runs on the calling thread since it touches no store.

        Raises:
            SyncError: Any error from the coordinator (see BatchApplyCoordinator)
        """
        if not isinstance(batch, BatchRequest):
            batch = BatchRequest.from_dict(batch, max_items=self.config.sync.max_batch_items)

        result = await asyncio.to_thread(
            self.coordinator.apply_batch, owner_id, project_id, batch
        )

        logger.info(
            "Applied batch",
            extra={
                "owner_id": owner_id,
                "project_id": project_id,
                "new_version": result.new_version,
                "rooms": len(batch.rooms),
                "groups": len(batch.groups),
                "devices": len(batch.devices),
                "conflicts": len(result.conflicts),
            },
        )
        return result

    async def delta(self, owner_id: str, project_id: str, since_ms: int = 0) -> DeltaResult:
        return await asyncio.to_thread(self.deltas.delta, owner_id, project_id, since_ms)

    def get_stats(self) -> dict[str, int]:
        return self.coordinator.get_stats()
