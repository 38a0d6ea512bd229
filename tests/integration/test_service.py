"""
Integration tests for the async ProjectSyncService.

Tests cover:
- Project lifecycle through worker threads
- Batch apply from a raw request body
- Delta after batches
- Batch logging
"""

import asyncio
import logging

import pytest

from tests.conftest import OWNER, ManualClock
from volthome.sync_server.config import ServerConfig, StorageConfig, SyncConfig
from volthome.sync_server.errors import NotFoundError, ValidationError
from volthome.sync_server.service import ProjectSyncService


class TestProjectSyncService:
    """Tests for ProjectSyncService."""

    @pytest.fixture
    def service(self, data_dir):
        config = ServerConfig(
            storage=StorageConfig(data_dir=data_dir, wal_mode=False),
            sync=SyncConfig(max_batch_items=50),
        )
        return ProjectSyncService(config, clock=ManualClock())

    @pytest.mark.asyncio
    async def test_project_lifecycle(self, service):
        project = await service.create_project(OWNER, "Home", note="Main")
        assert project.version == 1

        updated = await service.update_project(OWNER, project.id, name="Cabin")
        assert updated.name == "Cabin"
        assert updated.version == 2

        listed = await service.list_projects(OWNER)
        assert [p.id for p in listed] == [project.id]

        deleted = await service.delete_project(OWNER, project.id)
        assert deleted.is_deleted is True

        fetched = await service.get_project(OWNER, project.id)
        assert fetched.is_deleted is True

        with pytest.raises(NotFoundError):
            await service.get_tree(OWNER, project.id)

    @pytest.mark.asyncio
    async def test_batch_and_delta(self, service, caplog):
        project = await service.create_project(OWNER, "Home")

        with caplog.at_level(logging.INFO, logger="volthome.sync_server.service"):
            result = await service.apply_batch(
                OWNER,
                project.id,
                {"baseVersion": 1, "ops": {"rooms": {"upsert": [{"name": "Hall"}]}}},
            )

        assert result.new_version == 2
        record = next(r for r in caplog.records if r.message == "Applied batch")
        assert record.new_version == 2
        assert record.rooms == 1

        delta = await service.delta(OWNER, project.id, 0)
        assert [room.name for room in delta.rooms.upsert] == ["Hall"]
        assert delta.version == 2

    @pytest.mark.asyncio
    async def test_batch_limit_from_config(self, service):
        project = await service.create_project(OWNER, "Home")
        rooms = [{"name": f"R{i}"} for i in range(51)]
        with pytest.raises(ValidationError):
            await service.apply_batch(OWNER, project.id, {"ops": {"rooms": {"upsert": rooms}}})

    @pytest.mark.asyncio
    async def test_concurrent_batches(self, service):
        project = await service.create_project(OWNER, "Home")

        results = await asyncio.gather(
            *(
                service.apply_batch(
                    OWNER, project.id, {"ops": {"rooms": {"upsert": [{"name": f"Room {n}"}]}}}
                )
                for n in range(5)
            )
        )

        assert sorted(r.new_version for r in results) == [2, 3, 4, 5, 6]
        assert service.get_stats()["applied"] == 5

    @pytest.mark.asyncio
    async def test_missing_project(self, service):
        with pytest.raises(NotFoundError):
            await service.get_project(OWNER, "00000000-0000-0000-0000-000000000000")
