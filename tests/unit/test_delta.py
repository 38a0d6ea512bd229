"""
Unit tests for DeltaQueryEngine.

Tests cover:
- Upsert/delete partitioning
- Inclusive cursor boundary
- Deterministic ordering
- Deleted and foreign projects
"""

import uuid

import pytest

from tests.conftest import OTHER_OWNER, OWNER
from volthome.sync_server.errors import NotFoundError
from volthome.sync_server.sync.delta import DeltaQueryEngine


def insert_room(database, project_id, updated_at, name=None, deleted=False, room_id=None):
    room_id = room_id or str(uuid.uuid4())
    with database.transaction(OWNER) as conn:
        conn.execute(
            "INSERT INTO rooms (id, project_id, name, updated_at, is_deleted) VALUES (?, ?, ?, ?, ?)",
            (room_id, project_id, name, updated_at, int(deleted)),
        )
    return room_id


class TestDeltaQueryEngine:
    """Tests for DeltaQueryEngine."""

    @pytest.fixture
    def engine(self, database, projects):
        return DeltaQueryEngine(database, projects)

    def test_empty_project(self, engine, project):
        result = engine.delta(OWNER, project.id)

        assert result.version == 1
        assert result.to_dict() == {
            "rooms": {"upsert": [], "delete": []},
            "groups": {"upsert": [], "delete": []},
            "devices": {"upsert": [], "delete": []},
            "version": 1,
            "since": "1970-01-01T00:00:00.000Z",
        }

    def test_partitions_tombstones(self, engine, database, project):
        live = insert_room(database, project.id, 100, name="Hall")
        dead = insert_room(database, project.id, 100, name="Attic", deleted=True)

        result = engine.delta(OWNER, project.id)

        assert [room.id for room in result.rooms.upsert] == [live]
        assert result.rooms.delete == [dead]

    def test_boundary_is_inclusive(self, engine, database, project):
        insert_room(database, project.id, 99)
        at = insert_room(database, project.id, 100)
        after = insert_room(database, project.id, 101)

        result = engine.delta(OWNER, project.id, since_ms=100)

        assert {room.id for room in result.rooms.upsert} == {at, after}
        assert result.to_dict()["since"] == "1970-01-01T00:00:00.100Z"

    def test_ordered_by_updated_at_then_id(self, engine, database, project):
        ids = sorted(str(uuid.uuid4()) for _ in range(3))
        insert_room(database, project.id, 200, room_id=ids[0])
        insert_room(database, project.id, 100, room_id=ids[2])
        insert_room(database, project.id, 100, room_id=ids[1])

        result = engine.delta(OWNER, project.id)

        assert [room.id for room in result.rooms.upsert] == [ids[1], ids[2], ids[0]]

    def test_pure_function_of_state(self, engine, database, project):
        for i in range(5):
            insert_room(database, project.id, 100 + i % 2, name=f"R{i}")

        assert engine.delta(OWNER, project.id, 50).to_dict() == engine.delta(
            OWNER, project.id, 50
        ).to_dict()

    def test_only_this_project(self, engine, database, projects, project):
        other = projects.create_project(OWNER, "Other")
        insert_room(database, other.id, 100)

        assert engine.delta(OWNER, project.id).rooms.upsert == []

    def test_wire_rows_are_camel_case(self, engine, database, project):
        insert_room(database, project.id, 1_704_067_200_000, name="Hall")
        row = engine.delta(OWNER, project.id).to_dict()["rooms"]["upsert"][0]

        assert set(row) == {"id", "name", "meta", "updatedAt"}
        assert row["updatedAt"] == "2024-01-01T00:00:00.000Z"

    def test_negative_since_is_epoch(self, engine, project):
        assert engine.delta(OWNER, project.id, since_ms=-5).since == 0

    def test_deleted_project_still_served(self, engine, projects, database, project):
        room = insert_room(database, project.id, 100, deleted=True)
        projects.soft_delete(OWNER, project.id)

        result = engine.delta(OWNER, project.id)
        assert result.rooms.delete == [room]
        assert result.version == 2

    def test_foreign_project(self, engine, projects, project):
        projects.create_project(OTHER_OWNER, "Theirs")
        with pytest.raises(NotFoundError):
            engine.delta(OTHER_OWNER, project.id)
