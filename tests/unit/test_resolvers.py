"""
Unit tests for entity upsert resolvers.

Tests cover:
- Upsert by id (merge, resurrection, cross-project rejection)
- Upsert without id (find-or-create by natural key)
- Soft delete
- Parent checks and device group resolution
"""

import uuid

import pytest

from tests.conftest import OWNER
from volthome.sync_server.errors import (
    ConstraintError,
    GroupUnresolvedError,
    ReferentialError,
    ValidationError,
)
from volthome.sync_server.sync.records import BatchRequest
from volthome.sync_server.sync.resolvers import DeviceResolver, GroupResolver, RoomResolver


def uid() -> str:
    return str(uuid.uuid4())


def records(kind: str, *items: dict):
    batch = BatchRequest.from_dict({"ops": {kind: {"upsert": list(items)}}})
    return getattr(batch, kind).upsert


class TestRoomResolver:
    """Tests for RoomResolver."""

    @pytest.fixture
    def resolver(self):
        return RoomResolver()

    def test_insert_by_id(self, resolver, database, project):
        room_id = uid()
        with database.transaction(OWNER) as conn:
            rooms = resolver.upsert(
                conn, project.id, records("rooms", {"id": room_id, "name": "Kitchen"}), now=10
            )

        assert rooms[0].id == room_id
        assert rooms[0].name == "Kitchen"
        assert rooms[0].updated_at == 10

    def test_update_merges_non_null_fields(self, resolver, database, project):
        room_id = uid()
        with database.transaction(OWNER) as conn:
            resolver.upsert(
                conn,
                project.id,
                records("rooms", {"id": room_id, "name": "Kitchen", "meta": {"floor": 1}}),
                now=10,
            )
            rooms = resolver.upsert(
                conn, project.id, records("rooms", {"id": room_id, "meta": {"floor": 2}}), now=20
            )

        assert rooms[0].name == "Kitchen"
        assert rooms[0].meta == {"floor": 2}
        assert rooms[0].updated_at == 20

    def test_upsert_without_id_is_find_or_create(self, resolver, database, project):
        with database.transaction(OWNER) as conn:
            first = resolver.upsert(conn, project.id, records("rooms", {"name": "Kitchen"}), now=10)
            second = resolver.upsert(conn, project.id, records("rooms", {"name": "KITCHEN "}), now=20)
            count = conn.execute("SELECT COUNT(*) FROM rooms").fetchall()[0][0]

        assert first[0].id == second[0].id
        assert second[0].name == "KITCHEN "
        assert second[0].updated_at == 20
        assert count == 1

    def test_nameless_rooms_always_create(self, resolver, database, project):
        with database.transaction(OWNER) as conn:
            first = resolver.upsert(conn, project.id, records("rooms", {}), now=10)
            second = resolver.upsert(conn, project.id, records("rooms", {}), now=10)
        assert first[0].id != second[0].id

    def test_soft_delete_and_resurrect(self, resolver, database, project):
        room_id = uid()
        with database.transaction(OWNER) as conn:
            resolver.upsert(conn, project.id, records("rooms", {"id": room_id, "name": "Hall"}), 10)
            deleted = resolver.soft_delete(conn, project.id, [room_id, uid()], now=20)
            row = conn.execute("SELECT * FROM rooms WHERE id = ?", (room_id,)).fetchall()[0]
            assert deleted == [room_id]
            assert row["is_deleted"] == 1
            assert row["updated_at"] == 20

            rooms = resolver.upsert(conn, project.id, records("rooms", {"id": room_id}), now=30)

        assert rooms[0].is_deleted is False
        assert rooms[0].name == "Hall"
        assert rooms[0].updated_at == 30

    def test_soft_delete_ignores_other_projects(self, resolver, database, projects, project):
        other = projects.create_project(OWNER, "Other")
        room_id = uid()
        with database.transaction(OWNER) as conn:
            resolver.upsert(conn, other.id, records("rooms", {"id": room_id, "name": "Hall"}), 10)
            assert resolver.soft_delete(conn, project.id, [room_id], now=20) == []

    def test_cross_project_id(self, resolver, database, projects, project):
        other = projects.create_project(OWNER, "Other")
        room_id = uid()
        with database.transaction(OWNER) as conn:
            resolver.upsert(conn, other.id, records("rooms", {"id": room_id, "name": "Hall"}), 10)
            with pytest.raises(ReferentialError) as exc_info:
                resolver.upsert(conn, project.id, records("rooms", {"id": room_id}), now=20)

        assert exc_info.value.reason == "cross_project_id"

    def test_same_name_by_id_coexists(self, resolver, database, project):
        first, second = uid(), uid()
        with database.transaction(OWNER) as conn:
            resolver.upsert(conn, project.id, records("rooms", {"id": first, "name": "Hall"}), 10)
            rooms = resolver.upsert(
                conn, project.id, records("rooms", {"id": second, "name": "hall"}), now=20
            )

        assert [room.id for room in rooms] == [second]

    def test_same_name_by_id_beside_keyed_row(self, resolver, database, project):
        with database.transaction(OWNER) as conn:
            keyed = resolver.upsert(conn, project.id, records("rooms", {"name": "Hall"}), 10)
            by_id = resolver.upsert(
                conn, project.id, records("rooms", {"id": uid(), "name": "HALL"}), now=20
            )
            again = resolver.upsert(conn, project.id, records("rooms", {"name": "hall"}), 30)

        assert by_id[0].id != keyed[0].id
        assert again[0].id == keyed[0].id

    def test_rename_by_id_into_keyed_name(self, resolver, database, project):
        room_id = uid()
        with database.transaction(OWNER) as conn:
            keyed = resolver.upsert(conn, project.id, records("rooms", {"name": "Hall"}), 10)
            other = resolver.upsert(conn, project.id, records("rooms", {"name": "Den"}), 10)
            # Renaming a keyed row by id drops it out of the name index
            renamed = resolver.upsert(
                conn, project.id, records("rooms", {"id": other[0].id, "name": "Hall"}), 20
            )
            resolver.upsert(conn, project.id, records("rooms", {"id": room_id, "name": "Hall"}), 20)
            matched = resolver.upsert(conn, project.id, records("rooms", {"name": "Hall"}), 30)

        assert renamed[0].name == "Hall"
        assert matched[0].id == keyed[0].id

    def test_store_constraint_is_translated(self, resolver, database, project):
        with database.transaction(OWNER) as conn:
            conn.execute(
                "CREATE TRIGGER reject_attic BEFORE INSERT ON rooms WHEN NEW.name = 'Attic' "
                "BEGIN SELECT RAISE(ABORT, 'attic rejected'); END"
            )

        # Store errors are translated when they leave the transaction
        with pytest.raises(ConstraintError) as exc_info:
            with database.transaction(OWNER) as conn:
                resolver.upsert(conn, project.id, records("rooms", {"id": uid(), "name": "Attic"}), 10)

        assert exc_info.value.constraint == "unknown"


class TestGroupResolver:
    """Tests for GroupResolver."""

    @pytest.fixture
    def resolver(self):
        return GroupResolver()

    @pytest.fixture
    def room_id(self, database, project):
        room_id = uid()
        with database.transaction(OWNER) as conn:
            RoomResolver().upsert(conn, project.id, records("rooms", {"id": room_id, "name": "Hall"}), 1)
        return room_id

    def test_group_under_live_room(self, resolver, database, project, room_id):
        with database.transaction(OWNER) as conn:
            groups = resolver.upsert(
                conn, project.id, records("groups", {"roomId": room_id, "name": "Lights"}), now=10
            )
        assert groups[0].room_id == room_id

    def test_same_name_in_different_rooms(self, resolver, database, project, room_id):
        with database.transaction(OWNER) as conn:
            other_room = RoomResolver().upsert(conn, project.id, records("rooms", {"name": "Den"}), 1)[0]
            first = resolver.upsert(
                conn, project.id, records("groups", {"roomId": room_id, "name": "Lights"}), 10
            )
            second = resolver.upsert(
                conn, project.id, records("groups", {"roomId": other_room.id, "name": "Lights"}), 10
            )
        assert first[0].id != second[0].id

    def test_update_without_room_keeps_room(self, resolver, database, project, room_id):
        group_id = uid()
        with database.transaction(OWNER) as conn:
            resolver.upsert(
                conn, project.id, records("groups", {"id": group_id, "roomId": room_id}), now=10
            )
            groups = resolver.upsert(
                conn, project.id, records("groups", {"id": group_id, "name": "Renamed"}), now=20
            )
        assert groups[0].room_id == room_id
        assert groups[0].name == "Renamed"

    def test_unknown_group_without_room(self, resolver, database, project):
        with database.transaction(OWNER) as conn:
            with pytest.raises(ValidationError):
                resolver.upsert(conn, project.id, records("groups", {"id": uid()}), now=10)

    def test_missing_room(self, resolver, database, project):
        with database.transaction(OWNER) as conn:
            with pytest.raises(ReferentialError) as exc_info:
                resolver.upsert(conn, project.id, records("groups", {"roomId": uid()}), now=10)
        assert exc_info.value.reason == "missing_parent"
        assert exc_info.value.reference == "rooms"

    def test_deleted_room(self, resolver, database, project, room_id):
        with database.transaction(OWNER) as conn:
            RoomResolver().soft_delete(conn, project.id, [room_id], now=5)
            with pytest.raises(ReferentialError) as exc_info:
                resolver.upsert(conn, project.id, records("groups", {"roomId": room_id}), now=10)
        assert exc_info.value.reason == "parent_deleted"


class TestDeviceResolver:
    """Tests for DeviceResolver group resolution."""

    @pytest.fixture
    def resolver(self):
        return DeviceResolver()

    @pytest.fixture
    def tree(self, database, project):
        """A room with one named group."""
        room_id, group_id = uid(), uid()
        with database.transaction(OWNER) as conn:
            RoomResolver().upsert(conn, project.id, records("rooms", {"id": room_id, "name": "Hall"}), 1)
            GroupResolver().upsert(
                conn, project.id, records("groups", {"id": group_id, "roomId": room_id, "name": "Lights"}), 1
            )
        return room_id, group_id

    def test_explicit_group(self, resolver, database, project, tree):
        _, group_id = tree
        with database.transaction(OWNER) as conn:
            devices = resolver.upsert(
                conn, project.id, records("devices", {"groupId": group_id, "name": "Lamp"}), now=10
            )
        assert devices[0].group_id == group_id

    def test_room_hint_uses_default_group(self, resolver, database, project, tree):
        room_id, group_id = tree
        with database.transaction(OWNER) as conn:
            devices = resolver.upsert(
                conn,
                project.id,
                records(
                    "devices",
                    {"name": "Lamp", "meta": {"roomId": room_id}},
                    {"name": "Fan", "meta": {"room_id": room_id}},
                ),
                now=10,
            )
            group = conn.execute(
                'SELECT * FROM "groups" WHERE id = ?', (devices[0].group_id,)
            ).fetchall()[0]

        assert devices[0].group_id == devices[1].group_id
        assert devices[0].group_id != group_id
        assert group["name"] == "__default__"
        assert group["room_id"] == room_id
        # Meta is stored as sent, hint included
        assert devices[0].meta == {"roomId": room_id}

    def test_explicit_group_wins_over_hint(self, resolver, database, project, tree):
        room_id, group_id = tree
        with database.transaction(OWNER) as conn:
            devices = resolver.upsert(
                conn,
                project.id,
                records("devices", {"groupId": group_id, "name": "Lamp", "meta": {"roomId": room_id}}),
                now=10,
            )
        assert devices[0].group_id == group_id

    def test_foreign_hint_rejected_even_with_group(self, resolver, database, project, tree):
        _, group_id = tree
        with database.transaction(OWNER) as conn:
            with pytest.raises(ReferentialError) as exc_info:
                resolver.upsert(
                    conn,
                    project.id,
                    records("devices", {"groupId": group_id, "name": "Lamp", "meta": {"roomId": uid()}}),
                    now=10,
                )
            count = conn.execute("SELECT COUNT(*) FROM devices").fetchall()[0][0]

        assert exc_info.value.reason == "room_hint_mismatch"
        assert count == 0

    def test_existing_device_keeps_group(self, resolver, database, project, tree):
        _, group_id = tree
        device_id = uid()
        with database.transaction(OWNER) as conn:
            resolver.upsert(
                conn, project.id, records("devices", {"id": device_id, "groupId": group_id, "name": "Lamp"}), 10
            )
            devices = resolver.upsert(
                conn, project.id, records("devices", {"id": device_id, "name": "Desk lamp"}), 20
            )
        assert devices[0].group_id == group_id
        assert devices[0].name == "Desk lamp"

    def test_unknown_device_without_group(self, resolver, database, project):
        with database.transaction(OWNER) as conn:
            with pytest.raises(GroupUnresolvedError) as exc_info:
                resolver.upsert(conn, project.id, records("devices", {"id": uid(), "name": "Lamp"}), 10)
        assert exc_info.value.index == 0

    def test_deleted_group(self, resolver, database, project, tree):
        _, group_id = tree
        with database.transaction(OWNER) as conn:
            GroupResolver().soft_delete(conn, project.id, [group_id], now=5)
            with pytest.raises(ReferentialError) as exc_info:
                resolver.upsert(
                    conn, project.id, records("devices", {"groupId": group_id, "name": "Lamp"}), 10
                )
        assert exc_info.value.reason == "parent_deleted"
        assert exc_info.value.reference == "groups"
