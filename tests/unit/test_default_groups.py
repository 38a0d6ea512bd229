"""
Unit tests for DefaultGroupResolver.

Tests cover:
- Find-or-create of the reserved group
- Idempotency and timestamp stability
- Room validation
"""

import uuid

import pytest

from tests.conftest import OWNER
from volthome.sync_server.errors import ReferentialError
from volthome.sync_server.sync.default_groups import DEFAULT_GROUP_NAME, DefaultGroupResolver


def add_room(conn, project_id, deleted=False):
    room_id = str(uuid.uuid4())
    conn.execute(
        "INSERT INTO rooms (id, project_id, name, updated_at, is_deleted) VALUES (?, ?, ?, 1, ?)",
        (room_id, project_id, f"Room {room_id[:4]}", int(deleted)),
    )
    return room_id


class TestDefaultGroupResolver:
    """Tests for DefaultGroupResolver."""

    @pytest.fixture
    def resolver(self):
        return DefaultGroupResolver()

    def test_creates_group_once(self, resolver, database, project):
        with database.transaction(OWNER) as conn:
            room_id = add_room(conn, project.id)
            first = resolver.resolve(conn, project.id, [room_id], now=100)
            second = resolver.resolve(conn, project.id, [room_id, room_id], now=200)

            assert first == second
            row = conn.execute(
                'SELECT * FROM "groups" WHERE id = ?', (first[room_id],)
            ).fetchall()[0]
            count = conn.execute('SELECT COUNT(*) FROM "groups"').fetchall()[0][0]

        assert row["name"] == DEFAULT_GROUP_NAME
        assert row["room_id"] == room_id
        # Reuse leaves the original timestamp alone
        assert row["updated_at"] == 100
        assert count == 1

    def test_stable_across_transactions(self, resolver, database, project):
        with database.transaction(OWNER) as conn:
            room_id = add_room(conn, project.id)
            first = resolver.resolve(conn, project.id, [room_id], now=1)
        with database.transaction(OWNER) as conn:
            second = resolver.resolve(conn, project.id, [room_id], now=2)
        assert first == second

    def test_one_group_per_room(self, resolver, database, project):
        with database.transaction(OWNER) as conn:
            rooms = [add_room(conn, project.id) for _ in range(3)]
            resolved = resolver.resolve(conn, project.id, rooms, now=1)

        assert set(resolved) == set(rooms)
        assert len(set(resolved.values())) == 3

    def test_tombstoned_default_group_is_replaced(self, resolver, database, project):
        with database.transaction(OWNER) as conn:
            room_id = add_room(conn, project.id)
            old = resolver.resolve(conn, project.id, [room_id], now=1)[room_id]
            conn.execute('UPDATE "groups" SET is_deleted = 1 WHERE id = ?', (old,))
            new = resolver.resolve(conn, project.id, [room_id], now=2)[room_id]

        assert new != old

    def test_matches_existing_group_case_insensitively(self, database, project):
        resolver = DefaultGroupResolver("Unsorted")
        with database.transaction(OWNER) as conn:
            room_id = add_room(conn, project.id)
            group_id = str(uuid.uuid4())
            conn.execute(
                'INSERT INTO "groups" (id, project_id, room_id, name, name_key, keyed, updated_at) '
                "VALUES (?, ?, ?, 'UNSORTED', 'unsorted', 1, 1)",
                (group_id, project.id, room_id),
            )
            assert resolver.resolve(conn, project.id, [room_id], now=2) == {room_id: group_id}

    def test_group_written_by_id_is_not_the_default(self, resolver, database, project):
        with database.transaction(OWNER) as conn:
            room_id = add_room(conn, project.id)
            group_id = str(uuid.uuid4())
            conn.execute(
                'INSERT INTO "groups" (id, project_id, room_id, name, name_key, keyed, updated_at) '
                "VALUES (?, ?, ?, ?, ?, 0, 1)",
                (group_id, project.id, room_id, DEFAULT_GROUP_NAME, DEFAULT_GROUP_NAME),
            )
            resolved = resolver.resolve(conn, project.id, [room_id], now=2)

        assert resolved[room_id] != group_id

    @pytest.mark.parametrize("problem", ["missing", "deleted", "foreign"])
    def test_rejects_bad_rooms(self, resolver, database, projects, project, problem):
        other = projects.create_project(OWNER, "Other")
        with database.transaction(OWNER) as conn:
            if problem == "missing":
                room_id = str(uuid.uuid4())
            elif problem == "deleted":
                room_id = add_room(conn, project.id, deleted=True)
            else:
                room_id = add_room(conn, other.id)

            with pytest.raises(ReferentialError) as exc_info:
                resolver.resolve(conn, project.id, [room_id], now=1)

        expected = {
            "missing": "missing_parent",
            "deleted": "parent_deleted",
            "foreign": "cross_project_parent",
        }[problem]
        assert exc_info.value.reason == expected

    def test_blank_name_rejected(self):
        with pytest.raises(ValueError):
            DefaultGroupResolver("   ")
