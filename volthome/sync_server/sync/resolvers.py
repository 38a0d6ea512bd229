"""
Entity upsert resolvers for rooms, groups and devices.

Each resolver turns client records into single-statement create-or-update
writes scoped to one project:

- By id: INSERT ... ON CONFLICT (id) DO UPDATE, merging non-null fields
  over the stored row and clearing the tombstone.
- Without id: INSERT ... ON CONFLICT on the live-row natural key
  (project, parent scope, casefolded name), so a retried record finds the
  row it created the first time instead of duplicating it.

Only rows created without an id are ``keyed``, i.e. covered by the natural
key index. A by-id write that renames, moves or resurrects a keyed row
takes it out of the index, so by-id writes never collide on names.

Invariants:
    - A null or absent incoming field never overwrites a stored value
    - An id owned by another project is never updated
    - All reads and checks for a kind run before any of its writes
    - A device is never written without a concrete group_id
    - Same-named rows written by id coexist in one scope

How to change safely:
    - Conflict targets must match the partial unique indexes in store.database
    - Keep parent checks ahead of writes so rejected batches write nothing
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from ..errors import GroupUnresolvedError, ReferentialError, ValidationError
from ..store.database import first_row
from ..store.meta import dump_meta
from ..store.models import Device, EntityKind, Group, Room, name_key, new_id
from .default_groups import DefaultGroupResolver
from .lookups import chunked, load_rows, placeholders, require_live
from .records import DeviceRecord, GroupRecord

logger = logging.getLogger(__name__)


class EntityUpsertResolver:
    """Create-or-update writer for one entity kind.

    Subclasses set the kind, the parent column and the row type, and may
    override ``prepare`` to check and fill in parent references.
    """

    kind: EntityKind
    parent_column: str | None = None
    entity_cls: Any = None

    def upsert(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        records: list[Any],
        now: int,
    ) -> list[Any]:
        """Write records in submission order.

        Args:
            conn: Open write transaction
            project_id: Target project
            records: Parsed records of this resolver's kind
            now: Batch timestamp (Unix ms)

        Returns:
            Stored rows, one per record

        Raises:
            ReferentialError: Cross-project id or bad parent reference
        """
        if not records:
            return []

        existing = self._load_existing(conn, project_id, records)
        self.prepare(conn, project_id, records, existing, now)

        written = []
        for record in records:
            if record.id is None:
                row = self._upsert_by_key(conn, project_id, record, now)
            else:
                row = self._upsert_by_id(conn, project_id, record, now)
            written.append(self.entity_cls.from_row(row))

        logger.debug(
            "Upserted entities",
            extra={"project_id": project_id, "kind": self.kind.value, "count": len(written)},
        )
        return written

    def soft_delete(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        ids: list[str],
        now: int,
    ) -> list[str]:
        """Tombstone rows of the project. Unknown ids are ignored.

        Returns:
            Ids that were tombstoned
        """
        deleted: list[str] = []
        for chunk in chunked(sorted(set(ids))):
            cursor = conn.execute(
                f"""
                UPDATE {self.kind.table}
                SET is_deleted = 1, updated_at = ?
                WHERE project_id = ? AND id IN ({placeholders(len(chunk))})
                RETURNING id
                """,
                [now, project_id, *chunk],
            )
            deleted.extend(row["id"] for row in cursor.fetchall())

        if deleted:
            logger.debug(
                "Soft-deleted entities",
                extra={"project_id": project_id, "kind": self.kind.value, "count": len(deleted)},
            )
        return deleted

    def prepare(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        records: list[Any],
        existing: dict[str, sqlite3.Row],
        now: int,
    ) -> None:
        """Check parent references before anything is written."""

    def _load_existing(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        records: list[Any],
    ) -> dict[str, sqlite3.Row]:
        existing = load_rows(conn, self.kind, (r.id for r in records if r.id is not None))
        for record in records:
            row = existing.get(record.id) if record.id else None
            if row is not None and row["project_id"] != project_id:
                raise self._cross_project(record)
        return existing

    def _cross_project(self, record: Any) -> ReferentialError:
        return ReferentialError(
            f"{self.kind.value} id {record.id} belongs to another project",
            entity=self.kind.value,
            entity_id=record.id,
            reason="cross_project_id",
        )

    def _columns(self) -> list[str]:
        columns = ["id", "project_id"]
        if self.parent_column:
            columns.append(self.parent_column)
        return columns + ["name", "name_key", "keyed", "meta_json", "updated_at", "is_deleted"]

    def _values(
        self,
        record: Any,
        entity_id: str,
        project_id: str,
        now: int,
        keyed: bool,
    ) -> list[Any]:
        values = [entity_id, project_id]
        if self.parent_column:
            values.append(record.parent_id)
        return values + [
            record.name,
            name_key(record.name),
            int(keyed),
            dump_meta(record.meta),
            now,
            0,
        ]

    def _insert_sql(self) -> str:
        columns = self._columns()
        return (
            f"INSERT INTO {self.kind.table} ({', '.join(columns)}) "
            f"VALUES ({placeholders(len(columns))})"
        )

    def _upsert_by_id(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        record: Any,
        now: int,
    ) -> sqlite3.Row:
        parent_merge = ""
        parent_kept = ""
        if self.parent_column:
            parent = self.parent_column
            parent_merge = f"{parent} = COALESCE(excluded.{parent}, {parent}),"
            parent_kept = f"AND (excluded.{parent} IS NULL OR excluded.{parent} = {parent})"
        # SET expressions read the stored row, so keyed survives only when the
        # row stays live under the same scope and name
        row = first_row(
            conn.execute(
                f"""
                {self._insert_sql()}
                ON CONFLICT (id) DO UPDATE SET
                    {parent_merge}
                    name = COALESCE(excluded.name, name),
                    name_key = CASE WHEN excluded.name IS NULL
                                    THEN name_key ELSE excluded.name_key END,
                    keyed = CASE WHEN is_deleted = 0
                                      AND (excluded.name IS NULL
                                           OR excluded.name_key IS name_key)
                                      {parent_kept}
                                 THEN keyed ELSE 0 END,
                    meta_json = COALESCE(excluded.meta_json, meta_json),
                    updated_at = excluded.updated_at,
                    is_deleted = 0
                WHERE project_id = excluded.project_id
                RETURNING *
                """,
                self._values(record, record.id, project_id, now, keyed=False),
            )
        )
        if row is None:
            raise self._cross_project(record)
        return row

    def _upsert_by_key(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        record: Any,
        now: int,
    ) -> sqlite3.Row:
        key = ["project_id"]
        if self.parent_column:
            key.append(self.parent_column)
        key.append("name_key")
        return first_row(
            conn.execute(
                f"""
                {self._insert_sql()}
                ON CONFLICT ({', '.join(key)}) WHERE is_deleted = 0 AND keyed = 1
                DO UPDATE SET
                    name = excluded.name,
                    meta_json = COALESCE(excluded.meta_json, meta_json),
                    updated_at = excluded.updated_at
                RETURNING *
                """,
                self._values(record, new_id(), project_id, now, keyed=True),
            )
        )


class RoomResolver(EntityUpsertResolver):
    """Rooms sit directly under the project and have no parent to check."""

    kind = EntityKind.ROOMS
    entity_cls = Room


class GroupResolver(EntityUpsertResolver):
    """Groups hang off a live room of the same project."""

    kind = EntityKind.GROUPS
    parent_column = "room_id"
    entity_cls = Group

    def prepare(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        records: list[GroupRecord],
        existing: dict[str, sqlite3.Row],
        now: int,
    ) -> None:
        for record in records:
            if record.room_id is not None:
                continue
            if record.id not in existing:
                path = f"groups.upsert[{record.index}].roomId"
                raise ValidationError(f"{path} is required", field_name=path)
            # NOT NULL is checked before the id conflict, so carry the stored room
            record.room_id = existing[record.id]["room_id"]

        references = [
            ("groups", record.id, record.room_id) for record in records if record.room_id
        ]
        if references:
            require_live(conn, EntityKind.ROOMS, project_id, references)


class DeviceResolver(EntityUpsertResolver):
    """Devices hang off a live group of the same project.

    Group resolution order per record: explicit group id, then the default
    group of the hinted room, then the stored group of an existing device.
    A device that matches none of these fails the batch.
    """

    kind = EntityKind.DEVICES
    parent_column = "group_id"
    entity_cls = Device

    def __init__(self, default_groups: DefaultGroupResolver | None = None) -> None:
        self.default_groups = default_groups or DefaultGroupResolver()

    def prepare(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        records: list[DeviceRecord],
        existing: dict[str, sqlite3.Row],
        now: int,
    ) -> None:
        explicit = [
            ("devices", record.id, record.group_id) for record in records if record.group_id
        ]
        if explicit:
            require_live(conn, EntityKind.GROUPS, project_id, explicit)

        hinted = [
            ("devices", record.id, record.room_hint) for record in records if record.room_hint
        ]
        if hinted:
            require_live(
                conn, EntityKind.ROOMS, project_id, hinted, reason="room_hint_mismatch"
            )

        needs_default: list[DeviceRecord] = []
        for record in records:
            if record.group_id:
                continue
            if record.room_hint:
                needs_default.append(record)
            elif record.id in existing:
                record.group_id = existing[record.id]["group_id"]
            else:
                raise GroupUnresolvedError(
                    f"devices.upsert[{record.index}] has no groupId and no room hint",
                    index=record.index,
                    device_id=record.id,
                )

        if not needs_default:
            return

        defaults = self.default_groups.resolve(
            conn, project_id, (record.room_hint for record in needs_default), now
        )
        for record in needs_default:
            record.group_id = defaults[record.room_hint]
            logger.debug(
                "Attached device to default group",
                extra={
                    "project_id": project_id,
                    "device_id": record.id,
                    "room_id": record.room_hint,
                    "group_id": record.group_id,
                },
            )
