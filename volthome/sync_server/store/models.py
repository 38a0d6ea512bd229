"""
Row types and value helpers for the project store.

Timestamps are stored as Unix milliseconds and exposed on the wire as
ISO-8601 UTC strings with millisecond precision.
"""

from __future__ import annotations

import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from .meta import load_meta

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def now_ms() -> int:
    """Current wall-clock time in Unix milliseconds."""
    return int(time.time() * 1000)


def ms_to_iso(ms: int) -> str:
    """Format Unix milliseconds as an ISO-8601 UTC string."""
    return (EPOCH + ms * _ONE_MS).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_since(value: str | None) -> int:
    """Parse an ISO-8601 timestamp into Unix milliseconds.

    Absent or unparseable values fall back to the epoch so that a client
    with no cursor receives the full history.
    """
    if not value or not isinstance(value, str):
        return 0
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return max(0, (parsed - EPOCH) // _ONE_MS)


def coerce_uuid(value: Any) -> str | None:
    """Return the canonical form of a UUID string, or None if it is not one."""
    if not isinstance(value, str):
        return None
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


def new_id() -> str:
    return str(uuid.uuid4())


def name_key(name: str | None) -> str | None:
    """Case-insensitive natural key for a name."""
    if name is None:
        return None
    key = name.strip().casefold()
    return key or None


class EntityKind(str, Enum):
    """Entity collections in a project, in parent-to-child order."""

    ROOMS = "rooms"
    GROUPS = "groups"
    DEVICES = "devices"

    @property
    def table(self) -> str:
        return f'"{self.value}"'


@dataclass
class Project:
    """A user's project.

    Attributes:
        id: Project identifier (UUID)
        owner_id: User that owns the project
        name: Display name
        note: Free-form note
        version: Monotonic batch counter, starts at 1
        created_at: Creation timestamp (Unix ms)
        updated_at: Last mutation timestamp (Unix ms)
        is_deleted: Tombstone flag
    """

    id: str
    owner_id: str
    name: str
    note: str | None
    version: int
    created_at: int
    updated_at: int
    is_deleted: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Project:
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            note=row["note"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            is_deleted=bool(row["is_deleted"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "note": self.note,
            "version": self.version,
            "createdAt": ms_to_iso(self.created_at),
            "updatedAt": ms_to_iso(self.updated_at),
            "isDeleted": self.is_deleted,
        }


@dataclass
class Room:
    id: str
    project_id: str
    name: str | None
    meta: dict[str, Any] | None
    updated_at: int
    is_deleted: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Room:
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            name=row["name"],
            meta=load_meta(row["meta_json"]),
            updated_at=row["updated_at"],
            is_deleted=bool(row["is_deleted"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "meta": self.meta,
            "updatedAt": ms_to_iso(self.updated_at),
        }


@dataclass
class Group:
    id: str
    project_id: str
    room_id: str
    name: str | None
    meta: dict[str, Any] | None
    updated_at: int
    is_deleted: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Group:
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            room_id=row["room_id"],
            name=row["name"],
            meta=load_meta(row["meta_json"]),
            updated_at=row["updated_at"],
            is_deleted=bool(row["is_deleted"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "roomId": self.room_id,
            "name": self.name,
            "meta": self.meta,
            "updatedAt": ms_to_iso(self.updated_at),
        }


@dataclass
class Device:
    id: str
    project_id: str
    group_id: str
    name: str | None
    meta: dict[str, Any] | None
    updated_at: int
    is_deleted: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Device:
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            group_id=row["group_id"],
            name=row["name"],
            meta=load_meta(row["meta_json"]),
            updated_at=row["updated_at"],
            is_deleted=bool(row["is_deleted"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "groupId": self.group_id,
            "name": self.name,
            "meta": self.meta,
            "updatedAt": ms_to_iso(self.updated_at),
        }


@dataclass
class ProjectTree:
    """Snapshot of a project's live hierarchy."""

    project: Project
    rooms: list[Room] = field(default_factory=list)
    groups: list[Group] = field(default_factory=list)
    devices: list[Device] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.project.to_dict(),
            "rooms": [room.to_dict() for room in self.rooms],
            "groups": [group.to_dict() for group in self.groups],
            "devices": [device.to_dict() for device in self.devices],
        }
