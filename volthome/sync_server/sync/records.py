"""
Batch request parsing and validation.

Turns the JSON body of a batch request into typed records. Everything that
can be checked without the store is checked here, so a malformed request is
rejected before any connection is opened.

Wire shapes:
    Room:   {id?, name?, meta?}
    Group:  {id?, roomId | room_id, name?, meta?}
    Device: {id?, groupId? | group_id?, name, meta?}

A meta blob may carry a room hint under ``room_id`` or ``roomId``. For
devices it selects the room's default group; for groups it stands in for a
missing roomId.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..errors import GroupUnresolvedError, ValidationError
from ..store.meta import parse_meta
from ..store.models import EntityKind, coerce_uuid

MAX_NAME_LENGTH = 256

_HINT_KEYS = ("room_id", "roomId")


def room_hint(meta: dict[str, Any] | None) -> str | None:
    """Room id hinted in a meta blob, if it holds a valid UUID."""
    if not meta:
        return None
    for key in _HINT_KEYS:
        hint = coerce_uuid(meta.get(key))
        if hint:
            return hint
    return None


@dataclass
class RoomRecord:
    index: int
    id: str | None = None
    name: str | None = None
    meta: dict[str, Any] | None = None

    @property
    def parent_id(self) -> str | None:
        return None


@dataclass
class GroupRecord:
    index: int
    id: str | None = None
    room_id: str | None = None
    name: str | None = None
    meta: dict[str, Any] | None = None

    @property
    def parent_id(self) -> str | None:
        return self.room_id


@dataclass
class DeviceRecord:
    index: int
    id: str | None = None
    group_id: str | None = None
    name: str | None = None
    meta: dict[str, Any] | None = None

    @property
    def parent_id(self) -> str | None:
        return self.group_id

    @property
    def room_hint(self) -> str | None:
        return room_hint(self.meta)


@dataclass
class EntityOps:
    """Upserts and deletes submitted for one entity collection."""

    upsert: list[Any] = field(default_factory=list)
    delete: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.upsert) + len(self.delete)


@dataclass
class BatchRequest:
    """A parsed batch.

    Attributes:
        base_version: Project version the client built the batch on, if sent
        rooms: Room operations
        groups: Group operations
        devices: Device operations
    """

    base_version: int | None = None
    rooms: EntityOps = field(default_factory=EntityOps)
    groups: EntityOps = field(default_factory=EntityOps)
    devices: EntityOps = field(default_factory=EntityOps)

    def ops(self, kind: EntityKind) -> EntityOps:
        return getattr(self, kind.value)

    @property
    def item_count(self) -> int:
        return len(self.rooms) + len(self.groups) + len(self.devices)

    @classmethod
    def from_dict(cls, payload: Any, max_items: int | None = None) -> BatchRequest:
        """Parse and validate a batch request body.

        Args:
            payload: Decoded JSON body
            max_items: Upper bound on upserts plus deletes across all kinds

        Returns:
            Parsed BatchRequest

        Raises:
            ValidationError: Malformed ids or fields, or too many items
            GroupUnresolvedError: A new device has neither group nor room hint
        """
        if not isinstance(payload, dict):
            raise ValidationError("Batch body must be a JSON object")

        base_version = payload.get("baseVersion")
        if base_version is not None and (
            isinstance(base_version, bool) or not isinstance(base_version, int)
        ):
            raise ValidationError("baseVersion must be an integer", field_name="baseVersion")

        ops = payload.get("ops")
        if ops is None:
            ops = {}
        if not isinstance(ops, dict):
            raise ValidationError("ops must be an object", field_name="ops")

        request = cls(
            base_version=base_version,
            rooms=_parse_ops(ops, EntityKind.ROOMS, _parse_room),
            groups=_parse_ops(ops, EntityKind.GROUPS, _parse_group),
            devices=_parse_ops(ops, EntityKind.DEVICES, _parse_device),
        )

        if max_items is not None and request.item_count > max_items:
            raise ValidationError(
                f"Batch has {request.item_count} items, the limit is {max_items}",
                field_name="ops",
            )

        for record in request.devices.upsert:
            if record.id is None and record.group_id is None and record.room_hint is None:
                raise GroupUnresolvedError(
                    f"devices.upsert[{record.index}] has no groupId and no room hint",
                    index=record.index,
                )

        return request


def _parse_ops(ops: dict[str, Any], kind: EntityKind, parse_item) -> EntityOps:
    section = ops.get(kind.value)
    if section is None:
        return EntityOps()
    if not isinstance(section, dict):
        raise ValidationError(f"ops.{kind.value} must be an object", field_name=kind.value)

    upserts = section.get("upsert") or []
    deletes = section.get("delete") or []
    if not isinstance(upserts, list):
        raise ValidationError(
            f"{kind.value}.upsert must be an array", field_name=f"{kind.value}.upsert"
        )
    if not isinstance(deletes, list):
        raise ValidationError(
            f"{kind.value}.delete must be an array", field_name=f"{kind.value}.delete"
        )

    result = EntityOps()
    for index, item in enumerate(upserts):
        path = f"{kind.value}.upsert[{index}]"
        if not isinstance(item, dict):
            raise ValidationError(f"{path} must be an object", field_name=path)
        result.upsert.append(parse_item(index, item, path))

    for index, value in enumerate(deletes):
        path = f"{kind.value}.delete[{index}]"
        entity_id = coerce_uuid(value)
        if entity_id is None:
            raise ValidationError(f"{path} is not a valid UUID", field_name=path)
        result.delete.append(entity_id)

    return result


def _optional_id(item: dict[str, Any], keys: tuple[str, ...], path: str) -> str | None:
    for key in keys:
        value = item.get(key)
        if value is None or value == "":
            continue
        entity_id = coerce_uuid(value)
        if entity_id is None:
            raise ValidationError(f"{path}.{key} is not a valid UUID", field_name=f"{path}.{key}")
        return entity_id
    return None


def _optional_name(item: dict[str, Any], path: str) -> str | None:
    name = item.get("name")
    if name is None:
        return None
    if not isinstance(name, str):
        raise ValidationError(f"{path}.name must be a string", field_name=f"{path}.name")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"{path}.name is longer than {MAX_NAME_LENGTH} characters",
            field_name=f"{path}.name",
        )
    return name


def _parse_room(index: int, item: dict[str, Any], path: str) -> RoomRecord:
    return RoomRecord(
        index=index,
        id=_optional_id(item, ("id",), path),
        name=_optional_name(item, path),
        meta=parse_meta(item.get("meta")),
    )


def _parse_group(index: int, item: dict[str, Any], path: str) -> GroupRecord:
    meta = parse_meta(item.get("meta"))
    record = GroupRecord(
        index=index,
        id=_optional_id(item, ("id",), path),
        room_id=_optional_id(item, ("roomId", "room_id"), path) or room_hint(meta),
        name=_optional_name(item, path),
        meta=meta,
    )
    if record.id is None and record.room_id is None:
        raise ValidationError(f"{path}.roomId is required", field_name=f"{path}.roomId")
    return record


def _parse_device(index: int, item: dict[str, Any], path: str) -> DeviceRecord:
    name = _optional_name(item, path)
    if name is None or not name.strip():
        raise ValidationError(f"{path}.name is required", field_name=f"{path}.name")
    return DeviceRecord(
        index=index,
        id=_optional_id(item, ("id",), path),
        group_id=_optional_id(item, ("groupId", "group_id"), path),
        name=name,
        meta=parse_meta(item.get("meta")),
    )
