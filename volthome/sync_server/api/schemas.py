"""
Request/response models for the sync HTTP API.

Wire names are camelCase. Batch bodies are not modelled here: they are
validated by sync.records so that errors carry field paths such as
``devices.upsert[3].name``.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Requests ---


class ProjectCreateRequest(WireModel):
    """Request to create a project."""

    id: str | None = Field(None, description="Client-chosen project id (UUID)")
    name: str = Field(..., min_length=1, max_length=256, description="Display name")
    note: str | None = Field(None, max_length=2000, description="Free-form note")


class ProjectUpdateRequest(WireModel):
    """Request to change project metadata. Omitted fields are kept."""

    name: str | None = Field(None, min_length=1, max_length=256)
    note: str | None = Field(None, max_length=2000)


# --- Responses ---


class ProjectResponse(WireModel):
    id: str
    name: str
    note: str | None = None
    version: int
    created_at: str
    updated_at: str
    is_deleted: bool = False


class ProjectPage(WireModel):
    """One page of projects. ``next`` is the cursor for the following page."""

    items: list[ProjectResponse]
    next: str | None = None


class RoomResponse(WireModel):
    id: str
    name: str | None = None
    meta: dict[str, Any] | None = None
    updated_at: str


class GroupResponse(WireModel):
    id: str
    room_id: str
    name: str | None = None
    meta: dict[str, Any] | None = None
    updated_at: str


class DeviceResponse(WireModel):
    id: str
    group_id: str
    name: str | None = None
    meta: dict[str, Any] | None = None
    updated_at: str


class TreeResponse(WireModel):
    """Snapshot of a project's live hierarchy."""

    project: ProjectResponse
    rooms: list[RoomResponse]
    groups: list[GroupResponse]
    devices: list[DeviceResponse]


class ConflictResponse(WireModel):
    entity: str
    id: str
    reason: str


class BatchResponse(WireModel):
    new_version: int
    conflicts: list[ConflictResponse]


class RoomDelta(WireModel):
    upsert: list[RoomResponse]
    delete: list[str]


class GroupDelta(WireModel):
    upsert: list[GroupResponse]
    delete: list[str]


class DeviceDelta(WireModel):
    upsert: list[DeviceResponse]
    delete: list[str]


class DeltaResponse(WireModel):
    """Changes since a cursor, split into upserts and tombstones."""

    rooms: RoomDelta
    groups: GroupDelta
    devices: DeviceDelta
    version: int
    since: str


class ErrorResponse(WireModel):
    """Error body shared by every non-2xx response."""

    error: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    cid: str
