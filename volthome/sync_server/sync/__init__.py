"""
Sync module for VoltHome - batch application and delta retrieval.

This module handles:
- Parsing and validation of batch requests
- Idempotent create-or-update of rooms, groups and devices
- Default group resolution for devices submitted without a group
- Atomic batch application with a single version bump
- Incremental delta queries with an inclusive cursor

Invariants:
    - A batch is one transaction; nothing partial is ever visible
    - Retried records never duplicate rows (by id or by natural key)
    - Deltas are a pure function of store state

How to change safely:
    - Keep resolver conflict targets aligned with the store's unique indexes
    - Test retries with duplicate batch submission
"""

from .coordinator import BatchApplyCoordinator, BatchResult, Conflict, STALE_REASON
from .default_groups import DEFAULT_GROUP_NAME, DefaultGroupResolver
from .delta import DeltaQueryEngine, DeltaResult, EntityDelta
from .records import BatchRequest, DeviceRecord, EntityOps, GroupRecord, RoomRecord, room_hint
from .resolvers import DeviceResolver, EntityUpsertResolver, GroupResolver, RoomResolver

__all__ = [
    "BatchApplyCoordinator",
    "BatchResult",
    "Conflict",
    "STALE_REASON",
    "DefaultGroupResolver",
    "DEFAULT_GROUP_NAME",
    "DeltaQueryEngine",
    "DeltaResult",
    "EntityDelta",
    "BatchRequest",
    "EntityOps",
    "RoomRecord",
    "GroupRecord",
    "DeviceRecord",
    "room_hint",
    "EntityUpsertResolver",
    "RoomResolver",
    "GroupResolver",
    "DeviceResolver",
]
