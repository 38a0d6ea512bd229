"""
Store module for VoltHome - SQLite persistence of projects and their entities.

This module handles:
- Per-owner SQLite databases (schema, transactions, timeouts)
- The project version counter and project lifecycle
- Row types and wire formatting helpers
- Opaque meta blob parsing

Invariants:
    - Rows are never physically deleted
    - SQLite uses WAL mode for concurrent reads during writes
    - Every query is scoped to one owner and one project

How to change safely:
    - Test schema migrations thoroughly before deployment
    - Use transactions for all multi-statement operations
"""

from .database import ProjectDatabase, first_row
from .meta import dump_meta, parse_meta
from .models import (
    Device,
    EntityKind,
    Group,
    Project,
    ProjectTree,
    Room,
    coerce_uuid,
    ms_to_iso,
    name_key,
    new_id,
    now_ms,
    parse_since,
)
from .project_store import VersionedProjectStore

__all__ = [
    "ProjectDatabase",
    "first_row",
    "VersionedProjectStore",
    "Project",
    "Room",
    "Group",
    "Device",
    "ProjectTree",
    "EntityKind",
    "coerce_uuid",
    "ms_to_iso",
    "name_key",
    "new_id",
    "now_ms",
    "parse_since",
    "parse_meta",
    "dump_meta",
]
