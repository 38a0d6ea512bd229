"""
API module for the VoltHome sync server.

This module provides the external HTTP interface:
- Project lifecycle routes (create, list, meta, tree, update, delete)
- Sync routes (batch apply, delta)
- Error mapping and per-user rate limiting

Invariants:
    - All operations require an authenticated user id
    - Routes never touch SQLite directly; they go through ProjectSyncService

How to change safely:
    - Add new fields to responses; never rename existing wire keys
    - Keep error codes stable; clients branch on them
"""

from .app import classify_error, create_app
from .settings import ApiSettings

__all__ = [
    "create_app",
    "classify_error",
    "ApiSettings",
]
