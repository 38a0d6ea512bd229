"""
Error types for the VoltHome sync server.

This module defines every exception the sync engine raises:
- SyncError: Base exception
- ValidationError: Malformed ids or fields, rejected before any write
- InvalidIdError: A path or body id that is not a UUID
- ReferentialError: Reference to a room/group outside the project
- GroupUnresolvedError: Device with neither a group nor a usable room hint
- NotFoundError: Project missing or owned by someone else
- TransientStoreError: Timeout or lock contention, safe to retry
- ConstraintError: Uniqueness / not-null / foreign-key violation from the store
- StoreError: Any other store failure

Invariants:
    - All errors inherit from SyncError
    - Errors carry a stable code and structured details
    - NotFoundError never reveals whether another owner's project exists
"""

from __future__ import annotations

import re
import sqlite3
from typing import Any


class SyncError(Exception):
    """Base exception for all sync engine errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SYNC_ERROR"
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return False


class ValidationError(SyncError):
    """Request payload is malformed.

    Raised when:
    - An id is not a valid UUID
    - A required field is missing or has the wrong type
    - The batch exceeds the configured size
    """

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class InvalidIdError(ValidationError):
    """A path or body id is not a UUID."""

    def __init__(self, message: str, field_name: str = "id") -> None:
        super().__init__(message, field_name=field_name)
        self.code = "INVALID_ID"


class ReferentialError(SyncError):
    """A record references an entity that is not a live member of the project.

    Raised when:
    - An id is reused across projects
    - A group's room or a device's group is missing, deleted or foreign
    - A device meta room hint points outside the project
    """

    def __init__(
        self,
        message: str,
        entity: str,
        entity_id: str | None,
        reference: str | None = None,
        reference_id: str | None = None,
        reason: str = "missing_parent",
    ) -> None:
        super().__init__(
            message,
            code="REFERENTIAL_ERROR",
            details={
                "entity": entity,
                "id": entity_id,
                "reference": reference,
                "reference_id": reference_id,
                "reason": reason,
            },
        )
        self.entity = entity
        self.entity_id = entity_id
        self.reference = reference
        self.reference_id = reference_id
        self.reason = reason


class GroupUnresolvedError(SyncError):
    """A device could not be attached to any group."""

    def __init__(self, message: str, index: int, device_id: str | None = None) -> None:
        super().__init__(
            message,
            code="GROUP_UNRESOLVED",
            details={"entity": "devices", "index": index, "id": device_id},
        )
        self.index = index
        self.device_id = device_id


class NotFoundError(SyncError):
    """Resource not found (or not visible to the caller)."""

    def __init__(
        self,
        message: str,
        resource_type: str = "project",
        resource_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class StoreError(SyncError):
    """Unexpected failure inside the SQLite store."""

    def __init__(self, message: str, code: str = "STORE_ERROR", **details: Any) -> None:
        super().__init__(message, code=code, details=details)


class TransientStoreError(StoreError):
    """Store timed out or was busy. The whole batch can be retried unchanged."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, code="STORE_UNAVAILABLE", **details)

    @property
    def retryable(self) -> bool:
        return True


class ConstraintError(StoreError):
    """The store rejected a write because of a schema constraint.

    Attributes:
        constraint: unique, not_null, foreign_key, check or unknown
        table: Table named in the store message, if any
        columns: Columns named in the store message
    """

    def __init__(
        self,
        message: str,
        constraint: str,
        table: str | None = None,
        columns: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="CONSTRAINT_VIOLATION",
            constraint=constraint,
            table=table,
            columns=columns or [],
        )
        self.constraint = constraint
        self.table = table
        self.columns = columns or []


_CONSTRAINT_KINDS = {
    "UNIQUE": "unique",
    "NOT NULL": "not_null",
    "FOREIGN KEY": "foreign_key",
    "CHECK": "check",
}

_CONSTRAINT_RE = re.compile(r"^(UNIQUE|NOT NULL|FOREIGN KEY|CHECK) constraint failed(?::\s*(.*))?$")

_TRANSIENT_MARKERS = ("locked", "busy", "interrupted", "unable to open")


def from_sqlite_error(exc: sqlite3.Error) -> StoreError:
    """Translate a sqlite3 exception into the sync error taxonomy.

    Args:
        exc: Exception raised by the sqlite3 module

    Returns:
        ConstraintError, TransientStoreError or StoreError
    """
    message = str(exc)

    if isinstance(exc, sqlite3.IntegrityError):
        match = _CONSTRAINT_RE.match(message)
        if not match:
            return ConstraintError(message, constraint="unknown")

        kind = _CONSTRAINT_KINDS[match.group(1)]
        table = None
        columns: list[str] = []
        for target in (match.group(2) or "").split(","):
            target = target.strip()
            if "." in target:
                table, column = target.split(".", 1)
                columns.append(column)
        return ConstraintError(message, constraint=kind, table=table, columns=columns)

    if isinstance(exc, sqlite3.OperationalError) and any(
        marker in message.lower() for marker in _TRANSIENT_MARKERS
    ):
        return TransientStoreError(f"Store unavailable: {message}")

    return StoreError(f"Store error: {message}")
