"""
VoltHome Python SDK - Client library for the VoltHome sync server.

This SDK provides:
- SyncClient for project management, batch apply and delta retrieval
- Batch builder for atomic upserts and deletes
- LocalReplica to mirror a project through delta pulls

Example:
    >>> from volthome_sdk import Batch, LocalReplica, SyncClient
    >>>
    >>> async with SyncClient("http://localhost:8080", user_id="user-42") as client:
    ...     project = await client.create_project("Home")
    ...     replica = LocalReplica(project["id"])
    ...     await replica.push(client, Batch().upsert_room("Kitchen"))

Invariants:
    - Batches are idempotent; resending one never duplicates rows
    - Transport errors and 503 responses are retried with backoff

Version: 1.0.0
"""

__version__ = "1.0.0"

from .client import Batch, BatchResult, Conflict, SyncClient
from .errors import (
    AuthenticationError,
    ConnectionError,
    ConstraintError,
    GroupUnresolvedError,
    NotFoundError,
    RateLimitedError,
    ReferentialError,
    ServerError,
    UnavailableError,
    ValidationError,
    VoltHomeError,
    error_from_response,
)
from .replica import LocalReplica

__all__ = [
    "AuthenticationError",
    "Batch",
    "BatchResult",
    "Conflict",
    "ConnectionError",
    "ConstraintError",
    "GroupUnresolvedError",
    "LocalReplica",
    "NotFoundError",
    "RateLimitedError",
    "ReferentialError",
    "ServerError",
    "SyncClient",
    "UnavailableError",
    "ValidationError",
    "VoltHomeError",
    "error_from_response",
]
