"""
VoltHome Client for Python SDK.

This module provides the main client interface:
- SyncClient: HTTP connection to the VoltHome sync server
- Batch: Builder for an atomic batch of upserts and deletes
- BatchResult / Conflict: Outcome of applying a batch

Example:
    >>> async with SyncClient("http://localhost:8080", user_id="user-42") as client:
    ...     project = await client.create_project("Home")
    ...     batch = Batch().upsert_room("Kitchen", id=kitchen_id)
    ...     batch.upsert_device("Lamp", room_id=kitchen_id)
    ...     result = await client.apply_batch(project["id"], batch, base_version=1)

Invariants:
    - Every request carries the user header
    - A batch is sent as one request and applied atomically by the server
    - Only transport failures and 503 responses are retried; batches are
      idempotent, so replaying one never duplicates rows
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from .errors import ConnectionError, UnavailableError, VoltHomeError, error_from_response

logger = logging.getLogger(__name__)


@dataclass
class Conflict:
    """A record applied on top of a stale base version.

    Attributes:
        entity: rooms, groups or devices
        id: Record id
        reason: Human-readable reason
    """

    entity: str
    id: str
    reason: str


@dataclass
class BatchResult:
    """Result of applying a Batch.

    Attributes:
        new_version: Project version after the batch
        conflicts: Records the server flagged as applied over a stale base
    """

    new_version: int
    conflicts: list[Conflict] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchResult:
        return cls(
            new_version=data["newVersion"],
            conflicts=[Conflict(**item) for item in data.get("conflicts", [])],
        )


class Batch:
    """Builder for one atomic batch.

    Records without an id get a fresh UUID so that the same Batch can be
    resent after a failure without creating duplicates.

    Example:
        >>> batch = Batch()
        >>> batch.upsert_room("Kitchen", id=kitchen_id)
        >>> batch.upsert_device("Lamp", room_id=kitchen_id)
        >>> batch.delete_devices(old_lamp_id)
    """

    def __init__(self) -> None:
        self._ops: dict[str, dict[str, list[Any]]] = {
            "rooms": {"upsert": [], "delete": []},
            "groups": {"upsert": [], "delete": []},
            "devices": {"upsert": [], "delete": []},
        }

    def upsert_room(
        self,
        name: str | None = None,
        *,
        id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> Batch:
        """Add a room upsert.

        Args:
            name: Room name (required when the room is new)
            id: Room id; generated when omitted
            meta: Free-form metadata

        Returns:
            Self for chaining
        """
        record: dict[str, Any] = {"id": id or str(uuid.uuid4())}
        if name is not None:
            record["name"] = name
        if meta is not None:
            record["meta"] = meta
        self._ops["rooms"]["upsert"].append(record)
        return self

    def upsert_group(
        self,
        room_id: str | None = None,
        name: str | None = None,
        *,
        id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> Batch:
        """Add a group upsert.

        Args:
            room_id: Owning room (required when the group is new)
            name: Group name
            id: Group id; generated when omitted
            meta: Free-form metadata

        Returns:
            Self for chaining
        """
        record: dict[str, Any] = {"id": id or str(uuid.uuid4())}
        if room_id is not None:
            record["roomId"] = room_id
        if name is not None:
            record["name"] = name
        if meta is not None:
            record["meta"] = meta
        self._ops["groups"]["upsert"].append(record)
        return self

    def upsert_device(
        self,
        name: str,
        *,
        id: str | None = None,
        group_id: str | None = None,
        room_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> Batch:
        """Add a device upsert.

        A device needs either ``group_id`` or ``room_id``. With only a room,
        the server places it in that room's default group.

        Args:
            name: Device name
            id: Device id; generated when omitted
            group_id: Owning group
            room_id: Room hint, sent as ``meta.roomId``
            meta: Free-form metadata

        Returns:
            Self for chaining
        """
        record: dict[str, Any] = {"id": id or str(uuid.uuid4()), "name": name}
        if group_id is not None:
            record["groupId"] = group_id
        if room_id is not None or meta is not None:
            merged = dict(meta or {})
            if room_id is not None:
                merged["roomId"] = room_id
            record["meta"] = merged
        self._ops["devices"]["upsert"].append(record)
        return self

    def delete_rooms(self, *ids: str) -> Batch:
        """Tombstone rooms. Their groups and devices drop out of the tree."""
        self._ops["rooms"]["delete"].extend(ids)
        return self

    def delete_groups(self, *ids: str) -> Batch:
        self._ops["groups"]["delete"].extend(ids)
        return self

    def delete_devices(self, *ids: str) -> Batch:
        self._ops["devices"]["delete"].extend(ids)
        return self

    def to_dict(self, base_version: int | None = None) -> dict[str, Any]:
        """Wire form of the batch.

        Without a base version the key is left out, and the server then
        reports no staleness conflicts.
        """
        body: dict[str, Any] = {
            "ops": {
                kind: {"upsert": list(ops["upsert"]), "delete": list(ops["delete"])}
                for kind, ops in self._ops.items()
            },
        }
        if base_version is not None:
            body["baseVersion"] = base_version
        return body

    def __len__(self) -> int:
        return sum(len(ops["upsert"]) + len(ops["delete"]) for ops in self._ops.values())


class SyncClient:
    """Client for the VoltHome sync server.

    Example:
        >>> async with SyncClient("http://localhost:8080", user_id="user-42") as client:
        ...     tree = await client.get_tree(project_id)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        user_id: str = "",
        *,
        user_header: str = "X-User-ID",
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.2,
        http: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Server URL
            user_id: Identity sent in the user header
            user_header: Name of the trusted user header
            timeout: Request timeout in seconds
            max_retries: Retries for transport errors and 503 responses
            backoff_seconds: First retry delay, doubled on each attempt
            http: Pre-built httpx client (e.g. bound to an ASGI app in tests)
            sleep: Delay function used between retries
        """
        self._base_url = base_url
        self._headers = {user_header: user_id}
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._max_retries = max_retries
        self._backoff = backoff_seconds
        self._sleep = sleep

    async def close(self) -> None:
        """Close the connection."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> SyncClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # --- Projects ---

    async def create_project(
        self,
        name: str,
        note: str | None = None,
        project_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a project at version 1.

        Args:
            name: Display name
            note: Optional note
            project_id: Client-chosen id; the server generates one if omitted

        Returns:
            Project dictionary
        """
        body: dict[str, Any] = {"name": name}
        if note is not None:
            body["note"] = note
        if project_id is not None:
            body["id"] = project_id
        return await self._request("POST", "/v1/projects", json=body)

    async def list_projects(
        self,
        since: str | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """One page of projects updated after ``since``.

        Returns:
            ``{"items": [...], "next": cursor-or-None}``
        """
        params: dict[str, Any] = {}
        if since is not None:
            params["since"] = since
        if limit is not None:
            params["limit"] = limit
        return await self._request("GET", "/v1/projects", params=params)

    async def get_project(self, project_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/v1/projects/{project_id}")

    async def update_project(
        self,
        project_id: str,
        name: str | None = None,
        note: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if name is not None:
            body["name"] = name
        if note is not None:
            body["note"] = note
        return await self._request("PUT", f"/v1/projects/{project_id}", json=body)

    async def delete_project(self, project_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/v1/projects/{project_id}")

    async def get_tree(self, project_id: str) -> dict[str, Any]:
        """Live rooms, groups and devices of a project."""
        return await self._request("GET", f"/v1/projects/{project_id}/tree")

    # --- Sync ---

    async def apply_batch(
        self,
        project_id: str,
        batch: Batch | dict[str, Any],
        base_version: int | None = None,
    ) -> BatchResult:
        """Apply a batch atomically.

        Args:
            project_id: Target project
            batch: Batch builder or a raw wire dictionary
            base_version: Version the batch was built against; overrides
                any ``baseVersion`` already in a raw dictionary. When neither
                is given, none is sent and no conflicts are reported

        Returns:
            BatchResult with the new version and stale-base conflicts
        """
        if isinstance(batch, Batch):
            payload = batch.to_dict(base_version)
        else:
            payload = dict(batch)
            if base_version is not None:
                payload["baseVersion"] = base_version

        data = await self._request("POST", f"/v1/projects/{project_id}/batch", json=payload)
        return BatchResult.from_dict(data)

    async def delta(self, project_id: str, since: str | None = None) -> dict[str, Any]:
        """Rows changed at or after ``since`` (everything when omitted)."""
        params = {"since": since} if since else {}
        return await self._request("GET", f"/v1/projects/{project_id}/delta", params=params)

    async def health(self) -> dict[str, Any]:
        """Check server health.

        Returns:
            Health status dictionary
        """
        return await self._request("GET", "/health")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request, retrying transport errors and 503 responses.

        Raises:
            ConnectionError: If the server stays unreachable
            VoltHomeError: Subclass matching the server's error code
        """
        attempt = 0
        while True:
            try:
                response = await self._http.request(method, path, headers=self._headers, **kwargs)
            except httpx.TransportError as e:
                error: VoltHomeError = ConnectionError(
                    f"Failed to reach server: {e}", address=self._base_url
                )
            else:
                if response.status_code < 400:
                    return response.json()
                error = error_from_response(
                    response.status_code,
                    _json_or_none(response),
                    response.headers.get("Retry-After"),
                )

            if not isinstance(error, (ConnectionError, UnavailableError)):
                raise error
            if attempt >= self._max_retries:
                raise error

            delay = self._backoff * (2**attempt)
            attempt += 1
            logger.warning(
                f"Retrying {method} {path} after {error.code}",
                extra={"attempt": attempt, "delay": delay},
            )
            await self._sleep(delay)


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
