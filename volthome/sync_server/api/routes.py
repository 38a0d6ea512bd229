"""
API routes for the VoltHome sync server.

All routes act on behalf of the user named in the trusted user header,
which the upstream authentication component sets. Project ids in paths
must be UUIDs.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status

from ..errors import InvalidIdError
from ..service import ProjectSyncService
from ..store.models import coerce_uuid, ms_to_iso, parse_since
from .schemas import (
    BatchResponse,
    DeltaResponse,
    ErrorResponse,
    ProjectCreateRequest,
    ProjectPage,
    ProjectResponse,
    ProjectUpdateRequest,
    TreeResponse,
)

router = APIRouter(
    tags=["Projects"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)


# --- Dependencies ---


def get_service(request: Request) -> ProjectSyncService:
    """Get sync service from app state."""
    return request.app.state.service


def get_user_id(request: Request) -> str:
    """Get the authenticated user id from the trusted header."""
    header = request.app.state.settings.user_header
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {header} header",
        )
    return user_id


def get_project_id(project_id: str) -> str:
    """Validate and canonicalize a project id path parameter."""
    canonical = coerce_uuid(project_id)
    if canonical is None:
        raise InvalidIdError(f"Invalid project id: {project_id!r}", field_name="project_id")
    return canonical


def rate_limit(route: str):
    """Build a dependency enforcing the per-user limit of a route class."""

    def check(request: Request, user_id: str = Depends(get_user_id)) -> None:
        config = request.app.state.config.rate_limit
        if not config.enabled:
            return
        limit = config.read_per_minute if route == "read" else config.batch_per_minute
        request.app.state.rate_limiter.check(user_id, route, limit)

    return check


read_limit = Depends(rate_limit("read"))
write_limit = Depends(rate_limit("write"))
batch_limit = Depends(rate_limit("batch"))


def _parse_limit(value: str | None, default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


# --- Project Routes ---


@router.post(
    "",
    response_model=ProjectResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[write_limit],
)
async def create_project(
    body: ProjectCreateRequest,
    user_id: str = Depends(get_user_id),
    service: ProjectSyncService = Depends(get_service),
) -> dict[str, Any]:
    """Create a project at version 1."""
    project_id = None
    if body.id:
        project_id = coerce_uuid(body.id)
        if project_id is None:
            raise InvalidIdError(f"Invalid project id: {body.id!r}")

    project = await service.create_project(user_id, body.name, body.note, project_id)
    return project.to_dict()


@router.get("", response_model=ProjectPage, dependencies=[read_limit])
async def list_projects(
    request: Request,
    since: str | None = Query(None, description="ISO-8601 cursor (exclusive)"),
    limit: str | None = Query(None, description="Page size (1-200)"),
    user_id: str = Depends(get_user_id),
    service: ProjectSyncService = Depends(get_service),
) -> dict[str, Any]:
    """List projects updated after a cursor, oldest first."""
    page_size = _parse_limit(limit, request.app.state.settings.default_page_size)
    page_size = max(1, min(page_size, 200))
    since_ms = parse_since(since) if since else None

    projects = await service.list_projects(user_id, since_ms, page_size)
    next_cursor = ms_to_iso(projects[-1].updated_at) if len(projects) == page_size else None
    return {"items": [project.to_dict() for project in projects], "next": next_cursor}


@router.get("/{project_id}", response_model=ProjectResponse, dependencies=[read_limit])
async def get_project(
    project_id: str = Depends(get_project_id),
    user_id: str = Depends(get_user_id),
    service: ProjectSyncService = Depends(get_service),
) -> dict[str, Any]:
    """Project metadata, tombstoned projects included."""
    project = await service.get_project(user_id, project_id)
    return project.to_dict()


@router.get("/{project_id}/tree", response_model=TreeResponse, dependencies=[read_limit])
async def get_tree(
    project_id: str = Depends(get_project_id),
    user_id: str = Depends(get_user_id),
    service: ProjectSyncService = Depends(get_service),
) -> dict[str, Any]:
    """Snapshot of the live hierarchy."""
    tree = await service.get_tree(user_id, project_id)
    return tree.to_dict()


@router.put("/{project_id}", response_model=ProjectResponse, dependencies=[write_limit])
async def update_project(
    body: ProjectUpdateRequest,
    project_id: str = Depends(get_project_id),
    user_id: str = Depends(get_user_id),
    service: ProjectSyncService = Depends(get_service),
) -> dict[str, Any]:
    """Change project name and/or note."""
    project = await service.update_project(user_id, project_id, body.name, body.note)
    return project.to_dict()


@router.delete("/{project_id}", response_model=ProjectResponse, dependencies=[write_limit])
async def delete_project(
    project_id: str = Depends(get_project_id),
    user_id: str = Depends(get_user_id),
    service: ProjectSyncService = Depends(get_service),
) -> dict[str, Any]:
    """Soft-delete a project."""
    project = await service.delete_project(user_id, project_id)
    return project.to_dict()


# --- Sync Routes ---


@router.post("/{project_id}/batch", response_model=BatchResponse, dependencies=[batch_limit])
async def apply_batch(
    payload: dict[str, Any] = Body(...),
    project_id: str = Depends(get_project_id),
    user_id: str = Depends(get_user_id),
    service: ProjectSyncService = Depends(get_service),
) -> dict[str, Any]:
    """Apply a batch of upserts and deletes atomically."""
    result = await service.apply_batch(user_id, project_id, payload)
    return result.to_dict()


@router.get("/{project_id}/delta", response_model=DeltaResponse, dependencies=[read_limit])
async def get_delta(
    since: str | None = Query(None, description="ISO-8601 cursor (inclusive)"),
    project_id: str = Depends(get_project_id),
    user_id: str = Depends(get_user_id),
    service: ProjectSyncService = Depends(get_service),
) -> dict[str, Any]:
    """Rows changed at or after ``since``."""
    result = await service.delta(user_id, project_id, parse_since(since))
    return result.to_dict()
