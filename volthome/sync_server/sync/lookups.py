"""
Row lookups shared by the resolvers.

Parent checks read rows by id in chunks, so that a batch of any size stays
under SQLite's bound-parameter limit.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator

from ..errors import ReferentialError
from ..store.models import EntityKind

# Bound parameters per IN (...) list
CHUNK_SIZE = 500


def chunked(values: list[str], size: int = CHUNK_SIZE) -> Iterator[list[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def placeholders(count: int) -> str:
    return ", ".join("?" * count)


def load_rows(
    conn: sqlite3.Connection,
    kind: EntityKind,
    ids: Iterable[str],
) -> dict[str, sqlite3.Row]:
    """Fetch rows of one kind by id, from any project and tombstoned or not."""
    wanted = sorted(set(ids))
    rows: dict[str, sqlite3.Row] = {}
    for chunk in chunked(wanted):
        cursor = conn.execute(
            f"SELECT * FROM {kind.table} WHERE id IN ({placeholders(len(chunk))})",
            chunk,
        )
        for row in cursor:
            rows[row["id"]] = row
    return rows


def parent_problem(row: sqlite3.Row | None, project_id: str) -> str | None:
    """Why a row cannot serve as a live parent in a project, or None if it can."""
    if row is None:
        return "missing_parent"
    if row["project_id"] != project_id:
        return "cross_project_parent"
    if row["is_deleted"]:
        return "parent_deleted"
    return None


def require_live(
    conn: sqlite3.Connection,
    parent_kind: EntityKind,
    project_id: str,
    references: list[tuple[str, str | None, str]],
    reason: str | None = None,
) -> dict[str, sqlite3.Row]:
    """Check that referenced parents are live members of the project.

    Args:
        conn: Open transaction
        parent_kind: Kind of the referenced rows
        project_id: Project the references must live in
        references: (entity, entity_id, parent_id) per referencing record
        reason: Reason reported instead of the detected one

    Returns:
        Parent rows by id

    Raises:
        ReferentialError: On the first reference that is not a live parent
    """
    parents = load_rows(conn, parent_kind, (parent_id for _, _, parent_id in references))
    for entity, entity_id, parent_id in references:
        problem = parent_problem(parents.get(parent_id), project_id)
        if problem is None:
            continue
        raise ReferentialError(
            f"{entity} {entity_id or '(new)'} references {parent_kind.value} {parent_id}, "
            f"which is not a live member of this project",
            entity=entity,
            entity_id=entity_id,
            reference=parent_kind.value,
            reference_id=parent_id,
            reason=reason or problem,
        )
    return parents
