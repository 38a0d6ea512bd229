"""
VoltHome Sync Server - authoritative store for offline-first project clients.

Clients keep a local copy of a project (rooms -> groups -> devices) and
synchronize with this server by pushing batches and pulling deltas:
- Batches are applied atomically and advance the project version by one
- Deltas return every row changed at or after a timestamp, tombstones included
- Upserts are idempotent by id, or by natural key when no id is sent
- Devices sent without a group land in their room's default group

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────────┐
    │   Client    │────▶│  HTTP API   │────▶│  ProjectSyncService  │
    │   (SDK)     │     │  (FastAPI)  │     │   (worker threads)   │
    └─────────────┘     └─────────────┘     └──────────┬───────────┘
                                                       │
                              ┌────────────────────────┼───────────────┐
                              ▼                        ▼               ▼
                     ┌─────────────────┐     ┌────────────────┐  ┌───────────┐
                     │ BatchApply      │────▶│ Resolvers +    │  │  Delta    │
                     │ Coordinator     │     │ DefaultGroups  │  │  Engine   │
                     └────────┬────────┘     └───────┬────────┘  └─────┬─────┘
                              ▼                      ▼                 ▼
                        ┌──────────────────────────────────────────────────┐
                        │        SQLite (one database file per owner)      │
                        └──────────────────────────────────────────────────┘

Invariants:
    - Rows are soft-deleted, never removed
    - Project version increases by exactly one per accepted batch
    - Every query is scoped to the authenticated owner

How to change safely:
    - Wire keys are camelCase and append-only
    - Schema changes must keep the partial unique indexes intact

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
