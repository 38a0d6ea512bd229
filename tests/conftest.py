"""
Shared fixtures for VoltHome sync tests.

Every fixture that touches SQLite works in a fresh temporary directory.
Time is driven by ManualClock so that timestamp boundaries are exact.
"""

import tempfile

import pytest

from volthome.sync_server.store.database import ProjectDatabase
from volthome.sync_server.store.project_store import VersionedProjectStore

OWNER = "user-42"
OTHER_OWNER = "user-7"

# 2024-01-01T00:00:00.000Z
START_MS = 1_704_067_200_000


class ManualClock:
    """Unix-ms clock that only moves when told to."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def database(data_dir):
    """Per-owner database manager without WAL (faster in temp dirs)."""
    return ProjectDatabase(data_dir, wal_mode=False)


@pytest.fixture
def projects(database, clock):
    return VersionedProjectStore(database, clock=clock)


@pytest.fixture
def project(projects):
    """A fresh project owned by OWNER, at version 1."""
    return projects.create_project(OWNER, "Home")
