"""
Shared fixtures for the auto-update test suite.
"""

import asyncio
import os
import tempfile

import pytest

from autoupdate_common.models import ContainerSnapshot, UpgradeOutcome
from autoupdate_persistence.sqlite_repository import SQLiteAutoUpdateRepository


class RecordingUpgradeAction:
    """Upgrade action double that records calls and answers from a script."""

    def __init__(self, success: bool = True, delay: float = 0.0, error: str = "pull failed"):
        self.success = success
        self.delay = delay
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    async def upgrade(self, snapshot: ContainerSnapshot, target_version: str | None):
        self.calls.append((snapshot.id, target_version))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.success:
            return UpgradeOutcome(success=True, new_version=target_version)
        return UpgradeOutcome(success=False, error_message=self.error)


@pytest.fixture
def db_path():
    """Path to a temporary database file, removed afterwards."""
    fd, path = tempfile.mkstemp(suffix=".db", prefix="autoupdate_test_")
    os.close(fd)

    yield path

    if os.path.exists(path):
        os.unlink(path)


@pytest.fixture
async def temp_db(db_path):
    """Initialized SQLite repository on a temporary file."""
    repo = SQLiteAutoUpdateRepository(db_path)
    await repo.initialize()

    yield repo

    await repo.close()


@pytest.fixture
def make_snapshot():
    """Factory for container snapshots with sensible defaults."""

    def _make(
        id: str = "c1",
        name: str = "my-plex",
        image_repo: str = "plexinc/pms-docker",
        image_tag: str | None = "1.0",
        stack_name: str | None = None,
        service_name: str | None = None,
        endpoint: str = "local",
    ) -> ContainerSnapshot:
        return ContainerSnapshot(
            id=id,
            name=name,
            image_repo=image_repo,
            image_tag=image_tag,
            stack_name=stack_name,
            service_name=service_name,
            source_endpoint_id=endpoint,
            source_endpoint_name=endpoint,
        )

    return _make


@pytest.fixture
def upgrade_action():
    return RecordingUpgradeAction()


@pytest.fixture
def failing_upgrade_action():
    return RecordingUpgradeAction(success=False)


@pytest.fixture
def make_upgrade_action():
    """The recording upgrade action class, for tests that need custom behavior."""
    return RecordingUpgradeAction
