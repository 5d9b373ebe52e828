"""
Contracts for the external collaborators the engine depends on.

- InventorySource: current container snapshots across all endpoints
- VersionSource: latest known version for an image repository
- UpgradeAction: performs the upgrade of one container

Static implementations backed by JSON files are provided for configuration
and testing; Docker-backed adapters live in container_manager and registry.
"""

import asyncio
import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol

from autoupdate_common.errors import UpstreamError
from autoupdate_common.models import ContainerSnapshot, UpgradeOutcome, VersionLookup

logger = logging.getLogger(__name__)


class InventorySource(Protocol):
    async def list_containers(self) -> list[ContainerSnapshot]: ...


class VersionSource(Protocol):
    async def lookup(self, image_repo: str) -> VersionLookup | None: ...


class UpgradeAction(Protocol):
    async def upgrade(
        self, snapshot: ContainerSnapshot, target_version: str | None
    ) -> UpgradeOutcome: ...


class StaticInventorySource:
    """Inventory backed by a fixed list of snapshots."""

    def __init__(self, containers: Iterable[ContainerSnapshot] = ()):
        self.containers = list(containers)

    @classmethod
    def from_file(cls, path: str | Path) -> "StaticInventorySource":
        """
        Load snapshots from a JSON file.

        The file holds either a list of containers or {"containers": [...]}.
        """
        data: Any = json.loads(Path(path).read_text())
        if isinstance(data, dict):
            data = data.get("containers", [])
        return cls(ContainerSnapshot.from_dict(item) for item in data)

    async def list_containers(self) -> list[ContainerSnapshot]:
        return list(self.containers)


class StaticVersionSource:
    """Version source backed by a mapping of image repository to lookup."""

    def __init__(self, versions: dict[str, VersionLookup] | None = None):
        self.versions = dict(versions or {})

    @classmethod
    def from_file(cls, path: str | Path) -> "StaticVersionSource":
        """Load {"<image repo>": {"latestVersion": ..., ...}} from JSON."""
        data: dict[str, Any] = json.loads(Path(path).read_text())
        return cls({repo: VersionLookup.from_dict(item) for repo, item in data.items()})

    async def lookup(self, image_repo: str) -> VersionLookup | None:
        return self.versions.get(image_repo)


async def fetch_inventory(source: InventorySource) -> list[ContainerSnapshot]:
    """
    Pull the current inventory, wrapping collaborator failures.

    Raises:
        UpstreamError: If the inventory source is unreachable or errored
    """
    try:
        return await source.list_containers()
    except UpstreamError:
        raise
    except Exception as e:
        raise UpstreamError(f"Inventory source failed: {e}") from e


async def fetch_version_lookups(
    source: VersionSource,
    image_repos: Iterable[str],
    cache: dict[str, VersionLookup | None] | None = None,
) -> dict[str, VersionLookup | None]:
    """
    Look up versions for each distinct image repository.

    Args:
        source: Version-source collaborator
        image_repos: Repositories to look up (duplicates are collapsed)
        cache: Optional per-pass cache shared between intents

    Returns:
        Mapping of image repository to lookup (None when unknown)

    Raises:
        UpstreamError: If any lookup fails
    """
    cache = cache if cache is not None else {}
    pending = [repo for repo in dict.fromkeys(image_repos) if repo not in cache]

    results = await asyncio.gather(
        *(source.lookup(repo) for repo in pending), return_exceptions=True
    )

    for repo, result in zip(pending, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            logger.warning(f"Version lookup failed for {repo}: {result}")
            raise UpstreamError(f"Version lookup failed for {repo}: {result}") from result
        cache[repo] = result

    return cache
