"""
Environment configuration shared by the controller and the API server.

Environment Variables:
    AU_DB_PATH: Database path (default: autoupdate.db)
    AU_RUN_INTERVAL: Seconds between batch passes (default: 3600)
    AU_UPGRADE_TIMEOUT: Seconds before an upgrade attempt fails (default: 600)
    AU_MAX_PARALLEL: Concurrent upgrade attempts per intent (default: 1)
    AU_INVENTORY_FILE: JSON inventory used instead of the local Docker endpoint
    AU_VERSIONS_FILE: JSON version map used instead of Docker Hub
"""

import logging
import os

from .collaborators import (
    InventorySource,
    StaticInventorySource,
    StaticVersionSource,
    UpgradeAction,
    VersionSource,
)
from .container_manager import DockerContainerManager
from .executor import DEFAULT_UPGRADE_TIMEOUT, UpgradeExecutor
from .lease import UpgradeLeaseManager
from .registry import DockerHubVersionSource
from .runner import DEFAULT_RUN_INTERVAL, BatchRunner

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "autoupdate.db"


def _positive_number(name: str, override: float | None, default: float, cast=float):
    """CLI override first, then the environment; invalid values fall back to default."""
    if override is not None:
        if override <= 0:
            logger.warning(f"Invalid {name.lower()}={override}, using default {default}")
            return default
        return override

    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw}, using default {default}")
        return default
    if value <= 0:
        logger.warning(f"Invalid {name}={value}, using default {default}")
        return default
    return value


def get_database_path(override: str | None = None) -> str:
    if override:
        return override
    return os.environ.get("AU_DB_PATH", DEFAULT_DB_PATH)


def get_run_interval(override: float | None = None) -> float:
    return _positive_number("AU_RUN_INTERVAL", override, DEFAULT_RUN_INTERVAL)


def get_upgrade_timeout(override: float | None = None) -> float:
    return _positive_number("AU_UPGRADE_TIMEOUT", override, DEFAULT_UPGRADE_TIMEOUT)


def get_max_parallel(override: int | None = None) -> int:
    return _positive_number("AU_MAX_PARALLEL", override, 1, cast=int)


def get_inventory_file(override: str | None = None) -> str | None:
    return override or os.environ.get("AU_INVENTORY_FILE") or None


def get_versions_file(override: str | None = None) -> str | None:
    return override or os.environ.get("AU_VERSIONS_FILE") or None


def build_collaborators(
    inventory_file: str | None = None,
    versions_file: str | None = None,
) -> tuple[InventorySource, VersionSource, UpgradeAction]:
    """
    Build the inventory, version and upgrade collaborators.

    Static JSON files replace the Docker endpoint and Docker Hub when given.
    Upgrades always go through the local Docker endpoint.

    Returns:
        Tuple of (inventory_source, version_source, upgrade_action)
    """
    docker = DockerContainerManager()
    inventory: InventorySource = (
        StaticInventorySource.from_file(inventory_file) if inventory_file else docker
    )
    versions: VersionSource = (
        StaticVersionSource.from_file(versions_file)
        if versions_file
        else DockerHubVersionSource()
    )
    return inventory, versions, docker


def build_runner(
    repository,
    inventory_source: InventorySource,
    version_source: VersionSource,
    upgrade_action: UpgradeAction,
    run_interval: float | None = None,
    upgrade_timeout: float | None = None,
    max_parallel: int | None = None,
) -> BatchRunner:
    """Wire a BatchRunner with an executor sharing the repository's leases."""
    executor = UpgradeExecutor(
        UpgradeLeaseManager(repository),
        upgrade_timeout=get_upgrade_timeout(upgrade_timeout),
        max_parallel=get_max_parallel(max_parallel),
    )
    return BatchRunner(
        repository=repository,
        inventory_source=inventory_source,
        version_source=version_source,
        upgrade_action=upgrade_action,
        executor=executor,
        run_interval=get_run_interval(run_interval),
    )
