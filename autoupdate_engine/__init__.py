"""
Auto-update engine.

Resolves intents against the container inventory, compares versions,
executes upgrades under per-container leases and runs batch passes. The
engine also hosts the Docker and Docker Hub collaborator adapters and the
standalone controller entrypoint (python -m autoupdate_engine).
"""

from .analytics import aggregate, calculate_stats, filter_by_endpoints, speed_score
from .collaborators import (
    InventorySource,
    StaticInventorySource,
    StaticVersionSource,
    UpgradeAction,
    VersionSource,
)
from .comparator import compare, has_update, normalize_version
from .evaluator import evaluate
from .executor import UpgradeExecutor
from .intent_store import IntentStore
from .lease import UpgradeLeaseManager
from .resolver import resolve
from .runner import BatchPassResult, BatchRunner, IntentRunResult

__all__ = [
    "BatchPassResult",
    "BatchRunner",
    "IntentRunResult",
    "IntentStore",
    "InventorySource",
    "StaticInventorySource",
    "StaticVersionSource",
    "UpgradeAction",
    "UpgradeExecutor",
    "UpgradeLeaseManager",
    "VersionSource",
    "aggregate",
    "calculate_stats",
    "compare",
    "evaluate",
    "filter_by_endpoints",
    "has_update",
    "normalize_version",
    "resolve",
    "speed_score",
]
