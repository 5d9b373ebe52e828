"""
Auto-update common module.

This module contains shared domain models, errors and interfaces used across
the auto-update components (server, engine, persistence, CLIs).

The common module has no dependencies on other autoupdate_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .errors import (
    AutoUpdateError,
    ConcurrencyConflict,
    NoUpdateAvailable,
    NotFoundError,
    UpgradeFailure,
    UpstreamError,
    ValidationError,
)
from .models import (
    ContainerNameCriteria,
    ContainerSnapshot,
    Criteria,
    ImageRepoCriteria,
    Intent,
    IntentExecution,
    MatchedContainer,
    MatchResult,
    StackServiceCriteria,
    UpgradeOutcome,
    UpgradeRecord,
    VersionLookup,
    VersionRecord,
    criteria_from_fields,
)
from .repository import AutoUpdateRepository

__all__ = [
    "AutoUpdateError",
    "AutoUpdateRepository",
    "ConcurrencyConflict",
    "ContainerNameCriteria",
    "ContainerSnapshot",
    "Criteria",
    "ImageRepoCriteria",
    "Intent",
    "IntentExecution",
    "MatchResult",
    "MatchedContainer",
    "NoUpdateAvailable",
    "NotFoundError",
    "StackServiceCriteria",
    "UpgradeFailure",
    "UpgradeOutcome",
    "UpgradeRecord",
    "UpstreamError",
    "ValidationError",
    "VersionLookup",
    "VersionRecord",
    "criteria_from_fields",
]
