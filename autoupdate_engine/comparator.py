"""
Version comparison for matched containers.

Compares the running version against the latest one reported by the version
source. Missing data on either side never reports an update.
"""

from collections.abc import Mapping

from autoupdate_common.models import ContainerSnapshot, VersionLookup, VersionRecord


def normalize_version(version: str | None) -> str | None:
    """
    Normalize a version string for equality checks.

    Trims whitespace and strips one leading "v"; otherwise case-sensitive.
    Blank values normalize to None.

    Example:
        >>> normalize_version(" v1.2.0 ")
        '1.2.0'
    """
    if version is None:
        return None
    normalized = str(version).strip()
    if normalized.startswith("v"):
        normalized = normalized[1:]
    return normalized or None


def has_update(current: str | None, latest: str | None) -> bool:
    """True only when both versions are known and differ after normalization."""
    normalized_current = normalize_version(current)
    normalized_latest = normalize_version(latest)
    if normalized_current is None or normalized_latest is None:
        return False
    return normalized_latest != normalized_current


def compare(
    snapshot: ContainerSnapshot, version_lookups: Mapping[str, VersionLookup | None]
) -> VersionRecord:
    """
    Build the version record for one container.

    Args:
        snapshot: Container being compared
        version_lookups: Version-source answers keyed by image repository

    Returns:
        VersionRecord; both versions are None when no lookup is available
    """
    lookup = version_lookups.get(snapshot.image_repo)
    if lookup is None:
        return VersionRecord()

    # Sources that only know the latest release fall back to the running tag
    current = lookup.current_version or snapshot.image_tag
    return VersionRecord(
        current_version=current,
        latest_version=lookup.latest_version,
        has_update=has_update(current, lookup.latest_version),
        publish_date=lookup.publish_date,
    )
