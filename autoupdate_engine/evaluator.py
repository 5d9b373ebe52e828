"""
Match evaluation: resolve an intent's containers and compare their versions.

The evaluator performs no writes, so it backs both the dry-run test-match
preview and the first phase of a real batch pass.
"""

from collections.abc import Iterable, Mapping

from autoupdate_common.models import (
    ContainerSnapshot,
    Intent,
    MatchedContainer,
    MatchResult,
    VersionLookup,
)

from .comparator import compare
from .resolver import resolve


def evaluate(
    intent: Intent,
    inventory: Iterable[ContainerSnapshot],
    version_lookups: Mapping[str, VersionLookup | None],
) -> MatchResult:
    """
    Build the match report for one intent.

    Args:
        intent: Intent whose criteria are applied
        inventory: Container snapshots across all endpoints
        version_lookups: Version-source answers keyed by image repository

    Returns:
        Immutable MatchResult; equal inputs always produce equal results
    """
    matched = resolve(intent.criteria, inventory)
    return MatchResult(
        intent_id=intent.id,
        matches=tuple(
            MatchedContainer(snapshot=snapshot, version=compare(snapshot, version_lookups))
            for snapshot in matched
        ),
    )
