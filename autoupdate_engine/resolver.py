"""
Criteria resolution: which containers in an inventory does an intent select.

Resolution is a pure function of its inputs. Unknown criteria resolve to an
empty selection so evaluation stays total.
"""

from collections.abc import Iterable

from autoupdate_common.models import (
    ContainerNameCriteria,
    ContainerSnapshot,
    Criteria,
    ImageRepoCriteria,
    StackServiceCriteria,
)


def matches(criteria: Criteria, snapshot: ContainerSnapshot) -> bool:
    """Return True if a single snapshot satisfies the criteria."""
    if isinstance(criteria, ImageRepoCriteria):
        # Repo identity survives container recreation, so match on it
        # across all endpoints regardless of stack or name.
        return snapshot.image_repo == criteria.repo
    if isinstance(criteria, StackServiceCriteria):
        return (
            snapshot.stack_name == criteria.stack
            and snapshot.service_name == criteria.service
        )
    if isinstance(criteria, ContainerNameCriteria):
        return snapshot.name == criteria.name
    return False


def resolve(
    criteria: Criteria | None, inventory: Iterable[ContainerSnapshot]
) -> list[ContainerSnapshot]:
    """
    Select the snapshots matched by criteria, preserving inventory order.

    Args:
        criteria: One criteria variant (None resolves to nothing)
        inventory: Container snapshots across all endpoints

    Returns:
        Matched snapshots in input order
    """
    if criteria is None:
        return []
    return [snapshot for snapshot in inventory if matches(criteria, snapshot)]
