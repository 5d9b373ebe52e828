"""
Upgrade execution for matched, outdated containers.

For each outdated match the executor acquires the container's lease, invokes
the upgrade action with a timeout, and builds an UpgradeRecord from the
outcome. Failures are recorded, never raised, so one bad container cannot
abort the rest of a pass.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from autoupdate_common.errors import ConcurrencyConflict, UpgradeFailure
from autoupdate_common.models import (
    UPGRADE_FAILED,
    UPGRADE_SUCCESS,
    MatchedContainer,
    MatchResult,
    UpgradeOutcome,
    UpgradeRecord,
)

from .collaborators import UpgradeAction
from .lease import UpgradeLeaseManager

logger = logging.getLogger(__name__)

DEFAULT_UPGRADE_TIMEOUT = 600.0


class UpgradeExecutor:
    """Apply upgrades to outdated matches under per-container leases."""

    def __init__(
        self,
        lease_manager: UpgradeLeaseManager,
        upgrade_timeout: float | None = DEFAULT_UPGRADE_TIMEOUT,
        max_parallel: int = 1,
    ):
        """
        Initialize the executor.

        Args:
            lease_manager: Shared per-container lease manager
            upgrade_timeout: Seconds before an upgrade attempt is recorded as
                failed (None disables the executor-side timeout)
            max_parallel: Maximum concurrent attempts within one execute call
        """
        self.lease_manager = lease_manager
        self.upgrade_timeout = upgrade_timeout
        self.max_parallel = max(1, max_parallel)

    async def execute(
        self,
        match_result: MatchResult,
        upgrade_action: UpgradeAction,
        *,
        intent_id: str | None = None,
        owner: str | None = None,
        trigger: str = "batch",
        should_continue: Callable[[], Awaitable[bool]] | None = None,
        on_record: Callable[[UpgradeRecord], Awaitable[None]] | None = None,
    ) -> list[UpgradeRecord]:
        """
        Upgrade every outdated container in a match result.

        Args:
            match_result: Report produced by the match evaluator
            upgrade_action: Collaborator performing the upgrades
            intent_id: Intent that produced the matches (recorded on records)
            owner: Lease owner label (defaults to "intent:<id>" or trigger)
            trigger: "batch" or "manual"
            should_continue: Checked before each not-yet-started attempt;
                returning False skips the remaining attempts
            on_record: Awaited with each record as soon as its attempt ends,
                so finished upgrades are persisted even if a sibling fails

        Returns:
            Records of all attempts, in completion order. Containers that
            were current, leased elsewhere, or skipped produce no record.

        Raises:
            Exception: The first error raised outside an upgrade attempt
                (lease storage or on_record), after every attempt has ended
        """
        owner = owner or (f"intent:{intent_id}" if intent_id else trigger)
        records: list[UpgradeRecord] = []
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def attempt(match: MatchedContainer) -> None:
            async with semaphore:
                if should_continue is not None and not await should_continue():
                    logger.info(f"Skipping {match.name}: pass stopped for {owner}")
                    return
                try:
                    record = await self.upgrade_one(
                        match,
                        upgrade_action,
                        owner=owner,
                        intent_id=intent_id,
                        trigger=trigger,
                    )
                except ConcurrencyConflict as e:
                    logger.info(f"Skipping {match.name}: {e}")
                    return
                records.append(record)
                if on_record is not None:
                    await on_record(record)

        outdated = match_result.outdated
        if not outdated:
            return records

        results = await asyncio.gather(
            *(attempt(match) for match in outdated), return_exceptions=True
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        for error in errors:
            logger.error(f"Upgrade attempt for {owner} aborted: {error}")
        if errors:
            raise errors[0]
        return records

    async def upgrade_one(
        self,
        match: MatchedContainer,
        upgrade_action: UpgradeAction,
        *,
        owner: str,
        intent_id: str | None = None,
        trigger: str = "batch",
    ) -> UpgradeRecord:
        """
        Upgrade a single container while holding its lease.

        Raises:
            ConcurrencyConflict: If the container's lease is already held
        """
        async with self.lease_manager.hold(match.snapshot.lease_key, owner):
            return await self._attempt(match, upgrade_action, intent_id, trigger)

    async def _invoke(
        self, match: MatchedContainer, upgrade_action: UpgradeAction
    ) -> UpgradeOutcome:
        """Run the upgrade action, turning timeouts and reported failures into UpgradeFailure."""
        target = match.version.latest_version
        try:
            if self.upgrade_timeout is None:
                outcome = await upgrade_action.upgrade(match.snapshot, target)
            else:
                outcome = await asyncio.wait_for(
                    upgrade_action.upgrade(match.snapshot, target),
                    timeout=self.upgrade_timeout,
                )
        except asyncio.TimeoutError as e:
            raise UpgradeFailure(
                f"Upgrade timed out after {self.upgrade_timeout:g}s"
            ) from e

        if not outcome.success:
            raise UpgradeFailure(outcome.error_message or "Upgrade action reported failure")
        return outcome

    async def _attempt(
        self,
        match: MatchedContainer,
        upgrade_action: UpgradeAction,
        intent_id: str | None,
        trigger: str,
    ) -> UpgradeRecord:
        snapshot = match.snapshot
        target = match.version.latest_version
        outcome: UpgradeOutcome | None = None
        error_message: str | None = None

        logger.info(
            f"Upgrading {snapshot.name} ({snapshot.image}) "
            f"from {match.version.current_version} to {target}"
        )
        started_at = datetime.now(UTC)
        try:
            outcome = await self._invoke(match, upgrade_action)
        except UpgradeFailure as e:
            error_message = str(e)
        except Exception as e:
            error_message = str(e) or e.__class__.__name__
        ended_at = datetime.now(UTC)

        new_version = (outcome.new_version if outcome else None) or target
        new_image = (outcome.new_image if outcome else None) or (
            f"{snapshot.image_repo}:{new_version}" if new_version else None
        )

        record = UpgradeRecord(
            id=str(uuid.uuid4()),
            intent_id=intent_id,
            container_id=snapshot.id,
            container_name=snapshot.name,
            source_endpoint_name=snapshot.source_endpoint_name,
            image_repo=snapshot.image_repo,
            old_image=snapshot.image,
            old_version=match.version.current_version,
            new_image=new_image,
            new_version=new_version,
            status=UPGRADE_SUCCESS if error_message is None else UPGRADE_FAILED,
            trigger=trigger,
            started_at=started_at,
            ended_at=ended_at,
            error_message=error_message,
        )

        if record.succeeded:
            logger.info(
                f"Upgraded {snapshot.name} to {new_version} in {record.duration_ms}ms"
            )
        else:
            logger.error(f"Failed to upgrade {snapshot.name}: {error_message}")
        return record
