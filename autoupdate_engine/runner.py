"""
Batch pass orchestration.

One pass walks every enabled intent in creation order:

1. Fetch the inventory once for the whole pass
2. Look up versions for the intent's matched repositories (cached per pass)
3. Evaluate the intent
4. Execute upgrades for its outdated matches
5. Append each resulting record to the ledger

Upstream failures fail a single intent; the remaining intents still run.
A ledger write failure fails the pass.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from autoupdate_common.errors import NoUpdateAvailable, NotFoundError, UpstreamError
from autoupdate_common.models import (
    EXECUTION_COMPLETED,
    EXECUTION_FAILED,
    EXECUTION_PARTIAL,
    ContainerSnapshot,
    Intent,
    IntentExecution,
    MatchedContainer,
    MatchResult,
    UpgradeRecord,
    VersionLookup,
)
from autoupdate_common.repository import AutoUpdateRepository

from .collaborators import (
    InventorySource,
    UpgradeAction,
    VersionSource,
    fetch_inventory,
    fetch_version_lookups,
)
from .comparator import compare
from .evaluator import evaluate
from .executor import UpgradeExecutor
from .intent_store import IntentStore
from .lease import UpgradeLeaseManager
from .resolver import resolve

logger = logging.getLogger(__name__)

DEFAULT_RUN_INTERVAL = 3600.0


@dataclass
class IntentRunResult:
    """Outcome of one intent within a batch pass."""

    intent_id: str
    matched_count: int = 0
    with_updates_count: int = 0
    records: list[UpgradeRecord] = field(default_factory=list)
    error: str | None = None

    @property
    def upgraded_count(self) -> int:
        return sum(1 for r in self.records if r.succeeded)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.records if not r.succeeded)

    @property
    def status(self) -> str:
        if self.error is not None or (self.records and self.upgraded_count == 0):
            return EXECUTION_FAILED
        if self.failed_count:
            return EXECUTION_PARTIAL
        return EXECUTION_COMPLETED

    def to_execution(
        self, pass_id: str, started_at: datetime, completed_at: datetime
    ) -> IntentExecution:
        return IntentExecution(
            id=str(uuid.uuid4()),
            intent_id=self.intent_id,
            pass_id=pass_id,
            status=self.status,
            started_at=started_at,
            completed_at=completed_at,
            containers_matched=self.matched_count,
            containers_with_updates=self.with_updates_count,
            containers_upgraded=self.upgraded_count,
            containers_failed=self.failed_count,
            error_message=self.error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "intentId": self.intent_id,
            "matchedCount": self.matched_count,
            "withUpdatesCount": self.with_updates_count,
            "upgraded": self.upgraded_count,
            "failed": self.failed_count,
            "status": self.status,
            "recordIds": [r.id for r in self.records],
            "error": self.error,
        }


@dataclass
class BatchPassResult:
    """Summary of a complete batch pass."""

    pass_id: str
    intents: list[IntentRunResult] = field(default_factory=list)

    @property
    def records(self) -> list[UpgradeRecord]:
        return [record for result in self.intents for record in result.records]

    @property
    def errors(self) -> dict[str, str]:
        return {r.intent_id: r.error for r in self.intents if r.error is not None}

    def to_dict(self) -> dict[str, Any]:
        records = self.records
        return {
            "passId": self.pass_id,
            "intentsEvaluated": len(self.intents),
            "upgradesAttempted": len(records),
            "upgradesSucceeded": sum(1 for r in records if r.succeeded),
            "upgradesFailed": sum(1 for r in records if not r.succeeded),
            "errors": self.errors,
            "intents": [r.to_dict() for r in self.intents],
        }


class BatchRunner:
    """
    Runs batch passes over enabled intents, once or on an interval.

    The loop follows the controller pattern used by the rest of the
    system: start() spawns a background task, stop() cancels it, and
    run_pass() is a single cycle that can also be invoked directly.
    """

    def __init__(
        self,
        repository: AutoUpdateRepository,
        inventory_source: InventorySource,
        version_source: VersionSource,
        upgrade_action: UpgradeAction,
        executor: UpgradeExecutor | None = None,
        run_interval: float = DEFAULT_RUN_INTERVAL,
    ):
        """
        Initialize the batch runner.

        Args:
            repository: Repository holding intents, ledger and leases
            inventory_source: Collaborator listing containers
            version_source: Collaborator answering latest versions
            upgrade_action: Collaborator performing upgrades
            executor: Upgrade executor (defaults to one sharing the repository's leases)
            run_interval: Seconds between passes when running as a loop
        """
        self.repository = repository
        self.store = IntentStore(repository)
        self.inventory_source = inventory_source
        self.version_source = version_source
        self.upgrade_action = upgrade_action
        self.executor = executor or UpgradeExecutor(UpgradeLeaseManager(repository))
        self.run_interval = run_interval

        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the periodic pass loop."""
        if self._running:
            logger.warning("Batch runner already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Batch runner started (interval {self.run_interval}s)")

    async def stop(self) -> None:
        """Stop the loop; an in-flight pass is cancelled."""
        if not self._running:
            return

        logger.info("Stopping batch runner...")
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Batch runner stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_pass()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in batch pass: {e}", exc_info=True)
            await asyncio.sleep(self.run_interval)

    async def run_pass(self) -> BatchPassResult:
        """
        Run one batch pass across all enabled intents.

        Every intent leaves an execution row, including intents that
        matched nothing or failed upstream.

        Returns:
            Per-intent counts, records and errors

        Raises:
            Exception: If writing a ledger record or execution row fails
        """
        result = BatchPassResult(pass_id=str(uuid.uuid4()))
        intents = await self.store.list(enabled_only=True)
        if not intents:
            logger.info("Batch pass: no enabled intents")
            return result

        logger.info(f"Batch pass {result.pass_id}: {len(intents)} enabled intents")

        started_at = datetime.now(UTC)
        try:
            inventory = await fetch_inventory(self.inventory_source)
        except UpstreamError as e:
            logger.error(f"Batch pass {result.pass_id}: {e}")
            completed_at = datetime.now(UTC)
            for intent in intents:
                intent_result = IntentRunResult(intent_id=intent.id, error=str(e))
                await self.repository.append_intent_execution(
                    intent_result.to_execution(result.pass_id, started_at, completed_at)
                )
                result.intents.append(intent_result)
            return result

        version_cache: dict[str, VersionLookup | None] = {}
        attempted: set[str] = set()

        for intent in intents:
            intent_started = datetime.now(UTC)
            intent_result = await self._run_intent(intent, inventory, version_cache, attempted)
            await self.repository.append_intent_execution(
                intent_result.to_execution(result.pass_id, intent_started, datetime.now(UTC))
            )
            result.intents.append(intent_result)

        summary = result.to_dict()
        logger.info(
            f"Batch pass {result.pass_id} finished: "
            f"{summary['upgradesSucceeded']} upgraded, "
            f"{summary['upgradesFailed']} failed, {len(result.errors)} intent errors"
        )
        return result

    async def _run_intent(
        self,
        intent: Intent,
        inventory: list[ContainerSnapshot],
        version_cache: dict[str, VersionLookup | None],
        attempted: set[str],
    ) -> IntentRunResult:
        intent_result = IntentRunResult(intent_id=intent.id)

        try:
            match_result = await self._evaluate(intent, inventory, version_cache)
        except UpstreamError as e:
            logger.warning(f"Intent {intent.id} skipped for this pass: {e}")
            intent_result.error = str(e)
            return intent_result

        intent_result.matched_count = match_result.matched_count
        intent_result.with_updates_count = match_result.with_updates_count

        # A container matched by several intents is upgraded once per pass,
        # by the first intent in creation order
        remaining = MatchResult(
            intent_id=match_result.intent_id,
            matches=tuple(
                m for m in match_result.matches if m.snapshot.lease_key not in attempted
            ),
        )
        attempted.update(m.snapshot.lease_key for m in remaining.outdated)

        async def still_enabled() -> bool:
            return await self.store.is_enabled(intent.id)

        records = await self.executor.execute(
            remaining,
            self.upgrade_action,
            intent_id=intent.id,
            trigger="batch",
            should_continue=still_enabled,
            on_record=self.repository.append_upgrade_record,
        )
        intent_result.records = records
        return intent_result

    async def _evaluate(
        self,
        intent: Intent,
        inventory: list[ContainerSnapshot],
        version_cache: dict[str, VersionLookup | None],
    ) -> MatchResult:
        repos = [snapshot.image_repo for snapshot in resolve(intent.criteria, inventory)]
        lookups = await fetch_version_lookups(self.version_source, repos, version_cache)
        return evaluate(intent, inventory, lookups)

    async def test_match(self, intent_id: str) -> MatchResult:
        """
        Dry-run an intent against the live inventory.

        Nothing is upgraded or written.

        Raises:
            NotFoundError: If the intent does not exist
            UpstreamError: If a collaborator fails
        """
        intent = await self.store.get(intent_id)
        inventory = await fetch_inventory(self.inventory_source)
        return await self._evaluate(intent, inventory, {})

    async def upgrade_container(self, container_id: str) -> UpgradeRecord:
        """
        Manually upgrade one container to its latest known version.

        Goes through the same lease and ledger as batch passes.

        Raises:
            NotFoundError: If no container has this id
            NoUpdateAvailable: If no newer version is known for the container
            UpstreamError: If a collaborator fails
            ConcurrencyConflict: If the container is already being upgraded
        """
        inventory = await fetch_inventory(self.inventory_source)
        snapshot = next((c for c in inventory if c.id == container_id), None)
        if snapshot is None:
            raise NotFoundError(f"Container not found: {container_id}")

        lookups = await fetch_version_lookups(self.version_source, [snapshot.image_repo])
        match = MatchedContainer(snapshot=snapshot, version=compare(snapshot, lookups))
        if not match.version.has_update:
            latest = match.version.latest_version or "unknown"
            raise NoUpdateAvailable(
                f"No newer version known for {snapshot.name} "
                f"(current {snapshot.image_tag}, latest {latest})"
            )

        record = await self.executor.upgrade_one(
            match, self.upgrade_action, owner="manual", trigger="manual"
        )
        await self.repository.append_upgrade_record(record)
        return record
