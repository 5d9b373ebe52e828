"""
Abstract repository interface for intent and upgrade-ledger persistence.

This module defines the contract that any database implementation must follow,
allowing easy swapping between SQLite, PostgreSQL, MySQL, etc.
"""

from abc import ABC, abstractmethod
from collections.abc import Collection
from datetime import datetime
from typing import Any

from .models import Intent, IntentExecution, UpgradeRecord


class AutoUpdateRepository(ABC):
    """
    Abstract base class for auto-update storage operations.

    Implementations must provide async-safe access to intents, the
    append-only upgrade ledger and upgrade leases, and handle their own
    connection management.
    """

    # Intent methods

    @abstractmethod
    async def create_intent(self, intent: Intent) -> None:
        """
        Persist a new intent.

        Args:
            intent: Intent object to persist

        Raises:
            Exception: If an intent with the same ID already exists
        """
        pass

    @abstractmethod
    async def get_intent(self, intent_id: str) -> Intent | None:
        """
        Retrieve an intent by its ID.

        Args:
            intent_id: UUID of the intent

        Returns:
            Intent object if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_intents(self, enabled_only: bool = False) -> list[Intent]:
        """
        List intents in creation order.

        Args:
            enabled_only: Only return intents with enabled=True

        Returns:
            List of Intent objects
        """
        pass

    @abstractmethod
    async def set_intent_enabled(
        self, intent_id: str, enabled: bool, updated_at: datetime
    ) -> bool:
        """
        Toggle an intent's enabled state.

        Args:
            intent_id: UUID of the intent
            enabled: New enabled state
            updated_at: Timestamp of the change

        Returns:
            True if the intent existed, False otherwise
        """
        pass

    @abstractmethod
    async def delete_intent(self, intent_id: str) -> bool:
        """
        Hard-delete an intent.

        Args:
            intent_id: UUID of the intent

        Returns:
            True if the intent existed, False otherwise
        """
        pass

    # Upgrade ledger methods (append-only: no update or delete is exposed)

    @abstractmethod
    async def append_upgrade_record(self, record: UpgradeRecord) -> None:
        """
        Append an upgrade attempt to the ledger.

        Args:
            record: Completed or failed upgrade attempt

        Raises:
            Exception: If the ledger cannot be written
        """
        pass

    @abstractmethod
    async def query_upgrade_history(
        self,
        container_name: str | None = None,
        status: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[UpgradeRecord]:
        """
        Query ledger records in insertion order.

        Args:
            container_name: Substring filter on the container name
            status: Exact status filter ("success" or "failed")
            limit: Maximum number of records (None for all)
            offset: Number of matching records to skip

        Returns:
            List of UpgradeRecord objects
        """
        pass

    @abstractmethod
    async def get_upgrade_record(self, record_id: str) -> UpgradeRecord | None:
        """
        Retrieve a single ledger record.

        Args:
            record_id: ID of the record

        Returns:
            UpgradeRecord if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_upgrade_stats(
        self, endpoints: Collection[str] | None = None
    ) -> dict[str, Any]:
        """
        Summarize the ledger.

        Args:
            endpoints: Only count records from these endpoint names
                (None or empty means every endpoint)

        Returns:
            Dictionary with total, success_count, failed_count,
            avg_duration_ms, first_upgrade_at and last_upgrade_at
        """
        pass

    # Intent execution methods

    @abstractmethod
    async def append_intent_execution(self, execution: IntentExecution) -> None:
        """
        Persist the outcome of one intent within a batch pass.

        Args:
            execution: Execution summary to persist
        """
        pass

    @abstractmethod
    async def list_intent_executions(
        self, intent_id: str, limit: int = 50
    ) -> list[IntentExecution]:
        """
        Get an intent's executions, newest first.

        Args:
            intent_id: Intent whose executions to list
            limit: Maximum number of executions to return
        """
        pass

    # Upgrade lease methods

    @abstractmethod
    async def try_acquire_lease(
        self, key: str, owner: str, now: datetime, stale_before: datetime
    ) -> bool:
        """
        Atomically acquire the upgrade lease for a container.

        Leases acquired before stale_before are reclaimed first.

        Args:
            key: Lease key (endpoint-qualified container ID)
            owner: Holder description (e.g. "intent:<id>", "manual")
            now: Acquisition timestamp
            stale_before: Leases older than this are considered abandoned

        Returns:
            True if the lease was acquired, False if it is held elsewhere
        """
        pass

    @abstractmethod
    async def refresh_lease(self, key: str, owner: str, now: datetime) -> bool:
        """
        Renew a held lease so it is not reclaimed as stale.

        Args:
            key: Lease key
            owner: Holder that acquired the lease
            now: New acquisition timestamp

        Returns:
            True if owner still holds the lease, False if it was lost
        """
        pass

    @abstractmethod
    async def release_lease(self, key: str, owner: str) -> None:
        """
        Release a lease held by owner (no-op if not held).

        Args:
            key: Lease key
            owner: Holder that acquired the lease
        """
        pass

    @abstractmethod
    async def get_lease_owner(self, key: str) -> str | None:
        """
        Return the current holder of a lease, or None if it is free.

        Args:
            key: Lease key
        """
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """
        Initialize the database (create tables, etc.).

        Called once at application startup.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Close database connections and cleanup resources.

        Called at application shutdown.
        """
        pass
