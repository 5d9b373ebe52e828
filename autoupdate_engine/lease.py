"""
Per-container upgrade leases.

A lease is an explicit keyed mutual-exclusion marker stored in the shared
database, so batch passes in the controller process and manual upgrades
served by the API process contend for the same keys. Every acquisition gets
its own token; only the token holder can release it.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

from autoupdate_common.errors import ConcurrencyConflict
from autoupdate_common.repository import AutoUpdateRepository

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = 10 * 60.0  # Seconds before an abandoned lease is reclaimed


class UpgradeLeaseManager:
    """Acquire and release per-container upgrade leases."""

    def __init__(
        self,
        repository: AutoUpdateRepository,
        stale_after: float = DEFAULT_STALE_AFTER,
    ):
        """
        Initialize the lease manager.

        Args:
            repository: Repository holding the shared lease table
            stale_after: Seconds after which a held lease is considered
                abandoned (holder crashed) and may be reclaimed
        """
        self.repository = repository
        self.stale_after = stale_after

    async def acquire(self, key: str, owner: str) -> str | None:
        """
        Try to acquire the lease for key.

        Returns:
            Acquisition token if acquired, None if the lease is held
        """
        token = f"{owner}#{uuid.uuid4().hex[:12]}"
        now = datetime.now(UTC)
        acquired = await self.repository.try_acquire_lease(
            key, token, now, now - timedelta(seconds=self.stale_after)
        )
        return token if acquired else None

    async def release(self, key: str, token: str) -> None:
        await self.repository.release_lease(key, token)

    async def is_leased(self, key: str) -> bool:
        return await self.repository.get_lease_owner(key) is not None

    async def refresh(self, key: str, token: str) -> bool:
        return await self.repository.refresh_lease(key, token, datetime.now(UTC))

    async def _heartbeat(self, key: str, token: str) -> None:
        """Renew the lease well inside the stale window until cancelled."""
        interval = max(self.stale_after / 3, 0.01)
        while True:
            await asyncio.sleep(interval)
            try:
                if not await self.refresh(key, token):
                    logger.warning(f"Lease {key} lost by {token}")
                    return
            except Exception as e:
                logger.warning(f"Failed to renew lease {key}: {e}")

    @asynccontextmanager
    async def hold(self, key: str, owner: str) -> AsyncIterator[str]:
        """
        Hold the lease for the duration of the block.

        The lease is renewed in the background while the block runs, so a
        long upgrade is never reclaimed as stale by another process.

        Raises:
            ConcurrencyConflict: If another holder has the lease
        """
        token = await self.acquire(key, owner)
        if token is None:
            holder = await self.repository.get_lease_owner(key)
            raise ConcurrencyConflict(key, holder)

        logger.debug(f"Lease {key} acquired by {token}")
        heartbeat = asyncio.create_task(self._heartbeat(key, token))
        try:
            yield token
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
            try:
                await asyncio.shield(self.release(key, token))
            except Exception as e:
                # The unrenewed lease is reclaimed once it goes stale
                logger.error(f"Failed to release lease {key} held by {token}: {e}")
            else:
                logger.debug(f"Lease {key} released by {token}")
