"""
Intent store: identity and enabled state of auto-update intents.
"""

import logging
import uuid
from datetime import UTC, datetime

from autoupdate_common.errors import NotFoundError, ValidationError
from autoupdate_common.models import CRITERIA_TYPES, Criteria, Intent
from autoupdate_common.repository import AutoUpdateRepository

logger = logging.getLogger(__name__)


class IntentStore:
    """CRUD operations for intents on top of the repository."""

    def __init__(self, repository: AutoUpdateRepository):
        self.repository = repository

    async def create(
        self,
        criteria: Criteria,
        description: str | None = None,
        enabled: bool = False,
    ) -> Intent:
        """
        Create and persist a new intent.

        Args:
            criteria: Exactly one criteria variant
            description: Optional free text
            enabled: Initial enabled state (intents start disabled)

        Returns:
            The persisted Intent

        Raises:
            ValidationError: If criteria is not a valid variant
        """
        if not isinstance(criteria, CRITERIA_TYPES):
            raise ValidationError("Intent criteria must be exactly one known variant")

        intent = Intent(
            id=str(uuid.uuid4()),
            criteria=criteria,
            description=description.strip() if description and description.strip() else None,
            enabled=enabled,
            created_at=datetime.now(UTC),
        )
        await self.repository.create_intent(intent)

        logger.info(
            f"Intent {intent.id} created ({criteria.kind}, enabled={intent.enabled})"
        )
        return intent

    async def list(self, enabled_only: bool = False) -> list[Intent]:
        return await self.repository.list_intents(enabled_only=enabled_only)

    async def get(self, intent_id: str) -> Intent:
        """
        Raises:
            NotFoundError: If the intent does not exist
        """
        intent = await self.repository.get_intent(intent_id)
        if intent is None:
            raise NotFoundError(f"Intent not found: {intent_id}")
        return intent

    async def set_enabled(self, intent_id: str, enabled: bool) -> Intent:
        """
        Enable or disable an intent.

        Raises:
            NotFoundError: If the intent does not exist
        """
        found = await self.repository.set_intent_enabled(
            intent_id, enabled, datetime.now(UTC)
        )
        if not found:
            raise NotFoundError(f"Intent not found: {intent_id}")

        logger.info(f"Intent {intent_id} {'enabled' if enabled else 'disabled'}")
        return await self.get(intent_id)

    async def is_enabled(self, intent_id: str) -> bool:
        """False for disabled or deleted intents."""
        intent = await self.repository.get_intent(intent_id)
        return intent is not None and intent.enabled

    async def delete(self, intent_id: str) -> None:
        """
        Hard-delete an intent.

        Raises:
            NotFoundError: If the intent does not exist
        """
        if not await self.repository.delete_intent(intent_id):
            raise NotFoundError(f"Intent not found: {intent_id}")
        logger.info(f"Intent {intent_id} deleted")
