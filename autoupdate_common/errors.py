"""
Error taxonomy shared by every auto-update component.

Validation and not-found errors are recovered at the request boundary.
Upstream and upgrade failures are recovered per intent or per container
and never abort a whole batch pass.
"""


class AutoUpdateError(Exception):
    """Base class for all auto-update domain errors."""


class ValidationError(AutoUpdateError):
    """Malformed intent criteria (zero or several variants, empty field)."""


class NotFoundError(AutoUpdateError):
    """Operation on a non-existent intent or ledger record."""


class UpstreamError(AutoUpdateError):
    """Inventory or version-source collaborator unreachable or errored."""


class UpgradeFailure(AutoUpdateError):
    """The upgrade action reported failure or timed out."""


class ConcurrencyConflict(AutoUpdateError):
    """An upgrade lease is already held for the container."""

    def __init__(self, key: str, owner: str | None = None):
        self.key = key
        self.owner = owner
        holder = f" by {owner}" if owner else ""
        super().__init__(f"Upgrade already in progress for {key}{holder}")


class NoUpdateAvailable(AutoUpdateError):
    """A manual upgrade was requested for a container with no newer version known."""
