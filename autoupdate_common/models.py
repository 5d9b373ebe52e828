"""
Data models for auto-update intents and the upgrade ledger.

These models represent the domain objects used throughout the application,
independent of the underlying storage mechanism and of the remote
container-management backends that produce inventory snapshots.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar, Union

from .errors import ValidationError

UPGRADE_SUCCESS = "success"
UPGRADE_FAILED = "failed"
UPGRADE_STATUSES = (UPGRADE_SUCCESS, UPGRADE_FAILED)


def _require_text(value: Any, field_name: str) -> str:
    """Return the trimmed value, rejecting non-strings and blank strings."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} must be a non-empty string")
    return value.strip()


def _present(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _pick(data: dict[str, Any], *keys: str) -> Any:
    """Return the first non-None value among camelCase/snake_case aliases."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


# ============================================================================
# Matching criteria
# ============================================================================


@dataclass(frozen=True)
class ImageRepoCriteria:
    """Match every container running an image from this repository."""

    repo: str
    kind: ClassVar[str] = "image_repo"

    def __post_init__(self) -> None:
        object.__setattr__(self, "repo", _require_text(self.repo, "imageRepo"))

    def to_fields(self) -> dict[str, str | None]:
        return {
            "image_repo": self.repo,
            "stack_name": None,
            "service_name": None,
            "container_name": None,
        }


@dataclass(frozen=True)
class StackServiceCriteria:
    """Match containers belonging to one service of one compose stack."""

    stack: str
    service: str
    kind: ClassVar[str] = "stack_service"

    def __post_init__(self) -> None:
        object.__setattr__(self, "stack", _require_text(self.stack, "stackName"))
        object.__setattr__(
            self, "service", _require_text(self.service, "serviceName")
        )

    def to_fields(self) -> dict[str, str | None]:
        return {
            "image_repo": None,
            "stack_name": self.stack,
            "service_name": self.service,
            "container_name": None,
        }


@dataclass(frozen=True)
class ContainerNameCriteria:
    """Match a single container by its exact name."""

    name: str
    kind: ClassVar[str] = "container_name"

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _require_text(self.name, "containerName"))

    def to_fields(self) -> dict[str, str | None]:
        return {
            "image_repo": None,
            "stack_name": None,
            "service_name": None,
            "container_name": self.name,
        }


Criteria = Union[ImageRepoCriteria, StackServiceCriteria, ContainerNameCriteria]
CRITERIA_TYPES = (ImageRepoCriteria, StackServiceCriteria, ContainerNameCriteria)


def criteria_from_fields(
    image_repo: str | None = None,
    stack_name: str | None = None,
    service_name: str | None = None,
    container_name: str | None = None,
) -> Criteria:
    """
    Build exactly one criteria variant from the flat request/storage shape.

    Args:
        image_repo: Image repository to match
        stack_name: Compose stack name (requires service_name)
        service_name: Compose service name (requires stack_name)
        container_name: Exact container name to match

    Returns:
        The single populated criteria variant

    Raises:
        ValidationError: If zero or several variants are populated, or if
            only one of stack_name/service_name is given
    """
    has_stack_service = _present(stack_name) or _present(service_name)
    populated = [
        label
        for label, is_set in (
            ("imageRepo", _present(image_repo)),
            ("stackName+serviceName", has_stack_service),
            ("containerName", _present(container_name)),
        )
        if is_set
    ]

    if not populated:
        raise ValidationError(
            "Exactly one matching criterion is required "
            "(imageRepo, stackName+serviceName, or containerName)"
        )
    if len(populated) > 1:
        raise ValidationError(
            f"Only one matching criterion may be set, got: {', '.join(populated)}"
        )

    if _present(image_repo):
        return ImageRepoCriteria(image_repo)  # type: ignore[arg-type]
    if has_stack_service:
        if not (_present(stack_name) and _present(service_name)):
            raise ValidationError("stackName and serviceName must be provided together")
        return StackServiceCriteria(stack_name, service_name)  # type: ignore[arg-type]
    return ContainerNameCriteria(container_name)  # type: ignore[arg-type]


# ============================================================================
# Intents
# ============================================================================


@dataclass
class Intent:
    """
    A persisted rule describing which containers to keep up to date.

    Intents are created disabled, toggled any number of times, and hard
    deleted. The criteria invariant is enforced at construction time.
    """

    id: str
    criteria: Criteria
    description: str | None = None
    enabled: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.criteria, CRITERIA_TYPES):
            raise ValidationError("Intent criteria must be exactly one known variant")

    def to_dict(self) -> dict[str, Any]:
        """Convert intent to dictionary format (for API responses)."""
        fields = self.criteria.to_fields()
        return {
            "id": self.id,
            "criteriaType": self.criteria.kind,
            "imageRepo": fields["image_repo"],
            "stackName": fields["stack_name"],
            "serviceName": fields["service_name"],
            "containerName": fields["container_name"],
            "description": self.description,
            "enabled": self.enabled,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }


# ============================================================================
# Inventory and version data (supplied by external collaborators)
# ============================================================================


@dataclass(frozen=True)
class ContainerSnapshot:
    """
    Read-only projection of a container as seen at evaluation time.

    Produced by an inventory source; the engine never mutates it.
    """

    id: str
    name: str
    image_repo: str
    image_tag: str | None = None
    digest: str | None = None
    stack_name: str | None = None
    service_name: str | None = None
    source_endpoint_id: str | None = None
    source_endpoint_name: str | None = None

    @property
    def image(self) -> str:
        """Full image reference (repo:tag, repo@digest, or bare repo)."""
        if self.image_tag:
            return f"{self.image_repo}:{self.image_tag}"
        if self.digest:
            return f"{self.image_repo}@{self.digest}"
        return self.image_repo

    @property
    def lease_key(self) -> str:
        """Key for the per-container upgrade lease."""
        if self.source_endpoint_id:
            return f"{self.source_endpoint_id}:{self.id}"
        return self.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "imageRepo": self.image_repo,
            "imageTag": self.image_tag,
            "digest": self.digest,
            "stackName": self.stack_name,
            "serviceName": self.service_name,
            "sourceEndpointId": self.source_endpoint_id,
            "sourceEndpointName": self.source_endpoint_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContainerSnapshot":
        """Create a snapshot from camelCase or snake_case keys."""
        endpoint_id = _pick(data, "sourceEndpointId", "source_endpoint_id")
        return cls(
            id=str(_pick(data, "id", "containerId", "container_id")),
            name=_pick(data, "name", "containerName", "container_name"),
            image_repo=_pick(data, "imageRepo", "image_repo"),
            image_tag=_pick(data, "imageTag", "image_tag"),
            digest=_pick(data, "digest"),
            stack_name=_pick(data, "stackName", "stack_name"),
            service_name=_pick(data, "serviceName", "service_name"),
            source_endpoint_id=str(endpoint_id) if endpoint_id is not None else None,
            source_endpoint_name=_pick(
                data, "sourceEndpointName", "source_endpoint_name"
            ),
        )


@dataclass(frozen=True)
class VersionLookup:
    """Raw answer of a version source for one image repository."""

    current_version: str | None = None
    latest_version: str | None = None
    publish_date: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VersionLookup":
        return cls(
            current_version=_pick(data, "currentVersion", "current_version"),
            latest_version=_pick(data, "latestVersion", "latest_version"),
            publish_date=_pick(data, "publishDate", "publish_date"),
        )


@dataclass(frozen=True)
class VersionRecord:
    """Comparison of a container's running version against the latest one."""

    current_version: str | None = None
    latest_version: str | None = None
    has_update: bool = False
    publish_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentVersion": self.current_version,
            "latestVersion": self.latest_version,
            "hasUpdate": self.has_update,
            "publishDate": self.publish_date,
        }


# ============================================================================
# Match evaluation (never persisted)
# ============================================================================


@dataclass(frozen=True)
class MatchedContainer:
    """One container selected by an intent, with its version comparison."""

    snapshot: ContainerSnapshot
    version: VersionRecord

    @property
    def container_id(self) -> str:
        return self.snapshot.id

    @property
    def name(self) -> str:
        return self.snapshot.name

    @property
    def image_repo(self) -> str:
        return self.snapshot.image_repo

    @property
    def has_update(self) -> bool:
        return self.version.has_update

    @property
    def update_available(self) -> str | None:
        """Latest version when an update exists, otherwise None."""
        return self.version.latest_version if self.version.has_update else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.container_id,
            "name": self.name,
            "imageRepo": self.image_repo,
            "stackName": self.snapshot.stack_name,
            "hasUpdate": self.has_update,
            "updateAvailable": self.update_available,
            "currentVersion": self.version.current_version,
            "latestVersion": self.version.latest_version,
        }


@dataclass(frozen=True)
class MatchResult:
    """Read-only match report for one intent."""

    intent_id: str
    matches: tuple[MatchedContainer, ...] = ()

    @property
    def matched_count(self) -> int:
        return len(self.matches)

    @property
    def with_updates_count(self) -> int:
        return sum(1 for match in self.matches if match.has_update)

    @property
    def outdated(self) -> list[MatchedContainer]:
        return [match for match in self.matches if match.has_update]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the test-match response shape."""
        return {
            "intentId": self.intent_id,
            "matchedCount": self.matched_count,
            "withUpdatesCount": self.with_updates_count,
            "matchedContainers": [match.to_dict() for match in self.matches],
        }


# ============================================================================
# Upgrade attempts and the ledger
# ============================================================================


@dataclass(frozen=True)
class UpgradeOutcome:
    """Answer of the upgrade-action collaborator for one container."""

    success: bool
    new_version: str | None = None
    new_image: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class UpgradeRecord:
    """
    One completed (or failed) upgrade attempt.

    Records are immutable once appended to the ledger; corrections are
    new records.
    """

    id: str
    container_id: str
    container_name: str
    status: str  # "success" or "failed"
    started_at: datetime
    ended_at: datetime | None = None
    source_endpoint_name: str | None = None
    old_image: str | None = None
    old_version: str | None = None
    new_image: str | None = None
    new_version: str | None = None
    error_message: str | None = None
    intent_id: str | None = None  # None for manual upgrades
    image_repo: str | None = None
    trigger: str = "batch"  # "batch" or "manual"
    duration_ms: int | None = None  # Derived from started_at/ended_at

    def __post_init__(self) -> None:
        if self.status not in UPGRADE_STATUSES:
            raise ValueError(f"Invalid upgrade status: {self.status}")
        if self.duration_ms is None and self.ended_at is not None:
            delta = self.ended_at - self.started_at
            object.__setattr__(
                self, "duration_ms", max(0, int(delta.total_seconds() * 1000))
            )

    @property
    def succeeded(self) -> bool:
        return self.status == UPGRADE_SUCCESS

    def to_dict(self) -> dict[str, Any]:
        """Convert record to dictionary format (for API responses)."""
        return {
            "id": self.id,
            "intentId": self.intent_id,
            "containerId": self.container_id,
            "containerName": self.container_name,
            "sourceEndpointName": self.source_endpoint_name,
            "imageRepo": self.image_repo,
            "oldImage": self.old_image,
            "oldVersion": self.old_version,
            "newImage": self.new_image,
            "newVersion": self.new_version,
            "status": self.status,
            "trigger": self.trigger,
            "startedAt": _isoformat(self.started_at),
            "endedAt": _isoformat(self.ended_at),
            "durationMs": self.duration_ms,
            "errorMessage": self.error_message,
        }


EXECUTION_COMPLETED = "completed"
EXECUTION_PARTIAL = "partial"
EXECUTION_FAILED = "failed"
EXECUTION_STATUSES = (EXECUTION_COMPLETED, EXECUTION_PARTIAL, EXECUTION_FAILED)


@dataclass(frozen=True)
class IntentExecution:
    """
    One intent's share of a batch pass, kept even when nothing was upgraded.

    Status is "failed" when the intent errored upstream or every attempt
    failed, "partial" when some attempts failed, and "completed" otherwise.
    """

    id: str
    intent_id: str
    pass_id: str
    status: str
    started_at: datetime
    completed_at: datetime
    containers_matched: int = 0
    containers_with_updates: int = 0
    containers_upgraded: int = 0
    containers_failed: int = 0
    error_message: str | None = None
    trigger: str = "batch"
    duration_ms: int | None = None

    def __post_init__(self) -> None:
        if self.status not in EXECUTION_STATUSES:
            raise ValueError(f"Invalid execution status: {self.status}")
        if self.duration_ms is None:
            delta = self.completed_at - self.started_at
            object.__setattr__(
                self, "duration_ms", max(0, int(delta.total_seconds() * 1000))
            )

    @property
    def containers_skipped(self) -> int:
        """Outdated containers that were not attempted (leased or already taken)."""
        attempted = self.containers_upgraded + self.containers_failed
        return max(0, self.containers_with_updates - attempted)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "intentId": self.intent_id,
            "passId": self.pass_id,
            "status": self.status,
            "trigger": self.trigger,
            "containersMatched": self.containers_matched,
            "containersWithUpdates": self.containers_with_updates,
            "containersUpgraded": self.containers_upgraded,
            "containersFailed": self.containers_failed,
            "containersSkipped": self.containers_skipped,
            "errorMessage": self.error_message,
            "startedAt": _isoformat(self.started_at),
            "completedAt": _isoformat(self.completed_at),
            "durationMs": self.duration_ms,
        }
