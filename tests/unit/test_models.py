"""
Unit tests for the domain models.

Covers the criteria tagged union, intent serialization, snapshot parsing and
upgrade record derivations.
"""

from datetime import UTC, datetime, timedelta

import pytest

from autoupdate_common.errors import ValidationError
from autoupdate_common.models import (
    ContainerNameCriteria,
    ContainerSnapshot,
    ImageRepoCriteria,
    Intent,
    IntentExecution,
    MatchedContainer,
    MatchResult,
    StackServiceCriteria,
    UpgradeRecord,
    VersionRecord,
    criteria_from_fields,
)


class TestCriteria:
    def test_image_repo_trims_whitespace(self):
        assert ImageRepoCriteria("  nginx ").repo == "nginx"

    @pytest.mark.parametrize("value", ["", "   ", None, 42])
    def test_empty_or_non_string_fields_rejected(self, value):
        with pytest.raises(ValidationError):
            ImageRepoCriteria(value)
        with pytest.raises(ValidationError):
            ContainerNameCriteria(value)
        with pytest.raises(ValidationError):
            StackServiceCriteria("media", value)

    def test_criteria_are_immutable(self):
        criteria = StackServiceCriteria("media", "plex")
        with pytest.raises(AttributeError):
            criteria.stack = "other"

    def test_from_fields_builds_each_variant(self):
        assert criteria_from_fields(image_repo="nginx") == ImageRepoCriteria("nginx")
        assert criteria_from_fields(
            stack_name="media", service_name="plex"
        ) == StackServiceCriteria("media", "plex")
        assert criteria_from_fields(container_name="my-plex") == ContainerNameCriteria(
            "my-plex"
        )

    def test_from_fields_requires_one_variant(self):
        with pytest.raises(ValidationError, match="Exactly one"):
            criteria_from_fields()
        with pytest.raises(ValidationError, match="Exactly one"):
            criteria_from_fields(image_repo="  ", container_name="")

    def test_from_fields_rejects_several_variants(self):
        with pytest.raises(ValidationError, match="Only one"):
            criteria_from_fields(image_repo="nginx", container_name="web")
        with pytest.raises(ValidationError, match="Only one"):
            criteria_from_fields(image_repo="nginx", stack_name="media", service_name="plex")

    def test_from_fields_rejects_half_stack_service(self):
        with pytest.raises(ValidationError, match="together"):
            criteria_from_fields(stack_name="media")
        with pytest.raises(ValidationError, match="together"):
            criteria_from_fields(service_name="plex")

    def test_kind_and_fields(self):
        criteria = StackServiceCriteria("media", "plex")
        assert criteria.kind == "stack_service"
        assert criteria.to_fields() == {
            "image_repo": None,
            "stack_name": "media",
            "service_name": "plex",
            "container_name": None,
        }


class TestIntent:
    def test_defaults_to_disabled(self):
        intent = Intent(id="i1", criteria=ImageRepoCriteria("nginx"))
        assert intent.enabled is False
        assert intent.created_at.tzinfo is not None

    def test_rejects_unknown_criteria(self):
        with pytest.raises(ValidationError):
            Intent(id="i1", criteria={"imageRepo": "nginx"})

    def test_to_dict(self):
        created = datetime(2024, 1, 1, tzinfo=UTC)
        intent = Intent(
            id="i1",
            criteria=ContainerNameCriteria("my-plex"),
            description="Plex",
            enabled=True,
            created_at=created,
        )

        assert intent.to_dict() == {
            "id": "i1",
            "criteriaType": "container_name",
            "imageRepo": None,
            "stackName": None,
            "serviceName": None,
            "containerName": "my-plex",
            "description": "Plex",
            "enabled": True,
            "createdAt": created.isoformat(),
            "updatedAt": None,
        }


class TestContainerSnapshot:
    def test_image_reference(self):
        assert ContainerSnapshot("c1", "web", "nginx", image_tag="1.25").image == "nginx:1.25"
        assert (
            ContainerSnapshot("c1", "web", "nginx", digest="sha256:abc").image
            == "nginx@sha256:abc"
        )
        assert ContainerSnapshot("c1", "web", "nginx").image == "nginx"

    def test_lease_key_is_endpoint_qualified(self):
        assert ContainerSnapshot("c1", "web", "nginx", source_endpoint_id="2").lease_key == "2:c1"
        assert ContainerSnapshot("c1", "web", "nginx").lease_key == "c1"

    def test_from_dict_accepts_both_key_styles(self):
        camel = ContainerSnapshot.from_dict(
            {
                "id": "c1",
                "name": "plex",
                "imageRepo": "plexinc/pms-docker",
                "imageTag": "1.0",
                "stackName": "media",
                "serviceName": "plex",
                "sourceEndpointId": 3,
                "sourceEndpointName": "nas",
            }
        )
        snake = ContainerSnapshot.from_dict(
            {
                "container_id": "c1",
                "container_name": "plex",
                "image_repo": "plexinc/pms-docker",
                "image_tag": "1.0",
                "stack_name": "media",
                "service_name": "plex",
                "source_endpoint_id": "3",
                "source_endpoint_name": "nas",
            }
        )

        assert camel == snake
        assert camel.source_endpoint_id == "3"


class TestMatchResult:
    def test_counts_and_outdated(self):
        current = MatchedContainer(
            ContainerSnapshot("c1", "a", "nginx"), VersionRecord("1.0", "1.0", False)
        )
        outdated = MatchedContainer(
            ContainerSnapshot("c2", "b", "nginx"), VersionRecord("1.0", "1.1", True)
        )
        result = MatchResult("i1", (current, outdated))

        assert result.matched_count == 2
        assert result.with_updates_count == 1
        assert result.outdated == [outdated]
        assert current.update_available is None
        assert outdated.update_available == "1.1"

        data = result.to_dict()
        assert data["matchedCount"] == 2
        assert data["withUpdatesCount"] == 1
        assert [c["name"] for c in data["matchedContainers"]] == ["a", "b"]


class TestUpgradeRecord:
    def test_duration_derived_from_timestamps(self):
        started = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        record = UpgradeRecord(
            id="r1",
            container_id="c1",
            container_name="web",
            status="success",
            started_at=started,
            ended_at=started + timedelta(seconds=12.5),
        )
        assert record.duration_ms == 12500
        assert record.succeeded

    def test_duration_absent_without_end(self):
        record = UpgradeRecord(
            id="r1",
            container_id="c1",
            container_name="web",
            status="failed",
            started_at=datetime.now(UTC),
        )
        assert record.duration_ms is None
        assert not record.succeeded

    def test_invalid_status_rejected(self):
        with pytest.raises(ValueError):
            UpgradeRecord(
                id="r1",
                container_id="c1",
                container_name="web",
                status="running",
                started_at=datetime.now(UTC),
            )

    def test_to_dict_uses_camel_case(self):
        started = datetime(2024, 1, 1, tzinfo=UTC)
        data = UpgradeRecord(
            id="r1",
            container_id="c1",
            container_name="web",
            status="failed",
            started_at=started,
            ended_at=started + timedelta(seconds=1),
            error_message="boom",
            trigger="manual",
        ).to_dict()

        assert data["containerName"] == "web"
        assert data["durationMs"] == 1000
        assert data["errorMessage"] == "boom"
        assert data["trigger"] == "manual"
        assert data["intentId"] is None


class TestIntentExecution:
    def make(self, **kwargs):
        started = datetime(2024, 1, 15, 9, 0, tzinfo=UTC)
        defaults = {
            "id": "e1",
            "intent_id": "intent-1",
            "pass_id": "pass-1",
            "status": "partial",
            "started_at": started,
            "completed_at": started + timedelta(seconds=2),
        }
        return IntentExecution(**{**defaults, **kwargs})

    def test_skipped_are_outdated_but_unattempted(self):
        execution = self.make(
            containers_with_updates=4, containers_upgraded=1, containers_failed=1
        )

        assert execution.containers_skipped == 2
        assert execution.duration_ms == 2000

    def test_invalid_status_rejected(self):
        with pytest.raises(ValueError):
            self.make(status="running")

    def test_to_dict(self):
        data = self.make(containers_matched=3, error_message="boom").to_dict()

        assert data["intentId"] == "intent-1"
        assert data["passId"] == "pass-1"
        assert data["containersMatched"] == 3
        assert data["containersSkipped"] == 0
        assert data["errorMessage"] == "boom"
        assert data["completedAt"] == "2024-01-15T09:00:02+00:00"
