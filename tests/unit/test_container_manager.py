"""
Unit tests for autoupdate_engine.container_manager module.

Tests the Docker-backed inventory and upgrade action with mocked docker CLI
calls.
"""

import asyncio
import json
import os
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from autoupdate_common.models import ContainerSnapshot, MatchedContainer, VersionRecord
from autoupdate_engine.container_manager import (
    DockerContainerManager,
    derive_service_name,
    parse_image_reference,
)
from autoupdate_engine.executor import UpgradeExecutor
from autoupdate_engine.lease import UpgradeLeaseManager


def inspect_output(*containers):
    return (0, json.dumps(list(containers)), "")


def container_details(id="abc123", name="/media-plex-1", image="plexinc/pms-docker:1.0", labels=None):
    return {"Id": id, "Name": name, "Config": {"Image": image, "Labels": labels}}


COMPOSE_LABELS = {
    "com.docker.compose.project": "media",
    "com.docker.compose.service": "plex",
    "com.docker.compose.project.working_dir": "/srv/media",
    "com.docker.compose.project.config_files": "/srv/media/compose.yml",
}


class TestParseImageReference:
    @pytest.mark.parametrize(
        "image, expected",
        [
            ("nginx", ("nginx", None, None)),
            ("nginx:1.25", ("nginx", "1.25", None)),
            ("docker.io/library/nginx:1.25", ("library/nginx", "1.25", None)),
            ("plexinc/pms-docker:latest", ("plexinc/pms-docker", "latest", None)),
            ("localhost:5000/app", ("localhost:5000/app", None, None)),
            ("localhost:5000/app:2.0", ("localhost:5000/app", "2.0", None)),
            ("nginx@sha256:abc", ("nginx", None, "sha256:abc")),
            ("nginx:1.25@sha256:abc", ("nginx", "1.25", "sha256:abc")),
        ],
    )
    def test_parse(self, image, expected):
        assert parse_image_reference(image) == expected


class TestDeriveServiceName:
    @pytest.mark.parametrize(
        "name, stack, expected",
        [
            ("media_plex_1", "media", "plex"),
            ("media-plex-1", "media", "plex"),
            ("media-plex-server-2", "media", "plex-server"),
            ("media_plex", "media", "plex"),
            ("standalone", "media", "standalone"),
            ("media_plex_1", None, None),
        ],
    )
    def test_derive(self, name, stack, expected):
        assert derive_service_name(name, stack) == expected


class TestListContainers:
    """Test suite for DockerContainerManager.list_containers."""

    @pytest.mark.asyncio
    async def test_lists_and_inspects(self):
        manager = DockerContainerManager(endpoint_id="1", endpoint_name="nas")
        run = AsyncMock(
            side_effect=[
                (0, "abc123\ndef456\n", ""),
                inspect_output(
                    container_details(labels=COMPOSE_LABELS),
                    container_details(id="def456", name="/cache", image="redis:7.0"),
                ),
            ]
        )

        with patch.object(manager, "_run", run):
            containers = await manager.list_containers()

        assert containers == [
            ContainerSnapshot(
                id="abc123",
                name="media-plex-1",
                image_repo="plexinc/pms-docker",
                image_tag="1.0",
                stack_name="media",
                service_name="plex",
                source_endpoint_id="1",
                source_endpoint_name="nas",
            ),
            ContainerSnapshot(
                id="def456",
                name="cache",
                image_repo="redis",
                image_tag="7.0",
                source_endpoint_id="1",
                source_endpoint_name="nas",
            ),
        ]
        assert run.await_args_list[1].args == ("docker", "inspect", "abc123", "def456")

    @pytest.mark.asyncio
    async def test_stack_namespace_fallback(self):
        manager = DockerContainerManager()
        labels = {"com.docker.stack.namespace": "media"}
        run = AsyncMock(
            side_effect=[
                (0, "abc123\n", ""),
                inspect_output(container_details(name="/media_plex_1", labels=labels)),
            ]
        )

        with patch.object(manager, "_run", run):
            [container] = await manager.list_containers()

        assert container.stack_name == "media"
        assert container.service_name == "plex"

    @pytest.mark.asyncio
    async def test_no_containers(self):
        manager = DockerContainerManager()
        run = AsyncMock(return_value=(0, "\n", ""))

        with patch.object(manager, "_run", run):
            assert await manager.list_containers() == []

        run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_docker_failure_raises(self):
        manager = DockerContainerManager()
        run = AsyncMock(return_value=(1, "", "Cannot connect to the Docker daemon\n"))

        with patch.object(manager, "_run", run):
            with pytest.raises(RuntimeError, match="Cannot connect"):
                await manager.list_containers()

    @pytest.mark.asyncio
    async def test_incomplete_details_skipped(self):
        manager = DockerContainerManager()
        run = AsyncMock(
            side_effect=[
                (0, "abc123\n", ""),
                inspect_output({"Name": "/broken", "Config": {"Image": "nginx"}}),
            ]
        )

        with patch.object(manager, "_run", run):
            assert await manager.list_containers() == []


class TestUpgrade:
    """Test suite for DockerContainerManager.upgrade."""

    @pytest.fixture
    def snapshot(self):
        return ContainerSnapshot(
            id="abc123",
            name="media-plex-1",
            image_repo="plexinc/pms-docker",
            image_tag="1.0",
            stack_name="media",
            service_name="plex",
        )

    @pytest.mark.asyncio
    async def test_pulls_and_recreates_service(self, snapshot):
        manager = DockerContainerManager()
        run = AsyncMock(
            side_effect=[
                inspect_output(container_details(labels=COMPOSE_LABELS)),
                (0, "", ""),
                (0, "", ""),
            ]
        )

        with patch.object(manager, "_run", run):
            outcome = await manager.upgrade(snapshot, "1.1")

        assert outcome.success
        assert outcome.new_version == "1.1"
        assert outcome.new_image == "plexinc/pms-docker:1.1"
        assert run.await_args_list[1].args == ("docker", "pull", "plexinc/pms-docker:1.1")
        assert run.await_args_list[2].args == (
            "docker",
            "compose",
            "-p",
            "media",
            "--project-directory",
            "/srv/media",
            "-f",
            "/srv/media/compose.yml",
            "up",
            "-d",
            "--no-deps",
            "plex",
        )

    @pytest.mark.asyncio
    async def test_without_target_repulls_current_tag(self, snapshot):
        manager = DockerContainerManager()
        run = AsyncMock(
            side_effect=[
                inspect_output(container_details(labels=COMPOSE_LABELS)),
                (0, "", ""),
                (0, "", ""),
            ]
        )

        with patch.object(manager, "_run", run):
            outcome = await manager.upgrade(snapshot, None)

        assert outcome.success
        assert run.await_args_list[1].args == ("docker", "pull", "plexinc/pms-docker:1.0")

    @pytest.mark.asyncio
    async def test_non_compose_container_fails(self, snapshot):
        manager = DockerContainerManager()
        run = AsyncMock(side_effect=[inspect_output(container_details(labels={}))])

        with patch.object(manager, "_run", run):
            outcome = await manager.upgrade(snapshot, "1.1")

        assert not outcome.success
        assert "not managed by Docker Compose" in outcome.error_message
        run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pull_failure(self, snapshot):
        manager = DockerContainerManager()
        run = AsyncMock(
            side_effect=[
                inspect_output(container_details(labels=COMPOSE_LABELS)),
                (1, "", "manifest unknown\n"),
            ]
        )

        with patch.object(manager, "_run", run):
            outcome = await manager.upgrade(snapshot, "9.9")

        assert not outcome.success
        assert outcome.error_message == "Failed to pull plexinc/pms-docker:9.9: manifest unknown"

    @pytest.mark.asyncio
    async def test_recreate_failure(self, snapshot):
        manager = DockerContainerManager()
        run = AsyncMock(
            side_effect=[
                inspect_output(container_details(labels=COMPOSE_LABELS)),
                (0, "", ""),
                (1, "", "port is already allocated"),
            ]
        )

        with patch.object(manager, "_run", run):
            outcome = await manager.upgrade(snapshot, "1.1")

        assert not outcome.success
        assert "media/plex" in outcome.error_message

    @pytest.mark.asyncio
    async def test_missing_container(self, snapshot):
        manager = DockerContainerManager()
        run = AsyncMock(return_value=(1, "[]", "No such object: abc123"))

        with patch.object(manager, "_run", run):
            outcome = await manager.upgrade(snapshot, "1.1")

        assert not outcome.success
        assert "No such object" in outcome.error_message


class TestRun:
    @pytest.mark.asyncio
    async def test_run_uses_subprocess(self):
        """_run wires the docker CLI through asyncio subprocesses."""
        mock_process = AsyncMock()
        mock_process.communicate = AsyncMock(return_value=(b"out", b"err"))
        mock_process.returncode = 3

        with patch("asyncio.create_subprocess_exec", return_value=mock_process) as exec_mock:
            result = await DockerContainerManager()._run("docker", "version")

        assert result == (3, "out", "err")
        assert exec_mock.call_args.args == ("docker", "version")

    @pytest.mark.asyncio
    async def test_cancel_terminates_process(self):
        mock_process = AsyncMock()
        mock_process.communicate = AsyncMock(side_effect=asyncio.CancelledError())
        mock_process.returncode = None
        mock_process.terminate = MagicMock()

        with patch("asyncio.create_subprocess_exec", return_value=mock_process):
            with pytest.raises(asyncio.CancelledError):
                await DockerContainerManager()._run("docker", "pull", "nginx:1.25")

        mock_process.terminate.assert_called_once()
        mock_process.wait.assert_awaited_once()


FAKE_DOCKER = """#!/bin/sh
case "$1" in
  inspect) cat "$FAKE_DOCKER_DIR/inspect.json" ;;
  pull) sleep 1; touch "$FAKE_DOCKER_DIR/pulled" ;;
esac
"""


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
class TestUpgradeTimeout:
    """A timed-out upgrade must not leave docker running without a lease."""

    @pytest.fixture
    def fake_docker(self, tmp_path, monkeypatch):
        script = tmp_path / "docker"
        script.write_text(FAKE_DOCKER)
        script.chmod(0o755)
        (tmp_path / "inspect.json").write_text(
            json.dumps([container_details(labels=COMPOSE_LABELS)])
        )
        monkeypatch.setenv("FAKE_DOCKER_DIR", str(tmp_path))
        monkeypatch.setenv("PATH", f"{tmp_path}{os.pathsep}{os.environ.get('PATH', '')}")
        return tmp_path

    @pytest.mark.asyncio
    async def test_timed_out_pull_is_killed(self, fake_docker, temp_db, make_snapshot):
        lease_manager = UpgradeLeaseManager(temp_db)
        executor = UpgradeExecutor(lease_manager, upgrade_timeout=0.3)
        snapshot = make_snapshot(id="abc123", name="media-plex-1")
        match = MatchedContainer(snapshot, VersionRecord("1.0", "1.1", True))

        record = await executor.upgrade_one(match, DockerContainerManager(), owner="manual")

        assert record.status == "failed"
        assert "timed out" in record.error_message
        assert not await lease_manager.is_leased(snapshot.lease_key)

        # Give an orphaned pull time to finish if it were still running
        await asyncio.sleep(1.2)
        assert not (fake_docker / "pulled").exists()
