"""
Docker-backed inventory and upgrade action for a local Docker endpoint.

Containers are discovered with the docker CLI. Compose-managed containers
are upgraded by pulling the target image and recreating the service with
docker compose; containers started outside compose cannot be recreated
faithfully and are reported as failed upgrades.
"""

import asyncio
import json
import logging
from typing import Any

from autoupdate_common.models import ContainerSnapshot, UpgradeOutcome

logger = logging.getLogger(__name__)

COMPOSE_PROJECT_LABEL = "com.docker.compose.project"
COMPOSE_SERVICE_LABEL = "com.docker.compose.service"
COMPOSE_WORKING_DIR_LABEL = "com.docker.compose.project.working_dir"
COMPOSE_CONFIG_FILES_LABEL = "com.docker.compose.project.config_files"
STACK_NAMESPACE_LABEL = "com.docker.stack.namespace"

DEFAULT_REGISTRY_PREFIX = "docker.io/"


def parse_image_reference(image: str) -> tuple[str, str | None, str | None]:
    """
    Split an image reference into (repository, tag, digest).

    "nginx:1.25" -> ("nginx", "1.25", None)
    "localhost:5000/app@sha256:ab" -> ("localhost:5000/app", None, "sha256:ab")

    A leading "docker.io/" is dropped so Docker Hub images compare equal
    however they were referenced.
    """
    digest = None
    if "@" in image:
        image, digest = image.split("@", 1)

    tag = None
    # A colon after the last slash separates the tag; earlier ones are registry ports
    name_start = image.rfind("/") + 1
    colon = image.find(":", name_start)
    if colon != -1:
        image, tag = image[:colon], image[colon + 1 :]

    if image.startswith(DEFAULT_REGISTRY_PREFIX):
        image = image[len(DEFAULT_REGISTRY_PREFIX) :]
    return image, tag or None, digest


def derive_service_name(container_name: str, stack_name: str | None) -> str | None:
    """
    Guess the compose service from a container name.

    Compose v1 names containers "<stack>_<service>_<n>" and v2 uses
    "<stack>-<service>-<n>". Anything else falls back to the container name.
    """
    if not container_name or not stack_name:
        return None

    for separator in ("_", "-"):
        prefix = f"{stack_name}{separator}"
        if container_name.startswith(prefix):
            parts = container_name[len(prefix) :].split(separator)
            if len(parts) > 1 and parts[-1].isdigit():
                parts = parts[:-1]
            return separator.join(parts)

    return container_name


class DockerContainerManager:
    """
    Inventory source and upgrade action for one Docker endpoint.

    Talks to the daemon through the docker CLI so it works with whatever
    context the host is configured for.
    """

    def __init__(self, endpoint_id: str = "local", endpoint_name: str = "local"):
        """
        Initialize the container manager.

        Args:
            endpoint_id: Identifier stamped on every snapshot
            endpoint_name: Display name stamped on every snapshot
        """
        self.endpoint_id = endpoint_id
        self.endpoint_name = endpoint_name

    async def _run(self, *args: str) -> tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Timed out or cancelled: the docker command must not outlive the lease
            if process.returncode is None:
                process.terminate()
                await process.wait()
            raise
        return process.returncode or 0, stdout.decode(), stderr.decode()

    async def _inspect(self, *container_ids: str) -> list[dict[str, Any]]:
        returncode, stdout, stderr = await self._run("docker", "inspect", *container_ids)
        if returncode != 0:
            raise RuntimeError(f"Failed to inspect containers: {stderr.strip()}")
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as e:
            raise RuntimeError(f"Failed to parse container info: {e}") from e

    def _to_snapshot(self, details: dict[str, Any]) -> ContainerSnapshot:
        config = details.get("Config") or {}
        labels = config.get("Labels") or {}
        name = details.get("Name", "").lstrip("/")
        repo, tag, digest = parse_image_reference(config.get("Image", ""))

        stack_name = labels.get(COMPOSE_PROJECT_LABEL) or labels.get(STACK_NAMESPACE_LABEL)
        service_name = labels.get(COMPOSE_SERVICE_LABEL) or derive_service_name(
            name, stack_name
        )

        return ContainerSnapshot(
            id=details["Id"],
            name=name,
            image_repo=repo,
            image_tag=tag,
            digest=digest,
            stack_name=stack_name,
            service_name=service_name,
            source_endpoint_id=self.endpoint_id,
            source_endpoint_name=self.endpoint_name,
        )

    async def list_containers(self) -> list[ContainerSnapshot]:
        """
        List every container on the endpoint, running or stopped.

        Raises:
            RuntimeError: If the docker CLI fails
        """
        returncode, stdout, stderr = await self._run(
            "docker", "ps", "-a", "--no-trunc", "--format", "{{.ID}}"
        )
        if returncode != 0:
            raise RuntimeError(f"Failed to list containers: {stderr.strip()}")

        ids = [line for line in stdout.strip().split("\n") if line]
        if not ids:
            return []

        snapshots = []
        for details in await self._inspect(*ids):
            try:
                snapshots.append(self._to_snapshot(details))
            except KeyError as e:
                logger.warning(f"Skipping container with incomplete details: missing {e}")
        return snapshots

    async def upgrade(
        self, snapshot: ContainerSnapshot, target_version: str | None
    ) -> UpgradeOutcome:
        """
        Pull the target image and recreate the compose service.

        Args:
            snapshot: Container to upgrade
            target_version: Tag to pull (the current tag when None)

        Returns:
            UpgradeOutcome describing success or the failing step
        """
        target_image = (
            f"{snapshot.image_repo}:{target_version}" if target_version else snapshot.image
        )

        try:
            [details] = await self._inspect(snapshot.id)
        except (RuntimeError, ValueError) as e:
            return UpgradeOutcome(success=False, error_message=str(e))

        labels = (details.get("Config") or {}).get("Labels") or {}
        project = labels.get(COMPOSE_PROJECT_LABEL)
        service = labels.get(COMPOSE_SERVICE_LABEL)
        if not project or not service:
            return UpgradeOutcome(
                success=False,
                error_message=f"Container {snapshot.name} is not managed by Docker Compose",
            )

        logger.info(f"Pulling {target_image} for {snapshot.name}")
        returncode, _, stderr = await self._run("docker", "pull", target_image)
        if returncode != 0:
            return UpgradeOutcome(
                success=False,
                error_message=f"Failed to pull {target_image}: {stderr.strip()}",
            )

        args = ["docker", "compose", "-p", project]
        if labels.get(COMPOSE_WORKING_DIR_LABEL):
            args += ["--project-directory", labels[COMPOSE_WORKING_DIR_LABEL]]
        for config_file in (labels.get(COMPOSE_CONFIG_FILES_LABEL) or "").split(","):
            if config_file:
                args += ["-f", config_file]
        args += ["up", "-d", "--no-deps", service]

        logger.info(f"Recreating service {project}/{service}")
        returncode, _, stderr = await self._run(*args)
        if returncode != 0:
            return UpgradeOutcome(
                success=False,
                error_message=f"Failed to recreate {project}/{service}: {stderr.strip()}",
            )

        return UpgradeOutcome(
            success=True, new_version=target_version, new_image=target_image
        )
