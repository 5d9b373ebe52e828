"""
Docker Hub version source.

Latest versions are taken from the Docker Hub tags API: the highest
release-looking tag (1.2, v1.2.3, 2024.1.0, ...) is reported as the latest
version. Images hosted on other registries are unknown to this source.
"""

import asyncio
import logging
import re
from typing import Any

import requests

from autoupdate_common.models import VersionLookup

logger = logging.getLogger(__name__)

DOCKER_HUB_API = "https://hub.docker.com/v2"
DEFAULT_PAGE_SIZE = 100
DEFAULT_TIMEOUT = 10.0

RELEASE_TAG = re.compile(r"^v?(\d+(?:\.\d+)*)$")


def release_key(tag: str) -> tuple[int, ...] | None:
    """Sort key for release-looking tags; None for anything else (latest, alpine, ...)."""
    match = RELEASE_TAG.match(tag)
    if match is None:
        return None
    return tuple(int(part) for part in match.group(1).split("."))


def split_docker_hub_repo(image_repo: str) -> tuple[str, str] | None:
    """
    Return (namespace, repository) for a Docker Hub image.

    Official images live in the "library" namespace. Returns None when
    the repository names another registry host.
    """
    parts = image_repo.split("/")
    if len(parts) > 1 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
        return None
    if len(parts) == 1:
        return "library", parts[0]
    return parts[0], "/".join(parts[1:])


class DockerHubVersionSource:
    """Look up the latest release tag of Docker Hub images."""

    def __init__(
        self,
        api_url: str = DOCKER_HUB_API,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.api_url = api_url.rstrip("/")
        self.page_size = page_size
        self.timeout = timeout

    def _fetch_tags(self, namespace: str, repository: str) -> list[dict[str, Any]] | None:
        response = requests.get(
            f"{self.api_url}/repositories/{namespace}/{repository}/tags",
            params={"page_size": self.page_size, "ordering": "last_updated"},
            timeout=self.timeout,
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json().get("results", [])

    async def lookup(self, image_repo: str) -> VersionLookup | None:
        """
        Fetch the latest release tag for an image repository.

        Returns:
            VersionLookup with latest_version and publish_date, or None when
            the image is unknown or has no release-looking tags

        Raises:
            requests.RequestException: If Docker Hub cannot be reached
        """
        hub_repo = split_docker_hub_repo(image_repo)
        if hub_repo is None:
            logger.debug(f"{image_repo} is not a Docker Hub image")
            return None

        tags = await asyncio.to_thread(self._fetch_tags, *hub_repo)
        if not tags:
            return None

        releases = [
            (key, tag) for tag in tags if (key := release_key(tag.get("name", ""))) is not None
        ]
        if not releases:
            return None

        _, latest = max(releases, key=lambda item: item[0])
        return VersionLookup(
            latest_version=latest["name"],
            publish_date=latest.get("tag_last_pushed") or latest.get("last_updated"),
        )
