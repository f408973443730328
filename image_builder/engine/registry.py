"""Registry digest queries over the Docker Registry HTTP API v2.

Digests are read from the ``Docker-Content-Digest`` header of a ``HEAD``
request for the manifest. Requests are anonymous.
"""

from __future__ import annotations

import logging

import httpx

from image_builder.errors import RegistryError
from image_builder.naming import (
    DOCKER_HUB_REGISTRY,
    get_registry,
    get_repo,
    get_tag,
    normalize_repo,
    trim_registry,
)

logger = logging.getLogger(__name__)

# Host serving the Docker Hub registry API
DOCKER_HUB_API_HOST = "registry-1.docker.io"

# Timeout for manifest queries (seconds)
REGISTRY_TIMEOUT = 30

MANIFEST_MEDIA_TYPES = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    ]
)


def build_manifest_url(ref: str, scheme: str = "https") -> str:
    """URL of the manifest a reference points at."""
    registry = get_registry(ref)
    name = ref
    if registry is None or registry == DOCKER_HUB_REGISTRY:
        host = DOCKER_HUB_API_HOST
        name = normalize_repo(ref)
    else:
        host = registry
        name = trim_registry(ref, registry)

    if "@" in name:
        repo, reference = name.split("@", 1)
    else:
        repo = get_repo(name)
        reference = get_tag(name) or "latest"
    return f"{scheme}://{host}/v2/{repo}/manifests/{reference}"


class HttpRegistryClient:
    """Registry client issuing ``HEAD /v2/<repo>/manifests/<reference>``.

    Args:
        client: HTTPX client instance (one is created when omitted).
        timeout: Request timeout in seconds.
        scheme: URL scheme of the registries.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        timeout: float = REGISTRY_TIMEOUT,
        scheme: str = "https",
    ) -> None:
        self.client = client or httpx.Client(follow_redirects=True)
        self.timeout = timeout
        self.scheme = scheme

    def get_manifest_digest(self, ref: str) -> str:
        """Digest of the manifest (or manifest list) ``ref`` points at.

        Raises:
            RegistryError: If the request fails or no digest is returned.
        """
        url = build_manifest_url(ref, self.scheme)
        logger.debug("Querying manifest digest: %s", url)
        try:
            response = self.client.head(
                url, headers={"Accept": MANIFEST_MEDIA_TYPES}, timeout=self.timeout
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RegistryError(
                f"HTTP error querying {ref}: {e.response.status_code} {e.response.reason_phrase}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise RegistryError(f"Timeout querying {ref}", code="timeout") from e
        except httpx.RequestError as e:
            raise RegistryError(
                f"Network error querying {ref}: {e}", code="network_error"
            ) from e

        digest = response.headers.get("Docker-Content-Digest")
        if not digest:
            raise RegistryError(f"No digest returned for {ref}", status_code=response.status_code)
        return digest

    def close(self) -> None:
        self.client.close()


__all__ = ["HttpRegistryClient", "build_manifest_url"]
