"""Image reference helpers and name resolution.

This module handles:
- Splitting image references into registry, repo, tag and digest parts
- Comparing digests by their sha portion
- Resolving FROM references against registry overrides and mirror prefixes
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DOCKER_HUB_REGISTRY = "docker.io"


def get_registry(image: str) -> str | None:
    """Return the registry component of an image reference, if any.

    A first path segment is only a registry when it looks like a host
    (contains a '.' or ':' or is 'localhost').
    """
    first, sep, _ = image.partition("/")
    if not sep:
        return None
    if "." in first or ":" in first or first == "localhost":
        return first
    return None


def is_in_registry(image: str, registry: str | None) -> bool:
    """Check whether an image reference is located in the given registry."""
    return bool(registry) and image.startswith(f"{registry}/")


def trim_registry(image: str, registry: str | None = None) -> str:
    """Remove the registry (the given one, or whatever is present) from a reference."""
    if registry is None:
        registry = get_registry(image)
    if registry and image.startswith(f"{registry}/"):
        return image[len(registry) + 1 :]
    return image


def get_repo(image: str) -> str:
    """Return the reference without its tag and digest."""
    image = image.split("@", 1)[0]
    slash = image.rfind("/")
    colon = image.rfind(":")
    if colon > slash:
        image = image[:colon]
    return image


def get_tag(image: str) -> str | None:
    """Return the tag of a reference, or None when it has none."""
    image = image.split("@", 1)[0]
    slash = image.rfind("/")
    colon = image.rfind(":")
    if colon > slash:
        return image[colon + 1 :]
    return None


def replace_repo(image: str, new_repo: str) -> str:
    """Swap the repo of a reference while keeping its tag/digest suffix."""
    return new_repo + image[len(get_repo(image)) :]


def normalize_repo(image: str) -> str:
    """Expand Docker Hub official image shorthands (``ubuntu`` -> ``library/ubuntu``)."""
    registry = get_registry(image)
    if registry is not None and registry != DOCKER_HUB_REGISTRY:
        return image
    trimmed = trim_registry(image, registry)
    if "/" not in get_repo(trimmed):
        trimmed = f"library/{trimmed}"
    return trimmed


def get_digest_sha(digest: str | None) -> str | None:
    """Return the ``sha256:...`` portion of a digest or fully qualified digest."""
    if digest is None:
        return None
    return digest.rsplit("@", 1)[-1]


def get_digest_string(repo: str, sha: str) -> str:
    """Build a fully qualified digest ``<repo>@sha256:...``."""
    return f"{get_repo(repo)}@{get_digest_sha(sha)}"


def digests_match(left: str | None, right: str | None) -> bool:
    """Compare two digests on their sha portion, ignoring case.

    Two missing digests match; a missing digest never matches a present one.
    """
    left_sha = get_digest_sha(left)
    right_sha = get_digest_sha(right)
    if left_sha is None or right_sha is None:
        return left_sha is None and right_sha is None
    return left_sha.lower() == right_sha.lower()


@dataclass
class BaseImageOverride:
    """Regex based rewrite of FROM references (e.g. to a private mirror)."""

    regex: str
    substitution: str

    def apply(self, image: str) -> str:
        """Apply the override to a reference."""
        return re.sub(self.regex, self.substitution, image)


class ImageNameResolver:
    """Resolve the tags used to pull, reference locally and publish FROM images.

    Args:
        manifest_registry: The registry declared in the manifest file.
        registry: The effective registry (override or manifest registry).
        repo_prefix: Prefix applied to the manifest's repo names.
        source_repo_prefix: Repo prefix of the mirror holding external images.
        base_override: Optional rewrite applied to every FROM reference.
    """

    def __init__(
        self,
        manifest_registry: str | None = None,
        registry: str | None = None,
        repo_prefix: str | None = None,
        source_repo_prefix: str | None = None,
        base_override: BaseImageOverride | None = None,
    ) -> None:
        self.manifest_registry = manifest_registry
        self.registry = registry or manifest_registry
        self.repo_prefix = repo_prefix
        self.source_repo_prefix = source_repo_prefix
        self.base_override = base_override

    def apply_base_override(self, image: str) -> str:
        """Apply the configured base image override, if any."""
        if self.base_override is None:
            return image
        return self.base_override.apply(image)

    def get_local_tag(self, from_image: str) -> str:
        """Tag used for a FROM image once it has been pulled or built locally."""
        return self._get_from_image_tag(from_image, self.registry)

    def get_pull_tag(self, from_image: str) -> str:
        """Tag used to pull a FROM image.

        Images in the manifest's own registry are internally owned and are
        never pulled from the mirror.
        """
        return self._get_from_image_tag(from_image, self.manifest_registry)

    def get_public_tag(self, from_image: str) -> str:
        """Publicly available tag of a FROM image."""
        trimmed = self._trim_internally_owned(from_image)
        if trimmed == from_image:
            return self.apply_base_override(trimmed)
        return f"{self.manifest_registry}/{trimmed}"

    def is_mirrored(self, from_image: str) -> bool:
        """Whether the FROM image is pulled from a location other than its own name."""
        return self.get_pull_tag(from_image) != from_image

    def _get_from_image_tag(self, from_image: str, registry: str | None) -> str:
        from_image = self.apply_base_override(from_image)
        if (
            is_in_registry(from_image, registry)
            or is_in_registry(from_image, self.manifest_registry)
            or self.source_repo_prefix is None
            or self.registry is None
        ):
            return from_image

        src_image = self._trim_internally_owned(normalize_repo(from_image))
        return f"{self.registry}/{self.source_repo_prefix}{src_image}"

    def _trim_internally_owned(self, image: str) -> str:
        if is_in_registry(image, self.registry) or is_in_registry(
            image, self.manifest_registry
        ):
            trimmed = trim_registry(image)
            if self.repo_prefix and trimmed.startswith(self.repo_prefix):
                trimmed = trimmed[len(self.repo_prefix) :]
            return trimmed
        return image


__all__ = [
    "DOCKER_HUB_REGISTRY",
    "BaseImageOverride",
    "ImageNameResolver",
    "digests_match",
    "get_digest_sha",
    "get_digest_string",
    "get_registry",
    "get_repo",
    "get_tag",
    "is_in_registry",
    "normalize_repo",
    "replace_repo",
    "trim_registry",
]
