"""Staleness resolver.

Determines which Dockerfiles must be rebuilt: platforms without a ledger
entry and platforms whose external FROM image has a new digest. Every stale
platform drags along everything built FROM it, transitively.

Subscriptions group a manifest with the ledger recording what was last
published for it; the resolver reports the stale Dockerfile paths per
subscription.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from image_builder.builds.digests import DigestCache
from image_builder.errors import ManifestError
from image_builder.ledger.io import load_bound_ledger
from image_builder.ledger.models import ImageArtifactDetails, PlatformData
from image_builder.manifest.filter import ManifestFilter, matches_any
from image_builder.manifest.graph import ManifestGraph, PlatformNode
from image_builder.naming import digests_match
from image_builder.types import OsType, SubscriptionImagePaths

logger = logging.getLogger(__name__)


class Subscription(BaseModel):
    """A manifest whose images are watched for base image updates.

    Attributes:
        id: Identifier reported with the stale paths.
        os_type: Only process the subscription for this OS type, if set.
        manifest: Path to the manifest file.
        ledger: Path to the ledger recording the published images.
    """

    model_config = ConfigDict(
        extra="forbid", alias_generator=to_camel, populate_by_name=True
    )

    id: str = Field(min_length=1)
    os_type: OsType | None = None
    manifest: Path
    ledger: Path


def load_subscriptions(path: Path) -> list[Subscription]:
    """Load a JSON list of subscriptions.

    Relative manifest and ledger paths are resolved against the file's
    directory.

    Raises:
        ManifestError: If the file is missing or invalid.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ManifestError(f"Subscriptions file not found: {path}") from None
    except ValueError as e:
        raise ManifestError(f"Unable to parse subscriptions '{path}': {e}") from e
    if isinstance(data, dict):
        data = data.get("subscriptions", [])
    try:
        subscriptions = [Subscription.model_validate(item) for item in data]
    except ValidationError as e:
        raise ManifestError(f"Invalid subscriptions '{path}': {e}") from e

    for subscription in subscriptions:
        if not subscription.manifest.is_absolute():
            subscription.manifest = path.parent / subscription.manifest
        if not subscription.ledger.is_absolute():
            subscription.ledger = path.parent / subscription.ledger
    return subscriptions


def find_prior_platform(
    ledger: ImageArtifactDetails, platform: PlatformNode
) -> PlatformData | None:
    """Ledger entry recorded for a platform node, if any.

    Entries of the image bound to the node's image are preferred over
    entries of unbound images.
    """
    repo_data = ledger.get_repo(platform.repo.name)
    if repo_data is None:
        return None
    candidates = sorted(
        repo_data.images,
        key=lambda image: image.image_key != platform.image.key,
    )
    for image_data in candidates:
        if image_data.image_key is not None and image_data.image_key != platform.image.key:
            continue
        for platform_data in image_data.platforms:
            if platform_data.matches_key(platform.key):
                return platform_data
    return None


MinCommitFilter = Callable[[PlatformData], bool]


def _is_stale_root(
    graph: ManifestGraph,
    platform: PlatformNode,
    prior_ledger: ImageArtifactDetails,
    digest_cache: DigestCache,
    min_commit_filter: MinCommitFilter | None = None,
) -> bool:
    prior = find_prior_platform(prior_ledger, platform)
    if prior is None:
        logger.warning(
            "Ledger entry not found for '%s'. Adding path to rebuild anyway.",
            platform.dockerfile,
        )
        return True

    if min_commit_filter is not None and not min_commit_filter(prior):
        logger.info(
            "Last build of '%s' (%s) predates the minimum commit",
            platform.dockerfile,
            prior.commit_url,
        )
        return True

    from_image = platform.final_stage_from_image
    # Internal parents are roots of their own when stale
    if from_image is None or graph.is_internal(from_image):
        return False

    current = digest_cache.get(from_image)
    stale = prior.base_image_digest is None or not digests_match(
        prior.base_image_digest, current
    )
    logger.info(
        "Checking base image '%s' from '%s'\n"
        "\tLast build digest:    %s\n"
        "\tCurrent digest:       %s\n"
        "\tImage is up-to-date:  %s",
        from_image,
        platform.dockerfile,
        prior.base_image_digest,
        current,
        not stale,
    )
    return stale


def compute_stale_paths(
    graph: ManifestGraph,
    prior_ledger: ImageArtifactDetails,
    digest_cache: DigestCache,
    manifest_filter: ManifestFilter | None = None,
    min_commit_filter: MinCommitFilter | None = None,
) -> list[str]:
    """Dockerfile paths that must be rebuilt.

    Args:
        graph: Manifest graph.
        prior_ledger: Ledger of the last publish, bound to ``graph``.
        digest_cache: Memoized digest lookups of external images.
        manifest_filter: Platforms to check (defaults to the graph's filter).
        min_commit_filter: Accepts a ledger entry whose recorded commit is
            recent enough; rejected entries are rebuilt.

    Returns:
        Duplicate free Dockerfile paths (as written in the manifest) of the
        stale platforms and everything built FROM them.

    Raises:
        RegistryError: If a digest lookup fails.
    """
    roots = [
        platform
        for platform in graph.filtered_platforms(manifest_filter)
        if _is_stale_root(graph, platform, prior_ledger, digest_cache, min_commit_filter)
    ]

    paths: list[str] = []
    for platform in graph.dependency_closure(roots):
        if platform.model_dockerfile not in paths:
            paths.append(platform.model_dockerfile)
    return paths


GraphLoader = Callable[[Subscription], "tuple[ManifestGraph, ImageArtifactDetails]"]


def load_subscription(
    subscription: Subscription,
    manifest_filter: ManifestFilter | None = None,
    variable_overrides: dict[str, str] | None = None,
) -> tuple[ManifestGraph, ImageArtifactDetails]:
    """Load the graph and bound ledger of a subscription.

    A missing ledger file is treated as an empty ledger.
    """
    graph = ManifestGraph.load(
        subscription.manifest,
        variable_overrides,
        manifest_filter=manifest_filter,
    )
    ledger = load_bound_ledger(subscription.ledger, graph, skip_validation=True)
    return graph, ledger


def subscription_matches_os_type(subscription: Subscription, os_type: str) -> bool:
    if subscription.os_type is None:
        return True
    return matches_any(subscription.os_type.value, [os_type or "*"])


def get_stale_images(
    subscriptions: list[Subscription],
    digest_cache: DigestCache,
    os_type: str = "*",
    loader: GraphLoader | None = None,
    min_commit_filter: MinCommitFilter | None = None,
) -> list[SubscriptionImagePaths]:
    """Stale Dockerfile paths per subscription.

    Subscriptions for another OS type are skipped and subscriptions with
    nothing to rebuild are omitted. One digest cache is shared by every
    subscription so each base image is looked up once per run.
    """
    loader = loader or load_subscription
    results: list[SubscriptionImagePaths] = []
    for subscription in subscriptions:
        if not subscription_matches_os_type(subscription, os_type):
            logger.info(
                "Skipping subscription %s (OS type %s)",
                subscription.id,
                subscription.os_type.value if subscription.os_type else None,
            )
            continue
        logger.info("Processing subscription: %s", subscription.id)
        graph, ledger = loader(subscription)
        paths = compute_stale_paths(
            graph, ledger, digest_cache, min_commit_filter=min_commit_filter
        )
        if paths:
            results.append(SubscriptionImagePaths(subscription.id, paths))
    return results


__all__ = [
    "MinCommitFilter",
    "Subscription",
    "compute_stale_paths",
    "find_prior_platform",
    "get_stale_images",
    "load_subscription",
    "load_subscriptions",
]
