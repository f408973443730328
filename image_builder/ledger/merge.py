"""Ledger merge engine.

Folds a source ledger into a target ledger. Repos are matched by name,
images by their canonical image key (or structurally when unbound) and
platforms by Dockerfile, architecture, OS type and OS version. Unmatched
source entries are appended, unmatched target entries are kept and every
list is re-sorted so the result does not depend on input order.

The source is never aliased into the target: appended entries are deep
copies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from image_builder.ledger.models import (
    ImageArtifactDetails,
    ImageData,
    ManifestData,
    PlatformData,
    RepoData,
)
from image_builder.manifest.graph import get_major_minor_version

logger = logging.getLogger(__name__)


@dataclass
class MergeOptions:
    """Options of a ledger merge.

    Attributes:
        replace_tags: Use the source's simple and shared tags instead of
            the union of source and target tags.
    """

    replace_tags: bool = False


def _merge_tags(source: list[str], target: list[str], replace: bool) -> list[str]:
    if replace:
        return sorted(set(source))
    return sorted(set(source) | set(target))


def _images_match(source: ImageData, target: ImageData) -> bool:
    if source.image_key is not None and target.image_key is not None:
        return source.image_key == target.image_key
    if get_major_minor_version(source.product_version) != get_major_minor_version(
        target.product_version
    ):
        return False
    if not source.platforms and not target.platforms:
        return True
    return any(
        src.matches(tgt) for src in source.platforms for tgt in target.platforms
    )


def merge_platform(source: PlatformData, target: PlatformData, options: MergeOptions) -> None:
    """Update a matched target platform from the source."""
    if source.digest:
        target.digest = source.digest
    if source.base_image_digest is not None:
        target.base_image_digest = source.base_image_digest
    if source.created is not None:
        target.created = source.created
    if source.commit_url:
        target.commit_url = source.commit_url
    if source.layers:
        target.layers = list(source.layers)
    target.is_unchanged = source.is_unchanged
    target.simple_tags = _merge_tags(
        source.simple_tags, target.simple_tags, options.replace_tags
    )


def merge_manifest(source: ManifestData, target: ManifestData, options: MergeOptions) -> None:
    """Update a target manifest list entry from the source."""
    if source.digest is not None:
        target.digest = source.digest
    if source.created is not None:
        target.created = source.created
    target.shared_tags = _merge_tags(
        source.shared_tags, target.shared_tags, options.replace_tags
    )
    target.syndicated_digests = _merge_tags(
        source.syndicated_digests, target.syndicated_digests, replace=False
    )


def merge_image(source: ImageData, target: ImageData, options: MergeOptions) -> None:
    """Update a matched target image from the source."""
    if source.product_version is not None:
        target.product_version = source.product_version
    if target.image_key is None and source.image_key is not None:
        target.image_key = source.image_key

    if source.manifest is None:
        target.manifest = None
    elif target.manifest is None:
        target.manifest = source.manifest.model_copy(deep=True)
    else:
        merge_manifest(source.manifest, target.manifest, options)

    for src_platform in source.platforms:
        tgt_platform = target.find_platform(src_platform)
        if tgt_platform is None:
            target.platforms.append(src_platform.model_copy(deep=True))
        else:
            merge_platform(src_platform, tgt_platform, options)
    target.platforms.sort(key=lambda p: p.sort_key)


def _merge_repo(source: RepoData, target: RepoData, options: MergeOptions) -> None:
    for src_image in source.images:
        matches = [image for image in target.images if _images_match(src_image, image)]
        if len(matches) > 1:
            logger.debug(
                "Ambiguous match for image %s in repo %s, using the first of %d",
                src_image.product_version,
                target.repo,
                len(matches),
            )
        if not matches:
            copied = src_image.model_copy(deep=True)
            copied.platforms.sort(key=lambda p: p.sort_key)
            target.images.append(copied)
        else:
            merge_image(src_image, matches[0], options)
    target.images.sort(key=lambda i: i.sort_key)


def merge_ledgers(
    source: ImageArtifactDetails,
    target: ImageArtifactDetails,
    options: MergeOptions | None = None,
) -> ImageArtifactDetails:
    """Merge ``source`` into ``target`` in place.

    Args:
        source: Ledger whose content is folded in. It is not modified.
        target: Ledger receiving the content.
        options: Merge options; defaults to tag union.

    Returns:
        The target ledger.
    """
    if options is None:
        options = MergeOptions()

    for src_repo in source.repos:
        tgt_repo = target.get_repo(src_repo.repo)
        if tgt_repo is None:
            copied = src_repo.model_copy(deep=True)
            copied.images.sort(key=lambda i: i.sort_key)
            for image in copied.images:
                image.platforms.sort(key=lambda p: p.sort_key)
            target.repos.append(copied)
        else:
            _merge_repo(src_repo, tgt_repo, options)

    target.repos.sort(key=lambda r: r.repo)
    return target


__all__ = [
    "MergeOptions",
    "merge_image",
    "merge_ledgers",
    "merge_manifest",
    "merge_platform",
]
