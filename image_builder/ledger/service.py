"""Ledger file operations.

This module handles:
- Merging a folder of partial ledgers (one per build shard) into one file
- Removing content that no longer exists in the manifest when publishing
- Overriding the commit of updated platforms
- Trimming platforms that were reused unchanged
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from image_builder.errors import ConsistencyError, ImageBuilderError, ManifestError
from image_builder.ledger.io import bind_ledger_to_manifest, load_ledger
from image_builder.ledger.merge import MergeOptions, merge_ledgers
from image_builder.ledger.models import ImageArtifactDetails, ImageData, PlatformData
from image_builder.manifest.graph import ManifestGraph

logger = logging.getLogger(__name__)

COMMIT_SHA_PATTERN = re.compile(r"[0-9a-f]{40}")


def find_ledger_files(source_dir: Path) -> list[Path]:
    """Every ``*.json`` file below ``source_dir``, sorted by path.

    Raises:
        ConsistencyError: If the folder does not exist or holds no JSON file.
    """
    if not source_dir.is_dir():
        raise ConsistencyError(f"Source folder not found: {source_dir}")
    files = sorted(source_dir.rglob("*.json"))
    if not files:
        raise ConsistencyError(f"No JSON files found in source folder '{source_dir}'")
    return files


def _load(path: Path, graph: ManifestGraph | None, skip_validation: bool) -> ImageArtifactDetails:
    ledger = load_ledger(path)
    if graph is not None:
        bind_ledger_to_manifest(ledger, graph, skip_validation=skip_validation)
    return ledger


def remove_out_of_date_content(ledger: ImageArtifactDetails, graph: ManifestGraph) -> None:
    """Drop repos, images and platforms the manifest no longer declares.

    The ledger must have been bound to ``graph``.

    Raises:
        ConsistencyError: If nothing would remain.
    """
    repos = []
    for repo_data in ledger.repos:
        if graph.get_repo(repo_data.repo) is None:
            logger.info("Removing repo no longer in manifest: %s", repo_data.repo)
            continue
        images = []
        for image_data in repo_data.images:
            image = graph.get_image(image_data.image_key) if image_data.image_key else None
            if image is None:
                logger.info(
                    "Removing image no longer in manifest: %s %s",
                    repo_data.repo,
                    image_data.product_version,
                )
                continue
            keys = {platform.key for platform in image.platforms}
            stale = [p for p in image_data.platforms if p.identity not in keys]
            for platform_data in stale:
                logger.info(
                    "Removing platform no longer in manifest: %s", platform_data.dockerfile
                )
            image_data.platforms = [p for p in image_data.platforms if p.identity in keys]
            images.append(image_data)
        repo_data.images = images
        repos.append(repo_data)
    ledger.repos = repos

    if not ledger.repos:
        raise ConsistencyError(
            "Removal of out-of-date content left no content in the target ledger"
        )


def validate_commit_override(commit_override: str) -> str:
    """Return the 40 character commit SHA contained in ``commit_override``.

    Raises:
        ImageBuilderError: If it does not contain a commit SHA.
    """
    match = COMMIT_SHA_PATTERN.search(commit_override)
    if match is None:
        raise ImageBuilderError(
            f"The commit override '{commit_override}' is not a valid SHA.",
            code="invalid_commit_override",
        )
    return match.group(0)


def _find_initial_platform(
    initial: ImageArtifactDetails, repo: str, image: ImageData, platform: PlatformData
) -> PlatformData | None:
    initial_repo = initial.get_repo(repo)
    if initial_repo is None:
        return None
    for initial_image in initial_repo.images:
        if initial_image.product_version != image.product_version:
            continue
        found = initial_image.find_platform(platform)
        if found is not None:
            return found
    return None


def apply_commit_override(
    current: ImageArtifactDetails,
    initial: ImageArtifactDetails,
    commit_override: str,
) -> None:
    """Point the commit URL of every updated platform at ``commit_override``.

    A platform is updated when it is new or its digest or commit URL
    differs from the initial ledger. The SHA inside the existing commit URL
    is replaced; a platform without a commit URL gets the override verbatim.
    """
    sha = validate_commit_override(commit_override)
    for repo_data, image_data, platform_data in current.iter_platforms():
        initial_platform = _find_initial_platform(
            initial, repo_data.repo, image_data, platform_data
        )
        if (
            initial_platform is not None
            and initial_platform.digest == platform_data.digest
            and initial_platform.commit_url == platform_data.commit_url
        ):
            continue
        if platform_data.commit_url and COMMIT_SHA_PATTERN.search(platform_data.commit_url):
            platform_data.commit_url = COMMIT_SHA_PATTERN.sub(sha, platform_data.commit_url)
        else:
            platform_data.commit_url = commit_override
        logger.debug("Commit override applied to %s", platform_data.dockerfile)


def merge_ledger_files(
    source_dir: Path,
    graph: ManifestGraph | None = None,
    initial_path: Path | None = None,
    publish: bool = False,
    commit_override: str | None = None,
) -> ImageArtifactDetails:
    """Merge every ledger file below ``source_dir`` into one ledger.

    Args:
        source_dir: Folder holding the partial ledgers.
        graph: Manifest the ledgers are bound to, if available.
        initial_path: Ledger used as the merge target.
        publish: Remove out-of-date content from the initial ledger and
            let source tags replace target tags.
        commit_override: Commit SHA written into the commit URL of
            updated platforms.

    Returns:
        The merged ledger.

    Raises:
        ConsistencyError: If the folder is missing or empty.
        ManifestError: If publishing without a manifest.
    """
    if commit_override is not None:
        validate_commit_override(commit_override)
    if publish and graph is None:
        raise ManifestError("Publishing a merged ledger requires a manifest")

    files = find_ledger_files(source_dir)
    logger.info("Merging %d ledger file(s) from %s", len(files), source_dir)

    initial: ImageArtifactDetails | None = None
    if initial_path is not None:
        target = _load(initial_path, graph, skip_validation=publish)
        if commit_override is not None:
            initial = target.model_copy(deep=True)
        if publish and graph is not None:
            remove_out_of_date_content(target, graph)
    else:
        target = ImageArtifactDetails()

    options = MergeOptions(replace_tags=publish)
    resolved_initial = initial_path.resolve() if initial_path is not None else None
    for path in files:
        if resolved_initial is not None and path.resolve() == resolved_initial:
            continue
        logger.debug("Merging %s", path)
        merge_ledgers(_load(path, graph, skip_validation=publish), target, options)

    if commit_override is not None and initial is not None:
        apply_commit_override(target, initial, commit_override)
    return target


def trim_unchanged_platforms(ledger: ImageArtifactDetails) -> ImageArtifactDetails:
    """Remove platforms marked unchanged, then images and repos left empty."""
    for repo_data in ledger.repos:
        for image_data in repo_data.images:
            for platform_data in image_data.platforms:
                if platform_data.is_unchanged:
                    logger.info("Removing unchanged platform %s", platform_data.dockerfile)
            image_data.platforms = [p for p in image_data.platforms if not p.is_unchanged]
        repo_data.images = [i for i in repo_data.images if i.platforms]
    ledger.repos = [r for r in ledger.repos if r.images]
    return ledger


__all__ = [
    "COMMIT_SHA_PATTERN",
    "apply_commit_override",
    "find_ledger_files",
    "merge_ledger_files",
    "remove_out_of_date_content",
    "trim_unchanged_platforms",
    "validate_commit_override",
]
