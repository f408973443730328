"""Ledger file (de)serialization and binding to a manifest.

See ``image_builder.ledger.models`` for the file format.
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from image_builder.errors import LedgerError
from image_builder.ledger.models import ImageArtifactDetails, ImageData
from image_builder.manifest.graph import ImageKey, ManifestGraph, get_major_minor_version

logger = logging.getLogger(__name__)


def parse_ledger(content: str, source: str = "<ledger>") -> ImageArtifactDetails:
    """Parse ledger JSON content.

    Raises:
        LedgerError: If the content is not valid JSON or not a ledger.
    """
    try:
        return ImageArtifactDetails.model_validate_json(content)
    except ValidationError as e:
        raise LedgerError(f"Invalid ledger '{source}': {e}") from e


def load_ledger(path: Path) -> ImageArtifactDetails:
    """Load a ledger file.

    Raises:
        LedgerError: If the file is missing or malformed.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise LedgerError(f"Ledger file not found: {path}") from None
    return parse_ledger(content, str(path))


def ledger_to_dict(ledger: ImageArtifactDetails) -> dict:
    return ledger.model_dump(mode="json", by_alias=True, exclude_none=True)


def ledger_to_json(ledger: ImageArtifactDetails) -> str:
    """Serialize a ledger as 2-space indented JSON with a trailing newline."""
    return json.dumps(ledger_to_dict(ledger), indent=2, ensure_ascii=False) + "\n"


def write_ledger(ledger: ImageArtifactDetails, path: Path) -> None:
    """Write a ledger file, creating parent directories as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(ledger_to_json(ledger))


def _find_manifest_image(
    image_data: ImageData, graph: ManifestGraph, repo_name: str, bound: set[ImageKey]
) -> ImageKey | None:
    first = image_data.platforms[0]
    version = get_major_minor_version(image_data.product_version)
    repo = graph.get_repo(repo_name)
    if repo is None:
        return None
    for image in repo.images:
        if image.key in bound or image.major_minor_version != version:
            continue
        if any(platform.key == first.identity for platform in image.platforms):
            return image.key
    return None


def bind_ledger_to_manifest(
    ledger: ImageArtifactDetails,
    graph: ManifestGraph,
    skip_validation: bool = False,
) -> ImageArtifactDetails:
    """Set the ``image_key`` of every ledger image that has a manifest counterpart.

    An image is bound to the manifest image of the same repo owning a
    platform that matches its first platform, skipping manifest images
    already bound to a sibling entry.

    Raises:
        LedgerError: If an image has no counterpart and validation is not skipped.
    """
    for repo_data in ledger.repos:
        if graph.get_repo(repo_data.repo) is None:
            logger.info("Ledger repo not in manifest, not bound: %s", repo_data.repo)
            continue
        bound: set[ImageKey] = set()
        for image_data in repo_data.images:
            if not image_data.platforms:
                continue
            key = _find_manifest_image(image_data, graph, repo_data.repo, bound)
            if key is None:
                if skip_validation:
                    logger.debug(
                        "No manifest image for %s %s",
                        repo_data.repo,
                        image_data.platforms[0].identity,
                    )
                    continue
                raise LedgerError(
                    "Unable to find matching platform in manifest for platform "
                    f"'{'-'.join(image_data.platforms[0].identity)}' of repo '{repo_data.repo}'"
                )
            image_data.image_key = key
            bound.add(key)
    return ledger


def load_bound_ledger(
    path: Path | None, graph: ManifestGraph, skip_validation: bool = True
) -> ImageArtifactDetails:
    """Load a ledger and bind it to the graph; a missing path yields an empty ledger."""
    if path is None or not path.exists():
        return ImageArtifactDetails()
    return bind_ledger_to_manifest(load_ledger(path), graph, skip_validation)


__all__ = [
    "bind_ledger_to_manifest",
    "ledger_to_dict",
    "ledger_to_json",
    "load_bound_ledger",
    "load_ledger",
    "parse_ledger",
    "write_ledger",
]
