"""Artifact ledger: models, file format, merging and maintenance."""

from image_builder.ledger.io import (
    bind_ledger_to_manifest,
    ledger_to_json,
    load_ledger,
    write_ledger,
)
from image_builder.ledger.merge import MergeOptions, merge_ledgers
from image_builder.ledger.models import (
    ImageArtifactDetails,
    ImageData,
    ManifestData,
    PlatformData,
    RepoData,
)

__all__ = [
    "ImageArtifactDetails",
    "ImageData",
    "ManifestData",
    "MergeOptions",
    "PlatformData",
    "RepoData",
    "bind_ledger_to_manifest",
    "ledger_to_json",
    "load_ledger",
    "merge_ledgers",
    "write_ledger",
]
