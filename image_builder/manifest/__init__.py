"""Manifest loading and the manifest graph.

This package provides:
- Pydantic schema of the manifest file
- Loading with includes and variable substitution
- Dockerfile FROM-reference parsing
- Glob based platform filtering
- The Repo/Image/Platform graph with FROM edges
"""

from image_builder.manifest.filter import ManifestFilter
from image_builder.manifest.graph import (
    ImageKey,
    ImageNode,
    ManifestGraph,
    PlatformKey,
    PlatformNode,
    RepoNode,
)
from image_builder.manifest.io import load_manifest
from image_builder.manifest.schema import ManifestSchema

__all__ = [
    "ImageKey",
    "ImageNode",
    "ManifestFilter",
    "ManifestGraph",
    "ManifestSchema",
    "PlatformKey",
    "PlatformNode",
    "RepoNode",
    "load_manifest",
]
