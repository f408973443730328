"""Interfaces of the external collaborators.

The core never talks to a container engine, source control or a registry
directly. It goes through these protocols so runs can be driven by the
shipped CLI/HTTP implementations or by in-memory fakes.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Protocol


class ImageEngine(Protocol):
    """Container engine operations."""

    def pull(self, ref: str) -> None: ...

    def get_digest(self, ref: str) -> str | None:
        """Registry digest of a local image, or None if it was never pushed/pulled."""
        ...

    def get_layers(self, ref: str) -> list[str]: ...

    def get_created_date(self, ref: str) -> datetime: ...

    def build(
        self,
        dockerfile: Path,
        context: Path,
        tags: list[str],
        build_args: dict[str, str],
    ) -> str:
        """Build an image and return the build output."""
        ...

    def tag(self, source: str, dest: str) -> None: ...

    def push(self, ref: str) -> None: ...

    def create_manifest_list(self, name: str, refs: list[str]) -> None: ...

    def push_manifest_list(self, name: str) -> None: ...


class SourceControl(Protocol):
    """Source control queries."""

    def get_commit_sha(self, path: Path) -> str:
        """SHA of the last commit that changed ``path``."""
        ...


class RegistryClient(Protocol):
    """Registry queries."""

    def get_manifest_digest(self, ref: str) -> str:
        """Digest (``sha256:...``) of the manifest ``ref`` points at."""
        ...


__all__ = ["ImageEngine", "RegistryClient", "SourceControl"]
