"""Pydantic models of the artifact ledger.

The ledger records what was published for every platform of a manifest:
digests, the base image digest it was built FROM, the commit of its
Dockerfile and its tags. It is serialized as camelCase JSON with tag lists
sorted, null values omitted and ``isUnchanged`` omitted when false.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    field_serializer,
    field_validator,
    model_serializer,
)
from pydantic.alias_generators import to_camel

from image_builder.manifest.graph import ImageKey, PlatformKey

SCHEMA_VERSION = "2.0"


class _LedgerModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


def _to_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PlatformData(_LedgerModel):
    """Published state of one platform.

    Attributes:
        dockerfile: Dockerfile path relative to the manifest.
        simple_tags: Platform tags the image was published with.
        digest: Fully qualified digest (``<repo>@sha256:...``).
        base_image_digest: Digest of the image the final stage is built FROM.
        os_type: OS type (``linux`` / ``windows``).
        os_version: OS version.
        architecture: Processor architecture.
        created: Creation time of the image (UTC).
        commit_url: URL of the Dockerfile at the commit it was built from.
        layers: Layer digests of the image.
        is_unchanged: The image was reused from a previous build unchanged.
    """

    dockerfile: str
    simple_tags: list[str] = Field(default_factory=list)
    digest: str = ""
    base_image_digest: str | None = None
    os_type: str
    os_version: str
    architecture: str
    created: datetime | None = None
    commit_url: str = ""
    layers: list[str] = Field(default_factory=list)
    is_unchanged: bool = False

    @field_validator("created")
    @classmethod
    def normalize_created(cls, v: datetime | None) -> datetime | None:
        """Store creation times in UTC."""
        return _to_utc(v)

    @field_serializer("simple_tags")
    def serialize_simple_tags(self, v: list[str]) -> list[str]:
        return sorted(v)

    @model_serializer(mode="wrap")
    def serialize_model(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        data: dict[str, Any] = handler(self)
        for name in ("is_unchanged", "isUnchanged"):
            if data.get(name) is False:
                del data[name]
        for name in ("layers",):
            if name in data and not data[name]:
                del data[name]
        return data

    @property
    def identity(self) -> PlatformKey:
        return PlatformKey(self.dockerfile, self.architecture, self.os_type, self.os_version)

    @property
    def sort_key(self) -> tuple[str, str, str, str, bool]:
        return (*self.identity, bool(self.simple_tags))

    def has_different_tag_state(self, other: PlatformData) -> bool:
        """Whether exactly one of the two entries has simple tags."""
        return bool(self.simple_tags) != bool(other.simple_tags)

    def matches(self, other: PlatformData) -> bool:
        """Whether two entries describe the same platform."""
        return self.identity == other.identity and not self.has_different_tag_state(other)

    def matches_key(self, key: PlatformKey) -> bool:
        return self.identity == key


class ManifestData(_LedgerModel):
    """Published state of an image's multi-platform manifest list.

    Attributes:
        digest: Fully qualified digest of the manifest list.
        created: Creation time of the manifest list (UTC).
        shared_tags: Shared tags the manifest list was published with.
        syndicated_digests: Digests of the manifest list in syndicated repos.
    """

    digest: str | None = None
    created: datetime | None = None
    shared_tags: list[str] = Field(default_factory=list)
    syndicated_digests: list[str] = Field(default_factory=list)

    @field_validator("created")
    @classmethod
    def normalize_created(cls, v: datetime | None) -> datetime | None:
        """Store creation times in UTC."""
        return _to_utc(v)

    @field_serializer("shared_tags", "syndicated_digests")
    def serialize_sorted(self, v: list[str]) -> list[str]:
        return sorted(v)


class ImageData(_LedgerModel):
    """Published state of an image.

    ``image_key`` is set when the entry has been bound to a manifest image
    and is never serialized.
    """

    product_version: str | None = None
    manifest: ManifestData | None = None
    platforms: list[PlatformData] = Field(default_factory=list)
    image_key: ImageKey | None = Field(default=None, exclude=True)

    @property
    def sort_key(self) -> tuple[str, tuple[str, str, str, str, bool]]:
        platforms = sorted(p.sort_key for p in self.platforms)
        first = platforms[0] if platforms else ("", "", "", "", False)
        return (self.product_version or "", first)

    def find_platform(self, platform: PlatformData) -> PlatformData | None:
        for candidate in self.platforms:
            if candidate.matches(platform):
                return candidate
        return None


class RepoData(_LedgerModel):
    """Published state of a repo."""

    repo: str
    images: list[ImageData] = Field(default_factory=list)


class ImageArtifactDetails(_LedgerModel):
    """Root of the ledger."""

    schema_version: str = SCHEMA_VERSION
    repos: list[RepoData] = Field(default_factory=list)

    def get_repo(self, name: str) -> RepoData | None:
        for repo in self.repos:
            if repo.repo == name:
                return repo
        return None

    def iter_platforms(self) -> list[tuple[RepoData, ImageData, PlatformData]]:
        """Every platform entry together with its repo and image."""
        return [
            (repo, image, platform)
            for repo in self.repos
            for image in repo.images
            for platform in image.platforms
        ]


__all__ = [
    "SCHEMA_VERSION",
    "ImageArtifactDetails",
    "ImageData",
    "ManifestData",
    "PlatformData",
    "RepoData",
]
