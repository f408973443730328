"""Pydantic models for manifest schema validation.

This module defines the Pydantic models validating the manifest file
that declares repos, their images and the platforms each image is built
for. Keys are camelCase in the file and snake_case in Python.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from image_builder.types import OsType

REPO_NAME_PATTERN = re.compile(r"^[a-z0-9]+(?:[._\-/][a-z0-9]+)*$")


class _ManifestModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class TagSyndicationSchema(_ManifestModel):
    """Schema for republishing a tag under another repo.

    Attributes:
        repo: Name of the repo the tag is syndicated to.
        destination_tags: Tag names to use in the destination repo
            (defaults to the source tag name).
    """

    repo: str = Field(min_length=1)
    destination_tags: list[str] | None = None


class TagSchema(_ManifestModel):
    """Schema for a tag declared on a platform or shared by an image.

    Attributes:
        is_local: Tag is only applied locally and never pushed.
        syndication: Optional syndication target.
        doc_type: Documentation classification (informational).
        documentation_group: Documentation grouping (informational).
    """

    is_local: bool = False
    syndication: TagSyndicationSchema | None = None
    doc_type: str | None = None
    documentation_group: str | None = None


class PlatformSchema(_ManifestModel):
    """Schema for a platform-specific variant of an image.

    Attributes:
        dockerfile: Path to the Dockerfile (or its directory) relative to
            the manifest.
        dockerfile_template: Optional template the Dockerfile is generated from.
        os: Operating system family.
        os_version: Specific OS version (e.g. bookworm-slim, nanoserver-ltsc2022).
        architecture: Processor architecture.
        variant: Architecture variant (e.g. v8).
        build_args: Values passed to the build as build arguments.
        tags: Platform tags keyed by tag name.
    """

    dockerfile: str = Field(min_length=1)
    dockerfile_template: str | None = None
    os: OsType
    os_version: str = Field(min_length=1)
    architecture: str = "amd64"
    variant: str | None = None
    build_args: dict[str, str] | None = None
    tags: dict[str, TagSchema]

    @field_validator("architecture")
    @classmethod
    def validate_architecture(cls, v: str) -> str:
        """Normalize the architecture name to lowercase."""
        v = v.strip().lower()
        if not v:
            raise ValueError("architecture must not be empty")
        return v

    @field_validator("dockerfile")
    @classmethod
    def validate_dockerfile(cls, v: str) -> str:
        """Validate the Dockerfile path is relative."""
        if v.startswith("/"):
            raise ValueError("dockerfile must be relative to the manifest")
        return v


class ImageSchema(_ManifestModel):
    """Schema for an image grouping platforms of one product version.

    Attributes:
        product_version: Version of the product contained in the image.
        shared_tags: Tags applied to the multi-platform manifest list.
        platforms: Platforms the image is built for.
    """

    product_version: str | None = None
    shared_tags: dict[str, TagSchema] | None = None
    platforms: list[PlatformSchema] = Field(min_length=1)


class RepoSchema(_ManifestModel):
    """Schema for a repository of images.

    Attributes:
        id: Manifest-local identifier of the repo.
        name: Repository name (without registry).
        images: Images published to the repo.
        mcr_tags_metadata_template: Optional tags documentation template.
        readmes: Optional readme descriptors (informational).
    """

    id: str | None = None
    name: str = Field(min_length=1)
    images: list[ImageSchema]
    mcr_tags_metadata_template: str | None = None
    readmes: list[dict[str, str]] | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the repo name is a valid repository path."""
        # Names built from variables are checked after substitution
        if "$(" not in v and not REPO_NAME_PATTERN.match(v):
            raise ValueError(
                f"name must match pattern {REPO_NAME_PATTERN.pattern}, got '{v}'"
            )
        return v


class ManifestSchema(_ManifestModel):
    """Complete manifest schema.

    Attributes:
        includes: Additional manifest files merged into this one.
        readme: Optional readme path (informational).
        readme_template: Optional readme template path (informational).
        registry: Registry the images are published to.
        repos: Repositories described by the manifest.
        variables: Values referenced as ``$(name)`` elsewhere in the manifest.
    """

    includes: list[str] | None = None
    readme: str | None = None
    readme_template: str | None = None
    registry: str | None = None
    repos: list[RepoSchema] = Field(default_factory=list)
    variables: dict[str, str] | None = None


__all__ = [
    "ImageSchema",
    "ManifestSchema",
    "PlatformSchema",
    "RepoSchema",
    "TagSchema",
    "TagSyndicationSchema",
]
