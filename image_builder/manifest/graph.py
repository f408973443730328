"""Manifest graph model.

The manifest is turned into Repo -> Image -> Platform nodes. Every
platform's Dockerfile is parsed into FROM references which resolve either
to another platform of the same manifest (internal) or to an image outside
of it (external). Internal references form the edges of the graph that the
staleness resolver and the build service walk.

Node identity is structural: a platform is identified by its Dockerfile
path, architecture, OS type and OS version together with the canonical key
of the image it belongs to. A Dockerfile shared by several platforms yields
several nodes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NamedTuple

from image_builder.errors import ManifestError
from image_builder.manifest.dockerfile import (
    DockerfileInfo,
    read_dockerfile,
    resolve_dockerfile_path,
)
from image_builder.manifest.filter import ManifestFilter
from image_builder.manifest.io import load_manifest
from image_builder.manifest.schema import ManifestSchema, TagSchema
from image_builder.naming import ImageNameResolver, get_repo
from image_builder.types import OsType

logger = logging.getLogger(__name__)


class ImageKey(NamedTuple):
    """Canonical identity of an image within a manifest."""

    repo: str
    product_version: str | None
    ordinal: int


class PlatformKey(NamedTuple):
    """Structural identity shared by a platform node and its ledger entry."""

    dockerfile: str
    architecture: str
    os_type: str
    os_version: str


def get_major_minor_version(version: str | None) -> str | None:
    """Reduce a product version to ``major.minor``, dropping any ``-suffix``."""
    if not version:
        return version
    return ".".join(version.split("-", 1)[0].split(".")[:2])


@dataclass(eq=False)
class PlatformNode:
    """A platform of an image, built from one Dockerfile."""

    repo: RepoNode = field(repr=False)
    image: ImageNode = field(repr=False)
    model_dockerfile: str
    dockerfile: str
    dockerfile_path: Path
    os_type: OsType
    os_version: str
    architecture: str
    variant: str | None = None
    build_args: dict[str, str] = field(default_factory=dict)
    tags: dict[str, TagSchema] = field(default_factory=dict)
    dockerfile_info: DockerfileInfo | None = field(default=None, repr=False)

    @property
    def key(self) -> PlatformKey:
        return PlatformKey(
            self.dockerfile, self.architecture, self.os_type.value, self.os_version
        )

    @property
    def node_id(self) -> tuple[PlatformKey, ImageKey]:
        return (self.key, self.image.key)

    @property
    def simple_tags(self) -> list[str]:
        """Declared tag names that are published."""
        return [name for name, tag in self.tags.items() if not tag.is_local]

    @property
    def local_tags(self) -> list[str]:
        """Declared tag names that are only applied locally."""
        return [name for name, tag in self.tags.items() if tag.is_local]

    @property
    def from_images(self) -> list[str]:
        if self.dockerfile_info is None:
            return []
        return self.dockerfile_info.from_images

    @property
    def final_stage_from_image(self) -> str | None:
        if self.dockerfile_info is None:
            return None
        return self.dockerfile_info.final_stage_from_image

    @property
    def build_unit_args(self) -> tuple[tuple[str, str], ...]:
        """Build args as an order independent value."""
        return tuple(sorted(self.build_args.items()))

    def __repr__(self) -> str:
        return (
            f"PlatformNode({self.repo.name}:{self.dockerfile} "
            f"{self.os_type.value}/{self.architecture} {self.os_version})"
        )


@dataclass(eq=False)
class ImageNode:
    """An image grouping the platforms of one product version."""

    repo: RepoNode = field(repr=False)
    key: ImageKey
    product_version: str | None = None
    shared_tags: dict[str, TagSchema] = field(default_factory=dict)
    platforms: list[PlatformNode] = field(default_factory=list)

    @property
    def major_minor_version(self) -> str | None:
        return get_major_minor_version(self.product_version)

    @property
    def published_shared_tags(self) -> list[str]:
        return [name for name, tag in self.shared_tags.items() if not tag.is_local]


@dataclass(eq=False)
class RepoNode:
    """A repository and the images published to it."""

    name: str
    full_name: str
    id: str | None = None
    images: list[ImageNode] = field(default_factory=list)

    def get_tag(self, tag: str) -> str:
        """Fully qualified reference of one of the repo's tags."""
        return f"{self.full_name}:{tag}"


class ManifestGraph:
    """Repo/Image/Platform nodes and the FROM edges between platforms.

    Args:
        manifest: Fully resolved manifest.
        base_dir: Directory the manifest's Dockerfile paths are relative to.
        registry_override: Registry used instead of the manifest's registry.
        repo_prefix: Prefix prepended to every repo name.
        manifest_filter: Selects the platforms operations process.
        name_resolver: Applies base image overrides to FROM references.
    """

    def __init__(
        self,
        manifest: ManifestSchema,
        base_dir: Path,
        registry_override: str | None = None,
        repo_prefix: str | None = None,
        manifest_filter: ManifestFilter | None = None,
        name_resolver: ImageNameResolver | None = None,
    ) -> None:
        self.manifest = manifest
        self.base_dir = base_dir
        self.manifest_registry = manifest.registry
        self.registry = registry_override or manifest.registry
        self.repo_prefix = repo_prefix or ""
        self.manifest_filter = manifest_filter or ManifestFilter()
        self.name_resolver = name_resolver

        self.repos: list[RepoNode] = []
        self._tag_index: dict[str, PlatformNode | ImageNode] = {}
        self._dependencies: dict[tuple[PlatformKey, ImageKey], list[PlatformNode]] = {}
        self._dependents: dict[tuple[PlatformKey, ImageKey], list[PlatformNode]] = {}

        self._build_nodes()
        self._build_edges()

    @classmethod
    def load(
        cls,
        path: Path,
        variable_overrides: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> ManifestGraph:
        """Load a manifest file and build its graph."""
        manifest = load_manifest(path, variable_overrides)
        return cls(manifest, path.parent, **kwargs)

    # Construction

    def _repo_full_name(self, name: str) -> str:
        prefixed = f"{self.repo_prefix}{name}"
        if self.registry:
            return f"{self.registry}/{prefixed}"
        return prefixed

    def _repo_aliases(self, name: str) -> list[str]:
        prefixed = f"{self.repo_prefix}{name}"
        aliases = [name, prefixed]
        for registry in (self.registry, self.manifest_registry):
            if registry:
                aliases.append(f"{registry}/{name}")
                aliases.append(f"{registry}/{prefixed}")
        return list(dict.fromkeys(aliases))

    def _index_tag(self, repo: str, tag: str, target: PlatformNode | ImageNode) -> None:
        for alias in self._repo_aliases(repo):
            self._tag_index.setdefault(f"{alias}:{tag}", target)

    def _build_nodes(self) -> None:
        repo_names: set[str] = set()
        for repo_model in self.manifest.repos:
            if repo_model.name in repo_names:
                raise ManifestError(f"Repo '{repo_model.name}' is declared more than once")
            repo_names.add(repo_model.name)

            repo = RepoNode(
                name=repo_model.name,
                full_name=self._repo_full_name(repo_model.name),
                id=repo_model.id,
            )
            ordinals: dict[str | None, int] = {}
            for image_model in repo_model.images:
                ordinal = ordinals.get(image_model.product_version, 0)
                ordinals[image_model.product_version] = ordinal + 1
                image = ImageNode(
                    repo=repo,
                    key=ImageKey(repo.name, image_model.product_version, ordinal),
                    product_version=image_model.product_version,
                    shared_tags=dict(image_model.shared_tags or {}),
                )
                for platform_model in image_model.platforms:
                    dockerfile_path = resolve_dockerfile_path(
                        self.base_dir, platform_model.dockerfile
                    )
                    platform = PlatformNode(
                        repo=repo,
                        image=image,
                        model_dockerfile=platform_model.dockerfile,
                        dockerfile=_relative_posix(dockerfile_path, self.base_dir),
                        dockerfile_path=dockerfile_path,
                        os_type=platform_model.os,
                        os_version=platform_model.os_version,
                        architecture=platform_model.architecture,
                        variant=platform_model.variant,
                        build_args=dict(platform_model.build_args or {}),
                        tags=dict(platform_model.tags),
                    )
                    image.platforms.append(platform)
                    for tag in platform.tags:
                        self._index_tag(repo.name, tag, platform)
                for tag in image.shared_tags:
                    self._index_tag(repo.name, tag, image)
                repo.images.append(image)
            self.repos.append(repo)

    def _build_edges(self) -> None:
        for platform in self.all_platforms:
            info = read_dockerfile(platform.dockerfile_path, platform.build_args)
            if self.name_resolver is not None:
                info.from_images = [
                    self.name_resolver.apply_base_override(image)
                    for image in info.from_images
                ]
            platform.dockerfile_info = info
            self._dependencies[platform.node_id] = []
            self._dependents.setdefault(platform.node_id, [])

        for platform in self.all_platforms:
            dependencies = self._dependencies[platform.node_id]
            for image in platform.from_images:
                target = self.resolve(image, platform)
                if target is None or target in dependencies:
                    continue
                dependencies.append(target)
                self._dependents[target.node_id].append(platform)
                logger.debug("%r builds FROM %r", platform, target)

    # Queries

    @property
    def all_platforms(self) -> list[PlatformNode]:
        """Every platform in declaration order."""
        return [
            platform
            for repo in self.repos
            for image in repo.images
            for platform in image.platforms
        ]

    @property
    def all_images(self) -> list[ImageNode]:
        return [image for repo in self.repos for image in repo.images]

    def filtered_platforms(
        self, manifest_filter: ManifestFilter | None = None
    ) -> list[PlatformNode]:
        """Platforms selected by the filter, in declaration order."""
        manifest_filter = manifest_filter or self.manifest_filter
        return [
            platform
            for platform in self.all_platforms
            if manifest_filter.includes_repo(platform.repo.name)
            and manifest_filter.includes_product_version(platform.image.product_version)
            and manifest_filter.includes_platform(
                platform.architecture,
                platform.os_type.value,
                platform.os_version,
                platform.model_dockerfile,
            )
        ]

    def get_repo(self, name: str) -> RepoNode | None:
        for repo in self.repos:
            if name in (repo.name, repo.full_name, f"{self.repo_prefix}{repo.name}"):
                return repo
        return None

    def get_image(self, key: ImageKey) -> ImageNode | None:
        for image in self.all_images:
            if image.key == key:
                return image
        return None

    def resolve(
        self, reference: str | None, consumer: PlatformNode | None = None
    ) -> PlatformNode | None:
        """Resolve a FROM reference to the platform producing it.

        Shared tags resolve to the platform of the image with the
        consumer's OS type and architecture.

        Returns:
            The producing platform, or None for external references.
        """
        if reference is None:
            return None
        target = self._tag_index.get(reference)
        if target is None or isinstance(target, PlatformNode):
            return target
        if consumer is not None:
            for platform in target.platforms:
                if (
                    platform.os_type == consumer.os_type
                    and platform.architecture == consumer.architecture
                ):
                    return platform
        return target.platforms[0]

    def platform_by_tag(self, tag: str) -> PlatformNode | None:
        """Platform producing a tag (bare, prefixed or registry qualified)."""
        return self.resolve(tag)

    def is_internal(self, reference: str | None) -> bool:
        """Whether a FROM reference is produced within this manifest."""
        return reference is not None and reference in self._tag_index

    def is_internal_repo(self, reference: str) -> bool:
        """Whether a reference points at one of this manifest's repos."""
        repo = get_repo(reference)
        return any(repo in self._repo_aliases(r.name) for r in self.repos)

    def dependencies(self, platform: PlatformNode) -> list[PlatformNode]:
        """Platforms that any stage of ``platform`` builds FROM."""
        return list(self._dependencies.get(platform.node_id, []))

    def dependents(self, platform: PlatformNode) -> list[PlatformNode]:
        """Platforms with a stage built FROM ``platform``."""
        return list(self._dependents.get(platform.node_id, []))

    def dependency_closure(self, roots: list[PlatformNode]) -> list[PlatformNode]:
        """The roots and every platform built FROM them, transitively.

        Traversal is depth first from each root in order and visits each
        node once, so shared Dockerfiles and diamond shaped graphs are
        reported once.
        """
        visited: set[tuple[PlatformKey, ImageKey]] = set()
        result: list[PlatformNode] = []
        for root in roots:
            stack = [root]
            while stack:
                node = stack.pop()
                if node.node_id in visited:
                    continue
                visited.add(node.node_id)
                result.append(node)
                stack.extend(reversed(self.dependents(node)))
        return result

    def external_from_images(
        self, platforms: list[PlatformNode] | None = None
    ) -> list[str]:
        """Distinct external FROM references of the given platforms."""
        if platforms is None:
            platforms = self.all_platforms
        images: list[str] = []
        for platform in platforms:
            if platform.dockerfile_info is None:
                continue
            for image in platform.dockerfile_info.external_candidates:
                if not self.is_internal(image) and image not in images:
                    images.append(image)
        return images

    def find_platforms(self, key: PlatformKey) -> list[PlatformNode]:
        """Every platform with the given structural key."""
        return [p for p in self.all_platforms if p.key == key]


def _relative_posix(path: Path, base_dir: Path) -> str:
    try:
        return path.relative_to(base_dir).as_posix()
    except ValueError:
        return path.as_posix()


__all__ = [
    "ImageKey",
    "ImageNode",
    "ManifestGraph",
    "PlatformKey",
    "PlatformNode",
    "RepoNode",
    "get_major_minor_version",
]
