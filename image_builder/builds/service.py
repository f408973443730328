"""Build orchestration.

This module handles:
- Pulling external base images (from the mirror when one is configured)
- Planning cache decisions for the selected platforms
- Building or reusing images and tagging them
- Pushing images and manifest lists
- Recording the outcome in a ledger
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from image_builder.builds.cache import CacheDecision, ImageCacheService
from image_builder.builds.digests import DigestCache, engine_lookup
from image_builder.builds.stale import find_prior_platform
from image_builder.config import Settings
from image_builder.engine.protocols import ImageEngine, SourceControl
from image_builder.errors import ConsistencyError
from image_builder.ledger.models import (
    ImageArtifactDetails,
    ImageData,
    ManifestData,
    PlatformData,
    RepoData,
)
from image_builder.manifest.filter import ManifestFilter
from image_builder.manifest.graph import ImageNode, ManifestGraph, PlatformNode
from image_builder.manifest.io import load_manifest
from image_builder.naming import (
    BaseImageOverride,
    ImageNameResolver,
    get_digest_sha,
    get_digest_string,
    get_repo,
)
from image_builder.types import CacheState

logger = logging.getLogger(__name__)

# Marker in build output showing that a layer was downloaded during the build
PULLING_MARKER = "Pulling from"


@dataclass
class BuildOptions:
    """Options of a build run.

    Attributes:
        push: Push built images and manifest lists.
        skip_pulling: Base images are not pulled before building.
        no_cache: Always build, never reuse previous images.
        dry_run: External commands are only logged.
        source_repo_url: URL of the source repo for commit URLs.
    """

    push: bool = False
    skip_pulling: bool = False
    no_cache: bool = False
    dry_run: bool = False
    source_repo_url: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> BuildOptions:
        return cls(
            push=settings.push_enabled,
            skip_pulling=settings.skip_pulling,
            no_cache=settings.no_cache,
            dry_run=settings.dry_run,
            source_repo_url=settings.source_repo_url,
        )


@dataclass
class BuildSummary:
    """Outcome of a build run."""

    decisions: list[CacheDecision] = field(default_factory=list)
    built: list[PlatformNode] = field(default_factory=list)
    reused: list[PlatformNode] = field(default_factory=list)
    pushed_tags: list[str] = field(default_factory=list)
    ledger: ImageArtifactDetails = field(default_factory=ImageArtifactDetails)


def create_name_resolver(
    manifest_registry: str | None, settings: Settings
) -> ImageNameResolver:
    """Name resolver for a manifest's registry configured from settings."""
    base_override = None
    if settings.base_override_regex and settings.base_override_substitution is not None:
        base_override = BaseImageOverride(
            settings.base_override_regex, settings.base_override_substitution
        )
    return ImageNameResolver(
        manifest_registry=manifest_registry,
        registry=settings.registry_override,
        repo_prefix=settings.repo_prefix,
        source_repo_prefix=settings.source_repo_prefix,
        base_override=base_override,
    )


def load_graph(
    path: Path,
    settings: Settings,
    manifest_filter: ManifestFilter | None = None,
    variable_overrides: dict[str, str] | None = None,
) -> tuple[ManifestGraph, ImageNameResolver]:
    """Load a manifest graph with the naming configured in settings."""
    manifest = load_manifest(path, variable_overrides)
    name_resolver = create_name_resolver(manifest.registry, settings)
    graph = ManifestGraph(
        manifest,
        path.parent,
        registry_override=settings.registry_override,
        repo_prefix=settings.repo_prefix,
        manifest_filter=manifest_filter,
        name_resolver=name_resolver,
    )
    return graph, name_resolver


def topological_order(graph: ManifestGraph, platforms: list[PlatformNode]) -> list[PlatformNode]:
    """Platforms ordered so that dependencies come before dependents.

    The declaration order is kept wherever dependencies allow it.
    """
    selected = {platform.node_id for platform in platforms}
    visited: set = set()
    ordered: list[PlatformNode] = []

    def visit(platform: PlatformNode, path: set) -> None:
        if platform.node_id in visited or platform.node_id in path:
            return
        path.add(platform.node_id)
        for dependency in graph.dependencies(platform):
            if dependency.node_id in selected:
                visit(dependency, path)
        path.discard(platform.node_id)
        visited.add(platform.node_id)
        ordered.append(platform)

    for platform in platforms:
        visit(platform, set())
    return ordered


class BuildService:
    """Builds the selected platforms of a manifest graph.

    Args:
        graph: Manifest graph.
        engine: Container engine.
        source_control: Source of Dockerfile commit SHAs.
        prior_ledger: Ledger of the previous publish, bound to ``graph``.
        options: Build options.
        name_resolver: Resolves FROM references against overrides and mirrors.
    """

    def __init__(
        self,
        graph: ManifestGraph,
        engine: ImageEngine,
        source_control: SourceControl,
        prior_ledger: ImageArtifactDetails | None = None,
        options: BuildOptions | None = None,
        name_resolver: ImageNameResolver | None = None,
    ) -> None:
        self.graph = graph
        self.engine = engine
        self.prior_ledger = prior_ledger or ImageArtifactDetails()
        self.options = options or BuildOptions()
        self.name_resolver = name_resolver or ImageNameResolver(
            manifest_registry=graph.manifest_registry
        )
        self.digest_cache = DigestCache(engine_lookup(engine))
        self.cache_service = ImageCacheService(
            graph,
            source_control,
            self.digest_cache,
            name_resolver=self.name_resolver,
            source_repo_url=self.options.source_repo_url,
            no_cache=self.options.no_cache,
        )
        self._produced_digests: dict = {}

    # Base images

    def pull_base_images(self, platforms: list[PlatformNode]) -> None:
        """Pull every external FROM image, re-tagging mirrored images locally.

        Digests of final stage base images are resolved right after pulling.
        """
        if self.options.skip_pulling:
            logger.info("Pulling of base images skipped")
            return

        for from_image in self.graph.external_from_images(platforms):
            pull_tag = self.name_resolver.get_pull_tag(from_image)
            self.engine.pull(pull_tag)
            local_tag = self.name_resolver.get_local_tag(from_image)
            if local_tag != pull_tag:
                self.engine.tag(pull_tag, local_tag)
            # Dockerfiles reference the original name
            if from_image != pull_tag:
                self.engine.tag(pull_tag, from_image)

        for platform in platforms:
            from_image = platform.final_stage_from_image
            if from_image is not None and not self.graph.is_internal(from_image):
                self.digest_cache.get(self.name_resolver.get_local_tag(from_image))

    # Planning

    def plan(self, platforms: list[PlatformNode]) -> list[CacheDecision]:
        """Cache decisions for ``platforms`` (in dependency order).

        Individual decisions are made first, then shared Dockerfile inference
        is applied. Promotions change the base image of dependents, so they
        are decided again until nothing changes.
        """
        ordered = topological_order(self.graph, platforms)
        decisions: dict = {}
        pending = ordered
        while pending:
            for platform in pending:
                prior = find_prior_platform(self.prior_ledger, platform)
                decision = self.cache_service.evaluate(platform, prior)
                decisions[platform.node_id] = decision
                self.cache_service.record_produced(platform, self._planned_digest(decision))

            promoted = self.cache_service.infer_shared(
                [decisions[p.node_id] for p in ordered]
            )
            for decision in promoted:
                self.cache_service.record_produced(
                    decision.platform, self._planned_digest(decision)
                )

            affected = {
                p.node_id
                for p in self.graph.dependency_closure([d.platform for d in promoted])
            } - {d.platform.node_id for d in promoted}
            pending = [
                p
                for p in ordered
                if p.node_id in affected
                and decisions[p.node_id].state == CacheState.NOT_CACHED
            ]
        return [decisions[p.node_id] for p in ordered]

    def _planned_digest(self, decision: CacheDecision) -> str | None:
        if not decision.use_cache or decision.effective_digest is None:
            return None
        return self._qualify_digest(decision.platform, decision.effective_digest)

    def _qualify_digest(self, platform: PlatformNode, digest: str) -> str:
        return get_digest_string(platform.repo.full_name, get_digest_sha(digest) or digest)

    # Execution

    def _all_tags(self, platform: PlatformNode) -> list[str]:
        tags = [platform.repo.get_tag(tag) for tag in platform.tags]
        tags.extend(platform.repo.get_tag(tag) for tag in platform.image.shared_tags)
        return list(dict.fromkeys(tags))

    def _push_tags(self, platform: PlatformNode) -> list[str]:
        tags = [platform.repo.get_tag(tag) for tag in platform.simple_tags]
        return tags

    def _reuse(self, decision: CacheDecision) -> None:
        platform = decision.platform
        digest = decision.effective_digest
        if not digest:
            raise ConsistencyError(
                f"No digest recorded for the image reused by '{platform.dockerfile}'"
            )
        self.engine.pull(digest)
        for tag in self._all_tags(platform):
            self.engine.tag(digest, tag)
            self.digest_cache.seed(tag, digest)

    def _build(self, decision: CacheDecision) -> None:
        platform = decision.platform
        output = self.engine.build(
            platform.dockerfile_path,
            platform.dockerfile_path.parent,
            self._all_tags(platform),
            platform.build_args,
        )
        if (
            not self.options.skip_pulling
            and not self.options.dry_run
            and PULLING_MARKER in (output or "")
        ):
            raise ConsistencyError(
                f"Build of '{platform.dockerfile}' pulled an image although all "
                "base images were supposed to be pulled before building"
            )

    def execute(self, decisions: list[CacheDecision], summary: BuildSummary) -> None:
        """Build or reuse the image of every decision, then push."""
        for decision in decisions:
            platform = decision.platform
            if decision.use_cache:
                logger.info("Reusing image of '%s' (%s)", platform.dockerfile, decision.reason)
                self._reuse(decision)
                summary.reused.append(platform)
            else:
                logger.info("Building '%s' (%s)", platform.dockerfile, decision.reason)
                self._build(decision)
                summary.built.append(platform)

            if self.options.push and decision.state != CacheState.CACHED:
                for tag in self._push_tags(platform):
                    self.engine.push(tag)
                    summary.pushed_tags.append(tag)

            digest = self._resolve_produced_digest(decision)
            self._produced_digests[platform.node_id] = digest
            self.cache_service.record_produced(platform, digest)

    def _resolve_produced_digest(self, decision: CacheDecision) -> str | None:
        if decision.use_cache:
            return self._planned_digest(decision)
        platform = decision.platform
        tags = self._push_tags(platform) or self._all_tags(platform)
        if not tags:
            return None
        digest = self.engine.get_digest(tags[0])
        if digest is None:
            return None
        return self._qualify_digest(platform, digest)

    def publish_manifest_lists(self, ledger: ImageArtifactDetails, images: list[ImageNode]) -> None:
        """Create and push a manifest list for every published shared tag."""
        for image in images:
            shared_tags = image.published_shared_tags
            if not shared_tags:
                continue
            refs = [
                image.repo.get_tag(platform.simple_tags[0])
                for platform in image.platforms
                if platform.simple_tags
            ]
            for tag in shared_tags:
                name = image.repo.get_tag(tag)
                self.engine.create_manifest_list(name, refs)
                self.engine.push_manifest_list(name)
            image_data = _find_image_data(ledger, image)
            if image_data is not None and image_data.manifest is not None:
                image_data.manifest.created = datetime.now(timezone.utc)
                # Every shared tag points at the same list
                digest = self.engine.get_digest(image.repo.get_tag(shared_tags[0]))
                if digest is not None:
                    image_data.manifest.digest = self._qualify_list_digest(image, digest)

    def _qualify_list_digest(self, image: ImageNode, digest: str) -> str:
        return get_digest_string(image.repo.full_name, get_digest_sha(digest) or digest)

    # Ledger

    def _platform_data(self, decision: CacheDecision) -> PlatformData:
        platform = decision.platform
        digest = self._produced_digests.get(platform.node_id) or ""
        inspect_tag = (self._push_tags(platform) or self._all_tags(platform) or [""])[0]

        base_image_digest = None
        from_image = platform.final_stage_from_image
        # Parents rebuilt in this run only have a digest after execution
        current = decision.base_image_digest or self.cache_service.get_base_image_digest(
            platform
        )
        if from_image is not None and current:
            public_repo = get_repo(self.name_resolver.get_public_tag(from_image))
            base_image_digest = get_digest_string(public_repo, get_digest_sha(current) or "")

        prior_tags = decision.prior.simple_tags if decision.prior is not None else []
        return PlatformData(
            dockerfile=platform.dockerfile,
            simple_tags=sorted(set(prior_tags) | set(platform.simple_tags)),
            digest=digest,
            base_image_digest=base_image_digest,
            os_type=platform.os_type.value,
            os_version=platform.os_version,
            architecture=platform.architecture,
            created=self.engine.get_created_date(inspect_tag),
            commit_url=decision.commit_url,
            layers=self.engine.get_layers(inspect_tag),
            is_unchanged=decision.state == CacheState.CACHED,
        )

    def populate_ledger(self, decisions: list[CacheDecision]) -> ImageArtifactDetails:
        """Ledger entries for every platform of the run."""
        ledger = ImageArtifactDetails()
        for decision in decisions:
            platform = decision.platform
            repo_data = ledger.get_repo(platform.repo.name)
            if repo_data is None:
                repo_data = RepoData(repo=platform.repo.name)
                ledger.repos.append(repo_data)
            image_data = next(
                (i for i in repo_data.images if i.image_key == platform.image.key), None
            )
            if image_data is None:
                image_data = ImageData(
                    product_version=platform.image.product_version,
                    image_key=platform.image.key,
                )
                if platform.image.published_shared_tags:
                    image_data.manifest = ManifestData(
                        shared_tags=platform.image.published_shared_tags
                    )
                repo_data.images.append(image_data)
            image_data.platforms.append(self._platform_data(decision))

        ledger.repos.sort(key=lambda r: r.repo)
        for repo_data in ledger.repos:
            repo_data.images.sort(key=lambda i: i.sort_key)
            for image_data in repo_data.images:
                image_data.platforms.sort(key=lambda p: p.sort_key)
        return ledger

    def run(self) -> BuildSummary:
        """Pull, plan, build or reuse, push and record the selected platforms."""
        platforms = self.graph.filtered_platforms()
        logger.info("Processing %d platform(s)", len(platforms))
        summary = BuildSummary()

        self.pull_base_images(platforms)
        summary.decisions = self.plan(platforms)
        self.execute(summary.decisions, summary)
        summary.ledger = self.populate_ledger(summary.decisions)

        if self.options.push:
            processed = {p.node_id for p in platforms}
            complete = [
                image
                for image in self.graph.all_images
                if all(p.node_id in processed for p in image.platforms)
            ]
            self.publish_manifest_lists(summary.ledger, complete)

        logger.info(
            "Built %d platform(s), reused %d platform(s)",
            len(summary.built),
            len(summary.reused),
        )
        return summary


def _find_image_data(ledger: ImageArtifactDetails, image: ImageNode) -> ImageData | None:
    repo_data = ledger.get_repo(image.repo.name)
    if repo_data is None:
        return None
    for image_data in repo_data.images:
        if image_data.image_key == image.key:
            return image_data
    return None


__all__ = [
    "PULLING_MARKER",
    "BuildOptions",
    "BuildService",
    "BuildSummary",
    "create_name_resolver",
    "load_graph",
    "topological_order",
]
