"""Cache decision engine.

Decides per platform whether the image published by a previous build can
be reused instead of building the Dockerfile again. A platform's identity
is the digest of the image its final stage is built FROM, the commit of its
Dockerfile and its build args. The previous image is reused when all of
them are unchanged and no new tag has been declared.

Platforms sharing a Dockerfile, build args and base image digest are one
build unit: once any of them is reused, all of them are.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from image_builder.builds.digests import DigestCache
from image_builder.engine.protocols import SourceControl
from image_builder.ledger.models import PlatformData
from image_builder.manifest.graph import ImageKey, ManifestGraph, PlatformKey, PlatformNode
from image_builder.naming import ImageNameResolver, digests_match, get_digest_sha
from image_builder.types import CacheState

logger = logging.getLogger(__name__)

NodeId = tuple[PlatformKey, ImageKey]


@dataclass
class CacheDecision:
    """Outcome of the cache check of one platform.

    Attributes:
        platform: Platform the decision is about.
        state: Whether the platform is rebuilt or reused.
        prior: Ledger entry recorded for the platform by a previous build.
        base_image_digest: Current digest of the final stage's FROM image.
        commit_url: Current commit URL of the Dockerfile.
        reason: Why the decision was taken.
        source: Ledger entry whose image is reused (the platform's own prior
            entry, or a sibling's for shared Dockerfiles).
    """

    platform: PlatformNode
    state: CacheState
    prior: PlatformData | None
    base_image_digest: str | None
    commit_url: str
    reason: str
    source: PlatformData | None = field(default=None, repr=False)

    @property
    def use_cache(self) -> bool:
        return self.state != CacheState.NOT_CACHED

    @property
    def effective_digest(self) -> str | None:
        """Digest of the image reused for the platform."""
        if not self.use_cache or self.source is None:
            return None
        return self.source.digest

    @property
    def unit_key(self) -> tuple[str, tuple[tuple[str, str], ...], str | None]:
        """Identity of the build unit the platform belongs to."""
        sha = get_digest_sha(self.base_image_digest)
        return (
            self.platform.dockerfile,
            self.platform.build_unit_args,
            sha.lower() if sha else None,
        )


def get_commit_url(source_repo_url: str | None, sha: str, dockerfile: str) -> str:
    """URL of a Dockerfile at a commit (the bare SHA without a source repo URL)."""
    if not source_repo_url:
        return sha
    return f"{source_repo_url.rstrip('/')}/blob/{sha}/{dockerfile}"


class ImageCacheService:
    """Evaluates cache decisions for the platforms of a build.

    Args:
        graph: Manifest graph the platforms belong to.
        source_control: Source of Dockerfile commit SHAs.
        digest_cache: Memoized digests of local images.
        name_resolver: Maps FROM references to their local tags.
        source_repo_url: URL of the source repo for commit URLs.
        no_cache: Never reuse previous images.
    """

    def __init__(
        self,
        graph: ManifestGraph,
        source_control: SourceControl,
        digest_cache: DigestCache,
        name_resolver: ImageNameResolver | None = None,
        source_repo_url: str | None = None,
        no_cache: bool = False,
    ) -> None:
        self.graph = graph
        self.source_control = source_control
        self.digest_cache = digest_cache
        self.name_resolver = name_resolver or ImageNameResolver()
        self.source_repo_url = source_repo_url
        self.no_cache = no_cache
        self._produced: dict[NodeId, str | None] = {}

    def record_produced(self, platform: PlatformNode, digest: str | None) -> None:
        """Record the digest a platform has (or will have) in this run.

        Dependents built FROM the platform use it as their base image digest.
        """
        self._produced[platform.node_id] = digest
        for tag in platform.tags:
            self.digest_cache.seed(platform.repo.get_tag(tag), digest)

    def get_commit_url(self, platform: PlatformNode) -> str:
        sha = self.source_control.get_commit_sha(platform.dockerfile_path)
        return get_commit_url(self.source_repo_url, sha, platform.dockerfile)

    def get_base_image_digest(self, platform: PlatformNode) -> str | None:
        """Current digest of the image the final stage is built FROM."""
        from_image = platform.final_stage_from_image
        if from_image is None:
            return None
        target = self.graph.resolve(from_image, platform)
        if target is not None and target.node_id in self._produced:
            return self._produced[target.node_id]
        return self.digest_cache.get(self.name_resolver.get_local_tag(from_image))

    def evaluate(self, platform: PlatformNode, prior: PlatformData | None) -> CacheDecision:
        """Decide whether the previous image of ``platform`` can be reused."""
        logger.info("Checking for cached image for '%s'", platform.dockerfile)
        base_digest = self.get_base_image_digest(platform)
        commit_url = self.get_commit_url(platform)

        def decide(state: CacheState, reason: str) -> CacheDecision:
            label = "CACHE HIT" if state == CacheState.CACHED else "CACHE MISS"
            logger.info("%s: %s", label, reason)
            return CacheDecision(
                platform=platform,
                state=state,
                prior=prior,
                base_image_digest=base_digest,
                commit_url=commit_url,
                reason=reason,
                source=prior if state == CacheState.CACHED else None,
            )

        if self.no_cache:
            return decide(CacheState.NOT_CACHED, "caching disabled")
        if prior is None:
            return decide(CacheState.NOT_CACHED, "no previous build recorded")

        if platform.final_stage_from_image is None:
            logger.info("Image does not have a base image, base image is up-to-date")
        else:
            logger.info("Ledger base image digest: %s", prior.base_image_digest)
            logger.info("Current base image digest: %s", base_digest)
            if (
                prior.base_image_digest is None
                or base_digest is None
                or not digests_match(prior.base_image_digest, base_digest)
            ):
                return decide(CacheState.NOT_CACHED, "base image digest changed")

        logger.info("Ledger Dockerfile commit: %s", prior.commit_url)
        logger.info("Current Dockerfile commit: %s", commit_url)
        if prior.commit_url.lower() != commit_url.lower():
            return decide(CacheState.NOT_CACHED, "Dockerfile commit changed")

        new_tags = [tag for tag in platform.simple_tags if tag not in prior.simple_tags]
        if new_tags:
            return decide(CacheState.NOT_CACHED, f"new tags {', '.join(new_tags)}")

        return decide(CacheState.CACHED, "base image, Dockerfile and tags unchanged")

    def infer_shared(self, decisions: list[CacheDecision]) -> list[CacheDecision]:
        """Reuse the image of a build unit for every sibling of a cached platform.

        Applied after all individual decisions so the outcome does not
        depend on declaration order.

        Returns:
            The decisions promoted to ``CACHED_SHARED``.
        """
        if self.no_cache:
            return []
        hits: dict[tuple, CacheDecision] = {}
        for decision in decisions:
            if decision.state == CacheState.CACHED:
                hits.setdefault(decision.unit_key, decision)

        promoted: list[CacheDecision] = []
        for decision in decisions:
            if decision.state != CacheState.NOT_CACHED:
                continue
            hit = hits.get(decision.unit_key)
            if hit is None:
                continue
            decision.state = CacheState.CACHED_SHARED
            decision.source = hit.source
            decision.reason = f"shares Dockerfile with cached '{hit.platform.repo.name}'"
            logger.info(
                "CACHE HIT (shared): '%s' reuses the image of %r",
                decision.platform.dockerfile,
                hit.platform,
            )
            promoted.append(decision)
        return promoted


__all__ = ["CacheDecision", "ImageCacheService", "get_commit_url"]
