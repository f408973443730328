"""Memoized base image digest lookups.

A run looks up the digest of every distinct image reference at most once,
even when several threads ask for the same reference concurrently. Tags of
images produced during the run are seeded into the cache so later lookups
do not hit the registry or the engine.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from image_builder.engine.protocols import ImageEngine, RegistryClient
from image_builder.naming import get_digest_string

logger = logging.getLogger(__name__)

DigestLookup = Callable[[str], "str | None"]


class DigestCache:
    """Single-flight cache of image reference -> digest.

    Args:
        lookup: Resolves the digest of a reference on a cache miss.
    """

    def __init__(self, lookup: DigestLookup) -> None:
        self._lookup = lookup
        self._digests: dict[str, str | None] = {}
        self._lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}
        self.lookup_count = 0

    def get(self, ref: str) -> str | None:
        """Digest of ``ref``, looked up on first use."""
        if ref in self._digests:
            return self._digests[ref]

        with self._lock:
            key_lock = self._key_locks.setdefault(ref, threading.Lock())

        with key_lock:
            if ref in self._digests:
                return self._digests[ref]
            digest = self._lookup(ref)
            with self._lock:
                self.lookup_count += 1
                self._digests[ref] = digest
            logger.debug("Digest of %s: %s", ref, digest)
            return digest

    def seed(self, ref: str, digest: str | None) -> None:
        """Record a known digest for ``ref``."""
        with self._lock:
            self._digests[ref] = digest

    def __contains__(self, ref: object) -> bool:
        return ref in self._digests


def registry_lookup(registry: RegistryClient) -> DigestLookup:
    """Lookup returning ``<repo>@sha256:...`` from a registry manifest query."""

    def lookup(ref: str) -> str | None:
        return get_digest_string(ref, registry.get_manifest_digest(ref))

    return lookup


def engine_lookup(engine: ImageEngine) -> DigestLookup:
    """Lookup returning the digest of a locally available image."""
    return engine.get_digest


__all__ = ["DigestCache", "DigestLookup", "engine_lookup", "registry_lookup"]
