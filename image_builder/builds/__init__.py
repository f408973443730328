"""Build orchestration module.

This module handles:
- Memoized base image digest lookups
- Staleness detection against a published ledger
- Cache decisions, including shared Dockerfile inference
- Building, reusing and publishing images
"""

from image_builder.builds.cache import CacheDecision, ImageCacheService
from image_builder.builds.digests import DigestCache

__all__ = ["CacheDecision", "DigestCache", "ImageCacheService"]

# Submodules importing the ledger and engine packages are accessed directly,
# e.g. image_builder.builds.service
