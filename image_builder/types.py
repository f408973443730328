"""Shared type definitions for image_builder.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class OsType(str, Enum):
    """Operating system family of a platform."""

    LINUX = "linux"
    WINDOWS = "windows"


class CacheState(str, Enum):
    """Outcome of a cache evaluation for a single platform."""

    NOT_CACHED = "not-cached"
    CACHED = "cached"
    CACHED_SHARED = "cached-shared"


@dataclass
class SubscriptionImagePaths:
    """Dockerfile paths that need to be rebuilt for one subscription."""

    subscription_id: str
    image_paths: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Convert to the camelCase JSON shape consumed by CI."""
        return {"subscriptionId": self.subscription_id, "imagePaths": self.image_paths}


__all__ = [
    "CacheState",
    "OsType",
    "SubscriptionImagePaths",
]
