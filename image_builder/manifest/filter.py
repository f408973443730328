"""Platform selection with glob patterns.

Patterns support ``*`` (any run of characters) and ``?`` (one character),
are anchored and match case-insensitively. An unset filter selects
everything.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field


def get_filter_regex_pattern(*patterns: str) -> str:
    """Translate glob patterns into one anchored regular expression."""
    processed = "|".join(
        re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
        for pattern in patterns
    )
    return f"^({processed})$"


def matches_any(value: str | None, patterns: list[str] | None) -> bool:
    """Whether ``value`` matches one of the glob patterns (True when unfiltered)."""
    if not patterns:
        return True
    return (
        re.match(get_filter_regex_pattern(*patterns), value or "", re.IGNORECASE)
        is not None
    )


@dataclass
class ManifestFilter:
    """Selects the repos and platforms an operation processes.

    Attributes:
        architecture: Glob for the platform architecture.
        os_type: Glob for the platform OS type (``linux`` / ``windows``).
        os_versions: Globs for the platform OS version.
        paths: Globs for the Dockerfile path as written in the manifest.
        product_versions: Globs for the image product version.
        repos: Repo names to include.
    """

    architecture: str | None = None
    os_type: str | None = None
    os_versions: list[str] = field(default_factory=list)
    paths: list[str] = field(default_factory=list)
    product_versions: list[str] = field(default_factory=list)
    repos: list[str] = field(default_factory=list)

    def includes_repo(self, repo_name: str) -> bool:
        return not self.repos or repo_name in self.repos

    def includes_product_version(self, product_version: str | None) -> bool:
        return matches_any(product_version, self.product_versions)

    def includes_platform(
        self,
        architecture: str,
        os_type: str,
        os_version: str,
        dockerfile: str,
    ) -> bool:
        """Whether a platform with the given attributes is selected."""
        if self.architecture and not matches_any(architecture, [self.architecture]):
            return False
        if self.os_type and not matches_any(os_type, [self.os_type]):
            return False
        return matches_any(dockerfile, self.paths) and matches_any(
            os_version, self.os_versions
        )


__all__ = ["ManifestFilter", "get_filter_regex_pattern", "matches_any"]
