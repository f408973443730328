"""Tests for glob based platform filtering."""

from image_builder.manifest.filter import ManifestFilter, get_filter_regex_pattern, matches_any


class TestMatchesAny:
    """Tests for matches_any."""

    def test_no_patterns_match_everything(self):
        """An empty pattern list should not filter."""
        assert matches_any("anything", [])
        assert matches_any(None, None)

    def test_glob(self):
        """* and ? should behave like globs."""
        assert matches_any("bookworm-slim", ["bookworm*"])
        assert matches_any("arm64", ["arm?4"])
        assert not matches_any("jammy", ["bookworm*"])

    def test_anchored_and_case_insensitive(self):
        """Patterns must match the whole value, ignoring case."""
        assert matches_any("LINUX", ["linux"])
        assert not matches_any("linux-musl", ["linux"])

    def test_regex_characters_escaped(self):
        """Regex metacharacters in patterns are literal."""
        assert get_filter_regex_pattern("8.0") == r"^(8\.0)$"
        assert not matches_any("810", ["8.0"])


class TestManifestFilter:
    """Tests for ManifestFilter."""

    def test_default_includes_everything(self):
        """An unset filter should select every platform."""
        manifest_filter = ManifestFilter()
        assert manifest_filter.includes_repo("runtime")
        assert manifest_filter.includes_product_version(None)
        assert manifest_filter.includes_platform("amd64", "linux", "bookworm", "src/a")

    def test_platform_attributes(self):
        """Architecture, OS type, OS version and path should all be applied."""
        manifest_filter = ManifestFilter(
            architecture="arm*",
            os_type="linux",
            os_versions=["bookworm*"],
            paths=["src/runtime/*"],
        )
        assert manifest_filter.includes_platform(
            "arm64", "linux", "bookworm-slim", "src/runtime/8.0"
        )
        assert not manifest_filter.includes_platform(
            "amd64", "linux", "bookworm-slim", "src/runtime/8.0"
        )
        assert not manifest_filter.includes_platform(
            "arm64", "windows", "bookworm-slim", "src/runtime/8.0"
        )
        assert not manifest_filter.includes_platform(
            "arm64", "linux", "jammy", "src/runtime/8.0"
        )
        assert not manifest_filter.includes_platform("arm64", "linux", "bookworm", "src/sdk/8.0")

    def test_repos_and_versions(self):
        """Repo names match exactly and product versions by glob."""
        manifest_filter = ManifestFilter(repos=["runtime"], product_versions=["8.*"])
        assert manifest_filter.includes_repo("runtime")
        assert not manifest_filter.includes_repo("runtime-deps")
        assert manifest_filter.includes_product_version("8.0.1")
        assert not manifest_filter.includes_product_version("9.0.0")
