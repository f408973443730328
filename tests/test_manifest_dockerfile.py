"""Tests for Dockerfile FROM-reference parsing."""

import pytest

from image_builder.errors import DockerfileError
from image_builder.manifest.dockerfile import (
    DockerfileInfo,
    is_scratch,
    parse_from_images,
    read_dockerfile,
    resolve_dockerfile_path,
)


class TestParseFromImages:
    """Tests for parse_from_images."""

    def test_single_stage(self):
        """A single FROM should be returned."""
        assert parse_from_images("FROM debian:bookworm-slim\nRUN true\n") == [
            "debian:bookworm-slim"
        ]

    def test_multi_stage_drops_aliases(self):
        """References to earlier stages are not images."""
        text = (
            "FROM mcr.example.com/sdk:8.0 AS build\n"
            "RUN make\n"
            "FROM build AS publish\n"
            "FROM mcr.example.com/runtime:8.0\n"
            "COPY --from=publish /app /app\n"
        )
        assert parse_from_images(text) == [
            "mcr.example.com/sdk:8.0",
            "mcr.example.com/runtime:8.0",
        ]

    def test_case_insensitive_and_platform_flag(self):
        """Keywords are case-insensitive and --platform is ignored."""
        text = "from --platform=$BUILDPLATFORM golang:1.22 as build\nFROM alpine:3.19\n"
        assert parse_from_images(text, {"BUILDPLATFORM": "linux/amd64"}) == [
            "golang:1.22",
            "alpine:3.19",
        ]

    def test_global_arg_default(self):
        """Global ARG defaults should be substituted."""
        text = "ARG REPO=mcr.example.com/runtime-deps\nFROM $REPO:8.0\n"
        assert parse_from_images(text) == ["mcr.example.com/runtime-deps:8.0"]

    def test_build_arg_overrides_default(self):
        """Build args should take precedence over ARG defaults."""
        text = "ARG REPO=mcr.example.com/runtime-deps\nFROM ${REPO}:8.0\n"
        assert parse_from_images(text, {"REPO": "myacr.io/deps"}) == ["myacr.io/deps:8.0"]

    def test_arg_without_value(self):
        """An ARG without default or build arg value should fail."""
        with pytest.raises(DockerfileError) as exc_info:
            parse_from_images("ARG REPO\nFROM $REPO:8.0\n")
        assert "REPO" in str(exc_info.value)

    def test_stage_args_not_global(self):
        """ARGs declared after the first FROM do not apply to later FROMs."""
        text = "FROM alpine AS a\nARG TAG=1\nFROM alpine:$TAG\n"
        with pytest.raises(DockerfileError):
            parse_from_images(text)

    def test_comments_and_continuations(self):
        """Comments are skipped and line continuations joined."""
        text = "# FROM ignored:1\nFROM \\\n  debian:bookworm\n"
        assert parse_from_images(text) == ["debian:bookworm"]

    def test_no_from(self):
        """A Dockerfile without FROM should fail."""
        with pytest.raises(DockerfileError):
            parse_from_images("RUN true\n")


class TestDockerfileInfo:
    """Tests for DockerfileInfo."""

    def test_final_stage(self, tmp_path):
        """The last FROM is the final stage's base image."""
        info = DockerfileInfo(tmp_path, ["sdk:8.0", "runtime:8.0"])
        assert info.final_stage_from_image == "runtime:8.0"

    def test_scratch_final_stage(self, tmp_path):
        """A final stage FROM scratch has no base image."""
        info = DockerfileInfo(tmp_path, ["golang:1.22", "scratch"])
        assert info.final_stage_from_image is None
        assert info.external_candidates == ["golang:1.22"]
        assert is_scratch("SCRATCH")


class TestReadDockerfile:
    """Tests for reading Dockerfiles from disk."""

    def test_directory_resolves_to_dockerfile(self, tmp_path):
        """A directory entry should resolve to its Dockerfile."""
        (tmp_path / "src").mkdir()
        assert resolve_dockerfile_path(tmp_path, "src") == tmp_path / "src" / "Dockerfile"

    def test_file_entry_kept(self, tmp_path):
        """A file entry should be used as is."""
        (tmp_path / "Dockerfile.custom").write_text("FROM alpine\n", encoding="utf-8")
        assert resolve_dockerfile_path(tmp_path, "Dockerfile.custom") == (
            tmp_path / "Dockerfile.custom"
        )

    def test_read(self, tmp_path):
        """read_dockerfile should parse the file."""
        path = tmp_path / "Dockerfile"
        path.write_text("FROM alpine:3.19\n", encoding="utf-8")
        info = read_dockerfile(path)
        assert info.path == path
        assert info.from_images == ["alpine:3.19"]

    def test_missing(self, tmp_path):
        """A missing Dockerfile should raise DockerfileError."""
        with pytest.raises(DockerfileError) as exc_info:
            read_dockerfile(tmp_path / "Dockerfile")
        assert exc_info.value.code == "invalid_dockerfile"
