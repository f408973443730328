"""Tests for the manifest graph.

Tests node construction, FROM edge resolution and traversal.
"""

import pytest
from conftest import platform, write_dockerfile, write_manifest

from image_builder.errors import DockerfileError, ManifestError
from image_builder.manifest.filter import ManifestFilter
from image_builder.manifest.graph import ImageKey, ManifestGraph, get_major_minor_version
from image_builder.naming import BaseImageOverride, ImageNameResolver


def _by_repo(graph: ManifestGraph) -> dict:
    return {p.repo.name: p for p in graph.all_platforms}


class TestGetMajorMinorVersion:
    """Tests for get_major_minor_version."""

    @pytest.mark.parametrize(
        ("version", "expected"),
        [
            ("8.0.1", "8.0"),
            ("8.0", "8.0"),
            ("9.0.0-preview.1", "9.0"),
            ("8", "8"),
            (None, None),
        ],
    )
    def test_versions(self, version, expected):
        """Versions should be reduced to major.minor without suffix."""
        assert get_major_minor_version(version) == expected


class TestGraphConstruction:
    """Tests for building the graph from a manifest."""

    def test_nodes(self, chain_manifest):
        """Every repo, image and platform should become a node."""
        graph = ManifestGraph.load(chain_manifest)
        assert [repo.name for repo in graph.repos] == ["runtime-deps", "runtime", "aspnet"]
        platforms = _by_repo(graph)
        runtime = platforms["runtime"]
        assert runtime.dockerfile == "src/runtime/Dockerfile"
        assert runtime.model_dockerfile == "src/runtime"
        assert runtime.repo.full_name == "mcr.example.com/runtime"
        assert runtime.image.key == ImageKey("runtime", "8.0.1", 0)
        assert runtime.simple_tags == ["8.0"]

    def test_edges(self, chain_manifest):
        """FROM references to manifest tags should become edges."""
        graph = ManifestGraph.load(chain_manifest)
        platforms = _by_repo(graph)
        assert graph.dependencies(platforms["runtime-deps"]) == []
        assert graph.dependencies(platforms["runtime"]) == [platforms["runtime-deps"]]
        assert graph.dependencies(platforms["aspnet"]) == [platforms["runtime"]]
        assert graph.dependents(platforms["runtime-deps"]) == [platforms["runtime"]]

    def test_internal_and_external(self, chain_manifest):
        """Only references produced by the manifest are internal."""
        graph = ManifestGraph.load(chain_manifest)
        assert graph.is_internal("mcr.example.com/runtime:8.0")
        assert graph.is_internal("runtime:8.0")
        assert not graph.is_internal("debian:bookworm-slim")
        assert not graph.is_internal(None)
        assert graph.external_from_images() == ["debian:bookworm-slim"]

    def test_registry_override_and_prefix(self, chain_manifest):
        """Overridden and prefixed names should resolve to the same nodes."""
        graph = ManifestGraph.load(
            chain_manifest, registry_override="myacr.example.io", repo_prefix="build/"
        )
        platforms = _by_repo(graph)
        assert platforms["runtime"].repo.full_name == "myacr.example.io/build/runtime"
        assert graph.resolve("myacr.example.io/build/runtime:8.0") is platforms["runtime"]
        assert graph.resolve("mcr.example.com/runtime:8.0") is platforms["runtime"]
        assert graph.get_repo("build/runtime") is platforms["runtime"].repo

    def test_duplicate_repo(self, tmp_path):
        """Declaring a repo twice should fail."""
        write_dockerfile(tmp_path, "src/a", "alpine")
        repo = {"name": "a", "images": [{"platforms": [platform("src/a", "1")]}]}
        path = write_manifest(tmp_path, {"repos": [repo, repo]})
        with pytest.raises(ManifestError):
            ManifestGraph.load(path)

    def test_missing_dockerfile(self, tmp_path):
        """A platform whose Dockerfile does not exist should fail."""
        repo = {"name": "a", "images": [{"platforms": [platform("src/a", "1")]}]}
        path = write_manifest(tmp_path, {"repos": [repo]})
        with pytest.raises(DockerfileError):
            ManifestGraph.load(path)

    def test_image_ordinals(self, tmp_path):
        """Images with the same product version get distinct ordinals."""
        write_dockerfile(tmp_path, "src/a", "alpine")
        write_dockerfile(tmp_path, "src/b", "alpine")
        path = write_manifest(
            tmp_path,
            {
                "repos": [
                    {
                        "name": "a",
                        "images": [
                            {"productVersion": "1.0", "platforms": [platform("src/a", "a")]},
                            {"productVersion": "1.0", "platforms": [platform("src/b", "b")]},
                        ],
                    }
                ]
            },
        )
        graph = ManifestGraph.load(path)
        assert [image.key.ordinal for image in graph.all_images] == [0, 1]

    def test_base_override_applied_to_from_images(self, tmp_path):
        """FROM references should be rewritten by the base image override."""
        write_dockerfile(tmp_path, "src/a", "docker.io/library/alpine:3.19")
        path = write_manifest(
            tmp_path, {"repos": [{"name": "a", "images": [{"platforms": [platform("src/a", "1")]}]}]}
        )
        resolver = ImageNameResolver(
            base_override=BaseImageOverride(r"^docker\.io/", "mirror.example.io/")
        )
        graph = ManifestGraph.load(path, name_resolver=resolver)
        assert graph.all_platforms[0].final_stage_from_image == (
            "mirror.example.io/library/alpine:3.19"
        )


class TestSharedDockerfiles:
    """Tests for Dockerfiles used by several platforms."""

    def test_shared_dockerfile_yields_distinct_nodes(self, tmp_path):
        """Each use of a Dockerfile is its own node with the same structural key."""
        write_dockerfile(tmp_path, "src/shared", "alpine:3.19")
        path = write_manifest(
            tmp_path,
            {
                "repos": [
                    {"name": "a", "images": [{"platforms": [platform("src/shared", "a")]}]},
                    {"name": "b", "images": [{"platforms": [platform("src/shared", "b")]}]},
                ]
            },
        )
        graph = ManifestGraph.load(path)
        first, second = graph.all_platforms
        assert first.key == second.key
        assert first.node_id != second.node_id
        assert graph.find_platforms(first.key) == [first, second]

    def test_shared_tag_resolves_by_architecture(self, tmp_path):
        """A shared tag resolves to the platform matching the consumer's architecture."""
        write_dockerfile(tmp_path, "src/base/amd64", "alpine:3.19")
        write_dockerfile(tmp_path, "src/base/arm64", "alpine:3.19")
        write_dockerfile(tmp_path, "src/app", "base:1.0")
        path = write_manifest(
            tmp_path,
            {
                "repos": [
                    {
                        "name": "base",
                        "images": [
                            {
                                "sharedTags": {"1.0": {}},
                                "platforms": [
                                    platform("src/base/amd64", "1.0-amd64"),
                                    platform("src/base/arm64", "1.0-arm64", architecture="arm64"),
                                ],
                            }
                        ],
                    },
                    {
                        "name": "app",
                        "images": [
                            {"platforms": [platform("src/app", "1", architecture="arm64")]}
                        ],
                    },
                ]
            },
        )
        graph = ManifestGraph.load(path)
        app = graph.all_platforms[-1]
        assert [p.architecture for p in graph.dependencies(app)] == ["arm64"]


class TestTraversal:
    """Tests for graph traversal."""

    def test_dependency_closure(self, chain_manifest):
        """The closure should contain the roots and everything built FROM them."""
        graph = ManifestGraph.load(chain_manifest)
        platforms = _by_repo(graph)
        closure = graph.dependency_closure([platforms["runtime-deps"]])
        assert [p.repo.name for p in closure] == ["runtime-deps", "runtime", "aspnet"]
        closure = graph.dependency_closure([platforms["aspnet"]])
        assert [p.repo.name for p in closure] == ["aspnet"]

    def test_closure_deduplicates_roots(self, chain_manifest):
        """A platform reachable from several roots is reported once."""
        graph = ManifestGraph.load(chain_manifest)
        platforms = _by_repo(graph)
        closure = graph.dependency_closure([platforms["runtime-deps"], platforms["runtime"]])
        assert len(closure) == 3

    def test_cycle_terminates(self, tmp_path):
        """Cyclic FROM references should not loop forever."""
        write_dockerfile(tmp_path, "src/a", "b:1")
        write_dockerfile(tmp_path, "src/b", "a:1")
        path = write_manifest(
            tmp_path,
            {
                "repos": [
                    {"name": "a", "images": [{"platforms": [platform("src/a", "1")]}]},
                    {"name": "b", "images": [{"platforms": [platform("src/b", "1")]}]},
                ]
            },
        )
        graph = ManifestGraph.load(path)
        closure = graph.dependency_closure([graph.all_platforms[0]])
        assert [p.repo.name for p in closure] == ["a", "b"]

    def test_filtered_platforms(self, chain_manifest):
        """The filter should select platforms in declaration order."""
        graph = ManifestGraph.load(
            chain_manifest, manifest_filter=ManifestFilter(paths=["src/runtime*"])
        )
        assert [p.repo.name for p in graph.filtered_platforms()] == ["runtime-deps", "runtime"]
        assert len(graph.filtered_platforms(ManifestFilter())) == 3
