"""Tests for ledger binding and ledger file operations."""

import pytest

from image_builder.errors import ConsistencyError, ImageBuilderError, LedgerError, ManifestError
from image_builder.ledger.io import (
    bind_ledger_to_manifest,
    load_bound_ledger,
    load_ledger,
    write_ledger,
)
from image_builder.ledger.models import (
    ImageArtifactDetails,
    ImageData,
    PlatformData,
    RepoData,
)
from image_builder.ledger.service import (
    apply_commit_override,
    find_ledger_files,
    merge_ledger_files,
    remove_out_of_date_content,
    trim_unchanged_platforms,
    validate_commit_override,
)
from image_builder.manifest.graph import ImageKey, ManifestGraph

OLD_SHA = "a" * 40
NEW_SHA = "b" * 40
OVERRIDE_SHA = "c" * 40


def _commit_url(repo: str, sha: str) -> str:
    return f"https://github.com/example/images/blob/{sha}/src/{repo}/Dockerfile"


def _platform(repo: str, **kwargs) -> PlatformData:
    data = {
        "dockerfile": f"src/{repo}/Dockerfile",
        "os_type": "linux",
        "os_version": "bookworm",
        "architecture": "amd64",
        "simple_tags": ["8.0"],
        "digest": f"mcr.example.com/{repo}@sha256:1",
        "commit_url": _commit_url(repo, OLD_SHA),
    }
    data.update(kwargs)
    return PlatformData(**data)


def _repo(repo: str, product_version: str = "8.0.1", **kwargs) -> RepoData:
    return RepoData(
        repo=repo,
        images=[ImageData(product_version=product_version, platforms=[_platform(repo, **kwargs)])],
    )


def _chain_ledger(**kwargs) -> ImageArtifactDetails:
    return ImageArtifactDetails(
        repos=[_repo(name, **kwargs) for name in ("aspnet", "runtime", "runtime-deps")]
    )


class TestBindLedgerToManifest:
    """Tests for binding ledger images to manifest images."""

    def test_bind(self, chain_manifest):
        """Ledger images should get the key of their manifest image."""
        graph = ManifestGraph.load(chain_manifest)
        ledger = bind_ledger_to_manifest(_chain_ledger(), graph)
        runtime = ledger.get_repo("runtime").images[0]
        assert runtime.image_key == ImageKey("runtime", "8.0.1", 0)

    def test_bind_by_major_minor(self, chain_manifest):
        """A newer patch version should still bind to the image."""
        graph = ManifestGraph.load(chain_manifest)
        ledger = bind_ledger_to_manifest(_chain_ledger(product_version="8.0.7"), graph)
        assert ledger.get_repo("aspnet").images[0].image_key is not None

    def test_unmatched_platform(self, chain_manifest):
        """An image without counterpart fails validation unless skipped."""
        graph = ManifestGraph.load(chain_manifest)
        ledger = ImageArtifactDetails(repos=[_repo("runtime", product_version="9.0.0")])
        with pytest.raises(LedgerError):
            bind_ledger_to_manifest(ledger, graph)
        bind_ledger_to_manifest(ledger, graph, skip_validation=True)
        assert ledger.repos[0].images[0].image_key is None

    def test_load_bound_ledger_missing(self, chain_manifest, tmp_path):
        """A missing ledger file should load as an empty ledger."""
        graph = ManifestGraph.load(chain_manifest)
        assert load_bound_ledger(tmp_path / "missing.json", graph).repos == []
        assert load_bound_ledger(None, graph).repos == []


class TestFindLedgerFiles:
    """Tests for find_ledger_files."""

    def test_missing_folder(self, tmp_path):
        """A missing folder is a consistency error."""
        with pytest.raises(ConsistencyError):
            find_ledger_files(tmp_path / "missing")

    def test_empty_folder(self, tmp_path):
        """A folder without JSON files is a consistency error."""
        (tmp_path / "notes.txt").write_text("", encoding="utf-8")
        with pytest.raises(ConsistencyError) as exc_info:
            find_ledger_files(tmp_path)
        assert exc_info.value.code == "consistency_error"

    def test_recursive_sorted(self, tmp_path):
        """JSON files are found recursively in path order."""
        (tmp_path / "b").mkdir()
        (tmp_path / "b" / "x.json").write_text("{}", encoding="utf-8")
        (tmp_path / "a.json").write_text("{}", encoding="utf-8")
        assert find_ledger_files(tmp_path) == [tmp_path / "a.json", tmp_path / "b" / "x.json"]


class TestMergeLedgerFiles:
    """Tests for merge_ledger_files."""

    def test_merge_shards(self, tmp_path):
        """Every shard should end up in the merged ledger."""
        shards = tmp_path / "shards"
        write_ledger(ImageArtifactDetails(repos=[_repo("runtime")]), shards / "linux.json")
        write_ledger(ImageArtifactDetails(repos=[_repo("aspnet")]), shards / "arm" / "arm.json")
        merged = merge_ledger_files(shards)
        assert [repo.repo for repo in merged.repos] == ["aspnet", "runtime"]

    def test_initial_used_as_target(self, tmp_path):
        """The initial ledger is the target and is not merged as a source again."""
        shards = tmp_path / "shards"
        initial = shards / "initial.json"
        write_ledger(ImageArtifactDetails(repos=[_repo("runtime", simple_tags=["old"])]), initial)
        write_ledger(
            ImageArtifactDetails(repos=[_repo("runtime", simple_tags=["new"])]),
            shards / "shard.json",
        )
        merged = merge_ledger_files(shards, initial_path=initial)
        [(_, _, platform)] = merged.iter_platforms()
        assert platform.simple_tags == ["new", "old"]

    def test_publish_requires_manifest(self, tmp_path):
        """Publishing without a manifest should fail."""
        write_ledger(ImageArtifactDetails(), tmp_path / "a.json")
        with pytest.raises(ManifestError):
            merge_ledger_files(tmp_path, publish=True)

    def test_publish(self, chain_manifest, tmp_path):
        """Publishing removes stale content and replaces tags."""
        graph = ManifestGraph.load(chain_manifest)
        initial = tmp_path / "published.json"
        ledger = _chain_ledger(simple_tags=["8.0", "retired"])
        ledger.repos.append(_repo("removed"))
        write_ledger(ledger, initial)
        shards = tmp_path / "shards"
        write_ledger(
            ImageArtifactDetails(repos=[_repo("runtime", digest="mcr.example.com/runtime@sha256:2")]),
            shards / "linux.json",
        )

        merged = merge_ledger_files(shards, graph=graph, initial_path=initial, publish=True)

        assert [repo.repo for repo in merged.repos] == ["aspnet", "runtime", "runtime-deps"]
        runtime = merged.get_repo("runtime").images[0].platforms[0]
        assert runtime.simple_tags == ["8.0"]
        assert runtime.digest == "mcr.example.com/runtime@sha256:2"
        aspnet = merged.get_repo("aspnet").images[0].platforms[0]
        assert aspnet.simple_tags == ["8.0", "retired"]

    def test_commit_override(self, chain_manifest, tmp_path):
        """Updated platforms get the override SHA in their commit URL."""
        graph = ManifestGraph.load(chain_manifest)
        initial = tmp_path / "published.json"
        write_ledger(_chain_ledger(), initial)
        shards = tmp_path / "shards"
        write_ledger(
            ImageArtifactDetails(
                repos=[
                    _repo(
                        "runtime",
                        digest="mcr.example.com/runtime@sha256:2",
                        commit_url=_commit_url("runtime", NEW_SHA),
                    ),
                    _repo("aspnet"),
                ]
            ),
            shards / "linux.json",
        )

        merged = merge_ledger_files(
            shards, graph=graph, initial_path=initial, commit_override=OVERRIDE_SHA
        )

        runtime = merged.get_repo("runtime").images[0].platforms[0]
        assert runtime.commit_url == _commit_url("runtime", OVERRIDE_SHA)
        aspnet = merged.get_repo("aspnet").images[0].platforms[0]
        assert aspnet.commit_url == _commit_url("aspnet", OLD_SHA)


class TestRemoveOutOfDateContent:
    """Tests for remove_out_of_date_content."""

    def test_removes_platforms_not_in_manifest(self, chain_manifest):
        """Platforms the manifest no longer declares are removed."""
        graph = ManifestGraph.load(chain_manifest)
        ledger = _chain_ledger()
        ledger.get_repo("runtime").images[0].platforms.append(
            _platform("runtime", architecture="arm64")
        )
        bind_ledger_to_manifest(ledger, graph)
        remove_out_of_date_content(ledger, graph)
        assert len(ledger.get_repo("runtime").images[0].platforms) == 1

    def test_nothing_left(self, chain_manifest):
        """Removing everything is a consistency error."""
        graph = ManifestGraph.load(chain_manifest)
        ledger = ImageArtifactDetails(repos=[_repo("removed")])
        with pytest.raises(ConsistencyError):
            remove_out_of_date_content(ledger, graph)


class TestCommitOverride:
    """Tests for commit override helpers."""

    def test_invalid(self):
        """Overrides without a commit SHA are rejected."""
        with pytest.raises(ImageBuilderError) as exc_info:
            validate_commit_override("main")
        assert exc_info.value.code == "invalid_commit_override"

    def test_new_platform_without_url(self):
        """A new platform without a commit URL gets the override verbatim."""
        current = ImageArtifactDetails(repos=[_repo("runtime", commit_url="")])
        apply_commit_override(current, ImageArtifactDetails(), OVERRIDE_SHA)
        [(_, _, platform)] = current.iter_platforms()
        assert platform.commit_url == OVERRIDE_SHA


class TestTrimUnchangedPlatforms:
    """Tests for trim_unchanged_platforms."""

    def test_trim(self, tmp_path):
        """Unchanged platforms and emptied images and repos are removed."""
        ledger = ImageArtifactDetails(
            repos=[
                _repo("runtime", is_unchanged=True),
                RepoData(
                    repo="aspnet",
                    images=[
                        ImageData(
                            platforms=[
                                _platform("aspnet", is_unchanged=True),
                                _platform("aspnet", architecture="arm64"),
                            ]
                        )
                    ],
                ),
            ]
        )
        path = tmp_path / "image-info.json"
        write_ledger(trim_unchanged_platforms(ledger), path)
        trimmed = load_ledger(path)
        assert [repo.repo for repo in trimmed.repos] == ["aspnet"]
        assert [p.architecture for p in trimmed.repos[0].images[0].platforms] == ["arm64"]
