"""Shared fixtures for image_builder tests.

Provides in-memory stand-ins for the container engine and source control,
and helpers writing manifests and Dockerfiles to a temporary directory.
"""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from image_builder.naming import get_digest_sha, get_repo

CREATED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
SHA = "a" * 40


def sha256(char: str) -> str:
    return "sha256:" + char * 64


class FakeEngine:
    """Image engine keeping image digests in memory.

    Every build produces a new digest for all of its tags. ``calls`` records
    each invocation as a tuple.
    """

    def __init__(self, digests: dict[str, str] | None = None, build_output: str = "") -> None:
        self.digests: dict[str, str] = dict(digests or {})
        self.build_output = build_output
        self.calls: list[tuple] = []
        self._builds = 0

    def _sha_of(self, ref: str) -> str | None:
        if "@" in ref:
            return get_digest_sha(ref)
        digest = self.digests.get(ref)
        return get_digest_sha(digest) if digest else None

    def pull(self, ref: str) -> None:
        self.calls.append(("pull", ref))

    def get_digest(self, ref: str) -> str | None:
        self.calls.append(("get_digest", ref))
        sha = self._sha_of(ref)
        if sha is None:
            return None
        return f"{get_repo(ref)}@{sha}"

    def get_layers(self, ref: str) -> list[str]:
        return [sha256("f")]

    def get_created_date(self, ref: str) -> datetime:
        return CREATED

    def build(self, dockerfile: Path, context: Path, tags: list[str], build_args: dict[str, str]) -> str:
        self.calls.append(("build", str(dockerfile), tuple(tags), tuple(sorted(build_args.items()))))
        self._builds += 1
        sha = "sha256:" + f"{self._builds:064x}"
        for tag in tags:
            self.digests[tag] = f"{get_repo(tag)}@{sha}"
        return self.build_output

    def tag(self, source: str, dest: str) -> None:
        self.calls.append(("tag", source, dest))
        sha = self._sha_of(source)
        if sha is not None:
            self.digests[dest] = f"{get_repo(dest)}@{sha}"

    def push(self, ref: str) -> None:
        self.calls.append(("push", ref))

    def create_manifest_list(self, name: str, refs: list[str]) -> None:
        self.calls.append(("create_manifest_list", name, tuple(refs)))

    def push_manifest_list(self, name: str) -> None:
        self.calls.append(("push_manifest_list", name))

    def called(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]


class FakeSourceControl:
    """Source control returning a fixed SHA, optionally per Dockerfile name."""

    def __init__(self, sha: str = SHA, shas: dict[str, str] | None = None) -> None:
        self.sha = sha
        self.shas = dict(shas or {})

    def get_commit_sha(self, path: Path) -> str:
        for suffix, sha in self.shas.items():
            if path.as_posix().endswith(suffix):
                return sha
        return self.sha


class FakeRegistry:
    """Registry client answering from a dict and counting queries."""

    def __init__(self, digests: dict[str, str]) -> None:
        self.digests = dict(digests)
        self.queries: list[str] = []

    def get_manifest_digest(self, ref: str) -> str:
        self.queries.append(ref)
        return self.digests[ref]


def write_dockerfile(base_dir: Path, rel_dir: str, *from_lines: str) -> Path:
    """Write ``<rel_dir>/Dockerfile`` with one FROM line per argument."""
    directory = base_dir / rel_dir
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "Dockerfile"
    lines = [f"FROM {line}" for line in from_lines]
    lines.append("RUN echo done")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def platform(dockerfile: str, *tags: str, **extra: object) -> dict:
    data: dict = {
        "dockerfile": dockerfile,
        "os": "linux",
        "osVersion": "bookworm",
        "architecture": "amd64",
        "tags": {tag: {} for tag in tags},
    }
    data.update(extra)
    return data


def write_manifest(base_dir: Path, data: dict, name: str = "manifest.json") -> Path:
    path = base_dir / name
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def chain_manifest(tmp_path: Path) -> Path:
    """Manifest with runtime-deps FROM an external base, runtime FROM
    runtime-deps and aspnet FROM runtime."""
    write_dockerfile(tmp_path, "src/runtime-deps", "debian:bookworm-slim")
    write_dockerfile(tmp_path, "src/runtime", "mcr.example.com/runtime-deps:8.0")
    write_dockerfile(tmp_path, "src/aspnet", "mcr.example.com/runtime:8.0")
    return write_manifest(
        tmp_path,
        {
            "registry": "mcr.example.com",
            "repos": [
                {
                    "name": "runtime-deps",
                    "images": [
                        {
                            "productVersion": "8.0.1",
                            "platforms": [platform("src/runtime-deps", "8.0")],
                        }
                    ],
                },
                {
                    "name": "runtime",
                    "images": [
                        {
                            "productVersion": "8.0.1",
                            "platforms": [platform("src/runtime", "8.0")],
                        }
                    ],
                },
                {
                    "name": "aspnet",
                    "images": [
                        {
                            "productVersion": "8.0.1",
                            "platforms": [platform("src/aspnet", "8.0")],
                        }
                    ],
                },
            ],
        },
    )
