"""``docker`` CLI implementation of the image engine.

Queries (``inspect``) and mutations (``pull``, ``build``, ``push``...) both
go through the docker executable. In dry-run mode commands are only logged;
queries then report no digest, no layers and a minimal creation time.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from image_builder.engine.process import run_command
from image_builder.errors import ExternalCommandError
from image_builder.naming import get_repo

logger = logging.getLogger(__name__)

# Placeholder creation time reported for images in dry-run mode
DRY_RUN_CREATED = datetime(1, 1, 1, tzinfo=timezone.utc)

_FRACTION_PATTERN = re.compile(r"\.(\d+)")


def parse_docker_timestamp(value: str) -> datetime:
    """Parse a docker timestamp (RFC 3339 with up to nanosecond precision) as UTC."""
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    value = _FRACTION_PATTERN.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class DockerCli:
    """Image engine driving the docker executable.

    Args:
        executable: docker CLI to invoke.
        dry_run: Log commands instead of executing them.
        timeout: Timeout for every command but builds (seconds).
        build_timeout: Timeout for builds (seconds).
    """

    def __init__(
        self,
        executable: str = "docker",
        dry_run: bool = False,
        timeout: int | None = 600,
        build_timeout: int | None = 3600,
    ) -> None:
        self.executable = executable
        self.dry_run = dry_run
        self.timeout = timeout
        self.build_timeout = build_timeout

    def _run(self, *args: str, timeout: int | None = None) -> str:
        return run_command(
            [self.executable, *args],
            timeout=timeout or self.timeout,
            dry_run=self.dry_run,
        )

    def _inspect(self, ref: str, template: str) -> str:
        return self._run("image", "inspect", ref, "--format", template).strip()

    def pull(self, ref: str) -> None:
        logger.info("Pulling %s", ref)
        self._run("pull", ref)

    def get_digest(self, ref: str) -> str | None:
        """Registry digest of a local image matching the image's repo."""
        output = self._inspect(ref, "{{json .RepoDigests}}")
        if not output:
            return None
        repo = get_repo(ref)
        digests = [d for d in json.loads(output) or [] if get_repo(d) == repo]
        if not digests:
            return None
        shas = {d.rsplit("@", 1)[-1] for d in digests}
        if len(shas) > 1:
            raise ExternalCommandError(
                f"Multiple digests found for image '{ref}': {', '.join(sorted(digests))}"
            )
        return digests[0]

    def get_layers(self, ref: str) -> list[str]:
        output = self._inspect(ref, "{{json .RootFS.Layers}}")
        if not output:
            return []
        return list(json.loads(output) or [])

    def get_created_date(self, ref: str) -> datetime:
        output = self._inspect(ref, "{{.Created}}")
        if not output:
            return DRY_RUN_CREATED
        return parse_docker_timestamp(output)

    def build(
        self,
        dockerfile: Path,
        context: Path,
        tags: list[str],
        build_args: dict[str, str],
    ) -> str:
        args = ["build", "-f", str(dockerfile)]
        for tag in tags:
            args.extend(["-t", tag])
        for name, value in build_args.items():
            args.extend(["--build-arg", f"{name}={value}"])
        args.append(str(context))
        output = self._run(*args, timeout=self.build_timeout)
        logger.debug("Build output for %s:\n%s", dockerfile, output)
        return output

    def tag(self, source: str, dest: str) -> None:
        self._run("tag", source, dest)

    def push(self, ref: str) -> None:
        logger.info("Pushing %s", ref)
        self._run("push", ref)

    def create_manifest_list(self, name: str, refs: list[str]) -> None:
        self._run("manifest", "create", "--amend", name, *refs)

    def push_manifest_list(self, name: str) -> None:
        logger.info("Pushing manifest list %s", name)
        self._run("manifest", "push", name)


__all__ = ["DockerCli", "parse_docker_timestamp"]
