"""Dockerfile FROM-reference parsing.

Each Dockerfile is reduced to the ordered list of images its stages are
built FROM. References to earlier stages by alias are not images and are
dropped, ``--platform=`` flags are ignored and ``$ARG`` / ``${ARG}``
references are substituted from the platform's build args, falling back to
the defaults of global ``ARG`` instructions.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from image_builder.errors import DockerfileError

logger = logging.getLogger(__name__)

SCRATCH = "scratch"

FROM_PATTERN = re.compile(
    r"^\s*FROM\s+(?:--platform=\S+\s+)?(?P<image>\S+)(?:\s+AS\s+(?P<stage>\S+))?",
    re.IGNORECASE,
)
ARG_PATTERN = re.compile(
    r"^\s*ARG\s+(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?:=(?P<default>\S*))?",
    re.IGNORECASE,
)
ARG_REFERENCE_PATTERN = re.compile(
    r"\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))"
)


@dataclass
class DockerfileInfo:
    """FROM references of one Dockerfile.

    Attributes:
        path: Path of the Dockerfile that was parsed.
        from_images: Image references in stage order, stage aliases
            excluded and build args substituted.
    """

    path: Path
    from_images: list[str] = field(default_factory=list)

    @property
    def final_stage_from_image(self) -> str | None:
        """Image the final stage is built FROM, or None for ``scratch``."""
        image = self.from_images[-1]
        if is_scratch(image):
            return None
        return image

    @property
    def external_candidates(self) -> list[str]:
        """Distinct non-scratch references, in order."""
        seen: list[str] = []
        for image in self.from_images:
            if not is_scratch(image) and image not in seen:
                seen.append(image)
        return seen


def is_scratch(image: str | None) -> bool:
    """Whether a FROM reference is the empty ``scratch`` image."""
    return image is not None and image.lower() == SCRATCH


def _logical_lines(text: str) -> list[str]:
    """Join line continuations and drop comments."""
    lines: list[str] = []
    current = ""
    for raw in text.splitlines():
        stripped = raw.strip()
        if not current and stripped.startswith("#"):
            continue
        if stripped.endswith("\\"):
            current += stripped[:-1] + " "
            continue
        current += stripped
        if current:
            lines.append(current)
        current = ""
    if current:
        lines.append(current)
    return lines


def parse_from_images(
    text: str,
    build_args: dict[str, str] | None = None,
    source: str = "Dockerfile",
) -> list[str]:
    """Parse the FROM references of a Dockerfile's content.

    Args:
        text: Dockerfile content.
        build_args: Build args of the platform being built.
        source: Name used in error messages.

    Returns:
        Image references in stage order with stage aliases excluded.

    Raises:
        DockerfileError: If there is no FROM instruction or an ARG has no value.
    """
    build_args = build_args or {}
    global_args: dict[str, str | None] = {}
    stages: list[str] = []
    images: list[str] = []
    seen_from = False

    for line in _logical_lines(text):
        arg_match = ARG_PATTERN.match(line)
        if arg_match and not seen_from:
            global_args[arg_match.group("name")] = arg_match.group("default")
            continue

        from_match = FROM_PATTERN.match(line)
        if not from_match:
            continue
        seen_from = True

        image = _substitute_args(from_match.group("image"), build_args, global_args, source)
        # Only earlier stages can be referenced by alias
        if image not in stages:
            images.append(image)
        if from_match.group("stage"):
            stages.append(from_match.group("stage"))

    if not images:
        raise DockerfileError(f"Unable to find a FROM image in {source}")
    return images


def _substitute_args(
    value: str,
    build_args: dict[str, str],
    global_args: dict[str, str | None],
    source: str,
) -> str:
    def lookup(match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("bare")
        if name in build_args:
            return build_args[name]
        default = global_args.get(name)
        if default is None:
            raise DockerfileError(
                f"A value was not found for the ARG '{match.group(0)}' in '{source}'"
            )
        return default

    return ARG_REFERENCE_PATTERN.sub(lookup, value)


def resolve_dockerfile_path(base_dir: Path, dockerfile: str) -> Path:
    """Resolve a manifest Dockerfile entry (file or directory) to a file path."""
    path = base_dir / dockerfile
    if path.is_dir():
        path = path / "Dockerfile"
    return path


def read_dockerfile(path: Path, build_args: dict[str, str] | None = None) -> DockerfileInfo:
    """Read and parse a Dockerfile.

    Raises:
        DockerfileError: If the file does not exist or cannot be parsed.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise DockerfileError(f"Dockerfile not found: {path}") from None
    except OSError as e:
        raise DockerfileError(f"Unable to read Dockerfile {path}: {e}") from e
    images = parse_from_images(text, build_args, str(path))
    logger.debug("Parsed %s: FROM %s", path, ", ".join(images))
    return DockerfileInfo(path=path, from_images=images)


__all__ = [
    "SCRATCH",
    "DockerfileInfo",
    "is_scratch",
    "parse_from_images",
    "read_dockerfile",
    "resolve_dockerfile_path",
]
