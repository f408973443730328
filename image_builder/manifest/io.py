"""Manifest loading.

This module loads manifest files (JSON or YAML, selected by extension),
merges their includes and substitutes ``$(name)`` variables so the graph
only ever sees fully resolved values.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from image_builder.errors import ManifestError
from image_builder.manifest.schema import (
    ImageSchema,
    ManifestSchema,
    PlatformSchema,
    RepoSchema,
    TagSchema,
)
from image_builder.manifest.variables import VariableHelper

logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the document is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def load_manifest_data(path: Path) -> dict[str, Any]:
    """Load the raw contents of a manifest file.

    File format is determined by extension (.yaml, .yml for YAML,
    .json for JSON).

    Raises:
        ManifestError: If the file is missing, unreadable or malformed.
    """
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            return load_yaml(path)
        elif suffix == ".json":
            return load_json(path)
    except FileNotFoundError:
        raise ManifestError(f"Manifest file not found: {path}") from None
    except (yaml.YAMLError, json.JSONDecodeError, ValueError) as e:
        raise ManifestError(f"Unable to parse manifest '{path}': {e}") from e
    raise ManifestError(
        f"Unsupported manifest extension '{suffix}'. Use .yaml, .yml, or .json"
    )


def parse_manifest_data(data: dict[str, Any], source: str = "<manifest>") -> ManifestSchema:
    """Validate manifest data against the schema.

    Raises:
        ManifestError: If the data does not match the schema.
    """
    try:
        return ManifestSchema.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest '{source}': {e}") from e


def _resolve_include(base_dir: Path, include: str) -> Path:
    include_path = Path(include)
    if include_path.is_absolute():
        raise ManifestError(f"Include '{include}' must be a relative path")
    resolved = (base_dir / include_path).resolve()
    if not resolved.is_relative_to(base_dir.resolve()):
        raise ManifestError(f"Include '{include}' points outside the manifest directory")
    return resolved


def merge_includes(manifest: ManifestSchema, base_dir: Path) -> ManifestSchema:
    """Fold included manifest files into ``manifest``.

    Repos of included files are appended in include order and their
    variables are added to the manifest's variables.

    Raises:
        ManifestError: If an include is invalid, itself has includes, or
            defines a variable that is already defined.
    """
    if not manifest.includes:
        return manifest

    variables = dict(manifest.variables or {})
    repos = list(manifest.repos)
    for include in manifest.includes:
        include_path = _resolve_include(base_dir, include)
        logger.debug("Loading manifest include %s", include_path)
        included = parse_manifest_data(load_manifest_data(include_path), str(include_path))
        if included.includes:
            raise ManifestError(f"Include '{include}' must not declare includes itself")
        for name, value in (included.variables or {}).items():
            if name in variables:
                raise ManifestError(
                    f"Variable '{name}' is defined in multiple manifest files"
                )
            variables[name] = value
        repos.extend(included.repos)

    return manifest.model_copy(
        update={"includes": None, "variables": variables or None, "repos": repos}
    )


def _substitute_tags(
    tags: dict[str, TagSchema] | None, helper: VariableHelper
) -> dict[str, TagSchema] | None:
    if tags is None:
        return None
    result: dict[str, TagSchema] = {}
    for name, tag in tags.items():
        if tag.syndication is not None:
            syndication = tag.syndication.model_copy(
                update={
                    "repo": helper.substitute(tag.syndication.repo),
                    "destination_tags": [
                        helper.substitute(t) for t in tag.syndication.destination_tags
                    ]
                    if tag.syndication.destination_tags is not None
                    else None,
                }
            )
            tag = tag.model_copy(update={"syndication": syndication})
        result[helper.substitute(name)] = tag
    return result


def _substitute_platform(platform: PlatformSchema, helper: VariableHelper) -> PlatformSchema:
    build_args = None
    if platform.build_args is not None:
        build_args = {k: helper.substitute(v) for k, v in platform.build_args.items()}
    return platform.model_copy(
        update={
            "dockerfile": helper.substitute(platform.dockerfile),
            "os_version": helper.substitute(platform.os_version),
            "build_args": build_args,
            "tags": _substitute_tags(platform.tags, helper),
        }
    )


def _substitute_image(image: ImageSchema, helper: VariableHelper) -> ImageSchema:
    return image.model_copy(
        update={
            "product_version": helper.substitute_optional(image.product_version),
            "shared_tags": _substitute_tags(image.shared_tags, helper),
            "platforms": [_substitute_platform(p, helper) for p in image.platforms],
        }
    )


def apply_variables(
    manifest: ManifestSchema, overrides: dict[str, str] | None = None
) -> ManifestSchema:
    """Substitute variable references throughout the manifest.

    Substitution covers the registry, Dockerfile paths, OS versions, tag
    names, build-arg values, product versions and syndication targets.

    Raises:
        ManifestError: If an undefined variable is referenced.
    """
    helper = VariableHelper(manifest.variables, overrides)
    repos: list[RepoSchema] = []
    for repo in manifest.repos:
        repos.append(
            repo.model_copy(
                update={
                    "name": helper.substitute(repo.name),
                    "images": [_substitute_image(i, helper) for i in repo.images],
                }
            )
        )
    return manifest.model_copy(
        update={
            "registry": helper.substitute_optional(manifest.registry),
            "repos": repos,
            "variables": helper.variables or None,
        }
    )


def load_manifest(
    path: Path, variable_overrides: dict[str, str] | None = None
) -> ManifestSchema:
    """Load, validate and fully resolve a manifest file.

    Args:
        path: Path to the manifest file.
        variable_overrides: Values taking precedence over the manifest's
            own variables.

    Returns:
        ManifestSchema with includes merged and variables substituted.

    Raises:
        ManifestError: If the manifest cannot be loaded or resolved.
    """
    logger.debug("Loading manifest %s", path)
    manifest = parse_manifest_data(load_manifest_data(path), str(path))
    manifest = merge_includes(manifest, path.parent)
    return apply_variables(manifest, variable_overrides)


__all__ = [
    "apply_variables",
    "load_json",
    "load_manifest",
    "load_manifest_data",
    "load_yaml",
    "merge_includes",
    "parse_manifest_data",
]
