"""Manifest variable substitution.

Values in the manifest may reference variables with the ``$(name)``
syntax. Variables are declared in the manifest (and its includes) and can
be overridden from the command line or environment.
"""

from __future__ import annotations

import re

from image_builder.errors import ManifestError

VARIABLE_PATTERN = re.compile(r"\$\((?P<name>[\w:.\-]+)\)")

# Bound on nested variable references
MAX_SUBSTITUTION_DEPTH = 10


class VariableHelper:
    """Substitutes ``$(name)`` references with variable values."""

    def __init__(
        self,
        variables: dict[str, str] | None = None,
        overrides: dict[str, str] | None = None,
    ) -> None:
        self.variables: dict[str, str] = dict(variables or {})
        if overrides:
            self.variables.update(overrides)

    def substitute(self, value: str) -> str:
        """Replace every variable reference in ``value``.

        Raises:
            ManifestError: If a referenced variable is not defined or the
                references are nested too deeply.
        """
        for _ in range(MAX_SUBSTITUTION_DEPTH):
            if VARIABLE_PATTERN.search(value) is None:
                return value
            value = VARIABLE_PATTERN.sub(self._lookup, value)
        raise ManifestError(f"Variable references nested too deeply in '{value}'")

    def substitute_optional(self, value: str | None) -> str | None:
        """Like :meth:`substitute` but passes None through."""
        if value is None:
            return None
        return self.substitute(value)

    def _lookup(self, match: re.Match[str]) -> str:
        name = match.group("name")
        try:
            return self.variables[name]
        except KeyError:
            raise ManifestError(f"Variable '{name}' is not defined") from None


def parse_variable_overrides(pairs: list[str] | None) -> dict[str, str]:
    """Parse ``name=value`` strings into a dictionary.

    Raises:
        ManifestError: If a pair has no '='.
    """
    overrides: dict[str, str] = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ManifestError(f"Variable override must be 'name=value', got '{pair}'")
        overrides[name.strip()] = value
    return overrides


__all__ = ["VARIABLE_PATTERN", "VariableHelper", "parse_variable_overrides"]
