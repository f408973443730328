"""Error taxonomy for image_builder.

Every error carries a machine readable ``code`` so callers (the CLI, CI
scripts) can distinguish configuration problems from consistency problems
and from failures of external collaborators.
"""


class ImageBuilderError(Exception):
    """Base error for image_builder operations."""

    def __init__(self, message: str, code: str = "image_builder_error") -> None:
        super().__init__(message)
        self.code = code


class ManifestError(ImageBuilderError):
    """Raised when the manifest is missing or invalid."""

    def __init__(self, message: str, code: str = "invalid_manifest") -> None:
        super().__init__(message, code)


class DockerfileError(ImageBuilderError):
    """Raised when a Dockerfile cannot be read or its FROM lines resolved."""

    def __init__(self, message: str, code: str = "invalid_dockerfile") -> None:
        super().__init__(message, code)


class LedgerError(ImageBuilderError):
    """Raised when a ledger file is malformed or cannot be bound to a manifest."""

    def __init__(self, message: str, code: str = "invalid_ledger") -> None:
        super().__init__(message, code)


class ConsistencyError(ImageBuilderError):
    """Raised when the run's state contradicts its configuration.

    Examples are a build that pulled an image although all pulls were
    supposed to happen up front, or a merge whose input folder is empty.
    """

    def __init__(self, message: str, code: str = "consistency_error") -> None:
        super().__init__(message, code)


class ExternalCommandError(ImageBuilderError):
    """Raised when an external command (docker, git) fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "external_command_failed",
    ) -> None:
        super().__init__(message, code)
        self.exit_code = exit_code


class RegistryError(ImageBuilderError):
    """Raised when a registry query fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str = "registry_error",
    ) -> None:
        super().__init__(message, code)
        self.status_code = status_code


__all__ = [
    "ConsistencyError",
    "DockerfileError",
    "ExternalCommandError",
    "ImageBuilderError",
    "LedgerError",
    "ManifestError",
    "RegistryError",
]
