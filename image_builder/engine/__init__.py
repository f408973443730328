"""External collaborators: container engine, source control and registry."""

from image_builder.engine.docker import DockerCli
from image_builder.engine.git import GitCli
from image_builder.engine.protocols import ImageEngine, RegistryClient, SourceControl
from image_builder.engine.registry import HttpRegistryClient

__all__ = [
    "DockerCli",
    "GitCli",
    "HttpRegistryClient",
    "ImageEngine",
    "RegistryClient",
    "SourceControl",
]
