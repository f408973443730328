"""``git`` CLI implementation of source control queries."""

from __future__ import annotations

import logging
from pathlib import Path

from image_builder.engine.process import run_command
from image_builder.errors import ExternalCommandError

logger = logging.getLogger(__name__)


class GitCli:
    """Source control backed by the git executable.

    Args:
        executable: git CLI to invoke.
        timeout: Command timeout in seconds.
        use_full_hash: Report full 40 character SHAs instead of short ones.
    """

    def __init__(
        self, executable: str = "git", timeout: int | None = 60, use_full_hash: bool = True
    ) -> None:
        self.executable = executable
        self.timeout = timeout
        self.use_full_hash = use_full_hash

    def get_commit_sha(self, path: Path) -> str:
        """SHA of the last commit that changed ``path``.

        Raises:
            ExternalCommandError: If git fails or ``path`` has no history.
        """
        sha_format = "%H" if self.use_full_hash else "%h"
        cwd = path.parent if path.parent.is_dir() else None
        target = path.name if cwd is not None else str(path)
        output = run_command(
            [self.executable, "log", "-1", f"--format=format:{sha_format}", "--", target],
            cwd=cwd,
            timeout=self.timeout,
        ).strip()
        if not output:
            raise ExternalCommandError(f"No commit found for '{path}'")
        logger.debug("Commit of %s: %s", path, output)
        return output


__all__ = ["GitCli"]
