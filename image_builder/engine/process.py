"""Execution of external commands.

Commands run through ``subprocess.run`` with captured text output and an
optional timeout. Failures are reported as ``ExternalCommandError`` with the
command's exit code.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

from image_builder.errors import ExternalCommandError

logger = logging.getLogger(__name__)


def run_command(
    cmd: list[str],
    cwd: Path | None = None,
    timeout: int | None = None,
    dry_run: bool = False,
) -> str:
    """Run a command and return its combined stdout and stderr.

    Args:
        cmd: Command as a list of strings.
        cwd: Working directory.
        timeout: Timeout in seconds (None = no timeout).
        dry_run: Only log the command and return an empty string.

    Returns:
        Output of the command.

    Raises:
        ExternalCommandError: If the command cannot be started, times out
            or exits with a non-zero code.
    """
    cmd_str = shlex.join(cmd)
    if dry_run:
        logger.info("[dry run] %s", cmd_str)
        return ""

    logger.debug("Executing: %s", cmd_str)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
            check=True,
        )
    except subprocess.TimeoutExpired as e:
        raise ExternalCommandError(
            f"'{cmd_str}' timed out after {timeout}s",
            exit_code=-1,
            code="command_timeout",
        ) from e
    except subprocess.CalledProcessError as e:
        output = (e.stdout or "").strip()
        logger.error("'%s' failed with exit code %d:\n%s", cmd_str, e.returncode, output)
        raise ExternalCommandError(
            f"'{cmd_str}' failed with exit code {e.returncode}: {output}",
            exit_code=e.returncode,
        ) from e
    except OSError as e:
        raise ExternalCommandError(
            f"Failed to execute '{cmd_str}': {e}",
            code="execution_error",
        ) from e
    return result.stdout


__all__ = ["run_command"]
