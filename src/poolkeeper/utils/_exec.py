"""Execution utilities for external tools.

This module runs external programs from an argument vector (never through
an intermediate shell), captures their output and reports the outcome as a
:class:`CommandResult`. Every invocation and every non-empty output stream
is written to the supervisor log.
"""

import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import anyio

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

# Maximum output size in bytes that is written to the log
MAX_OUTPUT_BYTES: int = 102400  # 100KB

_WHITESPACE: str = "\r\n\t "


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Result from running an external program.

    Exit code, stdout and stderr are kept apart so that "succeeded without
    output" and "failed" can be told apart.

    Attributes:
        exit_code: Process exit code, or None if the program never ran.
        stdout: Standard output, stripped of surrounding whitespace.
        stderr: Standard error, stripped of surrounding whitespace.
        error: Error message if the program could not be spawned.
        command_not_found: Whether the executable was not found.
    """

    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    command_not_found: bool = False

    @property
    def succeeded(self) -> bool:
        """Return True if the program ran and exited with code 0."""
        return self.exit_code == 0


def truncate_output(output: str, max_bytes: int = MAX_OUTPUT_BYTES) -> str:
    """Truncate output to max bytes, preserving valid UTF-8.

    Args:
        output: The string to truncate.
        max_bytes: Maximum size in bytes.

    Returns:
        Truncated string with indicator if truncated.
    """
    if not output:
        return output

    encoded = output.encode("utf-8")
    if len(encoded) <= max_bytes:
        return output

    # Use 'ignore' to skip incomplete multi-byte sequences at the end
    truncated = encoded[:max_bytes].decode("utf-8", errors="ignore")

    return truncated + "\n... [output truncated]"


async def run_command(
    argv: Sequence[str],
    *,
    logger: "FilteringBoundLogger",  # noqa: UP037
) -> CommandResult:
    """Run a program to completion and capture its output.

    Cancelling the calling task terminates the child process.

    Args:
        argv: Executable followed by its arguments.
        logger: Logger receiving the command line and its output.

    Returns:
        CommandResult describing the outcome. Spawn failures are reported
        in the result rather than raised.
    """
    logger.info(f"CMD ( {shlex.join(argv)} )")

    try:
        completed = await anyio.run_process(
            list(argv),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
        )
    except FileNotFoundError as e:
        logger.error(f"Command not found: {argv[0]}", error=str(e))
        return CommandResult(exit_code=None, error=str(e), command_not_found=True)
    except OSError as e:
        logger.error(f"Failed to run {argv[0]}", error=str(e))
        return CommandResult(exit_code=None, error=str(e))

    stdout = completed.stdout.decode("utf-8", errors="replace").strip(_WHITESPACE)
    stderr = completed.stderr.decode("utf-8", errors="replace").strip(_WHITESPACE)
    exit_code = completed.returncode

    if stdout:
        logger.info(f"code {exit_code}, StandardOutput: {truncate_output(stdout)}")
    if stderr:
        logger.info(f"code {exit_code}, StandardError: {truncate_output(stderr)}")

    return CommandResult(exit_code=exit_code, stdout=stdout, stderr=stderr)
