"""Daemon launcher/terminator built on ``start-stop-daemon``.

The daemonization tool detaches the worker, switches to its credentials and
records its PID. Poolkeeper only builds the tool's argument vector and
reports the tool's own exit code.
"""

import shlex
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations
from typing import TYPE_CHECKING, final

from poolkeeper.utils import CommandResult, create_null_logger, run_command

from ._models import ResolvedCommand  # noqa: TC001

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

DEFAULT_DAEMON_TOOL: str = "start-stop-daemon"

DEFAULT_KILL_GRACE: int = 5
"""Seconds between SIGKILL and giving up, after the stop timeout expired."""


def _chuid(command: ResolvedCommand) -> str | None:
    if not command.user:
        return None
    if command.group:
        return f"{command.user}:{command.group}"
    return command.user


@final
class DaemonTool:
    """Starts and stops workers through the daemonization tool."""

    __slots__ = ("_executable", "_kill_grace", "_logger")

    def __init__(
        self,
        executable: str = DEFAULT_DAEMON_TOOL,
        *,
        kill_grace: int = DEFAULT_KILL_GRACE,
        logger: "FilteringBoundLogger | None" = None,  # noqa: UP037
    ) -> None:
        """Initialize the tool wrapper.

        Args:
            executable: Name or path of the daemonization tool.
            kill_grace: Seconds allowed after SIGKILL when stopping.
            logger: Logger for tool invocations and output.
        """
        self._executable = executable
        self._kill_grace = kill_grace
        self._logger = logger or create_null_logger()

    def start_argv(self, command: ResolvedCommand, pid_file: Path) -> list[str]:
        """Build the argument vector that launches ``command`` in the background.

        Args:
            command: Resolved main command.
            pid_file: File the tool writes the daemon PID to.

        Returns:
            The full argument vector, tool first.
        """
        argv = [self._executable, "--start"]

        chuid = _chuid(command)
        if chuid is not None:
            argv += ["--chuid", chuid]

        argv += [
            "--background",
            "--pidfile",
            str(pid_file),
            "--make-pidfile",
            "--verbose",
            "--exec",
            command.exec,
        ]

        arguments = self._split_arguments(command.arguments)
        if arguments:
            argv += ["--", *arguments]
        return argv

    def _split_arguments(self, arguments: str) -> list[str]:
        try:
            return shlex.split(arguments)
        except ValueError as e:
            self._logger.warning(
                "Unbalanced quoting in arguments, splitting on whitespace",
                arguments=arguments,
                error=str(e),
            )
            return arguments.split()

    def stop_argv(self, pid_file: Path, timeout: int) -> list[str]:
        """Build the argument vector that stops the process in ``pid_file``.

        The retry schedule sends SIGTERM, waits ``timeout`` seconds, then
        sends SIGKILL and waits ``kill_grace`` more seconds.

        Args:
            pid_file: PID file of the process.
            timeout: Seconds to wait after SIGTERM.

        Returns:
            The full argument vector, tool first.
        """
        return [
            self._executable,
            "--stop",
            "--verbose",
            "--pidfile",
            str(pid_file),
            f"--retry=TERM/{timeout}/KILL/{self._kill_grace}",
        ]

    async def start(self, command: ResolvedCommand, pid_file: Path) -> CommandResult:
        """Launch ``command`` as a detached daemon.

        Args:
            command: Resolved main command.
            pid_file: File the tool writes the daemon PID to.

        Returns:
            The tool's result.
        """
        return await run_command(
            self.start_argv(command, pid_file),
            logger=self._logger,
        )

    async def stop(self, pid_file: Path, timeout: int) -> CommandResult:
        """Stop the daemon recorded in ``pid_file``.

        A process that is already gone makes the tool exit non-zero; that
        is reported, not raised.

        Args:
            pid_file: PID file of the process.
            timeout: Seconds to wait after SIGTERM.

        Returns:
            The tool's result.
        """
        return await run_command(
            self.stop_argv(pid_file, timeout),
            logger=self._logger,
        )
