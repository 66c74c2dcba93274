"""Privileged command runner built on ``su``.

Hooks run through the privilege-switching tool so they execute as the
user named in their command definition. The tool is invoked from an
argument vector: the shell command it hands to the user's login shell is a
single argv element, so no outer quoting layer is involved.
"""

import shlex
from typing import TYPE_CHECKING, final

from poolkeeper.utils import CommandResult, create_null_logger, run_command

from ._models import ResolvedCommand  # noqa: TC001

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

DEFAULT_PRIVILEGE_TOOL: str = "su"


def build_shell_command(command: ResolvedCommand) -> str:
    """Build the shell command line the privilege tool executes.

    The argument string is a shell fragment by contract and is appended
    verbatim; only the executable is quoted.

    Args:
        command: Fully resolved command.

    Returns:
        The shell command line.
    """
    shell_command = shlex.quote(command.exec)
    if command.arguments:
        shell_command += f" {command.arguments}"
    return shell_command


@final
class PrivilegedRunner:
    """Runs hook commands as their configured user."""

    __slots__ = ("_executable", "_logger")

    def __init__(
        self,
        executable: str = DEFAULT_PRIVILEGE_TOOL,
        *,
        logger: "FilteringBoundLogger | None" = None,  # noqa: UP037
    ) -> None:
        """Initialize the runner.

        Args:
            executable: Name or path of the privilege-switching tool.
            logger: Logger for invocations and output.
        """
        self._executable = executable
        self._logger = logger or create_null_logger()

    def build_argv(self, command: ResolvedCommand) -> list[str]:
        """Build the privilege tool's argument vector for ``command``.

        Args:
            command: Fully resolved command.

        Returns:
            ``su [--login <user>] --command <shell-command>`` as a list.
        """
        argv = [self._executable]
        if command.user:
            argv += ["--login", command.user]
        argv += ["--command", build_shell_command(command)]
        return argv

    async def run(self, command: ResolvedCommand) -> CommandResult:
        """Run ``command`` and capture its output.

        Args:
            command: Fully resolved command.

        Returns:
            Exit code, stdout and stderr of the privilege tool.
        """
        return await run_command(self.build_argv(command), logger=self._logger)
