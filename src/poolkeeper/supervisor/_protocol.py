"""Protocol definitions for the supervisor system.

This module defines the interfaces that decouple worker lifecycles from the
external tools they drive:
- DaemonLauncher: Starts and stops detached processes by PID file
- CommandRunner: Runs hook commands
- EventSink: Consumes worker lifecycle events
"""

from pathlib import Path  # noqa: TC003 - Used in runtime type annotations
from typing import Protocol, runtime_checkable

from poolkeeper.utils import CommandResult  # noqa: TC001

from ._models import ResolvedCommand, WorkerEvent  # noqa: TC001


@runtime_checkable
class DaemonLauncher(Protocol):
    """Protocol for the daemonization tool wrapper."""

    async def start(self, command: ResolvedCommand, pid_file: Path) -> CommandResult:
        """Launch ``command`` detached, writing its PID to ``pid_file``.

        Args:
            command: The resolved main command, with run-as credentials.
            pid_file: File that will receive the daemon's PID.

        Returns:
            Result whose exit code is the tool's, not the worker's.
        """
        ...

    async def stop(self, pid_file: Path, timeout: int) -> CommandResult:
        """Stop the process recorded in ``pid_file``.

        Args:
            pid_file: PID file of the process.
            timeout: Seconds to wait after SIGTERM before escalating.

        Returns:
            Result whose exit code is the tool's.
        """
        ...


@runtime_checkable
class CommandRunner(Protocol):
    """Protocol for running hook commands."""

    async def run(self, command: ResolvedCommand) -> CommandResult:
        """Run ``command`` to completion as its configured user.

        Args:
            command: Fully resolved command.

        Returns:
            Exit code and captured output.
        """
        ...


@runtime_checkable
class EventSink(Protocol):
    """Protocol for consuming worker lifecycle events."""

    async def write_event(self, event: WorkerEvent) -> None:
        """Record a worker lifecycle event.

        Args:
            event: The lifecycle event to record.
        """
        ...
