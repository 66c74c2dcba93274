"""Data models for the supervisor system.

This module defines the core data types for worker management:
- CommandTemplate / ResolvedCommand: Commands before and after substitution
- NamedReference / InlineCommand: How a process file refers to a command
- ProcessSpec: Immutable worker definition
- ProcessFile: A loaded process file with its named-command table
- WorkerState / WorkerEventType / WorkerEvent: Lifecycle tracking
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations
from types import MappingProxyType

from poolkeeper.exceptions import ConfigValidationError

DEFAULT_STOP_TIMEOUT: int = 10
"""Seconds a worker gets to exit after SIGTERM before it is killed."""

PID_MARKER: str = "{pid}"


class WorkerState(StrEnum):
    """Worker lifecycle states.

    - IDLE: Created, never started
    - STARTING: Running the before-start hook or launching the daemon
    - WAITING_FOR_PID: Daemon launched, polling for the PID file
    - RUNNING: PID known, worker considered alive
    - STOPPING: Stop sequence in progress
    - STOPPED: Stopped on request
    - CRASHED: Tracked PID disappeared, restart in progress
    - FAILED: PID file never appeared within the wait timeout
    """

    IDLE = "idle"
    STARTING = "starting"
    WAITING_FOR_PID = "waiting_for_pid"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    CRASHED = "crashed"
    FAILED = "failed"


class WorkerEventType(StrEnum):
    """Types of worker lifecycle events."""

    STARTING = "starting"
    LAUNCHED = "launched"
    RUNNING = "running"
    HOOK = "hook"
    STOPPING = "stopping"
    STOPPED = "stopped"
    CRASHED = "crashed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class WorkerEvent:
    """Immutable worker lifecycle event.

    Attributes:
        worker_name: Name of the worker that generated the event.
        event_type: Type of lifecycle event.
        timestamp: ISO 8601 formatted timestamp.
        pid: Process ID if known.
        message: Optional human-readable message.
    """

    worker_name: str
    event_type: WorkerEventType
    timestamp: str
    pid: int | None = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class CommandTemplate:
    """A command line as written in a process file.

    Attributes:
        exec: Executable path (or an http/https URL for hooks).
        arguments: Raw, un-split argument string.
        user: User to run as.
        group: Group to run as.
    """

    exec: str
    arguments: str = ""
    user: str | None = None
    group: str | None = None


@dataclass(frozen=True, slots=True)
class ResolvedCommand:
    """A command with load-time placeholders substituted.

    Only ``{pid}`` may remain; call :meth:`with_pid` once it is known.
    """

    exec: str
    arguments: str = ""
    user: str | None = None
    group: str | None = None

    def with_pid(self, pid: int) -> "ResolvedCommand":  # noqa: UP037
        """Return a copy with ``{pid}`` replaced by the given process ID."""
        value = str(pid)
        return ResolvedCommand(
            exec=self.exec.replace(PID_MARKER, value),
            arguments=self.arguments.replace(PID_MARKER, value),
            user=self.user,
            group=self.group,
        )


@dataclass(frozen=True, slots=True)
class NamedReference:
    """Reference to an entry of the process file's command table."""

    name: str


@dataclass(frozen=True, slots=True)
class InlineCommand:
    """A command defined in place rather than by name."""

    template: CommandTemplate


type CommandRef = NamedReference | InlineCommand


@dataclass(frozen=True, slots=True)
class ProcessSpec:
    """Immutable definition of one supervised worker.

    Attributes:
        name: Display name, ``<file-stem> #<n>``.
        address: Network address or ``unix:<path>`` socket the worker serves.
        command: Main command reference; None synthesizes an empty command.
        before_start: Hook run before the daemon is launched.
        after_start: Hook run once the worker PID is known.
        before_stop: Hook run before the daemon is stopped.
        after_stop: Hook run after the daemon is stopped.
        stop_timeout: Seconds to wait after SIGTERM before escalating; None
            uses the configured default.

    Raises:
        ConfigValidationError: If the address is empty.
    """

    name: str
    address: str
    command: CommandRef | None = None
    before_start: CommandRef | None = None
    after_start: CommandRef | None = None
    before_stop: CommandRef | None = None
    after_stop: CommandRef | None = None
    stop_timeout: int | None = None

    def __post_init__(self) -> None:
        if not self.address:
            msg = f"Address of worker '{self.name}' is empty"
            raise ConfigValidationError(
                msg,
                key="address",
                value=self.address,
                expected="non-empty address",
                source=self.name,
            )


@dataclass(frozen=True, slots=True)
class ProcessFile:
    """A loaded process file.

    Attributes:
        path: File the definitions were read from.
        specs: Valid worker definitions, in file order.
        commands: Named command table.
    """

    path: Path
    specs: tuple[ProcessSpec, ...] = ()
    commands: Mapping[str, CommandTemplate] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def template_for(self, ref: CommandRef | None) -> CommandTemplate | None:
        """Return the command template a reference points at.

        Args:
            ref: The reference to look up.

        Returns:
            The template, or None for an absent reference or an unknown name.
        """
        match ref:
            case None:
                return None
            case InlineCommand(template=template):
                return template
            case NamedReference(name=name):
                return self.commands.get(name)
