"""Supervisor package for keeping a pool of daemonized workers alive.

Key Components:
    - ProcessSpec / ProcessFile: Worker definitions loaded from process files
    - CommandTemplate / ResolvedCommand: Commands before and after substitution
    - WorkerState / WorkerEvent: Lifecycle tracking
    - DaemonTool: start-stop-daemon wrapper
    - PrivilegedRunner: su wrapper running hooks
    - LoggingEventSink: Lifecycle events written to the log
    - ManagedWorker: Single worker lifecycle controller
    - Supervisor: Worker set, health checks and signal dispatch

Example:
    >>> from poolkeeper.supervisor import Supervisor
    >>> supervisor = Supervisor(settings, logger=logger)
    >>> exit_code = await supervisor.run()  # Blocks until SIGTERM
"""

from ._daemon import DEFAULT_DAEMON_TOOL, DEFAULT_KILL_GRACE, DaemonTool
from ._models import (
    DEFAULT_STOP_TIMEOUT,
    PID_MARKER,
    CommandRef,
    CommandTemplate,
    InlineCommand,
    NamedReference,
    ProcessFile,
    ProcessSpec,
    ResolvedCommand,
    WorkerEvent,
    WorkerEventType,
    WorkerState,
)
from ._output import LoggingEventSink
from ._protocol import CommandRunner, DaemonLauncher, EventSink
from ._runner import DEFAULT_PRIVILEGE_TOOL, PrivilegedRunner, build_shell_command
from ._supervisor import HANDLED_SIGNALS, STOP_SIGNALS, ProcessFileLoader, Supervisor
from ._templates import (
    DEFAULT_FETCH_TOOL,
    FETCH_ARGUMENTS,
    TemplateContext,
    is_web_command,
    resolve_command,
    rewrite_web_command,
    substitute,
)
from ._worker import (
    DEFAULT_PID_POLL_INTERVAL,
    DEFAULT_PID_WAIT_TIMEOUT,
    ManagedWorker,
    WorkerHooks,
)

__all__ = [
    "DEFAULT_DAEMON_TOOL",
    "DEFAULT_FETCH_TOOL",
    "DEFAULT_KILL_GRACE",
    "DEFAULT_PID_POLL_INTERVAL",
    "DEFAULT_PID_WAIT_TIMEOUT",
    "DEFAULT_PRIVILEGE_TOOL",
    "DEFAULT_STOP_TIMEOUT",
    "FETCH_ARGUMENTS",
    "HANDLED_SIGNALS",
    "PID_MARKER",
    "STOP_SIGNALS",
    "CommandRef",
    "CommandRunner",
    "CommandTemplate",
    "DaemonLauncher",
    "DaemonTool",
    "EventSink",
    "InlineCommand",
    "LoggingEventSink",
    "ManagedWorker",
    "NamedReference",
    "PrivilegedRunner",
    "ProcessFile",
    "ProcessFileLoader",
    "ProcessSpec",
    "ResolvedCommand",
    "Supervisor",
    "TemplateContext",
    "WorkerEvent",
    "WorkerEventType",
    "WorkerHooks",
    "WorkerState",
    "build_shell_command",
    "is_web_command",
    "resolve_command",
    "rewrite_web_command",
    "substitute",
]
