"""Worker lifecycle controller.

This module provides the ManagedWorker class that drives one worker through
its lifecycle: hooks, daemon launch, PID discovery, stop and crash
recovery.

Background work runs in tasks of the supervisor's task group. Each task is
bound to a cancel scope created before the task is scheduled, so a stop or
restart can cancel it at any moment, even before it first runs.
Cancellation is cooperative: a task stops at its next checkpoint, a hook
process is terminated by anyio, and the daemon launch is shielded so the
daemonization tool always runs to completion once spawned.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations
from typing import TYPE_CHECKING, final

import anyio
import anyio.abc
import anyio.lowlevel

from poolkeeper.exceptions import PidFileTimeoutError
from poolkeeper.utils import (
    create_null_logger,
    read_pid_file,
    remove_file,
    unix_socket_path,
)

from ._models import (
    DEFAULT_STOP_TIMEOUT,
    ResolvedCommand,
    WorkerEvent,
    WorkerEventType,
    WorkerState,
)
from ._protocol import CommandRunner, DaemonLauncher, EventSink  # noqa: TC001

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

DEFAULT_PID_POLL_INTERVAL: float = 0.25
DEFAULT_PID_WAIT_TIMEOUT: float = 60.0


def _get_timestamp() -> str:
    """Get current timestamp in ISO 8601 format."""
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True, slots=True)
class WorkerHooks:
    """Resolved hook commands of a worker. Absent hooks are skipped.

    Attributes:
        before_start: Run before the daemon is launched.
        after_start: Run once the PID is known, with ``{pid}`` substituted.
        before_stop: Run before the daemon is stopped, with ``{pid}``.
        after_stop: Run after the daemon is stopped, with ``{pid}``.
    """

    before_start: ResolvedCommand | None = None
    after_start: ResolvedCommand | None = None
    before_stop: ResolvedCommand | None = None
    after_stop: ResolvedCommand | None = None


@final
class ManagedWorker:
    """Manages the lifecycle of one supervised worker.

    The PID is 0 while the worker is not running or not yet known. Start,
    stop and restart are serialized by a per-worker lock; the PID, state and
    started flag are only written from the event loop.

    Attributes:
        name: Display name of the worker.
        address: Address the worker serves.
        pid_file: PID file written by the daemonization tool.
        command: Resolved main command.
        hooks: Resolved hook commands.
        stop_timeout: Seconds to wait after SIGTERM when stopping.
    """

    __slots__ = (
        "_after_start_scope",
        "_daemon",
        "_launch_lock",
        "_lock",
        "_logger",
        "_pid",
        "_pid_poll_interval",
        "_pid_wait_timeout",
        "_runner",
        "_sink",
        "_start_scope",
        "_started",
        "_state",
        "address",
        "command",
        "hooks",
        "name",
        "pid_file",
        "stop_timeout",
    )

    def __init__(  # noqa: PLR0913
        self,
        *,
        name: str,
        address: str,
        pid_file: Path,
        command: ResolvedCommand,
        daemon: DaemonLauncher,
        runner: CommandRunner,
        sink: EventSink,
        hooks: WorkerHooks | None = None,
        stop_timeout: int = DEFAULT_STOP_TIMEOUT,
        pid_poll_interval: float = DEFAULT_PID_POLL_INTERVAL,
        pid_wait_timeout: float = DEFAULT_PID_WAIT_TIMEOUT,
        logger: "FilteringBoundLogger | None" = None,  # noqa: UP037
    ) -> None:
        """Initialize the worker.

        Args:
            name: Display name of the worker.
            address: Address the worker serves.
            pid_file: PID file written by the daemonization tool.
            command: Resolved main command.
            daemon: Launcher used to start and stop the daemon.
            runner: Runner used for hooks.
            sink: Sink for lifecycle events.
            hooks: Resolved hook commands.
            stop_timeout: Seconds to wait after SIGTERM when stopping.
            pid_poll_interval: Seconds between PID file checks.
            pid_wait_timeout: Seconds to wait for the PID file before failing.
            logger: Logger for lifecycle details.
        """
        self.name = name
        self.address = address
        self.pid_file = pid_file
        self.command = command
        self.hooks = hooks or WorkerHooks()
        self.stop_timeout = stop_timeout
        self._daemon = daemon
        self._runner = runner
        self._sink = sink
        self._pid_poll_interval = pid_poll_interval
        self._pid_wait_timeout = pid_wait_timeout
        self._logger = logger or create_null_logger()
        self._pid = 0
        self._state = WorkerState.IDLE
        self._started = anyio.Event()
        self._start_scope: anyio.CancelScope | None = None
        self._after_start_scope: anyio.CancelScope | None = None
        self._lock = anyio.Lock()
        self._launch_lock = anyio.Lock()

    @property
    def pid(self) -> int:
        """Return the tracked process ID, 0 if not running or unknown."""
        return self._pid

    @property
    def state(self) -> WorkerState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def started(self) -> bool:
        """Return True once the current start sequence has found the PID."""
        return self._started.is_set()

    @property
    def socket_path(self) -> Path | None:
        """Return the unix socket file for ``unix:`` addresses."""
        return unix_socket_path(self.address)

    @property
    def is_starting(self) -> bool:
        """Return True while a start sequence task is active."""
        return self._start_scope is not None

    async def emit_event(
        self,
        event_type: WorkerEventType,
        *,
        message: str | None = None,
    ) -> None:
        """Emit a lifecycle event to the event sink.

        Args:
            event_type: Type of event to emit.
            message: Optional message for the event.
        """
        event = WorkerEvent(
            worker_name=self.name,
            event_type=event_type,
            timestamp=_get_timestamp(),
            pid=self._pid or None,
            message=message,
        )
        try:
            await self._sink.write_event(event)
        except Exception:  # noqa: BLE001
            self._logger.exception(f"Event sink failed for {self.name}")

    async def start(self, task_group: anyio.abc.TaskGroup) -> bool:
        """Schedule the start sequence in ``task_group``.

        Returns immediately; the sequence runs concurrently with other
        workers. The after-start hook, if any, gets its own task that waits
        for the PID.

        Args:
            task_group: Task group the background tasks run in.

        Returns:
            False if a start sequence was already active and nothing was
            scheduled.
        """
        async with self._lock:
            return self._spawn(task_group)

    async def stop(self) -> None:
        """Stop the worker.

        Runs the before-stop hook, stops the daemon, removes the PID file
        and unix socket, runs the after-stop hook and cancels the background
        tasks. The runtime files are removed even if stopping the daemon
        failed, and the worker always ends STOPPED with its tasks cancelled.
        """
        async with self._lock:
            pid = self._pid
            self._state = WorkerState.STOPPING
            try:
                await self._stop_sequence(pid)
            finally:
                self.cancel_tasks()
                self._pid = 0
                self._started = anyio.Event()
                self._state = WorkerState.STOPPED

    async def _stop_sequence(self, pid: int) -> None:
        await self._run_hook("beforeStoppingCommand", self.hooks.before_stop, pid)

        await self.emit_event(
            WorkerEventType.STOPPING,
            message=f"Stopping {self.name}, PID #{pid}...",
        )
        try:
            # An in-flight launch finishes before its daemon is stopped
            async with self._launch_lock:
                result = await self._daemon.stop(self.pid_file, self.stop_timeout)
            if not result.succeeded:
                self._logger.warning(
                    f"Daemon tool could not stop {self.name}",
                    exit_code=result.exit_code,
                    error=result.error,
                )
        finally:
            self._remove_runtime_files()
        await self.emit_event(
            WorkerEventType.STOPPED,
            message=f"Stopped {self.name}, PID #{pid}.",
        )

        await self._run_hook("afterStoppingCommand", self.hooks.after_stop, pid)
    async def restart(self, task_group: anyio.abc.TaskGroup) -> bool:
        """Recover a worker whose process has disappeared.

        Stops the daemon by PID file (tolerating a process that is already
        gone), resets the PID, cancels the background tasks and schedules a
        new start sequence.

        Args:
            task_group: Task group the new background tasks run in.

        Returns:
            True if a new start sequence was scheduled, False if the worker
            had no tracked PID any more.
        """
        async with self._lock:
            dead_pid = self._pid
            if dead_pid == 0:
                return False

            self._state = WorkerState.CRASHED
            await self.emit_event(
                WorkerEventType.CRASHED,
                message=f"PID #{dead_pid} not found. Restarting '{self.name}'.",
            )

            async with self._launch_lock:
                _ = await self._daemon.stop(self.pid_file, self.stop_timeout)
            self._pid = 0
            self.cancel_tasks()
            return self._spawn(task_group)

    def cancel_tasks(self) -> None:
        """Cancel the start and after-start tasks if they are active."""
        if self._start_scope is not None:
            self._logger.info(f"Cancelling start task of {self.name}.")
            self._start_scope.cancel()
        if self._after_start_scope is not None:
            self._logger.info(f"Cancelling <afterStartingCommand> task of {self.name}.")
            self._after_start_scope.cancel()
        self._start_scope = None
        self._after_start_scope = None

    def _spawn(self, task_group: anyio.abc.TaskGroup) -> bool:
        if self._start_scope is not None:
            self._logger.debug(f"Start of {self.name} already in progress")
            return False

        self._started = anyio.Event()

        self._start_scope = anyio.CancelScope()
        task_group.start_soon(
            self._run_scoped,
            self._start_scope,
            self._start_sequence,
            name=f"{self.name} start",
        )

        if self.hooks.after_start is not None:
            self._after_start_scope = anyio.CancelScope()
            task_group.start_soon(
                self._run_scoped,
                self._after_start_scope,
                self._after_start_sequence,
                name=f"{self.name} after-start",
            )
        return True

    async def _run_scoped(
        self,
        scope: anyio.CancelScope,
        sequence: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            with scope:
                await sequence()
        except Exception:  # noqa: BLE001
            self._logger.exception(f"Lifecycle task of {self.name} failed")
            self._state = WorkerState.FAILED
        finally:
            if self._start_scope is scope:
                self._start_scope = None
            if self._after_start_scope is scope:
                self._after_start_scope = None

    async def _start_sequence(self) -> None:
        self._state = WorkerState.STARTING
        self._remove_runtime_files()

        await self._run_hook("beforeStartingCommand", self.hooks.before_start)

        await self.emit_event(
            WorkerEventType.STARTING, message=f"Starting {self.name}..."
        )
        with anyio.CancelScope(shield=True):
            async with self._launch_lock:
                result = await self._daemon.start(self.command, self.pid_file)
        await anyio.lowlevel.checkpoint()

        if result.succeeded:
            await self.emit_event(
                WorkerEventType.LAUNCHED, message=f"Started {self.name}."
            )
        else:
            self._logger.warning(
                f"Daemon tool could not launch {self.name}",
                exit_code=result.exit_code,
                error=result.error,
            )

        self._state = WorkerState.WAITING_FOR_PID
        self._logger.info(f"Waiting PID of {self.name}...")
        try:
            pid = await self._wait_for_pid()
        except PidFileTimeoutError as e:
            self._state = WorkerState.FAILED
            await self.emit_event(WorkerEventType.FAILED, message=str(e))
            return

        self._pid = pid
        self._state = WorkerState.RUNNING
        self._started.set()
        await self.emit_event(
            WorkerEventType.RUNNING,
            message=f"PID of worker {self.name} is #{pid}.",
        )

    async def _after_start_sequence(self) -> None:
        await self._started.wait()
        await self._run_hook("afterStartingCommand", self.hooks.after_start, self._pid)

    async def _wait_for_pid(self) -> int:
        with anyio.move_on_after(self._pid_wait_timeout):
            while True:
                pid = read_pid_file(self.pid_file)
                if pid is not None:
                    return pid
                await anyio.sleep(self._pid_poll_interval)

        msg = (
            f"PID file {self.pid_file} of {self.name} did not appear "
            f"within {self._pid_wait_timeout:g}s"
        )
        raise PidFileTimeoutError(
            msg,
            worker_name=self.name,
            pid_file=self.pid_file,
            timeout=self._pid_wait_timeout,
        )

    async def _run_hook(
        self,
        label: str,
        command: ResolvedCommand | None,
        pid: int | None = None,
    ) -> None:
        if command is None:
            return
        if pid is not None:
            command = command.with_pid(pid)

        self._logger.info(f"Execution <{label}> of {self.name}...")
        result = await self._runner.run(command)
        if not result.succeeded:
            self._logger.warning(
                f"<{label}> of {self.name} failed",
                exit_code=result.exit_code,
                error=result.error,
            )
        await self.emit_event(
            WorkerEventType.HOOK,
            message=f"Executed <{label}> of {self.name}.",
        )

    def _remove_runtime_files(self) -> None:
        paths = [self.pid_file]
        if self.socket_path is not None:
            paths.append(self.socket_path)
        for path in paths:
            try:
                _ = remove_file(path)
            except OSError as e:
                self._logger.error(f"Could not remove {path}", error=str(e))
