"""Main supervisor coordinating the managed worker set.

This module provides the Supervisor class that loads the enabled process
files, starts one ManagedWorker per worker definition, restarts workers
whose process disappeared, and maps OS signals to stop and reload.
"""

import signal
from collections.abc import Callable
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations
from types import TracebackType
from typing import TYPE_CHECKING, Protocol, Self, final

import anyio
import anyio.abc
import psutil

from poolkeeper.exceptions import ConfigError, SupervisorError
from poolkeeper.utils import pid_file_path

from ._daemon import DaemonTool
from ._models import (
    CommandRef,
    CommandTemplate,
    ProcessFile,
    ProcessSpec,
    ResolvedCommand,
)
from ._output import LoggingEventSink
from ._runner import PrivilegedRunner
from ._templates import resolve_command, rewrite_web_command
from ._worker import ManagedWorker, WorkerHooks

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from poolkeeper.config import Settings

    from ._protocol import CommandRunner, DaemonLauncher, EventSink

STOP_SIGNALS: tuple[signal.Signals, ...] = (
    signal.SIGINT,
    signal.SIGTERM,
    signal.SIGQUIT,
)
HANDLED_SIGNALS: tuple[signal.Signals, ...] = (*STOP_SIGNALS, signal.SIGHUP)


class ProcessFileLoader(Protocol):
    """Callable that loads one process file."""

    def __call__(
        self,
        path: Path,
        *,
        logger: "FilteringBoundLogger | None" = None,  # noqa: UP037
    ) -> ProcessFile:
        """Load ``path``, raising ConfigError if it cannot be loaded."""
        ...


@final
class Supervisor:
    """Coordinates the managed worker set.

    The supervisor is an async context manager owning the task group that
    every worker background task and the signal dispatcher run in. Loading,
    stopping, health checks and reloads are serialized by one lock.

    Example:
        >>> async with Supervisor(settings, logger=logger) as supervisor:
        ...     await supervisor.load_and_start()
    """

    __slots__ = (
        "_daemon",
        "_exit",
        "_loader",
        "_lock",
        "_logger",
        "_pid_exists",
        "_runner",
        "_settings",
        "_sink",
        "_task_group",
        "_workers",
    )

    def __init__(  # noqa: PLR0913
        self,
        settings: "Settings",  # noqa: UP037
        *,
        logger: "FilteringBoundLogger",  # noqa: UP037
        daemon: "DaemonLauncher | None" = None,  # noqa: UP037
        runner: "CommandRunner | None" = None,  # noqa: UP037
        sink: "EventSink | None" = None,  # noqa: UP037
        pid_exists: Callable[[int], bool] = psutil.pid_exists,
        loader: ProcessFileLoader | None = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            settings: Daemon settings.
            logger: Supervisor logger.
            daemon: Daemon launcher. Uses DaemonTool if None.
            runner: Hook runner. Uses PrivilegedRunner if None.
            sink: Lifecycle event sink. Uses LoggingEventSink if None.
            pid_exists: Liveness check for a process ID.
            loader: Process file loader. Uses load_process_file if None.
        """
        if loader is None:
            # Deferred import to avoid circular dependency
            from poolkeeper.config import load_process_file  # noqa: PLC0415

            loader = load_process_file

        self._settings = settings
        self._logger = logger
        self._daemon: DaemonLauncher = daemon or DaemonTool(
            settings.tools.daemon,
            kill_grace=settings.timing.kill_grace,
            logger=logger,
        )
        self._runner: CommandRunner = runner or PrivilegedRunner(
            settings.tools.privilege,
            logger=logger,
        )
        self._sink: EventSink = sink or LoggingEventSink(logger)
        self._pid_exists = pid_exists
        self._loader = loader
        self._workers: list[ManagedWorker] = []
        self._lock = anyio.Lock()
        self._exit = anyio.Event()
        self._task_group: anyio.abc.TaskGroup | None = None

    async def __aenter__(self) -> Self:
        """Open the task group the workers run in."""
        self._exit = anyio.Event()
        task_group = anyio.create_task_group()
        _ = await task_group.__aenter__()
        self._task_group = task_group
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        """Cancel every background task and close the task group."""
        task_group = self._require_task_group()
        task_group.cancel_scope.cancel()
        self._task_group = None
        return await task_group.__aexit__(exc_type, exc_val, exc_tb)

    @property
    def workers(self) -> tuple[ManagedWorker, ...]:
        """Return the managed workers in creation order."""
        return tuple(self._workers)

    @property
    def exit_requested(self) -> bool:
        """Return True once a stop signal has been handled."""
        return self._exit.is_set()

    def request_exit(self) -> None:
        """Make :meth:`run` return after the current iteration."""
        self._exit.set()

    def build_workers(self) -> list[ManagedWorker]:
        """Load the enabled process files and create their workers.

        Files are read in name order. A file that cannot be loaded is
        logged and skipped.

        Returns:
            One unstarted worker per valid worker definition.
        """
        enabled_dir = self._settings.paths.enabled_dir
        self._logger.info(f"Loading process files from {enabled_dir}")
        try:
            paths = sorted(path for path in enabled_dir.iterdir() if path.is_file())
        except OSError as e:
            self._logger.error(f"Could not read {enabled_dir}", error=str(e))
            return []

        workers: list[ManagedWorker] = []
        for path in paths:
            try:
                process_file = self._loader(path, logger=self._logger)
            except ConfigError as e:
                self._logger.error(f"Could not load {path}: {e}")
                continue
            workers.extend(
                self.create_worker(spec, process_file) for spec in process_file.specs
            )
        return workers

    async def load_and_start(self) -> int:
        """Build the worker set and start every worker.

        Returns:
            Number of workers started.

        Raises:
            SupervisorError: If the supervisor context is not entered.
        """
        async with self._lock:
            return await self._load_and_start()

    async def stop_all(self) -> None:
        """Stop every worker in creation order."""
        async with self._lock:
            await self._stop_all()

    async def reload(self) -> None:
        """Stop every worker, then load and start a fresh worker set."""
        async with self._lock:
            self._logger.info("Reloading process files")
            await self._stop_all()
            _ = await self._load_and_start()

    async def health_check_pass(self) -> int:
        """Restart every worker whose tracked process no longer exists.

        Workers without a known PID are skipped. Nothing happens once exit
        has been requested.

        Returns:
            Number of workers restarted.
        """
        async with self._lock:
            if self._exit.is_set():
                return 0
            task_group = self._require_task_group()

            restarted = 0
            for worker in self._workers:
                if worker.pid == 0 or self._pid_exists(worker.pid):
                    continue
                if await worker.restart(task_group):
                    restarted += 1
            return restarted

    async def handle_signal(self, signum: int) -> None:
        """Apply the action mapped to an OS signal.

        SIGINT, SIGTERM and SIGQUIT stop every worker and request exit.
        SIGHUP reloads. Other signals are ignored.

        Args:
            signum: The signal number received.
        """
        match signum:
            case signal.SIGINT | signal.SIGTERM | signal.SIGQUIT:
                self._logger.info(f"Received {signal.Signals(signum).name}, stopping")
                await self.stop_all()
                self.request_exit()
            case signal.SIGHUP:
                self._logger.info("Received SIGHUP")
                await self.reload()
            case _:
                self._logger.debug(f"Ignoring signal {signum}")

    async def run(self) -> int:
        """Run the supervisor until a stop signal is handled.

        Returns:
            The process exit code.
        """
        async with self:
            task_group = self._require_task_group()
            task_group.start_soon(self._dispatch_signals, name="signal dispatcher")

            _ = await self.load_and_start()

            interval = self._settings.timing.health_check_interval
            while not self._exit.is_set():
                with anyio.move_on_after(interval):
                    await self._exit.wait()
                if not self._exit.is_set():
                    _ = await self.health_check_pass()

        self._logger.info("Supervisor stopped")
        return 0

    async def _dispatch_signals(self) -> None:
        with anyio.open_signal_receiver(*HANDLED_SIGNALS) as signals:
            async for signum in signals:
                await self.handle_signal(signum)
                if self._exit.is_set():
                    break

    async def _load_and_start(self) -> int:
        task_group = self._require_task_group()
        self._workers = self.build_workers()
        for worker in self._workers:
            _ = await worker.start(task_group)
        self._logger.info(f"Started {len(self._workers)} workers")
        return len(self._workers)

    async def _stop_all(self) -> None:
        for worker in self._workers:
            try:
                await worker.stop()
            except Exception:  # noqa: BLE001
                self._logger.exception(f"Failed to stop {worker.name}")

    def _require_task_group(self) -> anyio.abc.TaskGroup:
        if self._task_group is None:
            msg = "Supervisor is not running"
            raise SupervisorError(msg)
        return self._task_group

    def create_worker(
        self, spec: ProcessSpec, process_file: ProcessFile
    ) -> ManagedWorker:
        """Create an unstarted worker for one worker definition.

        Hooks with a URL executable are rewritten to use the fetch tool,
        then every command goes through the load-time substitution pass.

        Args:
            spec: The worker definition.
            process_file: The file the definition came from.

        Returns:
            The new worker.
        """
        pid_file = pid_file_path(spec.address, self._settings.paths.run_dir)

        def resolve_hook(ref: CommandRef | None) -> ResolvedCommand | None:
            template = process_file.template_for(ref)
            if template is None:
                return None
            return resolve_command(
                rewrite_web_command(template, fetch_tool=self._settings.tools.fetch),
                address=spec.address,
                pid_file=str(pid_file),
            )

        main_template = process_file.template_for(spec.command) or CommandTemplate(
            exec=""
        )
        command = resolve_command(
            main_template,
            address=spec.address,
            pid_file=str(pid_file),
        ) or ResolvedCommand(exec="")

        timing = self._settings.timing
        return ManagedWorker(
            name=spec.name,
            address=spec.address,
            pid_file=pid_file,
            command=command,
            hooks=WorkerHooks(
                before_start=resolve_hook(spec.before_start),
                after_start=resolve_hook(spec.after_start),
                before_stop=resolve_hook(spec.before_stop),
                after_stop=resolve_hook(spec.after_stop),
            ),
            stop_timeout=(
                timing.stop_timeout if spec.stop_timeout is None else spec.stop_timeout
            ),
            daemon=self._daemon,
            runner=self._runner,
            sink=self._sink,
            pid_poll_interval=timing.pid_poll_interval,
            pid_wait_timeout=timing.pid_wait_timeout,
            logger=self._logger,
        )
