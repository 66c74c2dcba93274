"""Fakes for the external tools the supervisor drives."""

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import anyio
import pytest

from poolkeeper.supervisor import (
    ManagedWorker,
    ResolvedCommand,
    WorkerEvent,
    WorkerHooks,
)
from poolkeeper.utils import CommandResult, create_null_logger


class FakeDaemon:
    """Daemon launcher that writes PID files instead of spawning processes."""

    def __init__(
        self,
        calls: list[str],
        *,
        write_pid: bool = True,
        start_exit_code: int = 0,
        stop_exit_code: int = 0,
        first_pid: int = 1000,
    ) -> None:
        self.calls = calls
        self.write_pid = write_pid
        self.start_exit_code = start_exit_code
        self.stop_exit_code = stop_exit_code
        self.started: list[tuple[ResolvedCommand, Path]] = []
        self.stopped: list[tuple[Path, int]] = []
        self.stop_errors: dict[Path, Exception] = {}
        self._next_pid = first_pid

    async def start(self, command: ResolvedCommand, pid_file: Path) -> CommandResult:
        self.calls.append("start")
        self.started.append((command, pid_file))
        if self.write_pid:
            pid_file.write_text(f"{self._next_pid}\n")
            self._next_pid += 1
        return CommandResult(exit_code=self.start_exit_code)

    async def stop(self, pid_file: Path, timeout: int) -> CommandResult:
        self.calls.append("stop")
        self.stopped.append((pid_file, timeout))
        error = self.stop_errors.get(pid_file)
        if error is not None:
            raise error
        return CommandResult(exit_code=self.stop_exit_code)


class FakeRunner:
    """Hook runner recording every command it is asked to run."""

    def __init__(self, calls: list[str], *, exit_code: int = 0) -> None:
        self.calls = calls
        self.exit_code = exit_code
        self.commands: list[ResolvedCommand] = []

    async def run(self, command: ResolvedCommand) -> CommandResult:
        self.calls.append(f"hook:{command.exec} {command.arguments}".strip())
        self.commands.append(command)
        return CommandResult(exit_code=self.exit_code)


class RecordingSink:
    """Event sink keeping every event in memory."""

    def __init__(self) -> None:
        self.events: list[WorkerEvent] = []

    async def write_event(self, event: WorkerEvent) -> None:
        self.events.append(event)


@pytest.fixture
def calls() -> list[str]:
    return []


@pytest.fixture
def daemon(calls: list[str]) -> FakeDaemon:
    return FakeDaemon(calls)


@pytest.fixture
def runner(calls: list[str]) -> FakeRunner:
    return FakeRunner(calls)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_worker(
    tmp_path: Path,
    daemon: FakeDaemon,
    runner: FakeRunner,
    sink: RecordingSink,
) -> Callable[..., ManagedWorker]:
    """Return a factory for workers wired to the fakes.

    The default worker serves ``unix:<tmp_path>/a.socket`` and runs
    ``echo hello``; keyword arguments override constructor arguments.
    """

    def _make(**overrides: Any) -> ManagedWorker:
        kwargs: dict[str, Any] = {
            "name": "app #1",
            "address": f"unix:{tmp_path / 'a.socket'}",
            "pid_file": tmp_path / "a.socket.pid",
            "command": ResolvedCommand(exec="echo", arguments="hello"),
            "hooks": WorkerHooks(),
            "daemon": daemon,
            "runner": runner,
            "sink": sink,
            "pid_poll_interval": 0.01,
            "pid_wait_timeout": 1.0,
            "logger": create_null_logger(),
        }
        kwargs.update(overrides)
        return ManagedWorker(**kwargs)

    return _make


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Return a helper that polls a predicate with a deadline."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        with anyio.fail_after(timeout):
            while not predicate():
                await anyio.sleep(0.01)

    return _wait
