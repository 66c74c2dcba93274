"""Tests for poolkeeper.supervisor._supervisor module."""

import os
import signal
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import anyio
import pytest

from poolkeeper.config import Settings
from poolkeeper.exceptions import SupervisorError
from poolkeeper.supervisor import ResolvedCommand, Supervisor, WorkerState
from poolkeeper.utils import create_null_logger

WaitUntil = Callable[..., Awaitable[None]]

TWO_WORKERS = """
[[commands]]
name = "php"
exec = "/usr/bin/php-cgi"
arguments = "-b {socket}"
user = "www-data"
group = "www-data"

[[workers]]
address = "unix:{run_dir}/a.socket"
command = "php"

[[workers]]
address = "127.0.0.1:9000"
command = "php"
stoppingTimeout = 20
"""


def _worker_toml(address: str, command: str) -> str:
    return f'[[workers]]\naddress = "{address}"\ncommand = "{command}"\n'


@pytest.fixture
def settings(poolkeeper_dirs: dict[str, Path]) -> Settings:
    return Settings.from_dict(
        {
            "paths": {
                "available_dir": poolkeeper_dirs["available_dir"],
                "enabled_dir": poolkeeper_dirs["enabled_dir"],
                "run_dir": poolkeeper_dirs["run_dir"],
            },
            "timing": {
                "health_check_interval": 0.05,
                "pid_poll_interval": 0.01,
                "pid_wait_timeout": 1.0,
                "stop_timeout": 7,
            },
            "logging": {"echo": False},
        }
    )


@pytest.fixture
def alive() -> set[int]:
    return set()


@pytest.fixture
def supervisor(
    settings: Settings, daemon: Any, runner: Any, sink: Any, alive: set[int]
) -> Supervisor:
    return Supervisor(
        settings,
        logger=create_null_logger(),
        daemon=daemon,
        runner=runner,
        sink=sink,
        pid_exists=lambda pid: pid in alive,
    )


@pytest.fixture
def write_process_file(
    poolkeeper_dirs: dict[str, Path],
) -> Callable[[str, str], Path]:
    def _write(name: str, content: str) -> Path:
        path = poolkeeper_dirs["enabled_dir"] / name
        run_dir = str(poolkeeper_dirs["run_dir"])
        _ = path.write_text(content.replace("{run_dir}", run_dir))
        return path

    return _write


def _all_running(supervisor: Supervisor) -> Callable[[], bool]:
    return lambda: all(worker.started for worker in supervisor.workers)


class TestBuildWorkers:
    def test_creates_one_worker_per_definition(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        poolkeeper_dirs: dict[str, Path],
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)

        workers = supervisor.build_workers()

        assert [worker.name for worker in workers] == ["app #1", "app #2"]
        first = workers[0]
        socket_address = f"unix:{poolkeeper_dirs['run_dir']}/a.socket"
        assert first.pid_file == poolkeeper_dirs["run_dir"] / "a.socket.pid"
        assert first.command == ResolvedCommand(
            exec="/usr/bin/php-cgi",
            arguments=f"-b {socket_address}",
            user="www-data",
            group="www-data",
        )
        assert workers[1].pid_file.parent == poolkeeper_dirs["run_dir"]
        assert workers[1].pid_file.suffix == ".pid"

    def test_stop_timeout_defaults_to_settings(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)

        workers = supervisor.build_workers()

        assert [worker.stop_timeout for worker in workers] == [7, 20]

    def test_reads_files_in_name_order(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
    ) -> None:
        write_process_file("zeta.toml", _worker_toml("127.0.0.1:1", "z"))
        write_process_file("alpha.toml", _worker_toml("127.0.0.1:2", "a"))

        workers = supervisor.build_workers()

        assert [worker.name for worker in workers] == ["alpha #1", "zeta #1"]

    def test_empty_address_never_produces_worker(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
    ) -> None:
        write_process_file(
            "app.toml",
            _worker_toml("", "x")
            + _worker_toml("127.0.0.1:9000", "y"),
        )

        workers = supervisor.build_workers()

        assert [worker.address for worker in workers] == ["127.0.0.1:9000"]
        assert workers[0].name == "app #1"

    def test_skips_unloadable_file(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
    ) -> None:
        write_process_file("broken.toml", "[[workers]\naddress = ")
        write_process_file("good.toml", _worker_toml("127.0.0.1:1", "x"))

        workers = supervisor.build_workers()

        assert [worker.name for worker in workers] == ["good #1"]

    def test_skips_directories(
        self,
        supervisor: Supervisor,
        poolkeeper_dirs: dict[str, Path],
    ) -> None:
        (poolkeeper_dirs["enabled_dir"] / "nested.toml").mkdir()

        assert supervisor.build_workers() == []

    def test_missing_enabled_dir_yields_no_workers(
        self,
        supervisor: Supervisor,
        poolkeeper_dirs: dict[str, Path],
    ) -> None:
        poolkeeper_dirs["enabled_dir"].rmdir()

        assert supervisor.build_workers() == []

    def test_rewrites_url_hooks_to_fetch_tool(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
    ) -> None:
        write_process_file(
            "app.toml",
            "[[workers]]\n"
            'address = "127.0.0.1:9000"\n'
            'command = "/usr/bin/app"\n'
            'afterStartingCommand = "https://example.com/health"\n',
        )

        (worker,) = supervisor.build_workers()

        assert worker.hooks.after_start == ResolvedCommand(
            exec="wget",
            arguments="-q -S -O- https://example.com/health",
        )
        assert worker.command == ResolvedCommand(exec="/usr/bin/app")

    def test_missing_command_synthesizes_empty_command(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
    ) -> None:
        write_process_file("app.toml", '[[workers]]\naddress = "127.0.0.1:9000"\n')

        (worker,) = supervisor.build_workers()

        assert worker.command == ResolvedCommand(exec="")


@pytest.mark.anyio
class TestLoadAndStart:
    async def test_starts_every_worker(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)

        async with supervisor:
            assert await supervisor.load_and_start() == 2
            await wait_until(_all_running(supervisor))

            assert sorted(worker.pid for worker in supervisor.workers) == [1000, 1001]
            assert all(
                worker.state == WorkerState.RUNNING for worker in supervisor.workers
            )

    async def test_requires_entered_context(self, supervisor: Supervisor) -> None:
        with pytest.raises(SupervisorError, match="not running"):
            await supervisor.load_and_start()


@pytest.mark.anyio
class TestHealthCheckPass:
    async def test_restarts_dead_worker_once(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
        daemon: Any,
        alive: set[int],
    ) -> None:
        write_process_file("app.toml", _worker_toml("unix:{run_dir}/a.socket", "x"))

        async with supervisor:
            await supervisor.load_and_start()
            await wait_until(_all_running(supervisor))
            (worker,) = supervisor.workers

            assert await supervisor.health_check_pass() == 1
            await wait_until(lambda: worker.pid != 0)
            alive.add(worker.pid)

            assert worker.pid == 1001
            assert len(daemon.started) == 2
            assert len(daemon.stopped) == 1
            assert await supervisor.health_check_pass() == 0

    async def test_leaves_live_workers_alone(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
        daemon: Any,
        alive: set[int],
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)
        alive.update({1000, 1001})

        async with supervisor:
            await supervisor.load_and_start()
            await wait_until(_all_running(supervisor))

            assert await supervisor.health_check_pass() == 0
            assert daemon.stopped == []

    async def test_skips_workers_without_pid(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        daemon: Any,
    ) -> None:
        daemon.write_pid = False
        write_process_file("app.toml", TWO_WORKERS)

        async with supervisor:
            await supervisor.load_and_start()

            assert await supervisor.health_check_pass() == 0
            assert daemon.stopped == []

    async def test_does_nothing_after_exit_requested(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
        daemon: Any,
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)

        async with supervisor:
            await supervisor.load_and_start()
            await wait_until(_all_running(supervisor))
            supervisor.request_exit()

            assert await supervisor.health_check_pass() == 0
            assert daemon.stopped == []


@pytest.mark.anyio
class TestStopAll:
    async def test_stops_every_worker_in_order(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
        daemon: Any,
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)

        async with supervisor:
            await supervisor.load_and_start()
            await wait_until(_all_running(supervisor))

            await supervisor.stop_all()

            assert [pid_file for pid_file, _ in daemon.stopped] == [
                worker.pid_file for worker in supervisor.workers
            ]
            assert all(w.state == WorkerState.STOPPED for w in supervisor.workers)

    async def test_one_failure_does_not_stop_the_others(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
        daemon: Any,
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)

        async with supervisor:
            await supervisor.load_and_start()
            await wait_until(_all_running(supervisor))
            first, second = supervisor.workers
            daemon.stop_errors[first.pid_file] = OSError("boom")

            await supervisor.stop_all()

            assert second.state == WorkerState.STOPPED
            assert len(daemon.stopped) == 2


@pytest.mark.anyio
class TestReload:
    async def test_replaces_the_worker_set(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)

        async with supervisor:
            await supervisor.load_and_start()
            await wait_until(_all_running(supervisor))
            old_workers = supervisor.workers

            await supervisor.reload()
            await wait_until(_all_running(supervisor))

            new_workers = supervisor.workers
            assert len(new_workers) == 2
            assert not any(new is old for new in new_workers for old in old_workers)
            assert all(worker.state == WorkerState.STOPPED for worker in old_workers)

    async def test_picks_up_changed_files(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)

        async with supervisor:
            await supervisor.load_and_start()
            await wait_until(_all_running(supervisor))
            write_process_file("app.toml", _worker_toml("127.0.0.1:1", "x"))

            await supervisor.reload()

            assert [worker.address for worker in supervisor.workers] == ["127.0.0.1:1"]


@pytest.mark.anyio
class TestHandleSignal:
    async def test_sighup_reloads_without_exit(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
        calls: list[str],
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)

        async with supervisor:
            await supervisor.load_and_start()
            await wait_until(_all_running(supervisor))
            calls.clear()

            await supervisor.handle_signal(signal.SIGHUP)
            await wait_until(_all_running(supervisor))

            assert calls == ["stop", "stop", "start", "start"]
            assert not supervisor.exit_requested

    @pytest.mark.parametrize("signum", [signal.SIGINT, signal.SIGTERM, signal.SIGQUIT])
    async def test_stop_signals_stop_all_and_exit(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
        signum: signal.Signals,
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)

        async with supervisor:
            await supervisor.load_and_start()
            await wait_until(_all_running(supervisor))

            await supervisor.handle_signal(signum)

            assert supervisor.exit_requested
            assert all(w.state == WorkerState.STOPPED for w in supervisor.workers)

    async def test_other_signals_are_ignored(
        self,
        supervisor: Supervisor,
        calls: list[str],
    ) -> None:
        async with supervisor:
            await supervisor.handle_signal(signal.SIGUSR1)

        assert calls == []
        assert not supervisor.exit_requested


@pytest.mark.anyio
class TestRun:
    async def test_returns_zero_after_stop_signal(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
        alive: set[int],
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)
        alive.update({1000, 1001})
        exit_codes: list[int] = []

        async def run_supervisor() -> None:
            exit_codes.append(await supervisor.run())

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                tg.start_soon(run_supervisor)
                await wait_until(lambda: len(supervisor.workers) == 2)
                await wait_until(_all_running(supervisor))

                await supervisor.handle_signal(signal.SIGTERM)

        assert exit_codes == [0]
        assert all(w.state == WorkerState.STOPPED for w in supervisor.workers)

    async def test_os_signals_reload_then_stop(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
        alive: set[int],
    ) -> None:
        write_process_file("app.toml", TWO_WORKERS)
        alive.update(range(1000, 1010))
        default_handler = signal.getsignal(signal.SIGHUP)
        exit_codes: list[int] = []

        async def run_supervisor() -> None:
            exit_codes.append(await supervisor.run())

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                tg.start_soon(run_supervisor)
                await wait_until(
                    lambda: signal.getsignal(signal.SIGHUP) is not default_handler
                )
                await wait_until(lambda: len(supervisor.workers) == 2)
                await wait_until(_all_running(supervisor))
                first = supervisor.workers

                os.kill(os.getpid(), signal.SIGHUP)
                await wait_until(
                    lambda: not set(supervisor.workers) & set(first)
                    and len(supervisor.workers) == 2
                )
                await wait_until(_all_running(supervisor))

                assert exit_codes == []
                assert all(w.state == WorkerState.STOPPED for w in first)

                os.kill(os.getpid(), signal.SIGTERM)

        assert exit_codes == [0]
        assert supervisor.exit_requested
        assert all(w.state == WorkerState.STOPPED for w in supervisor.workers)

    async def test_health_loop_restarts_dead_worker(
        self,
        supervisor: Supervisor,
        write_process_file: Callable[[str, str], Path],
        wait_until: WaitUntil,
        alive: set[int],
    ) -> None:
        write_process_file("app.toml", _worker_toml("127.0.0.1:1", "x"))

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                tg.start_soon(supervisor.run)
                await wait_until(lambda: len(supervisor.workers) == 1)
                (worker,) = supervisor.workers
                await wait_until(lambda: worker.pid == 1001)
                alive.add(1001)

                await supervisor.handle_signal(signal.SIGTERM)
