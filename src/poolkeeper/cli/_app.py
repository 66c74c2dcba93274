# pyright: reportUnusedCallResult=false, reportUnusedFunction=false
"""The command-line interface for poolkeeper."""
# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing

from pathlib import Path
from typing import Annotated, Any

from cyclopts import App, Parameter
from rich.console import Console
from rich.table import Table

from poolkeeper._bootstrap import run_supervisor
from poolkeeper.config import LogLevel, Settings, load_process_file
from poolkeeper.exceptions import ConfigError
from poolkeeper.supervisor import ResolvedCommand, Supervisor
from poolkeeper.utils import create_console_logger

from ._exit_codes import ExitCode

APP_HELP = "Keep a pool of daemonized worker processes alive."


def format_command(command: ResolvedCommand) -> str:
    """Render a resolved command for display."""
    text = f"{command.exec} {command.arguments}".strip()
    if command.user:
        owner = f"{command.user}:{command.group}" if command.group else command.user
        text += f" (as {owner})"
    return text


def _cli_overrides(
    *,
    enabled_dir: Path | None,
    log_file: Path | None,
    log_level: LogLevel | None,
) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    overrides: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]
    if enabled_dir is not None:
        overrides.setdefault("paths", {})["enabled_dir"] = enabled_dir
    if log_file is not None:
        overrides.setdefault("logging", {})["file"] = log_file
    if log_level is not None:
        overrides.setdefault("logging", {})["level"] = log_level.value
    return overrides


def _load_settings(
    error_console: Console,
    config: Path | None,
    cli_overrides: dict[str, Any] | None = None,  # pyright: ignore[reportExplicitAny]
) -> Settings:
    try:
        return Settings.load(config, cli_overrides=cli_overrides)
    except ConfigError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(ExitCode.LOAD_ERROR) from e


def create_app(
    console: Console | None = None,
    error_console: Console | None = None,
    *,
    exit_on_error: bool = True,
) -> App:
    """Create the poolkeeper application.

    Args:
        console: Console for regular output.
        error_console: Console for errors. Defaults to stderr.
        exit_on_error: Exit on command line parsing errors.

    Returns:
        The cyclopts application.
    """
    if console is None:
        console = Console()
    if error_console is None:
        error_console = Console(stderr=True)
    app = App(
        name="poolkeeper",
        help=APP_HELP,
        help_on_error=True,
        console=console,
        error_console=error_console,
        exit_on_error=exit_on_error,
    )

    @app.command(name="run")
    def run(
        *,
        config: Annotated[
            Path | None, Parameter(name="--config", help="Path to settings file")
        ] = None,
        enabled_dir: Annotated[
            Path | None,
            Parameter(name="--enabled-dir", help="Directory of enabled process files"),
        ] = None,
        log_file: Annotated[
            Path | None, Parameter(name="--log-file", help="Path to log file")
        ] = None,
        log_level: Annotated[
            LogLevel | None, Parameter(name="--log-level", help="Log level threshold")
        ] = None,
    ) -> None:
        """Run the supervisor until SIGINT, SIGTERM or SIGQUIT.

        SIGHUP stops every worker and reloads the enabled process files.
        """
        overrides = _cli_overrides(
            enabled_dir=enabled_dir,
            log_file=log_file,
            log_level=log_level,
        )
        settings = _load_settings(error_console, config, overrides)
        raise SystemExit(run_supervisor(settings))

    @app.command(name="check")
    def check(
        *files: Annotated[Path, Parameter(help="Process files to check")],
        config: Annotated[
            Path | None, Parameter(name="--config", help="Path to settings file")
        ] = None,
    ) -> None:
        """Load process files and show the workers they define.

        Checks the enabled directory when no files are given. Exits with
        status 1 if any file cannot be loaded.
        """
        settings = _load_settings(error_console, config)
        logger = create_console_logger(stream=error_console.file)

        paths = list(files)
        if not paths:
            enabled_dir = settings.paths.enabled_dir
            try:
                paths = sorted(p for p in enabled_dir.iterdir() if p.is_file())
            except OSError as e:
                error_console.print(
                    f"[red]Error:[/red] Could not read {enabled_dir}: {e}"
                )
                raise SystemExit(ExitCode.LOAD_ERROR) from e

        supervisor = Supervisor(settings, logger=logger)
        table = Table(title="Workers")
        table.add_column("Name")
        table.add_column("Address")
        table.add_column("PID file")
        table.add_column("Command")

        failures = 0
        for path in paths:
            try:
                process_file = load_process_file(path, logger=logger)
            except ConfigError as e:
                error_console.print(f"[red]Error:[/red] {e}")
                failures += 1
                continue
            for spec in process_file.specs:
                worker = supervisor.create_worker(spec, process_file)
                table.add_row(
                    worker.name,
                    worker.address,
                    str(worker.pid_file),
                    format_command(worker.command),
                )

        console.print(table)
        raise SystemExit(ExitCode.LOAD_ERROR if failures else ExitCode.SUCCESS)

    return app


app = create_app()


def main() -> None:
    """Default entrypoint for the `poolkeeper` CLI."""
    app()


if __name__ == "__main__":
    main()
