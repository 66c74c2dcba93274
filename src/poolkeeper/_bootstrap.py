"""Process startup: log setup, directory checks and the supervisor run."""

from typing import IO, TYPE_CHECKING

import anyio

from poolkeeper.exceptions import BootstrapError
from poolkeeper.supervisor import Supervisor
from poolkeeper.utils import create_supervisor_logger

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from poolkeeper.config import Settings


def prepare_log_directory(settings: "Settings") -> None:  # noqa: UP037
    """Create the directory of the log file if it does not exist."""
    settings.logging.file.parent.mkdir(parents=True, exist_ok=True)


def create_logger(
    settings: "Settings",  # noqa: UP037
    *,
    stream: IO[str] | None = None,
) -> "FilteringBoundLogger":  # noqa: UP037
    """Create the supervisor logger from the logging settings."""
    return create_supervisor_logger(
        settings.logging.file,
        level=settings.logging.level.value,
        echo=settings.logging.echo,
        write_timeout=settings.logging.write_timeout,
        retry_pause=settings.logging.retry_pause,
        stream=stream,
    )


def verify_directories(
    settings: "Settings",  # noqa: UP037
    logger: "FilteringBoundLogger",  # noqa: UP037
) -> None:
    """Check that the process file directories exist.

    Args:
        settings: Daemon settings.
        logger: Logger the failure is reported to before raising.

    Raises:
        BootstrapError: If the available or enabled directory is missing.
    """
    for directory in (settings.paths.available_dir, settings.paths.enabled_dir):
        if not directory.is_dir():
            msg = f"Directory {directory} not found"
            logger.error(msg)
            raise BootstrapError(msg, path=directory)


def bootstrap(
    settings: "Settings",  # noqa: UP037
    *,
    stream: IO[str] | None = None,
) -> "FilteringBoundLogger":  # noqa: UP037
    """Prepare logging and check the directories.

    Args:
        settings: Daemon settings.
        stream: Echo target of the logger. Defaults to stdout.

    Returns:
        The supervisor logger.

    Raises:
        BootstrapError: If a required directory is missing.
    """
    prepare_log_directory(settings)
    logger = create_logger(settings, stream=stream)
    logger.info("Starting poolkeeper")
    verify_directories(settings, logger)
    return logger


async def serve(
    settings: "Settings",  # noqa: UP037
    logger: "FilteringBoundLogger",  # noqa: UP037
) -> int:
    """Run a supervisor until it is told to stop.

    Returns:
        The process exit code.
    """
    supervisor = Supervisor(settings, logger=logger)
    return await supervisor.run()


def run_supervisor(settings: "Settings") -> int:  # noqa: UP037
    """Bootstrap and run the supervisor in a new event loop.

    Returns:
        The process exit code.

    Raises:
        BootstrapError: If a required directory is missing.
    """
    logger = bootstrap(settings)
    return anyio.run(serve, settings, logger)
