"""Logging utilities for poolkeeper.

This module provides a standalone structlog logger factory writing
timestamped text lines of the form ``<timestamp> [<LEVEL>]: <message>`` to
the supervisor log file. The logger is self-contained and does not modify
global structlog configuration.

The log file may be shared with other writers (logrotate, a second
instance during a restart), so a failed append is retried on a short fixed
pause for a bounded time before the line is dropped.
"""

import logging
import math
import sys
from os import getenv
from pathlib import Path
from typing import IO, TYPE_CHECKING, cast, final

import structlog
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
)

if TYPE_CHECKING:
    from structlog.typing import EventDict, FilteringBoundLogger, WrappedLogger
    from tenacity import RetryCallState

TIMESTAMP_FORMAT: str = "%Y-%m-%d %H:%M:%S"

DEFAULT_WRITE_TIMEOUT: float = 30.0
DEFAULT_RETRY_PAUSE: float = 0.1


def _log_level_from_string(level: str, *, respect_env: bool = False) -> int:
    """Convert a log level string to a logging level integer.

    Args:
        level: Log level string (debug, info, warning, error).
        respect_env: If True, POOLKEEPER_DEBUG overrides to DEBUG level.

    Returns:
        The logging level as an integer.
    """
    if respect_env and getenv("POOLKEEPER_DEBUG", None):
        return logging.DEBUG

    log_levels = logging.getLevelNamesMapping()
    return log_levels.get(level.upper(), logging.INFO)


def render_line(
    _logger: "WrappedLogger",  # noqa: UP037
    _method_name: str,
    event_dict: "EventDict",  # noqa: UP037
) -> str:
    """Render an event as ``<timestamp> [<LEVEL>]: <event> key=value ...``."""
    timestamp = event_dict.pop("timestamp", "")
    level = str(event_dict.pop("level", "info")).upper()
    event = event_dict.pop("event", "")
    exception = event_dict.pop("exception", None)

    line = f"{timestamp} [{level}]: {event}"
    if event_dict:
        line += " " + " ".join(f"{key}={value}" for key, value in event_dict.items())
    if exception:
        line += f"\n{exception}"
    return line


def _attempts_within(write_timeout: float, retry_pause: float) -> int:
    if retry_pause <= 0:
        return 1
    return math.ceil(write_timeout / retry_pause) + 1


def _drop_line(_retry_state: "RetryCallState") -> None:  # noqa: UP037
    return None


@final
class RetryingFileWriter:
    """Raw structlog logger appending rendered lines to a file.

    Each line is optionally echoed to a stream, then appended to the log
    file. An ``OSError`` while appending is retried every ``retry_pause``
    seconds until ``write_timeout`` seconds have been spent, after which the
    line is silently dropped.
    """

    __slots__ = (
        "_echo",
        "_max_attempts",
        "_path",
        "_retry_pause",
        "_stream",
        "_write_timeout",
    )

    def __init__(
        self,
        path: Path,
        *,
        echo: bool = True,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        retry_pause: float = DEFAULT_RETRY_PAUSE,
        stream: IO[str] | None = None,
    ) -> None:
        """Initialize the writer.

        Args:
            path: Log file, opened in append mode for every line.
            echo: Also write every line to ``stream``.
            write_timeout: Seconds to keep retrying a failed append.
            retry_pause: Seconds between append attempts.
            stream: Echo target. Defaults to stdout.
        """
        self._path = path
        self._echo = echo
        self._write_timeout = write_timeout
        self._retry_pause = retry_pause
        self._stream = stream
        # Attempt cap equivalent to write_timeout at a fixed retry_pause
        self._max_attempts = _attempts_within(write_timeout, retry_pause)

    @property
    def path(self) -> Path:
        """Return the log file path."""
        return self._path

    def msg(self, message: str) -> None:
        """Write one rendered line."""
        if self._echo:
            stream = self._stream or sys.stdout
            _ = stream.write(message + "\n")
            stream.flush()

        retrying = Retrying(
            retry=retry_if_exception_type(OSError),
            stop=stop_after_delay(self._write_timeout)
            | stop_after_attempt(self._max_attempts),
            wait=wait_fixed(self._retry_pause),
            retry_error_callback=_drop_line,
        )
        retrying(self._append, message)

    def _append(self, message: str) -> None:
        with self._path.open("a", encoding="utf-8") as f:
            _ = f.write(message + "\n")

    log = debug = info = warn = warning = msg
    error = critical = exception = fatal = msg


def create_supervisor_logger(
    log_file: str | Path,
    *,
    level: str = "info",
    echo: bool = True,
    write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    retry_pause: float = DEFAULT_RETRY_PAUSE,
    stream: IO[str] | None = None,
) -> "FilteringBoundLogger":  # noqa: UP037
    """Create the supervisor logger.

    The log level can be overridden by environment variables:
    - POOLKEEPER_DEBUG: If set, enables DEBUG level logging regardless of config

    Args:
        log_file: Path to the log file. Its directory must already exist.
        level: Log level threshold (debug, info, warning, error).
        echo: Echo every line to ``stream`` as well.
        write_timeout: Seconds to keep retrying a failed append.
        retry_pause: Seconds between append attempts.
        stream: Echo target. Defaults to stdout.

    Returns:
        A FilteringBoundLogger instance.
    """
    effective_level = _log_level_from_string(level, respect_env=True)

    writer = RetryingFileWriter(
        Path(log_file),
        echo=echo,
        write_timeout=write_timeout,
        retry_pause=retry_pause,
        stream=stream,
    )

    processors: list[structlog.typing.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt=TIMESTAMP_FORMAT, utc=False),
        structlog.processors.format_exc_info,
        render_line,
    ]

    wrapper_class = structlog.make_filtering_bound_logger(effective_level)

    return cast(
        "FilteringBoundLogger",
        structlog.wrap_logger(
            writer,
            processors=processors,
            wrapper_class=wrapper_class,
            context_class=dict,
        ),
    )


def create_console_logger(
    *,
    level: str = "warning",
    stream: IO[str] | None = None,
) -> "FilteringBoundLogger":  # noqa: UP037
    """Create a logger for interactive commands.

    Lines use the same format as the supervisor log but go to ``stream``
    only, defaulting to stderr.

    Args:
        level: Log level threshold (debug, info, warning, error).
        stream: Output stream.

    Returns:
        A FilteringBoundLogger instance.
    """
    effective_level = _log_level_from_string(level, respect_env=True)
    processors: list[structlog.typing.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt=TIMESTAMP_FORMAT, utc=False),
        structlog.processors.format_exc_info,
        render_line,
    ]
    return cast(
        "FilteringBoundLogger",
        structlog.wrap_logger(
            structlog.PrintLogger(stream or sys.stderr),
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(effective_level),
            context_class=dict,
        ),
    )


def create_null_logger() -> "FilteringBoundLogger":  # noqa: UP037
    """Create a logger that discards everything.

    Used where a component is constructed without a logger.
    """
    return cast(
        "FilteringBoundLogger",
        structlog.wrap_logger(
            structlog.ReturnLogger(),
            processors=[],
            wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL),
            context_class=dict,
        ),
    )
