"""Poolkeeper exceptions."""

from pathlib import Path  # noqa: TC003 - Used in runtime type annotations
from typing import Any


class PoolkeeperError(Exception):
    """Base exception for poolkeeper errors."""


class ConfigError(PoolkeeperError):
    """Base exception for configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when configuration cannot be loaded or parsed."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        """Initialize with error message and optional location context."""
        super().__init__(message)
        self.path: Path | None = path
        self.line: int | None = line
        self.column: int | None = column


class ConfigValidationError(ConfigError):
    """Raised when a configuration item fails validation."""

    def __init__(
        self,
        message: str,
        *,
        key: str,
        value: Any,  # pyright: ignore[reportAny,reportExplicitAny]
        expected: str,
        source: str | None = None,
    ) -> None:
        """Initialize with error message and validation context."""
        super().__init__(message)
        self.key: str = key
        self.value: Any = value  # pyright: ignore[reportExplicitAny]
        self.expected: str = expected
        self.source: str | None = source


class BootstrapError(PoolkeeperError):
    """Raised when a directory required at startup is missing.

    Attributes:
        path: The directory that was not found.
    """

    def __init__(self, message: str, *, path: Path) -> None:
        """Initialize with error message and the missing path."""
        super().__init__(message)
        self.path: Path = path


# =============================================================================
# Supervisor Exceptions
# =============================================================================


class SupervisorError(PoolkeeperError):
    """Base exception for supervisor errors."""


class PidFileTimeoutError(SupervisorError):
    """Raised when the daemonization tool never writes the PID file.

    Attributes:
        worker_name: Name of the worker that never became running.
        pid_file: The PID file that was polled.
        timeout: Seconds waited before giving up.
    """

    def __init__(
        self,
        message: str,
        *,
        worker_name: str,
        pid_file: Path,
        timeout: float,
    ) -> None:
        """Initialize with error message and polling context."""
        super().__init__(message)
        self.worker_name: str = worker_name
        self.pid_file: Path = pid_file
        self.timeout: float = timeout
