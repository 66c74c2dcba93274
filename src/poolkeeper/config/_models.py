# pyright: reportExplicitAny=false, reportAny=false
"""Settings models.

This module provides the Pydantic models for the poolkeeper settings
sections and the Settings container that layers the settings sources.
"""

from enum import StrEnum
from pathlib import Path
from typing import Any, ClassVar, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeFloat,
    NonNegativeInt,
    PositiveFloat,
    ValidationError,
)

from poolkeeper.exceptions import ConfigValidationError
from poolkeeper.supervisor._daemon import DEFAULT_DAEMON_TOOL, DEFAULT_KILL_GRACE
from poolkeeper.supervisor._models import DEFAULT_STOP_TIMEOUT
from poolkeeper.supervisor._runner import DEFAULT_PRIVILEGE_TOOL
from poolkeeper.supervisor._templates import DEFAULT_FETCH_TOOL
from poolkeeper.supervisor._worker import (
    DEFAULT_PID_POLL_INTERVAL,
    DEFAULT_PID_WAIT_TIMEOUT,
)
from poolkeeper.utils import (
    DEFAULT_AVAILABLE_DIR,
    DEFAULT_CONFIG_FILE,
    DEFAULT_ENABLED_DIR,
    DEFAULT_LOG_FILE,
    get_default_run_dir,
)
from poolkeeper.utils._logging import DEFAULT_RETRY_PAUSE, DEFAULT_WRITE_TIMEOUT

from ._loader import deep_merge, parse_env_vars, read_toml_file


class LogLevel(StrEnum):
    """Log level threshold values, most verbose first."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class PathsConfig(BaseModel):
    """Directory settings.

    Attributes:
        available_dir: Catalogue of all process files.
        enabled_dir: Process files that are loaded and supervised.
        run_dir: Directory PID files are written to.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    available_dir: Path = DEFAULT_AVAILABLE_DIR
    enabled_dir: Path = DEFAULT_ENABLED_DIR
    run_dir: Path = Field(default_factory=get_default_run_dir)


class ToolsConfig(BaseModel):
    """External tool settings.

    Attributes:
        daemon: Daemonization tool.
        privilege: Privilege-switching tool used for hooks.
        fetch: Tool that executes URL hooks.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    daemon: str = DEFAULT_DAEMON_TOOL
    privilege: str = DEFAULT_PRIVILEGE_TOOL
    fetch: str = DEFAULT_FETCH_TOOL


class TimingConfig(BaseModel):
    """Timing settings, in seconds."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    health_check_interval: PositiveFloat = 5.0
    pid_poll_interval: PositiveFloat = DEFAULT_PID_POLL_INTERVAL
    pid_wait_timeout: PositiveFloat = DEFAULT_PID_WAIT_TIMEOUT
    stop_timeout: NonNegativeInt = DEFAULT_STOP_TIMEOUT
    kill_grace: NonNegativeInt = DEFAULT_KILL_GRACE


class LoggingConfig(BaseModel):
    """Logging settings.

    Attributes:
        level: Log level threshold.
        file: Log file path.
        echo: Echo log lines to stdout.
        write_timeout: Seconds to keep retrying a failed log write.
        retry_pause: Seconds between log write attempts.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    level: LogLevel = LogLevel.INFO
    file: Path = DEFAULT_LOG_FILE
    echo: bool = True
    write_timeout: NonNegativeFloat = DEFAULT_WRITE_TIMEOUT
    retry_pause: PositiveFloat = DEFAULT_RETRY_PAUSE


class Settings(BaseModel):
    """Immutable daemon settings.

    Use :meth:`load` to layer the settings sources, or :meth:`from_dict`
    for an already merged dictionary.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    paths: PathsConfig = Field(default_factory=PathsConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, source: str | None = None) -> Self:
        """Create settings from a dictionary.

        Args:
            data: Settings values; missing keys take their defaults.
            source: Where the values came from, for error reporting.

        Returns:
            The validated settings.

        Raises:
            ConfigValidationError: If a value is invalid.
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            error = e.errors()[0]
            key = ".".join(str(part) for part in error["loc"])
            msg = f"Invalid setting '{key}': {error['msg']}"
            raise ConfigValidationError(
                msg,
                key=key,
                value=error.get("input"),
                expected=error["msg"],
                source=source,
            ) from e

    @classmethod
    def load(
        cls,
        config_path: Path | None = None,
        *,
        cli_overrides: dict[str, Any] | None = None,
        environ: dict[str, str] | None = None,
    ) -> Self:
        """Load settings from all sources.

        Sources, lowest precedence first: defaults, the TOML settings file,
        ``POOLKEEPER_SECTION__KEY`` environment variables, CLI overrides.

        Args:
            config_path: Settings file. Defaults to
                ``/etc/poolkeeper/poolkeeper.toml`` when that file exists.
            cli_overrides: Nested overrides from the command line.
            environ: Environment to read. Defaults to ``os.environ``.

        Returns:
            The validated settings.

        Raises:
            ConfigLoadError: If the settings file cannot be read or parsed.
            ConfigValidationError: If a value is invalid.
        """
        path = config_path
        if path is None and DEFAULT_CONFIG_FILE.is_file():
            path = DEFAULT_CONFIG_FILE

        data: dict[str, Any] = read_toml_file(path) if path is not None else {}
        data = deep_merge(data, parse_env_vars(environ=environ))
        if cli_overrides:
            data = deep_merge(data, cli_overrides)

        return cls.from_dict(data, source=str(path) if path is not None else None)
