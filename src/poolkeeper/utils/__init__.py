"""Shared utilities for poolkeeper."""

from ._exec import CommandResult, run_command, truncate_output
from ._logging import (
    RetryingFileWriter,
    create_console_logger,
    create_null_logger,
    create_supervisor_logger,
    render_line,
)
from ._paths import (
    DEFAULT_AVAILABLE_DIR,
    DEFAULT_CONFIG_FILE,
    DEFAULT_ENABLED_DIR,
    DEFAULT_LOG_FILE,
    UNIX_SCHEME,
    get_default_run_dir,
    pid_file_path,
    read_pid_file,
    remove_file,
    unix_socket_path,
)

__all__ = [
    "DEFAULT_AVAILABLE_DIR",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_ENABLED_DIR",
    "DEFAULT_LOG_FILE",
    "UNIX_SCHEME",
    "CommandResult",
    "RetryingFileWriter",
    "create_console_logger",
    "create_null_logger",
    "create_supervisor_logger",
    "get_default_run_dir",
    "pid_file_path",
    "read_pid_file",
    "remove_file",
    "render_line",
    "run_command",
    "truncate_output",
    "unix_socket_path",
]
