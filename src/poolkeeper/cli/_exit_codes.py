"""Exit codes for poolkeeper commands."""

from enum import IntEnum


class ExitCode(IntEnum):
    """Standard exit codes for poolkeeper CLI commands."""

    SUCCESS = 0
    LOAD_ERROR = 1
