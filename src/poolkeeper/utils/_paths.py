"""Runtime path helpers.

Default locations of the poolkeeper directories, and derivation of the
per-worker PID file and unix socket paths from a worker address.
"""

import contextlib
import tempfile
from pathlib import Path
from uuid import uuid4

UNIX_SCHEME: str = "unix:"

DEFAULT_CONFIG_FILE: Path = Path("/etc/poolkeeper/poolkeeper.toml")
DEFAULT_AVAILABLE_DIR: Path = Path("/etc/poolkeeper/apps-available")
DEFAULT_ENABLED_DIR: Path = Path("/etc/poolkeeper/apps-enabled")
DEFAULT_LOG_FILE: Path = Path("/var/log/poolkeeper/poolkeeper.log")


def get_default_run_dir() -> Path:
    """Return the directory PID files are written to by default."""
    return Path(tempfile.gettempdir())


def unix_socket_path(address: str) -> Path | None:
    """Return the socket file of a ``unix:`` address.

    Args:
        address: Worker address, e.g. ``unix:/run/app.socket`` or ``127.0.0.1:9000``.

    Returns:
        The socket path, or None for any other kind of address.
    """
    if not address.startswith(UNIX_SCHEME):
        return None
    return Path(address[len(UNIX_SCHEME) :])


def pid_file_path(address: str, run_dir: Path) -> Path:
    """Derive the PID file path of a worker.

    Unix-socket workers get a stable name derived from the socket file name
    (``unix:/tmp/a.socket`` -> ``<run_dir>/a.socket.pid``); any other
    address gets a fresh unique name.

    Args:
        address: Worker address.
        run_dir: Directory the PID file lives in.

    Returns:
        Path of the PID file.
    """
    socket_path = unix_socket_path(address)
    if socket_path is not None:
        return run_dir / f"{socket_path.name}.pid"
    return run_dir / f"{uuid4().hex}.pid"


def read_pid_file(path: Path) -> int | None:
    """Read the process ID from the first line of a PID file.

    Args:
        path: PID file to read.

    Returns:
        The process ID, or None if the file is missing, empty or does not
        start with a positive integer (it may still be being written).
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        return None

    first_line = content.partition("\n")[0].strip()
    try:
        pid = int(first_line)
    except ValueError:
        return None
    return pid if pid > 0 else None


def remove_file(path: Path) -> bool:
    """Remove a file if it exists.

    Args:
        path: File to remove.

    Returns:
        True if a file was removed.
    """
    with contextlib.suppress(FileNotFoundError):
        path.unlink()
        return True
    return False
