"""Shared test fixtures for poolkeeper tests."""

from pathlib import Path

import pytest
from rich.console import Console


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def console() -> Console:
    return Console(
        width=200,
        force_terminal=True,
        highlight=False,
        color_system=None,
        legacy_windows=False,
    )


@pytest.fixture
def poolkeeper_dirs(tmp_path: Path) -> dict[str, Path]:
    """Create the directory layout of a poolkeeper installation.

    Structure:
        tmp_path/
            apps-available/
            apps-enabled/
            run/
            log/
    """
    dirs = {
        "available_dir": tmp_path / "apps-available",
        "enabled_dir": tmp_path / "apps-enabled",
        "run_dir": tmp_path / "run",
        "log_dir": tmp_path / "log",
    }
    for path in dirs.values():
        path.mkdir()
    return dirs
