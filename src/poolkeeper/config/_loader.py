# pyright: reportAny=false, reportUnknownVariableType=false, reportUnknownArgumentType=false
"""TOML file reading and settings-source merging."""

import json
import os
import re
import tomllib
from collections.abc import Mapping
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations
from typing import Any

from poolkeeper.exceptions import ConfigLoadError

ENV_PREFIX: str = "POOLKEEPER_"

_TOML_LOCATION = re.compile(r"\(at line (\d+), column (\d+)\)")


def read_toml_file(path: Path) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Read and parse a TOML file.

    Args:
        path: Path to the TOML file.

    Returns:
        Parsed TOML content as dictionary.

    Raises:
        ConfigLoadError: If the file cannot be read or parsed.
    """
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Failed to parse TOML file {path}: {e}"
        line, column = _error_location(e)
        raise ConfigLoadError(msg, path=path, line=line, column=column) from e
    except OSError as e:
        msg = f"Failed to read {path}: {e.strerror or e}"
        raise ConfigLoadError(msg, path=path) from e


def _error_location(
    error: tomllib.TOMLDecodeError,
) -> tuple[int | None, int | None]:
    match = _TOML_LOCATION.search(str(error))
    if match is None:
        return None, None
    return int(match.group(1)), int(match.group(2))


def deep_merge(
    base: dict[str, Any],  # pyright: ignore[reportExplicitAny]
    override: dict[str, Any],  # pyright: ignore[reportExplicitAny]
) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Deep merge two settings dictionaries into a new one.

    Tables merge recursively; any other value in ``override`` (arrays
    included) replaces the value in ``base``. Neither input is modified.

    Args:
        base: Lower-precedence settings.
        override: Higher-precedence settings.

    Returns:
        Merged settings dictionary.
    """
    result = {key: copy_value(value) for key, value in base.items()}
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = copy_value(value)
    return result


def copy_value(value: Any) -> Any:  # pyright: ignore[reportExplicitAny]
    """Return a copy of a settings value independent of the original."""
    if isinstance(value, dict):
        return {k: copy_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [copy_value(item) for item in value]
    return value


def parse_env_vars(
    prefix: str = ENV_PREFIX,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Parse environment variables into a nested settings dictionary.

    ``POOLKEEPER_TIMING__STOP_TIMEOUT=20`` becomes
    ``{"timing": {"stop_timeout": 20}}``.

    Args:
        prefix: Environment variable prefix.
        environ: Variables to read. Defaults to ``os.environ``.

    Returns:
        Dictionary of parsed values with nested structure.
    """
    result: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]
    source = os.environ if environ is None else environ

    for key, value in source.items():
        if not key.startswith(prefix):
            continue
        config_key = key[len(prefix) :]
        if not config_key:
            continue
        config_path = config_key.replace("__", ".").lower()
        set_nested_key(result, config_path, parse_string_value(value))

    return result


def parse_string_value(value: str) -> Any:  # pyright: ignore[reportExplicitAny]
    """Parse a string with type inference.

    Order: boolean (true/false, case-insensitive), integer, float (must
    contain a decimal point), JSON array or object, plain string.

    Examples:
        >>> parse_string_value("true")
        True
        >>> parse_string_value("20")
        20
        >>> parse_string_value("0.5")
        0.5
    """
    lower_value = value.lower()
    if lower_value in ("true", "false"):
        return lower_value == "true"

    try:
        return int(value)
    except ValueError:
        pass

    if "." in value:
        try:
            return float(value)
        except ValueError:
            pass

    if (value.startswith("[") and value.endswith("]")) or (
        value.startswith("{") and value.endswith("}")
    ):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass

    return value


def set_nested_key(
    d: dict[str, Any],  # pyright: ignore[reportExplicitAny]
    key_path: str,
    value: Any,  # pyright: ignore[reportExplicitAny]
) -> None:
    """Set a value at a dotted key path, creating tables as needed.

    Example:
        >>> d = {}
        >>> set_nested_key(d, "logging.level", "debug")
        >>> d
        {'logging': {'level': 'debug'}}
    """
    *parents, leaf = key_path.split(".")
    current = d
    for part in parents:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[leaf] = value
