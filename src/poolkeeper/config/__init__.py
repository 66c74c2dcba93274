"""Settings and process file loading for poolkeeper.

Settings are layered from defaults, a TOML settings file, environment
variables and command line overrides. Process files describe the workers
of one application each.

Example:
    >>> from poolkeeper.config import Settings
    >>> settings = Settings.load()
    >>> settings.timing.health_check_interval
    5.0
"""

from ._loader import (
    ENV_PREFIX,
    copy_value,
    deep_merge,
    parse_env_vars,
    parse_string_value,
    read_toml_file,
    set_nested_key,
)
from ._models import (
    LoggingConfig,
    LogLevel,
    PathsConfig,
    Settings,
    TimingConfig,
    ToolsConfig,
)
from ._process_file import (
    CommandDefinition,
    NamedCommandDefinition,
    WorkerDefinition,
    load_process_file,
    to_command_ref,
)

__all__ = [
    "ENV_PREFIX",
    "CommandDefinition",
    "LogLevel",
    "LoggingConfig",
    "NamedCommandDefinition",
    "PathsConfig",
    "Settings",
    "TimingConfig",
    "ToolsConfig",
    "WorkerDefinition",
    "copy_value",
    "deep_merge",
    "load_process_file",
    "parse_env_vars",
    "parse_string_value",
    "read_toml_file",
    "set_nested_key",
    "to_command_ref",
]
