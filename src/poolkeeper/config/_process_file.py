# pyright: reportExplicitAny=false, reportAny=false
"""Process file loading.

A process file is a TOML document with a table of named commands and a list
of workers::

    [[commands]]
    name = "php"
    exec = "/usr/bin/php-cgi"
    arguments = "-b {socket}"
    user = "www-data"

    [[workers]]
    address = "unix:/run/php/app.socket"
    command = "php"
    afterStartingCommand = "https://example.com/health"
    stoppingTimeout = 20

Keys may be written in snake_case or camelCase. A worker command is either
the name of a command in the table, an executable given as a plain string,
or an inline table with the same keys as a named command.
"""

from collections.abc import Mapping
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, ValidationError
from pydantic.alias_generators import to_camel

from poolkeeper.exceptions import ConfigLoadError, ConfigValidationError
from poolkeeper.supervisor._models import (
    CommandRef,
    CommandTemplate,
    InlineCommand,
    NamedReference,
    ProcessFile,
    ProcessSpec,
)
from poolkeeper.utils import create_null_logger

from ._loader import read_toml_file

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

_MODEL_CONFIG = ConfigDict(
    frozen=True,
    extra="ignore",
    alias_generator=to_camel,
    validate_by_name=True,
    validate_by_alias=True,
)


class CommandDefinition(BaseModel):
    """A command as written in a process file.

    Attributes:
        exec: Executable path, or an http(s) URL for hooks.
        arguments: Raw argument string.
        user: User to run as.
        group: Group to run as.
    """

    model_config: ClassVar[ConfigDict] = _MODEL_CONFIG

    exec: str
    arguments: str = ""
    user: str | None = None
    group: str | None = None

    def to_template(self) -> CommandTemplate:
        """Convert to the supervisor's command template."""
        return CommandTemplate(
            exec=self.exec,
            arguments=self.arguments,
            user=self.user or None,
            group=self.group or None,
        )


class NamedCommandDefinition(CommandDefinition):
    """An entry of the ``[[commands]]`` table."""

    name: str = Field(min_length=1)


class WorkerDefinition(BaseModel):
    """An entry of the ``[[workers]]`` list."""

    model_config: ClassVar[ConfigDict] = _MODEL_CONFIG

    address: str = ""
    command: str | CommandDefinition | None = None
    before_starting_command: str | CommandDefinition | None = None
    after_starting_command: str | CommandDefinition | None = None
    before_stopping_command: str | CommandDefinition | None = None
    after_stopping_command: str | CommandDefinition | None = None
    stopping_timeout: NonNegativeInt | None = None

    def to_spec(
        self, name: str, commands: Mapping[str, CommandTemplate]
    ) -> ProcessSpec:
        """Build the worker's ProcessSpec.

        Args:
            name: Display name of the worker.
            commands: Named command table of the file.

        Returns:
            The worker definition with references resolved.

        Raises:
            ConfigValidationError: If the address is empty.
        """
        return ProcessSpec(
            name=name,
            address=self.address,
            command=to_command_ref(self.command, commands),
            before_start=to_command_ref(self.before_starting_command, commands),
            after_start=to_command_ref(self.after_starting_command, commands),
            before_stop=to_command_ref(self.before_stopping_command, commands),
            after_stop=to_command_ref(self.after_stopping_command, commands),
            stop_timeout=self.stopping_timeout,
        )


def to_command_ref(
    value: str | CommandDefinition | None,
    commands: Mapping[str, CommandTemplate],
) -> CommandRef | None:
    """Turn a worker's command value into a command reference.

    A string naming an entry of the command table is a named reference;
    any other string is an inline command whose executable is the string.

    Args:
        value: The value from the worker item.
        commands: Named command table of the file.

    Returns:
        The reference, or None for an absent or empty value.
    """
    match value:
        case None | "":
            return None
        case str() if value in commands:
            return NamedReference(value)
        case str():
            return InlineCommand(CommandTemplate(exec=value))
        case CommandDefinition():
            return InlineCommand(value.to_template())


def _array_of_tables(
    data: dict[str, Any],
    key: str,
    path: Path,
) -> list[Any]:
    value = data.get(key, [])
    if not isinstance(value, list):
        msg = f"'{key}' in {path} must be an array of tables"
        raise ConfigLoadError(msg, path=path)
    return value


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc']) or '<item>'}: {item['msg']}"
        for item in error.errors()
    )


def load_process_file(
    path: Path,
    *,
    logger: "FilteringBoundLogger | None" = None,  # noqa: UP037
) -> ProcessFile:
    """Load a process file.

    Invalid command and worker items are logged at error level and skipped;
    a worker without a main command is logged at warning level and kept.
    Workers are named ``<file-stem> #<n>``, counting valid workers only.

    Args:
        path: The process file.
        logger: Logger for skipped items.

    Returns:
        The loaded process file.

    Raises:
        ConfigLoadError: If the file cannot be read, is not valid TOML, or
            its ``commands``/``workers`` keys are not arrays.
    """
    log = logger or create_null_logger()
    data = read_toml_file(path)

    commands: dict[str, CommandTemplate] = {}
    for index, item in enumerate(_array_of_tables(data, "commands", path), start=1):
        try:
            definition = NamedCommandDefinition.model_validate(item)
        except ValidationError as e:
            log.error(
                f"Invalid command #{index} in {path}",
                error=_format_validation_error(e),
            )
            continue
        if definition.name in commands:
            log.warning(f"Duplicate command '{definition.name}' in {path} ignored")
            continue
        commands[definition.name] = definition.to_template()

    specs: list[ProcessSpec] = []
    for index, item in enumerate(_array_of_tables(data, "workers", path), start=1):
        name = f"{path.stem} #{len(specs) + 1}"
        try:
            spec = WorkerDefinition.model_validate(item).to_spec(name, commands)
        except ValidationError as e:
            log.error(
                f"Invalid worker #{index} in {path}",
                error=_format_validation_error(e),
            )
            continue
        except ConfigValidationError as e:
            log.error(f"Invalid worker #{index} in {path}: {e}")
            continue

        if spec.command is None:
            log.warning(f"Command of worker '{name}' is not defined")
        specs.append(spec)

    return ProcessFile(
        path=path,
        specs=tuple(specs),
        commands=MappingProxyType(commands),
    )
