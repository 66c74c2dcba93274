"""Tests for poolkeeper.config._process_file module."""

from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from poolkeeper.config import CommandDefinition, load_process_file, to_command_ref
from poolkeeper.exceptions import ConfigLoadError
from poolkeeper.supervisor import CommandTemplate, InlineCommand, NamedReference

if TYPE_CHECKING:
    from pytest_mock import MockerFixture

WriteFile = Callable[..., Path]


@pytest.fixture
def write_file(tmp_path: Path) -> WriteFile:
    def _write(content: str, name: str = "app.toml") -> Path:
        path = tmp_path / name
        _ = path.write_text(content)
        return path

    return _write


class TestLoadProcessFile:
    def test_named_and_inline_commands(self, write_file: WriteFile) -> None:
        path = write_file(
            "[[commands]]\n"
            'name = "php"\n'
            'exec = "/usr/bin/php-cgi"\n'
            'arguments = "-b {socket}"\n'
            'user = "www-data"\n'
            "\n"
            "[[workers]]\n"
            'address = "unix:/run/app.socket"\n'
            'command = "php"\n'
            'afterStartingCommand = "https://example.com/health"\n'
            "stoppingTimeout = 20\n"
            "\n"
            "[[workers]]\n"
            'address = "127.0.0.1:9000"\n'
            'command = { exec = "/usr/bin/app", arguments = "--port 9000" }\n'
            'before_stopping_command = "/usr/bin/drain"\n'
        )

        process_file = load_process_file(path)

        first, second = process_file.specs
        assert first.name == "app #1"
        assert first.address == "unix:/run/app.socket"
        assert first.command == NamedReference("php")
        assert first.after_start == InlineCommand(
            CommandTemplate(exec="https://example.com/health")
        )
        assert first.stop_timeout == 20
        assert second.name == "app #2"
        assert second.command == InlineCommand(
            CommandTemplate(exec="/usr/bin/app", arguments="--port 9000")
        )
        assert second.before_stop == InlineCommand(
            CommandTemplate(exec="/usr/bin/drain")
        )
        assert second.stop_timeout is None
        assert process_file.commands["php"] == CommandTemplate(
            exec="/usr/bin/php-cgi", arguments="-b {socket}", user="www-data"
        )
        assert process_file.path == path

    def test_empty_file(self, write_file: WriteFile) -> None:
        process_file = load_process_file(write_file(""))

        assert process_file.specs == ()
        assert dict(process_file.commands) == {}

    def test_invalid_worker_is_skipped_and_numbering_continues(
        self, write_file: WriteFile, mocker: "MockerFixture"
    ) -> None:
        logger = mocker.MagicMock()
        path = write_file(
            '[[workers]]\naddress = ""\ncommand = "a"\n'
            '[[workers]]\naddress = "127.0.0.1:1"\nstoppingTimeout = -5\n'
            '[[workers]]\naddress = "127.0.0.1:2"\ncommand = "b"\n'
        )

        process_file = load_process_file(path, logger=logger)

        assert [spec.name for spec in process_file.specs] == ["app #1"]
        assert process_file.specs[0].address == "127.0.0.1:2"
        assert logger.error.call_count == 2

    def test_missing_command_is_kept_with_warning(
        self, write_file: WriteFile, mocker: "MockerFixture"
    ) -> None:
        logger = mocker.MagicMock()
        path = write_file('[[workers]]\naddress = "127.0.0.1:1"\n')

        process_file = load_process_file(path, logger=logger)

        assert process_file.specs[0].command is None
        logger.warning.assert_called_once()
        assert "not defined" in logger.warning.call_args.args[0]

    def test_duplicate_command_keeps_first(
        self, write_file: WriteFile, mocker: "MockerFixture"
    ) -> None:
        logger = mocker.MagicMock()
        path = write_file(
            '[[commands]]\nname = "x"\nexec = "/bin/first"\n'
            '[[commands]]\nname = "x"\nexec = "/bin/second"\n'
        )

        process_file = load_process_file(path, logger=logger)

        assert process_file.commands["x"].exec == "/bin/first"
        logger.warning.assert_called_once()

    def test_invalid_command_is_skipped(
        self, write_file: WriteFile, mocker: "MockerFixture"
    ) -> None:
        logger = mocker.MagicMock()
        path = write_file(
            '[[commands]]\nname = ""\nexec = "/bin/x"\n'
            '[[commands]]\nname = "ok"\n'
            '[[commands]]\nname = "good"\nexec = "/bin/good"\n'
        )

        process_file = load_process_file(path, logger=logger)

        assert list(process_file.commands) == ["good"]
        assert logger.error.call_count == 2

    def test_empty_command_string_is_absent(self, write_file: WriteFile) -> None:
        path = write_file('[[workers]]\naddress = "127.0.0.1:1"\ncommand = ""\n')

        process_file = load_process_file(path)

        assert process_file.specs[0].command is None

    def test_workers_must_be_an_array(self, write_file: WriteFile) -> None:
        path = write_file('workers = "nope"\n')

        with pytest.raises(ConfigLoadError, match="array of tables"):
            _ = load_process_file(path)

    def test_invalid_toml(self, write_file: WriteFile) -> None:
        path = write_file("[[workers]\n")

        with pytest.raises(ConfigLoadError) as exc_info:
            _ = load_process_file(path)

        assert exc_info.value.line == 1

    def test_commands_table_is_read_only(self, write_file: WriteFile) -> None:
        path = write_file('[[commands]]\nname = "x"\nexec = "/bin/x"\n')

        process_file = load_process_file(path)

        with pytest.raises(TypeError):
            process_file.commands["y"] = CommandTemplate(exec="/bin/y")  # pyright: ignore[reportIndexIssue]


class TestToCommandRef:
    COMMANDS = {"php": CommandTemplate(exec="/usr/bin/php-cgi")}

    @pytest.mark.parametrize("value", [None, ""])
    def test_absent(self, value: str | None) -> None:
        assert to_command_ref(value, self.COMMANDS) is None

    def test_known_name(self) -> None:
        assert to_command_ref("php", self.COMMANDS) == NamedReference("php")

    def test_unknown_name_is_inline_executable(self) -> None:
        assert to_command_ref("/bin/php", self.COMMANDS) == InlineCommand(
            CommandTemplate(exec="/bin/php")
        )

    def test_definition(self) -> None:
        definition = CommandDefinition(exec="/bin/x", user="", group="web")

        assert to_command_ref(definition, self.COMMANDS) == InlineCommand(
            CommandTemplate(exec="/bin/x", group="web")
        )
