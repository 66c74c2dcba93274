"""Placeholder substitution for command templates.

Commands are resolved in two passes. The load-time pass replaces the
address, credential and PID-file markers. The PID marker cannot be known
until the daemon is running, so it survives the first pass and is replaced
by :meth:`ResolvedCommand.with_pid` right before a hook executes.

Resolution never quotes or escapes anything; that is the concern of the
layer that builds the argument vector.
"""

from dataclasses import dataclass, replace

from ._models import CommandTemplate, ResolvedCommand

WEB_SCHEMES: tuple[str, ...] = ("http://", "https://")

DEFAULT_FETCH_TOOL: str = "wget"

FETCH_ARGUMENTS: str = "-q -S -O-"
"""Quiet, print server response, write the body to stdout."""


@dataclass(frozen=True, slots=True)
class TemplateContext:
    """Values available to the load-time substitution pass.

    Attributes:
        address: Worker address, used for both ``{socket}`` and ``{address}``.
        pid_file: Path of the worker's PID file.
        user: Run-as user of the command being resolved.
        group: Run-as group of the command being resolved.
    """

    address: str
    pid_file: str
    user: str | None = None
    group: str | None = None

    def markers(self) -> tuple[tuple[str, str], ...]:
        """Return marker/value pairs in substitution order."""
        return (
            ("{socket}", self.address),
            ("{address}", self.address),
            ("{user}", self.user or ""),
            ("{group}", self.group or ""),
            ("{pidFile}", self.pid_file),
        )


def substitute(value: str | None, context: TemplateContext) -> str | None:
    """Replace the load-time markers in a template string.

    Args:
        value: Raw template string.
        context: Values to substitute.

    Returns:
        The substituted string, or None when ``value`` is empty or None.
    """
    if not value:
        return None
    for marker, replacement in context.markers():
        value = value.replace(marker, replacement)
    return value


def is_web_command(template: CommandTemplate) -> bool:
    """Check whether a template's executable is an http(s) URL."""
    return template.exec.lower().startswith(WEB_SCHEMES)


def rewrite_web_command(
    template: CommandTemplate,
    *,
    fetch_tool: str = DEFAULT_FETCH_TOOL,
) -> CommandTemplate:
    """Turn a URL executable into a fetch-tool invocation.

    ``exec = "https://host/ping"`` becomes ``wget -q -S -O- https://host/ping``.
    When the template already has arguments they are kept and the URL is
    appended to them instead of the default fetch flags.

    Args:
        template: The template to inspect.
        fetch_tool: Executable used to fetch the URL.

    Returns:
        The rewritten template, or ``template`` itself if it is not a URL.
    """
    if not is_web_command(template):
        return template

    url = template.exec
    prefix = template.arguments or FETCH_ARGUMENTS
    arguments = f"{prefix} {url}"
    return replace(template, exec=fetch_tool, arguments=arguments)


def resolve_command(
    template: CommandTemplate | None,
    *,
    address: str,
    pid_file: str,
) -> ResolvedCommand | None:
    """Run the load-time pass over a whole command template.

    Args:
        template: Template to resolve.
        address: Worker address.
        pid_file: Worker PID file path.

    Returns:
        The resolved command, or None for an absent template or one with an
        empty executable.
    """
    if template is None:
        return None

    context = TemplateContext(
        address=address,
        pid_file=pid_file,
        user=template.user,
        group=template.group,
    )
    exec_ = substitute(template.exec, context)
    if exec_ is None:
        return None

    return ResolvedCommand(
        exec=exec_,
        arguments=substitute(template.arguments, context) or "",
        user=template.user,
        group=template.group,
    )
