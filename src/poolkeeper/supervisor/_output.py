"""Event sink implementations for the supervisor system."""

import logging
from typing import TYPE_CHECKING, final

from ._models import WorkerEvent, WorkerEventType  # noqa: TC001

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

_LEVELS: dict[WorkerEventType, int] = {
    WorkerEventType.CRASHED: logging.WARNING,
    WorkerEventType.FAILED: logging.ERROR,
}


@final
class LoggingEventSink:
    """Event sink that writes each event as one log line.

    Events use their message as the log event; the PID is appended as a
    ``pid=`` field when known. Crashes log at warning level and failures at
    error level, everything else at info level.
    """

    __slots__ = ("_logger",)

    def __init__(self, logger: "FilteringBoundLogger") -> None:  # noqa: UP037
        """Initialize the sink.

        Args:
            logger: Logger receiving the event lines.
        """
        self._logger = logger

    async def write_event(self, event: WorkerEvent) -> None:
        """Write a worker lifecycle event to the log.

        Args:
            event: The lifecycle event to record.
        """
        level = _LEVELS.get(event.event_type, logging.INFO)
        message = event.message or f"{event.worker_name}: {event.event_type.value}"
        if event.pid:
            self._logger.log(level, message, pid=event.pid)
        else:
            self._logger.log(level, message)
