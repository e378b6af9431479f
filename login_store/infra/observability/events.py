"""Error events delivered to an optional error observer.

Lock coordination, pipeline and batch dispatch failures are contained at
their layer. Each one is logged and, when an observer is registered, handed
to it as an ErrorEvent so the owning process can react without the failure
propagating.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ErrorEvent:
    """A contained failure.

    Attributes:
        source: Layer that produced the error (lock, pipeline,
            multi_hexists, batch_dispatch)
        error: The exception that was caught
        context: Extra details such as key or resource name
    """

    source: str
    error: BaseException
    context: dict[str, Any] = field(default_factory=dict)


ErrorObserver = Callable[[ErrorEvent], None]


def report_error(
    logger: logging.Logger,
    observer: ErrorObserver | None,
    event: ErrorEvent,
    message: str,
) -> None:
    """Log an error event and forward it to the observer.

    Args:
        logger: Logger of the reporting module
        observer: Optional error observer
        event: Event to report
        message: Log message
    """
    logger.error(
        message,
        extra={"source": event.source, **event.context},
        exc_info=event.error,
    )

    if observer is None:
        return

    try:
        observer(event)
    except Exception:
        logger.exception("Error observer raised", extra={"source": event.source})


__all__ = ["ErrorEvent", "ErrorObserver", "report_error"]
