import logging
import typing as t
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

LOGGER_NAME = "fetchbrain"

# Scraped items and credentials never reach log output.
_REDACTED_FIELDS = frozenset({"api_key", "authorization", "data", "payload"})


def redact_fields(
    logger: t.Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Drop scraped payloads and credentials from a log event."""
    for key in _REDACTED_FIELDS.intersection(event_dict):
        del event_dict[key]
    return event_dict


def setup_logging(*, debug: bool = False, json_logs: bool = False) -> None:
    """
    Configure stdlib and structlog output for the ``fetchbrain`` logger.

    Parameters
    ----------
    debug : bool, optional
        Emit debug events.
    json_logs : bool, optional
        Render one JSON object per line instead of the coloured console format.
    """
    logging.basicConfig(format="%(message)s")
    logging.getLogger(name=LOGGER_NAME).setLevel(level=logging.DEBUG if debug else logging.INFO)
    renderers: list[structlog.types.Processor] = (
        [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        if json_logs
        else [structlog.dev.ConsoleRenderer(colors=True)]
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,  # url/label bound per request
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            redact_fields,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            *renderers,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def enable_debug() -> None:
    logging.getLogger(name=LOGGER_NAME).setLevel(level=logging.DEBUG)


@contextmanager
def logging_context(**required_context) -> Iterator[None]:
    """Bind the given keys for the block, leaving keys already bound untouched."""
    current = structlog.contextvars.get_contextvars()
    to_bind = {key: value for key, value in required_context.items() if key not in current}
    if not to_bind:
        yield
        return
    with structlog.contextvars.bound_contextvars(**to_bind):
        yield
