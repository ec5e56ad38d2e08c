"""structlog setup for the purger.

Every module logs through ``get_logger(__name__)``. A webhook call binds a
ULID with ``set_request_id``; the dispatch worker rebinds the same id around
the scan it runs for that call, so "Read", "Deleted" and "Done" lines can be
traced back to the HTTP request that caused them.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Optional

import structlog
from structlog.types import EventDict, Processor

# ULID of the webhook call currently being handled or scanned for.
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def add_request_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["timestamp"] = time.time()
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True
) -> None:
    """(Re)build the structlog pipeline.

    Called once at import with defaults, again from main.py with the
    environment's LOG_LEVEL / JSON_LOGS, and from run.py with the loaded config.

    Args:
        log_level: Minimum level name; lower levels are filtered out.
        json_output: JSON lines on stdout when True, coloured console otherwise.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        add_timestamp,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        # Off so a later configure_logging() call reaches module-level loggers.
        cache_logger_on_first_use=False,
    )


def get_logger(name: str = "purger") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str]) -> None:
    """Bind *request_id* to every log line emitted from the current context."""
    request_id_var.set(request_id)


def clear_request_id() -> None:
    request_id_var.set(None)


configure_logging()
