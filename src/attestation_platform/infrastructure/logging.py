"""Structured logging with structlog.

Application and adapter modules log through ``get_logger`` with snake_case
event names and key/value context. Domain services use stdlib ``logging``;
both end up on stdout at the same level.

Request-scoped values (request id, path) are bound with
``bind_request_context`` and appear on every line logged by the task. Lines
logged inside a span also carry its ``trace_id``.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping

import structlog

from attestation_platform.infrastructure.tracing import current_trace_id


def add_trace_id(logger: Any, method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """structlog processor adding the active trace id."""
    trace_id = current_trace_id()
    if trace_id and "trace_id" not in event_dict:
        event_dict["trace_id"] = trace_id
    return event_dict


def setup_logging(level: str = "INFO", log_format: str = "json") -> None:
    """Configure stdlib logging and structlog.

    Args:
        level: DEBUG, INFO, WARNING or ERROR.
        log_format: ``json`` for production, ``console`` for local runs.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_trace_id,
        structlog.processors.format_exc_info,
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **context: Any) -> structlog.BoundLogger:
    logger = structlog.get_logger(name)
    return logger.bind(**context) if context else logger


def bind_request_context(**context: Any) -> None:
    structlog.contextvars.bind_contextvars(**context)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
