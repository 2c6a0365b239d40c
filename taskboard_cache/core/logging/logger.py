#!/usr/bin/env python3
"""
Structured Logging Module using structlog

This module provides structured logging for the data layer with:
- Correlation ID injection (ties cache/listener events to one dashboard action)
- Stage tagging for execution flow (see constants.Stage)
- JSON formatting for log aggregation
- Automatic PII redaction (employee emails and phone numbers end up in keys)

Architectural Decision: structlog for production logging
- Context-aware logging with automatic field injection
- JSON output for log aggregation
- Async-safe via context variables
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum

import structlog
from structlog.types import EventDict, WrappedLogger

from taskboard_cache.core.config.settings import get_settings

# Context variable for the correlation id of the current logical task
correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def add_correlation_id(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add correlation ID to log event from context variable.

    STAGE-L.1: Correlation ID injection
    """
    correlation_id = correlation_id_ctx.get()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add ISO timestamp to log event.

    STAGE-L.2: Timestamp injection
    """
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


_EMAIL_RE = re.compile(r"\b[\w.-]+@[\w.-]+\.\w+\b")
_PHONE_RE = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")


def redact_pii(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Redact PII from the message and from cache-key fields.

    STAGE-L.3: PII redaction

    Patterns redacted:
    - Email addresses -> [EMAIL]
    - Phone numbers -> [PHONE]

    Cache keys embed filter values (e.g. ``{"email": ...}``), so the
    ``cache_key`` and ``prefix`` fields are scrubbed as well.
    """
    for field in ("event", "cache_key", "prefix"):
        value = event_dict.get(field)
        if isinstance(value, str):
            value = _EMAIL_RE.sub("[EMAIL]", value)
            value = _PHONE_RE.sub("[PHONE]", value)
            event_dict[field] = value

    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add log level name to event dict.

    STAGE-L.4: Log level injection
    """
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Setup structured logging with structlog.

    STAGE-L: Logging initialization

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
    """
    settings = get_settings()

    log_level = log_level or settings.logging.LOG_LEVEL
    log_format = log_format or settings.logging.LOG_FORMAT

    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper())
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_correlation_id,
            add_timestamp,
            structlog.stdlib.add_log_level,
            add_log_level_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_pii,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value", stage=Stage.CACHE_LOOKUP)
    """
    return structlog.get_logger(name)


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current logical task."""
    correlation_id_ctx.set(correlation_id)


def get_correlation_id() -> str | None:
    """Get the current correlation ID, if any."""
    return correlation_id_ctx.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID from context."""
    correlation_id_ctx.set(None)


def log_stage(
    logger: structlog.stdlib.BoundLogger,
    stage: str | Enum,
    message: str,
    level: str = "info",
    **kwargs
) -> None:
    """
    Log a message with stage information.

    Args:
        logger: Logger instance
        stage: Stage identifier (a constants.Stage member or a plain string)
        message: Log message
        level: Log level (debug, info, warning, error, critical)
        **kwargs: Additional fields to log

    Usage:
        log_stage(logger, Stage.CACHE_LOOKUP, "Memory hit", cache_key="tasks:getAll")
    """
    stage_value = stage.value if isinstance(stage, Enum) else stage
    log_func = getattr(logger, level.lower())
    log_func(message, stage=stage_value, **kwargs)
