"""
Structured event logging.

Library modules log plain messages through ``logging.getLogger(__name__)``.
Health transitions, recovery attempts and user notifications are also
emitted as structlog events so a host can ship them as JSON lines.

Set ``WORKGUARD_JSON_LOGGING=true`` (and optionally ``WORKGUARD_LOG_LEVEL``)
to switch the whole process to JSON output at import time.
"""

import logging
import os
import sys
from typing import IO, Optional

import structlog
from pythonjsonlogger import jsonlogger

JSON_LOG_FORMAT = '%(timestamp)s %(levelname)s %(name)s %(message)s'


def setup_json_logging(
    log_level: str = "INFO",
    service_name: str = "workguard",
    stream: Optional[IO[str]] = None,
):
    """
    Route stdlib and structlog output through one JSON stream.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        service_name: Bound as ``service`` on every structlog event
        stream: Output stream, stdout by default
    """
    level = getattr(logging, log_level.upper())
    stream = stream or sys.stdout

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(jsonlogger.JsonFormatter(JSON_LOG_FORMAT, timestamp=True))
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def log_component_transition(
    logger: structlog.BoundLogger,
    component: str,
    old_status: str,
    new_status: str,
    reason: Optional[str] = None,
    **extra
):
    """Emit ``component_transition``; entering error or degraded is a warning."""
    emit = logger.warning if new_status in ("error", "degraded") else logger.info
    emit(
        "component_transition",
        component=component,
        old_status=old_status,
        new_status=new_status,
        reason=reason,
        **extra
    )


def log_recovery_action(
    logger: structlog.BoundLogger,
    action_type: str,
    status: str,
    component: str,
    **extra
):
    """Emit ``recovery_action`` with status completed, failed or exhausted."""
    emit = logger.info if status == "completed" else logger.warning
    emit(
        "recovery_action",
        action=action_type,
        status=status,
        component=component,
        **extra
    )


if os.getenv("WORKGUARD_JSON_LOGGING", "false").lower() == "true":
    setup_json_logging(os.getenv("WORKGUARD_LOG_LEVEL", "INFO"))
