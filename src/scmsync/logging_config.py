"""Structured logging for scans, built on structlog over the stdlib ``logging`` module.

Modules keep logging through ``logging.getLogger(__name__)``; structlog's
``ProcessorFormatter`` renders those records, merging in whatever scan or
request identifiers are bound to the current async context.
"""

import logging
import sys

import structlog

# Event keys whose values are credentials
_SECRET_KEYS = frozenset({"token", "password", "secret", "authorization", "private_token", "credential"})
_REDACTED = "***"

_SCAN_KEYS = ("scan_id", "scope_id", "platform")


def redact_secrets(logger, method_name, event_dict):
    """Mask credential-looking keys so tokens never reach a log sink."""
    for key in event_dict.keys() & _SECRET_KEYS:
        if event_dict[key]:
            event_dict[key] = _REDACTED
    return event_dict


def configure_logging(log_level: str = "info", json_output: bool = False) -> None:
    """Install the structlog formatter on the root logger.

    Args:
        log_level: debug/info/warning/error.
        json_output: JSON lines for production; colored console otherwise.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
    ]
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # httpx logs every request URL at INFO; platform paging would drown the scan lines
    for noisy in ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def bind_request_context(trace_id: str) -> None:
    """Bind the API trace id for the duration of one request."""
    structlog.contextvars.bind_contextvars(trace_id=trace_id)


def clear_request_context() -> None:
    structlog.contextvars.unbind_contextvars("trace_id")


def bind_scan_context(scan_id: str, scope_id: str | None = None, platform: str | None = None) -> None:
    """Bind scan identifiers to the current async context."""
    ctx = {"scan_id": scan_id}
    if scope_id:
        ctx["scope_id"] = scope_id
    if platform:
        ctx["platform"] = platform
    structlog.contextvars.bind_contextvars(**ctx)


def clear_scan_context() -> None:
    """Drop the scan identifiers bound by :func:`bind_scan_context`."""
    structlog.contextvars.unbind_contextvars(*_SCAN_KEYS)
