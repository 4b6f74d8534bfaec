"""
Structured logging configuration with request and caller correlation.

Log events are rendered by structlog on top of the standard library logger:
colored console output in development, JSON everywhere else. Request, caller
and realtime channel identifiers are carried in context variables so that
every event emitted while serving a request or a WebSocket stream can be
correlated.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Any, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

from delivery_tracker.core.config import get_settings

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")
user_id_ctx: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
channel_ctx: ContextVar[Optional[str]] = ContextVar("channel", default=None)


def add_correlation_ids(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Attach whichever correlation identifiers are set in this context."""
    for key, var in (
        ("request_id", request_id_ctx),
        ("user_id", user_id_ctx),
        ("channel", channel_ctx),
    ):
        value = var.get()
        if value:
            event_dict.setdefault(key, value)
    return event_dict


def configure_logging() -> None:
    """
    Configure structlog and the standard library root logger.

    Processors are shared between environments; only the final renderer
    differs. Noisy third-party loggers are capped at WARNING.
    """
    settings = get_settings()

    renderer: Processor
    if settings.is_development:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_logger_name,
            add_correlation_ids,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "asyncio", "websockets"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set request ID in context for correlation.

    Args:
        request_id: Optional request ID, generates UUID if not provided

    Returns:
        Request ID that was set
    """
    if request_id is None:
        request_id = str(uuid4())
    request_id_ctx.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_ctx.get()


def set_user_id(user_id: Optional[str]) -> None:
    """Bind the authenticated caller ID to the current context."""
    user_id_ctx.set(user_id)


def set_channel(channel: Optional[str]) -> None:
    """Bind the realtime channel a WebSocket stream is serving."""
    channel_ctx.set(channel)


def clear_context() -> None:
    """Reset the correlation identifiers once a request or stream ends."""
    request_id_ctx.set("")
    user_id_ctx.set(None)
    channel_ctx.set(None)


class PerformanceLogger:
    """
    Context manager logging the duration of a block.

    Blocks slower than ``slow_ms`` are logged at WARNING, failures at ERROR.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        slow_ms: float = 500.0,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.slow_ms = slow_ms
        self.context = context
        self.start_time: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        self.logger.debug(
            "Operation started",
            operation=self.operation,
            **self.context,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return

        duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type is not None:
            self.logger.error(
                "Operation failed",
                operation=self.operation,
                duration_ms=round(duration_ms, 2),
                error_type=exc_type.__name__,
                **self.context,
            )
            return

        log_method = (
            self.logger.warning if duration_ms > self.slow_ms else self.logger.info
        )
        log_method(
            "Operation completed",
            operation=self.operation,
            duration_ms=round(duration_ms, 2),
            **self.context,
        )


def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    **context: Any,
) -> PerformanceLogger:
    """
    Create performance logger context manager.

    Example:
        >>> logger = get_logger(__name__)
        >>> with log_performance(logger, "accept_order", order_id=order_id):
        ...     await engine.accept_order(order_id, caller)
    """
    return PerformanceLogger(logger, operation, **context)
