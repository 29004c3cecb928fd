"""
Structured Logging Configuration

This module provides:
- Centralized structlog configuration
- Request ID and user ID tracking via context variables
- JSON and console output formatters
- ASGI middleware for request tracking
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional, Any

import structlog
from structlog.types import Processor

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

USER_ID_HEADER = b"x-user-id"


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def get_user_id() -> Optional[str]:
    """Get the current tenant from context."""
    return user_id_var.get()


def set_user_id(user_id: str) -> None:
    user_id_var.set(user_id)


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid.uuid4())[:8]


def add_request_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add request context to log entries."""
    request_id = get_request_id()
    user_id = get_user_id()

    if request_id:
        event_dict["request_id"] = request_id
    if user_id and "user_id" not in event_dict:
        event_dict["user_id"] = user_id

    return event_dict


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add ISO timestamp to log entries."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def configure_logging(json_format: bool = False, log_level: str = "INFO") -> None:
    """
    Configure structlog for the application.

    Args:
        json_format: If True, output JSON logs (for production)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        add_request_context,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        # Production: JSON output
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        # Development: Colored console output
        shared_processors.append(structlog.dev.set_exc_info)
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    shared_processors.append(renderer)

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Quiet the noisy ones
    for logger_name in ["httpx", "httpcore", "sqlalchemy.engine", "asyncio"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


class RequestContextMiddleware:
    """
    ASGI middleware that adds request context for logging.

    Assigns a request ID, records the caller's X-User-ID and logs request
    timing and status.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        set_request_id(generate_request_id())
        for name, value in scope.get("headers", []):
            if name == USER_ID_HEADER and value:
                set_user_id(value.decode("latin-1"))
                break

        logger = structlog.get_logger("request")
        start_time = time.perf_counter()

        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "/")

        logger.info("Request started", method=method, path=path)

        response_status = None

        async def send_wrapper(message):
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message.get("status", 0)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            logger.error(
                "Request failed",
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "Request completed",
                method=method,
                path=path,
                status=response_status,
                duration_ms=round(duration_ms, 2),
            )

            request_id_var.set(None)
            user_id_var.set(None)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """
    Get a structlog logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
