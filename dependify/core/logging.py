"""
Structured logging configuration for the orchestration core.

JSON-structured logging with correlation IDs. Every entry carries:
- timestamp (ISO 8601 format)
- level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- service (service name identifier)
- request_id (unique per process() call, when available)
- tenant_id / user_id (when available)
- trace_id / span_id (inside an active OpenTelemetry span)

Request-scoped fields are bound with ``bind_request_context`` which wraps
``structlog.contextvars``; concurrent asyncio tasks each see their own values.
"""
import logging
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

import structlog
from opentelemetry import trace
from structlog.types import Processor

# Service name - overridden via configure_logging(service_name=...)
SERVICE_NAME = "dependify_orchestrator"


def add_service_context(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Add service name and a fallback timestamp to every log entry.
    """
    event_dict["service"] = SERVICE_NAME

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    return event_dict


def add_trace_context(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Add the active span's trace_id and span_id to log entries.
    """
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        event_dict["trace_id"] = format(span_context.trace_id, "032x")
        event_dict["span_id"] = format(span_context.span_id, "016x")
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name identifier (defaults to SERVICE_NAME)
        json_output: If True, output JSON format (for production). If False, use console format (for dev)
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,  # request_id, tenant_id, user_id
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context,
        add_trace_context,  # trace_id, span_id
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured structlog logger bound with context
    """
    return structlog.get_logger(name)


@contextmanager
def bind_request_context(
    request_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Iterator[str]:
    """
    Bind request-scoped identifiers to every log entry emitted inside the block.

    Yields:
        The request ID in effect (generated when not supplied)
    """
    request_id = request_id or generate_request_id()
    fields: Dict[str, Any] = {"request_id": request_id}
    if tenant_id:
        fields["tenant_id"] = tenant_id
    if user_id:
        fields["user_id"] = user_id

    with structlog.contextvars.bound_contextvars(**fields):
        yield request_id


def get_request_context() -> Dict[str, Any]:
    """Return the identifiers currently bound for this task."""
    return dict(structlog.contextvars.get_contextvars())


def generate_request_id() -> str:
    """
    Generate a new unique request ID.

    Returns:
        UUID4 string
    """
    return str(uuid.uuid4())
