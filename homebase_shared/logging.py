"""
Structured logging for the Homebase API Security Gateway.

Every line is one JSON object with an ISO-8601 UTC ``timestamp``, the
service name, and whatever request context the pipeline has bound so far
(``request_id`` from the middleware, ``subject_id``/``household_id`` once
the caller is authenticated).
"""

import logging
import sys
import uuid
from typing import Any, Dict, List, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars


class ServiceContext:
    """Stamps the owning service on every event."""

    def __init__(self, service_name: str):
        self.service_name = service_name

    def __call__(self, logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", self.service_name)
        return event_dict


def render_processors(service_name: str) -> List[Any]:
    """Processors shared by every logger, ending in the JSON renderer."""
    return [
        merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        ServiceContext(service_name),
        structlog.processors.JSONRenderer(),
    ]


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            *render_processors(service_name),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind the request ID for the current request, generating one if absent."""
    request_id = request_id or str(uuid.uuid4())
    bind_contextvars(request_id=request_id)
    return request_id


def bind_subject_context(subject_id: str, household_id: Optional[str] = None) -> None:
    """Bind the authenticated caller to the current request."""
    if household_id:
        bind_contextvars(subject_id=subject_id, household_id=household_id)
    else:
        bind_contextvars(subject_id=subject_id)


def clear_context() -> None:
    clear_contextvars()


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
