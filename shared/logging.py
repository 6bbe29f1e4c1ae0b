"""
Shared logging configuration for the clinic permissions engine.
"""

import sys
import structlog
import logging
import time
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variables for the acting principal
principal_id_var: ContextVar[Optional[str]] = ContextVar('principal_id', default=None)
tenant_id_var: ContextVar[Optional[str]] = ContextVar('tenant_id', default=None)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_correlation_context,
            add_timestamp,
            structlog.processors.JSONRenderer()
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


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to log events."""
    # Logger names are "<service>.<component>"
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["service"] = logger_name.split(".")[0]

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add correlation context to log events."""
    principal_id = principal_id_var.get()
    if principal_id:
        event_dict.setdefault("principal_id", principal_id)

    tenant_id = tenant_id_var.get()
    if tenant_id:
        event_dict["tenant_id"] = tenant_id

    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add high-precision timestamp to log events."""
    event_dict["timestamp"] = time.time()
    return event_dict


def set_principal_context(principal_id: Optional[str] = None, tenant_id: Optional[str] = None):
    """Set acting principal context in logging."""
    if principal_id:
        principal_id_var.set(principal_id)
    if tenant_id:
        tenant_id_var.set(tenant_id)


def clear_context():
    """Clear the acting principal context."""
    principal_id_var.set(None)
    tenant_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
