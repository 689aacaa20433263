"""
Structured logging configuration with structlog.

- All logs to STDOUT/STDERR for container log collection
- JSON logging in production, colored console output elsewhere
- Third-party library noise filtering
- Correlation IDs (HTTP requests and WebSocket frames) merged from contextvars
"""

import logging
import logging.config
from typing import Any
import structlog
from structlog.types import EventDict, Processor
from groupchat.config import settings


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add service name, app name, version and environment to every entry."""
    event_dict["service"] = "groupchat-core"
    event_dict["app"] = settings.APP_NAME
    event_dict["version"] = settings.APP_VERSION
    event_dict["environment"] = settings.ENVIRONMENT
    return event_dict


def add_severity_level(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Map the structlog level onto an upper-case severity label."""
    if "level" in event_dict:
        event_dict["severity"] = event_dict["level"].upper()
    return event_dict


def add_trace_id_alias(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Expose correlation_id as trace_id for the observability stack."""
    if "correlation_id" in event_dict:
        event_dict["trace_id"] = event_dict["correlation_id"]
    elif "request_id" in event_dict:
        event_dict["trace_id"] = event_dict["request_id"]

    return event_dict


def censor_sensitive_data(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Redact passwords, tokens, keys and authorization headers."""
    sensitive_keys = ["password", "token", "api_key", "secret", "authorization"]

    for key in list(event_dict.keys()):
        if any(sensitive in key.lower() for sensitive in sensitive_keys):
            event_dict[key] = "***REDACTED***"

    return event_dict


def _renderer() -> Processor:
    if settings.ENVIRONMENT == "production":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def setup_logging() -> None:
    """
    Configure structlog and the standard library logging tree.

    Application code logs through structlog; third-party libraries log
    through stdlib handlers that share the same processor chain, so every
    line ends up in one format.
    """
    log_level_name = settings.LOG_LEVEL.upper()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_app_context,
        add_severity_level,
        add_trace_id_alias,
        censor_sensitive_data,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=shared_processors + [_renderer()],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processor": _renderer(),
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "default": {
                "level": log_level_name,
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "structured",
            },
            "error": {
                "level": "ERROR",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": "structured",
            },
        },
        "loggers": {
            "": {
                "handlers": ["default", "error"],
                "level": log_level_name,
                "propagate": False,
            },
            "groupchat": {
                "handlers": ["default", "error"],
                "level": log_level_name,
                "propagate": False,
            },
            "uvicorn": {
                "handlers": ["default"],
                "level": log_level_name,
                "propagate": False,
            },
            "uvicorn.error": {
                "handlers": ["default", "error"],
                "level": log_level_name,
                "propagate": False,
            },
            # Disabled - AccessLogMiddleware writes access logs
            "uvicorn.access": {
                "handlers": [],
                "level": "CRITICAL",
                "propagate": False,
            },
            "pymongo": {
                "handlers": ["default"],
                "level": "WARNING",
                "propagate": False,
            },
            "aiohttp": {
                "handlers": ["default"],
                "level": "WARNING",
                "propagate": False,
            },
            "asyncio": {
                "handlers": ["default"],
                "level": "WARNING",
                "propagate": False,
            },
        },
    })

    get_logger(__name__).info(
        "logging_configured",
        log_level=log_level_name,
        environment=settings.ENVIRONMENT,
        format="json" if settings.ENVIRONMENT == "production" else "console",
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("message_created", message_id="...", group_id="...")
    """
    return structlog.get_logger(name)
