"""
Logging for the operator.

Every event is rendered by structlog with the operator's identity and the
namespace it watches. While a reconciliation pass runs, the dispatcher
enters ``reconcile_context`` so that everything logged underneath (the
reconciler, the cluster store) carries the SQLiteDB's namespace, name and
a short id for the pass without threading them through each call.
"""
import logging
import sys
import uuid
from typing import Any, ContextManager, Dict, List

import structlog
from structlog.types import EventDict, Processor

from sqlite_operator.config.settings import settings

# Client libraries that log every request.
QUIET_LOGGERS: Dict[str, int] = {
    "kubernetes_asyncio": logging.WARNING,
    "aiohttp": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def add_operator_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp the operator identity and watch scope on every event."""
    event_dict.setdefault("operator", settings.app_name)
    event_dict.setdefault("operator_version", settings.app_version)
    event_dict.setdefault("watch_namespace", settings.watch_namespace or "*")
    return event_dict


def add_severity_level(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mirror the level as ``severity`` for log collectors that expect it."""
    if "level" in event_dict:
        event_dict["severity"] = event_dict["level"].upper()
    return event_dict


def _renderer() -> Processor:
    if settings.is_production:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging() -> None:
    """Configure structlog and the stdlib root logger for the operator."""
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_operator_context,
        add_severity_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _renderer(),
    ]

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
        level=getattr(logging, settings.log_level),
    )
    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def reconcile_context(namespace: str, name: str) -> ContextManager:
    """
    Bind one SQLiteDB pass into the logging context.

    Example:
        with reconcile_context("shop", "orders"):
            await reconciler.reconcile("shop", "orders")
    """
    return structlog.contextvars.bound_contextvars(
        namespace=namespace,
        name=name,
        reconcile_id=uuid.uuid4().hex[:8],
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured structlog logger.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
