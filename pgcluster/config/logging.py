"""
Structured logging configuration using structlog.

Every record carries the operator name, version and environment. Records
emitted while a cluster is being reconciled also carry the cluster and its
namespace, bound through structlog context variables.
"""
import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import EventDict, Processor

from pgcluster.config.settings import settings

# Loggers of libraries that are chatty at INFO
_QUIET_LOGGERS = ("uvicorn.access", "kubernetes_asyncio", "asyncpg")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add operator identity to log events."""
    event_dict["app"] = settings.app_name
    event_dict["version"] = settings.app_version
    event_dict["environment"] = settings.environment
    return event_dict


def configure_logging() -> None:
    """Configure structlog and the standard library root logger."""
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
        structlog.processors.format_exc_info,
    ]

    if settings.is_production:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
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

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def cluster_log_context(cluster: str, namespace: str) -> Iterator[None]:
    """Bind cluster and namespace to every record logged inside the block."""
    with structlog.contextvars.bound_contextvars(cluster=cluster, namespace=namespace):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured structlog logger.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
