"""Structured logging setup.

Configures structlog on top of the standard library logging module and
provides delivery-scoped loggers. Every log line emitted while processing
one webhook delivery carries the same correlation fields.
"""

import logging
import sys

import structlog

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog and the root stdlib logger.

    Args:
        level: Minimum level name (debug, info, warning, error, critical).
        fmt: "json" for machine-readable output, "console" for local
             development.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=_LEVELS.get(level, logging.INFO),
        force=True,
    )

    renderer = (
        structlog.dev.ConsoleRenderer()
        if fmt == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_delivery_logger(
    delivery_id: str,
    owner: str,
    repo: str,
    entity_number: int,
):
    """Create a logger bound to a single webhook delivery.

    Args:
        delivery_id: X-GitHub-Delivery identifier.
        owner: Repository owner.
        repo: Repository name.
        entity_number: PR or issue number.

    Returns:
        A structlog logger carrying the correlation fields.
    """
    return structlog.get_logger("mentionbot.request").bind(
        delivery_id=delivery_id,
        owner=owner,
        repo=repo,
        entity_number=entity_number,
    )


def redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact.
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)
