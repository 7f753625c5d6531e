"""
Structured logging setup.

Usage:
    from featurestate.core.config import settings
    from featurestate.core.logging import configure_logging

    configure_logging(settings)

    logger = structlog.get_logger()
    logger.info("feature.activated", feature="checkout", kind="user", id="42")
"""

import logging
import sys

import structlog

from featurestate.core.config import Settings


def configure_logging(settings: Settings) -> None:
    """
    Configure stdlib logging and structlog from settings.

    log_format:
    - "json": one JSON object per line (production)
    - "text": human readable console output (development)
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
