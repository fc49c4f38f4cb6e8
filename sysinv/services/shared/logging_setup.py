"""
Logging bootstrap. structlog on top of stdlib logging, configured once by the
entry point; the returned logger is passed to each component.
"""

import logging

import structlog

from sysinv.services.shared.config import Settings

_LEVELS = {
    "debug":   logging.DEBUG,
    "info":    logging.INFO,
    "warn":    logging.WARNING,
    "warning": logging.WARNING,
    "error":   logging.ERROR,
}


def configure_logging(settings: Settings):
    """Set the stdlib level from settings and return the service logger."""
    level = _LEVELS.get(settings.log_level, logging.INFO)
    logging.basicConfig(level=level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger().bind(service="sysinv")
