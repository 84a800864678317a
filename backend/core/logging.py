"""
Logging setup.

Standard-library loggers (billing services) and structlog loggers (request
path) share one stream; structlog renders key/value pairs, or JSON in
production.
"""

import logging
import sys

import structlog


def setup_logging(json_output: bool = False, level: int = logging.INFO) -> None:
    """Configure stdlib logging and structlog once at process start."""
    logging.basicConfig(
        level=level,
        stream=sys.stdout,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
