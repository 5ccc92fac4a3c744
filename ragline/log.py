"""Structured logging configuration shared by the app and scripts."""
import logging

import structlog


def configure_logging(level: int = logging.INFO, json: bool = True) -> None:
    """Configure structlog on top of the standard library logger.

    Args:
        level: Minimum log level
        json: Render JSON lines (app) instead of the console renderer (scripts)
    """
    logging.basicConfig(format="%(message)s", level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
