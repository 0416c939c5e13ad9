"""structlog setup for applications embedding the control channel."""
import os

import structlog


def configure_logging(level=None):
    """
    Configure structlog console output.

    Args:
        level (str): Level name; defaults to $L2TP_LOG_LEVEL, then "info"
    """
    if level is None:
        level = os.environ.get("L2TP_LOG_LEVEL", "info")
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.stdlib.NAME_TO_LEVEL.get(level.lower(), 20)
        ),
    )
