"""Logging configuration for structured logging."""
import logging
import sys


def configure_structured_logging(level: str = "INFO", structured: bool = True):
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        # Structured lines are already JSON formatted
        format="%(message)s" if structured else "%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )

    # Disable excessive third-party logging
    logging.getLogger("faker").setLevel(logging.WARNING)
