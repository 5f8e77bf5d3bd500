"""Logging setup driven by the ``logging`` section of the configuration."""

import logging
import sys
from typing import Optional

from pythonjsonlogger import jsonlogger

from ..config.models import LoggingConfig

JSON_FIELDS = "%(asctime)s %(name)s %(levelname)s %(message)s"
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _formatter(fmt: str) -> logging.Formatter:
    if fmt == "text":
        return logging.Formatter(TEXT_FORMAT)
    return jsonlogger.JsonFormatter(JSON_FIELDS, timestamp=True)


def setup_logger(name: str = "mempoke", config: Optional[LoggingConfig] = None) -> logging.Logger:
    """
    Configure the process logger from a LoggingConfig.

    Child loggers (``logger.getChild(...)``) handed to the engine components
    propagate to the handler installed here. Calling it again replaces the
    handler, so the CLI can log with defaults before the config is loaded.

    Args:
        name: Logger name
        config: Level and format (json or text); defaults to INFO/json

    Returns:
        logging.Logger: Configured logger instance
    """
    config = config or LoggingConfig()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, config.level))

    # Remove existing handlers to avoid duplicates
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_formatter(config.format))
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger
