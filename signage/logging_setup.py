"""Logging configuration shared by the web app and the CLI."""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_FILE = "signage.log"


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    max_bytes: int = 5_000_000,
    backup_count: int = 5,
    loggers: Iterable[logging.Logger] = (),
) -> None:
    """
    Attach handlers to the 'signage' logger and any extra loggers given.

    A rotating file handler is added when log_dir is set; a console handler
    is always present. Calling this twice does not duplicate handlers.
    """
    formatter = logging.Formatter(LOG_FORMAT)
    targets = [logging.getLogger("signage"), *loggers]

    handlers = []
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    handlers.append(stream)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, LOG_FILE), maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for logger in targets:
        logger.setLevel(level.upper())
        for handler in handlers:
            if not any(type(h) is type(handler) for h in logger.handlers):
                logger.addHandler(handler)


def setup_app_logging(app) -> None:
    """Configure logging from a Flask app's LOG_* settings."""
    setup_logging(
        level=app.config["LOG_LEVEL"],
        log_dir=app.config.get("LOG_DIR"),
        max_bytes=app.config["LOG_MAX_BYTES"],
        backup_count=app.config["LOG_BACKUP_COUNT"],
        loggers=[app.logger, logging.getLogger("werkzeug")],
    )
