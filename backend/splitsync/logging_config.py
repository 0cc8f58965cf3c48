"""Logging configuration for the sync service."""

import logging
import sys
from pathlib import Path

# Create logs directory lazily so importing this module has no side effects
LOGS_DIR = Path(__file__).parent.parent / "logs"

# Define log format
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-28s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER_NAME = "splitsync"


def setup_logging(log_to_file: bool = True) -> logging.Logger:
    """Configure logging for the application."""

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    handlers: list[logging.Handler] = []

    # File handler - write to logs/app.log
    if log_to_file:
        LOGS_DIR.mkdir(exist_ok=True)
        file_handler = logging.FileHandler(LOGS_DIR / "app.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # Console handler - write to stdout
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in handlers:
        root_logger.addHandler(handler)

    # Configure uvicorn loggers to use our handlers
    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        logger = logging.getLogger(logger_name)
        logger.handlers = []
        for handler in handlers:
            logger.addHandler(handler)
        logger.propagate = False

    # Plaid's generated client is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.INFO)

    # App logger
    app_logger = logging.getLogger(ROOT_LOGGER_NAME)
    app_logger.setLevel(logging.DEBUG)

    return app_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
