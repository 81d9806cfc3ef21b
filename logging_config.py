#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Logging configuration for the video curator.

Provides structured JSON logging capabilities and setup functions.
"""

import logging
import logging.handlers
import json
import sys
from typing import Dict, Any, Optional

LOG_FILE = "video_curator.log"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Converts log records into JSON objects with standardized fields plus any
    context passed through StructuredLogger keyword arguments.
    """

    def format(self, record):
        """Format the log record as a JSON object."""
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "name": record.name,
            "file": record.filename,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        extra_data = getattr(record, "data", None)
        if isinstance(extra_data, dict):
            for key, value in extra_data.items():
                log_data[key] = value

        return json.dumps(log_data, default=str)


class StructuredLogger:
    """Logger that supports structured logging with additional context data."""

    def __init__(self, name: str, extra: Optional[Dict[str, Any]] = None):
        self.logger = logging.getLogger(name)
        self.extra = extra or {}

    def bind(self, **kwargs) -> "StructuredLogger":
        """Return a child logger that always carries the given context fields."""
        child = StructuredLogger(self.logger.name, {**self.extra, **kwargs})
        return child

    def _log(self, level: int, message: str, exc_info=None, **kwargs):
        """Internal method to handle logging with extra data."""
        extra_data = {**self.extra}
        if kwargs:
            extra_data.update(kwargs)
        self.logger.log(level, message, exc_info=exc_info, extra={"data": extra_data})

    def debug(self, message: str, **kwargs):
        """Log a debug message with structured data."""
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log an info message with structured data."""
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log a warning message with structured data."""
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, exc_info=True, **kwargs):
        """Log an error message with structured data."""
        self._log(logging.ERROR, message, exc_info=exc_info, **kwargs)

    def critical(self, message: str, exc_info=True, **kwargs):
        """Log a critical message with structured data."""
        self._log(logging.CRITICAL, message, exc_info=exc_info, **kwargs)


def setup_logging(log_level_console=logging.INFO, log_level_file=logging.DEBUG,
                  structured=True, log_file: Optional[str] = LOG_FILE):
    """Configure logging to console and, if log_file is set, a rotating file."""
    root_logger = logging.getLogger()

    # Remove any existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    formatter = JSONFormatter() if structured else logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if log_file:
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(log_level_file)
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Could not create log file '{log_file}': {e}", file=sys.stderr)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level_console)
    root_logger.addHandler(console_handler)

    root_logger.setLevel(min(log_level_console, log_level_file))

    # httpx logs every request at INFO; the prober already logs what matters
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)

    logging.getLogger(__name__).info("Logging setup complete.")
