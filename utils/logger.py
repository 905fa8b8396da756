"""
Centralized logging configuration for the federated search aggregator.

Structured JSON logging with:
- Rotating file handlers (app log and error log)
- Optional human-readable console output
- Environment-based configuration (LOG_LEVEL, LOG_TO_CONSOLE, LOG_DIR)

Structured fields are passed through ``extra={"extra_fields": {...}}`` and are
merged into the JSON record.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class JsonFormatter(logging.Formatter):
    """Formats log records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_data.update(extra_fields)

        return json.dumps(log_data, default=str)


class LoggerConfig:
    """
    Process-wide logger configuration.

    ``setup_logging`` is idempotent; it is invoked lazily by ``get_logger``.
    """

    LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_TO_CONSOLE = os.getenv("LOG_TO_CONSOLE", "false").lower() == "true"
    MAX_BYTES = 5 * 1024 * 1024  # 5MB per file
    BACKUP_COUNT = 3

    _initialized = False

    @classmethod
    def setup_logging(cls) -> None:
        """Install the JSON file handlers (and console handler if enabled) on the root logger."""
        if cls._initialized:
            return

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, cls.LOG_LEVEL, logging.INFO))

        json_formatter = JsonFormatter()

        try:
            cls.LOG_DIR.mkdir(parents=True, exist_ok=True)
        except OSError:
            # Read-only working directory: fall back to console logging only
            cls.LOG_TO_CONSOLE = True
        else:
            app_handler = logging.handlers.RotatingFileHandler(
                cls.LOG_DIR / "federated_search.log",
                maxBytes=cls.MAX_BYTES,
                backupCount=cls.BACKUP_COUNT,
                encoding="utf-8",
            )
            app_handler.setLevel(logging.DEBUG if cls.LOG_LEVEL == "DEBUG" else logging.INFO)
            app_handler.setFormatter(json_formatter)
            root_logger.addHandler(app_handler)

            error_handler = logging.handlers.RotatingFileHandler(
                cls.LOG_DIR / "error.log",
                maxBytes=cls.MAX_BYTES,
                backupCount=cls.BACKUP_COUNT,
                encoding="utf-8",
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(json_formatter)
            root_logger.addHandler(error_handler)

        if cls.LOG_TO_CONSOLE:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(logging.WARNING)
            console_handler.setFormatter(
                logging.Formatter(
                    fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            root_logger.addHandler(console_handler)

        cls._initialized = True

        logging.getLogger(__name__).info(
            "Logging system initialized",
            extra={
                "extra_fields": {
                    "log_level": cls.LOG_LEVEL,
                    "log_dir": str(cls.LOG_DIR),
                    "console_logging": cls.LOG_TO_CONSOLE,
                }
            },
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if not cls._initialized:
            cls.setup_logging()
        return logging.getLogger(name)


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Example:
        >>> from utils.logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.warning("Source failed", extra={"extra_fields": {"source_id": "42"}})
    """
    return LoggerConfig.get_logger(name)
