# attendance_app/utils/logging_config.py

"""
Application logging setup.

Reads ``LOG_LEVEL``, ``LOG_FORMAT`` ('json' or 'text'), ``LOG_DIR``,
``LOG_FILE_MAX_BYTES``, ``LOG_FILE_BACKUP_COUNT``, ``ENABLE_FILE_LOGGING`` and
``ENABLE_CONSOLE_LOGGING`` from the Flask config.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

# Attributes present on every LogRecord; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys() | {"message", "asctime"}
)

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
HANDLER_MARKER = "_attendance_handler"


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line, including ``extra`` fields."""

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(log_format):
    if str(log_format).lower() == "json":
        return JsonFormatter()
    return logging.Formatter(TEXT_FORMAT)


def _remove_managed_handlers(logger):
    for handler in list(logger.handlers):
        if getattr(handler, HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()


def setup_logging(app):
    """Configure ``app.logger`` handlers. Safe to call repeatedly."""

    config = app.config
    level = getattr(logging, str(config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    formatter = _build_formatter(config.get("LOG_FORMAT", "text"))

    logger = app.logger
    _remove_managed_handlers(logger)
    logger.setLevel(level)

    if config.get("ENABLE_CONSOLE_LOGGING", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        setattr(console_handler, HANDLER_MARKER, True)
        logger.addHandler(console_handler)

    if config.get("ENABLE_FILE_LOGGING", False):
        log_dir = config.get("LOG_DIR", "logs")
        if not os.path.isabs(log_dir):
            log_dir = os.path.join(app.instance_path, log_dir)
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "attendance.log"),
            maxBytes=int(config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(config.get("LOG_FILE_BACKUP_COUNT", 10)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        setattr(file_handler, HANDLER_MARKER, True)
        logger.addHandler(file_handler)

    logging.getLogger("werkzeug").setLevel(max(level, logging.INFO))
    return logger
