"""
Logging setup driven by the ``LOG_*`` configuration keys.

JSON lines for production, plain text for development. Values passed through
``extra={...}`` are carried into the JSON payload.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_FILE_NAME = "subsync.log"
_HANDLER_MARKER = "_subsync_handler"

# Attributes present on every LogRecord; anything else came from ``extra``.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                event[key] = value
        if record.exc_info:
            event["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(event, default=str, ensure_ascii=False)


def _build_formatter(log_format: str) -> logging.Formatter:
    if str(log_format).lower() == "json":
        return JsonFormatter()
    return logging.Formatter(TEXT_FORMAT)


def _mark(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_MARKER, True)
    return handler


def setup_logging(app) -> logging.Logger:
    """
    Configure the root logger from ``app.config``.

    Safe to call repeatedly; handlers installed by an earlier call are replaced.
    """

    config = app.config
    level = getattr(logging, str(config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    formatter = _build_formatter(config.get("LOG_FORMAT", "text"))

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root_logger.removeHandler(handler)
            handler.close()
    root_logger.setLevel(level)

    if config.get("ENABLE_CONSOLE_LOGGING", True):
        console = _mark(logging.StreamHandler())
        console.setLevel(level)
        console.setFormatter(formatter)
        root_logger.addHandler(console)

    if config.get("ENABLE_FILE_LOGGING", False):
        log_dir = Path(config.get("LOG_DIR", "logs"))
        if not log_dir.is_absolute():
            log_dir = Path(app.root_path) / log_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = _mark(
            RotatingFileHandler(
                log_dir / LOG_FILE_NAME,
                maxBytes=int(config.get("LOG_FILE_MAX_BYTES", 10485760)),
                backupCount=int(config.get("LOG_FILE_BACKUP_COUNT", 10)),
                encoding="utf-8",
            )
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(JsonFormatter())
        root_logger.addHandler(file_handler)

    logging.getLogger("urllib3").setLevel(max(level, logging.WARNING))
    app.logger.setLevel(level)
    app.logger.debug("Logging configured", extra={"log_level": logging.getLevelName(level)})
    return root_logger


__all__ = ["JsonFormatter", "setup_logging"]
