"""
Relay logging.

Every record is tagged with the id of the relay request that produced it, so
one request can be followed through routing, fallback and streaming. The id
lives in a context variable bound once per inbound request; records emitted
outside a request carry "-".

Output is a rotating file (LOG_PATH) in either colored text or JSON lines.
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Any, Dict

import colorlog

LOGGER_NAME = "coze_relay"
DEFAULT_LOG_PATH = "/var/log/coze-relay/coze-relay.log"
LOG_MAX_BYTES = 1_048_576  # 1 MB
LOG_BACKUP_COUNT = 3
LOG_FORMATS = ("text", "json")
NO_REQUEST_ID = "-"

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(req_id)s] %(message)s"
COLOR_FORMAT = (
    "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s %(name)s [%(req_id)s] %(message)s"
)
LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}

_request_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "relay_request_id", default=NO_REQUEST_ID
)


def bind_request_id(req_id: str) -> contextvars.Token:
    """Tag records from the current context (and tasks it spawns) with ``req_id``."""
    return _request_id.set(req_id or NO_REQUEST_ID)


def reset_request_id(token: contextvars.Token) -> None:
    _request_id.reset(token)


def current_request_id() -> str:
    return _request_id.get()


class RequestIdFilter(logging.Filter):
    """Copy the bound request id onto each record as ``req_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.req_id = _request_id.get()
        return True


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, req_id, message."""

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "req_id": getattr(record, "req_id", NO_REQUEST_ID),
            "message": record.getMessage(),
        }
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(
    log_path: str | None = None,
    level_name: str | None = None,
    log_format: str = "text",
) -> logging.Logger:
    """
    Configure the relay logger.

    Records go to ``log_path`` (rotated at 1 MB, 3 backups), or to stderr when
    that file cannot be opened. ``log_format`` is "text" (colored unless
    LOG_COLOR is off) or "json". LOG_LEVEL=DISABLE turns logging off entirely.
    """
    level_name = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper().strip()
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = False

    if level_name == "DISABLE":
        logging.disable(logging.CRITICAL)
        logger.addHandler(logging.NullHandler())
        return logger

    logging.disable(logging.NOTSET)
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    handler, open_error = _open_handler(log_path or DEFAULT_LOG_PATH)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(_formatter_for(log_format))
    logger.addHandler(handler)

    if open_error is not None:
        logger.warning(
            "Cannot open log file %r (%s); logging to stderr instead", log_path, open_error
        )
    return logger


def _open_handler(log_path: str) -> tuple[logging.Handler, OSError | None]:
    try:
        handler = RotatingFileHandler(
            log_path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
        )
    except OSError as e:
        return logging.StreamHandler(), e
    return handler, None


def _formatter_for(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonLineFormatter()
    if os.getenv("LOG_COLOR", "true").lower() in ("true", "1", "yes"):
        return colorlog.ColoredFormatter(COLOR_FORMAT, reset=True, log_colors=LEVEL_COLORS)
    return logging.Formatter(TEXT_FORMAT)


def mask_secret(s: str, keep_start: int = 6, keep_end: int = 4) -> str:
    """Mask an API key for logs, keeping only a few leading and trailing characters."""
    s = (s or "").strip()
    if not s:
        return ""
    if len(s) <= keep_start + keep_end:
        return "*" * len(s)
    return f"{s[:keep_start]}...{s[-keep_end:]}"
