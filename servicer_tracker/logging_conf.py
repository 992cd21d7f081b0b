from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from .config import get_settings

_RESERVED = {
    "levelname", "name", "msg", "args", "exc_info", "exc_text", "stack_info", "lineno",
    "pathname", "filename", "funcName", "created", "msecs", "relativeCreated", "thread",
    "threadName", "processName", "process", "message", "asctime", "levelno", "module",
    "taskName",
}

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # pass through extra fields
        for key, value in record.__dict__.items():
            if key in _RESERVED:
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), default=str)


def configure_logging(level: str = "INFO", json_output: bool = False,
                      handler: Optional[logging.Handler] = None) -> logging.Handler:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = handler or logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(PLAIN_FORMAT))

    # Clear existing handlers to avoid duplicate logs
    for h in list(root.handlers):
        root.removeHandler(h)

    root.addHandler(handler)

    # The store client logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return handler


def configure_from_settings(settings) -> logging.Handler:
    return configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)


_configured = False


def ensure_logging_configured(settings=None) -> None:
    """Apply LOG_LEVEL and LOG_JSON the first time a service is built"""
    global _configured
    if _configured:
        return
    configure_from_settings(settings or get_settings())
    _configured = True
