"""
Logging helpers for xetclient.

Modules obtain loggers through get_logger(); applications that want the
SDK's output formatted call setup_logging() once.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

ROOT_LOGGER_NAME = "xetclient"


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the xetclient namespace.

    Args:
        name: Usually __name__ of the calling module.
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def setup_logging(level: str | None = None, json_format: bool | None = None) -> logging.Logger:
    """
    Attach a stderr handler to the xetclient root logger.

    Defaults come from SDKSettings (log_level, log_json). Calling again
    replaces the previously installed handler.
    """
    from xetclient.config import get_settings

    settings = get_settings()
    level = level or settings.log_level
    json_format = settings.log_json if json_format is None else json_format

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_xetclient", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler._xetclient = True  # type: ignore[attr-defined]
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


__all__ = ["get_logger", "setup_logging", "JsonFormatter"]
