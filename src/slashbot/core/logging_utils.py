from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 3


def _json_default(value: Any) -> str:
    return str(value)


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """Emit a single structured log line: ``<event> {json fields}``.

    An ``exc`` field is expanded into ``exc_type``/``exc``; for ERROR and
    above the traceback is attached as well.
    """
    if not logger.isEnabledFor(level):
        return
    exc = fields.pop("exc", None)
    exc_info: Any = None
    if isinstance(exc, BaseException):
        fields["exc_type"] = type(exc).__name__
        fields["exc"] = str(exc)
        if level >= logging.ERROR:
            exc_info = (type(exc), exc, exc.__traceback__)
    elif exc is not None:
        fields["exc"] = str(exc)
    payload = {key: value for key, value in fields.items() if value is not None}
    if payload:
        message = f"{event} {json.dumps(payload, default=_json_default, sort_keys=True)}"
    else:
        message = event
    logger.log(level, message, exc_info=exc_info)


def setup_rotating_logger(
    name: str,
    path: Optional[Path] = None,
    *,
    level: int | str = logging.INFO,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
) -> logging.Logger:
    logger = logging.getLogger(name)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
