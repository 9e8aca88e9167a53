from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Union

ROOT_LOGGER = "constitution_os"
ROTATION_BYTES = 5_242_880
BACKUP_COUNT = 3

REDACTION_KEYS = {"password", "secret", "token", "api_key", "private_key", "credential"}


def redact_context(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("<redacted>" if k in REDACTION_KEYS else v) for k, v in data.items()}


def _iso_utc(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class JSONFormatter(logging.Formatter):
    """One JSON object per line: ts, lvl, cmp (logger name), msg, ctx."""

    def format(self, record: logging.LogRecord) -> str:
        context = getattr(record, "context", None) or {}
        if not isinstance(context, dict):
            context = {"value": context}
        context = redact_context(context)

        if record.exc_info:
            context = {**context, "exc": self.formatException(record.exc_info)}

        payload = {
            "ts": _iso_utc(record.created),
            "lvl": record.levelname,
            "cmp": record.name,
            "msg": record.getMessage(),
            "ctx": context,
        }
        return json.dumps(payload, ensure_ascii=False, default=str)


def _is_ours(handler: logging.Handler) -> bool:
    return bool(getattr(handler, "constitution_os_handler", False))


def configure_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Union[str, Path, None] = None,
) -> logging.Logger:
    """
    Attach a JSON-lines handler to the package logger (stderr, or a rotating
    file when `log_file` is given). Calling it again replaces the handler.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level if isinstance(level, int) else str(level).upper())

    for handler in list(logger.handlers):
        if _is_ours(handler):
            logger.removeHandler(handler)
            handler.close()

    handler: logging.Handler
    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=ROTATION_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter())
    handler.constitution_os_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger


def reset_logging(logger: Optional[logging.Logger] = None) -> None:
    logger = logger or logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        if _is_ours(handler):
            logger.removeHandler(handler)
            handler.close()
