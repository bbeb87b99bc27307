from __future__ import annotations

import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

_ROOT_LOGGER_NAME = "zfsbackup"
_CONSOLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "ts": time.time(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in getattr(record, "__dict__", {}).items():
            if key.startswith("_"):
                continue
            if key in payload or key in _RESERVED_ATTRS:
                continue
            try:
                json.dumps(value)
            except TypeError:
                continue
            payload[key] = value
        return json.dumps(payload, ensure_ascii=False)


_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


def configure_logging(log_file: Optional[Path] = None, *, level: int = logging.INFO) -> logging.Logger:
    """Attach a JSONL file handler and a console handler to the package logger.

    Calling it repeatedly does not duplicate handlers. A log file that cannot be
    opened is reported on the console and skipped.
    """

    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    logger.setLevel(level)
    if not any(getattr(handler, "_zfsbackup_console", False) for handler in logger.handlers):
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        console._zfsbackup_console = True  # type: ignore[attr-defined]
        logger.addHandler(console)
    if log_file is not None:
        target = str(Path(log_file))
        for handler in list(logger.handlers):
            if isinstance(handler, logging.FileHandler) and getattr(handler, "baseFilename", None) == os.path.abspath(target):
                break
        else:
            try:
                Path(target).parent.mkdir(parents=True, exist_ok=True)
                handler = logging.FileHandler(target, encoding="utf-8")
            except OSError as exc:
                logger.warning("Cannot open log file %s: %s", target, exc)
            else:
                handler.setFormatter(JsonLogFormatter())
                logger.addHandler(handler)
    logger.propagate = False
    return logger


def redact_secret(value: str | None) -> str:
    if not value:
        return ""
    if len(value) <= 6:
        return "***"
    return f"{value[:3]}***{value[-2:]}"


__all__ = ["JsonLogFormatter", "configure_logging", "redact_secret"]
