from __future__ import annotations

import datetime as dt
import json
import logging
from pathlib import Path

LOGGER_NAME = "honcho_claudis"

_RESERVED_ATTRS = set(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": dt.datetime.fromtimestamp(record.created, dt.UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            exc = record.exc_info[1]
            entry["error"] = f"{record.exc_info[0].__name__}: {exc}"
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_hook_logging(
    path: str | None, *, level: int = logging.INFO
) -> logging.Handler:
    """Send package logs to a JSON-lines file.

    Never logs to stdout: stdout carries the hook response. An empty path or an
    unwritable file installs a null handler instead.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    handler: logging.Handler = logging.NullHandler()
    if path and path.strip():
        log_path = Path(path).expanduser()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(log_path, encoding="utf-8")
        except OSError:
            handler = logging.NullHandler()
    handler.setFormatter(JsonLineFormatter())
    logger.addHandler(handler)
    return handler


def remove_handler(handler: logging.Handler | None) -> None:
    if handler is None:
        return
    logging.getLogger(LOGGER_NAME).removeHandler(handler)
    handler.close()
