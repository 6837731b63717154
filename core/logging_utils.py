from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .paths import get_logs_dir

_CONSOLE_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


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
        return json.dumps(payload, ensure_ascii=False)


def configure_console_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=_CONSOLE_FORMAT)


def configure_json_logging(
    working_dir: Path,
    name: str = "sitebackup",
    *,
    filename: str = "sitebackup.log.jsonl",
) -> logging.Logger:
    """Attach a JSON-lines file handler under ``<working_dir>/logs`` to *name*."""

    logs_dir = get_logs_dir(Path(working_dir))
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = (logs_dir / filename).resolve()
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler) and getattr(handler, "baseFilename", None) == str(log_path):
            break
    else:
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(JsonLogFormatter())
        logger.addHandler(handler)
    return logger


def redact_secret(value: Optional[str]) -> str:
    if not value:
        return ""
    if len(value) <= 6:
        return "***"
    return f"{value[:3]}***{value[-2:]}"
