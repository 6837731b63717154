"""Append-only event log for backup and restore runs."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Callable, Optional

LOGGER = logging.getLogger("sitebackup.backup")

LOG_FILENAME = "backup-log.txt"
_NO_LOGS = "No logs available."


class BackupLogger:
    """Write ``[YYYY-MM-DD HH:MM:SS] message`` lines to the backup log file.

    Every line is mirrored to the ``sitebackup.backup`` logger.
    """

    def __init__(self, log_path: Path, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._log_path = Path(log_path)
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock or datetime.now
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    def _write(self, message: str, *, level: int) -> None:
        stamp = self._clock().strftime("%Y-%m-%d %H:%M:%S")
        line = f"[{stamp}] {message}"
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        LOGGER.log(level, "%s", message)

    def info(self, message: str) -> None:
        self._write(message, level=logging.INFO)

    def warning(self, message: str) -> None:
        self._write(message, level=logging.WARNING)

    def error(self, message: str) -> None:
        self._write(message, level=logging.ERROR)

    def read_text(self) -> str:
        if not self._log_path.exists():
            return _NO_LOGS
        return self._log_path.read_text(encoding="utf-8")


__all__ = ["BackupLogger", "LOG_FILENAME"]
