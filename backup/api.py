"""Public API for backup and restore operations."""
from __future__ import annotations

import threading
from pathlib import Path
from typing import BinaryIO, Iterable, Optional, Tuple

from .config import ServerConfig
from .create import ARTIFACT_NAMES, BackupOrchestrator, UrlBuilder
from .host import FileSiteHost, SiteHost
from .logs import BackupLogger
from .restore import RestoreOrchestrator
from .types import BackupManifest, RestoreResult


class BackupService:
    """Wire the backup and restore orchestrators to one configuration.

    Both orchestrators share a lock so a restore never overlaps a backup run.
    """

    def __init__(
        self,
        config: ServerConfig,
        *,
        host: Optional[SiteHost] = None,
        logger: Optional[BackupLogger] = None,
    ) -> None:
        self._config = config
        self._logger = logger or BackupLogger(config.log_path)
        self._host = host or FileSiteHost(
            config.state_path,
            theme_root=config.theme_root,
            plugins_dir=config.plugins_dir,
        )
        lock = threading.Lock()
        self._backup = BackupOrchestrator(config, logger=self._logger, host=self._host, lock=lock)
        self._restore = RestoreOrchestrator(config, host=self._host, logger=self._logger, lock=lock)

    # ------------------------------------------------------------------
    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def host(self) -> SiteHost:
        return self._host

    def authenticate(self, provided_key: Optional[str]) -> bool:
        return self._backup.authenticate(provided_key)

    # ------------------------------------------------------------------
    def create_backup(self, provided_key: Optional[str], *, url_for: Optional[UrlBuilder] = None) -> BackupManifest:
        return self._backup.run(provided_key, url_for=url_for)

    def restore_upload(self, uploads: Iterable[Tuple[str, BinaryIO]]) -> RestoreResult:
        return self._restore.restore_upload(uploads)

    def artifact_path(self, name: str) -> Optional[Path]:
        """Return the path of a published artifact, or None for any other name."""

        if name not in ARTIFACT_NAMES:
            return None
        path = self._backup.artifact_path(name)
        return path if path.is_file() else None

    def read_log(self) -> str:
        return self._logger.read_text()

    def log_exception(self, message: str) -> None:
        self._logger.error(message)


__all__ = ["BackupService"]
