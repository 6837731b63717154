"""Produce the downloadable site backup artifacts."""
from __future__ import annotations

import enum
import logging
import secrets
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .archive import ArchiveBuilder
from .config import ServerConfig
from .database import DatabaseExporter
from .errors import ArchiveError, AuthError, ExportError
from .host import SiteHost
from .logs import BackupLogger
from .types import BackupManifest, BackupResult, BackupTarget, ExporterKind

LOGGER = logging.getLogger("sitebackup.backup.create")

DATABASE_ARTIFACT = "database-backup.sql"
THEME_ARTIFACT = "theme-backup.zip"
PLUGINS_ARTIFACT = "plugins-backup.zip"
ARTIFACT_NAMES = (DATABASE_ARTIFACT, THEME_ARTIFACT, PLUGINS_ARTIFACT)

INVALID_KEY_MESSAGE = "Invalid API key"

Exporter = Callable[[BackupTarget, Path], object]
UrlBuilder = Callable[[str], str]


class RunState(str, enum.Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    REJECTED = "rejected"
    PURGING = "purging"
    EXPORTING = "exporting"
    DONE = "done"


def rejection_payload() -> Dict[str, object]:
    return {"success": False, "error": INVALID_KEY_MESSAGE}


def default_targets(config: ServerConfig, host: Optional[SiteHost] = None) -> List[BackupTarget]:
    """Database, active theme and plugins, in that order."""

    theme_dir = config.theme_dir
    if theme_dir is None:
        theme_name = host.active_theme() if host is not None else "default"
        theme_dir = config.theme_root / theme_name
    return [
        BackupTarget("database", ExporterKind.SQL_DUMP, DATABASE_ARTIFACT, config.database_path),
        BackupTarget("theme", ExporterKind.DIRECTORY_ARCHIVE, THEME_ARTIFACT, theme_dir),
        BackupTarget("plugins", ExporterKind.DIRECTORY_ARCHIVE, PLUGINS_ARTIFACT, config.plugins_dir),
    ]


class BackupOrchestrator:
    """Authenticate, purge, export every target and report one result per target."""

    def __init__(
        self,
        config: ServerConfig,
        *,
        logger: Optional[BackupLogger] = None,
        host: Optional[SiteHost] = None,
        targets: Optional[Sequence[BackupTarget]] = None,
        exporters: Optional[Mapping[ExporterKind, Exporter]] = None,
        lock: Optional[threading.Lock] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._logger = logger or BackupLogger(config.log_path)
        self._host = host
        self._targets = list(targets) if targets is not None else None
        self._clock = clock or datetime.now
        self._archiver = ArchiveBuilder(LOGGER)
        self._exporters: Dict[ExporterKind, Exporter] = {
            ExporterKind.SQL_DUMP: self._export_sql,
            ExporterKind.DIRECTORY_ARCHIVE: self._export_directory,
        }
        if exporters:
            self._exporters.update(exporters)
        self._lock = lock or threading.Lock()
        self.state = RunState.IDLE

    # ------------------------------------------------------------------
    @property
    def logger(self) -> BackupLogger:
        return self._logger

    def targets(self) -> List[BackupTarget]:
        if self._targets is not None:
            return list(self._targets)
        return default_targets(self._config, self._host)

    def artifact_path(self, artifact_name: str) -> Path:
        return self._config.uploads_dir / artifact_name

    def default_url(self, artifact_name: str) -> str:
        if self._config.public_base_url:
            return f"{self._config.public_base_url}/{artifact_name}"
        return self.artifact_path(artifact_name).resolve().as_uri()

    # ------------------------------------------------------------------
    def authenticate(self, provided_key: Optional[str]) -> bool:
        expected = self._config.api_key
        if not expected or provided_key is None:
            return False
        return secrets.compare_digest(provided_key.encode("utf-8"), expected.encode("utf-8"))

    def purge(self) -> List[Path]:
        """Delete earlier artifacts; missing files and delete errors are ignored."""

        removed: List[Path] = []
        for target in self.targets():
            path = self.artifact_path(target.artifact_name)
            for candidate in (path, path.with_name(path.name + ".part")):
                try:
                    if candidate.exists():
                        candidate.unlink()
                        removed.append(candidate)
                except OSError as exc:
                    self._logger.warning(f"Could not delete old backup {candidate.name}: {exc}")
        return removed

    # ------------------------------------------------------------------
    def _export_sql(self, target: BackupTarget, destination: Path) -> object:
        if target.source_path is None:
            raise ExportError(f"no database configured for {target.key}")
        return DatabaseExporter(target.source_path, clock=self._clock).export(destination)

    def _export_directory(self, target: BackupTarget, destination: Path) -> object:
        if target.source_path is None:
            raise ArchiveError(f"no directory configured for {target.key}")
        return self._archiver.build(target.source_path, destination)

    def export_target(self, target: BackupTarget, url_for: UrlBuilder) -> BackupResult:
        exporter = self._exporters.get(target.exporter)
        destination = self.artifact_path(target.artifact_name)
        try:
            if exporter is None:
                raise ExportError(f"no exporter registered for {target.exporter.value}")
            exporter(target, destination)
        except Exception as exc:
            LOGGER.warning("Export of %s failed", target.key, exc_info=True)
            self._logger.error(f"Export of {target.key} failed: {exc}")
            return BackupResult(
                key=target.key,
                success=False,
                error=f"Failed to export {target.key}",
                details=str(exc) or exc.__class__.__name__,
            )
        return BackupResult(key=target.key, success=True, file_url=url_for(target.artifact_name))

    # ------------------------------------------------------------------
    def run(self, provided_key: Optional[str], *, url_for: Optional[UrlBuilder] = None) -> BackupManifest:
        """Run one backup pass. Raises :class:`AuthError` before touching any file."""

        with self._lock:
            self.state = RunState.AUTHENTICATING
            if not self.authenticate(provided_key):
                self.state = RunState.REJECTED
                self._logger.warning("Unauthorized access attempt with invalid API key.")
                raise AuthError(INVALID_KEY_MESSAGE)

            self._logger.info("Starting backup process...")
            self.state = RunState.PURGING
            self._config.uploads_dir.mkdir(parents=True, exist_ok=True)
            self.purge()

            self.state = RunState.EXPORTING
            build_url = url_for or self.default_url
            results = [self.export_target(target, build_url) for target in self.targets()]

            self.state = RunState.DONE
            self._logger.info("Backup process completed.")
            return BackupManifest(results=tuple(results))

    def handle_request(self, provided_key: Optional[str], *, url_for: Optional[UrlBuilder] = None) -> Dict[str, object]:
        """Return the wire payload for one download request."""

        try:
            manifest = self.run(provided_key, url_for=url_for)
        except AuthError:
            return rejection_payload()
        return manifest.to_payload()


__all__ = [
    "ARTIFACT_NAMES",
    "BackupOrchestrator",
    "DATABASE_ARTIFACT",
    "INVALID_KEY_MESSAGE",
    "PLUGINS_ARTIFACT",
    "RunState",
    "THEME_ARTIFACT",
    "default_targets",
    "rejection_payload",
]
