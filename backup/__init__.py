"""Site backup export and restore orchestration."""
from __future__ import annotations

from .api import BackupService
from .archive import ArchiveBuilder
from .config import RestoreOptions, ServerConfig
from .create import BackupOrchestrator
from .database import DatabaseExporter
from .errors import SiteBackupError
from .restore import RestoreOrchestrator
from .types import BackupManifest, BackupResult, BackupTarget, RestoreResult

__all__ = [
    "ArchiveBuilder",
    "BackupManifest",
    "BackupOrchestrator",
    "BackupResult",
    "BackupService",
    "BackupTarget",
    "DatabaseExporter",
    "RestoreOptions",
    "RestoreOrchestrator",
    "RestoreResult",
    "ServerConfig",
    "SiteBackupError",
]
