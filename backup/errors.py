"""Error hierarchy for backup and restore operations."""
from __future__ import annotations


class SiteBackupError(RuntimeError):
    """Base exception for backup related failures."""


class AuthError(SiteBackupError):
    """Raised when a request carries the wrong API key."""


class ExportError(SiteBackupError):
    """Raised when one backup target cannot be exported."""


class ArchiveError(SiteBackupError):
    """Raised when an archive cannot be built or extracted."""


class ReplayError(SiteBackupError):
    """Raised when a single SQL statement fails during restore."""

    def __init__(self, message: str, *, index: int = -1, statement: str = "") -> None:
        super().__init__(message)
        self.index = index
        self.statement = statement


class RestoreError(SiteBackupError):
    """Raised when an uploaded bundle cannot be restored."""


class TransportError(SiteBackupError):
    """Raised when the client cannot fetch a manifest or an artifact."""


__all__ = [
    "ArchiveError",
    "AuthError",
    "ExportError",
    "ReplayError",
    "RestoreError",
    "SiteBackupError",
    "TransportError",
]
