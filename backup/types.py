"""Common dataclasses shared across backup modules."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple


class ExporterKind(str, enum.Enum):
    SQL_DUMP = "sql_dump"
    DIRECTORY_ARCHIVE = "directory_archive"


@dataclass(slots=True, frozen=True)
class BackupTarget:
    """One exportable part of the site and the artifact it produces."""

    key: str
    exporter: ExporterKind
    artifact_name: str
    source_path: Optional[Path] = None


@dataclass(slots=True, frozen=True)
class BackupResult:
    key: str
    success: bool
    file_url: Optional[str] = None
    error: Optional[str] = None
    details: Optional[str] = None

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"success": self.success}
        if self.success:
            payload["file"] = self.file_url
        else:
            payload["error"] = self.error or "Export failed"
            if self.details:
                payload["details"] = self.details
        return payload


@dataclass(slots=True, frozen=True)
class BackupManifest:
    """Ordered, immutable mapping of target key to result."""

    results: Tuple[BackupResult, ...]

    def __iter__(self) -> Iterator[BackupResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def __getitem__(self, key: str) -> BackupResult:
        for result in self.results:
            if result.key == key:
                return result
        raise KeyError(key)

    def keys(self) -> List[str]:
        return [result.key for result in self.results]

    @property
    def ok(self) -> bool:
        return all(result.success for result in self.results)

    def to_payload(self) -> Dict[str, Dict[str, object]]:
        return {result.key: result.to_payload() for result in self.results}


@dataclass(slots=True, frozen=True)
class ArchiveEntry:
    relative_path: str
    source_path: Path


@dataclass(slots=True)
class ArchiveSummary:
    archive_path: Path
    entries: List[ArchiveEntry]
    skipped: List[str]
    size_bytes: int


@dataclass(slots=True)
class TableDump:
    name: str
    row_count: int


@dataclass(slots=True)
class SqlDump:
    """Result of writing a database dump to disk."""

    path: Path
    created: str
    tables: List[TableDump]
    size_bytes: int
    schema_objects: int = 0

    @property
    def statement_count(self) -> int:
        return sum(2 + table.row_count for table in self.tables) + 2 * self.schema_objects


@dataclass(slots=True)
class ReplaySummary:
    executed: int = 0
    failures: List[Dict[str, object]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class BundleKind(str, enum.Enum):
    """Kinds of file accepted in a restore upload.

    The value is the filename fragment the upload form has always used to
    tell the files apart.
    """

    SQL = ".sql"
    THEME_ARCHIVE = "theme-backup.zip"
    PLUGIN_ARCHIVE = "plugins-backup.zip"

    @classmethod
    def classify(cls, filename: str) -> Optional["BundleKind"]:
        for kind in (cls.SQL, cls.THEME_ARCHIVE, cls.PLUGIN_ARCHIVE):
            if kind.value in filename:
                return kind
        return None


@dataclass(slots=True, frozen=True)
class BundleFile:
    kind: BundleKind
    name: str
    path: Path


class StepStatus(str, enum.Enum):
    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"
    COMPENSATED = "compensated"


@dataclass(slots=True)
class RestoreStep:
    name: str
    source: str
    status: StepStatus = StepStatus.SKIPPED
    errors: List[str] = field(default_factory=list)
    details: Dict[str, object] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "source": self.source,
            "status": self.status.value,
            "errors": list(self.errors),
            "details": dict(self.details),
        }


@dataclass(slots=True)
class RestoreResult:
    steps: List[RestoreStep] = field(default_factory=list)
    ignored_files: List[str] = field(default_factory=list)
    rolled_back: bool = False

    @property
    def status(self) -> str:
        if self.rolled_back:
            return "rolled_back"
        if not self.steps:
            return "empty"
        if all(step.status is StepStatus.OK for step in self.steps):
            return "ok"
        if any(step.status in (StepStatus.OK, StepStatus.PARTIAL) for step in self.steps):
            return "partial"
        return "failed"

    def to_payload(self) -> Dict[str, object]:
        return {
            "status": self.status,
            "rolled_back": self.rolled_back,
            "steps": [step.to_payload() for step in self.steps],
            "ignored_files": list(self.ignored_files),
        }


__all__ = [
    "ArchiveEntry",
    "ArchiveSummary",
    "BackupManifest",
    "BackupResult",
    "BackupTarget",
    "BundleFile",
    "BundleKind",
    "ExporterKind",
    "ReplaySummary",
    "RestoreResult",
    "RestoreStep",
    "SqlDump",
    "StepStatus",
    "TableDump",
]
