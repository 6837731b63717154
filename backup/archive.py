"""Zip archives of site directories."""
from __future__ import annotations

import logging
import os
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Tuple

from .errors import ArchiveError
from .types import ArchiveEntry, ArchiveSummary

LOGGER = logging.getLogger("sitebackup.backup.archive")


def _raise(exc: OSError) -> None:
    raise exc


def collect_entries(
    source_dir: Path,
    *,
    exclude: Iterable[Path] = (),
) -> Tuple[List[ArchiveEntry], List[str]]:
    """Return the regular files under *source_dir* and the paths that were skipped.

    Symlinked files count as regular files. Symlinked directories are not
    descended into; dangling links and special files are skipped.
    """

    root = Path(source_dir)
    excluded = {os.path.abspath(path) for path in exclude}
    entries: List[ArchiveEntry] = []
    skipped: List[str] = []
    for current, dirnames, filenames in os.walk(root, onerror=_raise, followlinks=False):
        base = Path(current)
        for name in list(dirnames):
            if (base / name).is_symlink():
                dirnames.remove(name)
                skipped.append((base / name).relative_to(root).as_posix())
        dirnames.sort()
        for name in filenames:
            path = base / name
            if os.path.abspath(path) in excluded:
                continue
            relative = path.relative_to(root).as_posix()
            if not path.is_file():
                skipped.append(relative)
                continue
            entries.append(ArchiveEntry(relative_path=relative, source_path=path))
    entries.sort(key=lambda entry: entry.relative_path)
    return entries, sorted(skipped)


def build_archive(source_dir: Path, archive_path: Path) -> ArchiveSummary:
    """Write every file under *source_dir* into a fresh zip at *archive_path*.

    All or nothing: the archive is assembled next to its destination and only
    moved into place once every file has been stored.
    """

    source = Path(source_dir)
    archive_path = Path(archive_path)
    if not source.is_dir():
        raise ArchiveError(f"source directory not found: {source}")
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    partial = archive_path.with_name(archive_path.name + ".part")
    try:
        entries, skipped = collect_entries(source, exclude=(archive_path, partial))
        with zipfile.ZipFile(
            partial,
            "w",
            compression=zipfile.ZIP_DEFLATED,
            strict_timestamps=False,
        ) as archive:
            for entry in entries:
                archive.write(entry.source_path, entry.relative_path)
        os.replace(partial, archive_path)
    except (OSError, ValueError, zipfile.LargeZipFile) as exc:
        partial.unlink(missing_ok=True)
        raise ArchiveError(f"could not archive {source}: {exc}") from exc
    for relative in skipped:
        LOGGER.warning("Skipped non-regular entry %s in %s", relative, source)
    return ArchiveSummary(
        archive_path=archive_path,
        entries=entries,
        skipped=skipped,
        size_bytes=archive_path.stat().st_size,
    )


def _member_parts(name: str) -> Tuple[str, ...]:
    normalized = name.replace("\\", "/")
    pure = PurePosixPath(normalized)
    parts = tuple(part for part in pure.parts if part not in ("", "."))
    if pure.is_absolute() or ".." in parts or (parts and ":" in parts[0]):
        raise ArchiveError(f"unsafe archive member: {name}")
    return parts


def list_members(archive_path: Path) -> List[str]:
    """Return the relative file paths stored in *archive_path*."""

    try:
        with zipfile.ZipFile(archive_path, "r") as archive:
            names = [info.filename for info in archive.infolist() if not info.is_dir()]
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"{Path(archive_path).name} is not a valid zip archive") from exc
    except OSError as exc:
        raise ArchiveError(f"could not read {archive_path}: {exc}") from exc
    return ["/".join(_member_parts(name)) for name in names]


def extract_archive(archive_path: Path, destination_dir: Path) -> List[Path]:
    """Extract every stored file below *destination_dir*, overwriting existing files."""

    destination = Path(destination_dir)
    written: List[Path] = []
    try:
        with zipfile.ZipFile(archive_path, "r") as archive:
            plan = []
            for info in archive.infolist():
                if info.is_dir():
                    continue
                parts = _member_parts(info.filename)
                if not parts:
                    continue
                plan.append((info, destination.joinpath(*parts)))
            destination.mkdir(parents=True, exist_ok=True)
            for info, target in plan:
                target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(info) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                written.append(target)
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"{Path(archive_path).name} is not a valid zip archive") from exc
    except (OSError, RuntimeError) as exc:
        raise ArchiveError(f"could not extract {Path(archive_path).name}: {exc}") from exc
    return written


class ArchiveBuilder:
    """Build and extract directory archives for backup targets."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or LOGGER

    def build(self, source_dir: Path, archive_path: Path) -> ArchiveSummary:
        summary = build_archive(source_dir, archive_path)
        self._logger.info(
            "Archived %d files from %s into %s (%d bytes)",
            len(summary.entries),
            source_dir,
            summary.archive_path.name,
            summary.size_bytes,
        )
        return summary

    def extract(self, archive_path: Path, destination_dir: Path) -> List[Path]:
        written = extract_archive(archive_path, destination_dir)
        self._logger.info("Extracted %d files from %s into %s", len(written), Path(archive_path).name, destination_dir)
        return written


__all__ = [
    "ArchiveBuilder",
    "build_archive",
    "collect_entries",
    "extract_archive",
    "list_members",
]
