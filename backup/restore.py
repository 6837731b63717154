"""Restore an uploaded backup bundle into the live site."""
from __future__ import annotations

import logging
import shutil
import sqlite3
import threading
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from core.db import copy_database

from .archive import ArchiveBuilder, list_members
from .config import ServerConfig
from .database import replay_script
from .errors import ArchiveError, RestoreError, SiteBackupError
from .host import SiteHost
from .logs import BackupLogger
from .types import BundleFile, BundleKind, RestoreResult, RestoreStep, StepStatus

LOGGER = logging.getLogger("sitebackup.backup.restore")

_STEP_ORDER: Dict[BundleKind, int] = {
    BundleKind.SQL: 0,
    BundleKind.THEME_ARCHIVE: 1,
    BundleKind.PLUGIN_ARCHIVE: 2,
}
_STEP_NAMES: Dict[BundleKind, str] = {
    BundleKind.SQL: "database",
    BundleKind.THEME_ARCHIVE: "theme",
    BundleKind.PLUGIN_ARCHIVE: "plugins",
}

Undo = Callable[[], None]

INCOMING_DIR = "_incoming"
SAFETY_DIR = "_safety"


def plugin_entries(members: Iterable[str], extensions: Sequence[str]) -> List[str]:
    """Plugin entry files of an archive, the ones a host activates.

    A plugin is either a single file with one of *extensions* at the archive
    root, or a top-level directory holding a file named after it, such as
    ``hello/hello.php``. Other code files inside a plugin directory are its
    includes and are never activated on their own.
    """

    wanted = {ext.lower() for ext in extensions}
    found: List[str] = []
    for member in members:
        path = PurePosixPath(member)
        if path.suffix.lower() not in wanted:
            continue
        if len(path.parts) == 1 or (len(path.parts) == 2 and path.stem == path.parts[0]):
            found.append(path.as_posix())
    return found


class RestoreOrchestrator:
    """Replay SQL, extract archives and activate what was restored.

    Steps run in the order database, theme, plugins. Each step registers how
    to undo its changes before it makes them; in strict mode the first failure
    undoes every registered change in reverse order.
    """

    def __init__(
        self,
        config: ServerConfig,
        *,
        host: SiteHost,
        logger: Optional[BackupLogger] = None,
        lock: Optional[threading.Lock] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._options = config.restore
        self._host = host
        self._logger = logger or BackupLogger(config.log_path)
        self._lock = lock or threading.Lock()
        self._clock = clock or datetime.now
        self._archiver = ArchiveBuilder(LOGGER)

    # ------------------------------------------------------------------
    def _stamp(self) -> str:
        return self._clock().strftime("%Y%m%d-%H%M%S")

    def ingest(self, uploads: Iterable[Tuple[str, BinaryIO]]) -> Tuple[List[BundleFile], List[str]]:
        """Stage uploaded files under ``uploads/_incoming/<stamp>`` and classify them by name.

        Staged files never share a path with the artifacts a backup run serves.
        """

        bundle: List[BundleFile] = []
        ignored: List[str] = []
        staging = self._config.uploads_dir / INCOMING_DIR / self._stamp()
        staging.mkdir(parents=True, exist_ok=True)
        for filename, stream in uploads:
            name = PurePosixPath(str(filename or "").replace("\\", "/")).name
            kind = BundleKind.classify(name) if name else None
            if kind is None:
                ignored.append(str(filename))
                continue
            destination = staging / name
            with destination.open("wb") as handle:
                shutil.copyfileobj(stream, handle)
            bundle.append(BundleFile(kind=kind, name=name, path=destination))
        return bundle, ignored

    def validate(self, item: BundleFile) -> None:
        if not item.path.is_file():
            raise RestoreError(f"{item.name} is missing")
        if item.kind is BundleKind.SQL:
            try:
                item.path.read_text(encoding="utf-8")
            except UnicodeDecodeError as exc:
                raise RestoreError(f"{item.name} is not UTF-8 text") from exc
        else:
            list_members(item.path)

    # ------------------------------------------------------------------
    def _safety_dir(self) -> Path:
        path = self._config.uploads_dir / SAFETY_DIR / self._stamp()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _protect_files(self, root: Path, members: Sequence[str], safety: Path, undo: List[Undo]) -> None:
        """Copy files an extraction will overwrite and remember the ones it will create."""

        overwritten: List[Tuple[Path, Path]] = []
        created: List[Path] = []
        for member in members:
            target = root / member
            if target.is_file():
                copy = safety / member
                copy.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(target, copy)
                overwritten.append((target, copy))
            else:
                created.append(target)

        def _undo() -> None:
            for target in created:
                target.unlink(missing_ok=True)
            for target, copy in overwritten:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(copy, target)

        undo.append(_undo)

    def _remember_activation(self, undo: List[Undo]) -> None:
        previous = self._host.snapshot()
        undo.append(lambda: self._host.restore_state(previous))

    # ------------------------------------------------------------------
    def _restore_database(self, item: BundleFile, step: RestoreStep, safety: Path, undo: List[Undo]) -> None:
        database = self._config.database_path
        script = item.path.read_text(encoding="utf-8")
        if database.exists():
            snapshot = safety / "database.sqlite"
            copy_database(database, snapshot)
            undo.append(lambda: copy_database(snapshot, database))
        else:
            undo.append(lambda: database.unlink(missing_ok=True))
        self._logger.info(f"Restoring database from {item.name}")
        summary = replay_script(database, script, strict=self._options.strict)
        step.details.update({"executed": summary.executed, "failed": len(summary.failures)})
        for failure in summary.failures:
            step.errors.append(f"statement {failure['index']}: {failure['error']}")
        step.status = StepStatus.OK if summary.ok else StepStatus.PARTIAL
        self._logger.info(
            f"Database restored: {summary.executed} statements executed, {len(summary.failures)} failed"
        )

    def _restore_theme(self, item: BundleFile, step: RestoreStep, safety: Path, undo: List[Undo]) -> None:
        name = self._options.theme_name
        target = self._config.theme_root / name
        if target.exists():
            parked = safety / name
            parked.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(target), str(parked))

            def _undo_theme() -> None:
                shutil.rmtree(target, ignore_errors=True)
                shutil.move(str(parked), str(target))

            undo.append(_undo_theme)
        else:
            undo.append(lambda: shutil.rmtree(target, ignore_errors=True))
        target.mkdir(parents=True, exist_ok=True)
        written = self._archiver.extract(item.path, target)
        self._remember_activation(undo)
        self._host.activate_theme(name)
        step.details.update({"theme": name, "files": len(written)})
        step.status = StepStatus.OK
        self._logger.info(f"Activated theme: {name}")

    def _restore_plugins(self, item: BundleFile, step: RestoreStep, safety: Path, undo: List[Undo]) -> None:
        plugins_dir = self._config.plugins_dir
        members = list_members(item.path)
        self._protect_files(plugins_dir, members, safety, undo)
        written = self._archiver.extract(item.path, plugins_dir)
        self._remember_activation(undo)
        activated: List[str] = []
        failed: List[str] = []
        for entry in plugin_entries(members, self._options.plugin_extensions):
            try:
                self._host.activate_plugin(entry)
            except (SiteBackupError, OSError) as exc:
                if self._options.strict:
                    raise RestoreError(f"could not activate plugin {entry}: {exc}") from exc
                failed.append(entry)
                step.errors.append(f"activation of {entry} failed: {exc}")
                self._logger.warning(f"Could not activate plugin {entry}: {exc}")
                continue
            activated.append(entry)
        step.details.update({"files": len(written), "activated": activated, "failed": failed})
        step.status = StepStatus.PARTIAL if failed else StepStatus.OK
        if failed:
            self._logger.info(f"Activated {len(activated)} plugins, {len(failed)} failed.")
        else:
            self._logger.info("Activated all plugins.")

    # ------------------------------------------------------------------
    def restore(self, bundle: Sequence[BundleFile], *, ignored: Sequence[str] = ()) -> RestoreResult:
        with self._lock:
            return self._restore_locked(bundle, ignored)

    def restore_upload(self, uploads: Iterable[Tuple[str, BinaryIO]]) -> RestoreResult:
        """Stage and restore an upload while holding the lock shared with backup runs."""

        with self._lock:
            bundle, ignored = self.ingest(uploads)
            return self._restore_locked(bundle, ignored)

    def _restore_locked(self, bundle: Sequence[BundleFile], ignored: Sequence[str]) -> RestoreResult:
        ordered = sorted(bundle, key=lambda item: _STEP_ORDER[item.kind])
        result = RestoreResult(ignored_files=list(ignored))
        steps = [RestoreStep(name=_STEP_NAMES[item.kind], source=item.name) for item in ordered]
        result.steps = steps
        if not ordered:
            self._logger.warning("Restore requested without any recognised backup file.")
            return result

        invalid: Dict[int, str] = {}
        for index, item in enumerate(ordered):
            try:
                self.validate(item)
            except (RestoreError, ArchiveError) as exc:
                invalid[index] = str(exc)
        if invalid and self._options.strict:
            for index, message in invalid.items():
                steps[index].status = StepStatus.FAILED
                steps[index].errors.append(message)
            self._logger.error(f"Restore refused, invalid upload: {'; '.join(invalid.values())}")
            return result

        self._logger.info("Starting restore process...")
        safety = self._safety_dir()
        handlers = {
            BundleKind.SQL: self._restore_database,
            BundleKind.THEME_ARCHIVE: self._restore_theme,
            BundleKind.PLUGIN_ARCHIVE: self._restore_plugins,
        }
        undo: List[Undo] = []
        for index, (item, step) in enumerate(zip(ordered, steps)):
            if index in invalid:
                step.status = StepStatus.FAILED
                step.errors.append(invalid[index])
                continue
            try:
                handlers[item.kind](item, step, safety / f"{index}-{step.name}", undo)
            except (SiteBackupError, OSError, shutil.Error, sqlite3.Error) as exc:
                step.status = StepStatus.FAILED
                step.errors.append(str(exc) or exc.__class__.__name__)
                self._logger.error(f"Restore step {step.name} failed: {exc}")
                if self._options.strict:
                    self._compensate(undo, steps[:index])
                    result.rolled_back = True
                    break
        self._logger.info(f"Restore process finished with status {result.status}.")
        return result

    def _compensate(self, undo: List[Undo], completed: Sequence[RestoreStep]) -> None:
        for action in reversed(undo):
            try:
                action()
            except (SiteBackupError, OSError, shutil.Error, sqlite3.Error) as exc:
                self._logger.error(f"Rollback action failed: {exc}")
        for step in completed:
            if step.status in (StepStatus.OK, StepStatus.PARTIAL):
                step.status = StepStatus.COMPENSATED
        self._logger.warning("Restore rolled back.")


__all__ = ["RestoreOrchestrator", "plugin_entries"]
