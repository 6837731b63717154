import sqlite3
from datetime import datetime
from pathlib import Path

import pytest

from backup.config import RestoreOptions, ServerConfig
from backup.create import BackupOrchestrator, RunState, default_targets
from backup.errors import AuthError
from backup.host import FileSiteHost
from backup.logs import BackupLogger
from backup.types import ExporterKind


class StubLogger:
    def __init__(self) -> None:
        self.events = []

    def info(self, message: str) -> None:
        self.events.append(("info", message))

    def warning(self, message: str) -> None:
        self.events.append(("warning", message))

    def error(self, message: str) -> None:
        self.events.append(("error", message))

    def messages(self):
        return [message for _level, message in self.events]


def _config(root: Path, *, api_key: str = "secret", public_base_url=None) -> ServerConfig:
    return ServerConfig(
        api_key=api_key,
        database_path=root / "data" / "site.db",
        theme_root=root / "site" / "themes",
        plugins_dir=root / "site" / "plugins",
        uploads_dir=root / "uploads",
        log_path=root / "logs" / "backup-log.txt",
        state_path=root / "site" / "state.json",
        public_base_url=public_base_url,
        restore=RestoreOptions(),
    )


def _make_site(root: Path, *, with_theme: bool = True) -> None:
    db_path = root / "data" / "site.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("CREATE TABLE posts(id INTEGER PRIMARY KEY, title TEXT)")
        conn.execute("INSERT INTO posts(title) VALUES ('hello')")
        conn.commit()
    finally:
        conn.close()
    if with_theme:
        theme = root / "site" / "themes" / "default"
        theme.mkdir(parents=True)
        (theme / "style.css").write_text("body {}", encoding="utf-8")
    plugins = root / "site" / "plugins"
    plugins.mkdir(parents=True, exist_ok=True)
    (plugins / "hello.php").write_text("<?php // hello", encoding="utf-8")


def _orchestrator(root: Path, logger=None, **kwargs) -> BackupOrchestrator:
    config = _config(root, **kwargs)
    host = FileSiteHost(config.state_path, theme_root=config.theme_root, plugins_dir=config.plugins_dir)
    return BackupOrchestrator(config, logger=logger or StubLogger(), host=host)


def test_invalid_key_touches_nothing(tmp_path):
    _make_site(tmp_path)
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    stale = uploads / "database-backup.sql"
    stale.write_text("old dump", encoding="utf-8")
    logger = StubLogger()
    orchestrator = _orchestrator(tmp_path, logger)

    with pytest.raises(AuthError):
        orchestrator.run("wrong")

    assert stale.read_text(encoding="utf-8") == "old dump"
    assert sorted(path.name for path in uploads.iterdir()) == ["database-backup.sql"]
    assert logger.messages() == ["Unauthorized access attempt with invalid API key."]
    assert orchestrator.state is RunState.REJECTED
    assert orchestrator.handle_request(None) == {"success": False, "error": "Invalid API key"}


def test_unconfigured_key_rejects_every_request(tmp_path):
    _make_site(tmp_path)
    orchestrator = _orchestrator(tmp_path, api_key="")

    assert orchestrator.authenticate("") is False
    assert orchestrator.authenticate(None) is False
    with pytest.raises(AuthError):
        orchestrator.run("")
    assert not (tmp_path / "uploads").exists()


def test_run_exports_every_target_in_order(tmp_path):
    _make_site(tmp_path)
    orchestrator = _orchestrator(tmp_path, public_base_url="https://example.test/backups")

    manifest = orchestrator.run("secret")

    assert manifest.keys() == ["database", "theme", "plugins"]
    assert manifest.ok
    assert orchestrator.state is RunState.DONE
    assert manifest.to_payload() == {
        "database": {"success": True, "file": "https://example.test/backups/database-backup.sql"},
        "theme": {"success": True, "file": "https://example.test/backups/theme-backup.zip"},
        "plugins": {"success": True, "file": "https://example.test/backups/plugins-backup.zip"},
    }
    uploads = tmp_path / "uploads"
    assert sorted(path.name for path in uploads.iterdir()) == [
        "database-backup.sql",
        "plugins-backup.zip",
        "theme-backup.zip",
    ]


def test_default_url_is_a_file_uri_without_public_base(tmp_path):
    orchestrator = _orchestrator(tmp_path)

    url = orchestrator.default_url("theme-backup.zip")

    assert url.startswith("file://")
    assert url.endswith("/uploads/theme-backup.zip")


def test_theme_failure_does_not_affect_other_targets(tmp_path):
    _make_site(tmp_path, with_theme=False)
    logger = StubLogger()
    orchestrator = _orchestrator(tmp_path, logger)

    payload = orchestrator.handle_request("secret", url_for=lambda name: f"http://site/{name}")

    assert list(payload) == ["database", "theme", "plugins"]
    assert payload["database"] == {"success": True, "file": "http://site/database-backup.sql"}
    assert payload["plugins"] == {"success": True, "file": "http://site/plugins-backup.zip"}
    assert payload["theme"]["success"] is False
    assert payload["theme"]["error"] == "Failed to export theme"
    assert "source directory not found" in payload["theme"]["details"]
    assert not (tmp_path / "uploads" / "theme-backup.zip").exists()
    assert logger.messages()[-1] == "Backup process completed."


def test_exporter_exception_is_reported_per_target(tmp_path):
    _make_site(tmp_path)
    config = _config(tmp_path)

    def failing_dump(target, destination):
        raise RuntimeError("disk full")

    orchestrator = BackupOrchestrator(
        config,
        logger=StubLogger(),
        exporters={ExporterKind.SQL_DUMP: failing_dump},
    )

    manifest = orchestrator.run("secret")

    assert manifest["database"].success is False
    assert manifest["database"].details == "disk full"
    assert manifest["theme"].success is True
    assert manifest["plugins"].success is True


def test_purge_is_idempotent(tmp_path):
    orchestrator = _orchestrator(tmp_path)
    uploads = tmp_path / "uploads"

    assert orchestrator.purge() == []

    uploads.mkdir()
    (uploads / "database-backup.sql").write_text("old", encoding="utf-8")
    (uploads / "theme-backup.zip.part").write_bytes(b"partial")
    (uploads / "unrelated.txt").write_text("keep", encoding="utf-8")

    removed = orchestrator.purge()

    assert sorted(path.name for path in removed) == ["database-backup.sql", "theme-backup.zip.part"]
    assert orchestrator.purge() == []
    assert sorted(path.name for path in uploads.iterdir()) == ["unrelated.txt"]


def test_default_targets_follow_active_theme(tmp_path):
    config = _config(tmp_path)
    host = FileSiteHost(config.state_path, theme_root=config.theme_root, plugins_dir=config.plugins_dir)
    (config.theme_root / "twentytwenty").mkdir(parents=True)
    host.activate_theme("twentytwenty")

    targets = default_targets(config, host)

    assert [target.key for target in targets] == ["database", "theme", "plugins"]
    assert targets[1].source_path == config.theme_root / "twentytwenty"


def test_backup_log_lines_are_timestamped(tmp_path):
    _make_site(tmp_path)
    log_path = tmp_path / "logs" / "backup-log.txt"
    logger = BackupLogger(log_path, clock=lambda: datetime(2024, 3, 7, 9, 5, 1))
    orchestrator = _orchestrator(tmp_path, logger)

    orchestrator.run("secret")

    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "[2024-03-07 09:05:01] Starting backup process..."
    assert lines[-1] == "[2024-03-07 09:05:01] Backup process completed."


def test_backup_logger_reports_missing_log(tmp_path):
    logger = BackupLogger(tmp_path / "logs" / "backup-log.txt")

    assert logger.read_text() == "No logs available."
