"""Tests for the backup HTTP endpoints."""

import sqlite3
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from api.server import APIServerConfig, create_app
from backup import BackupService, ServerConfig
from core.settings import merge_defaults


def _make_site(root: Path) -> None:
    db_path = root / "data" / "site.db"
    db_path.parent.mkdir(parents=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("CREATE TABLE posts(id INTEGER PRIMARY KEY, title TEXT)")
        conn.execute("INSERT INTO posts(title) VALUES ('hello')")
        conn.commit()
    finally:
        conn.close()
    theme = root / "site" / "themes" / "default"
    theme.mkdir(parents=True)
    (theme / "style.css").write_text("body {}", encoding="utf-8")
    plugins = root / "site" / "plugins"
    plugins.mkdir(parents=True)
    (plugins / "hello.php").write_text("<?php // hello", encoding="utf-8")


def _service(root: Path) -> BackupService:
    settings = merge_defaults({"server": {"api_key": "secret"}})
    return BackupService(ServerConfig.from_settings(settings, root))


@pytest.fixture
def site(tmp_path):
    _make_site(tmp_path)
    return tmp_path


@pytest.fixture
def client(site):
    app = create_app(APIServerConfig(service=_service(site), app_version="test"))
    return TestClient(app)


def test_download_with_wrong_key_is_rejected(client, site):
    response = client.get("/backup/v1/download", params={"key": "nope"})

    assert response.status_code == 200
    assert response.json() == {"success": False, "error": "Invalid API key"}
    assert not (site / "uploads" / "database-backup.sql").exists()


def test_auth_failure_status_is_configurable(site):
    app = create_app(APIServerConfig(service=_service(site), auth_failure_status=401))
    client = TestClient(app)

    response = client.get("/backup/v1/download")

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_download_returns_manifest_with_fetchable_files(client):
    response = client.get("/backup/v1/download", params={"key": "secret"})

    assert response.status_code == 200
    manifest = response.json()
    assert list(manifest) == ["database", "theme", "plugins"]
    assert all(entry["success"] for entry in manifest.values())
    assert manifest["database"]["file"] == "http://testserver/backup/v1/files/database-backup.sql"

    dump = client.get(manifest["database"]["file"])
    assert dump.status_code == 200
    assert dump.content.startswith(b"-- Site Database Backup")

    archive = client.get(manifest["theme"]["file"])
    assert archive.status_code == 200
    assert archive.content[:2] == b"PK"


def test_files_endpoint_only_serves_artifacts(client, site):
    (site / "uploads").mkdir(exist_ok=True)
    (site / "uploads" / "notes.txt").write_text("private", encoding="utf-8")

    response = client.get("/backup/v1/files/notes.txt")
    assert response.status_code == 404
    assert response.json() == {"error": "unknown artifact"}

    missing = client.get("/backup/v1/files/theme-backup.zip")
    assert missing.status_code == 404


def test_upload_restores_bundle(client, site):
    client.get("/backup/v1/download", params={"key": "secret"})
    dump = (site / "uploads" / "database-backup.sql").read_bytes()
    theme = (site / "uploads" / "theme-backup.zip").read_bytes()

    response = client.post(
        "/backup/v1/upload",
        params={"key": "secret"},
        files=[
            ("backup_files", ("theme-backup.zip", theme, "application/zip")),
            ("backup_files", ("database-backup.sql", dump, "application/sql")),
            ("backup_files", ("notes.txt", b"x", "text/plain")),
        ],
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert [step["name"] for step in body["steps"]] == ["database", "theme"]
    assert body["ignored_files"] == ["notes.txt"]
    assert (site / "site" / "themes" / "backup-theme" / "style.css").is_file()


def test_upload_requires_key(client):
    response = client.post(
        "/backup/v1/upload",
        files=[("backup_files", ("database-backup.sql", b"SELECT 1;", "application/sql"))],
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid API key"}


def test_logs_endpoint(client):
    assert client.get("/backup/v1/logs", params={"key": "secret"}).text == "No logs available."

    client.get("/backup/v1/download", params={"key": "nope"})
    response = client.get("/backup/v1/logs", headers={"X-API-Key": "secret"})

    assert response.status_code == 200
    assert "Unauthorized access attempt with invalid API key." in response.text


def test_health_requires_key(client):
    assert client.get("/backup/v1/health").status_code == 401

    response = client.get("/backup/v1/health", params={"key": "secret"})
    assert response.status_code == 200
    assert response.json()["version"] == "test"


def test_endpoints_defer_key_checks_to_the_service(site, monkeypatch):
    service = _service(site)
    checked = []

    def rotated_key(provided_key):
        checked.append(provided_key)
        return provided_key == "rotated"

    monkeypatch.setattr(service, "authenticate", rotated_key)
    client = TestClient(create_app(APIServerConfig(service=service)))

    assert client.get("/backup/v1/health", params={"key": "secret"}).status_code == 401
    assert client.get("/backup/v1/health", headers={"X-API-Key": "rotated"}).status_code == 200
    assert checked == ["secret", "rotated"]


def test_missing_server_key_rejects_every_request(site):
    service = BackupService(ServerConfig.from_settings(merge_defaults({}), site))
    client = TestClient(create_app(APIServerConfig(service=service)))

    response = client.get("/backup/v1/health", params={"key": ""})

    assert response.status_code == 401
    assert response.json() == {"error": "API key is not configured."}
