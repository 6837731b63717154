import logging
from datetime import datetime
from pathlib import Path

import requests

from client.config import ClientConfig, ProjectConfig
from client.fetch import BackupClient, artifact_filename, format_timestamp


class StubResponse:
    def __init__(self, *, status_code: int = 200, payload=None, content: bytes = b"") -> None:
        self.status_code = status_code
        self._payload = payload
        self._content = content

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self._content), 4):
            yield self._content[start : start + 4]

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


class StubSession:
    def __init__(self, routes) -> None:
        self.routes = routes
        self.calls = []
        self.closed = False

    def get(self, url, params=None, timeout=None, stream=False):
        self.calls.append({"url": url, "params": params, "timeout": timeout, "stream": stream})
        route = self.routes[url]
        if isinstance(route, Exception):
            raise route
        return route

    def close(self) -> None:
        self.closed = True


MOMENT = datetime(2024, 3, 7, 9, 5, 42)


def _project(name: str = "Site One", url: str = "https://one.test/backup/v1/download") -> ProjectConfig:
    return ProjectConfig(name=name, url=url, api_key="k-123", user="alice")


def _client(tmp_path: Path, session: StubSession, *projects: ProjectConfig) -> BackupClient:
    config = ClientConfig(output_root=tmp_path / "backups", projects=projects or (_project(),))
    return BackupClient(config, session=session, clock=lambda: MOMENT)


def _manifest(base: str = "https://one.test/backup/v1/files"):
    return {
        "database": {"success": True, "file": f"{base}/database-backup.sql"},
        "theme": {"success": False, "error": "Failed to export theme", "details": "source directory not found"},
        "plugins": {"success": True, "file": f"{base}/plugins-backup.zip"},
    }


def test_format_timestamp_is_minute_precision():
    assert format_timestamp(datetime(2024, 3, 7, 9, 5)) == "2024-03-07-09-05"


def test_artifact_filename_uses_url_extension():
    assert artifact_filename("database", "https://x.test/files/database-backup.sql") == "database-backup.sql"
    assert artifact_filename("db", "https://x.test/dump.sql?sig=abc") == "database-backup.sql"
    assert artifact_filename("theme", "https://x.test/files/theme-backup.zip") == "theme-backup.zip"
    assert artifact_filename("plugins", "https://x.test/files/plugins-backup.zip") == "plugins-backup.zip"


def test_sync_downloads_successful_entries_and_logs_failures(tmp_path, caplog):
    caplog.set_level(logging.INFO, logger="sitebackup.client")
    session = StubSession(
        {
            "https://one.test/backup/v1/download": StubResponse(payload=_manifest()),
            "https://one.test/backup/v1/files/database-backup.sql": StubResponse(content=b"-- dump\nSELECT 1;\n"),
            "https://one.test/backup/v1/files/plugins-backup.zip": StubResponse(content=b"PK\x03\x04zip-bytes"),
        }
    )
    client = _client(tmp_path, session)

    result = client.sync_project(_project())

    expected_dir = tmp_path / "backups" / "Site_One" / "alice" / "2024-03-07-09-05"
    assert result.directory == expected_dir
    assert sorted(path.name for path in expected_dir.iterdir()) == ["database-backup.sql", "plugins-backup.zip"]
    assert (expected_dir / "database-backup.sql").read_bytes() == b"-- dump\nSELECT 1;\n"
    assert (expected_dir / "plugins-backup.zip").read_bytes() == b"PK\x03\x04zip-bytes"
    assert result.failed == {"theme": "Failed to export theme: source directory not found"}
    assert result.error is None
    assert not result.ok
    assert "Failed to export theme: source directory not found" in caplog.text


def test_manifest_request_carries_key_and_timeouts(tmp_path):
    session = StubSession({"https://one.test/backup/v1/download": StubResponse(payload={})})
    client = _client(tmp_path, session)

    client.sync_project(_project())

    call = session.calls[0]
    assert call["params"] == {"key": "k-123"}
    assert call["timeout"] == (15.0, 300.0)


def test_auth_failure_downloads_nothing(tmp_path):
    session = StubSession(
        {
            "https://one.test/backup/v1/download": StubResponse(
                payload={"success": False, "error": "Invalid API key"}
            )
        }
    )
    client = _client(tmp_path, session)

    result = client.sync_project(_project())

    assert result.error == "Invalid API key"
    assert result.directory is None
    assert not (tmp_path / "backups").exists()
    assert len(session.calls) == 1


def test_failed_download_does_not_stop_remaining_entries(tmp_path):
    manifest = _manifest()
    manifest["theme"] = {"success": True, "file": "https://one.test/backup/v1/files/theme-backup.zip"}
    session = StubSession(
        {
            "https://one.test/backup/v1/download": StubResponse(payload=manifest),
            "https://one.test/backup/v1/files/database-backup.sql": StubResponse(status_code=500),
            "https://one.test/backup/v1/files/theme-backup.zip": requests.ConnectionError("reset"),
            "https://one.test/backup/v1/files/plugins-backup.zip": StubResponse(content=b"zip"),
        }
    )
    client = _client(tmp_path, session)

    result = client.sync_project(_project())

    assert sorted(result.failed) == ["database", "theme"]
    assert [path.name for path in result.downloaded] == ["plugins-backup.zip"]
    assert sorted(path.name for path in result.directory.iterdir()) == ["plugins-backup.zip"]


def test_transport_error_in_one_project_does_not_stop_the_next(tmp_path):
    broken = _project(name="broken", url="https://down.test/backup/v1/download")
    healthy = _project()
    session = StubSession(
        {
            "https://down.test/backup/v1/download": requests.ConnectionError("refused"),
            "https://one.test/backup/v1/download": StubResponse(
                payload={"plugins": {"success": True, "file": "https://one.test/backup/v1/files/plugins-backup.zip"}}
            ),
            "https://one.test/backup/v1/files/plugins-backup.zip": StubResponse(content=b"zip"),
        }
    )
    client = _client(tmp_path, session, broken, healthy)

    results = client.run_once()

    assert [result.project for result in results] == ["broken", "Site One"]
    assert "refused" in results[0].error
    assert results[1].ok
    assert [path.name for path in results[1].downloaded] == ["plugins-backup.zip"]


def test_non_json_manifest_is_a_transport_error(tmp_path):
    class BrokenJson(StubResponse):
        def json(self):
            raise ValueError("no json")

    session = StubSession({"https://one.test/backup/v1/download": BrokenJson()})
    client = _client(tmp_path, session)

    result = client.sync_project(_project())

    assert "not JSON" in result.error


def test_client_config_from_settings(tmp_path):
    settings = {
        "client": {
            "interval_s": 600,
            "output_root": "mirror",
            "projects": [
                {"name": "blog", "url": "https://blog.test/backup/v1/download", "api_key": "k", "user": "bob"},
                {"name": "", "url": "https://nameless.test"},
                "not-a-mapping",
            ],
        }
    }

    config = ClientConfig.from_settings(settings, tmp_path)

    assert config.output_root == tmp_path / "mirror"
    assert config.interval_s == 600.0
    assert config.timeout == (15.0, 300.0)
    assert [project.name for project in config.projects] == ["blog"]
    assert config.projects[0].user == "bob"


def test_client_config_defaults(tmp_path):
    config = ClientConfig.from_settings({}, tmp_path, interval_s=30)

    assert config.output_root == tmp_path / "backups"
    assert config.interval_s == 30.0
    assert config.projects == ()
