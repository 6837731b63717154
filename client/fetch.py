"""Download the artifacts a backup server reports into a local tree."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlsplit

import requests

from backup.errors import TransportError
from core.logging_utils import redact_secret
from core.paths import safe_label

from .config import ClientConfig, ProjectConfig

LOGGER = logging.getLogger("sitebackup.client")

TIMESTAMP_FORMAT = "%Y-%m-%d-%H-%M"
DATABASE_FILENAME = "database-backup.sql"
CHUNK_SIZE = 1 << 16


def format_timestamp(moment: datetime) -> str:
    """Return the folder name for a poll started at *moment*."""

    return moment.strftime(TIMESTAMP_FORMAT)


def artifact_filename(key: str, url: str) -> str:
    path = urlsplit(url).path
    if path.lower().endswith(".sql"):
        return DATABASE_FILENAME
    return f"{safe_label(key, default='artifact')}-backup.zip"


@dataclass(slots=True)
class ProjectResult:
    project: str
    directory: Optional[Path] = None
    downloaded: List[Path] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed


class BackupClient:
    """Poll configured projects and mirror their artifacts locally."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._clock = clock or datetime.now

    @property
    def config(self) -> ClientConfig:
        return self._config

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    def project_dir(self, project: ProjectConfig, moment: datetime) -> Path:
        return (
            self._config.output_root
            / safe_label(project.name)
            / safe_label(project.user, default="default")
            / format_timestamp(moment)
        )

    def fetch_manifest(self, project: ProjectConfig) -> Dict[str, Any]:
        try:
            response = self._session.get(
                project.url,
                params={"key": project.api_key},
                timeout=self._config.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TransportError(f"request to {project.url} failed: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(f"response from {project.url} is not JSON") from exc
        if not isinstance(payload, dict):
            raise TransportError(f"response from {project.url} is not a manifest")
        return payload

    def download(self, url: str, destination: Path) -> Path:
        """Stream *url* into *destination*, replacing it only when complete."""

        partial = destination.with_name(destination.name + ".part")
        try:
            with self._session.get(url, stream=True, timeout=self._config.timeout) as response:
                response.raise_for_status()
                with open(partial, "wb") as handle:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            handle.write(chunk)
            os.replace(partial, destination)
        except (requests.RequestException, OSError) as exc:
            partial.unlink(missing_ok=True)
            raise TransportError(f"download of {url} failed: {exc}") from exc
        return destination

    # ------------------------------------------------------------------
    def sync_project(self, project: ProjectConfig) -> ProjectResult:
        result = ProjectResult(project=project.name)
        LOGGER.info("Polling %s (key %s)", project.name, redact_secret(project.api_key))
        try:
            manifest = self.fetch_manifest(project)
        except TransportError as exc:
            LOGGER.error("Backup poll for %s failed: %s", project.name, exc)
            result.error = str(exc)
            return result

        if manifest.get("success") is False:
            result.error = str(manifest.get("error") or "authentication failed")
            LOGGER.error("Backup server rejected %s: %s", project.name, result.error)
            return result

        directory = self.project_dir(project, self._clock())
        directory.mkdir(parents=True, exist_ok=True)
        result.directory = directory

        for key, entry in manifest.items():
            if not isinstance(entry, Mapping):
                continue
            if not entry.get("success") or not entry.get("file"):
                message = str(entry.get("error") or "no file reported")
                details = entry.get("details")
                if details:
                    message = f"{message}: {details}"
                LOGGER.error("Backup failed for %s in %s: %s", key, project.name, message)
                result.failed[key] = message
                continue
            url = str(entry["file"])
            destination = directory / artifact_filename(key, url)
            try:
                self.download(url, destination)
            except TransportError as exc:
                LOGGER.error("Error downloading %s for %s: %s", key, project.name, exc)
                result.failed[key] = str(exc)
                continue
            LOGGER.info("%s backup downloaded to %s", key, destination)
            result.downloaded.append(destination)
        return result

    def run_once(self) -> List[ProjectResult]:
        """Sweep every configured project once, in order."""

        results = []
        for project in self._config.projects:
            try:
                results.append(self.sync_project(project))
            except OSError as exc:
                LOGGER.error("Backup poll for %s failed: %s", project.name, exc)
                results.append(ProjectResult(project=project.name, error=str(exc)))
        return results


__all__ = ["BackupClient", "ProjectResult", "artifact_filename", "format_timestamp"]
