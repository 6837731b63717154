"""Typed client configuration built from the ``client`` settings section."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

LOGGER = logging.getLogger("sitebackup.client")

DEFAULT_INTERVAL_S = 86400.0
DEFAULT_CONNECT_TIMEOUT_S = 15.0
DEFAULT_READ_TIMEOUT_S = 300.0


@dataclass(slots=True, frozen=True)
class ProjectConfig:
    name: str
    url: str
    api_key: str
    user: str

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> Optional["ProjectConfig"]:
        name = str(payload.get("name") or "").strip()
        url = str(payload.get("url") or "").strip()
        if not name or not url:
            return None
        return cls(
            name=name,
            url=url,
            api_key=str(payload.get("api_key") or ""),
            user=str(payload.get("user") or "default"),
        )


def _float(value: Any, default: float) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if result > 0 else default


@dataclass(slots=True, frozen=True)
class ClientConfig:
    """Poller settings: where to write, how often, and which projects."""

    output_root: Path
    projects: Tuple[ProjectConfig, ...] = ()
    interval_s: float = DEFAULT_INTERVAL_S
    connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S
    read_timeout_s: float = DEFAULT_READ_TIMEOUT_S

    @property
    def timeout(self) -> Tuple[float, float]:
        return (self.connect_timeout_s, self.read_timeout_s)

    @classmethod
    def from_settings(
        cls,
        settings: Mapping[str, Any],
        working_dir: Path,
        *,
        output_root: Optional[str] = None,
        interval_s: Optional[float] = None,
    ) -> "ClientConfig":
        section = settings.get("client") if isinstance(settings.get("client"), dict) else {}
        root_value = output_root or section.get("output_root")
        root = Path(str(root_value)).expanduser() if root_value else Path(working_dir) / "backups"
        if not root.is_absolute():
            root = Path(working_dir) / root

        projects = []
        for index, entry in enumerate(section.get("projects") or []):
            project = ProjectConfig.from_mapping(entry) if isinstance(entry, dict) else None
            if project is None:
                LOGGER.warning("Ignoring client project #%d: name and url are required", index)
                continue
            projects.append(project)

        return cls(
            output_root=root,
            projects=tuple(projects),
            interval_s=_float(interval_s if interval_s is not None else section.get("interval_s"), DEFAULT_INTERVAL_S),
            connect_timeout_s=_float(section.get("connect_timeout_s"), DEFAULT_CONNECT_TIMEOUT_S),
            read_timeout_s=_float(section.get("read_timeout_s"), DEFAULT_READ_TIMEOUT_S),
        )


__all__ = ["ClientConfig", "ProjectConfig"]
