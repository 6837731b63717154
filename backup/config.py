"""Server-side configuration built once from settings.json."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from core.paths import (
    get_logs_dir,
    get_plugins_dir,
    get_site_db_path,
    get_site_dir,
    get_theme_root,
    get_uploads_dir,
)

from .logs import LOG_FILENAME


def _section(settings: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = settings.get(name)
    return dict(value) if isinstance(value, dict) else {}


def _path(value: Any, working_dir: Path, default: Path) -> Path:
    if not isinstance(value, str) or not value.strip():
        return default
    candidate = Path(value.strip()).expanduser()
    if not candidate.is_absolute():
        candidate = working_dir / candidate
    return candidate


DEFAULT_THEME_NAME = "backup-theme"
DEFAULT_PLUGIN_EXTENSIONS: Tuple[str, ...] = (".php", ".py")


@dataclass(slots=True, frozen=True)
class RestoreOptions:
    strict: bool = False
    theme_name: str = DEFAULT_THEME_NAME
    plugin_extensions: Tuple[str, ...] = DEFAULT_PLUGIN_EXTENSIONS


@dataclass(slots=True, frozen=True)
class ServerConfig:
    """Everything the backup and restore orchestrators read."""

    api_key: str
    database_path: Path
    theme_root: Path
    plugins_dir: Path
    uploads_dir: Path
    log_path: Path
    state_path: Path
    theme_dir: Optional[Path] = None
    public_base_url: Optional[str] = None
    restore: RestoreOptions = field(default_factory=RestoreOptions)

    @classmethod
    def from_settings(
        cls,
        settings: Mapping[str, Any],
        working_dir: Path,
        *,
        api_key: Optional[str] = None,
    ) -> "ServerConfig":
        working_dir = Path(working_dir)
        site = _section(settings, "site")
        server = _section(settings, "server")
        restore = _section(settings, "restore")

        theme_root = _path(site.get("theme_root"), working_dir, get_theme_root(working_dir))
        theme_dir_value = site.get("theme_dir")
        theme_dir = _path(theme_dir_value, working_dir, theme_root) if theme_dir_value else None
        extensions = restore.get("plugin_extensions")
        if not isinstance(extensions, (list, tuple)) or not extensions:
            extensions = DEFAULT_PLUGIN_EXTENSIONS
        base_url = server.get("public_base_url")

        return cls(
            api_key=str(api_key if api_key is not None else server.get("api_key") or ""),
            database_path=_path(site.get("database_path"), working_dir, get_site_db_path(working_dir)),
            theme_root=theme_root,
            theme_dir=theme_dir,
            plugins_dir=_path(site.get("plugins_dir"), working_dir, get_plugins_dir(working_dir)),
            uploads_dir=_path(server.get("uploads_dir"), working_dir, get_uploads_dir(working_dir)),
            log_path=get_logs_dir(working_dir) / LOG_FILENAME,
            state_path=get_site_dir(working_dir) / "state.json",
            public_base_url=str(base_url).rstrip("/") if isinstance(base_url, str) and base_url.strip() else None,
            restore=RestoreOptions(
                strict=bool(restore.get("strict", False)),
                theme_name=str(restore.get("theme_name") or DEFAULT_THEME_NAME),
                plugin_extensions=tuple(str(ext).lower() for ext in extensions),
            ),
        )


__all__ = ["RestoreOptions", "ServerConfig"]
